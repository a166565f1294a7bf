# Test suite for tool call parsing

from aimate_chat.agent.logic.parsers import parse_tool_calls, strip_tool_calls


class TestParseToolCalls:
    """Inline markup and fenced JSON extraction"""

    def test_inline_calls_are_all_found_in_order(self):
        """Every inline tool_call block is returned, in order of appearance"""
        content = (
            'First <tool_call name="search" server="web">{"query": "python"}</tool_call> '
            'then <tool_call name="read" server="fs">{"path": "/tmp/a.txt"}</tool_call>'
        )

        calls = parse_tool_calls(content)

        assert [(c.server_id, c.tool_name) for c in calls] == [
            ("web", "search"),
            ("fs", "read"),
        ]
        assert calls[0].parameters == {"query": "python"}
        assert calls[1].parameters == {"path": "/tmp/a.txt"}

    def test_inline_payload_spanning_lines(self):
        """Payloads may contain newlines"""
        content = '<tool_call name="note" server="local">\n{\n  "text": "a\\nb"\n}\n</tool_call>'

        calls = parse_tool_calls(content)

        assert len(calls) == 1
        assert calls[0].parameters == {"text": "a\nb"}

    def test_invalid_inline_json_is_skipped(self):
        """A malformed block is skipped without affecting valid ones"""
        content = (
            '<tool_call name="bad" server="web">{not json}</tool_call>'
            '<tool_call name="good" server="web">{"q": 1}</tool_call>'
        )

        calls = parse_tool_calls(content)

        assert [c.tool_name for c in calls] == ["good"]

    def test_non_object_payload_is_skipped(self):
        """Parameters must be a JSON object"""
        content = '<tool_call name="x" server="s">[1, 2]</tool_call>'

        assert parse_tool_calls(content) == []

    def test_fenced_fallback_when_no_inline_calls(self):
        """A fenced json block with tool_calls is used when no inline markup exists"""
        content = """I'll look that up.
```json
{"tool_calls": [
  {"name": "search", "server": "web", "parameters": {"query": "aiohttp"}},
  {"name": "incomplete", "server": "web"}
]}
```"""

        calls = parse_tool_calls(content)

        assert len(calls) == 1
        assert calls[0].tool_name == "search"
        assert calls[0].server_id == "web"
        assert calls[0].parameters == {"query": "aiohttp"}

    def test_fenced_block_ignored_when_inline_calls_exist(self):
        """Inline markup takes precedence over fenced JSON"""
        content = (
            '<tool_call name="inline" server="a">{}</tool_call>\n'
            '```json\n{"tool_calls": [{"name": "fenced", "server": "b", "parameters": {}}]}\n```'
        )

        calls = parse_tool_calls(content)

        assert [c.tool_name for c in calls] == ["inline"]

    def test_invalid_fenced_json_returns_nothing(self):
        """Broken fenced JSON never raises"""
        content = '```json\n{"tool_calls": [\n```'

        assert parse_tool_calls(content) == []

    def test_plain_text_has_no_calls(self):
        """Ordinary responses yield no calls"""
        assert parse_tool_calls("Just a normal answer.") == []
        assert parse_tool_calls("") == []


class TestStripToolCalls:
    def test_markup_removed_for_display(self):
        """Inline markup is removed and surrounding text kept"""
        content = 'Checking now. <tool_call name="s" server="w">{"q": 1}</tool_call>'

        assert strip_tool_calls(content) == "Checking now."
