"""
Response Parsing Logic
======================
Pure functions for extracting tool invocations from finished model output.

Two formats are recognised:

1. Inline markup, any number of occurrences::

       <tool_call name="search" server="web">{"query": "python"}</tool_call>

2. Only when (1) yields nothing, the first fenced ``json`` block holding a
   ``tool_calls`` array of ``{name, server, parameters}`` objects.

Malformed payloads are skipped with a warning; parsing never raises.
"""

import json
import logging
import re
from typing import Any, List

from aimate_chat.agent.structs import ParsedToolCall

logger = logging.getLogger(__name__)

_INLINE_PATTERN = re.compile(
    r'<tool_call\s+name="([^"]+)"\s+server="([^"]+)">([\s\S]*?)</tool_call>'
)
_FENCED_PATTERN = re.compile(r"```json\s*([\s\S]*?)```")


def parse_tool_calls(content: str) -> List[ParsedToolCall]:
    """Return every tool call requested in ``content``, in order of appearance."""
    if not content:
        return []

    calls = _parse_inline(content)
    if not calls:
        calls = _parse_fenced(content)
    return calls


def strip_tool_calls(content: str) -> str:
    """Remove inline tool-call markup, for display."""
    if not content:
        return content
    return _INLINE_PATTERN.sub("", content).strip()


def _parse_inline(content: str) -> List[ParsedToolCall]:
    calls: List[ParsedToolCall] = []

    for match in _INLINE_PATTERN.finditer(content):
        tool_name, server_id, payload = match.groups()
        try:
            parameters = json.loads(payload.strip())
        except json.JSONDecodeError as e:
            logger.warning("Skipping tool call %s/%s: invalid JSON (%s)", server_id, tool_name, e)
            continue

        if not isinstance(parameters, dict):
            logger.warning("Skipping tool call %s/%s: parameters are not an object", server_id, tool_name)
            continue

        calls.append(
            ParsedToolCall(tool_name=tool_name, server_id=server_id, parameters=parameters)
        )

    return calls


def _parse_fenced(content: str) -> List[ParsedToolCall]:
    match = _FENCED_PATTERN.search(content)
    if not match:
        return []

    try:
        parsed = json.loads(match.group(1))
    except json.JSONDecodeError as e:
        logger.warning("Skipping fenced tool calls: invalid JSON (%s)", e)
        return []

    raw_calls: Any = parsed.get("tool_calls") if isinstance(parsed, dict) else None
    if not isinstance(raw_calls, list):
        return []

    calls: List[ParsedToolCall] = []
    for raw in raw_calls:
        if not isinstance(raw, dict):
            continue
        name, server, parameters = raw.get("name"), raw.get("server"), raw.get("parameters")
        if not name or not server or not isinstance(parameters, dict):
            logger.warning("Skipping incomplete fenced tool call: %s", raw)
            continue
        calls.append(ParsedToolCall(tool_name=name, server_id=server, parameters=parameters))

    return calls
