# Test suite for system content assembly and memory rendering

import time
from datetime import datetime

import pytest

from conftest import FakeAttachmentSource

from aimate_chat.agent.context.assembler import ContextAssembler
from aimate_chat.agent.context.memory import build_memory_context
from aimate_chat.agent.structs import FileInfo, Memory, Message, Note, Role, SendOptions
from aimate_chat.protocol.bus import EventBus
from aimate_chat.protocol.events import EventTypes
from aimate_chat.utils.prompt_variables import builtin_variables, expand_variables


def message(role, content, **metadata):
    return Message(
        id=f"{role.value}-{content[:8]}",
        role=role,
        content=content,
        timestamp=time.time(),
        metadata=metadata,
    )


def full_source(**kwargs):
    return FakeAttachmentSource(
        knowledge={"doc-1": ["Chunk one.", "Chunk two."]},
        notes={"n-1": Note(title="Groceries", content="Milk")},
        files={"f-1": FileInfo("report.pdf", "application/pdf", 2048, "https://files/f-1")},
        chats={"c-1": [message(Role.USER, "earlier question"), message(Role.ASSISTANT, "earlier answer")]},
        **kwargs,
    )


class TestSystemContent:
    """Prompt, attachment blocks and memory, in that order"""

    @pytest.mark.asyncio
    async def test_blocks_follow_fixed_order(self):
        """Knowledge, notes, files, chats and webpages appear in that order after the prompt"""
        assembler = ContextAssembler(full_source(), default_system_prompt="You are helpful.")
        options = SendOptions(
            webpage_urls=["https://example.com"],
            chat_ids=["c-1"],
            file_ids=["f-1"],
            note_ids=["n-1"],
            knowledge_ids=["doc-1"],
            memory_context="\n\n--- USER MEMORIES ---\n- likes tea\n--- END USER MEMORIES ---\n",
        )

        context = await assembler.build_system_content(options)
        content = context.content

        assert content.startswith("You are helpful.")
        labels = [
            "--- KNOWLEDGE ---",
            "--- NOTES ---",
            "--- FILES ---",
            "--- CHAT HISTORY ---",
            "--- WEBPAGES ---",
            "--- USER MEMORIES ---",
        ]
        positions = [content.index(label) for label in labels]
        assert positions == sorted(positions)
        assert "Chunk one.\n\nChunk two." in content
        assert "## Groceries\nMilk" in content
        assert "- report.pdf (application/pdf, 2048 bytes): https://files/f-1" in content
        assert "user: earlier question" in content
        assert "- https://example.com" in content

    @pytest.mark.asyncio
    async def test_failed_fetch_only_drops_its_block(self):
        """A failing source is logged, reported and skipped; the rest still render"""
        bus = EventBus()
        failures = []

        async def on_failure(data):
            failures.append(data)

        await bus.subscribe(EventTypes.ATTACHMENT_FAILED, on_failure)
        assembler = ContextAssembler(full_source(failing={"doc-1"}), bus=bus)
        options = SendOptions(knowledge_ids=["doc-1"], note_ids=["n-1"])

        context = await assembler.build_system_content(options)

        assert "--- KNOWLEDGE ---" not in context.content
        assert "--- NOTES ---" in context.content
        assert failures == [
            {
                "source": "knowledge",
                "item_id": "doc-1",
                "error": "backend unavailable for doc-1",
            }
        ]

    @pytest.mark.asyncio
    async def test_override_prompt_and_variables(self):
        """A per-send prompt replaces the default and variables are expanded"""
        assembler = ContextAssembler(
            default_system_prompt="default",
            user_name="Sam",
            workspace_names={"ws-1": "Research"},
        )
        options = SendOptions(
            system_prompt="Hi {{ USER_NAME }} in {{WORKSPACE_NAME}} using {{ MODEL_NAME }} {{ UNKNOWN }} {{ TOPIC }}",
            workspace_id="ws-1",
            variables={"TOPIC": "birds"},
        )

        context = await assembler.build_system_content(options, model_name="llama-3")

        assert context.content == "Hi Sam in Research using llama-3 {{ UNKNOWN }} birds"

    @pytest.mark.asyncio
    async def test_empty_override_clears_default(self):
        """An explicitly empty override means no system prompt"""
        assembler = ContextAssembler(default_system_prompt="default")

        context = await assembler.build_system_content(SendOptions(system_prompt=""))

        assert context.content == ""

    @pytest.mark.asyncio
    async def test_token_costs_are_split(self):
        """Each part of the system content is costed separately"""
        assembler = ContextAssembler(full_source(), default_system_prompt="one two three")
        options = SendOptions(note_ids=["n-1"], memory_context="remember this")

        context = await assembler.build_system_content(options)
        costs = context.token_costs(lambda text: len(text.split()))

        assert costs["system_prompt_tokens"] == 3
        assert costs["knowledge_tokens"] > 0
        assert costs["memory_tokens"] == 2


class TestBundle:
    @pytest.mark.asyncio
    async def test_history_and_new_message(self):
        """History comes first, minus system and error messages"""
        assembler = ContextAssembler(default_system_prompt="sys")
        history = [
            message(Role.SYSTEM, "old system"),
            message(Role.USER, "question"),
            message(Role.ASSISTANT, "Authentication failed", error=True),
            message(Role.ASSISTANT, "answer"),
        ]
        new = message(Role.USER, "follow-up")

        bundle = await assembler.assemble(SendOptions(), history, new)

        assert bundle.messages == [
            {"role": "user", "content": "question"},
            {"role": "assistant", "content": "answer"},
            {"role": "user", "content": "follow-up"},
        ]
        assert bundle.to_request_messages()[0] == {"role": "system", "content": "sys"}

    @pytest.mark.asyncio
    async def test_without_history(self):
        """include_history=False sends only the system content and the new message"""
        assembler = ContextAssembler()
        history = [message(Role.USER, "question"), message(Role.ASSISTANT, "answer")]

        bundle = await assembler.assemble(
            SendOptions(include_history=False), history, message(Role.USER, "fresh")
        )

        assert bundle.to_request_messages() == [{"role": "user", "content": "fresh"}]


class TestMemoryAndVariables:
    def test_memory_block_groups_by_category(self):
        """Memories are grouped under their category headings"""
        block = build_memory_context(
            [
                Memory("Prefers metric units", "preference"),
                Memory("Lives in Oslo", "fact"),
                Memory("Planning a trip", "context"),
            ]
        )

        assert block.startswith("\n\n--- USER MEMORIES ---\n")
        assert "User Preferences:\n- Prefers metric units\n" in block
        assert "Known Facts About User:\n- Lives in Oslo\n" in block
        assert block.endswith("--- END USER MEMORIES ---\n")
        assert build_memory_context([]) == ""

    def test_builtin_date_variables(self):
        """Date and time variables render from the given clock"""
        now = datetime(2024, 3, 5, 14, 30, 0)
        variables = builtin_variables(now=now, model_name="m")

        assert expand_variables("{{CURRENT_DATE}} {{ CURRENT_DAY }}", variables) == (
            "2024-03-05 Tuesday"
        )
        assert variables["CURRENT_TIME"] == "14:30:00"
