#!/usr/bin/env python3
"""
Context Assembler
=================
Builds the system content and the exact message payload for one send.

Attachments are rendered in a fixed order, each in its own labelled block:
knowledge -> notes -> files -> chat history excerpts -> webpages. Memory
context follows the attachment blocks. Every source is fetched on its own;
a failing fetch is logged and only that contribution is left out.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from aimate_chat.agent.structs import (
    ContextBundle,
    FileInfo,
    Message,
    Note,
    Role,
    SendOptions,
)
from aimate_chat.exceptions import AttachmentFetchError
from aimate_chat.protocol.bus import EventBus
from aimate_chat.protocol.events import EventTypes
from aimate_chat.utils.prompt_variables import builtin_variables, expand_variables
from aimate_chat.utils.token_estimation import TokenCounter, count_tokens

CHAT_EXCERPT_MESSAGES = 10
CHAT_EXCERPT_CHARS = 500


class AttachmentSource(ABC):
    """Where attachment content comes from (backend API, local store, ...)."""

    @abstractmethod
    async def get_knowledge_chunks(self, document_id: str) -> List[str]:
        pass

    @abstractmethod
    async def get_notes_by_ids(self, note_ids: List[str]) -> List[Note]:
        pass

    @abstractmethod
    async def get_file(self, workspace_id: Optional[str], file_id: str) -> FileInfo:
        pass

    @abstractmethod
    async def get_messages(self, conversation_id: str) -> List[Message]:
        pass


@dataclass(frozen=True)
class SystemContext:
    """System content split into its parts so each can be costed."""

    system_prompt: str = ""
    attachments: str = ""
    memory: str = ""

    @property
    def content(self) -> str:
        return f"{self.system_prompt}{self.attachments}{self.memory}"

    def token_costs(self, token_counter: Optional[TokenCounter] = None) -> Dict[str, int]:
        counter = token_counter or count_tokens
        return {
            "system_prompt_tokens": counter(self.system_prompt) if self.system_prompt else 0,
            "knowledge_tokens": counter(self.attachments) if self.attachments else 0,
            "memory_tokens": counter(self.memory) if self.memory else 0,
        }


def _block(label: str, body: str) -> str:
    return f"\n\n--- {label} ---\n{body.rstrip()}\n--- END {label} ---"


class ContextAssembler:
    """
    Turns send options plus conversation history into a ContextBundle.
    Nothing is cached; every send builds a fresh bundle.
    """

    def __init__(
        self,
        source: Optional[AttachmentSource] = None,
        default_system_prompt: str = "",
        bus: Optional[EventBus] = None,
        user_name: str = "",
        workspace_names: Optional[Dict[str, str]] = None,
    ):
        self._source = source
        self._default_system_prompt = default_system_prompt
        self._bus = bus
        self._user_name = user_name
        self._workspace_names = workspace_names or {}
        self._logger = logging.getLogger("ContextAssembler")

    # --- System content ---

    async def build_system_content(
        self, options: SendOptions, model_name: str = ""
    ) -> SystemContext:
        # 1. Prompt: per-send override wins over the configured default
        prompt = options.system_prompt
        if prompt is None:
            prompt = self._default_system_prompt
        variables = builtin_variables(
            model_name=model_name or options.model or "",
            workspace_name=self._workspace_names.get(options.workspace_id or "", ""),
            user_name=self._user_name,
        )
        variables.update(options.variables)
        prompt = expand_variables(prompt or "", variables)

        # 2. Attachment blocks, fixed order
        blocks = [
            await self._knowledge_block(options.knowledge_ids),
            await self._notes_block(options.note_ids),
            await self._files_block(options.workspace_id, options.file_ids),
            await self._chats_block(options.chat_ids),
            self._webpages_block(options.webpage_urls),
        ]

        # 3. Memory
        return SystemContext(
            system_prompt=prompt,
            attachments="".join(blocks),
            memory=options.memory_context or "",
        )

    async def _knowledge_block(self, document_ids: List[str]) -> str:
        sections = []
        for document_id in document_ids:
            chunks = await self._fetch(
                "knowledge",
                document_id,
                lambda: self._source.get_knowledge_chunks(document_id),
            )
            if chunks:
                sections.append(f"[Document {document_id}]\n" + "\n\n".join(chunks))
        return _block("KNOWLEDGE", "\n\n".join(sections)) if sections else ""

    async def _notes_block(self, note_ids: List[str]) -> str:
        if not note_ids:
            return ""
        notes = await self._fetch(
            "notes", ",".join(note_ids), lambda: self._source.get_notes_by_ids(list(note_ids))
        )
        if not notes:
            return ""
        body = "\n\n".join(f"## {note.title}\n{note.content}" for note in notes)
        return _block("NOTES", body)

    async def _files_block(self, workspace_id: Optional[str], file_ids: List[str]) -> str:
        lines = []
        for file_id in file_ids:
            info = await self._fetch(
                "files", file_id, lambda: self._source.get_file(workspace_id, file_id)
            )
            if info is not None:
                lines.append(
                    f"- {info.file_name} ({info.file_type}, {info.file_size} bytes): {info.url}"
                )
        return _block("FILES", "\n".join(lines)) if lines else ""

    async def _chats_block(self, chat_ids: List[str]) -> str:
        sections = []
        for chat_id in chat_ids:
            messages = await self._fetch(
                "chats", chat_id, lambda: self._source.get_messages(chat_id)
            )
            if not messages:
                continue
            excerpt = "\n".join(
                f"{m.role.value}: {m.content[:CHAT_EXCERPT_CHARS]}"
                for m in messages[-CHAT_EXCERPT_MESSAGES:]
            )
            sections.append(f"[Conversation {chat_id}]\n{excerpt}")
        return _block("CHAT HISTORY", "\n\n".join(sections)) if sections else ""

    @staticmethod
    def _webpages_block(urls: List[str]) -> str:
        if not urls:
            return ""
        return _block("WEBPAGES", "\n".join(f"- {url}" for url in urls))

    async def _fetch(self, source: str, item_id: str, call: Callable[[], Awaitable]):
        """Run one fetch; on failure log, notify, and contribute nothing."""
        if self._source is None:
            self._logger.warning("No attachment source configured; skipping %s %s", source, item_id)
            return None
        try:
            return await call()
        except Exception as e:  # pylint: disable=broad-exception-caught
            error = AttachmentFetchError(
                f"Failed to fetch {source} {item_id}: {e}",
                source=source,
                item_id=item_id,
                original_error=e,
            )
            self._logger.warning(error.message)
            if self._bus is not None:
                await self._bus.emit(
                    EventTypes.ATTACHMENT_FAILED,
                    {"source": source, "item_id": item_id, "error": str(e)},
                )
            return None

    # --- Bundle ---

    def build_bundle(
        self,
        system_context: SystemContext,
        history: Sequence[Message],
        user_message: Optional[Message],
        include_history: bool = True,
    ) -> ContextBundle:
        """
        Args:
            system_context: Output of ``build_system_content``.
            history: Prior messages, oldest first (already compressed).
            user_message: The new message; ``None`` when continuing.
            include_history: ``False`` sends only the system content and
                ``user_message``.
        """
        messages: List[Dict[str, str]] = []
        if include_history:
            messages.extend(
                m.to_payload()
                for m in history
                if m.role != Role.SYSTEM and not m.metadata.get("error")
            )
        if user_message is not None:
            messages.append(user_message.to_payload())
        return ContextBundle(system_content=system_context.content, messages=messages)

    async def assemble(
        self,
        options: SendOptions,
        history: Sequence[Message],
        user_message: Optional[Message],
        model_name: str = "",
    ) -> ContextBundle:
        system_context = await self.build_system_content(options, model_name)
        return self.build_bundle(
            system_context, history, user_message, options.include_history is not False
        )
