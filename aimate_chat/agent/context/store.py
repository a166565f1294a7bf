import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from aimate_chat.agent.core.state_machine import StreamStateMachine
from aimate_chat.agent.structs import Message, Role
from aimate_chat.exceptions import ConversationNotFoundError
from aimate_chat.utils.retry import AbortHandle

from .assembler import AttachmentSource


@dataclass
class ConversationState:
    """
    Live state for one conversation: its messages and its stream.

    ``lock`` serializes sends so at most one stream is active at a time.
    """

    conversation_id: str
    workspace_id: Optional[str] = None
    messages: List[Message] = field(default_factory=list)
    stream: StreamStateMachine = field(default_factory=StreamStateMachine)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    abort: Optional[AbortHandle] = None

    @property
    def is_streaming(self) -> bool:
        return self.stream.is_streaming

    def add(self, message: Message) -> None:
        self.messages.append(message)

    def last_assistant(self) -> Optional[Message]:
        for message in reversed(self.messages):
            if message.role == Role.ASSISTANT:
                return message
        return None


class ConversationStore:
    """
    Arena of loaded conversations, keyed by conversation id.
    """

    def __init__(self):
        self._conversations: Dict[str, ConversationState] = {}
        self._logger = logging.getLogger("ConversationStore")

    def __contains__(self, conversation_id: str) -> bool:
        return conversation_id in self._conversations

    @property
    def conversation_ids(self) -> List[str]:
        return list(self._conversations.keys())

    def get(self, conversation_id: str) -> ConversationState:
        state = self._conversations.get(conversation_id)
        if state is None:
            raise ConversationNotFoundError(
                f"Conversation not loaded: {conversation_id}",
                conversation_id=conversation_id,
            )
        return state

    def get_or_create(
        self, conversation_id: str, workspace_id: Optional[str] = None
    ) -> ConversationState:
        state = self._conversations.get(conversation_id)
        if state is None:
            state = ConversationState(conversation_id, workspace_id=workspace_id)
            self._conversations[conversation_id] = state
        elif workspace_id and state.workspace_id is None:
            state.workspace_id = workspace_id
        return state

    async def load(
        self,
        conversation_id: str,
        loader: AttachmentSource,
        workspace_id: Optional[str] = None,
    ) -> ConversationState:
        """
        Return the loaded conversation, fetching its history on first use.
        """
        if conversation_id in self._conversations:
            return self._conversations[conversation_id]

        messages = await loader.get_messages(conversation_id)
        # Another load may have finished while we were waiting
        state = self.get_or_create(conversation_id, workspace_id)
        if not state.messages:
            state.messages.extend(messages)
        self._logger.debug(
            "Loaded conversation %s (%d messages)", conversation_id, len(messages)
        )
        return state

    def evict(self, conversation_id: str) -> bool:
        """Drop a conversation, aborting its stream if one is running."""
        state = self._conversations.pop(conversation_id, None)
        if state is None:
            return False
        if state.abort is not None:
            state.abort.abort()
        self._logger.debug("Evicted conversation %s", conversation_id)
        return True

    def clear(self) -> None:
        for conversation_id in list(self._conversations):
            self.evict(conversation_id)

    def switch_workspace(self, workspace_id: Optional[str]) -> List[str]:
        """
        Evict every conversation that belongs to another workspace.

        Returns:
            List[str]: Ids of the evicted conversations.
        """
        evicted = [
            cid
            for cid, state in self._conversations.items()
            if state.workspace_id != workspace_id
        ]
        for conversation_id in evicted:
            self.evict(conversation_id)
        return evicted
