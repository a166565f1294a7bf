import dataclasses
import logging
import random
import time
import uuid
from typing import List, Optional

from aimate_chat.agent.context.assembler import AttachmentSource, ContextAssembler
from aimate_chat.agent.context.compressor import compress
from aimate_chat.agent.context.store import ConversationState, ConversationStore
from aimate_chat.agent.core.execution import ToolExecutionGate
from aimate_chat.agent.logic.parsers import parse_tool_calls
from aimate_chat.agent.streaming import (
    CONTINUATION_DIRECTIVE,
    StreamingCompletionClient,
    strip_interruption_marker,
)
from aimate_chat.agent.structs import (
    CompletionRequest,
    Message,
    Role,
    SendOptions,
    StreamOutcome,
    StreamState,
    ToolCall,
)
from aimate_chat.config.settings import Settings
from aimate_chat.exceptions import StreamStateError
from aimate_chat.protocol.bus import EventBus, EventHandler
from aimate_chat.protocol.events import EventTypes
from aimate_chat.providers.base import BaseProvider
from aimate_chat.tools.registry import ToolRegistry
from aimate_chat.utils.retry import AbortHandle
from aimate_chat.utils.token_estimation import TokenCounter


class ChatOrchestrator:
    """
    The chat pipeline for every loaded conversation.

    Responsibility:
    1. Record the user message.
    2. Assemble system content and compress history.
    3. Stream the assistant response (retry, interruption, cancel).
    4. Parse tool calls from the finished response and gate them.

    Sends to one conversation are queued behind its lock, so at most one
    stream per conversation is ever active.
    """

    def __init__(
        self,
        settings: Settings,
        provider: BaseProvider,
        bus: Optional[EventBus] = None,
        tool_registry: Optional[ToolRegistry] = None,
        attachment_source: Optional[AttachmentSource] = None,
        store: Optional[ConversationStore] = None,
        token_counter: Optional[TokenCounter] = None,
        rng: Optional[random.Random] = None,
    ):
        self._settings = settings
        self._provider = provider
        self._bus = bus or EventBus()
        self._registry = tool_registry or ToolRegistry()
        self._source = attachment_source
        self._store = store or ConversationStore()
        self._token_counter = token_counter
        self._logger = logging.getLogger("ChatOrchestrator")

        self._assembler = ContextAssembler(
            source=attachment_source,
            default_system_prompt=settings.system_prompt,
            bus=self._bus,
        )
        self._gate = ToolExecutionGate(
            self._registry,
            permissions=settings.permission_table(),
            bus=self._bus,
            timeout_seconds=settings.tool_timeout,
        )
        self._client = StreamingCompletionClient(
            provider, settings.retry_policy, bus=self._bus, rng=rng
        )

    # --- Observation ---

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def store(self) -> ConversationStore:
        return self._store

    @property
    def tools(self) -> ToolExecutionGate:
        return self._gate

    async def subscribe(self, event_type: EventTypes, handler: EventHandler) -> None:
        await self._bus.subscribe(event_type, handler)

    async def unsubscribe(self, event_type: EventTypes, handler: EventHandler) -> None:
        await self._bus.unsubscribe(event_type, handler)

    def get_messages(self, conversation_id: str) -> List[Message]:
        """Snapshot of the conversation's messages."""
        return list(self._store.get(conversation_id).messages)

    def get_stream_state(self, conversation_id: str) -> StreamState:
        if conversation_id not in self._store:
            return StreamState.IDLE
        return self._store.get(conversation_id).stream.current

    def is_streaming(self, conversation_id: str) -> bool:
        return conversation_id in self._store and self._store.get(conversation_id).is_streaming

    def get_tool_calls(self, message_id: Optional[str] = None) -> List[ToolCall]:
        if message_id is None:
            return self._gate.calls
        return self._gate.calls_for_message(message_id)

    # --- Conversation lifecycle ---

    async def load_conversation(
        self, conversation_id: str, workspace_id: Optional[str] = None
    ) -> List[Message]:
        """Load history through the attachment source, once per conversation."""
        if self._source is None:
            state = self._store.get_or_create(conversation_id, workspace_id)
        else:
            state = await self._store.load(conversation_id, self._source, workspace_id)
        return list(state.messages)

    async def switch_workspace(self, workspace_id: Optional[str]) -> List[str]:
        evicted = self._store.switch_workspace(workspace_id)
        for conversation_id in evicted:
            await self._bus.emit(
                EventTypes.CONVERSATION_EVICTED, {"conversation_id": conversation_id}
            )
        return evicted

    # --- Sending ---

    async def send_message(
        self,
        conversation_id: str,
        content: str,
        options: Optional[SendOptions] = None,
    ) -> StreamOutcome:
        """
        Send one user message and stream the reply.

        Returns:
            StreamOutcome: Terminal state, the assistant message and any
            warning. Provider failures are reported here, not raised.
        """
        options = options or SendOptions()
        state = self._store.get_or_create(conversation_id, options.workspace_id)

        async with state.lock:
            # 1. Record the user message
            history = list(state.messages)
            user_message = Message(
                id=str(uuid.uuid4()),
                role=Role.USER,
                content=content,
                timestamp=time.time(),
                frozen=True,
            )
            state.add(user_message)
            await self._bus.emit(
                EventTypes.MESSAGE_CREATED,
                {"conversation_id": conversation_id, "message": user_message},
            )

            # 2. Build the request
            request = await self._build_request(
                conversation_id, options, history, user_message
            )

            # 3. Stream
            outcome = await self._run_stream(state, request)

            # 4. Tools
            if outcome.state == StreamState.COMPLETED and outcome.message is not None:
                await self._handle_tool_calls(outcome.message)

            return outcome

    async def continue_message(
        self, conversation_id: str, options: Optional[SendOptions] = None
    ) -> StreamOutcome:
        """
        Continue the last assistant message, appending to it in place.

        Raises:
            ConversationNotFoundError: If the conversation is not loaded.
            StreamStateError: If there is no assistant message to continue.
        """
        options = options or SendOptions()
        state = self._store.get(conversation_id)

        async with state.lock:
            target = state.last_assistant()
            if target is None or target.metadata.get("error"):
                raise StreamStateError(
                    f"Nothing to continue in conversation {conversation_id}"
                )

            # Continuation reopens the message for the new stream
            strip_interruption_marker(target)
            target.frozen = False
            history = state.messages[: state.messages.index(target) + 1]

            directive = Message(
                id=str(uuid.uuid4()),
                role=Role.USER,
                content=CONTINUATION_DIRECTIVE,
                timestamp=time.time(),
            )
            options = dataclasses.replace(options, include_history=True)
            request = await self._build_request(conversation_id, options, history, directive)

            outcome = await self._run_stream(state, request, target=target)
            if outcome.state == StreamState.FAILED:
                target.frozen = True
            elif outcome.state == StreamState.COMPLETED:
                await self._handle_tool_calls(target)
            return outcome

    def cancel(self, conversation_id: str) -> bool:
        """
        Abort the active stream (request and backoff sleep). Content already
        applied is kept. Returns False when nothing was streaming.
        """
        if conversation_id not in self._store:
            return False
        state = self._store.get(conversation_id)
        if state.abort is None or state.abort.aborted:
            return False
        self._logger.info("Cancelling stream for %s", conversation_id)
        state.abort.abort()
        return True

    async def _build_request(
        self,
        conversation_id: str,
        options: SendOptions,
        history: List[Message],
        user_message: Message,
    ) -> CompletionRequest:
        model = options.model or self._settings.model
        system_context = await self._assembler.build_system_content(options, model)

        context_limit = self._settings.context_limit_for(model)
        compression = compress(
            history,
            self._settings.compression,
            context_limit,
            token_counter=self._token_counter,
            **system_context.token_costs(self._token_counter),
        )
        if compression.compression_applied:
            await self._bus.emit(
                EventTypes.CONTEXT_COMPRESSED,
                {
                    "conversation_id": conversation_id,
                    "strategy": self._settings.compression.strategy.value,
                    "original_tokens": compression.original_tokens,
                    "compressed_tokens": compression.compressed_tokens,
                    "dropped_count": compression.dropped_count,
                },
            )

        personalisation = self._settings.personalisation
        include_history = (
            options.include_history
            if options.include_history is not None
            else personalisation.remember_context
        )
        bundle = self._assembler.build_bundle(
            system_context, compression.messages, user_message, include_history
        )

        return CompletionRequest(
            model=model,
            messages=bundle.to_request_messages(),
            temperature=(
                options.temperature
                if options.temperature is not None
                else personalisation.temperature
            ),
            max_tokens=(
                options.max_tokens
                if options.max_tokens is not None
                else personalisation.max_tokens
            ),
        )

    async def _run_stream(
        self,
        state: ConversationState,
        request: CompletionRequest,
        target: Optional[Message] = None,
    ) -> StreamOutcome:
        abort = AbortHandle()
        state.abort = abort
        try:
            outcome = await self._client.stream(
                request,
                state.conversation_id,
                state.stream,
                abort,
                target=target,
                on_message_created=state.add,
            )
        finally:
            state.abort = None

        # Immutable once complete or cancelled; interrupted stays open for continuation
        message = outcome.message
        if message is not None and (
            outcome.state in (StreamState.COMPLETED, StreamState.CANCELLED)
            or message.metadata.get("error")
        ):
            message.frozen = True
        return outcome

    # --- Tools ---

    async def _handle_tool_calls(self, message: Message) -> List[ToolCall]:
        parsed = parse_tool_calls(message.content)
        # A continued message keeps the calls already gated for its earlier text
        gated = [
            (c.server_id, c.tool_name, c.parameters)
            for c in self._gate.calls_for_message(message.id)
        ]
        fresh = []
        for call in parsed:
            key = (call.server_id, call.tool_name, call.parameters)
            if key in gated:
                gated.remove(key)
            else:
                fresh.append(call)
        if fresh:
            calls = await self._gate.create_calls(fresh, message_id=message.id)
            await self._gate.run_pending([c.id for c in calls])
        return self._gate.calls_for_message(message.id)

    async def approve_tool_call(self, call_id: str) -> ToolCall:
        return await self._gate.approve(call_id)

    async def decline_tool_call(self, call_id: str) -> ToolCall:
        return await self._gate.decline(call_id)

    async def retry_tool_call(self, call_id: str) -> ToolCall:
        return await self._gate.retry(call_id)

    async def close(self) -> None:
        self._store.clear()
        await self._provider.close()
