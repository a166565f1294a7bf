"""
Streaming Logic
===============
Drives one completion stream: retries, delta application, interruption,
cancellation and continuation.

State: idle -> sending -> streaming -> {completed | failed | interrupted},
or cancelled when the shared AbortHandle fires.
"""

import asyncio
import logging
import random
import time
import uuid
from typing import Callable, Optional

from aimate_chat.agent.core.state_machine import StreamStateMachine
from aimate_chat.agent.structs import (
    CompletionRequest,
    Message,
    RetryPolicy,
    Role,
    StreamOutcome,
    StreamState,
)
from aimate_chat.exceptions import (
    AimateBaseError,
    ProviderModelNotFoundError,
    StreamCancelledError,
    StreamInterruptedError,
)
from aimate_chat.protocol.bus import EventBus
from aimate_chat.protocol.events import EventTypes
from aimate_chat.providers.base import BaseProvider
from aimate_chat.utils.retry import AbortHandle, build_retrying

INTERRUPTION_MARKER = "\n\n[Response interrupted]"
CONTINUATION_DIRECTIVE = (
    "Continue your previous response exactly where it stopped. "
    "Do not repeat any text you already wrote."
)

FAILURE_EXPLANATIONS = {
    "authentication": "Authentication with the model server failed. Check the API key for this connection.",
    "model_not_found": "The model '{model}' was not found on the model server.",
    "timeout": "The model server did not respond in time. Please try again.",
    "network": "Could not reach the model server. Check your connection and the server URL.",
    "server": "The model server returned an error. Please try again.",
}


def classify_error(error: BaseException) -> str:
    """Short failure category: authentication, model_not_found, timeout, network, server."""
    category = getattr(error, "category", None)
    return category if category in FAILURE_EXPLANATIONS else "server"


def describe_failure(error: BaseException, model: str) -> str:
    """User-facing explanation for a failed stream, never a raw exception."""
    text = FAILURE_EXPLANATIONS[classify_error(error)].format(model=model)
    if isinstance(error, ProviderModelNotFoundError) and error.available_models:
        shown = ", ".join(error.available_models[:10])
        text += f" Available models: {shown}"
    return text


def strip_interruption_marker(message: Message) -> None:
    """Remove a trailing interruption marker before continuing a message."""
    if message.content.endswith(INTERRUPTION_MARKER):
        message.content = message.content[: -len(INTERRUPTION_MARKER)]
    message.metadata.pop("interrupted", None)


class StreamingCompletionClient:
    """
    Streams one request into an assistant message.

    The message is created on the first non-empty delta (or supplied as
    ``target`` when continuing) and mutated in place as deltas arrive.
    Provider errors never escape ``stream``; they end up in the outcome.
    """

    def __init__(
        self,
        provider: BaseProvider,
        retry_policy: RetryPolicy,
        bus: Optional[EventBus] = None,
        rng: Optional[random.Random] = None,
    ):
        self._provider = provider
        self._policy = retry_policy
        self._bus = bus
        self._rng = rng
        self._logger = logging.getLogger("StreamingCompletionClient")

    async def stream(
        self,
        request: CompletionRequest,
        conversation_id: str,
        state_machine: StreamStateMachine,
        abort: AbortHandle,
        target: Optional[Message] = None,
        on_message_created: Optional[Callable[[Message], None]] = None,
    ) -> StreamOutcome:
        """
        Run ``request`` to a terminal state.

        Args:
            request: The completion request (messages already assembled).
            conversation_id: Used for event payloads.
            state_machine: The conversation's stream state; reset to idle first.
            abort: Shared cancellation handle.
            target: Existing assistant message to append to (continuation).
            on_message_created: Called once when a new message is created.
        """
        message = target
        received = 0
        attempts = 0
        last_error: Optional[BaseException] = None

        async def _set_state(new_state: StreamState) -> None:
            previous = state_machine.transition_to(new_state)
            await self._emit(
                EventTypes.STREAM_STATE_CHANGED,
                {
                    "conversation_id": conversation_id,
                    "state": new_state,
                    "previous": previous,
                },
            )

        def _new_message(content: str = "") -> Message:
            created = Message(
                id=str(uuid.uuid4()),
                role=Role.ASSISTANT,
                content=content,
                timestamp=time.time(),
                model=request.model,
            )
            if on_message_created is not None:
                on_message_created(created)
            return created

        async def _attempt() -> None:
            nonlocal message, received, attempts
            abort.raise_if_aborted()
            attempts += 1
            await _set_state(StreamState.SENDING)

            try:
                async for delta in self._provider.stream_chat(request):
                    if not delta:
                        continue

                    # 1. First content: streaming starts, message exists
                    if received == 0:
                        await _set_state(StreamState.STREAMING)
                        if message is None:
                            message = _new_message()
                            await self._emit(
                                EventTypes.MESSAGE_CREATED,
                                {"conversation_id": conversation_id, "message": message},
                            )

                    # 2. Apply the delta in place
                    message.content += delta
                    received += len(delta)
                    await self._emit(
                        EventTypes.STREAM_CHUNK,
                        {
                            "conversation_id": conversation_id,
                            "message_id": message.id,
                            "chunk": delta,
                        },
                    )
                    await self._emit(
                        EventTypes.MESSAGE_UPDATED,
                        {"conversation_id": conversation_id, "message": message},
                    )
            except AimateBaseError as e:
                # Content already applied: never resend, keep what we have
                if received > 0:
                    raise StreamInterruptedError(
                        f"Stream interrupted after {received} characters: {e.message}",
                        received_chars=received,
                        original_error=e,
                    ) from e
                raise
            except Exception as e:
                if received > 0:
                    self._logger.debug("Unexpected error after content", exc_info=True)
                    raise StreamInterruptedError(
                        f"Stream interrupted after {received} characters: {e}",
                        received_chars=received,
                        original_error=e,
                    ) from e
                raise

        async def _guarded_attempt() -> None:
            # Own task per attempt so abort() can cancel the in-flight request
            task = asyncio.ensure_future(_attempt())
            abort.bind(task)
            try:
                await task
            except asyncio.CancelledError:
                if abort.aborted:
                    raise StreamCancelledError()
                raise
            finally:
                abort.unbind()

        async def _on_retry(retry_number: int, delay_seconds: float) -> None:
            self._logger.warning(
                "Retry %d/%d in %.2fs after: %s",
                retry_number,
                self._policy.max_retries,
                delay_seconds,
                last_error,
            )
            await self._emit(
                EventTypes.RETRY_SCHEDULED,
                {
                    "conversation_id": conversation_id,
                    "retry": retry_number,
                    "delay_seconds": delay_seconds,
                    "error": str(last_error),
                },
            )

        state_machine.reset()
        retrying = build_retrying(self._policy, abort, on_retry=_on_retry, rng=self._rng)

        try:
            async for attempt in retrying:
                with attempt:
                    try:
                        await _guarded_attempt()
                    except Exception as e:
                        last_error = e
                        raise

        except asyncio.CancelledError:
            # The caller itself was cancelled; leave the conversation usable
            if state_machine.is_streaming:
                state_machine.transition_to(StreamState.CANCELLED)
            raise

        except StreamCancelledError as e:
            return await self._finish_cancelled(
                conversation_id, _set_state, message, attempts, e
            )

        except StreamInterruptedError as e:
            message.content += INTERRUPTION_MARKER
            message.metadata["interrupted"] = True
            await _set_state(StreamState.INTERRUPTED)
            warning = f"Response interrupted after {e.received_chars} characters; partial content kept."
            self._logger.warning("%s (%s)", warning, e.original_error)
            await self._emit(
                EventTypes.MESSAGE_UPDATED,
                {"conversation_id": conversation_id, "message": message},
            )
            await self._emit(
                EventTypes.WARNING,
                {"conversation_id": conversation_id, "message": warning},
            )
            await self._complete(conversation_id, message, StreamState.INTERRUPTED)
            return StreamOutcome(
                state=StreamState.INTERRUPTED,
                message=message,
                error=e,
                warning=warning,
                attempts=attempts,
            )

        except Exception as e:  # pylint: disable=broad-exception-caught
            if not isinstance(e, AimateBaseError):
                self._logger.exception("Unexpected error while streaming")
            return await self._finish_failed(
                conversation_id, request, _set_state, message, _new_message, attempts, e
            )

        # Success
        await _set_state(StreamState.COMPLETED)
        warning = None
        if received == 0:
            warning = "The model returned an empty response."
            await self._emit(
                EventTypes.WARNING,
                {"conversation_id": conversation_id, "message": warning},
            )
        await self._complete(conversation_id, message, StreamState.COMPLETED)
        return StreamOutcome(
            state=StreamState.COMPLETED,
            message=message,
            warning=warning,
            attempts=attempts,
        )

    async def _finish_cancelled(self, conversation_id, set_state, message, attempts, error):
        # Content already applied stays; no rollback
        await set_state(StreamState.CANCELLED)
        if message is not None:
            message.metadata["cancelled"] = True
        self._logger.info("Stream cancelled for %s", conversation_id)
        await self._complete(conversation_id, message, StreamState.CANCELLED)
        return StreamOutcome(
            state=StreamState.CANCELLED, message=message, error=error, attempts=attempts
        )

    async def _finish_failed(
        self, conversation_id, request, set_state, message, new_message, attempts, error
    ):
        await set_state(StreamState.FAILED)
        category = classify_error(error)
        explanation = describe_failure(error, request.model)

        if message is None:
            # Surface the failure as an assistant message
            message = new_message(explanation)
            message.metadata.update({"error": True, "error_category": category})
            await self._emit(
                EventTypes.MESSAGE_CREATED,
                {"conversation_id": conversation_id, "message": message},
            )

        self._logger.error("Stream failed (%s): %s", category, error)
        await self._emit(
            EventTypes.ERROR,
            {
                "conversation_id": conversation_id,
                "message": explanation,
                "category": category,
            },
        )
        await self._complete(conversation_id, message, StreamState.FAILED)
        return StreamOutcome(
            state=StreamState.FAILED, message=message, error=error, attempts=attempts
        )

    async def _complete(
        self, conversation_id: str, message: Optional[Message], state: StreamState
    ) -> None:
        await self._emit(
            EventTypes.RESPONSE_COMPLETE,
            {
                "conversation_id": conversation_id,
                "message_id": message.id if message else "",
                "state": state,
            },
        )

    async def _emit(self, event_type: EventTypes, data) -> None:
        if self._bus is not None:
            await self._bus.emit(event_type, data)
