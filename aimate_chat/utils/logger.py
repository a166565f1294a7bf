import logging
import sys
from typing import Any, Dict, List

from aimate_chat.protocol.bus import EventBus
from aimate_chat.protocol.events import EventTypes

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _value(state: Any) -> Any:
    return getattr(state, "value", state)


def setup_logging(level: str = "INFO") -> None:
    """Configure the root handler once. Safe to call repeatedly."""
    root = logging.getLogger()
    root.setLevel(level)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)


class EventLogger:
    """
    Bus observer that turns orchestrator events into log lines.

    - Stream chunks are buffered per message and flushed as one line when the
      response completes, to keep logs readable.
    - Tool calls are logged on every status change; results are not.
    """

    def __init__(self, bus: EventBus):
        self._bus = bus
        self._buffers: Dict[str, List[str]] = {}
        self._logger = logging.getLogger("aiMate")

    async def start(self):
        """Subscribe to the bus."""
        # Operational Events
        await self._bus.subscribe(EventTypes.INFO, self._log_info)
        await self._bus.subscribe(EventTypes.WARNING, self._log_warning)
        await self._bus.subscribe(EventTypes.ERROR, self._log_error)
        await self._bus.subscribe(EventTypes.STREAM_STATE_CHANGED, self._log_state)
        await self._bus.subscribe(EventTypes.RETRY_SCHEDULED, self._log_retry)

        # Tool Events
        await self._bus.subscribe(EventTypes.TOOL_CALL_CREATED, self._log_tool)
        await self._bus.subscribe(EventTypes.TOOL_CALL_UPDATED, self._log_tool)

        # The stream aggregator
        await self._bus.subscribe(EventTypes.STREAM_CHUNK, self._handle_chunk)
        await self._bus.subscribe(
            EventTypes.RESPONSE_COMPLETE, self._handle_response_end
        )

        # Context
        await self._bus.subscribe(EventTypes.CONTEXT_COMPRESSED, self._log_context)
        await self._bus.subscribe(EventTypes.ATTACHMENT_FAILED, self._log_attachment)

    # --- Handlers ---

    async def _log_info(self, data: Dict[str, Any]):
        self._logger.info(data.get("message", str(data)))

    async def _log_warning(self, data: Dict[str, Any]):
        self._logger.warning(data.get("message", str(data)))

    async def _log_error(self, data: Dict[str, Any]):
        self._logger.error("ERROR: %s", data.get("message", str(data)))

    async def _log_state(self, data: Dict[str, Any]):
        self._logger.debug(
            "STATE: %s -> %s (%s)",
            _value(data.get("previous")),
            _value(data.get("state")),
            data.get("conversation_id"),
        )

    async def _log_retry(self, data: Dict[str, Any]):
        self._logger.info(
            "RETRY: attempt %s in %.2fs after %s",
            data.get("retry"),
            data.get("delay_seconds", 0.0),
            data.get("error"),
        )

    async def _log_tool(self, data: Dict[str, Any]):
        call = data.get("tool_call")
        if call is None:
            return
        self._logger.info(
            "TOOL: %s/%s [%s] %s",
            call.server_id,
            call.tool_name,
            call.id,
            call.status.value,
        )

    async def _log_context(self, data: Dict[str, Any]):
        self._logger.info(
            "CONTEXT: compressed %s -> %s tokens, dropped %s messages",
            data.get("original_tokens"),
            data.get("compressed_tokens"),
            data.get("dropped_count"),
        )

    async def _log_attachment(self, data: Dict[str, Any]):
        self._logger.warning(
            "ATTACHMENT: %s %s unavailable: %s",
            data.get("source"),
            data.get("item_id"),
            data.get("error"),
        )

    # --- The Aggregator Logic ---

    async def _handle_chunk(self, data: Dict[str, Any]):
        """Silent buffer. Doesn't print."""
        chunk = data.get("chunk", "")
        if chunk:
            self._buffers.setdefault(data.get("message_id", ""), []).append(chunk)

    async def _handle_response_end(self, data: Dict[str, Any]):
        """Flushes the buffer to the log."""
        message_id = data.get("message_id", "")
        full_text = "".join(self._buffers.pop(message_id, []))
        self._logger.info(
            "MODEL [%s] %s: %s", message_id, _value(data.get("state", "")), full_text
        )
