from typing import Dict, Optional, Set

from aimate_chat.agent.structs import StreamState, ToolCallStatus
from aimate_chat.exceptions.stream import StreamStateError
from aimate_chat.exceptions.tools import ToolStateError

# idle -> sending -> streaming -> {completed | failed | interrupted}
# A retry re-enters sending from sending; retries never start once content
# has streamed. Cancel is reachable from any live state.
STREAM_TRANSITIONS: Dict[StreamState, Set[StreamState]] = {
    StreamState.IDLE: {StreamState.SENDING, StreamState.CANCELLED},
    StreamState.SENDING: {
        StreamState.STREAMING,
        StreamState.SENDING,
        StreamState.COMPLETED,
        StreamState.FAILED,
        StreamState.CANCELLED,
    },
    StreamState.STREAMING: {
        StreamState.COMPLETED,
        StreamState.FAILED,
        StreamState.INTERRUPTED,
        StreamState.CANCELLED,
    },
    # Terminal states reset to idle for the next send
    StreamState.COMPLETED: {StreamState.IDLE},
    StreamState.FAILED: {StreamState.IDLE},
    StreamState.INTERRUPTED: {StreamState.IDLE},
    StreamState.CANCELLED: {StreamState.IDLE},
}

# Monotonic; the only back-edge is approve (awaiting_approval -> pending).
TOOL_CALL_TRANSITIONS: Dict[ToolCallStatus, Set[ToolCallStatus]] = {
    ToolCallStatus.AWAITING_APPROVAL: {
        ToolCallStatus.PENDING,
        ToolCallStatus.DECLINED,
    },
    ToolCallStatus.PENDING: {ToolCallStatus.RUNNING, ToolCallStatus.FAILED},
    ToolCallStatus.RUNNING: {ToolCallStatus.COMPLETED, ToolCallStatus.FAILED},
    ToolCallStatus.COMPLETED: set(),
    ToolCallStatus.FAILED: set(),
    ToolCallStatus.DECLINED: set(),
}


class StreamStateMachine:
    """
    Enforces valid stream state transitions for one conversation.
    Prevents invalid jumps (e.g., IDLE -> STREAMING without SENDING).
    """

    def __init__(self):
        self._current_state = StreamState.IDLE

    @property
    def current(self) -> StreamState:
        return self._current_state

    @property
    def is_streaming(self) -> bool:
        return self._current_state in (StreamState.SENDING, StreamState.STREAMING)

    def transition_to(self, new_state: StreamState) -> StreamState:
        """
        Attempts to transition to a new state and returns the previous one.
        Raises StreamStateError if the transition is illegal.
        """
        previous = self._current_state
        if new_state not in STREAM_TRANSITIONS[previous]:
            raise StreamStateError(
                f"Invalid stream state transition: {previous.value} -> {new_state.value}"
            )
        self._current_state = new_state
        return previous

    def reset(self) -> None:
        """Back to idle from a terminal state. No-op when already idle."""
        if self._current_state != StreamState.IDLE:
            self.transition_to(StreamState.IDLE)


def check_tool_transition(
    current: ToolCallStatus,
    requested: ToolCallStatus,
    call_id: Optional[str] = None,
) -> None:
    """Raises ToolStateError if ``current -> requested`` is not allowed."""
    if requested not in TOOL_CALL_TRANSITIONS[current]:
        raise ToolStateError(
            f"Invalid tool call transition: {current.value} -> {requested.value}",
            call_id=call_id,
            current=current,
            requested=requested,
        )
