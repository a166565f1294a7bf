from enum import Enum


class EventTypes(str, Enum):
    """
    Canonical event names emitted by the orchestrator.
    Using an Enum prevents typo bugs (e.g., 'message_update' vs 'message_updated').
    """

    # 1. System Events
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"

    # 2. Conversation Events
    MESSAGE_CREATED = "message_created"
    MESSAGE_UPDATED = "message_updated"
    STREAM_CHUNK = "stream_chunk"
    STREAM_STATE_CHANGED = "stream_state_changed"
    RESPONSE_COMPLETE = "response_complete"
    RETRY_SCHEDULED = "retry_scheduled"

    # 3. Tool Execution Events
    TOOL_CALL_CREATED = "tool_call_created"
    TOOL_CALL_UPDATED = "tool_call_updated"
    TOOL_CONFIRMATION_REQUESTED = "tool_confirmation_requested"

    # 4. Context Events
    CONTEXT_COMPRESSED = "context_compressed"
    ATTACHMENT_FAILED = "attachment_failed"
    CONVERSATION_EVICTED = "conversation_evicted"
