from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, Optional, List

# --- 0. Enumerations ---


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class StreamState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    INTERRUPTED = "interrupted"
    CANCELLED = "cancelled"


class ToolCallStatus(str, Enum):
    PENDING = "pending"
    AWAITING_APPROVAL = "awaiting_approval"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    DECLINED = "declined"

    @property
    def is_terminal(self) -> bool:
        return self in (
            ToolCallStatus.COMPLETED,
            ToolCallStatus.FAILED,
            ToolCallStatus.DECLINED,
        )


class ToolPermission(str, Enum):
    NEVER = "never"
    ASK = "ask"
    ALWAYS = "always"


class CompressionStrategy(str, Enum):
    DROP_LOW_VALUE = "drop-low-value"
    SLIDING_WINDOW = "sliding-window"
    HYBRID = "hybrid"
    SUMMARIZE = "summarize"


# --- 1. Conversation ---


@dataclass
class Message:
    """
    Atomic conversation unit.

    Mutated in place while its stream is live; the orchestrator sets
    ``frozen`` once the stream completes or is cancelled.
    """

    id: str
    role: Role
    content: str
    timestamp: float
    model: Optional[str] = None
    token_count: Optional[int] = None
    cost: Optional[float] = None
    attachments: Optional[List[Dict[str, Any]]] = None
    structured_content: Optional[Any] = None
    feedback: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    frozen: bool = False

    def to_payload(self) -> Dict[str, str]:
        """The ``{role, content}`` shape sent to the model."""
        return {"role": self.role.value, "content": self.content}


@dataclass(frozen=True)
class ContextBundle:
    """The exact payload sent to the model. Built fresh for every send."""

    system_content: str
    messages: List[Dict[str, str]]

    def to_request_messages(self) -> List[Dict[str, str]]:
        """System content (when present) followed by the conversation messages."""
        if not self.system_content:
            return list(self.messages)
        return [{"role": Role.SYSTEM.value, "content": self.system_content}] + list(
            self.messages
        )


@dataclass(frozen=True)
class CompressionResult:
    """Output of the context compressor. Never mutated after creation."""

    messages: List[Message]
    original_tokens: int
    compressed_tokens: int
    dropped_count: int
    compression_applied: bool


# --- 2. Network ---


@dataclass(frozen=True)
class RetryPolicy:
    """Pure configuration for the stream retry loop."""

    max_retries: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 10000
    jitter_ms: int = 500


@dataclass
class CompletionRequest:
    """One ``/chat/completions`` request."""

    model: str
    messages: List[Dict[str, str]]
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": self.messages,
            "stream": True,
        }
        if self.temperature is not None:
            payload["temperature"] = self.temperature
        if self.max_tokens is not None:
            payload["max_tokens"] = self.max_tokens
        return payload


@dataclass
class StreamOutcome:
    """How one stream (including its retries) ended."""

    state: StreamState
    message: Optional[Message] = None
    error: Optional[Exception] = None
    warning: Optional[str] = None
    attempts: int = 0


# --- 3. Tool Lifecycle ---


@dataclass(frozen=True)
class ParsedToolCall:
    """A tool invocation found in model output."""

    tool_name: str
    server_id: str
    parameters: Dict[str, Any]


@dataclass(frozen=True)
class ToolDefinition:
    """What a tool provider advertises for one tool."""

    server_id: str
    name: str
    description: str = ""
    parameter_schema: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolExecutionResult:
    """The outcome reported by a tool provider."""

    success: bool
    result: Any = None
    error_message: Optional[str] = None
    execution_time_ms: float = 0.0


@dataclass(frozen=True)
class ToolCall:
    """
    One gated tool invocation.

    Records are immutable; updates replace the record in the registry by id.
    """

    id: str
    server_id: str
    tool_name: str
    parameters: Dict[str, Any]
    status: ToolCallStatus
    permission: ToolPermission
    started_at: float
    result: Optional[ToolExecutionResult] = None
    error: Optional[str] = None
    completed_at: Optional[float] = None
    message_id: Optional[str] = None


# --- 4. Requests ---


@dataclass
class SendOptions:
    """Everything a caller can attach to one send."""

    model: Optional[str] = None
    workspace_id: Optional[str] = None
    system_prompt: Optional[str] = None
    knowledge_ids: List[str] = field(default_factory=list)
    note_ids: List[str] = field(default_factory=list)
    file_ids: List[str] = field(default_factory=list)
    chat_ids: List[str] = field(default_factory=list)
    webpage_urls: List[str] = field(default_factory=list)
    memory_context: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    # None follows personalisation.remember_context
    include_history: Optional[bool] = None
    variables: Dict[str, str] = field(default_factory=dict)


@dataclass
class Memory:
    """A remembered fact about the user."""

    content: str
    category: str = "context"  # "preference", "fact", "context"


@dataclass
class Note:
    title: str
    content: str


@dataclass
class FileInfo:
    file_name: str
    file_type: str
    file_size: int
    url: str
