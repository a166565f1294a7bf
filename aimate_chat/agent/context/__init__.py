from .assembler import AttachmentSource, ContextAssembler, SystemContext
from .compressor import compress
from .memory import build_memory_context
from .store import ConversationState, ConversationStore

__all__ = [
    "AttachmentSource",
    "ContextAssembler",
    "SystemContext",
    "compress",
    "build_memory_context",
    "ConversationState",
    "ConversationStore",
]
