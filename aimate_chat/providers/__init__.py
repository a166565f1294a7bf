from .base import BaseProvider
from .openai_compat import OpenAICompatibleProvider

__all__ = ["BaseProvider", "OpenAICompatibleProvider"]
