"""aiMate tool plumbing"""

from .base import ToolProvider
from .local import CallableToolProvider
from .registry import ToolRegistry
from .validation import validate_parameters

__all__ = ["ToolProvider", "CallableToolProvider", "ToolRegistry", "validate_parameters"]
