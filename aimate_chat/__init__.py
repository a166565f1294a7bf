"""
aiMate chat orchestrator: context assembly, streaming completions with
retry/resume, gated tool execution and history compression.
"""

__version__ = "0.1.0"
