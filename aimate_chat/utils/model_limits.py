"""
Known context windows per model id.

Lookup is exact first, then the longest table key contained in the model id
(so "gpt-4o-mini-2024-07-18" resolves to "gpt-4o-mini", not "gpt-4").
"""

from typing import Dict

DEFAULT_CONTEXT_LIMIT = 8192

MODEL_CONTEXT_LIMITS: Dict[str, int] = {
    # OpenAI
    "gpt-4": 8192,
    "gpt-4-32k": 32768,
    "gpt-4-turbo": 128000,
    "gpt-4o": 128000,
    "gpt-4o-mini": 128000,
    "gpt-3.5-turbo": 16385,
    "o1": 200000,
    # Anthropic
    "claude-3-opus": 200000,
    "claude-3-sonnet": 200000,
    "claude-3-haiku": 200000,
    "claude-3-5-sonnet": 200000,
    "claude-3.5-sonnet": 200000,
    "claude-2": 100000,
    # Google
    "gemini-pro": 32768,
    "gemini-1.5-pro": 1000000,
    "gemini-1.5-flash": 1000000,
    # Meta
    "llama-3": 8192,
    "llama-3.1": 128000,
    "llama-3.2": 128000,
    "llama-2": 4096,
    # Mistral
    "mistral": 32768,
    "mistral-large": 128000,
    "mixtral": 32768,
    # Cohere
    "command": 4096,
    "command-r": 128000,
    # Misc local models
    "qwen": 32768,
    "phi": 4096,
    "deepseek": 32768,
}


def get_context_limit(model_id: str) -> int:
    """Context window for ``model_id``; ``DEFAULT_CONTEXT_LIMIT`` when unknown."""
    if not model_id:
        return DEFAULT_CONTEXT_LIMIT

    normalized = model_id.lower()
    if normalized in MODEL_CONTEXT_LIMITS:
        return MODEL_CONTEXT_LIMITS[normalized]

    best_key = ""
    for key in MODEL_CONTEXT_LIMITS:
        if key in normalized and len(key) > len(best_key):
            best_key = key

    if best_key:
        return MODEL_CONTEXT_LIMITS[best_key]
    return DEFAULT_CONTEXT_LIMIT
