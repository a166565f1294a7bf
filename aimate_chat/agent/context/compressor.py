#!/usr/bin/env python3
"""
Context Compressor Module
=========================
Trims conversation history to fit the model's context budget.

Pure: inputs are never mutated and the result is a fresh CompressionResult.
Relative order is always preserved and the most recent
``preserve_recent_messages`` entries are always kept verbatim.
"""

import logging
import math
import re
from typing import List, Optional, Sequence

from aimate_chat.agent.structs import CompressionResult, CompressionStrategy, Message, Role
from aimate_chat.config.settings import CompressionSettings
from aimate_chat.utils.token_estimation import TokenCounter, count_message_tokens

logger = logging.getLogger("ContextCompressor")

LOW_VALUE_MAX_CHARS = 50

# Acknowledgments and fillers that carry no information for the model.
LOW_VALUE_PATTERNS = [
    re.compile(
        r"^(ok|okay|sure|thanks|thank you|got it|understood|right|yes|no|yep|nope|k|kk)\.?$",
        re.IGNORECASE,
    ),
    re.compile(
        r"^(sounds good|perfect|great|awesome|cool|nice|good|fine|alright)\.?$",
        re.IGNORECASE,
    ),
    re.compile(r"^(i see|ah|oh|hmm|hm|mhm|uh huh)\.?$", re.IGNORECASE),
    re.compile("^(\U0001F44D|\U0001F44C|\u2705|\U0001F64F|\U0001F60A|\U0001F914|\U0001F4AF)$"),
]


def is_low_value(content: str) -> bool:
    """Short acknowledgment such as "ok", "thanks." or a lone emoji."""
    trimmed = (content or "").strip()
    if len(trimmed) > LOW_VALUE_MAX_CHARS:
        return False
    return any(pattern.match(trimmed) for pattern in LOW_VALUE_PATTERNS)


def _result(
    original: Sequence[Message],
    kept: List[Message],
    original_tokens: int,
    token_counter: Optional[TokenCounter],
) -> CompressionResult:
    return CompressionResult(
        messages=kept,
        original_tokens=original_tokens,
        compressed_tokens=count_message_tokens(kept, token_counter),
        dropped_count=len(original) - len(kept),
        compression_applied=len(kept) < len(original),
    )


def _unchanged(messages: Sequence[Message], tokens: int) -> CompressionResult:
    return CompressionResult(
        messages=list(messages),
        original_tokens=tokens,
        compressed_tokens=tokens,
        dropped_count=0,
        compression_applied=False,
    )


def drop_low_value(
    messages: Sequence[Message],
    preserve_count: int,
    token_counter: Optional[TokenCounter] = None,
) -> CompressionResult:
    """Drop low-value user messages outside the preserved recent tail."""
    original_tokens = count_message_tokens(messages, token_counter)
    if len(messages) <= preserve_count:
        return _unchanged(messages, original_tokens)

    split = len(messages) - preserve_count
    compressible, preserved = list(messages[:split]), list(messages[split:])

    kept = [
        msg for msg in compressible
        if not (msg.role == Role.USER and is_low_value(msg.content))
    ]
    return _result(messages, kept + preserved, original_tokens, token_counter)


def sliding_window(
    messages: Sequence[Message],
    target_tokens: int,
    preserve_count: int,
    token_counter: Optional[TokenCounter] = None,
) -> CompressionResult:
    """Remove the oldest messages until under ``target_tokens``."""
    original_tokens = count_message_tokens(messages, token_counter)
    if original_tokens <= target_tokens:
        return _unchanged(messages, original_tokens)

    kept = list(messages)
    while (
        count_message_tokens(kept, token_counter) > target_tokens
        and len(kept) > preserve_count
    ):
        kept.pop(0)

    return _result(messages, kept, original_tokens, token_counter)


def hybrid(
    messages: Sequence[Message],
    target_tokens: int,
    preserve_count: int,
    token_counter: Optional[TokenCounter] = None,
) -> CompressionResult:
    """Drop low-value messages first, then slide the window if still over."""
    first = drop_low_value(messages, preserve_count, token_counter)
    if first.compressed_tokens <= target_tokens:
        return first

    second = sliding_window(first.messages, target_tokens, preserve_count, token_counter)
    return CompressionResult(
        messages=second.messages,
        original_tokens=first.original_tokens,
        compressed_tokens=second.compressed_tokens,
        dropped_count=len(messages) - len(second.messages),
        compression_applied=len(second.messages) < len(messages),
    )


def compress(
    messages: Sequence[Message],
    settings: CompressionSettings,
    context_limit: int,
    token_counter: Optional[TokenCounter] = None,
    system_prompt_tokens: int = 0,
    knowledge_tokens: int = 0,
    memory_tokens: int = 0,
) -> CompressionResult:
    """
    Fit ``messages`` into what is left of ``context_limit`` after the
    reserved system/knowledge/memory tokens.

    Args:
        messages: Conversation history, oldest first.
        settings: Strategy, threshold percentage and preserve count.
        context_limit: Model context window in tokens.
        token_counter: Text -> tokens; defaults to the heuristic estimator.
        system_prompt_tokens: Reserved for the system prompt.
        knowledge_tokens: Reserved for attachment blocks.
        memory_tokens: Reserved for the memory block.

    Returns:
        CompressionResult: Never aliases the input list.
    """
    # 1. Budget
    reserved = system_prompt_tokens + knowledge_tokens + memory_tokens
    budget = context_limit - reserved
    threshold = math.floor(budget * settings.threshold_percent / 100)
    current = count_message_tokens(messages, token_counter)

    # 2. Nothing to do
    if not settings.enabled or current <= threshold:
        return _unchanged(messages, current)

    # 3. Strategy
    preserve = settings.preserve_recent_messages
    strategy = settings.strategy

    if strategy == CompressionStrategy.DROP_LOW_VALUE:
        result = drop_low_value(messages, preserve, token_counter)
    elif strategy == CompressionStrategy.SLIDING_WINDOW:
        result = sliding_window(messages, threshold, preserve, token_counter)
    else:
        # SUMMARIZE needs a model round-trip; it degrades to HYBRID.
        result = hybrid(messages, threshold, preserve, token_counter)

    if result.compression_applied:
        logger.info(
            "Compressed history with %s: %d -> %d tokens, dropped %d messages",
            strategy.value,
            result.original_tokens,
            result.compressed_tokens,
            result.dropped_count,
        )
    return result
