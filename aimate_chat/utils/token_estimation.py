#!/usr/bin/env python3
"""
Token Estimation for aiMate
===========================

Heuristic token counting without tokenizer dependencies. Accuracy is
"close enough" for budget decisions; the compressor only needs a stable,
monotonic estimate.
"""

import math
import re
from typing import Callable, Dict, Optional, Sequence, Union

from aimate_chat.agent.structs import Message

# Pre-compiled at module level; these run on every message of every send.
_CJK_CHARS_PATTERN = re.compile(r"[\u3040-\u30ff\u4e00-\u9fff\uac00-\ud7af]")
_CODE_CHARS_PATTERN = re.compile(r"[{}()\[\];,.=<>]")
_WHITESPACE_PATTERN = re.compile(r"\s")

# Every chat message costs a few tokens for role/framing.
MESSAGE_OVERHEAD_TOKENS = 4

TokenCounter = Callable[[str], int]


class HeuristicTokenEstimator:
    """
    Character-based estimator with adjustments for code and CJK text.
    """

    def __init__(self):
        self.chars_per_token = 4.0
        self.code_multiplier = 1.2
        self.cjk_tokens_per_char = 0.75
        self.whitespace_factor = 0.9

    def estimate_tokens(self, text: str) -> int:
        if not text:
            return 0

        char_count = len(text)
        cjk_chars = len(_CJK_CHARS_PATTERN.findall(text))
        code_chars = len(_CODE_CHARS_PATTERN.findall(text))
        whitespace_chars = len(_WHITESPACE_PATTERN.findall(text))

        # 1. Latin text
        latin_chars = char_count - cjk_chars
        estimate = latin_chars / self.chars_per_token

        # 2. CJK characters are close to one token each
        estimate += cjk_chars * self.cjk_tokens_per_char

        # 3. Punctuation-heavy content tokenizes more densely
        if code_chars > char_count * 0.05:
            estimate *= self.code_multiplier

        # 4. Runs of whitespace compress
        if whitespace_chars > char_count * 0.2:
            estimate *= self.whitespace_factor

        return max(1, int(math.ceil(estimate)))


_default_estimator = HeuristicTokenEstimator()


def count_tokens(text: str) -> int:
    """Estimate tokens for ``text`` with the default estimator."""
    return _default_estimator.estimate_tokens(text)


def count_message_tokens(
    messages: Sequence[Union[Message, Dict[str, str]]],
    token_counter: Optional[TokenCounter] = None,
) -> int:
    """
    Total tokens for a message list, including per-message overhead.

    Accepts ``Message`` objects or ``{role, content}`` payload dicts.
    """
    counter = token_counter or count_tokens
    total = 0
    for message in messages:
        content = message["content"] if isinstance(message, dict) else message.content
        total += counter(content or "") + MESSAGE_OVERHEAD_TOKENS
    return total
