# Test suite for retry, token and model-limit helpers

import asyncio
import random
import time

import pytest

from aimate_chat.agent.structs import Message, RetryPolicy, Role
from aimate_chat.exceptions import (
    ProviderAuthenticationError,
    ProviderConnectionError,
    ProviderServerError,
    ProviderTimeoutError,
    StreamInterruptedError,
)
from aimate_chat.utils.model_limits import DEFAULT_CONTEXT_LIMIT, get_context_limit
from aimate_chat.utils.retry import AbortHandle, compute_backoff_ms, is_retryable
from aimate_chat.utils.token_estimation import (
    MESSAGE_OVERHEAD_TOKENS,
    count_message_tokens,
    count_tokens,
)


class TestBackoff:
    def test_exponential_growth_without_jitter(self):
        """Delays double per retry"""
        policy = RetryPolicy(base_delay_ms=1000, max_delay_ms=100000, jitter_ms=0)

        assert [compute_backoff_ms(policy, i) for i in range(4)] == [1000, 2000, 4000, 8000]

    def test_capped_at_max_delay(self):
        """Delays never exceed max_delay_ms, jitter included"""
        policy = RetryPolicy(base_delay_ms=1000, max_delay_ms=10000, jitter_ms=500)

        assert compute_backoff_ms(policy, 10, random.Random(1)) == 10000

    def test_jitter_is_bounded(self):
        """Jitter adds between 0 and jitter_ms"""
        policy = RetryPolicy(base_delay_ms=100, max_delay_ms=100000, jitter_ms=50)
        rng = random.Random(7)

        for _ in range(50):
            assert 100 <= compute_backoff_ms(policy, 0, rng) <= 150

    def test_retryable_classification(self):
        """Transport and 5xx errors are retryable; auth and interruptions are not"""
        assert is_retryable(ProviderConnectionError("reset"))
        assert is_retryable(ProviderTimeoutError("slow"))
        assert is_retryable(ProviderServerError("boom", status_code=502))
        assert not is_retryable(ProviderAuthenticationError("no", status_code=401))
        assert not is_retryable(StreamInterruptedError("dropped", received_chars=5))
        assert not is_retryable(ValueError("x"))


class TestAbortHandle:
    @pytest.mark.asyncio
    async def test_abort_wakes_sleep(self):
        """An abort ends a backoff sleep early"""
        handle = AbortHandle()

        async def abort_soon():
            await asyncio.sleep(0.01)
            handle.abort()

        started = time.monotonic()
        await asyncio.gather(handle.sleep(10), abort_soon())

        assert time.monotonic() - started < 5
        assert handle.aborted

    @pytest.mark.asyncio
    async def test_abort_cancels_bound_task(self):
        """The bound in-flight task is cancelled by abort"""
        handle = AbortHandle()
        task = asyncio.ensure_future(asyncio.sleep(10))
        handle.bind(task)

        handle.abort()

        with pytest.raises(asyncio.CancelledError):
            await task


class TestTokens:
    def test_estimates_are_positive_and_monotonic(self):
        """Longer text never costs fewer tokens"""
        assert count_tokens("") == 0
        assert count_tokens("hi") == 1
        assert count_tokens("word " * 100) > count_tokens("word " * 10)

    def test_rates_for_latin_and_cjk_text(self):
        """Four Latin characters per token; CJK characters cost most of a token each"""
        assert count_tokens("a" * 40) == 10
        assert count_tokens("中文" * 5) == 8

    def test_message_overhead(self):
        """Each message adds a fixed framing cost"""
        messages = [
            Message(id="1", role=Role.USER, content="one two", timestamp=0.0),
            {"role": "assistant", "content": "three"},
        ]

        total = count_message_tokens(messages, lambda text: len(text.split()))

        assert total == 3 + 2 * MESSAGE_OVERHEAD_TOKENS


class TestModelLimits:
    def test_lookup(self):
        """Exact ids, longest contained keys and unknown models"""
        assert get_context_limit("gpt-4") == 8192
        assert get_context_limit("GPT-4o-mini-2024-07-18") == 128000
        assert get_context_limit("meta-llama/llama-3.1-70b-instruct") == 128000
        assert get_context_limit("my-custom-model") == DEFAULT_CONTEXT_LIMIT
        assert get_context_limit("") == DEFAULT_CONTEXT_LIMIT
