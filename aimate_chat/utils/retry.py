"""
Retry utilities for transient model-server errors.

The stream runner drives ``build_retrying`` directly so that it can share an
``AbortHandle`` with the backoff sleep; one-shot calls (model listing,
connection checks) use the ``retry_on_transient_errors`` decorator.
"""

import asyncio
import random
from typing import Awaitable, Callable, Optional

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.stop import stop_base
from tenacity.wait import wait_base

from aimate_chat.agent.structs import RetryPolicy
from aimate_chat.exceptions.stream import StreamCancelledError

RetryHook = Callable[[int, float], Awaitable[None]]


def is_retryable(error: BaseException) -> bool:
    """Transient errors carry ``retryable = True`` (see the exception classes)."""
    return bool(getattr(error, "retryable", False))


def compute_backoff_ms(
    policy: RetryPolicy, retry_index: int, rng: Optional[random.Random] = None
) -> float:
    """
    Delay before retry number ``retry_index`` (0-based).

    ``min(max_delay_ms, base_delay_ms * 2**retry_index + U(0, jitter_ms))``
    """
    uniform = (rng or random).uniform
    jitter = uniform(0, policy.jitter_ms) if policy.jitter_ms > 0 else 0.0
    delay = policy.base_delay_ms * (2 ** retry_index) + jitter
    return min(float(policy.max_delay_ms), delay)


class AbortHandle:
    """
    Cooperative cancellation token shared by a stream and its retry loop.

    ``abort()`` wakes any backoff sleep and cancels the bound in-flight task.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    def abort(self) -> None:
        self._event.set()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def bind(self, task: asyncio.Task) -> None:
        self._task = task
        if self.aborted and not task.done():
            task.cancel()

    def unbind(self) -> None:
        self._task = None

    def raise_if_aborted(self) -> None:
        if self.aborted:
            raise StreamCancelledError()

    async def sleep(self, seconds: float) -> None:
        """Sleep for ``seconds`` or until aborted, whichever comes first."""
        if seconds <= 0 or self.aborted:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass


class wait_capped_exponential_jitter(wait_base):
    """tenacity wait strategy implementing ``compute_backoff_ms``."""

    def __init__(self, policy: RetryPolicy, rng: Optional[random.Random] = None):
        self.policy = policy
        self.rng = rng

    def __call__(self, retry_state: RetryCallState) -> float:
        retry_index = max(0, retry_state.attempt_number - 1)
        return compute_backoff_ms(self.policy, retry_index, self.rng) / 1000.0


class stop_when_aborted(stop_base):
    def __init__(self, handle: AbortHandle):
        self.handle = handle

    def __call__(self, retry_state: RetryCallState) -> bool:
        return self.handle.aborted


def build_retrying(
    policy: RetryPolicy,
    abort: Optional[AbortHandle] = None,
    on_retry: Optional[RetryHook] = None,
    rng: Optional[random.Random] = None,
) -> AsyncRetrying:
    """
    Build the retry controller for one stream.

    Args:
        policy: Retry limits and backoff shape.
        abort: Shared cancellation handle; stops retrying and wakes sleeps.
        on_retry: Awaited as ``on_retry(retry_number, delay_seconds)`` before
            each backoff sleep.
        rng: Random source for jitter (tests pass a seeded one).
    """
    handle = abort or AbortHandle()
    retries_scheduled = 0

    async def _sleep(seconds: float) -> None:
        nonlocal retries_scheduled
        retries_scheduled += 1
        if on_retry is not None:
            await on_retry(retries_scheduled, seconds)
        await handle.sleep(seconds)

    return AsyncRetrying(
        stop=stop_after_attempt(policy.max_retries + 1) | stop_when_aborted(handle),
        wait=wait_capped_exponential_jitter(policy, rng),
        retry=retry_if_exception(is_retryable),
        sleep=_sleep,
        reraise=True,
    )


def retry_on_transient_errors(max_attempts: int = 3):
    """
    Decorator to retry one-shot coroutines on transient provider errors.

    Args:
        max_attempts: Maximum number of attempts (default: 3)

    Returns:
        Decorated function with exponential backoff retry logic
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception(is_retryable),
        reraise=True,
    )
