# Test suite for the streaming completion client

import asyncio
import time

import pytest

from conftest import FAST_RETRY, HANG, ScriptedProvider

from aimate_chat.agent.core.state_machine import StreamStateMachine
from aimate_chat.agent.streaming import (
    INTERRUPTION_MARKER,
    StreamingCompletionClient,
    describe_failure,
    strip_interruption_marker,
)
from aimate_chat.agent.structs import (
    CompletionRequest,
    Message,
    RetryPolicy,
    Role,
    StreamState,
)
from aimate_chat.exceptions import (
    ProviderAuthenticationError,
    ProviderConnectionError,
    ProviderModelNotFoundError,
    ProviderServerError,
)
from aimate_chat.protocol.bus import EventBus
from aimate_chat.protocol.events import EventTypes
from aimate_chat.utils.retry import AbortHandle


def make_request():
    return CompletionRequest(
        model="test-model", messages=[{"role": "user", "content": "Hello"}]
    )


class Recorder:
    """Collects bus events as (event_type, data) tuples."""

    def __init__(self):
        self.events = []

    async def attach(self, bus, *event_types):
        for event_type in event_types:
            await bus.subscribe(event_type, self._handler(event_type))

    def _handler(self, event_type):
        async def handle(data):
            self.events.append((event_type, data))

        return handle

    def of(self, event_type):
        return [data for kind, data in self.events if kind == event_type]


async def run_stream(provider, policy=FAST_RETRY, bus=None, abort=None, target=None):
    client = StreamingCompletionClient(provider, policy, bus=bus)
    machine = StreamStateMachine()
    created = []
    outcome = await client.stream(
        make_request(),
        "conv-1",
        machine,
        abort or AbortHandle(),
        target=target,
        on_message_created=created.append,
    )
    return outcome, machine, created


class TestStreamingHappyPath:
    @pytest.mark.asyncio
    async def test_deltas_build_one_message(self):
        """Deltas are applied in order to a single assistant message"""
        provider = ScriptedProvider(["Hel", "", "lo", " world"])
        bus = EventBus()
        recorder = Recorder()
        await recorder.attach(
            bus,
            EventTypes.STREAM_STATE_CHANGED,
            EventTypes.STREAM_CHUNK,
            EventTypes.MESSAGE_CREATED,
            EventTypes.RESPONSE_COMPLETE,
        )

        outcome, machine, created = await run_stream(provider, bus=bus)

        assert outcome.state == StreamState.COMPLETED
        assert outcome.message.content == "Hello world"
        assert outcome.message.role == Role.ASSISTANT
        assert outcome.message.model == "test-model"
        assert created == [outcome.message]
        assert machine.current == StreamState.COMPLETED
        assert [d["state"] for d in recorder.of(EventTypes.STREAM_STATE_CHANGED)] == [
            StreamState.SENDING,
            StreamState.STREAMING,
            StreamState.COMPLETED,
        ]
        assert [d["chunk"] for d in recorder.of(EventTypes.STREAM_CHUNK)] == [
            "Hel",
            "lo",
            " world",
        ]
        assert len(recorder.of(EventTypes.MESSAGE_CREATED)) == 1
        assert recorder.of(EventTypes.RESPONSE_COMPLETE)[0]["state"] == StreamState.COMPLETED

    @pytest.mark.asyncio
    async def test_empty_response_completes_with_warning(self):
        """No content at all completes without a message and warns"""
        provider = ScriptedProvider([])

        outcome, _, created = await run_stream(provider)

        assert outcome.state == StreamState.COMPLETED
        assert outcome.message is None
        assert outcome.warning == "The model returned an empty response."
        assert created == []


class TestStreamingRetry:
    """Retries before content, never after"""

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self):
        """A server error before any content is retried and the stream succeeds"""
        provider = ScriptedProvider([ProviderServerError("boom", status_code=500)], ["Recovered"])
        bus = EventBus()
        recorder = Recorder()
        await recorder.attach(bus, EventTypes.RETRY_SCHEDULED)

        outcome, _, _ = await run_stream(provider, bus=bus)

        assert outcome.state == StreamState.COMPLETED
        assert outcome.message.content == "Recovered"
        assert outcome.attempts == 2
        assert len(provider.requests) == 2
        [retry] = recorder.of(EventTypes.RETRY_SCHEDULED)
        assert retry["retry"] == 1
        assert retry["delay_seconds"] == 0

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self):
        """max_retries retries are made, then the stream fails"""
        failures = [[ProviderServerError("boom", status_code=503)] for _ in range(6)]
        provider = ScriptedProvider(*failures)

        outcome, machine, created = await run_stream(provider)

        assert outcome.state == StreamState.FAILED
        assert len(provider.requests) == FAST_RETRY.max_retries + 1
        assert machine.current == StreamState.FAILED
        # The failure is surfaced as an assistant message
        [message] = created
        assert message.metadata == {"error": True, "error_category": "server"}
        assert message.content == "The model server returned an error. Please try again."

    @pytest.mark.asyncio
    async def test_authentication_errors_are_not_retried(self):
        """A 401 fails after exactly one request"""
        provider = ScriptedProvider(
            [ProviderAuthenticationError("Unauthorized", status_code=401)], ["never"]
        )
        bus = EventBus()
        recorder = Recorder()
        await recorder.attach(bus, EventTypes.ERROR)

        outcome, _, _ = await run_stream(provider, bus=bus)

        assert outcome.state == StreamState.FAILED
        assert len(provider.requests) == 1
        assert outcome.message.metadata["error_category"] == "authentication"
        assert recorder.of(EventTypes.ERROR)[0]["category"] == "authentication"


class TestStreamingInterruption:
    @pytest.mark.asyncio
    async def test_drop_after_content_keeps_partial_text(self):
        """A connection drop after content is interrupted, marked and not retried"""
        partial = "x" * 50
        provider = ScriptedProvider(
            [partial, ProviderConnectionError("reset by peer")], ["should not be used"]
        )
        bus = EventBus()
        recorder = Recorder()
        await recorder.attach(bus, EventTypes.WARNING)

        outcome, machine, _ = await run_stream(provider, bus=bus)

        assert outcome.state == StreamState.INTERRUPTED
        assert outcome.message.content == partial + INTERRUPTION_MARKER
        assert outcome.message.metadata["interrupted"] is True
        assert len(provider.requests) == 1
        assert machine.current == StreamState.INTERRUPTED
        assert not machine.is_streaming
        assert "50 characters" in recorder.of(EventTypes.WARNING)[0]["message"]

    @pytest.mark.asyncio
    async def test_unexpected_error_after_content_is_interrupted(self):
        """Any error once content arrived keeps the partial text instead of failing"""
        provider = ScriptedProvider(["partial", ValueError("bad bytes")], ["unused"])

        outcome, machine, _ = await run_stream(provider)

        assert outcome.state == StreamState.INTERRUPTED
        assert outcome.message.content == "partial" + INTERRUPTION_MARKER
        assert "error" not in outcome.message.metadata
        assert len(provider.requests) == 1
        assert machine.current == StreamState.INTERRUPTED

    @pytest.mark.asyncio
    async def test_continuation_appends_to_target(self):
        """Continuing streams into the existing message instead of a new one"""
        target = Message(
            id="a1",
            role=Role.ASSISTANT,
            content="The answer is" + INTERRUPTION_MARKER,
            timestamp=time.time(),
            metadata={"interrupted": True},
        )
        strip_interruption_marker(target)
        provider = ScriptedProvider([" forty", "-two."])

        outcome, _, created = await run_stream(provider, target=target)

        assert outcome.message is target
        assert target.content == "The answer is forty-two."
        assert "interrupted" not in target.metadata
        assert created == []


class TestStreamingCancellation:
    @pytest.mark.asyncio
    async def test_cancel_mid_stream_keeps_content(self):
        """Aborting during streaming stops it and keeps what arrived"""
        provider = ScriptedProvider(["partial", HANG, "never"])
        bus = EventBus()
        abort = AbortHandle()
        first_chunk = asyncio.Event()

        async def on_chunk(data):
            first_chunk.set()

        await bus.subscribe(EventTypes.STREAM_CHUNK, on_chunk)

        task = asyncio.ensure_future(run_stream(provider, bus=bus, abort=abort))
        await asyncio.wait_for(first_chunk.wait(), timeout=1)
        abort.abort()
        outcome, machine, _ = await asyncio.wait_for(task, timeout=1)

        assert outcome.state == StreamState.CANCELLED
        assert outcome.message.content == "partial"
        assert outcome.message.metadata["cancelled"] is True
        assert machine.current == StreamState.CANCELLED
        assert provider.active == 0

    @pytest.mark.asyncio
    async def test_cancel_during_backoff(self):
        """Aborting while waiting to retry ends the stream without another request"""
        slow_policy = RetryPolicy(max_retries=3, base_delay_ms=10000, max_delay_ms=10000, jitter_ms=0)
        provider = ScriptedProvider(
            [ProviderServerError("boom", status_code=500)], ["never"]
        )
        bus = EventBus()
        abort = AbortHandle()

        async def on_retry(data):
            abort.abort()

        await bus.subscribe(EventTypes.RETRY_SCHEDULED, on_retry)

        outcome, _, _ = await asyncio.wait_for(
            run_stream(provider, policy=slow_policy, bus=bus, abort=abort), timeout=2
        )

        assert outcome.state == StreamState.CANCELLED
        assert outcome.message is None
        assert len(provider.requests) == 1


class TestFailureDescriptions:
    def test_model_not_found_lists_models(self):
        """404 explanations name the model and what is available"""
        error = ProviderModelNotFoundError(
            "no such model", status_code=404, available_models=["llama-3", "qwen"]
        )

        text = describe_failure(error, "gpt-9")

        assert "gpt-9" in text
        assert text.endswith("Available models: llama-3, qwen")

    def test_unknown_errors_read_as_server_errors(self):
        """Anything unclassified gets the generic server explanation"""
        assert describe_failure(RuntimeError("x"), "m") == (
            "The model server returned an error. Please try again."
        )
