"""Tests for the generation orchestrator state machine."""

import asyncio

import pytest

from contracts import (
    ErrorKind,
    GenerationCancelled,
    GenerationError,
    GenerationInProgress,
    GenerationPhase,
    GenerationSettings,
    Stage,
)
from orchestrator import GenerationOrchestrator

from conftest import ScriptedAdapter, SleepRecorder, text_deltas


def server_error():
    return GenerationError(ErrorKind.SERVER_ERROR, "Provider error - try again", status=503)


class GatedAdapter(ScriptedAdapter):
    """Holds the stream open after each delta until ``release`` is set."""

    def __init__(self, outcomes, **kwargs):
        super().__init__(outcomes, **kwargs)
        self.release = asyncio.Event()

    async def _deltas(self, deltas):
        for delta in deltas:
            yield delta
            await self.release.wait()


async def wait_for_phase(orchestrator, phase, attempts=100):
    for _ in range(attempts):
        if orchestrator.phase == phase:
            return
        await asyncio.sleep(0)
    raise AssertionError(f"orchestrator never reached {phase}")


def make_orchestrator(adapter, test_settings, sleep=None):
    return GenerationOrchestrator(
        test_settings,
        adapter_factory=lambda provider_id: adapter,
        sleep=sleep or SleepRecorder(),
    )


class TestGenerate:
    def test_streams_full_text(self, test_settings):
        adapter = ScriptedAdapter([text_deltas("# PRD\n", "Body", input_tokens=11, output_tokens=2)])
        orchestrator = make_orchestrator(adapter, test_settings)
        received = []
        result = asyncio.run(orchestrator.generate(Stage.PRD, "sys", "prompt", received.append))
        assert received == ["# PRD\n", "Body"]
        assert result.text == "# PRD\nBody"
        assert result.input_tokens == 11
        assert orchestrator.phase == GenerationPhase.IDLE
        assert orchestrator.last_session.phase == GenerationPhase.COMMITTING
        assert not orchestrator.is_active

    def test_uses_configured_credential(self, test_settings):
        adapter = ScriptedAdapter([text_deltas("x")])
        orchestrator = make_orchestrator(adapter, test_settings)
        asyncio.run(orchestrator.generate(Stage.PRD, "", "p", lambda _: None, provider_id="gemini"))
        assert adapter.requests[0].credential == "test-gemini-key"

    def test_default_model_from_adapter(self, test_settings):
        adapter = ScriptedAdapter([text_deltas("x")], model="gemini-2.5-flash")
        orchestrator = make_orchestrator(adapter, test_settings)
        result = asyncio.run(orchestrator.generate(Stage.PRD, "", "p", lambda _: None))
        assert result.model == "gemini-2.5-flash"

    def test_settings_forwarded(self, test_settings):
        adapter = ScriptedAdapter([text_deltas("x")])
        orchestrator = make_orchestrator(adapter, test_settings)
        settings = GenerationSettings(temperature=0.1, thinking_budget=512)
        asyncio.run(orchestrator.generate(Stage.TECH, "", "p", lambda _: None, generation_settings=settings))
        assert adapter.requests[0].settings == settings

    def test_status_labels_with_retry(self, test_settings):
        adapter = ScriptedAdapter([server_error(), text_deltas("ok")])
        sleep = SleepRecorder()
        orchestrator = make_orchestrator(adapter, test_settings, sleep)
        statuses = []
        asyncio.run(orchestrator.generate(Stage.RESEARCH, "", "p", lambda _: None, on_status=statuses.append))
        assert statuses == [
            "Initializing AI...",
            "Retry 1/3 in 1000ms...",
            "Initializing AI...",
            "Streaming Response...",
        ]
        assert sleep.delays == [1.0]
        assert adapter.open_calls == 2

    def test_exhausted_retries_fail(self, test_settings):
        adapter = ScriptedAdapter([server_error()])
        sleep = SleepRecorder()
        orchestrator = make_orchestrator(adapter, test_settings, sleep)
        with pytest.raises(GenerationError) as exc_info:
            asyncio.run(orchestrator.generate(Stage.PRD, "", "p", lambda _: None))
        assert exc_info.value.kind == ErrorKind.SERVER_ERROR
        assert adapter.open_calls == 4
        assert sleep.delays == [1.0, 2.0, 4.0]
        assert orchestrator.last_session.phase == GenerationPhase.FAILED
        assert orchestrator.last_session.error is exc_info.value
        assert not orchestrator.is_active

    def test_auth_error_not_retried(self, test_settings):
        adapter = ScriptedAdapter([GenerationError(ErrorKind.AUTH, "Invalid API key", status=401)])
        orchestrator = make_orchestrator(adapter, test_settings)
        with pytest.raises(GenerationError):
            asyncio.run(orchestrator.generate(Stage.PRD, "", "p", lambda _: None))
        assert adapter.open_calls == 1

    def test_mid_stream_failure_not_retried(self, test_settings):
        adapter = ScriptedAdapter([text_deltas("a") + [ConnectionError("dropped")]])
        orchestrator = make_orchestrator(adapter, test_settings)
        with pytest.raises(GenerationError) as exc_info:
            asyncio.run(orchestrator.generate(Stage.PRD, "", "p", lambda _: None))
        assert exc_info.value.kind == ErrorKind.NETWORK_TRANSIENT
        assert adapter.open_calls == 1

    def test_unknown_provider_rejected(self, test_settings):
        orchestrator = GenerationOrchestrator(test_settings)
        with pytest.raises(ValueError):
            asyncio.run(orchestrator.generate(Stage.PRD, "", "p", lambda _: None, provider_id="mystery"))
        assert not orchestrator.is_active


class TestCancellation:
    def test_cancel_mid_stream(self, test_settings):
        received = []
        adapter = ScriptedAdapter([text_deltas("one", "two", "three", "four")])
        orchestrator = make_orchestrator(adapter, test_settings)

        def on_chunk(text):
            received.append(text)
            if text == "two":
                assert orchestrator.cancel() is True

        with pytest.raises(GenerationCancelled):
            asyncio.run(orchestrator.generate(Stage.PRD, "", "p", on_chunk))
        assert received == ["one", "two"]
        assert orchestrator.last_session.phase == GenerationPhase.CANCELLED
        assert not orchestrator.is_active
        assert adapter.closed

    def test_cancel_during_retry_wait(self, test_settings):
        adapter = ScriptedAdapter([server_error(), text_deltas("never")])
        orchestrator = make_orchestrator(adapter, test_settings)

        async def cancelling_sleep(seconds):
            orchestrator.cancel()
            await asyncio.sleep(seconds)

        orchestrator._sleep = cancelling_sleep
        received = []
        with pytest.raises(GenerationCancelled):
            asyncio.run(orchestrator.generate(Stage.PRD, "", "p", received.append))
        assert received == []
        assert adapter.open_calls == 1
        assert orchestrator.last_session.phase == GenerationPhase.CANCELLED

    def test_cancel_from_another_task(self, test_settings):
        received = []

        async def scenario():
            adapter = GatedAdapter([text_deltas("a", "b", "c")])
            orchestrator = make_orchestrator(adapter, test_settings)
            task = asyncio.ensure_future(orchestrator.generate(Stage.PRD, "", "p", received.append))
            await wait_for_phase(orchestrator, GenerationPhase.STREAMING)
            assert orchestrator.cancel() is True
            with pytest.raises(GenerationCancelled):
                await task
            return orchestrator, adapter

        orchestrator, adapter = asyncio.run(scenario())
        assert received == ["a"]
        assert not orchestrator.is_active
        assert adapter.closed

    def test_cancel_when_idle(self, test_settings):
        orchestrator = make_orchestrator(ScriptedAdapter([text_deltas("x")]), test_settings)
        assert orchestrator.cancel() is False


class TestMutualExclusion:
    def test_second_generation_rejected(self, test_settings):
        async def scenario():
            adapter = GatedAdapter([text_deltas("a", "b")])
            orchestrator = make_orchestrator(adapter, test_settings)
            first = asyncio.ensure_future(orchestrator.generate(Stage.PRD, "", "p", lambda _: None))
            await wait_for_phase(orchestrator, GenerationPhase.STREAMING)
            with pytest.raises(GenerationInProgress):
                await orchestrator.generate(Stage.TECH, "", "p", lambda _: None)
            assert orchestrator.session.stage == Stage.PRD
            adapter.release.set()
            result = await first
            return result, adapter

        result, adapter = asyncio.run(scenario())
        assert result.text == "ab"
        assert adapter.open_calls == 1

    def test_rejection_leaves_active_session(self, test_settings):
        adapter = ScriptedAdapter([text_deltas("x")])
        orchestrator = make_orchestrator(adapter, test_settings)
        active = orchestrator.begin(Stage.PRD, "gemini", "gemini-2.5-pro")
        with pytest.raises(GenerationInProgress):
            asyncio.run(orchestrator.generate(Stage.TECH, "", "p", lambda _: None))
        assert orchestrator.session is active
        assert adapter.open_calls == 0

    def test_on_session_called_once_claimed(self, test_settings):
        adapter = ScriptedAdapter([text_deltas("x")])
        orchestrator = make_orchestrator(adapter, test_settings)
        sessions = []
        asyncio.run(orchestrator.generate(Stage.BUILD, "", "p", lambda _: None, on_session=sessions.append))
        assert len(sessions) == 1
        assert sessions[0].stage == Stage.BUILD
        assert sessions[0].is_active is False

    def test_phase_streaming_on_first_chunk(self, test_settings):
        adapter = ScriptedAdapter([text_deltas("a")])
        orchestrator = make_orchestrator(adapter, test_settings)
        phases = []
        asyncio.run(orchestrator.generate(Stage.PRD, "", "p", lambda _: phases.append(orchestrator.phase)))
        assert phases == [GenerationPhase.STREAMING]
