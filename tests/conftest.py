"""Shared fixtures: scripted provider adapters, instant sleeps and isolated settings."""

import asyncio
from typing import Callable, List, Optional, Union

import pytest

from config import Settings
from contracts import GenerationError, ProviderCapabilities
from providers.base import OpenedStream, ProviderAdapter, StreamDelta, StreamRequest
from providers.errors import classify_exception
from providers.streaming import prefetch

Outcome = Union[BaseException, List[StreamDelta]]


class ScriptedAdapter(ProviderAdapter):
    """Adapter whose ``open_stream`` replays a script of outcomes.

    Each call to ``open_stream`` consumes the next outcome: an exception is
    raised as an establishment failure, a list of deltas becomes the stream.
    The last outcome repeats once the script is exhausted.
    """

    capabilities = ProviderCapabilities()

    def __init__(
        self,
        outcomes: List[Outcome],
        provider_name: str = "gemini",
        model: str = "gemini-2.5-pro",
        on_delta: Optional[Callable[[int], None]] = None,
        token_count: Optional[int] = None,
    ):
        self.outcomes = list(outcomes)
        self.provider_name = provider_name
        self.model = model
        self.on_delta = on_delta
        self.token_count = token_count
        self.open_calls = 0
        self.requests: List[StreamRequest] = []
        self.count_calls: List[str] = []
        self.closed = False

    @property
    def name(self) -> str:
        return self.provider_name

    @property
    def default_model(self) -> str:
        return self.model

    def initial_status(self, request: StreamRequest) -> str:
        return "Initializing AI..."

    async def open_stream(self, request: StreamRequest) -> OpenedStream:
        self.open_calls += 1
        self.requests.append(request)
        outcome = self.outcomes[min(self.open_calls, len(self.outcomes)) - 1]
        if isinstance(outcome, BaseException):
            raise outcome
        return await prefetch(self._deltas(outcome), close=self._close)

    async def _deltas(self, deltas: List[StreamDelta]):
        for index, delta in enumerate(deltas):
            if self.on_delta is not None:
                self.on_delta(index)
            if isinstance(delta, BaseException):
                raise delta
            yield delta

    async def _close(self) -> None:
        self.closed = True

    def classify(self, exc: BaseException) -> GenerationError:
        return classify_exception(exc, provider=self.name)

    async def count_tokens(self, text: str, model: str, credential: str) -> Optional[int]:
        self.count_calls.append(text)
        if isinstance(self.token_count, BaseException):
            raise self.token_count
        return self.token_count


class SleepRecorder:
    """Injectable sleep that records requested delays and returns immediately."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)


def text_deltas(*parts: str, input_tokens: int = 0, output_tokens: int = 0) -> List[StreamDelta]:
    deltas = [StreamDelta(text=part) for part in parts]
    if input_tokens or output_tokens:
        deltas.append(StreamDelta(input_tokens=input_tokens, output_tokens=output_tokens))
    return deltas


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def test_settings(tmp_path):
    """Settings isolated to a temporary workspace with no real credentials."""
    return Settings(
        workspace_dir=str(tmp_path / "workspace"),
        gemini_api_key="test-gemini-key",
        openai_api_key="test-openai-key",
        anthropic_api_key="test-anthropic-key",
        openrouter_api_key="test-openrouter-key",
        save_debounce_ms=1000,
        token_count_debounce_ms=2000,
    )
