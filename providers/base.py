"""Provider adapter interface.

Every adapter exposes the same two-step contract:

1. ``open_stream`` establishes the request and pulls the first event. This is
   the only step the orchestrator retries.
2. The returned ``OpenedStream`` is consumed by ``providers.streaming`` which
   delivers chunks in order and checks the cancel token at every boundary.

``stream`` runs both steps without retries for callers that do not need them.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, List, Optional

from contracts import (
    CancelToken,
    GenerationError,
    GenerationSettings,
    GroundingSource,
    ModelConfig,
    ProviderCapabilities,
)
from .model_registry import get_model, resolve_model_id

ChunkCallback = Callable[[str], None]
StatusCallback = Callable[[str], None]


@dataclass
class StreamRequest:
    """Everything an adapter needs to issue one generation call."""
    system_instruction: str
    prompt: str
    model: str
    credential: str
    settings: GenerationSettings = field(default_factory=GenerationSettings)
    model_config: Optional[ModelConfig] = None

    def __post_init__(self):
        self.model = resolve_model_id(self.model) or self.model
        if self.model_config is None:
            self.model_config = get_model(self.model)

    def __repr__(self) -> str:
        # Credentials never appear in reprs or logs
        return f"StreamRequest(model={self.model!r}, prompt_chars={len(self.prompt)})"


@dataclass
class StreamDelta:
    """One provider event reduced to what the engine cares about."""
    text: str = ""
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    sources: List[GroundingSource] = field(default_factory=list)


@dataclass
class StreamResult:
    """Standardized result of a completed stream."""
    text: str
    model: str
    provider: str
    input_tokens: int = 0
    output_tokens: int = 0
    sources: List[GroundingSource] = field(default_factory=list)


class OpenedStream:
    """An established stream whose first event has already been received."""

    def __init__(
        self,
        first: Optional[StreamDelta],
        rest: Optional[AsyncIterator[StreamDelta]],
        close: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self._first = first
        self._rest = rest
        self._close = close
        self._closed = False

    def __aiter__(self) -> AsyncIterator[StreamDelta]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[StreamDelta]:
        if self._first is not None:
            first, self._first = self._first, None
            yield first
        if self._rest is not None:
            async for delta in self._rest:
                yield delta

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._rest is not None and hasattr(self._rest, "aclose"):
            await self._rest.aclose()
        if self._close is not None:
            await self._close()


class ProviderAdapter(ABC):
    """Abstract interface implemented once per provider."""

    is_aggregator: bool = False
    capabilities: ProviderCapabilities = ProviderCapabilities()
    streaming_status: str = "Streaming Response..."

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider id (gemini, openai, anthropic, openrouter)."""
        pass

    @property
    @abstractmethod
    def default_model(self) -> str:
        """Default model for this provider."""
        pass

    @abstractmethod
    def initial_status(self, request: StreamRequest) -> str:
        """Status label shown before the first chunk arrives."""
        pass

    @abstractmethod
    async def open_stream(self, request: StreamRequest) -> OpenedStream:
        """Establish the request and receive the first event.

        Raises:
            GenerationError: Classified failure to establish the stream
        """
        pass

    @abstractmethod
    def classify(self, exc: BaseException) -> GenerationError:
        """Translate a provider exception into the uniform taxonomy."""
        pass

    async def count_tokens(self, text: str, model: str, credential: str) -> Optional[int]:
        """Provider-backed exact token count, or None when unsupported."""
        return None

    async def close_client(self, client: Any) -> None:
        """Release the SDK client's connection pool."""
        await client.close()

    def closer(self, client: Any, raw_stream: Any = None) -> Callable[[], Awaitable[None]]:
        """Close callback for an opened stream: the SDK stream, then its client."""
        async def close() -> None:
            try:
                if raw_stream is not None:
                    await raw_stream.close()
            finally:
                await self.close_client(client)
        return close

    async def stream(
        self,
        request: StreamRequest,
        on_chunk: ChunkCallback,
        on_status: Optional[StatusCallback] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> StreamResult:
        """Stream a completion, delivering chunks to ``on_chunk``.

        Raises:
            GenerationCancelled: If ``cancel_token`` fires before completion
            GenerationError: Classified provider failure
        """
        from .streaming import run_stream
        return await run_stream(self, request, on_chunk, on_status, cancel_token)
