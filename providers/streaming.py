"""Pull-based stream consumption shared by all adapters."""

import asyncio
import logging
import re
from typing import AsyncIterator, Awaitable, Callable, List, Optional, TYPE_CHECKING

from contracts import CancelToken, GenerationCancelled, GenerationError, GroundingSource
from .base import ChunkCallback, OpenedStream, StatusCallback, StreamDelta, StreamRequest, StreamResult

if TYPE_CHECKING:
    from .base import ProviderAdapter

logger = logging.getLogger(__name__)

MARKDOWN_LINK = re.compile(r"\[([^\]]+)\]\((https?://[^)\s]+)\)")


def _noop(_: str) -> None:
    pass


async def prefetch(
    deltas: AsyncIterator[StreamDelta],
    close: Optional[Callable[[], Awaitable[None]]] = None,
) -> OpenedStream:
    """Pull the first delta so establishment errors surface inside ``open_stream``."""
    try:
        first = await deltas.__anext__()
    except StopAsyncIteration:
        return OpenedStream(None, None, close)
    except BaseException:
        if close is not None:
            await close()
        raise
    return OpenedStream(first, deltas, close)


def merge_sources(existing: List[GroundingSource], new: List[GroundingSource]) -> List[GroundingSource]:
    """Append sources not already present, keyed by URI."""
    seen = {s.uri for s in existing}
    merged = list(existing)
    for source in new:
        if source.uri and source.uri not in seen:
            seen.add(source.uri)
            merged.append(source)
    return merged


def extract_markdown_sources(text: str) -> List[GroundingSource]:
    """Extract ``[title](https://...)`` links, deduplicated by URI."""
    sources: List[GroundingSource] = []
    for match in MARKDOWN_LINK.finditer(text or ""):
        sources = merge_sources(sources, [GroundingSource(title=match.group(1), uri=match.group(2))])
    return sources


async def consume_stream(
    adapter: "ProviderAdapter",
    opened: OpenedStream,
    request: StreamRequest,
    on_chunk: ChunkCallback,
    on_status: Optional[StatusCallback] = None,
    cancel_token: Optional[CancelToken] = None,
) -> StreamResult:
    """Drain an opened stream, delivering each text chunk exactly once, in order.

    The cancel token is checked before every delivery; once it has fired no
    further chunk reaches ``on_chunk`` and ``GenerationCancelled`` is raised.

    Raises:
        GenerationCancelled: If the token fires before the stream completes
        GenerationError: Classified mid-stream failure
    """
    on_status = on_status or _noop
    token = cancel_token or CancelToken()
    parts: List[str] = []
    sources: List[GroundingSource] = []
    input_tokens = 0
    output_tokens = 0
    first_chunk = True

    events = opened.__aiter__()
    try:
        async for delta in events:
            token.raise_if_cancelled()
            if delta.text:
                if first_chunk:
                    first_chunk = False
                    on_status(adapter.streaming_status)
                parts.append(delta.text)
                on_chunk(delta.text)
            if delta.input_tokens is not None:
                input_tokens = delta.input_tokens
            if delta.output_tokens is not None:
                output_tokens = delta.output_tokens
            if delta.sources:
                sources = merge_sources(sources, delta.sources)
            # Yield to the loop so a cancel() from another task is observed promptly
            await asyncio.sleep(0)
        token.raise_if_cancelled()
    except (GenerationCancelled, GenerationError, asyncio.CancelledError):
        raise
    except Exception as exc:
        if token.cancelled:
            raise GenerationCancelled() from exc
        raise adapter.classify(exc) from exc
    finally:
        await events.aclose()
        try:
            await opened.aclose()
        except Exception:
            logger.debug("Closing %s stream failed", adapter.name, exc_info=True)

    return StreamResult(
        text="".join(parts),
        model=request.model,
        provider=adapter.name,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        sources=sources,
    )


async def open_with_status(
    adapter: "ProviderAdapter",
    request: StreamRequest,
    on_status: Optional[StatusCallback] = None,
    cancel_token: Optional[CancelToken] = None,
) -> OpenedStream:
    """Check cancellation, announce the initial phase and establish the stream."""
    if cancel_token is not None:
        cancel_token.raise_if_cancelled()
    (on_status or _noop)(adapter.initial_status(request))
    opened = await adapter.open_stream(request)
    if cancel_token is not None and cancel_token.cancelled:
        await opened.aclose()
        raise GenerationCancelled()
    return opened


async def run_stream(
    adapter: "ProviderAdapter",
    request: StreamRequest,
    on_chunk: ChunkCallback,
    on_status: Optional[StatusCallback] = None,
    cancel_token: Optional[CancelToken] = None,
) -> StreamResult:
    """Open and drain a stream without retries."""
    opened = await open_with_status(adapter, request, on_status, cancel_token)
    return await consume_stream(adapter, opened, request, on_chunk, on_status, cancel_token)
