"""Anthropic (Claude) provider implementation."""

import logging
from typing import Any, AsyncIterator, Dict, Optional

from contracts import ErrorKind, GenerationError, ProviderCapabilities
from .base import OpenedStream, ProviderAdapter, StreamDelta, StreamRequest
from .errors import classify_exception, short_error_message, classify_status
from .streaming import prefetch

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 16384


class AnthropicProvider(ProviderAdapter):
    """Provider for Anthropic Claude models."""

    capabilities = ProviderCapabilities(
        supports_max_tokens=True,
        supports_stop=True,
        supports_seed=False,
        supports_safety=False,
    )

    def __init__(self, timeout_seconds: Optional[int] = None):
        self.timeout_seconds = timeout_seconds

    @property
    def name(self) -> str:
        return "anthropic"

    @property
    def default_model(self) -> str:
        return "claude-sonnet-4-5-20250929"

    def _get_client(self, credential: str):
        from anthropic import AsyncAnthropic

        kwargs: Dict[str, Any] = {"api_key": credential}
        if self.timeout_seconds:
            kwargs["timeout"] = self.timeout_seconds
        return AsyncAnthropic(**kwargs)

    def _max_tokens(self, request: StreamRequest) -> int:
        if request.settings.max_output_tokens:
            return request.settings.max_output_tokens
        if request.model_config is not None:
            return request.model_config.output_context_limit
        return DEFAULT_MAX_TOKENS

    def build_params(self, request: StreamRequest) -> Dict[str, Any]:
        settings = request.settings
        params: Dict[str, Any] = {
            "model": request.model,
            "max_tokens": self._max_tokens(request),
            "messages": [{"role": "user", "content": request.prompt}],
            "stream": True,
        }
        if request.system_instruction:
            params["system"] = request.system_instruction
        # Claude 4.5 models reject temperature and top_p together
        if settings.temperature is not None:
            params["temperature"] = min(settings.temperature, 1.0)
        elif settings.top_p is not None:
            params["top_p"] = settings.top_p
        if settings.top_k is not None:
            params["top_k"] = settings.top_k
        if settings.stop_sequences:
            params["stop_sequences"] = list(settings.stop_sequences)
        return params

    def initial_status(self, request: StreamRequest) -> str:
        return "Initializing Claude..."

    async def open_stream(self, request: StreamRequest) -> OpenedStream:
        if not request.credential:
            raise GenerationError(ErrorKind.AUTH, "Anthropic API Key is missing.", provider=self.name)
        try:
            client = self._get_client(request.credential)
            try:
                raw_stream = await client.messages.create(**self.build_params(request))
            except BaseException:
                await self.close_client(client)
                raise
            return await prefetch(self._deltas(raw_stream), close=self.closer(client, raw_stream))
        except GenerationError:
            raise
        except Exception as exc:
            raise self.classify(exc) from exc

    async def _deltas(self, raw_stream) -> AsyncIterator[StreamDelta]:
        async for event in raw_stream:
            if event.type == "message_start":
                usage = event.message.usage
                yield StreamDelta(input_tokens=usage.input_tokens, output_tokens=usage.output_tokens)
            elif event.type == "content_block_delta":
                if event.delta.type == "text_delta" and event.delta.text:
                    yield StreamDelta(text=event.delta.text)
            elif event.type == "message_delta":
                yield StreamDelta(output_tokens=event.usage.output_tokens)

    def classify(self, exc: BaseException) -> GenerationError:
        if isinstance(exc, GenerationError):
            return exc
        import anthropic

        if isinstance(exc, anthropic.APIStatusError):
            status = exc.status_code
            return GenerationError(
                classify_status(status),
                short_error_message(status, exc.message),
                status=status,
                provider=self.name,
            )
        if isinstance(exc, (anthropic.APITimeoutError, anthropic.APIConnectionError)):
            return GenerationError(
                ErrorKind.NETWORK_TRANSIENT,
                "Network error connecting to Anthropic",
                provider=self.name,
            )
        return classify_exception(exc, provider=self.name)

    async def count_tokens(self, text: str, model: str, credential: str) -> Optional[int]:
        if not text or not credential:
            return None
        client = self._get_client(credential)
        try:
            response = await client.messages.count_tokens(
                model=model,
                messages=[{"role": "user", "content": text}],
            )
        finally:
            await self.close_client(client)
        return response.input_tokens
