"""OpenAI provider implementation."""

import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from contracts import ErrorKind, GenerationError, ProviderCapabilities
from .base import OpenedStream, ProviderAdapter, StreamDelta, StreamRequest
from .errors import classify_exception, error_from_code
from .model_registry import default_reasoning_effort
from .streaming import prefetch

logger = logging.getLogger(__name__)


def litellm_token_count(text: str, model: str) -> Optional[int]:
    """Count tokens locally with litellm's tokenizer tables."""
    import litellm

    count = litellm.token_counter(model=model, text=text)
    return count if isinstance(count, int) else None


class OpenAIProvider(ProviderAdapter):
    """Provider for OpenAI chat completion models.

    Reasoning models take ``reasoning_effort`` and reject sampling knobs, so
    temperature and top_p are only sent to models without effort levels.
    """

    capabilities = ProviderCapabilities(
        supports_max_tokens=True,
        supports_stop=True,
        supports_seed=True,
        supports_safety=False,
    )
    missing_key_message = "API Key is missing. Please provide a valid OpenAI API Key."

    def __init__(self, timeout_seconds: Optional[int] = None):
        self.timeout_seconds = timeout_seconds

    @property
    def name(self) -> str:
        return "openai"

    @property
    def default_model(self) -> str:
        return "gpt-5.2-2025-12-11"

    def _get_client(self, credential: str):
        from openai import AsyncOpenAI

        kwargs: Dict[str, Any] = {"api_key": credential}
        if self.timeout_seconds:
            kwargs["timeout"] = self.timeout_seconds
        return AsyncOpenAI(**kwargs)

    def _messages(self, request: StreamRequest) -> List[Dict[str, str]]:
        messages = []
        if request.system_instruction:
            messages.append({"role": "system", "content": request.system_instruction})
        messages.append({"role": "user", "content": request.prompt})
        return messages

    def build_params(self, request: StreamRequest) -> Dict[str, Any]:
        """Build chat.completions.create kwargs, omitting unsupported settings."""
        settings = request.settings
        model = request.model_config
        params: Dict[str, Any] = {
            "model": request.model,
            "messages": self._messages(request),
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if model is not None and model.supports_reasoning_effort:
            effort = settings.reasoning_effort
            if effort is None or effort not in model.reasoning_efforts:
                effort = default_reasoning_effort(model)
            params["reasoning_effort"] = effort.value
        else:
            if settings.temperature is not None:
                params["temperature"] = settings.temperature
            if settings.top_p is not None:
                params["top_p"] = settings.top_p
        if settings.max_output_tokens:
            params["max_completion_tokens"] = settings.max_output_tokens
        if settings.stop_sequences:
            params["stop"] = list(settings.stop_sequences)[:4]
        if settings.seed is not None:
            params["seed"] = settings.seed
        return params

    def initial_status(self, request: StreamRequest) -> str:
        return "Initializing OpenAI..."

    async def open_stream(self, request: StreamRequest) -> OpenedStream:
        if not request.credential:
            raise GenerationError(ErrorKind.AUTH, self.missing_key_message, provider=self.name)
        try:
            client = self._get_client(request.credential)
            try:
                raw_stream = await client.chat.completions.create(**self.build_params(request))
            except BaseException:
                await self.close_client(client)
                raise
            return await prefetch(self._deltas(raw_stream), close=self.closer(client, raw_stream))
        except GenerationError:
            raise
        except Exception as exc:
            raise self.classify(exc) from exc

    async def _deltas(self, raw_stream) -> AsyncIterator[StreamDelta]:
        async for chunk in raw_stream:
            delta = StreamDelta()
            if chunk.choices:
                choice = chunk.choices[0]
                delta.text = getattr(choice.delta, "content", None) or ""
                self._check_finish(chunk, choice)
            usage = getattr(chunk, "usage", None)
            if usage is not None:
                delta.input_tokens = usage.prompt_tokens
                delta.output_tokens = usage.completion_tokens
            yield delta

    def _check_finish(self, chunk, choice) -> None:
        """Hook for providers that report errors through the finish reason."""

    def classify(self, exc: BaseException) -> GenerationError:
        if isinstance(exc, GenerationError):
            return exc
        import openai

        if isinstance(exc, openai.APIStatusError):
            code = getattr(exc, "code", None)
            if isinstance(code, str) and code:
                error = error_from_code(code, exc.message, provider=self.name)
                if error.kind != ErrorKind.UNKNOWN:
                    error.status = exc.status_code
                    return error
            return error_from_code(exc.status_code, exc.message, provider=self.name)
        if isinstance(exc, (openai.APITimeoutError, openai.APIConnectionError)):
            return GenerationError(
                ErrorKind.NETWORK_TRANSIENT,
                f"Network error connecting to {self.name}",
                provider=self.name,
            )
        if isinstance(exc, openai.APIError):
            # Errors reported inside the event stream carry a code but no status
            code = getattr(exc, "code", None)
            if code:
                return error_from_code(code, exc.message, provider=self.name)
        return classify_exception(exc, provider=self.name)

    async def count_tokens(self, text: str, model: str, credential: str) -> Optional[int]:
        if not text:
            return None
        return litellm_token_count(text, model)
