"""OpenRouter provider (OpenAI-compatible API)."""

from typing import Any, Dict, Optional

from contracts import ErrorKind, GenerationError, ProviderCapabilities
from .base import StreamRequest
from .openai_provider import OpenAIProvider

OPENROUTER_API_BASE = "https://openrouter.ai/api/v1"
APP_URL = "https://github.com/stageforge/stageforge"
APP_TITLE = "StageForge"


class OpenRouterProvider(OpenAIProvider):
    """Provider for models routed through OpenRouter.

    OpenRouter resells other providers' models, so costs carry its platform
    markup. Sampling parameters OpenAI does not know (top_k) travel in
    ``extra_body``.
    """

    is_aggregator = True
    streaming_status = "Generating..."
    capabilities = ProviderCapabilities(
        supports_max_tokens=True,
        supports_stop=True,
        supports_seed=True,
        supports_safety=False,
    )
    missing_key_message = "API Key is missing. Please provide a valid OpenRouter API Key."

    @property
    def name(self) -> str:
        return "openrouter"

    @property
    def default_model(self) -> str:
        return "anthropic/claude-sonnet-4"

    def _get_client(self, credential: str):
        from openai import AsyncOpenAI

        kwargs: Dict[str, Any] = {
            "api_key": credential,
            "base_url": OPENROUTER_API_BASE,
            "default_headers": {"HTTP-Referer": APP_URL, "X-Title": APP_TITLE},
        }
        if self.timeout_seconds:
            kwargs["timeout"] = self.timeout_seconds
        return AsyncOpenAI(**kwargs)

    def build_params(self, request: StreamRequest) -> Dict[str, Any]:
        settings = request.settings
        params: Dict[str, Any] = {
            "model": request.model,
            "messages": self._messages(request),
            "stream": True,
            "stream_options": {"include_usage": True},
            "temperature": settings.temperature if settings.temperature is not None else 0.7,
        }
        if settings.max_output_tokens:
            params["max_tokens"] = settings.max_output_tokens
        if settings.top_p is not None:
            params["top_p"] = settings.top_p
        if settings.top_k is not None:
            params["extra_body"] = {"top_k": settings.top_k}
        if settings.seed is not None:
            params["seed"] = settings.seed
        if settings.stop_sequences:
            params["stop"] = list(settings.stop_sequences)
        return params

    def initial_status(self, request: StreamRequest) -> str:
        return "Connecting to OpenRouter..."

    def _check_finish(self, chunk, choice) -> None:
        if getattr(choice, "finish_reason", None) == "error":
            raise GenerationError(
                ErrorKind.SERVER_ERROR,
                "Generation terminated due to error",
                provider=self.name,
            )

    async def count_tokens(self, text: str, model: str, credential: str) -> Optional[int]:
        if not text:
            return None
        # litellm only knows the underlying model name, not the vendor prefix
        return await super().count_tokens(text, model.split("/", 1)[-1], credential)
