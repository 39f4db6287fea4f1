"""Google Gemini provider implementation."""

import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from contracts import (
    ErrorKind,
    GenerationError,
    GroundingSource,
    ProviderCapabilities,
    SafetyPreset,
)
from .base import OpenedStream, ProviderAdapter, StreamDelta, StreamRequest
from .errors import classify_exception, classify_status, short_error_message
from .streaming import prefetch

logger = logging.getLogger(__name__)

HARM_CATEGORIES = [
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
]

SAFETY_THRESHOLDS = {
    SafetyPreset.RELAXED: "BLOCK_NONE",
    SafetyPreset.BALANCED: "BLOCK_MEDIUM_AND_ABOVE",
    SafetyPreset.STRICT: "BLOCK_LOW_AND_ABOVE",
}


def safety_settings_for(preset: SafetyPreset) -> List[Dict[str, str]]:
    """Map a safety preset to Gemini safety settings (empty for 'default')."""
    threshold = SAFETY_THRESHOLDS.get(SafetyPreset(preset))
    if threshold is None:
        return []
    return [{"category": category, "threshold": threshold} for category in HARM_CATEGORIES]


class GeminiProvider(ProviderAdapter):
    """Provider for Google Gemini models.

    Supports a thinking budget and Google Search grounding on models that
    declare them; both are dropped silently elsewhere.
    """

    capabilities = ProviderCapabilities(
        supports_max_tokens=True,
        supports_stop=True,
        supports_seed=False,
        supports_safety=True,
    )

    def __init__(self, timeout_seconds: Optional[int] = None):
        self.timeout_seconds = timeout_seconds

    @property
    def name(self) -> str:
        return "gemini"

    @property
    def default_model(self) -> str:
        return "gemini-2.5-pro"

    def _get_client(self, credential: str):
        from google import genai
        return genai.Client(api_key=credential)

    async def close_client(self, client) -> None:
        await client.aio.aclose()

    def _thinking_budget(self, request: StreamRequest) -> int:
        model = request.model_config
        if model is None or not model.supports_thinking:
            return 0
        return request.settings.thinking_budget

    def _use_grounding(self, request: StreamRequest) -> bool:
        model = request.model_config
        return bool(request.settings.use_grounding and model is not None and model.supports_grounding)

    def build_config(self, request: StreamRequest) -> Dict[str, Any]:
        """Build the GenerateContentConfig payload for a request."""
        settings = request.settings
        config: Dict[str, Any] = {"system_instruction": request.system_instruction or None}
        if settings.temperature is not None:
            config["temperature"] = settings.temperature
        if settings.top_k is not None:
            config["top_k"] = settings.top_k
        if settings.top_p is not None:
            config["top_p"] = settings.top_p
        if settings.max_output_tokens:
            config["max_output_tokens"] = settings.max_output_tokens
        if settings.stop_sequences:
            config["stop_sequences"] = list(settings.stop_sequences)
        if self._use_grounding(request):
            config["tools"] = [{"google_search": {}}]
        budget = self._thinking_budget(request)
        if budget > 0:
            config["thinking_config"] = {"thinking_budget": budget}
        safety = safety_settings_for(settings.safety_preset)
        if safety:
            config["safety_settings"] = safety
        return config

    def initial_status(self, request: StreamRequest) -> str:
        if self._thinking_budget(request) > 0:
            return "Thinking (Deep Reasoning)..."
        if self._use_grounding(request):
            return "Accessing Knowledge Base..."
        return "Initializing AI..."

    async def open_stream(self, request: StreamRequest) -> OpenedStream:
        if not request.credential:
            raise GenerationError(
                ErrorKind.AUTH,
                "API Key is missing. Please provide a valid Gemini API Key.",
                provider=self.name,
            )
        try:
            client = self._get_client(request.credential)
            try:
                raw_stream = await client.aio.models.generate_content_stream(
                    model=request.model,
                    contents=request.prompt,
                    config=self.build_config(request),
                )
            except BaseException:
                await self.close_client(client)
                raise
            return await prefetch(self._deltas(raw_stream), close=self.closer(client))
        except GenerationError:
            raise
        except Exception as exc:
            raise self.classify(exc) from exc

    async def _deltas(self, raw_stream) -> AsyncIterator[StreamDelta]:
        async for chunk in raw_stream:
            delta = StreamDelta(text=chunk.text or "")
            usage = getattr(chunk, "usage_metadata", None)
            if usage is not None:
                delta.input_tokens = getattr(usage, "prompt_token_count", None)
                delta.output_tokens = getattr(usage, "candidates_token_count", None)
            delta.sources = self._grounding_sources(chunk)
            yield delta

    @staticmethod
    def _grounding_sources(chunk) -> List[GroundingSource]:
        candidates = getattr(chunk, "candidates", None) or []
        if not candidates:
            return []
        metadata = getattr(candidates[0], "grounding_metadata", None)
        grounding_chunks = getattr(metadata, "grounding_chunks", None) or []
        sources = []
        for grounding_chunk in grounding_chunks:
            web = getattr(grounding_chunk, "web", None)
            uri = getattr(web, "uri", None)
            if uri:
                sources.append(GroundingSource(uri=uri, title=getattr(web, "title", None) or ""))
        return sources

    def classify(self, exc: BaseException) -> GenerationError:
        if isinstance(exc, GenerationError):
            return exc
        from google.genai import errors as genai_errors

        if isinstance(exc, genai_errors.APIError):
            status = exc.code if isinstance(exc.code, int) else None
            message = exc.message or str(exc)
            if status is not None:
                # Gemini reports a bad key as 400 INVALID_ARGUMENT
                kind = classify_status(status)
                if status == 400 and "api key" in message.lower():
                    kind = ErrorKind.AUTH
                if status == 429:
                    return GenerationError(kind, "Quota exceeded. Please try again later.", status=status, provider=self.name)
                return GenerationError(kind, short_error_message(status, message), status=status, provider=self.name)
        return classify_exception(exc, provider=self.name)

    async def count_tokens(self, text: str, model: str, credential: str) -> Optional[int]:
        if not text or not credential:
            return None
        client = self._get_client(credential)
        try:
            response = await client.aio.models.count_tokens(model=model, contents=text)
        finally:
            await self.close_client(client)
        total = getattr(response, "total_tokens", None)
        return total if isinstance(total, int) else None
