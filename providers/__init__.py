"""Provider adapters: one per LLM vendor behind a uniform streaming contract."""

from .base import (
    ChunkCallback,
    OpenedStream,
    ProviderAdapter,
    StatusCallback,
    StreamDelta,
    StreamRequest,
    StreamResult,
)
from .errors import classify_exception, classify_status, error_from_code, short_error_message
from .factory import (
    PROVIDER_INFO,
    ProviderInfo,
    get_adapter,
    get_capabilities,
    get_provider_info,
    is_aggregator,
    list_providers,
    normalize_provider_id,
    provider_ids,
    validate_key_format,
)
from .model_registry import (
    get_model,
    get_models_by_tier,
    get_models_for_provider,
    register_models,
    resolve_model_id,
)
from .streaming import consume_stream, extract_markdown_sources, open_with_status, run_stream

__all__ = [
    "ChunkCallback",
    "OpenedStream",
    "PROVIDER_INFO",
    "ProviderAdapter",
    "ProviderInfo",
    "StatusCallback",
    "StreamDelta",
    "StreamRequest",
    "StreamResult",
    "classify_exception",
    "classify_status",
    "consume_stream",
    "error_from_code",
    "extract_markdown_sources",
    "get_adapter",
    "get_capabilities",
    "get_model",
    "get_models_by_tier",
    "get_models_for_provider",
    "get_provider_info",
    "is_aggregator",
    "list_providers",
    "normalize_provider_id",
    "open_with_status",
    "provider_ids",
    "register_models",
    "resolve_model_id",
    "run_stream",
    "short_error_message",
    "validate_key_format",
]
