"""Provider registry: descriptors, adapter construction and key validation."""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Type

from config import settings as default_settings, PROVIDER_ENV_VARS, Settings
from contracts import ProviderCapabilities
from .base import ProviderAdapter
from .anthropic_provider import AnthropicProvider
from .gemini_provider import GeminiProvider
from .openai_provider import OpenAIProvider
from .openrouter_provider import OpenRouterProvider


@dataclass(frozen=True)
class ProviderInfo:
    """Static description of a provider."""
    id: str
    display_name: str
    env_var: str
    key_prefix: str
    key_min_length: int
    docs_url: str
    get_key_url: str
    default_models: Tuple[str, ...]
    capabilities: ProviderCapabilities


# Registry of available adapters
PROVIDERS: Dict[str, Type[ProviderAdapter]] = {
    "gemini": GeminiProvider,
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "openrouter": OpenRouterProvider,
}

# Accepted shorthand for provider ids
PROVIDER_ALIASES: Dict[str, str] = {
    "google": "gemini",
    "gpt": "openai",
    "claude": "anthropic",
}

PROVIDER_INFO: Dict[str, ProviderInfo] = {
    "gemini": ProviderInfo(
        id="gemini",
        display_name="Google Gemini",
        env_var="GEMINI_API_KEY",
        key_prefix="AIza",
        key_min_length=35,
        docs_url="https://ai.google.dev/docs",
        get_key_url="https://aistudio.google.com/app/apikey",
        default_models=("gemini-3-pro-preview", "gemini-2.5-pro", "gemini-2.5-flash"),
        capabilities=GeminiProvider.capabilities,
    ),
    "openai": ProviderInfo(
        id="openai",
        display_name="OpenAI",
        env_var="OPENAI_API_KEY",
        key_prefix="sk-",
        key_min_length=20,
        docs_url="https://platform.openai.com/docs",
        get_key_url="https://platform.openai.com/api-keys",
        default_models=("gpt-5.2-2025-12-11", "gpt-5.2-pro-2025-12-11", "gpt-5.2-chat-latest", "gpt-5-mini"),
        capabilities=OpenAIProvider.capabilities,
    ),
    "anthropic": ProviderInfo(
        id="anthropic",
        display_name="Anthropic (Claude)",
        env_var="ANTHROPIC_API_KEY",
        key_prefix="sk-ant-",
        key_min_length=20,
        docs_url="https://docs.anthropic.com",
        get_key_url="https://console.anthropic.com/settings/keys",
        default_models=("claude-sonnet-4-5-20250929", "claude-opus-4-5-20251101", "claude-haiku-4-5-20251001"),
        capabilities=AnthropicProvider.capabilities,
    ),
    "openrouter": ProviderInfo(
        id="openrouter",
        display_name="OpenRouter",
        env_var="OPENROUTER_API_KEY",
        key_prefix="sk-or-",
        key_min_length=20,
        docs_url="https://openrouter.ai/docs",
        get_key_url="https://openrouter.ai/keys",
        default_models=("openai/gpt-4o", "anthropic/claude-sonnet-4", "google/gemini-2.5-pro-preview"),
        capabilities=OpenRouterProvider.capabilities,
    ),
}


def normalize_provider_id(provider_id: str) -> str:
    """Lowercase and de-alias a provider id.

    Raises:
        ValueError: If the provider is unknown
    """
    key = (provider_id or "").strip().lower()
    key = PROVIDER_ALIASES.get(key, key)
    if key not in PROVIDERS:
        raise ValueError(
            f"Unknown provider: {provider_id}. "
            f"Available: {list(PROVIDERS.keys())}"
        )
    return key


def get_adapter(provider_id: str, config: Optional[Settings] = None) -> ProviderAdapter:
    """Get an adapter instance for a provider.

    Examples:
        get_adapter("gemini")
        get_adapter("claude")  # alias for anthropic
    """
    config = config or default_settings
    key = normalize_provider_id(provider_id)
    return PROVIDERS[key](timeout_seconds=config.api_timeout_seconds)


def get_provider_info(provider_id: str) -> ProviderInfo:
    return PROVIDER_INFO[normalize_provider_id(provider_id)]


def get_capabilities(provider_id: str) -> ProviderCapabilities:
    return get_provider_info(provider_id).capabilities


def is_aggregator(provider_id: str) -> bool:
    """True for providers that resell other vendors' models with a platform markup."""
    return PROVIDERS[normalize_provider_id(provider_id)].is_aggregator


def validate_key_format(provider_id: str, key: Optional[str]) -> bool:
    """Check a credential's shape (prefix and minimum length) without calling the API."""
    try:
        info = get_provider_info(provider_id)
    except ValueError:
        return False
    trimmed = (key or "").strip()
    if len(trimmed) < info.key_min_length:
        return False
    return trimmed.startswith(info.key_prefix)


def list_providers(config: Optional[Settings] = None) -> Dict[str, bool]:
    """List all providers and whether a credential is configured for each.

    Returns:
        Dict mapping provider id to availability status
    """
    config = config or default_settings
    return {provider_id: bool(config.credential_for(provider_id)) for provider_id in PROVIDERS}


def provider_ids() -> List[str]:
    return list(PROVIDERS.keys())


__all__ = [
    "PROVIDER_ENV_VARS",
    "PROVIDER_INFO",
    "PROVIDERS",
    "ProviderInfo",
    "get_adapter",
    "get_capabilities",
    "get_provider_info",
    "is_aggregator",
    "list_providers",
    "normalize_provider_id",
    "provider_ids",
    "validate_key_format",
]
