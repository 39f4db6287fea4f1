"""Configuration settings for the StageForge engine."""

import os

# Load .env into os.environ so provider fallbacks (e.g. GEMINI_API_KEY) work
try:
    from dotenv import load_dotenv
    load_dotenv()
except ImportError:
    pass

from pydantic_settings import BaseSettings
from pydantic import Field
from typing import Dict, List, Optional
from pathlib import Path


class Settings(BaseSettings):
    """Global settings for StageForge.

    Settings can be overridden via environment variables with STAGEFORGE_ prefix.
    Example: STAGEFORGE_SAVE_DEBOUNCE_MS=500
    """

    # Provider / model selection
    default_provider: str = Field(
        default="gemini",
        description="Provider used when none is selected (gemini, openai, anthropic, openrouter)"
    )
    default_model: str = Field(
        default="gemini-2.5-pro",
        description="Model used when none is selected"
    )

    # Sampling defaults
    default_temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    default_top_k: int = Field(default=64, ge=1)
    default_top_p: float = Field(default=0.95, ge=0.0, le=1.0)
    default_thinking_budget: int = Field(
        default=0,
        ge=0,
        description="Reasoning budget in tokens for providers that support it (0 disables)"
    )
    default_max_output_tokens: Optional[int] = Field(
        default=None,
        description="Output cap; falls back to the model's output context limit"
    )

    # Persistence
    workspace_dir: str = Field(
        default="./workspace",
        description="Directory holding persisted project documents"
    )
    save_debounce_ms: int = Field(
        default=1000,
        ge=0,
        description="Debounce window for durable saves"
    )
    history_limit: int = Field(
        default=50,
        ge=1,
        description="Maximum number of undo snapshots kept per project"
    )
    max_document_bytes: int = Field(
        default=5_000_000,
        ge=0,
        description="Storage quota per project document in bytes (0 disables the check)"
    )

    # Accounting
    token_count_debounce_ms: int = Field(
        default=2000,
        ge=0,
        description="Debounce window for provider-backed exact token counts"
    )
    aggregator_markup: float = Field(
        default=1.055,
        description="Platform surcharge multiplier applied to aggregator providers"
    )

    # Retry policy (request establishment only)
    retry_attempts: int = Field(
        default=3,
        ge=0,
        description="Retries after the first attempt for retryable errors"
    )
    retry_base_delay_ms: int = Field(
        default=1000,
        ge=0,
        description="Delay before the first retry; doubles per attempt"
    )
    retry_max_delay_ms: int = Field(
        default=30000,
        ge=0,
        description="Upper bound for a single retry delay"
    )

    # OpenRouter model catalog
    openrouter_catalog_ttl_seconds: int = Field(
        default=3600,
        description="How long a fetched OpenRouter model list stays fresh"
    )

    # API settings (env: STAGEFORGE_<KEY> or standard env var)
    gemini_api_key: str = Field(
        default="",
        description="Google Gemini API key (env: STAGEFORGE_GEMINI_API_KEY)",
    )
    openai_api_key: str = Field(
        default="",
        description="OpenAI API key (env: STAGEFORGE_OPENAI_API_KEY)",
    )
    anthropic_api_key: str = Field(
        default="",
        description="Anthropic API key (env: STAGEFORGE_ANTHROPIC_API_KEY)",
    )
    openrouter_api_key: str = Field(
        default="",
        description="OpenRouter API key (env: STAGEFORGE_OPENROUTER_API_KEY)",
    )
    api_timeout_seconds: int = Field(
        default=120,
        description="API call timeout in seconds"
    )

    model_config = {
        "env_prefix": "STAGEFORGE_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",  # ignore extra env vars (e.g. OPENAI_API_KEY) not in schema
    }

    def get_workspace_path(self) -> Path:
        """Get workspace path as Path object."""
        return Path(self.workspace_dir)

    def credential_for(self, provider_id: str) -> str:
        """Resolve the API key for a provider.

        Prefers the STAGEFORGE_ setting, then the provider's conventional env var.
        """
        configured = getattr(self, f"{provider_id}_api_key", "") or ""
        if configured.strip():
            return configured.strip()
        for env_var in PROVIDER_ENV_VARS.get(provider_id, []):
            value = os.environ.get(env_var, "").strip()
            if value:
                return value
        return ""


# Provider-to-env-var mapping for credential fallback
PROVIDER_ENV_VARS: Dict[str, List[str]] = {
    "gemini": ["GEMINI_API_KEY", "GOOGLE_API_KEY"],
    "openai": ["OPENAI_API_KEY"],
    "anthropic": ["ANTHROPIC_API_KEY"],
    "openrouter": ["OPENROUTER_API_KEY"],
}


# Create singleton instance
settings = Settings()
