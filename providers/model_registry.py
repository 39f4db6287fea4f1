"""Static model catalog with pricing, context limits and capability flags.

OpenRouter entries are placeholders; the live list comes from
``providers.openrouter_catalog``.
"""

from typing import Dict, List, Optional

from contracts import ModelConfig, ModelTier, ReasoningEffort, TieredPricing


PROVIDER_MODELS: Dict[str, List[ModelConfig]] = {
    "openai": [
        ModelConfig(
            id="gpt-5.2-pro-2025-12-11",
            display_name="GPT-5.2 Pro",
            tier=ModelTier.COMPLEX,
            provider_id="openai",
            input_cost_per_million=21.00,
            output_cost_per_million=168.00,
            input_context_limit=400_000,
            output_context_limit=128_000,
            description="Highest accuracy, designed to tackle tough problems.",
            reasoning_efforts=(ReasoningEffort.MEDIUM, ReasoningEffort.HIGH, ReasoningEffort.XHIGH),
        ),
        ModelConfig(
            id="gpt-5.2-2025-12-11",
            display_name="GPT-5.2 Thinking",
            tier=ModelTier.MID,
            provider_id="openai",
            input_cost_per_million=1.75,
            output_cost_per_million=14.00,
            input_context_limit=400_000,
            output_context_limit=128_000,
            description="Flagship model for coding and agentic tasks.",
            reasoning_efforts=(
                ReasoningEffort.LOW,
                ReasoningEffort.MEDIUM,
                ReasoningEffort.HIGH,
                ReasoningEffort.XHIGH,
            ),
        ),
        ModelConfig(
            id="gpt-5.2-chat-latest",
            display_name="GPT-5.2 Instant",
            tier=ModelTier.FAST,
            provider_id="openai",
            input_cost_per_million=1.75,
            output_cost_per_million=14.00,
            input_context_limit=128_000,
            output_context_limit=16_384,
            description="Optimized for speed with smaller context window.",
        ),
        ModelConfig(
            id="gpt-5-mini",
            display_name="GPT-5 Mini",
            tier=ModelTier.FAST,
            provider_id="openai",
            input_cost_per_million=0.25,
            output_cost_per_million=2.00,
            input_context_limit=128_000,
            output_context_limit=16_384,
            description="Budget-friendly option for simple tasks.",
        ),
        ModelConfig(
            id="gpt-5-nano",
            display_name="GPT-5 Nano",
            tier=ModelTier.FAST,
            provider_id="openai",
            input_cost_per_million=0.05,
            output_cost_per_million=0.40,
            input_context_limit=128_000,
            output_context_limit=16_384,
            description="Lowest cost option for high-volume calls.",
        ),
    ],
    "anthropic": [
        ModelConfig(
            id="claude-opus-4-5-20251101",
            display_name="Claude Opus 4.5",
            tier=ModelTier.COMPLEX,
            provider_id="anthropic",
            input_cost_per_million=5.00,
            output_cost_per_million=25.00,
            input_context_limit=200_000,
            output_context_limit=64_000,
            description="Premium model with maximum intelligence.",
        ),
        ModelConfig(
            id="claude-sonnet-4-5-20250929",
            display_name="Claude Sonnet 4.5",
            tier=ModelTier.MID,
            provider_id="anthropic",
            input_cost_per_million=3.00,
            output_cost_per_million=15.00,
            input_context_limit=200_000,
            output_context_limit=64_000,
            description="Smart model for complex agents and coding.",
        ),
        ModelConfig(
            id="claude-haiku-4-5-20251001",
            display_name="Claude Haiku 4.5",
            tier=ModelTier.FAST,
            provider_id="anthropic",
            input_cost_per_million=1.00,
            output_cost_per_million=5.00,
            input_context_limit=200_000,
            output_context_limit=64_000,
            description="Fastest model with near-frontier intelligence.",
        ),
    ],
    "gemini": [
        ModelConfig(
            id="gemini-3-pro-preview",
            display_name="Gemini 3 Pro",
            tier=ModelTier.COMPLEX,
            provider_id="gemini",
            input_cost_per_million=2.00,
            output_cost_per_million=12.00,
            input_context_limit=1_000_000,
            output_context_limit=65_536,
            description="Top reasoning; ideal for deep research.",
            supports_thinking=True,
            supports_grounding=True,
            tiered_pricing=TieredPricing(threshold=200_000, input_cost_above=4.00, output_cost_above=18.00),
        ),
        ModelConfig(
            id="gemini-2.5-pro",
            display_name="Gemini 2.5 Pro",
            tier=ModelTier.MID,
            provider_id="gemini",
            input_cost_per_million=1.25,
            output_cost_per_million=10.00,
            input_context_limit=1_000_000,
            output_context_limit=65_536,
            description="Balanced price/performance.",
            supports_thinking=True,
            supports_grounding=True,
            tiered_pricing=TieredPricing(threshold=200_000, input_cost_above=2.50, output_cost_above=15.00),
        ),
        ModelConfig(
            id="gemini-2.5-flash",
            display_name="Gemini 2.5 Flash",
            tier=ModelTier.FAST,
            provider_id="gemini",
            input_cost_per_million=0.30,
            output_cost_per_million=2.50,
            input_context_limit=1_000_000,
            output_context_limit=65_536,
            description="Speed-optimized. Lowest cost in the Gemini family.",
            supports_thinking=True,
            supports_grounding=True,
        ),
    ],
    "openrouter": [
        ModelConfig(
            id="openai/gpt-4o",
            display_name="GPT-4o (via OpenRouter)",
            tier=ModelTier.MID,
            provider_id="openrouter",
            input_cost_per_million=2.50,
            output_cost_per_million=10.00,
            input_context_limit=128_000,
            output_context_limit=16_384,
            description="OpenAI GPT-4o through OpenRouter (5.5% platform fee applies).",
        ),
        ModelConfig(
            id="anthropic/claude-sonnet-4",
            display_name="Claude Sonnet 4 (via OpenRouter)",
            tier=ModelTier.MID,
            provider_id="openrouter",
            input_cost_per_million=3.00,
            output_cost_per_million=15.00,
            input_context_limit=200_000,
            output_context_limit=64_000,
            description="Anthropic Claude through OpenRouter (5.5% platform fee applies).",
        ),
        ModelConfig(
            id="google/gemini-2.5-pro-preview",
            display_name="Gemini 2.5 Pro (via OpenRouter)",
            tier=ModelTier.MID,
            provider_id="openrouter",
            input_cost_per_million=1.25,
            output_cost_per_million=10.00,
            input_context_limit=1_000_000,
            output_context_limit=65_536,
            description="Google Gemini through OpenRouter (5.5% platform fee applies).",
        ),
    ],
}

# Short aliases accepted wherever a model id is expected
MODEL_ALIASES: Dict[str, str] = {
    "gemini-3-pro": "gemini-3-pro-preview",
    "gemini-pro": "gemini-2.5-pro",
    "gemini-flash": "gemini-2.5-flash",
    "claude-opus": "claude-opus-4-5-20251101",
    "claude-sonnet": "claude-sonnet-4-5-20250929",
    "claude-haiku": "claude-haiku-4-5-20251001",
    "opus": "claude-opus-4-5-20251101",
    "sonnet": "claude-sonnet-4-5-20250929",
    "haiku": "claude-haiku-4-5-20251001",
    "gpt-5.2": "gpt-5.2-2025-12-11",
    "gpt-5.2-pro": "gpt-5.2-pro-2025-12-11",
}

# Models registered at runtime (e.g. from the OpenRouter catalog)
_dynamic_models: Dict[str, ModelConfig] = {}


def resolve_model_id(model_id: Optional[str]) -> Optional[str]:
    """Resolve a model alias to its full id."""
    if model_id is None:
        return None
    return MODEL_ALIASES.get(model_id, model_id)


def get_model(model_id: Optional[str]) -> Optional[ModelConfig]:
    """Look up a model by id or alias across all providers."""
    resolved = resolve_model_id(model_id)
    if resolved is None:
        return None
    for models in PROVIDER_MODELS.values():
        for model in models:
            if model.id == resolved:
                return model
    return _dynamic_models.get(resolved)


def get_models_for_provider(provider_id: str) -> List[ModelConfig]:
    """All static models for a provider, plus any registered at runtime."""
    static = list(PROVIDER_MODELS.get(provider_id, []))
    known = {m.id for m in static}
    static.extend(m for m in _dynamic_models.values() if m.provider_id == provider_id and m.id not in known)
    return static


def get_models_by_tier(provider_id: str, tier: ModelTier) -> List[ModelConfig]:
    return [m for m in get_models_for_provider(provider_id) if m.tier == ModelTier(tier)]


def register_models(models: List[ModelConfig]) -> None:
    """Register runtime-discovered models so lookups can price them."""
    for model in models:
        _dynamic_models[model.id] = model


def clear_registered_models() -> None:
    _dynamic_models.clear()


def default_reasoning_effort(model: ModelConfig) -> Optional[ReasoningEffort]:
    """Prefer 'medium' when offered, otherwise the lowest effort the model supports."""
    if not model.reasoning_efforts:
        return None
    if ReasoningEffort.MEDIUM in model.reasoning_efforts:
        return ReasoningEffort.MEDIUM
    return model.reasoning_efforts[0]
