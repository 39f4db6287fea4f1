"""Cost controller: token estimation, exact counting and pricing.

Estimates are a cheap local heuristic that is always available. Exact counts
go to the provider (or litellm's local tokenizer tables) behind a debounce
and fall back to the estimate on any failure. Usage counters only grow; a
reset is an explicit operation.
"""

import asyncio
import json
import logging
import math
from typing import Awaitable, Callable, Optional, Union

from config import Settings, settings as default_settings
from contracts import ModelConfig, ProjectState, Stage, TokenUsage
from persistence.debounce import Debouncer
from providers import ProviderAdapter, get_adapter, get_model, is_aggregator

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4


def estimate_tokens(text: Optional[str]) -> int:
    """Heuristic token count: one token per four characters, rounded up."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def calculate_cost(
    model: ModelConfig,
    input_tokens: int,
    output_tokens: int,
    aggregator: bool = False,
    markup: Optional[float] = None,
) -> float:
    """Price one call in USD.

    Above a tiered-pricing threshold the input is split at the threshold and
    all output is billed at the elevated output rate.
    """
    if input_tokens < 0 or output_tokens < 0:
        raise ValueError("token counts must be non-negative")
    tiers = model.tiered_pricing
    if tiers is None or input_tokens <= tiers.threshold:
        cost = (
            input_tokens * model.input_cost_per_million / 1e6
            + output_tokens * model.output_cost_per_million / 1e6
        )
    else:
        input_cost = (
            tiers.threshold * model.input_cost_per_million / 1e6
            + (input_tokens - tiers.threshold) * tiers.input_cost_above / 1e6
        )
        cost = input_cost + output_tokens * tiers.output_cost_above / 1e6
    if aggregator:
        cost *= default_settings.aggregator_markup if markup is None else markup
    return cost


def format_cost(cost: float) -> str:
    """Format a USD amount: $0.0024, $0.123, $1.23."""
    if cost < 0.01:
        return f"${cost:.4f}"
    if cost < 1:
        return f"${cost:.3f}"
    return f"${cost:.2f}"


def format_token_count(tokens: int) -> str:
    """Format a token count: 950, 42.5k, 120k, 1.2M."""
    if tokens >= 1_000_000:
        return f"{tokens / 1_000_000:.1f}M"
    if tokens >= 1000:
        return f"{tokens / 1000:.0f}k" if tokens >= 10_000 else f"{tokens / 1000:.1f}k"
    return str(tokens)


def context_usage_percent(model: ModelConfig, used_tokens: int, kind: str = "input") -> float:
    limit = model.input_context_limit if kind == "input" else model.output_context_limit
    return min(100.0, used_tokens / limit * 100)


def context_status(usage_percent: float) -> str:
    """normal below 70%, warning below 90%, critical from 90%."""
    if usage_percent >= 90:
        return "critical"
    if usage_percent >= 70:
        return "warning"
    return "normal"


def build_context_text(state: ProjectState) -> str:
    """Text sent as context on the next call: answers plus each stage's current draft."""
    parts = []
    if state.answers:
        parts.append(json.dumps(state.answers, sort_keys=True))
    for stage in Stage:
        content = state.current_content(stage)
        if content:
            parts.append(content)
    return "\n\n".join(parts)


class CostController:
    """Token/cost accountant for one project session."""

    def __init__(
        self,
        config: Optional[Settings] = None,
        adapter_factory: Optional[Callable[[str], ProviderAdapter]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or default_settings
        self._adapter_factory = adapter_factory or (lambda pid: get_adapter(pid, self.config))
        self._debouncer = Debouncer(self.config.token_count_debounce_ms, sleep=sleep, name="token-count")

    def estimate(self, text: Optional[str]) -> int:
        return estimate_tokens(text)

    async def exact_count(
        self,
        text: str,
        provider_id: str,
        model_id: str,
        credential: Optional[str] = None,
    ) -> int:
        """Provider-backed token count, debounced; falls back to the estimate.

        Calls arriving within the debounce window coalesce: only the latest
        text is counted and every caller receives that count.
        """
        return await self._debouncer.call(
            lambda: self.count_now(text, provider_id, model_id, credential)
        )

    async def count_now(
        self,
        text: str,
        provider_id: str,
        model_id: str,
        credential: Optional[str] = None,
    ) -> int:
        """Exact count without debouncing."""
        if not text:
            return 0
        if credential is None:
            credential = self.config.credential_for(provider_id)
        try:
            adapter = self._adapter_factory(provider_id)
            count = await adapter.count_tokens(text, model_id, credential)
        except Exception as exc:
            logger.warning("Exact token count failed for %s, using estimate: %s", model_id, exc)
            return estimate_tokens(text)
        if count is None:
            return estimate_tokens(text)
        return count

    def cost(
        self,
        model: Union[str, ModelConfig],
        input_tokens: int,
        output_tokens: int,
        provider_id: Optional[str] = None,
    ) -> float:
        """Price a call; unknown models cost 0.0."""
        config = model if isinstance(model, ModelConfig) else get_model(model)
        if config is None:
            logger.warning("No pricing for model %s", model)
            return 0.0
        aggregator = is_aggregator(provider_id or config.provider_id)
        return calculate_cost(config, input_tokens, output_tokens, aggregator, self.config.aggregator_markup)

    def record_usage(
        self,
        usage: TokenUsage,
        model: Union[str, ModelConfig],
        input_tokens: int,
        output_tokens: int,
        provider_id: Optional[str] = None,
        grounding_requests: int = 0,
    ) -> TokenUsage:
        """Return ``usage`` with one call's tokens and cost added."""
        cost = self.cost(model, input_tokens, output_tokens, provider_id)
        return usage.add(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            grounding_requests=grounding_requests,
            cost=cost,
        )

    def reset(self) -> TokenUsage:
        return TokenUsage()

    def cancel_pending(self) -> None:
        self._debouncer.cancel()
