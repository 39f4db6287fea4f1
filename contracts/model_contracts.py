"""Model catalog contracts: tiers, pricing and capability metadata."""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Tuple
from enum import Enum


class ModelTier(str, Enum):
    """Capability/price tier of a model."""
    FAST = "fast"
    MID = "mid"
    COMPLEX = "complex"


class ReasoningEffort(str, Enum):
    """Reasoning effort levels, lowest first."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    XHIGH = "xhigh"


class TieredPricing(BaseModel):
    """Elevated rates applied once a request's input crosses the threshold."""
    model_config = ConfigDict(frozen=True)

    threshold: int = Field(..., gt=0, description="Input token count above which elevated rates apply")
    input_cost_above: float = Field(..., ge=0.0, description="USD per 1M input tokens above the threshold")
    output_cost_above: float = Field(..., ge=0.0, description="USD per 1M output tokens once the threshold is crossed")


class ModelConfig(BaseModel):
    """Static metadata for one model of one provider."""
    model_config = ConfigDict(frozen=True)

    id: str
    provider_id: str
    tier: ModelTier
    display_name: str = ""
    description: str = ""
    input_cost_per_million: float = Field(..., ge=0.0)
    output_cost_per_million: float = Field(..., ge=0.0)
    input_context_limit: int = Field(..., gt=0)
    output_context_limit: int = Field(..., gt=0)
    tiered_pricing: Optional[TieredPricing] = None
    reasoning_efforts: Tuple[ReasoningEffort, ...] = ()
    supports_thinking: bool = False
    supports_grounding: bool = False

    @property
    def label(self) -> str:
        return self.display_name or self.id

    @property
    def supports_reasoning_effort(self) -> bool:
        return len(self.reasoning_efforts) > 0


class ProviderCapabilities(BaseModel):
    """Optional request parameters a provider accepts."""
    model_config = ConfigDict(frozen=True)

    supports_max_tokens: bool = True
    supports_stop: bool = True
    supports_seed: bool = False
    supports_safety: bool = False
