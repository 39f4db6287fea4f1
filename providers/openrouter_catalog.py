"""Live OpenRouter model list, cached with a TTL.

Fetched models are converted to ``ModelConfig`` and registered so the
accountant can price them. When the fetch fails the last good list is used,
then the static defaults.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import requests

from config import Settings, settings
from contracts import ModelConfig, ModelTier
from .model_registry import PROVIDER_MODELS, register_models

logger = logging.getLogger(__name__)

MODELS_URL = "https://openrouter.ai/api/v1/models"
CACHE_FILENAME = "openrouter_models.json"

VENDOR_DISPLAY_NAMES = {
    "openai": "OpenAI",
    "anthropic": "Anthropic",
    "google": "Google",
    "meta-llama": "Meta Llama",
    "mistralai": "Mistral AI",
    "mistral": "Mistral AI",
    "cohere": "Cohere",
    "perplexity": "Perplexity",
    "deepseek": "DeepSeek",
    "qwen": "Qwen",
    "microsoft": "Microsoft",
    "nousresearch": "Nous Research",
    "openrouter": "OpenRouter",
}


@dataclass
class VendorGroup:
    """Models of one upstream vendor, sorted by display name."""
    name: str
    display_name: str
    models: List[ModelConfig] = field(default_factory=list)


def _per_million(value: Any) -> float:
    # OpenRouter quotes USD per token as a string
    try:
        return max(float(value), 0.0) * 1_000_000
    except (TypeError, ValueError):
        return 0.0


def model_from_entry(entry: Dict[str, Any]) -> Optional[ModelConfig]:
    """Convert one /models entry to a ModelConfig, or None when unusable."""
    model_id = entry.get("id")
    if not model_id:
        return None
    pricing = entry.get("pricing") or {}
    context = entry.get("context_length") or 0
    top_provider = entry.get("top_provider") or {}
    output_limit = top_provider.get("max_completion_tokens") or min(context, 16_384) or 4096
    input_cost = _per_million(pricing.get("prompt"))
    return ModelConfig(
        id=model_id,
        provider_id="openrouter",
        tier=ModelTier.MID,
        display_name=entry.get("name") or model_id,
        description=(entry.get("description") or "")[:200],
        input_cost_per_million=input_cost,
        output_cost_per_million=_per_million(pricing.get("completion")),
        input_context_limit=context or 4096,
        output_context_limit=output_limit,
    )


def default_cache_path(config: Optional[Settings] = None) -> Path:
    """Where the fetched catalog is kept between processes."""
    return (config or settings).get_workspace_path() / CACHE_FILENAME


def group_by_vendor(models: List[ModelConfig]) -> List[VendorGroup]:
    """Group models by the vendor prefix of their id ("openai/gpt-4o" -> "openai")."""
    groups: Dict[str, VendorGroup] = {}
    for model in models:
        vendor = model.id.split("/", 1)[0]
        if vendor not in groups:
            display = VENDOR_DISPLAY_NAMES.get(vendor, vendor[:1].upper() + vendor[1:])
            groups[vendor] = VendorGroup(name=vendor, display_name=display)
        groups[vendor].models.append(model)
    for group in groups.values():
        group.models.sort(key=lambda m: m.label)
    return sorted(groups.values(), key=lambda g: g.display_name)


class OpenRouterCatalog:
    """TTL-cached OpenRouter model list.

    With a ``cache_path`` the raw entries and fetch time are also kept on disk
    so a fresh process can reuse them until the TTL expires.
    """

    def __init__(
        self,
        ttl_seconds: Optional[int] = None,
        fetch: Optional[Callable[[], List[Dict[str, Any]]]] = None,
        clock: Callable[[], float] = time.time,
        cache_path: Optional[Path] = None,
    ):
        self.ttl_seconds = settings.openrouter_catalog_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._fetch = fetch or self._fetch_entries
        self._clock = clock
        self._models: List[ModelConfig] = []
        self._fetched_at: Optional[float] = None
        self.last_error: Optional[str] = None
        self.cache_path = Path(cache_path) if cache_path else None
        self._load_disk_cache()

    @staticmethod
    def _fetch_entries() -> List[Dict[str, Any]]:
        response = requests.get(MODELS_URL, timeout=settings.api_timeout_seconds)
        response.raise_for_status()
        return response.json().get("data", [])

    def _load_disk_cache(self) -> None:
        if self.cache_path is None or not self.cache_path.exists():
            return
        try:
            cached = json.loads(self.cache_path.read_text(encoding="utf-8"))
            models = [m for m in (model_from_entry(e) for e in cached["data"]) if m is not None]
            fetched_at = float(cached["timestamp"])
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning("Ignoring unreadable OpenRouter cache %s: %s", self.cache_path, exc)
            return
        self._models = models
        self._fetched_at = fetched_at
        register_models(models)

    def _save_disk_cache(self, entries: List[Dict[str, Any]]) -> None:
        if self.cache_path is None:
            return
        try:
            self.cache_path.parent.mkdir(parents=True, exist_ok=True)
            self.cache_path.write_text(
                json.dumps({"data": entries, "timestamp": self._fetched_at}),
                encoding="utf-8",
            )
        except OSError as exc:
            logger.warning("Could not write OpenRouter cache %s: %s", self.cache_path, exc)

    def is_fresh(self) -> bool:
        return self._fetched_at is not None and self._clock() - self._fetched_at < self.ttl_seconds

    def models(self, refresh: bool = False) -> List[ModelConfig]:
        """Return the catalog, fetching when stale or when ``refresh`` is set."""
        if self.is_fresh() and not refresh:
            return list(self._models)
        try:
            entries = self._fetch()
        except (requests.RequestException, ValueError) as exc:
            self.last_error = str(exc)
            logger.warning("Failed to fetch OpenRouter models: %s", exc)
            if self._models:
                return list(self._models)
            return list(PROVIDER_MODELS["openrouter"])

        models = [m for m in (model_from_entry(e) for e in entries) if m is not None]
        self._models = models
        self._fetched_at = self._clock()
        self.last_error = None
        register_models(models)
        self._save_disk_cache(entries)
        logger.info("Loaded %d OpenRouter models", len(models))
        return list(models)

    def groups(self, refresh: bool = False) -> List[VendorGroup]:
        return group_by_vendor(self.models(refresh=refresh))
