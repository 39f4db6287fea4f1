"""Orchestrator module: generation control, accounting and the workflow facade."""

from .cost_controller import (
    CostController,
    build_context_text,
    calculate_cost,
    context_status,
    context_usage_percent,
    estimate_tokens,
    format_cost,
    format_token_count,
)
from .generation import GenerationOrchestrator
from .retry import backoff_delay_ms, retry_with_backoff
from .workflow_engine import WorkflowEngine

__all__ = [
    "CostController",
    "GenerationOrchestrator",
    "WorkflowEngine",
    "backoff_delay_ms",
    "build_context_text",
    "calculate_cost",
    "context_status",
    "context_usage_percent",
    "estimate_tokens",
    "format_cost",
    "format_token_count",
    "retry_with_backoff",
]
