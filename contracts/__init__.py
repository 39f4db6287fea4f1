"""Pydantic contracts for the StageForge engine.

Everything the engine hands to callers, or persists, is typed through these contracts.
"""

from .model_contracts import (
    ModelTier,
    ReasoningEffort,
    TieredPricing,
    ModelConfig,
    ProviderCapabilities,
)

from .project_contracts import (
    Stage,
    SaveStatus,
    SafetyPreset,
    ArtifactVersion,
    StageHistory,
    TokenUsage,
    GenerationSettings,
    ProjectSettings,
    ProjectState,
    GroundingSource,
    now_ms,
)

from .errors import (
    ErrorKind,
    RETRYABLE_KINDS,
    GenerationError,
    GenerationCancelled,
    GenerationInProgress,
    StorageQuotaExceeded,
    truncate_message,
)

from .session_contracts import (
    GenerationPhase,
    CancelToken,
    GenerationSession,
)

__all__ = [
    # Models
    "ModelTier",
    "ReasoningEffort",
    "TieredPricing",
    "ModelConfig",
    "ProviderCapabilities",
    # Project
    "Stage",
    "SaveStatus",
    "SafetyPreset",
    "ArtifactVersion",
    "StageHistory",
    "TokenUsage",
    "GenerationSettings",
    "ProjectSettings",
    "ProjectState",
    "GroundingSource",
    "now_ms",
    # Errors
    "ErrorKind",
    "RETRYABLE_KINDS",
    "GenerationError",
    "GenerationCancelled",
    "GenerationInProgress",
    "StorageQuotaExceeded",
    "truncate_message",
    # Sessions
    "GenerationPhase",
    "CancelToken",
    "GenerationSession",
]
