"""Project state contracts.

ProjectState is the single root of everything the engine owns. All models here
are frozen: every mutation produces a new instance via ``model_copy`` so a
reader holding an older reference never observes a partial update.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Any, Dict, List, Optional, Tuple
from enum import Enum
import time
import uuid

from .model_contracts import ReasoningEffort


class Stage(str, Enum):
    """Pipeline stages, in workflow order."""
    RESEARCH = "research"
    PRD = "prd"
    TECH = "tech"
    AGENT = "agent"
    BUILD = "build"


class SaveStatus(str, Enum):
    """Durable save lifecycle of a project."""
    SAVED = "saved"
    SAVING = "saving"
    UNSAVED = "unsaved"
    ERROR = "error"


class SafetyPreset(str, Enum):
    """Content-safety presets (Gemini only)."""
    DEFAULT = "default"
    RELAXED = "relaxed"
    BALANCED = "balanced"
    STRICT = "strict"


def now_ms() -> int:
    """Wall-clock timestamp in milliseconds."""
    return int(time.time() * 1000)


class ArtifactVersion(BaseModel):
    """One immutable draft of a stage's content."""
    model_config = ConfigDict(frozen=True)

    content: str
    timestamp: int = Field(default_factory=now_ms)


class StageHistory(BaseModel):
    """Append-only version list for one stage plus the active cursor."""
    model_config = ConfigDict(frozen=True)

    stage: Stage
    versions: Tuple[ArtifactVersion, ...] = ()
    current_index: int = 0

    @model_validator(mode="before")
    @classmethod
    def _clamp_cursor(cls, data: Any) -> Any:
        # Older documents may carry a cursor outside the version list
        if isinstance(data, dict):
            versions = data.get("versions") or ()
            if not isinstance(versions, (list, tuple)):
                versions = ()
            upper = max(len(versions) - 1, 0)
            index = data.get("current_index", upper)
            if not isinstance(index, int):
                index = upper
            data = {**data, "current_index": min(max(index, 0), upper)}
        return data

    @property
    def is_empty(self) -> bool:
        return len(self.versions) == 0

    @property
    def current(self) -> Optional[ArtifactVersion]:
        if not self.versions:
            return None
        return self.versions[self.current_index]


class TokenUsage(BaseModel):
    """Cumulative usage counters for a project session."""
    model_config = ConfigDict(frozen=True)

    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    grounding_requests: int = Field(default=0, ge=0)
    estimated_cost: float = Field(default=0.0, ge=0.0)

    def add(
        self,
        input_tokens: int = 0,
        output_tokens: int = 0,
        grounding_requests: int = 0,
        cost: float = 0.0,
    ) -> "TokenUsage":
        """Return a new usage record with the deltas added.

        Raises:
            ValueError: If any delta is negative (counters never decrease)
        """
        if min(input_tokens, output_tokens, grounding_requests) < 0 or cost < 0:
            raise ValueError("usage deltas must be non-negative")
        return TokenUsage(
            input_tokens=self.input_tokens + input_tokens,
            output_tokens=self.output_tokens + output_tokens,
            grounding_requests=self.grounding_requests + grounding_requests,
            estimated_cost=self.estimated_cost + cost,
        )


class GenerationSettings(BaseModel):
    """Sampling and capability parameters for a generation request."""
    model_config = ConfigDict(frozen=True)

    temperature: Optional[float] = Field(default=0.7, ge=0.0, le=2.0)
    top_k: Optional[int] = Field(default=64, ge=1)
    top_p: Optional[float] = Field(default=0.95, ge=0.0, le=1.0)
    thinking_budget: int = Field(default=0, ge=0)
    use_grounding: bool = False
    reasoning_effort: Optional[ReasoningEffort] = None
    max_output_tokens: Optional[int] = Field(default=None, gt=0)
    seed: Optional[int] = None
    stop_sequences: List[str] = Field(default_factory=list)
    safety_preset: SafetyPreset = SafetyPreset.DEFAULT


class ProjectSettings(BaseModel):
    """Active provider/model selection plus sampling parameters."""
    model_config = ConfigDict(frozen=True)

    provider_id: str = "gemini"
    model_id: str = "gemini-2.5-pro"
    generation: GenerationSettings = Field(default_factory=GenerationSettings)


def empty_stages() -> Dict[Stage, StageHistory]:
    return {stage: StageHistory(stage=stage) for stage in Stage}


class ProjectState(BaseModel):
    """Aggregate root for one project.

    ``save_status`` and ``session`` are runtime-only and never persisted.
    """
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str = "Untitled Project"
    last_modified: int = Field(default_factory=now_ms)
    answers: Dict[str, str] = Field(default_factory=dict)
    stages: Dict[Stage, StageHistory] = Field(default_factory=empty_stages)
    settings: ProjectSettings = Field(default_factory=ProjectSettings)
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    save_status: SaveStatus = Field(default=SaveStatus.SAVED, exclude=True)
    session: Optional[Any] = Field(default=None, exclude=True)

    @field_validator("stages", mode="after")
    @classmethod
    def _fill_missing_stages(cls, stages: Dict[Stage, StageHistory]) -> Dict[Stage, StageHistory]:
        filled = dict(stages)
        for stage in Stage:
            if stage not in filled:
                filled[stage] = StageHistory(stage=stage)
        return filled

    @property
    def is_generating(self) -> bool:
        return self.session is not None and self.session.is_active

    def history(self, stage: Stage) -> StageHistory:
        return self.stages[Stage(stage)]

    def current_content(self, stage: Stage) -> Optional[str]:
        """Content at the stage's cursor, or None when the stage has no versions."""
        current = self.history(stage).current
        return current.content if current is not None else None


class GroundingSource(BaseModel):
    """A web source consulted by a grounded generation."""
    model_config = ConfigDict(frozen=True)

    uri: str
    title: str = ""
