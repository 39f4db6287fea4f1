"""Tests for the Pydantic contracts.

Verifies that contracts instantiate with valid data, that validation works
correctly, and that project state is immutable.
"""

import pytest
from pydantic import ValidationError

from contracts import (
    ArtifactVersion,
    CancelToken,
    ErrorKind,
    GenerationCancelled,
    GenerationError,
    GenerationInProgress,
    GenerationPhase,
    GenerationSession,
    GenerationSettings,
    ModelConfig,
    ModelTier,
    ProjectState,
    SaveStatus,
    Stage,
    StageHistory,
    StorageQuotaExceeded,
    TieredPricing,
    TokenUsage,
    truncate_message,
)


class TestProjectState:
    """Test the project aggregate root."""

    def test_new_project_has_every_stage(self):
        state = ProjectState()
        assert set(state.stages) == set(Stage)
        assert all(history.is_empty for history in state.stages.values())

    def test_missing_stages_are_filled(self):
        state = ProjectState(stages={Stage.PRD: StageHistory(stage=Stage.PRD)})
        assert set(state.stages) == set(Stage)

    def test_empty_stage_reads_none(self):
        assert ProjectState().current_content(Stage.RESEARCH) is None

    def test_empty_string_version_is_not_none(self):
        history = StageHistory(stage=Stage.PRD, versions=(ArtifactVersion(content=""),))
        state = ProjectState(stages={Stage.PRD: history})
        assert state.current_content(Stage.PRD) == ""

    def test_state_is_frozen(self):
        state = ProjectState()
        with pytest.raises(ValidationError):
            state.name = "changed"

    def test_runtime_fields_excluded_from_dump(self):
        state = ProjectState(save_status=SaveStatus.ERROR)
        dumped = state.model_dump()
        assert "save_status" not in dumped
        assert "session" not in dumped

    def test_is_generating_follows_session(self):
        session = GenerationSession(stage=Stage.PRD, provider_id="gemini", model_id="gemini-2.5-pro")
        assert ProjectState(session=session).is_generating
        session.is_active = False
        assert not ProjectState(session=session).is_generating

    def test_unique_ids(self):
        assert ProjectState().id != ProjectState().id


class TestStageHistory:
    def test_cursor_clamped_to_versions(self):
        versions = (ArtifactVersion(content="a"), ArtifactVersion(content="b"))
        history = StageHistory(stage=Stage.TECH, versions=versions, current_index=7)
        assert history.current_index == 1
        assert history.current.content == "b"

    def test_negative_cursor_clamped(self):
        versions = (ArtifactVersion(content="a"),)
        assert StageHistory(stage=Stage.TECH, versions=versions, current_index=-3).current_index == 0

    def test_cursor_defaults_to_latest(self):
        versions = (ArtifactVersion(content="a"), ArtifactVersion(content="b"), ArtifactVersion(content="c"))
        history = StageHistory.model_validate({"stage": "tech", "versions": [v.model_dump() for v in versions]})
        assert history.current_index == 2

    def test_empty_history_has_no_current(self):
        assert StageHistory(stage=Stage.BUILD).current is None


class TestTokenUsage:
    def test_add_returns_new_record(self):
        usage = TokenUsage()
        updated = usage.add(input_tokens=10, output_tokens=5, grounding_requests=1, cost=0.5)
        assert usage.input_tokens == 0
        assert (updated.input_tokens, updated.output_tokens, updated.grounding_requests) == (10, 5, 1)
        assert updated.estimated_cost == 0.5

    def test_negative_delta_rejected(self):
        with pytest.raises(ValueError):
            TokenUsage().add(input_tokens=-1)

    def test_negative_counter_rejected(self):
        with pytest.raises(ValidationError):
            TokenUsage(output_tokens=-5)


class TestGenerationSettings:
    def test_defaults(self):
        settings = GenerationSettings()
        assert settings.temperature == 0.7
        assert settings.top_k == 64
        assert settings.top_p == 0.95
        assert settings.thinking_budget == 0
        assert settings.use_grounding is False

    def test_temperature_out_of_range(self):
        with pytest.raises(ValidationError):
            GenerationSettings(temperature=3.0)

    def test_top_p_out_of_range(self):
        with pytest.raises(ValidationError):
            GenerationSettings(top_p=1.5)


class TestModelConfig:
    def test_label_falls_back_to_id(self):
        model = ModelConfig(
            id="m-1",
            provider_id="gemini",
            tier=ModelTier.FAST,
            input_cost_per_million=1.0,
            output_cost_per_million=2.0,
            input_context_limit=1000,
            output_context_limit=100,
        )
        assert model.label == "m-1"
        assert not model.supports_reasoning_effort

    def test_context_limit_must_be_positive(self):
        with pytest.raises(ValidationError):
            ModelConfig(
                id="m-1",
                provider_id="gemini",
                tier=ModelTier.FAST,
                input_cost_per_million=1.0,
                output_cost_per_million=2.0,
                input_context_limit=0,
                output_context_limit=100,
            )

    def test_tiered_pricing_threshold_positive(self):
        with pytest.raises(ValidationError):
            TieredPricing(threshold=0, input_cost_above=1.0, output_cost_above=1.0)


class TestErrors:
    def test_retryable_kinds(self):
        assert GenerationError(ErrorKind.RATE_LIMITED, "x").retryable
        assert GenerationError(ErrorKind.SERVER_ERROR, "x").retryable
        assert GenerationError(ErrorKind.NETWORK_TRANSIENT, "x").retryable
        assert not GenerationError(ErrorKind.AUTH, "x").retryable
        assert not GenerationError(ErrorKind.INVALID_REQUEST, "x").retryable
        assert not GenerationError(ErrorKind.UNKNOWN, "x").retryable

    def test_unknown_message_truncated(self):
        error = GenerationError(ErrorKind.UNKNOWN, "z" * 500)
        assert len(error.message) == 83
        assert error.message.endswith("...")

    def test_short_messages_untouched(self):
        assert truncate_message("short") == "short"

    def test_cancelled_is_not_generation_error(self):
        assert not issubclass(GenerationCancelled, GenerationError)

    def test_in_progress_names_stage(self):
        assert "prd" in str(GenerationInProgress("prd"))

    def test_quota_error_kind(self):
        assert StorageQuotaExceeded().kind == ErrorKind.STORAGE_QUOTA_EXCEEDED


class TestCancelToken:
    def test_callbacks_run_once(self):
        token = CancelToken()
        calls = []
        token.on_cancel(lambda: calls.append(1))
        token.cancel()
        token.cancel()
        assert calls == [1]
        assert token.cancelled

    def test_late_callback_runs_immediately(self):
        token = CancelToken()
        token.cancel()
        calls = []
        token.on_cancel(lambda: calls.append(1))
        assert calls == [1]

    def test_failing_callback_does_not_block_others(self):
        token = CancelToken()
        calls = []

        def boom():
            raise RuntimeError("boom")

        token.on_cancel(boom)
        token.on_cancel(lambda: calls.append(1))
        token.cancel()
        assert calls == [1]

    def test_raise_if_cancelled(self):
        token = CancelToken()
        token.raise_if_cancelled()
        token.cancel()
        with pytest.raises(GenerationCancelled):
            token.raise_if_cancelled()

    def test_session_starts_requesting(self):
        session = GenerationSession(stage=Stage.RESEARCH, provider_id="gemini", model_id="gemini-2.5-pro")
        assert session.phase == GenerationPhase.REQUESTING
        assert session.is_active
        session.cancel()
        assert session.cancel_token.cancelled
