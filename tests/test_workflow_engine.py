"""End-to-end tests for the workflow engine facade."""

import asyncio
import json

import pytest

from contracts import (
    ErrorKind,
    GenerationCancelled,
    GenerationError,
    GenerationInProgress,
    GenerationSettings,
    ProjectState,
    SaveStatus,
    Stage,
    TokenUsage,
)
from orchestrator import CostController, GenerationOrchestrator, WorkflowEngine, estimate_tokens
from persistence import PersistenceManager
from providers.model_registry import clear_registered_models
from providers.openrouter_catalog import default_cache_path

from conftest import ScriptedAdapter, SleepRecorder, text_deltas


class GatedAdapter(ScriptedAdapter):
    def __init__(self, outcomes, **kwargs):
        super().__init__(outcomes, **kwargs)
        self.release = asyncio.Event()

    async def _deltas(self, deltas):
        for delta in deltas:
            yield delta
            await self.release.wait()


def make_engine(test_settings, adapter, state=None):
    return WorkflowEngine(
        state=state,
        config=test_settings,
        orchestrator=GenerationOrchestrator(test_settings, adapter_factory=lambda pid: adapter, sleep=SleepRecorder()),
        persistence=PersistenceManager(test_settings, sleep=SleepRecorder()),
        cost_controller=CostController(test_settings, adapter_factory=lambda pid: adapter, sleep=SleepRecorder()),
    )


class TestGeneration:
    def test_generate_does_not_commit(self, test_settings):
        adapter = ScriptedAdapter([text_deltas("Draft", input_tokens=100, output_tokens=20)])
        engine = make_engine(test_settings, adapter)
        result = asyncio.run(engine.generate(Stage.PRD, "Write a PRD"))
        assert result.text == "Draft"
        assert engine.current_content(Stage.PRD) is None

    def test_generate_then_commit(self, test_settings):
        adapter = ScriptedAdapter([text_deltas("Draft", input_tokens=100, output_tokens=20)])
        engine = make_engine(test_settings, adapter)

        async def scenario():
            result = await engine.generate(Stage.PRD, "Write a PRD")
            engine.commit(Stage.PRD, result.text)
            return await engine.save()

        assert asyncio.run(scenario()) == SaveStatus.SAVED
        assert engine.current_content(Stage.PRD) == "Draft"
        assert engine.persistence.store.read(engine.state.id).current_content(Stage.PRD) == "Draft"

    def test_usage_recorded_with_cost(self, test_settings):
        adapter = ScriptedAdapter([text_deltas("Draft", input_tokens=100, output_tokens=20)])
        engine = make_engine(test_settings, adapter)
        asyncio.run(engine.generate(Stage.PRD, "Write a PRD"))
        usage = engine.state.token_usage
        assert (usage.input_tokens, usage.output_tokens) == (100, 20)
        assert usage.estimated_cost == pytest.approx(100 * 1.25 / 1e6 + 20 * 10.0 / 1e6)
        assert usage.grounding_requests == 0

    def test_cached_openrouter_model_priced_with_markup(self, test_settings):
        cache = default_cache_path(test_settings)
        cache.parent.mkdir(parents=True, exist_ok=True)
        entry = {
            "id": "meta-llama/llama-3.3-70b-instruct",
            "name": "Llama 3.3 70B",
            "context_length": 131072,
            "pricing": {"prompt": "0.000001", "completion": "0.000002"},
        }
        cache.write_text(json.dumps({"data": [entry], "timestamp": 0}), encoding="utf-8")
        adapter = ScriptedAdapter(
            [text_deltas("Draft", input_tokens=1000, output_tokens=500)],
            provider_name="openrouter",
            model="meta-llama/llama-3.3-70b-instruct",
        )
        engine = make_engine(test_settings, adapter)
        try:
            asyncio.run(engine.generate(Stage.PRD, "p", provider_id="openrouter"))
        finally:
            clear_registered_models()
        assert engine.state.token_usage.estimated_cost == pytest.approx((1000 * 1.0 + 500 * 2.0) / 1e6 * 1.055)

    def test_missing_usage_is_estimated(self, test_settings):
        adapter = ScriptedAdapter([text_deltas("x" * 40)])
        engine = make_engine(test_settings, adapter)
        asyncio.run(engine.generate(Stage.TECH, "p" * 20, system_instruction="s" * 20))
        usage = engine.state.token_usage
        assert usage.input_tokens == estimate_tokens("s" * 20 + "p" * 20)
        assert usage.output_tokens == 10

    def test_grounding_counted(self, test_settings):
        adapter = ScriptedAdapter([text_deltas("ok", input_tokens=1, output_tokens=1)])
        engine = make_engine(test_settings, adapter)
        settings = GenerationSettings(use_grounding=True)
        asyncio.run(engine.generate(Stage.RESEARCH, "research", generation_settings=settings))
        assert engine.state.token_usage.grounding_requests == 1

    def test_project_settings_used(self, test_settings):
        adapter = ScriptedAdapter([text_deltas("ok")])
        engine = make_engine(test_settings, adapter)

        async def scenario():
            engine.update_settings(model_id="gemini-2.5-flash", temperature=0.2)
            await engine.generate(Stage.PRD, "p")

        asyncio.run(scenario())
        request = adapter.requests[0]
        assert request.model == "gemini-2.5-flash"
        assert request.settings.temperature == 0.2

    def test_session_attached_while_streaming(self, test_settings):
        seen = []

        async def scenario():
            adapter = ScriptedAdapter([text_deltas("a", "b")])
            engine = make_engine(test_settings, adapter)
            await engine.generate(Stage.PRD, "p", on_chunk=lambda _: seen.append(engine.state.is_generating))
            return engine

        engine = asyncio.run(scenario())
        assert seen == [True, True]
        assert engine.state.session is None
        assert not engine.is_generating

    def test_concurrent_generation_rejected_without_state_change(self, test_settings):
        async def scenario():
            adapter = GatedAdapter([text_deltas("a", "b")])
            engine = make_engine(test_settings, adapter)
            first = asyncio.ensure_future(engine.generate(Stage.PRD, "p"))
            for _ in range(100):
                if engine.state.is_generating:
                    break
                await asyncio.sleep(0)
            before = engine.state
            with pytest.raises(GenerationInProgress):
                await engine.generate(Stage.TECH, "q")
            assert engine.state is before
            adapter.release.set()
            await first
            return adapter

        adapter = asyncio.run(scenario())
        assert adapter.open_calls == 1

    def test_cancel_leaves_versions_and_usage(self, test_settings):
        adapter = ScriptedAdapter([text_deltas("a", "b", "c", input_tokens=5, output_tokens=5)])
        engine = make_engine(test_settings, adapter)

        def on_chunk(text):
            if text == "a":
                engine.cancel()

        with pytest.raises(GenerationCancelled):
            asyncio.run(engine.generate(Stage.PRD, "p", on_chunk=on_chunk))
        assert engine.current_content(Stage.PRD) is None
        assert engine.state.token_usage == TokenUsage()
        assert engine.state.session is None

    def test_failure_leaves_usage(self, test_settings):
        adapter = ScriptedAdapter([GenerationError(ErrorKind.AUTH, "Invalid API key", status=401)])
        engine = make_engine(test_settings, adapter)
        with pytest.raises(GenerationError):
            asyncio.run(engine.generate(Stage.PRD, "p"))
        assert engine.state.token_usage == TokenUsage()
        assert not engine.is_generating

    def test_credential_never_persisted(self, test_settings):
        adapter = ScriptedAdapter([text_deltas("Draft")])
        engine = make_engine(test_settings, adapter)

        async def scenario():
            result = await engine.generate(Stage.PRD, "p", credential="sk-super-secret-value")
            engine.commit(Stage.PRD, result.text)
            await engine.save()

        asyncio.run(scenario())
        document = engine.persistence.store.path_for(engine.state.id).read_text(encoding="utf-8")
        assert adapter.requests[0].credential == "sk-super-secret-value"
        assert "sk-super-secret-value" not in document
        assert "test-gemini-key" not in document


class TestRefine:
    def test_refine_includes_current_draft(self, test_settings):
        adapter = ScriptedAdapter([text_deltas("v2")])
        engine = make_engine(test_settings, adapter)

        async def scenario():
            engine.commit(Stage.PRD, "v1 draft")
            return await engine.refine(Stage.PRD, "make it shorter")

        result = asyncio.run(scenario())
        prompt = adapter.requests[0].prompt
        assert "v1 draft" in prompt
        assert "make it shorter" in prompt
        assert result.text == "v2"
        assert len(engine.history(Stage.PRD).versions) == 1

    def test_refine_empty_stage(self, test_settings):
        engine = make_engine(test_settings, ScriptedAdapter([text_deltas("x")]))
        with pytest.raises(ValueError):
            asyncio.run(engine.refine(Stage.TECH, "improve"))


class TestVersioningAndUndo:
    def test_undo_redo_commits(self, test_settings):
        engine = make_engine(test_settings, ScriptedAdapter([text_deltas("x")]))

        async def scenario():
            engine.commit(Stage.PRD, "v1")
            engine.commit(Stage.PRD, "v2")
            engine.undo()
            assert engine.current_content(Stage.PRD) == "v1"
            engine.undo()
            assert engine.current_content(Stage.PRD) is None
            assert not engine.can_undo()
            engine.redo()
            engine.redo()
            assert engine.current_content(Stage.PRD) == "v2"
            assert not engine.can_redo()
            await engine.close()

        asyncio.run(scenario())

    def test_undo_keeps_usage(self, test_settings):
        adapter = ScriptedAdapter([text_deltas("Draft", input_tokens=100, output_tokens=20)])
        engine = make_engine(test_settings, adapter)

        async def scenario():
            result = await engine.generate(Stage.PRD, "p")
            engine.commit(Stage.PRD, result.text)
            usage = engine.state.token_usage
            engine.undo()
            assert engine.current_content(Stage.PRD) is None
            assert engine.state.token_usage == usage
            engine.redo()
            assert engine.state.token_usage == usage

        asyncio.run(scenario())

    def test_cycle_boundary_is_not_an_undo_step(self, test_settings):
        engine = make_engine(test_settings, ScriptedAdapter([text_deltas("x")]))

        async def scenario():
            engine.commit(Stage.PRD, "only")
            before = len(engine.persistence.history)
            engine.cycle(Stage.PRD, 1)
            return before, len(engine.persistence.history)

        before, after = asyncio.run(scenario())
        assert before == after

    def test_cycle_and_manual_edit(self, test_settings):
        engine = make_engine(test_settings, ScriptedAdapter([text_deltas("x")]))

        async def scenario():
            engine.commit(Stage.TECH, "v1")
            engine.commit(Stage.TECH, "v2")
            engine.cycle(Stage.TECH, -1)
            engine.manual_edit(Stage.TECH, "hand edit")

        asyncio.run(scenario())
        history = engine.history(Stage.TECH)
        assert [v.content for v in history.versions] == ["v1", "v2", "hand edit"]
        assert history.current_index == 2

    def test_edits_after_undo_discard_redo(self, test_settings):
        engine = make_engine(test_settings, ScriptedAdapter([text_deltas("x")]))

        async def scenario():
            engine.commit(Stage.PRD, "v1")
            engine.commit(Stage.PRD, "v2")
            engine.undo()
            engine.set_answer("audience", "students")
            return engine.can_redo()

        assert asyncio.run(scenario()) is False


class TestProjectData:
    def test_answers_settings_and_name_persist(self, test_settings):
        engine = make_engine(test_settings, ScriptedAdapter([text_deltas("x")]))

        async def scenario():
            engine.set_answer("project_description", "A habit tracker")
            engine.update_settings(provider_id="anthropic", model_id="claude-sonnet-4-5-20250929", top_k=20)
            engine.rename("Habits")
            await engine.close()

        asyncio.run(scenario())
        reopened = WorkflowEngine.open_project(engine.state.id, config=test_settings)
        assert reopened.state.answers == {"project_description": "A habit tracker"}
        assert reopened.state.settings.provider_id == "anthropic"
        assert reopened.state.settings.generation.top_k == 20
        assert reopened.state.name == "Habits"

    def test_invalid_settings_rejected(self, test_settings):
        engine = make_engine(test_settings, ScriptedAdapter([text_deltas("x")]))
        with pytest.raises(ValueError):
            engine.update_settings(temperature=5.0)

    def test_reset_usage(self, test_settings):
        adapter = ScriptedAdapter([text_deltas("Draft", input_tokens=100, output_tokens=20)])
        engine = make_engine(test_settings, adapter)

        async def scenario():
            await engine.generate(Stage.PRD, "p")
            engine.reset_usage()
            await engine.close()

        asyncio.run(scenario())
        assert engine.state.token_usage == TokenUsage()

    def test_usage_summary(self, test_settings):
        state = ProjectState(answers={"goal": "x" * 100})
        engine = make_engine(test_settings, ScriptedAdapter([text_deltas("x")]), state=state)
        summary = engine.usage_summary()
        assert summary["input_tokens"] == 0
        assert summary["context_tokens"] == estimate_tokens(engine.context_text())
        assert summary["context_tokens"] > 0

    def test_exact_tokens_uses_active_model(self, test_settings):
        adapter = ScriptedAdapter([text_deltas("x")], token_count=42)
        engine = make_engine(test_settings, adapter)
        assert asyncio.run(engine.exact_tokens("some text")) == 42
        assert adapter.count_calls == ["some text"]

    def test_cost_helper(self, test_settings):
        engine = make_engine(test_settings, ScriptedAdapter([text_deltas("x")]))
        assert engine.cost("gemini-2.5-flash", 1_000_000, 0) == pytest.approx(0.30)


class TestSaveStatus:
    def test_state_tracks_failed_write(self, test_settings):
        engine = make_engine(test_settings, ScriptedAdapter([text_deltas("x")]))
        engine.persistence.store.max_document_bytes = 20

        async def scenario():
            engine.manual_edit(Stage.PRD, "draft")
            assert engine.state.save_status == SaveStatus.UNSAVED
            return await engine.save()

        assert asyncio.run(scenario()) == SaveStatus.ERROR
        assert engine.state.save_status == SaveStatus.ERROR
        assert engine.save_status == SaveStatus.ERROR

        engine.persistence.store.max_document_bytes = 0
        assert asyncio.run(engine.save()) == SaveStatus.SAVED
        assert engine.state.save_status == SaveStatus.SAVED

    def test_undo_reports_unsaved(self, test_settings):
        engine = make_engine(test_settings, ScriptedAdapter([text_deltas("x")]))

        async def scenario():
            engine.manual_edit(Stage.PRD, "v1")
            await engine.save()
            assert engine.state.save_status == SaveStatus.SAVED
            engine.undo()
            return engine.state.save_status

        assert asyncio.run(scenario()) == SaveStatus.UNSAVED
