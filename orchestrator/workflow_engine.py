"""Workflow Engine - the caller-facing entry point for one open project.

The engine owns the current ``ProjectState`` and wires together:
1. The generation orchestrator (streaming, retries, cancellation)
2. The version store (append-only stage histories)
3. The cost controller (token estimates, exact counts, pricing)
4. The persistence manager (debounced saves, undo/redo)

Generation and commit are separate calls so a caller can review a draft
before keeping it. Every committed mutation is snapshotted for undo and
scheduled for saving; usage counters are carried across undo and redo so
they never decrease.
"""

import logging
from typing import Any, Dict, Optional, Union

from artifacts import VersionStore
from config import Settings, settings as default_settings
from contracts import (
    GenerationInProgress,
    GenerationSession,
    GenerationSettings,
    ModelConfig,
    ProjectSettings,
    ProjectState,
    SaveStatus,
    Stage,
    StageHistory,
)
from persistence import PersistenceManager
from providers import ChunkCallback, StatusCallback, StreamResult, get_model, is_aggregator
from providers.openrouter_catalog import OpenRouterCatalog, default_cache_path
from .cost_controller import CostController, build_context_text
from .generation import GenerationOrchestrator

logger = logging.getLogger(__name__)

REFINE_TEMPLATE = (
    "Here is the current draft:\n\n"
    "{content}\n\n"
    "Revise the draft according to these instructions and return the complete "
    "updated document:\n{instruction}"
)


def _noop_chunk(_: str) -> None:
    pass


class WorkflowEngine:
    """Engine facade over a single open project."""

    def __init__(
        self,
        state: Optional[ProjectState] = None,
        config: Optional[Settings] = None,
        orchestrator: Optional[GenerationOrchestrator] = None,
        persistence: Optional[PersistenceManager] = None,
        cost_controller: Optional[CostController] = None,
        versions: Optional[VersionStore] = None,
        catalog: Optional[OpenRouterCatalog] = None,
    ):
        """Initialize the engine.

        Args:
            state: Project to open (a new one when omitted)
            config: Settings shared by all components
            orchestrator: Generation orchestrator override
            persistence: Persistence manager override
            cost_controller: Token/cost accountant override
            versions: Version store override
            catalog: OpenRouter catalog used to price models outside the static registry
        """
        self.config = config or default_settings
        self.orchestrator = orchestrator or GenerationOrchestrator(self.config)
        self.persistence = persistence or PersistenceManager(self.config)
        self.cost_controller = cost_controller or CostController(self.config)
        self.versions = versions or VersionStore()
        self.catalog = catalog
        if state is None:
            state = ProjectState(settings=self._default_project_settings())
        state = self.persistence.open(state)
        self.state = state.model_copy(update={"save_status": self.persistence.status})
        self.persistence.add_status_listener(self._on_save_status)

    def _default_project_settings(self) -> ProjectSettings:
        return ProjectSettings(
            provider_id=self.config.default_provider,
            model_id=self.config.default_model,
            generation=GenerationSettings(
                temperature=self.config.default_temperature,
                top_k=self.config.default_top_k,
                top_p=self.config.default_top_p,
                thinking_budget=self.config.default_thinking_budget,
                max_output_tokens=self.config.default_max_output_tokens,
            ),
        )

    @classmethod
    def open_project(cls, project_id: str, config: Optional[Settings] = None, **kwargs: Any) -> "WorkflowEngine":
        """Load a stored project and open an engine on it."""
        config = config or default_settings
        persistence = kwargs.pop("persistence", None) or PersistenceManager(config)
        state = persistence.store.read(project_id)
        return cls(state=state, config=config, persistence=persistence, **kwargs)

    # -- state --------------------------------------------------------------

    @property
    def save_status(self) -> SaveStatus:
        return self.persistence.status

    @property
    def is_generating(self) -> bool:
        return self.orchestrator.is_active

    def _commit_state(self, state: ProjectState) -> ProjectState:
        """Adopt a committed mutation: snapshot, schedule save, expose."""
        state = state.model_copy(update={"session": None})
        self.persistence.record(state)
        self.state = state.model_copy(update={
            "session": self.state.session,
            "save_status": self.persistence.status,
        })
        return self.state

    def _set_runtime(self, **update: Any) -> None:
        self.state = self.state.model_copy(update=update)

    def _on_save_status(self, status: SaveStatus) -> None:
        self._set_runtime(save_status=status)

    # -- generation -----------------------------------------------------------

    async def generate(
        self,
        stage: Union[Stage, str],
        prompt: str,
        system_instruction: str = "",
        on_chunk: Optional[ChunkCallback] = None,
        on_status: Optional[StatusCallback] = None,
        provider_id: Optional[str] = None,
        model_id: Optional[str] = None,
        generation_settings: Optional[GenerationSettings] = None,
        credential: Optional[str] = None,
    ) -> StreamResult:
        """Stream a new draft for ``stage`` without committing it.

        Provider, model and sampling parameters default to the project's
        settings. Usage and cost are added to the project's counters on
        success.

        Raises:
            GenerationInProgress: Another generation is active; state is untouched
            GenerationCancelled: The generation was cancelled
            GenerationError: Classified provider failure
        """
        if self.orchestrator.is_active:
            raise GenerationInProgress(self.orchestrator.session.stage.value)

        stage = Stage(stage)
        project_settings = self.state.settings
        provider_id = provider_id or project_settings.provider_id
        if model_id is None:
            model_id = project_settings.model_id if provider_id == project_settings.provider_id else None
        generation_settings = generation_settings or project_settings.generation

        def attach(session: GenerationSession) -> None:
            self._set_runtime(session=session)

        try:
            result = await self.orchestrator.generate(
                stage,
                system_instruction,
                prompt,
                on_chunk or _noop_chunk,
                provider_id=provider_id,
                model_id=model_id,
                generation_settings=generation_settings,
                on_status=on_status,
                credential=credential,
                on_session=attach,
            )
        finally:
            if self.state.session is not None:
                self._set_runtime(session=None)

        self._record_generation(result, system_instruction, prompt, generation_settings)
        return result

    def _pricing_model(self, model_id: str, provider_id: str) -> Optional[ModelConfig]:
        model = get_model(model_id)
        if model is None and is_aggregator(provider_id):
            # Catalog models are registered when the cached list is loaded
            if self.catalog is None:
                self.catalog = OpenRouterCatalog(cache_path=default_cache_path(self.config))
            model = get_model(model_id)
        return model

    def _record_generation(
        self,
        result: StreamResult,
        system_instruction: str,
        prompt: str,
        generation_settings: GenerationSettings,
    ) -> None:
        input_tokens = result.input_tokens or self.cost_controller.estimate(system_instruction + prompt)
        output_tokens = result.output_tokens or self.cost_controller.estimate(result.text)
        model = self._pricing_model(result.model, result.provider)
        grounding = int(bool(generation_settings.use_grounding and model is not None and model.supports_grounding))
        usage = self.cost_controller.record_usage(
            self.state.token_usage,
            model or result.model,
            input_tokens,
            output_tokens,
            provider_id=result.provider,
            grounding_requests=grounding,
        )
        self._set_runtime(token_usage=usage)
        self.persistence.schedule_save(self.state.model_copy(update={"session": None}))

    async def refine(
        self,
        stage: Union[Stage, str],
        instruction: str,
        system_instruction: str = "",
        on_chunk: Optional[ChunkCallback] = None,
        on_status: Optional[StatusCallback] = None,
        **kwargs: Any,
    ) -> StreamResult:
        """Generate a revision of the stage's current draft.

        The result is not committed; the existing versions are untouched
        whether the caller accepts or discards it.

        Raises:
            ValueError: The stage has no draft to refine
        """
        content = self.current_content(stage)
        if content is None:
            raise ValueError(f"Stage {Stage(stage).value} has no content to refine")
        prompt = REFINE_TEMPLATE.format(content=content, instruction=instruction)
        return await self.generate(stage, prompt, system_instruction, on_chunk, on_status, **kwargs)

    def cancel(self) -> bool:
        return self.orchestrator.cancel()

    # -- versioning -----------------------------------------------------------

    def commit(self, stage: Union[Stage, str], content: str) -> ProjectState:
        return self._commit_state(self.versions.commit(self.state, Stage(stage), content))

    def manual_edit(self, stage: Union[Stage, str], content: str) -> ProjectState:
        return self._commit_state(self.versions.manual_edit(self.state, Stage(stage), content))

    def cycle(self, stage: Union[Stage, str], delta: int) -> ProjectState:
        updated = self.versions.cycle(self.state, Stage(stage), delta)
        if updated is self.state:
            return self.state
        return self._commit_state(updated)

    def current_content(self, stage: Union[Stage, str]) -> Optional[str]:
        return self.state.current_content(Stage(stage))

    def history(self, stage: Union[Stage, str]) -> StageHistory:
        return self.state.history(Stage(stage))

    # -- project data ---------------------------------------------------------

    def set_answer(self, key: str, value: str) -> ProjectState:
        answers = dict(self.state.answers)
        answers[key] = value
        return self._commit_state(self.state.model_copy(update={"answers": answers}))

    def update_settings(
        self,
        provider_id: Optional[str] = None,
        model_id: Optional[str] = None,
        **generation: Any,
    ) -> ProjectState:
        """Change the active provider/model and sampling parameters."""
        current = self.state.settings
        new_generation = current.generation
        if generation:
            new_generation = GenerationSettings.model_validate({**current.generation.model_dump(), **generation})
        new_settings = ProjectSettings(
            provider_id=provider_id or current.provider_id,
            model_id=model_id or current.model_id,
            generation=new_generation,
        )
        return self._commit_state(self.state.model_copy(update={"settings": new_settings}))

    def rename(self, name: str) -> ProjectState:
        return self._commit_state(self.state.model_copy(update={"name": name}))

    # -- accounting -----------------------------------------------------------

    def estimate_tokens(self, text: str) -> int:
        return self.cost_controller.estimate(text)

    async def exact_tokens(
        self,
        text: str,
        model_id: Optional[str] = None,
        credential: Optional[str] = None,
        provider_id: Optional[str] = None,
    ) -> int:
        """Debounced provider-backed count; runs alongside any active generation."""
        provider_id = provider_id or self.state.settings.provider_id
        model_id = model_id or self.state.settings.model_id
        return await self.cost_controller.exact_count(text, provider_id, model_id, credential)

    def cost(self, model: Union[str, ModelConfig], input_tokens: int, output_tokens: int) -> float:
        return self.cost_controller.cost(model, input_tokens, output_tokens)

    def context_text(self) -> str:
        return build_context_text(self.state)

    def reset_usage(self) -> ProjectState:
        """Explicitly zero the usage counters."""
        self._set_runtime(token_usage=self.cost_controller.reset())
        self.persistence.schedule_save(self.state.model_copy(update={"session": None}))
        return self.state

    def usage_summary(self) -> Dict[str, Any]:
        usage = self.state.token_usage
        return {
            "input_tokens": usage.input_tokens,
            "output_tokens": usage.output_tokens,
            "grounding_requests": usage.grounding_requests,
            "estimated_cost": usage.estimated_cost,
            "context_tokens": self.estimate_tokens(self.context_text()),
        }

    # -- undo / redo / save ---------------------------------------------------

    def can_undo(self) -> bool:
        return self.persistence.can_undo()

    def can_redo(self) -> bool:
        return self.persistence.can_redo()

    def _restore(self, snapshot: Optional[ProjectState]) -> ProjectState:
        if snapshot is None:
            return self.state
        # Usage counters are not rolled back by undo
        self.state = snapshot.model_copy(update={
            "token_usage": self.state.token_usage,
            "session": self.state.session,
        })
        self.persistence.schedule_save(self.state.model_copy(update={"session": None}))
        self._set_runtime(save_status=self.persistence.status)
        return self.state

    def undo(self) -> ProjectState:
        return self._restore(self.persistence.undo())

    def redo(self) -> ProjectState:
        return self._restore(self.persistence.redo())

    async def save(self) -> SaveStatus:
        """Write immediately instead of waiting for the debounce window."""
        return await self.persistence.flush()

    async def close(self) -> SaveStatus:
        self.cost_controller.cancel_pending()
        return await self.save()
