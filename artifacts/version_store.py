"""Artifact Version Store - append-only per-stage history with a cursor.

Every operation takes a ``ProjectState`` and returns a new one; existing
versions are never modified. Reading a stage with no versions yields None,
which is distinct from a version whose content is the empty string.
"""

from typing import Callable, Optional, Tuple

from contracts import ArtifactVersion, ProjectState, Stage, StageHistory, now_ms


class VersionStore:
    """Stateless operations over the stage histories of a project."""

    def __init__(self, clock: Callable[[], int] = now_ms):
        self._clock = clock

    def _replace(self, state: ProjectState, history: StageHistory, touch: bool = True) -> ProjectState:
        stages = dict(state.stages)
        stages[history.stage] = history
        update = {"stages": stages}
        if touch:
            update["last_modified"] = self._clock()
        return state.model_copy(update=update)

    def commit(self, state: ProjectState, stage: Stage, content: str) -> ProjectState:
        """Append a new version and move the cursor onto it."""
        history = state.history(stage)
        versions: Tuple[ArtifactVersion, ...] = history.versions + (
            ArtifactVersion(content=content, timestamp=self._clock()),
        )
        updated = StageHistory(stage=history.stage, versions=versions, current_index=len(versions) - 1)
        return self._replace(state, updated)

    def manual_edit(self, state: ProjectState, stage: Stage, content: str) -> ProjectState:
        """A manual edit is recorded as a new version, exactly like a commit."""
        return self.commit(state, stage, content)

    def cycle(self, state: ProjectState, stage: Stage, delta: int) -> ProjectState:
        """Move the cursor by ``delta``, clamped to the version list.

        At either boundary, or for a stage with no versions, the state is
        returned unchanged.
        """
        history = state.history(stage)
        if history.is_empty:
            return state
        target = min(max(history.current_index + delta, 0), len(history.versions) - 1)
        if target == history.current_index:
            return state
        updated = history.model_copy(update={"current_index": target})
        return self._replace(state, updated)

    def select(self, state: ProjectState, stage: Stage, index: int) -> ProjectState:
        """Jump the cursor to ``index`` (clamped)."""
        history = state.history(stage)
        return self.cycle(state, stage, index - history.current_index)

    @staticmethod
    def current_content(state: ProjectState, stage: Stage) -> Optional[str]:
        return state.current_content(stage)

    @staticmethod
    def history(state: ProjectState, stage: Stage) -> StageHistory:
        return state.history(stage)
