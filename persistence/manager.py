"""Persistence & History Manager.

Committed mutations are recorded here: each one pushes an undo snapshot and
schedules a debounced durable save. Saves in a burst coalesce to the latest
state, and writes for a project never overlap.
"""

import asyncio
import logging
from pathlib import Path
from typing import Callable, List, Optional

from config import Settings, settings as default_settings
from contracts import ProjectState, SaveStatus, StorageQuotaExceeded
from .debounce import Debouncer
from .document_store import DocumentStore, ProjectSummary
from .history import UndoStack

logger = logging.getLogger(__name__)

StatusListener = Callable[[SaveStatus], None]


class PersistenceManager:
    """Debounced saving, save status and undo/redo for the open project."""

    def __init__(
        self,
        config: Optional[Settings] = None,
        store: Optional[DocumentStore] = None,
        sleep: Callable[[float], asyncio.Future] = asyncio.sleep,
        on_status: Optional[StatusListener] = None,
    ):
        self.config = config or default_settings
        self.store = store or DocumentStore(
            Path(self.config.workspace_dir) / "projects",
            max_document_bytes=self.config.max_document_bytes,
        )
        self.history: UndoStack[ProjectState] = UndoStack(limit=self.config.history_limit)
        self._debouncer = Debouncer(self.config.save_debounce_ms, sleep=sleep, name="save")
        self._lock = asyncio.Lock()
        self._latest: Optional[ProjectState] = None
        self._listeners: List[StatusListener] = [on_status] if on_status is not None else []
        self.status = SaveStatus.SAVED
        self.last_error: Optional[Exception] = None
        self.write_count = 0

    def _set_status(self, status: SaveStatus) -> None:
        if status == self.status:
            return
        self.status = status
        for listener in self._listeners:
            listener(status)

    def add_status_listener(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    # -- projects ---------------------------------------------------------

    def open(self, state: ProjectState) -> ProjectState:
        """Make ``state`` the open project and seed the undo stack with it."""
        self._debouncer.cancel()
        self._latest = state
        self.history.reset(initial=state)
        self.last_error = None
        self._set_status(SaveStatus.SAVED)
        return state

    def load_project(self, project_id: str) -> ProjectState:
        return self.open(self.store.read(project_id))

    async def create_project(self, name: Optional[str] = None) -> ProjectState:
        """Create, persist immediately and open a new project."""
        state = ProjectState(name=name) if name else ProjectState()
        self.open(state)
        await self._write(state)
        return state

    def list_projects(self) -> List[ProjectSummary]:
        return self.store.list()

    def delete_project(self, project_id: str) -> bool:
        if self._latest is not None and self._latest.id == project_id:
            self._debouncer.cancel()
            self._latest = None
            self.history.reset()
        return self.store.delete(project_id)

    # -- saving -----------------------------------------------------------

    def record(self, state: ProjectState) -> ProjectState:
        """Register a committed mutation: snapshot for undo, then schedule a save."""
        self.history.push(state)
        self.schedule_save(state)
        return state

    def schedule_save(self, state: ProjectState) -> asyncio.Future:
        """Debounced save of ``state``; a later call in the window supersedes it."""
        self._latest = state
        if self.status != SaveStatus.ERROR:
            # An error stays visible until a write succeeds
            self._set_status(SaveStatus.UNSAVED)
        return self._debouncer.schedule(lambda: self._write(self._latest))

    async def _write(self, state: Optional[ProjectState]) -> bool:
        if state is None:
            return False
        async with self._lock:
            self._set_status(SaveStatus.SAVING)
            try:
                await asyncio.to_thread(self.store.write, state)
            except StorageQuotaExceeded as exc:
                logger.error("Save failed for project %s: %s", state.id, exc.message)
                self.last_error = exc
                self._set_status(SaveStatus.ERROR)
                return False
            except OSError as exc:
                logger.error("Save failed for project %s: %s", state.id, exc)
                self.last_error = exc
                self._set_status(SaveStatus.ERROR)
                return False
            self.write_count += 1
            self.last_error = None
            if self._debouncer.pending:
                self._set_status(SaveStatus.UNSAVED)
            else:
                self._set_status(SaveStatus.SAVED)
            return True

    async def flush(self) -> SaveStatus:
        """Write now, skipping any pending debounce window.

        A write already in flight is awaited, so the returned status is never
        ``SAVING``.
        """
        if not self._debouncer.pending:
            async with self._lock:
                pass
        if self._debouncer.pending:
            await self._debouncer.flush()
        elif self._latest is not None and self.status in (SaveStatus.UNSAVED, SaveStatus.ERROR):
            await self._write(self._latest)
        return self.status

    # -- undo / redo ------------------------------------------------------

    def can_undo(self) -> bool:
        return self.history.can_undo()

    def can_redo(self) -> bool:
        return self.history.can_redo()

    def undo(self) -> Optional[ProjectState]:
        """Restore the previous snapshot (saved, not re-snapshotted)."""
        state = self.history.undo()
        if state is not None:
            self.schedule_save(state)
        return state

    def redo(self) -> Optional[ProjectState]:
        state = self.history.redo()
        if state is not None:
            self.schedule_save(state)
        return state
