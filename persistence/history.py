"""Bounded linear undo/redo over whole-project snapshots."""

from typing import Generic, List, Optional, TypeVar

T = TypeVar("T")


class UndoStack(Generic[T]):
    """Snapshot list plus a pointer at the current snapshot.

    Pushing after an undo discards everything ahead of the pointer. When the
    list exceeds ``limit`` the oldest snapshot is evicted.
    """

    def __init__(self, limit: int = 50, initial: Optional[T] = None):
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self.limit = limit
        self._snapshots: List[T] = []
        self._pointer = -1
        if initial is not None:
            self.push(initial)

    def __len__(self) -> int:
        return len(self._snapshots)

    @property
    def current(self) -> Optional[T]:
        if self._pointer < 0:
            return None
        return self._snapshots[self._pointer]

    @property
    def pointer(self) -> int:
        return self._pointer

    def push(self, snapshot: T) -> None:
        del self._snapshots[self._pointer + 1:]
        self._snapshots.append(snapshot)
        if len(self._snapshots) > self.limit:
            del self._snapshots[: len(self._snapshots) - self.limit]
        self._pointer = len(self._snapshots) - 1

    def can_undo(self) -> bool:
        return self._pointer > 0

    def can_redo(self) -> bool:
        return 0 <= self._pointer < len(self._snapshots) - 1

    def undo(self) -> Optional[T]:
        """Step back one snapshot; returns it, or None when nothing to undo."""
        if not self.can_undo():
            return None
        self._pointer -= 1
        return self._snapshots[self._pointer]

    def redo(self) -> Optional[T]:
        if not self.can_redo():
            return None
        self._pointer += 1
        return self._snapshots[self._pointer]

    def reset(self, initial: Optional[T] = None) -> None:
        self._snapshots = []
        self._pointer = -1
        if initial is not None:
            self.push(initial)
