"""Durable project storage, debounced saving and undo/redo."""

from .debounce import Debouncer
from .document_store import DocumentStore, ProjectSummary, deserialize_project, serialize_project
from .history import UndoStack
from .manager import PersistenceManager

__all__ = [
    "Debouncer",
    "DocumentStore",
    "PersistenceManager",
    "ProjectSummary",
    "UndoStack",
    "deserialize_project",
    "serialize_project",
]
