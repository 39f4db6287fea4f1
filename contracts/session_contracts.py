"""Generation session bookkeeping: cancel token, phases and the session record."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional
import logging

from .errors import GenerationCancelled
from .project_contracts import Stage

logger = logging.getLogger(__name__)


class GenerationPhase(str, Enum):
    """Orchestrator state machine phases."""
    IDLE = "idle"
    REQUESTING = "requesting"
    STREAMING = "streaming"
    COMMITTING = "committing"
    CANCELLED = "cancelled"
    FAILED = "failed"


class CancelToken:
    """Cooperative cancellation flag checked at chunk boundaries.

    Callbacks registered with ``on_cancel`` run once, synchronously, when the
    token fires; adapters use them to abort the underlying transport.
    """

    def __init__(self):
        self._cancelled = False
        self._callbacks: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.warning("Cancel callback failed", exc_info=True)

    def on_cancel(self, callback: Callable[[], None]) -> None:
        if self._cancelled:
            callback()
        else:
            self._callbacks.append(callback)

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise GenerationCancelled()


@dataclass
class GenerationSession:
    """One in-flight generation. At most one is active per project."""
    stage: Stage
    provider_id: str
    model_id: str
    cancel_token: CancelToken = field(default_factory=CancelToken)
    phase: GenerationPhase = GenerationPhase.REQUESTING
    status_label: str = "Initializing..."
    is_active: bool = True
    error: Optional[Exception] = None

    def cancel(self) -> None:
        self.cancel_token.cancel()
