"""Generation Orchestrator - coordinates one end-to-end generation request.

State machine per request::

    Idle -> Requesting -> Streaming -> Committing -> Idle
                                    -> Cancelled  -> Idle
                                    -> Failed     -> Idle

Only one session may be active at a time; a second request is rejected with
``GenerationInProgress`` rather than queued. The orchestrator never commits:
it returns the full text and the caller decides whether to keep it.
"""

import asyncio
import logging
from typing import Callable, Optional

from config import Settings, settings as default_settings
from contracts import (
    GenerationCancelled,
    GenerationError,
    GenerationInProgress,
    GenerationPhase,
    GenerationSession,
    GenerationSettings,
    Stage,
)
from providers import (
    ChunkCallback,
    ProviderAdapter,
    StatusCallback,
    StreamRequest,
    StreamResult,
    consume_stream,
    get_adapter,
    normalize_provider_id,
    open_with_status,
)
from .retry import SleepFn, retry_status_label, retry_with_backoff

logger = logging.getLogger(__name__)

AdapterFactory = Callable[[str], ProviderAdapter]


class GenerationOrchestrator:
    """Runs generation requests against provider adapters with retry and cancellation."""

    def __init__(
        self,
        config: Optional[Settings] = None,
        adapter_factory: Optional[AdapterFactory] = None,
        sleep: SleepFn = asyncio.sleep,
    ):
        """Initialize the orchestrator.

        Args:
            config: Settings providing retry policy and credentials
            adapter_factory: Maps a provider id to an adapter (default: registry)
            sleep: Awaitable sleep used between retries (injectable for tests)
        """
        self.config = config or default_settings
        self._adapter_factory = adapter_factory or (lambda pid: get_adapter(pid, self.config))
        self._sleep = sleep
        self.session: Optional[GenerationSession] = None
        self.last_session: Optional[GenerationSession] = None

    @property
    def is_active(self) -> bool:
        return self.session is not None and self.session.is_active

    @property
    def phase(self) -> GenerationPhase:
        if self.session is None:
            return GenerationPhase.IDLE
        return self.session.phase

    def cancel(self) -> bool:
        """Fire the active session's cancel token. Returns False when idle."""
        if not self.is_active:
            return False
        logger.info("Cancelling %s generation", self.session.stage.value)
        self.session.cancel()
        return True

    def begin(self, stage: Stage, provider_id: str, model_id: str) -> GenerationSession:
        """Claim the single session slot.

        Raises:
            GenerationInProgress: If a session is already active
        """
        if self.is_active:
            raise GenerationInProgress(self.session.stage.value)
        self.session = GenerationSession(stage=Stage(stage), provider_id=provider_id, model_id=model_id)
        return self.session

    def _finish(self, session: GenerationSession, phase: GenerationPhase, error: Optional[Exception] = None) -> None:
        session.phase = phase
        session.error = error
        session.is_active = False
        self.last_session = session
        if self.session is session:
            self.session = None

    async def generate(
        self,
        stage: Stage,
        system_instruction: str,
        prompt: str,
        on_chunk: ChunkCallback,
        provider_id: Optional[str] = None,
        model_id: Optional[str] = None,
        generation_settings: Optional[GenerationSettings] = None,
        on_status: Optional[StatusCallback] = None,
        credential: Optional[str] = None,
        on_session: Optional[Callable[[GenerationSession], None]] = None,
    ) -> StreamResult:
        """Stream a generation for ``stage``, delivering chunks to ``on_chunk``.

        Args:
            stage: Pipeline stage the text is for
            system_instruction: System prompt
            prompt: User prompt
            on_chunk: Receives each text chunk exactly once, in order
            provider_id: Provider to use (default from settings)
            model_id: Model id or alias (default: the adapter's default model)
            generation_settings: Sampling and capability parameters
            on_status: Receives status labels ("Initializing AI...", retries, ...)
            credential: API key; resolved from settings when omitted
            on_session: Called with the new session once the slot is claimed

        Returns:
            StreamResult with the full text and reported usage

        Raises:
            GenerationInProgress: Another session is active (nothing changes)
            GenerationCancelled: The session was cancelled; no text is returned
            GenerationError: Classified failure after any retries
        """
        provider_id = normalize_provider_id(provider_id or self.config.default_provider)
        adapter = self._adapter_factory(provider_id)
        model_id = model_id or adapter.default_model
        if self.is_active:
            raise GenerationInProgress(self.session.stage.value)

        def report(label: str) -> None:
            session.status_label = label
            if on_status is not None:
                on_status(label)

        def deliver(text: str) -> None:
            if session.phase == GenerationPhase.REQUESTING:
                session.phase = GenerationPhase.STREAMING
            on_chunk(text)

        def announce_retry(attempt: int, retries: int, delay_ms: float, error: GenerationError) -> None:
            report(retry_status_label(attempt, retries, delay_ms))

        request = StreamRequest(
            system_instruction=system_instruction,
            prompt=prompt,
            model=model_id,
            credential=credential if credential is not None else self.config.credential_for(provider_id),
            settings=generation_settings or GenerationSettings(),
        )
        session = self.begin(stage, provider_id, model_id)
        token = session.cancel_token
        if on_session is not None:
            on_session(session)

        async def run() -> StreamResult:
            opened = await retry_with_backoff(
                lambda: open_with_status(adapter, request, report, token),
                retries=self.config.retry_attempts,
                base_delay_ms=self.config.retry_base_delay_ms,
                max_delay_ms=self.config.retry_max_delay_ms,
                sleep=self._sleep,
                on_retry=announce_retry,
                cancel_token=token,
                provider=provider_id,
            )
            return await consume_stream(adapter, opened, request, deliver, report, token)

        task = asyncio.ensure_future(run())
        # Abort the pending network read or retry sleep as soon as cancel fires
        token.on_cancel(task.cancel)
        try:
            result = await task
        except asyncio.CancelledError:
            if token.cancelled:
                self._finish(session, GenerationPhase.CANCELLED)
                raise GenerationCancelled()
            self._finish(session, GenerationPhase.CANCELLED)
            raise
        except GenerationCancelled:
            self._finish(session, GenerationPhase.CANCELLED)
            raise
        except GenerationError as exc:
            logger.error("%s generation failed (%s): %s", provider_id, exc.kind.value, exc.message)
            self._finish(session, GenerationPhase.FAILED, exc)
            raise
        except Exception as exc:
            self._finish(session, GenerationPhase.FAILED, exc)
            raise

        self._finish(session, GenerationPhase.COMMITTING)
        logger.info(
            "%s generation finished: %d chars, %d in / %d out tokens",
            session.stage.value,
            len(result.text), result.input_tokens, result.output_tokens,
        )
        return result
