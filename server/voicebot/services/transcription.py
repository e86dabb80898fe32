"""Transcription orchestration: submit audio, poll the provider, report back to the chat."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Protocol, Union

from ..config import settings
from .errors import (
    DeliveryFailed,
    ProviderError,
    TranscriptionCancelled,
    TranscriptionError,
    TranscriptionTimeout,
)
from .speechflow import Failed, NotReady, QueryOutcome, Ready

logger = logging.getLogger(__name__)


SessionId = Union[int, str]

WAITING_MESSAGE = "Still transcribing your voice message, please wait..."
NO_SPEECH_MESSAGE = "(no speech recognized)"


def format_failure(reason: str) -> str:
    return f"Sorry, the voice message could not be transcribed: {reason}"


class MessageSender(Protocol):
    async def send(self, chat_id: SessionId, text: str) -> None: ...


class TranscriptionProvider(Protocol):
    async def create_job(self, language_code: str, audio_bytes: bytes) -> str: ...

    async def query_job(self, job_id: str, result_format: Optional[int] = None) -> QueryOutcome: ...


class JobStatus(str, Enum):
    """States for tracking a transcription job."""

    CREATED = "Created"
    SUBMITTING = "Submitting"
    PENDING = "Pending"
    COMPLETED = "Completed"
    FAILED = "Failed"


_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.CREATED: frozenset({JobStatus.SUBMITTING}),
    JobStatus.SUBMITTING: frozenset({JobStatus.PENDING, JobStatus.FAILED}),
    JobStatus.PENDING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


class InvalidTransition(RuntimeError):
    pass


@dataclass
class TranscriptionJob:
    """One voice message tracked from upload to its terminal state."""

    session_id: SessionId
    language_code: str
    job_id: Optional[str] = None
    status: JobStatus = JobStatus.CREATED
    result_text: Optional[str] = None
    failure_reason: Optional[str] = None
    failure_kind: Optional[str] = None
    attempt_count: int = 0

    @property
    def terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)

    def advance(self, status: JobStatus) -> None:
        if status not in _TRANSITIONS[self.status]:
            raise InvalidTransition(f"Job cannot move from {self.status.value} to {status.value}")
        self.status = status

    def complete(self, text: str) -> None:
        self.advance(JobStatus.COMPLETED)
        self.result_text = text

    def fail(self, error: TranscriptionError) -> None:
        self.advance(JobStatus.FAILED)
        self.failure_reason = error.message
        self.failure_kind = error.kind

    def label(self) -> str:
        return f"[Job {self.session_id}/{self.job_id or '-'}]"


@dataclass(frozen=True)
class SessionNotifier:
    """Delivers every notification of one job to the chat that started it."""

    session_id: SessionId
    sender: MessageSender = field(repr=False)

    async def notify(self, text: str) -> bool:
        try:
            await self.sender.send(self.session_id, text)
        except DeliveryFailed as exc:
            logger.warning("Failed to deliver message to chat %s: %s", self.session_id, exc)
            return False
        return True


class TranscriptionOrchestrator:
    """Runs the create -> poll -> resolve lifecycle for each voice message.

    The orchestrator itself holds only read-only configuration; all per-job
    state lives in the ``TranscriptionJob`` and ``SessionNotifier`` created
    for each call, so concurrent jobs never observe each other.
    """

    def __init__(
        self,
        provider: TranscriptionProvider,
        sender: MessageSender,
        *,
        language_code: Optional[str] = None,
        result_type: Optional[int] = None,
        poll_interval: Optional[float] = None,
        max_attempts: Optional[int] = None,
        timeout: Optional[float] = None,
        waiting_notice_every: Optional[int] = None,
        stop_event: Optional[asyncio.Event] = None,
    ):
        self._provider = provider
        self._sender = sender
        self._language_code = language_code or settings.speechflow_language_code
        self._result_type = settings.speechflow_result_type if result_type is None else result_type
        self._poll_interval = settings.poll_interval_seconds if poll_interval is None else poll_interval
        self._max_attempts = settings.poll_max_attempts if max_attempts is None else max_attempts
        self._timeout = settings.poll_timeout_seconds if timeout is None else timeout
        self._waiting_notice_every = (
            settings.waiting_notice_every if waiting_notice_every is None else waiting_notice_every
        )
        self._stop_event = stop_event

    @property
    def language_code(self) -> str:
        return self._language_code

    def new_job(self, session_id: SessionId) -> TranscriptionJob:
        return TranscriptionJob(session_id=session_id, language_code=self._language_code)

    async def transcribe(self, session_id: SessionId, audio_bytes: bytes) -> str:
        """Transcribe ``audio_bytes`` and deliver the text to ``session_id``."""

        return await self.run(self.new_job(session_id), audio_bytes)

    async def run(self, job: TranscriptionJob, audio_bytes: bytes) -> str:
        """Drive ``job`` to a terminal state.

        Returns the transcript on success. On failure the chat is notified
        once and the ``TranscriptionError`` is re-raised to the caller.
        """

        notifier = SessionNotifier(job.session_id, self._sender)
        try:
            text = await self._execute(job, audio_bytes, notifier)
        except TranscriptionError as exc:
            job.fail(exc)
            logger.warning("%s Failed (%s): %s", job.label(), exc.kind, exc.message)
            await notifier.notify(format_failure(exc.message))
            raise

        job.complete(text)
        logger.info("%s Completed after %d queries", job.label(), job.attempt_count)
        await notifier.notify(text if text.strip() else NO_SPEECH_MESSAGE)
        return text

    async def _execute(self, job: TranscriptionJob, audio_bytes: bytes, notifier: SessionNotifier) -> str:
        job.advance(JobStatus.SUBMITTING)
        job.job_id = await self._provider.create_job(job.language_code, audio_bytes)
        job.advance(JobStatus.PENDING)
        logger.info("%s Pending", job.label())

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._timeout if self._timeout > 0 else None
        while True:
            job.attempt_count += 1
            outcome = await self._provider.query_job(job.job_id, self._result_type)
            if isinstance(outcome, Ready):
                return outcome.text
            if isinstance(outcome, Failed):
                raise ProviderError(outcome.message)
            if not isinstance(outcome, NotReady):
                raise TypeError(f"Unexpected query outcome: {outcome!r}")

            logger.debug("%s Not ready after %d queries", job.label(), job.attempt_count)
            if self._max_attempts > 0 and job.attempt_count >= self._max_attempts:
                raise TranscriptionTimeout(
                    f"Transcription not ready after {job.attempt_count} attempts"
                )
            if deadline is not None and loop.time() >= deadline:
                raise TranscriptionTimeout(
                    f"Transcription not ready after {self._timeout:g} seconds"
                )
            if self._waiting_notice_every > 0 and job.attempt_count % self._waiting_notice_every == 0:
                await notifier.notify(WAITING_MESSAGE)
            await self._pause()

    async def _pause(self) -> None:
        """Sleep one poll interval, aborting early when shutdown is signalled."""

        if self._stop_event is None:
            await asyncio.sleep(self._poll_interval)
            return
        if not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._poll_interval)
            except asyncio.TimeoutError:
                return
        raise TranscriptionCancelled("Transcription cancelled by shutdown")
