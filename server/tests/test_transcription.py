from __future__ import annotations

import asyncio
from typing import Any, Optional

import pytest

from voicebot.services import transcription
from voicebot.services.errors import DeliveryFailed, ProviderError, ProviderUnavailable
from voicebot.services.speechflow import Failed, NotReady, Ready
from voicebot.services.transcription import (
    NO_SPEECH_MESSAGE,
    WAITING_MESSAGE,
    InvalidTransition,
    JobStatus,
    TranscriptionJob,
    TranscriptionOrchestrator,
)


def _run(coro):  # noqa: ANN001
    return asyncio.run(coro)


class ScriptedProvider:
    """Returns queued outcomes per job; the job id is derived from the audio bytes."""

    def __init__(self, scripts: dict[str, list[Any]], create_error: Optional[Exception] = None):
        self.scripts = scripts
        self.create_error = create_error
        self.created: list[tuple[str, bytes]] = []
        self.queries: list[tuple[str, Optional[int]]] = []

    async def create_job(self, language_code: str, audio_bytes: bytes) -> str:
        self.created.append((language_code, audio_bytes))
        if self.create_error is not None:
            raise self.create_error
        return f"job-{audio_bytes.decode()}"

    async def query_job(self, job_id: str, result_format: Optional[int] = None):
        self.queries.append((job_id, result_format))
        step = self.scripts[job_id].pop(0)
        if callable(step):
            step = await step()
        if isinstance(step, Exception):
            raise step
        return step


class RecordingSender:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[tuple[Any, str]] = []

    async def send(self, chat_id, text: str) -> None:  # noqa: ANN001
        self.sent.append((chat_id, text))
        if self.fail:
            raise DeliveryFailed("chat unreachable")

    def texts_for(self, chat_id) -> list[str]:  # noqa: ANN001
        return [text for target, text in self.sent if target == chat_id]


def _orchestrator(provider, sender, **overrides) -> TranscriptionOrchestrator:  # noqa: ANN001
    options = dict(
        language_code="ru",
        result_type=1,
        poll_interval=0,
        max_attempts=0,
        timeout=0,
        waiting_notice_every=1,
    )
    options.update(overrides)
    return TranscriptionOrchestrator(provider, sender, **options)


def _count_pauses(monkeypatch: pytest.MonkeyPatch, orchestrator: TranscriptionOrchestrator) -> list[int]:
    pauses: list[int] = []

    async def fake_pause() -> None:
        pauses.append(1)

    monkeypatch.setattr(orchestrator, "_pause", fake_pause)
    return pauses


def test_not_ready_twice_then_ready_completes_after_three_queries(monkeypatch: pytest.MonkeyPatch) -> None:
    provider = ScriptedProvider({"job-a": [NotReady(), NotReady(), Ready("ok")]})
    sender = RecordingSender()
    orchestrator = _orchestrator(provider, sender)
    pauses = _count_pauses(monkeypatch, orchestrator)
    job = orchestrator.new_job(7)

    text = _run(orchestrator.run(job, b"a"))

    assert text == "ok"
    assert job.status is JobStatus.COMPLETED
    assert job.result_text == "ok"
    assert job.failure_reason is None
    assert job.attempt_count == 3
    assert len(provider.queries) == 3
    assert len(pauses) == 2
    assert sender.sent == [(7, WAITING_MESSAGE), (7, WAITING_MESSAGE), (7, "ok")]


def test_job_id_is_reused_for_every_query() -> None:
    provider = ScriptedProvider({"job-a": [NotReady(), NotReady(), Ready("x")]})
    orchestrator = _orchestrator(provider, RecordingSender())

    job = orchestrator.new_job(1)
    _run(orchestrator.run(job, b"a"))

    assert job.job_id == "job-a"
    assert provider.created == [("ru", b"a")]
    assert provider.queries == [("job-a", 1)] * 3


def test_attempt_count_strictly_increases_while_pending() -> None:
    observed: list[tuple[JobStatus, int]] = []
    job_holder: dict[str, TranscriptionJob] = {}

    async def record_then_not_ready():
        job = job_holder["job"]
        observed.append((job.status, job.attempt_count))
        return NotReady()

    provider = ScriptedProvider({"job-a": [record_then_not_ready, record_then_not_ready, Ready("done")]})
    orchestrator = _orchestrator(provider, RecordingSender())
    job_holder["job"] = orchestrator.new_job(1)

    _run(orchestrator.run(job_holder["job"], b"a"))

    assert observed == [(JobStatus.PENDING, 1), (JobStatus.PENDING, 2)]


def test_submission_failure_notifies_once_and_never_queries() -> None:
    provider = ScriptedProvider({}, create_error=ProviderUnavailable("Speechflow API request failed: 503"))
    sender = RecordingSender()
    orchestrator = _orchestrator(provider, sender)
    job = orchestrator.new_job(42)

    with pytest.raises(ProviderUnavailable):
        _run(orchestrator.run(job, b"a"))

    assert job.status is JobStatus.FAILED
    assert job.failure_kind == "ProviderUnavailable"
    assert job.result_text is None
    assert job.job_id is None
    assert provider.queries == []
    assert len(sender.sent) == 1
    assert sender.sent[0][0] == 42
    assert "503" in sender.sent[0][1]


def test_provider_failure_message_is_surfaced_to_the_chat() -> None:
    provider = ScriptedProvider({"job-a": [NotReady(), Failed(code=10010, message="quota exceeded")]})
    sender = RecordingSender()
    orchestrator = _orchestrator(provider, sender)
    job = orchestrator.new_job(5)

    with pytest.raises(ProviderError) as excinfo:
        _run(orchestrator.run(job, b"a"))

    assert excinfo.value.message == "quota exceeded"
    assert job.status is JobStatus.FAILED
    assert job.failure_reason == "quota exceeded"
    assert job.failure_kind == "ProviderError"
    assert job.result_text is None
    assert sender.texts_for(5) == [WAITING_MESSAGE, transcription.format_failure("quota exceeded")]


def test_notifications_stay_with_their_own_chat_while_another_job_finishes() -> None:
    second_done = asyncio.Event()

    async def wait_for_second_job():
        await second_done.wait()
        return NotReady()

    provider = ScriptedProvider(
        {
            "job-first": [NotReady(), wait_for_second_job, Ready("first text")],
            "job-second": [Ready("second text")],
        }
    )
    sender = RecordingSender()
    orchestrator = _orchestrator(provider, sender)

    async def scenario() -> tuple[str, str]:
        first = asyncio.create_task(orchestrator.transcribe(100, b"first"))
        await asyncio.sleep(0.01)
        second_text = await orchestrator.transcribe(200, b"second")
        second_done.set()
        return await first, second_text

    first_text, second_text = _run(scenario())

    assert (first_text, second_text) == ("first text", "second text")
    assert sender.texts_for(100) == [WAITING_MESSAGE, WAITING_MESSAGE, "first text"]
    assert sender.texts_for(200) == ["second text"]


def test_attempt_cap_fails_with_timeout() -> None:
    provider = ScriptedProvider({"job-a": [NotReady()] * 5})
    sender = RecordingSender()
    orchestrator = _orchestrator(provider, sender, max_attempts=2)
    job = orchestrator.new_job(1)

    with pytest.raises(transcription.TranscriptionTimeout):
        _run(orchestrator.run(job, b"a"))

    assert job.status is JobStatus.FAILED
    assert job.failure_kind == "Timeout"
    assert len(provider.queries) == 2
    assert sender.texts_for(1)[-1] == transcription.format_failure(job.failure_reason)


def test_wall_clock_deadline_fails_with_timeout() -> None:
    provider = ScriptedProvider({"job-a": [NotReady()] * 50})
    orchestrator = _orchestrator(provider, RecordingSender(), poll_interval=0.02, timeout=0.01)
    job = orchestrator.new_job(1)

    with pytest.raises(transcription.TranscriptionTimeout):
        _run(orchestrator.run(job, b"a"))

    assert job.failure_kind == "Timeout"
    assert len(provider.queries) == 2


def test_stop_signal_during_wait_cancels_the_job() -> None:
    provider = ScriptedProvider({"job-a": [NotReady()] * 5})
    sender = RecordingSender()

    async def scenario() -> TranscriptionJob:
        stop_event = asyncio.Event()
        orchestrator = _orchestrator(provider, sender, poll_interval=30, stop_event=stop_event)
        job = orchestrator.new_job(9)
        task = asyncio.create_task(orchestrator.run(job, b"a"))
        await asyncio.sleep(0.01)
        stop_event.set()
        with pytest.raises(transcription.TranscriptionCancelled):
            await asyncio.wait_for(task, timeout=2)
        return job

    job = _run(scenario())

    assert job.status is JobStatus.FAILED
    assert job.failure_kind == "Cancelled"
    assert len(provider.queries) == 1
    assert len(sender.texts_for(9)) == 2


def test_waiting_notices_can_be_throttled(monkeypatch: pytest.MonkeyPatch) -> None:
    provider = ScriptedProvider({"job-a": [NotReady()] * 4 + [Ready("done")]})
    sender = RecordingSender()
    orchestrator = _orchestrator(provider, sender, waiting_notice_every=2)
    _count_pauses(monkeypatch, orchestrator)

    _run(orchestrator.transcribe(3, b"a"))

    assert sender.texts_for(3) == [WAITING_MESSAGE, WAITING_MESSAGE, "done"]


def test_waiting_notices_can_be_disabled(monkeypatch: pytest.MonkeyPatch) -> None:
    provider = ScriptedProvider({"job-a": [NotReady(), NotReady(), Ready("done")]})
    sender = RecordingSender()
    orchestrator = _orchestrator(provider, sender, waiting_notice_every=0)
    _count_pauses(monkeypatch, orchestrator)

    _run(orchestrator.transcribe(3, b"a"))

    assert sender.texts_for(3) == ["done"]


def test_delivery_failures_do_not_fail_the_job() -> None:
    provider = ScriptedProvider({"job-a": [NotReady(), Ready("still fine")]})
    sender = RecordingSender(fail=True)
    orchestrator = _orchestrator(provider, sender)
    job = orchestrator.new_job(1)

    assert _run(orchestrator.run(job, b"a")) == "still fine"
    assert job.status is JobStatus.COMPLETED
    assert len(sender.sent) == 2


def test_blank_transcript_sends_placeholder() -> None:
    provider = ScriptedProvider({"job-a": [Ready(" ")]})
    sender = RecordingSender()
    orchestrator = _orchestrator(provider, sender)

    assert _run(orchestrator.transcribe(1, b"a")) == " "
    assert sender.sent == [(1, NO_SPEECH_MESSAGE)]


def test_job_rejects_transitions_that_skip_states() -> None:
    job = TranscriptionJob(session_id=1, language_code="ru")

    with pytest.raises(InvalidTransition):
        job.advance(JobStatus.PENDING)

    job.advance(JobStatus.SUBMITTING)
    job.advance(JobStatus.PENDING)
    job.complete("text")

    with pytest.raises(InvalidTransition):
        job.fail(ProviderError("late failure"))
    assert job.failure_reason is None
    assert job.result_text == "text"
