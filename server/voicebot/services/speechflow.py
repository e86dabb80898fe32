"""Speechflow file ASR client: one HTTP exchange per call, no retries."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Union

import httpx
from pydantic import ValidationError

from ..config import settings
from ..models.schemas import SpeechflowCreateResponse, SpeechflowQueryResponse, SpeechflowSentence
from .errors import MalformedResponse, ProviderUnavailable

logger = logging.getLogger(__name__)


CODE_READY = 11000
CODE_IN_PROGRESS = 11001
AUDIO_FILENAME = "voice_message.ogg"


@dataclass(frozen=True)
class Ready:
    text: str


@dataclass(frozen=True)
class NotReady:
    pass


@dataclass(frozen=True)
class Failed:
    """Provider-reported failure for a queried job."""

    code: int
    message: str


QueryOutcome = Union[Ready, NotReady, Failed]


def join_sentences(sentences: Iterable[SpeechflowSentence]) -> str:
    """Join sentence fragments with single spaces, keeping empty ones in place."""

    return " ".join(sentence.s or "" for sentence in sentences)


class SpeechflowClient:
    """Stateless wrapper around the ``create`` and ``query`` endpoints."""

    def __init__(
        self,
        *,
        key_id: Optional[str] = None,
        key_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        raw_base = (base_url or settings.speechflow_base_url or "").strip()
        if not raw_base.startswith(("http://", "https://")):
            raise RuntimeError("SPEECHFLOW_BASE_URL must include http/https scheme")
        self._base_url = raw_base.rstrip("/")
        self._headers = {
            "keyId": key_id if key_id is not None else (settings.speechflow_key_id or ""),
            "keySecret": key_secret if key_secret is not None else (settings.speechflow_key_secret or ""),
        }
        self._http = http_client
        self._timeout = timeout or settings.http_timeout_seconds

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        url = f"{self._base_url}/{path}"
        try:
            if self._http is not None:
                return await self._http.request(
                    method, url, headers=self._headers, timeout=self._timeout, **kwargs
                )
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                return await client.request(method, url, headers=self._headers, **kwargs)
        except httpx.HTTPError as exc:
            raise ProviderUnavailable(f"Speechflow request to {path} failed: {exc}") from exc

    async def create_job(self, language_code: str, audio_bytes: bytes) -> str:
        """Upload audio and return the provider task id."""

        files = {"file": (AUDIO_FILENAME, audio_bytes, "audio/ogg")}
        resp = await self._request("POST", "create", data={"lang": language_code}, files=files)
        if not resp.is_success:
            raise ProviderUnavailable(f"Speechflow API request failed: {resp.status_code}")

        try:
            parsed = SpeechflowCreateResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as exc:
            raise MalformedResponse(f"Speechflow create response is malformed: {exc}") from exc
        logger.info("Speechflow accepted %d bytes as task %s", len(audio_bytes), parsed.task_id)
        return parsed.task_id

    async def query_job(self, job_id: str, result_format: Optional[int] = None) -> QueryOutcome:
        """Issue a single status request for ``job_id``."""

        result_type = settings.speechflow_result_type if result_format is None else result_format
        resp = await self._request(
            "GET", "query", params={"taskId": job_id, "resultType": result_type}
        )
        if not resp.is_success:
            raise ProviderUnavailable(f"Speechflow API query failed: {resp.status_code}")

        try:
            parsed = SpeechflowQueryResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as exc:
            raise MalformedResponse(f"Speechflow query response is malformed: {exc}") from exc

        if parsed.code == CODE_READY:
            if parsed.result is None:
                raise MalformedResponse("Speechflow reported success without a result")
            return Ready(text=join_sentences(parsed.result.sentences))
        if parsed.code == CODE_IN_PROGRESS:
            return NotReady()
        return Failed(code=parsed.code, message=parsed.msg or f"code {parsed.code}")
