"""Thin Telegram Bot API client used as attachment resolver and message sender."""
from __future__ import annotations

import logging
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from ..config import settings
from ..models.schemas import TelegramFile, TelegramUser
from .errors import AttachmentUnavailable, DeliveryFailed, TelegramApiError

logger = logging.getLogger(__name__)


MAX_MESSAGE_LENGTH = 4096


def split_message(text: str, limit: int = MAX_MESSAGE_LENGTH) -> list[str]:
    """Split ``text`` into chunks Telegram accepts, preferring whitespace boundaries."""

    chunks: list[str] = []
    remaining = text
    while len(remaining) > limit:
        cut = remaining.rfind(" ", 0, limit + 1)
        if cut <= 0:
            cut = limit
        chunks.append(remaining[:cut])
        remaining = remaining[cut:].lstrip(" ")
    if remaining or not chunks:
        chunks.append(remaining)
    return chunks


class TelegramBotClient:
    """Calls Bot API methods over HTTP and unwraps the ``{"ok", "result"}`` envelope."""

    def __init__(
        self,
        *,
        token: Optional[str] = None,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        self._token = (token or settings.telegram_api_key or "").strip()
        if not self._token:
            raise RuntimeError("TELEGRAM_API_KEY missing; set the bot token")
        self._base_url = (base_url or settings.telegram_api_base_url).rstrip("/")
        self._http = http_client
        self._timeout = timeout or settings.http_timeout_seconds

    async def _send(self, method: str, url: str, *, timeout: float, **kwargs: Any) -> httpx.Response:
        if self._http is not None:
            return await self._http.request(method, url, timeout=timeout, **kwargs)
        async with httpx.AsyncClient(timeout=timeout) as client:
            return await client.request(method, url, **kwargs)

    async def call(self, api_method: str, payload: Optional[dict[str, Any]] = None, *, timeout: Optional[float] = None) -> Any:
        """Invoke ``api_method`` and return its ``result`` field."""

        url = f"{self._base_url}/bot{self._token}/{api_method}"
        resp = await self._send("POST", url, json=payload or {}, timeout=timeout or self._timeout)
        try:
            body = resp.json()
        except ValueError as exc:
            raise TelegramApiError(resp.status_code, f"Non-JSON response from {api_method}") from exc
        if not isinstance(body, dict) or not body.get("ok"):
            error_code = body.get("error_code", resp.status_code) if isinstance(body, dict) else resp.status_code
            description = body.get("description", "unknown error") if isinstance(body, dict) else "unknown error"
            raise TelegramApiError(error_code, description)
        return body.get("result")

    async def get_me(self) -> TelegramUser:
        return TelegramUser.model_validate(await self.call("getMe"))

    async def get_updates(self, offset: Optional[int] = None, timeout: int = 30) -> list[dict[str, Any]]:
        """Long-poll for raw updates; the HTTP timeout outlives the poll window."""

        payload: dict[str, Any] = {"timeout": timeout, "allowed_updates": ["message"]}
        if offset is not None:
            payload["offset"] = offset
        result = await self.call("getUpdates", payload, timeout=timeout + self._timeout)
        return list(result or [])

    async def get_file(self, file_id: str) -> TelegramFile:
        return TelegramFile.model_validate(await self.call("getFile", {"file_id": file_id}))

    async def download_file(self, file_path: str) -> bytes:
        url = f"{self._base_url}/file/bot{self._token}/{file_path.lstrip('/')}"
        resp = await self._send("GET", url, timeout=self._timeout)
        resp.raise_for_status()
        return resp.content

    async def send_message(self, chat_id: int | str, text: str) -> None:
        for chunk in split_message(text):
            await self.call("sendMessage", {"chat_id": chat_id, "text": chunk})

    async def resolve(self, file_id: str) -> bytes:
        """Fetch the bytes behind a voice ``file_id``."""

        try:
            file = await self.get_file(file_id)
            if not file.file_path:
                raise AttachmentUnavailable(f"Telegram returned no file_path for {file_id}")
            audio = await self.download_file(file.file_path)
        except (TelegramApiError, httpx.HTTPError, ValidationError) as exc:
            raise AttachmentUnavailable(f"Could not download voice file {file_id}: {exc}") from exc
        logger.debug("Downloaded %d bytes for voice file %s", len(audio), file_id)
        return audio

    async def send(self, chat_id: int | str, text: str) -> None:
        try:
            await self.send_message(chat_id, text)
        except (TelegramApiError, httpx.HTTPError) as exc:
            raise DeliveryFailed(f"sendMessage to chat {chat_id} failed: {exc}") from exc
