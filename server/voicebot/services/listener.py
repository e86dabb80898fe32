"""Long-polling listener feeding Telegram updates to the dispatcher."""
from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from ..models.schemas import TelegramUpdate
from .dispatcher import VoiceEventDispatcher
from .errors import TelegramApiError
from .telegram import TelegramBotClient

logger = logging.getLogger(__name__)


class UpdateListener:
    """Single receive loop; stops accepting updates once ``stop_event`` is set."""

    def __init__(
        self,
        bot: TelegramBotClient,
        dispatcher: VoiceEventDispatcher,
        stop_event: asyncio.Event,
        *,
        poll_timeout: int = 30,
        error_backoff: float = 5.0,
    ) -> None:
        self._bot = bot
        self._dispatcher = dispatcher
        self._stop = stop_event
        self._poll_timeout = poll_timeout
        self._error_backoff = error_backoff
        self._offset: Optional[int] = None

    @property
    def offset(self) -> Optional[int]:
        return self._offset

    async def run(self) -> None:
        try:
            me = await self._bot.get_me()
            logger.info("Start listening for @%s", me.username)
        except (TelegramApiError, httpx.HTTPError, ValidationError) as exc:
            logger.error("Could not identify bot: %s", exc)

        while not self._stop.is_set():
            try:
                batch = await self._next_batch()
            except (TelegramApiError, httpx.HTTPError) as exc:
                self._log_polling_error(exc)
                await self._sleep(self._error_backoff)
                continue
            if self._stop.is_set():
                break
            for raw in batch:
                self._accept(raw)
        logger.info("Update listener stopped")

    def _accept(self, raw: dict[str, Any]) -> None:
        update_id = raw.get("update_id")
        if isinstance(update_id, int):
            self._offset = update_id + 1
        try:
            update = TelegramUpdate.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Skipping malformed update %s: %s", update_id, exc)
            return
        self._dispatcher.dispatch(update)

    async def _next_batch(self) -> list[dict[str, Any]]:
        fetch = asyncio.create_task(self._bot.get_updates(offset=self._offset, timeout=self._poll_timeout))
        stop = asyncio.create_task(self._stop.wait())
        done, _ = await asyncio.wait({fetch, stop}, return_when=asyncio.FIRST_COMPLETED)
        if fetch not in done:
            fetch.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await fetch
            return []
        stop.cancel()
        return fetch.result()

    async def _sleep(self, seconds: float) -> None:
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)

    @staticmethod
    def _log_polling_error(exc: Exception) -> None:
        if isinstance(exc, TelegramApiError):
            logger.error("%s", exc)
        else:
            logger.error("Telegram polling failed: %r", exc)
