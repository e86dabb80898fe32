"""Routes inbound Telegram updates to the transcription orchestrator."""
from __future__ import annotations

import asyncio
import logging
from typing import Optional, Protocol

from ..models.schemas import TelegramUpdate
from .errors import AttachmentUnavailable, TranscriptionError
from .transcription import MessageSender, SessionNotifier, TranscriptionOrchestrator

logger = logging.getLogger(__name__)


ATTACHMENT_ERROR_MESSAGE = "Sorry, the voice message could not be downloaded."
UNEXPECTED_ERROR_MESSAGE = "Sorry, something went wrong while processing the voice message."


class AttachmentResolver(Protocol):
    async def resolve(self, file_id: str) -> bytes: ...


def is_voice_update(update: TelegramUpdate) -> bool:
    return update.message is not None and update.message.voice is not None


class VoiceEventDispatcher:
    """Runs one task per voice update; a failing task never stops the others."""

    def __init__(
        self,
        resolver: AttachmentResolver,
        orchestrator: TranscriptionOrchestrator,
        sender: MessageSender,
    ) -> None:
        self._resolver = resolver
        self._orchestrator = orchestrator
        self._sender = sender
        self._tasks: set[asyncio.Task] = set()

    @property
    def active_jobs(self) -> int:
        return len(self._tasks)

    def dispatch(self, update: TelegramUpdate) -> Optional[asyncio.Task]:
        """Schedule ``update`` for processing; non-voice updates are ignored."""

        if not is_voice_update(update):
            logger.debug("Ignoring update %s without a voice message", update.update_id)
            return None
        task = asyncio.create_task(self.handle_update(update), name=f"voice-update-{update.update_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def handle_update(self, update: TelegramUpdate) -> None:
        message = update.message
        if message is None or message.voice is None:
            return

        chat_id = message.chat.id
        username = message.from_user.username if message.from_user else None
        logger.info("Received voice message from %s in chat %s", username or "unknown user", chat_id)

        try:
            audio = await self._resolver.resolve(message.voice.file_id)
            await self._orchestrator.transcribe(chat_id, audio)
        except TranscriptionError as exc:
            # The orchestrator already told the chat.
            logger.info("Voice message %s in chat %s ended with %s", message.message_id, chat_id, exc.kind)
        except AttachmentUnavailable as exc:
            logger.warning("Voice attachment unavailable for chat %s: %s", chat_id, exc)
            await SessionNotifier(chat_id, self._sender).notify(ATTACHMENT_ERROR_MESSAGE)
        except Exception:
            logger.exception("Unexpected failure handling update %s", update.update_id)
            await SessionNotifier(chat_id, self._sender).notify(UNEXPECTED_ERROR_MESSAGE)

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Wait for in-flight jobs, cancelling whatever is still running after ``timeout``."""

        if not self._tasks:
            return
        pending = set(self._tasks)
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning("Cancelled %d unfinished voice jobs on shutdown", len(still_running))
            await asyncio.gather(*still_running, return_exceptions=True)
