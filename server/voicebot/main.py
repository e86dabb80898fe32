"""FastAPI application entrypoint for the voice relay bot."""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

import httpx
from fastapi import FastAPI, Request

from .config import Settings, get_settings
from .routers import telegram as telegram_router
from .services.dispatcher import VoiceEventDispatcher
from .services.listener import UpdateListener
from .services.speechflow import SpeechflowClient
from .services.telegram import TelegramBotClient
from .services.transcription import TranscriptionOrchestrator

logging.basicConfig(level=get_settings().log_level.upper())
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    cfg: Settings = app.state.settings
    http_client = httpx.AsyncClient(timeout=cfg.http_timeout_seconds)
    stop_event = asyncio.Event()

    bot = TelegramBotClient(
        token=cfg.telegram_api_key,
        base_url=cfg.telegram_api_base_url,
        http_client=http_client,
        timeout=cfg.http_timeout_seconds,
    )
    provider = SpeechflowClient(
        key_id=cfg.speechflow_key_id,
        key_secret=cfg.speechflow_key_secret,
        base_url=cfg.speechflow_base_url,
        http_client=http_client,
        timeout=cfg.http_timeout_seconds,
    )
    orchestrator = TranscriptionOrchestrator(
        provider,
        bot,
        language_code=cfg.speechflow_language_code,
        result_type=cfg.speechflow_result_type,
        poll_interval=cfg.poll_interval_seconds,
        max_attempts=cfg.poll_max_attempts,
        timeout=cfg.poll_timeout_seconds,
        waiting_notice_every=cfg.waiting_notice_every,
        stop_event=stop_event,
    )
    dispatcher = VoiceEventDispatcher(bot, orchestrator, bot)
    app.state.dispatcher = dispatcher
    app.state.stop_event = stop_event

    listener_task: Optional[asyncio.Task] = None
    if cfg.telegram_polling:
        listener = UpdateListener(bot, dispatcher, stop_event, poll_timeout=cfg.telegram_poll_timeout)
        listener_task = asyncio.create_task(listener.run(), name="telegram-listener")
    else:
        logger.info("Long polling disabled; expecting updates on /telegram/webhook")

    try:
        yield
    finally:
        stop_event.set()
        if listener_task is not None:
            try:
                await asyncio.wait_for(listener_task, timeout=5.0)
            except asyncio.TimeoutError:
                logger.warning("Listener did not stop in time; cancelled")
            except Exception:
                logger.exception("Listener exited with an error")
        await dispatcher.shutdown()
        await http_client.aclose()
        app.state.dispatcher = None


def create_app(app_settings: Optional[Settings] = None) -> FastAPI:
    """Instantiate and configure the FastAPI application."""

    application = FastAPI(
        title="Voice Relay Bot",
        description="Relays Telegram voice messages to Speechflow and replies with the transcript.",
        version="0.1.0",
        lifespan=lifespan,
    )
    application.state.settings = app_settings or get_settings()
    application.include_router(telegram_router.router)

    @application.get("/")
    async def root(request: Request) -> dict[str, Any]:
        """Lightweight health endpoint for service discovery."""
        dispatcher = getattr(request.app.state, "dispatcher", None)
        return {
            "service": "voicebot",
            "status": "ok" if dispatcher is not None else "starting",
            "active_jobs": dispatcher.active_jobs if dispatcher is not None else 0,
        }

    return application


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
