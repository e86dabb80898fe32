"""Webhook endpoint for Telegram updates."""
from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request

from ..models import schemas

router = APIRouter(prefix="/telegram", tags=["telegram"])


@router.post("/webhook")
async def receive_update(update: schemas.TelegramUpdate, request: Request) -> dict[str, bool]:
    """Accept an update pushed by Telegram and schedule it like a polled one.

    The response is sent as soon as the job is scheduled; transcription
    results reach the chat through ``sendMessage``.
    """

    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        raise HTTPException(status_code=503, detail="Dispatcher not running")
    dispatcher.dispatch(update)
    return {"ok": True}
