"""Pydantic models describing Telegram updates and Speechflow payloads."""
from __future__ import annotations

import json
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TelegramUser(BaseModel):
    id: int
    username: Optional[str] = None


class TelegramChat(BaseModel):
    id: int


class TelegramVoice(BaseModel):
    """Voice note attachment; only ``file_id`` is required to fetch it."""

    file_id: str
    duration: Optional[int] = None
    mime_type: Optional[str] = None
    file_size: Optional[int] = None


class TelegramMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message_id: int
    chat: TelegramChat
    from_user: Optional[TelegramUser] = Field(default=None, alias="from")
    voice: Optional[TelegramVoice] = None


class TelegramUpdate(BaseModel):
    """Incoming update as delivered by ``getUpdates`` or a webhook call."""

    update_id: int
    message: Optional[TelegramMessage] = None


class TelegramFile(BaseModel):
    file_id: str
    file_path: Optional[str] = None
    file_size: Optional[int] = None


class SpeechflowSentence(BaseModel):
    s: Optional[str] = Field(default=None, description="Recognized text of the sentence")


class SpeechflowResult(BaseModel):
    sentences: List[SpeechflowSentence]


class SpeechflowCreateResponse(BaseModel):
    """Body returned by ``POST /create``."""

    task_id: str = Field(..., alias="taskId", min_length=1)

    @field_validator("task_id", mode="before")
    @classmethod
    def _stringify_task_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class SpeechflowQueryResponse(BaseModel):
    """Body returned by ``GET /query``.

    Speechflow embeds ``result`` as a JSON encoded string; an already decoded
    object is accepted as well.
    """

    code: int
    msg: Optional[str] = None
    result: Optional[SpeechflowResult] = None

    @field_validator("result", mode="before")
    @classmethod
    def _decode_result(cls, value: Union[str, dict, None]) -> Any:
        if isinstance(value, str):
            if not value.strip():
                return None
            return json.loads(value)
        return value
