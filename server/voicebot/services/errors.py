"""Exception types shared by the provider client, orchestrator and Telegram adapters."""
from __future__ import annotations

from typing import Optional


class TranscriptionError(Exception):
    """Terminal failure of a single transcription job."""

    kind = "TranscriptionError"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ProviderUnavailable(TranscriptionError):
    """Transport failure or non-success HTTP status from the provider."""

    kind = "ProviderUnavailable"


class MalformedResponse(TranscriptionError):
    """Provider body could not be parsed or lacks a required field."""

    kind = "MalformedResponse"


class ProviderError(TranscriptionError):
    """Provider reported a failure code for the job."""

    kind = "ProviderError"


class TranscriptionTimeout(TranscriptionError):
    kind = "Timeout"


class TranscriptionCancelled(TranscriptionError):
    kind = "Cancelled"


class AttachmentUnavailable(Exception):
    """The voice attachment could not be turned into bytes."""


class DeliveryFailed(Exception):
    """An outbound message could not be delivered to the chat."""


class TelegramApiError(Exception):
    """Telegram Bot API answered with ``ok: false``."""

    def __init__(self, error_code: Optional[int], description: str) -> None:
        super().__init__(description)
        self.error_code = error_code
        self.description = description

    def __str__(self) -> str:
        return f"Telegram API Error:\n[{self.error_code}]\n{self.description}"
