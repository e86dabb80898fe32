"""Configuration helpers for the voice relay bot."""
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


DEFAULT_LANGUAGE_CODE = "ru"


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


@dataclass
class Settings:
    """Centralized environment-driven configuration.

    Values are read once when this module is imported; call
    ``importlib.reload`` on the module to pick up environment changes.
    """

    # Telegram Bot API
    telegram_api_key: Optional[str] = os.getenv("TELEGRAM_API_KEY")
    telegram_api_base_url: str = os.getenv("TELEGRAM_API_BASE_URL", "https://api.telegram.org")
    telegram_polling: bool = _env_flag("TELEGRAM_POLLING", True)
    telegram_poll_timeout: int = _env_int("TELEGRAM_POLL_TIMEOUT", 30)

    # Speechflow ASR credentials and endpoint
    speechflow_key_id: Optional[str] = os.getenv("SPEECHFLOW_KEY_ID")
    speechflow_key_secret: Optional[str] = os.getenv("SPEECHFLOW_KEY_SECRET")
    speechflow_language_code: str = os.getenv("SPEECHFLOW_LANGUAGE_CODE") or DEFAULT_LANGUAGE_CODE
    speechflow_base_url: str = os.getenv("SPEECHFLOW_BASE_URL", "https://api.speechflow.io/asr/file/v1")
    speechflow_result_type: int = _env_int("SPEECHFLOW_RESULT_TYPE", 1)

    # Poll loop bounds; 0 disables the corresponding cap.
    poll_interval_seconds: float = _env_float("POLL_INTERVAL_SECONDS", 3.0)
    poll_max_attempts: int = _env_int("POLL_MAX_ATTEMPTS", 200)
    poll_timeout_seconds: float = _env_float("POLL_TIMEOUT_SECONDS", 900.0)
    waiting_notice_every: int = _env_int("WAITING_NOTICE_EVERY", 1)

    http_timeout_seconds: float = _env_float("HTTP_TIMEOUT_SECONDS", 60.0)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached settings instance to avoid repeated environment reads."""

    return Settings()


settings = get_settings()
