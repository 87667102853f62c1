# backend/config.py
from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()  # for local development; in deployment the env vars are set directly

DEFAULT_OPENAI_MODEL = "gpt-3.5-turbo"
DEFAULT_GEMINI_MODEL = "gemini-2.5-flash"
SUPPORTED_PROVIDERS = {"openai", "gemini"}


@dataclass(frozen=True)
class RelaySettings:
    provider: str
    model: str
    openai_api_key: str | None
    openai_base_url: str | None
    google_api_key: str | None
    temperature: float
    request_timeout: float
    cors_allow_origins: list[str]
    log_level: str


def _read_optional_env(name: str) -> str | None:
    value = os.getenv(name)
    if not value:
        return None
    stripped = value.strip()
    return stripped if stripped else None


def _read_float_env(name: str, default: float) -> float:
    value = _read_optional_env(name)
    if value is None:
        return default
    try:
        parsed = float(value)
    except ValueError:
        return default
    return parsed if parsed >= 0 else default


def _read_list_env(name: str, default: list[str]) -> list[str]:
    value = _read_optional_env(name)
    if value is None:
        return default
    items = [item.strip() for item in value.split(",") if item.strip()]
    return items or default


def load_settings() -> RelaySettings:
    provider = (_read_optional_env("CHAT_PROVIDER") or "openai").lower()

    if provider == "gemini":
        default_model = _read_optional_env("GEMINI_MODEL") or DEFAULT_GEMINI_MODEL
    else:
        default_model = DEFAULT_OPENAI_MODEL

    return RelaySettings(
        provider=provider,
        model=_read_optional_env("CHAT_MODEL") or default_model,
        openai_api_key=_read_optional_env("OPENAI_API_KEY"),
        openai_base_url=_read_optional_env("OPENAI_BASE_URL"),
        google_api_key=_read_optional_env("GOOGLE_API_KEY"),
        temperature=_read_float_env("CHAT_TEMPERATURE", 0.7),
        request_timeout=_read_float_env("CHAT_REQUEST_TIMEOUT", 60.0),
        cors_allow_origins=_read_list_env("CORS_ALLOW_ORIGINS", ["*"]),
        log_level=(_read_optional_env("LOG_LEVEL") or "INFO").upper(),
    )
