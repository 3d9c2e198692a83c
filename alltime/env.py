from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from pydantic import AnyHttpUrl, TypeAdapter, ValidationError

from .constants import (
    DEFAULT_BASE_URL,
    DEFAULT_TIMEOUT_SECONDS,
    DEFAULT_TOKEN_STORE_PATH,
    LOGGER,
)

_HTTP_URL = TypeAdapter(AnyHttpUrl)


@dataclass
class ClientSettings:
    base_url: str = DEFAULT_BASE_URL
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    token_store_path: str = DEFAULT_TOKEN_STORE_PATH
    refresh_join_timeout: float | None = None
    refresh_leeway: float | None = None
    debug: bool = True


def is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_env_float(key: str, default: float | None) -> float | None:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be a numeric value.")
    if value < 0:
        raise RuntimeError(f"{key} must not be negative.")
    return value


def load_env() -> None:
    env_path = Path(__file__).resolve().parent.parent / ".env"
    if not env_path.exists():
        return
    from dotenv import load_dotenv

    load_dotenv(env_path, override=True)


def validate_env() -> None:
    base_url = os.getenv("ALLTIME_API_BASE_URL", "").strip()
    if base_url:
        try:
            _HTTP_URL.validate_python(base_url)
        except ValidationError:
            raise RuntimeError(
                "ALLTIME_API_BASE_URL must be a valid HTTP(S) URL (for example: "
                "https://api.alltime.example)."
            )

    timeout = _get_env_float("ALLTIME_API_TIMEOUT", DEFAULT_TIMEOUT_SECONDS)
    if not timeout:
        raise RuntimeError("ALLTIME_API_TIMEOUT must be greater than zero.")
    _get_env_float("ALLTIME_REFRESH_JOIN_TIMEOUT", None)
    _get_env_float("ALLTIME_REFRESH_LEEWAY", None)


def load_settings() -> ClientSettings:
    return ClientSettings(
        base_url=os.getenv("ALLTIME_API_BASE_URL", "").strip() or DEFAULT_BASE_URL,
        timeout=_get_env_float("ALLTIME_API_TIMEOUT", DEFAULT_TIMEOUT_SECONDS),
        token_store_path=os.getenv("ALLTIME_TOKEN_STORE_PATH", "").strip()
        or DEFAULT_TOKEN_STORE_PATH,
        refresh_join_timeout=_get_env_float("ALLTIME_REFRESH_JOIN_TIMEOUT", None),
        refresh_leeway=_get_env_float("ALLTIME_REFRESH_LEEWAY", None),
        debug=is_truthy(os.getenv("ALLTIME_API_DEBUG", "1")),
    )


def setup_logging() -> bool:
    debug_enabled = is_truthy(os.getenv("ALLTIME_API_DEBUG", "1"))
    if debug_enabled:
        logging.basicConfig(level=logging.INFO)
        LOGGER.setLevel(logging.INFO)
    return debug_enabled
