from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Callable

import httpx

from .outcomes import ConnectionExpired, HttpError, TransientFailure

CONNECTION_EXPIRED_CODE = "token_expired"
TRANSIENT_FAILURE_CODE = "transient_failure"

# Older backend builds only described calendar-connection expiry in prose.
LEGACY_RECONNECT_PHRASES = (
    "calendar token expired",
    "calendar token has expired",
    "calendar connection expired",
    "calendar access expired",
    "reconnect calendar",
    "reconnect your calendar",
)


@dataclass(frozen=True)
class ErrorBody:
    raw: str
    payload: dict | None = None

    def field(self, key: str) -> str | None:
        if self.payload is None:
            return None
        value = self.payload.get(key)
        if not isinstance(value, str) or not value.strip():
            return None
        return value.strip()

    @property
    def provider(self) -> str | None:
        provider = self.field("provider")
        return provider.lower() if provider else None


def parse_error_body(body: bytes) -> ErrorBody:
    text = body.decode("utf-8", errors="replace")
    if not text.strip():
        return ErrorBody(raw="")
    try:
        payload = json.loads(text)
    except ValueError:
        return ErrorBody(raw=text)
    if not isinstance(payload, dict):
        return ErrorBody(raw=text)
    return ErrorBody(raw=text, payload=payload)


def status_phrase(status_code: int) -> str:
    phrase = httpx.codes.get_reason_phrase(status_code)
    return phrase or f"HTTP {status_code}"


def error_message(status_code: int, body: ErrorBody) -> str:
    return body.field("message") or body.field("error") or status_phrase(status_code)


def _structured_connection_expiry(body: ErrorBody) -> ConnectionExpired | None:
    if body.field("error") != CONNECTION_EXPIRED_CODE or body.provider is None:
        return None
    return ConnectionExpired(provider=body.provider, message=body.field("message"))


def _legacy_connection_expiry(body: ErrorBody) -> ConnectionExpired | None:
    if body.provider is None:
        return None

    text = " ".join(
        value.lower()
        for value in (body.field("message"), body.field("error"))
        if value is not None
    )
    action = (body.field("action_required") or "").lower()
    if not any(phrase in text for phrase in LEGACY_RECONNECT_PHRASES) and "reconnect" not in action:
        return None
    return ConnectionExpired(
        provider=body.provider,
        message=body.field("message") or body.field("error"),
    )


CONNECTION_EXPIRY_MATCHERS: tuple[Callable[[ErrorBody], ConnectionExpired | None], ...] = (
    _structured_connection_expiry,
    _legacy_connection_expiry,
)


def match_connection_expiry(body: ErrorBody) -> ConnectionExpired | None:
    for matcher in CONNECTION_EXPIRY_MATCHERS:
        outcome = matcher(body)
        if outcome is not None:
            return outcome
    return None


def match_transient_failure(status_code: int, body: ErrorBody) -> TransientFailure | None:
    if status_code != 500 or body.field("error") != TRANSIENT_FAILURE_CODE:
        return None

    retryable = body.payload.get("retryable") if body.payload is not None else None
    return TransientFailure(
        retryable=retryable if isinstance(retryable, bool) else True,
        message=body.field("message") or status_phrase(status_code),
        provider=body.provider,
    )


def generic_error(status_code: int, body: ErrorBody) -> HttpError:
    return HttpError(
        status_code=status_code,
        message=error_message(status_code, body),
        details=body.raw or None,
    )
