from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Union


@dataclass(frozen=True)
class Success:
    status_code: int
    body: bytes = b""

    def json(self) -> Any:
        return json.loads(self.body)


@dataclass(frozen=True)
class SessionExpired:
    message: str = "Session expired. Please sign in again."


@dataclass(frozen=True)
class ConnectionExpired:
    provider: str
    message: str | None = None


@dataclass(frozen=True)
class TransientFailure:
    retryable: bool
    message: str
    provider: str | None = None


@dataclass(frozen=True)
class HttpError:
    status_code: int
    message: str
    details: str | None = None


@dataclass(frozen=True)
class RetryWithNewToken:
    """The session token was refreshed; re-issue the original request once."""


@dataclass(frozen=True)
class NetworkError:
    message: str


ResponseOutcome = Union[
    Success,
    SessionExpired,
    ConnectionExpired,
    TransientFailure,
    HttpError,
    RetryWithNewToken,
    NetworkError,
]


@dataclass(frozen=True)
class RefreshResult:
    success: bool
    access_token: str | None = None
    reason: str | None = None
    network_error: bool = False
