from __future__ import annotations

import base64
import binascii
import json
import time


def decode_claims(token: str) -> dict:
    """Read the payload segment of a JWT without verifying its signature.

    Only used for client-side expiry bookkeeping; the backend remains the
    authority on whether a token is valid.
    """
    parts = token.split(".")
    if len(parts) != 3:
        raise RuntimeError("Invalid token format.")
    try:
        data = base64.urlsafe_b64decode(parts[1] + "=" * (-len(parts[1]) % 4))
        payload = json.loads(data)
    except (binascii.Error, ValueError) as error:
        raise RuntimeError("Token payload is not valid base64url JSON.") from error
    if not isinstance(payload, dict):
        raise RuntimeError("Token payload must be a JSON object.")
    return payload


def expires_at(token: str | None) -> float | None:
    if not token:
        return None
    try:
        claims = decode_claims(token)
    except RuntimeError:
        return None
    exp = claims.get("exp")
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        return None
    return float(exp)


def time_remaining(token: str | None, *, now: float | None = None) -> float | None:
    expiry = expires_at(token)
    if expiry is None:
        return None
    current = time.time() if now is None else now
    return expiry - current


def expires_within(token: str | None, seconds: float, *, now: float | None = None) -> bool:
    remaining = time_remaining(token, now=now)
    if remaining is None:
        return True
    return remaining < seconds


def describe_expiry(token: str | None, *, now: float | None = None) -> str:
    remaining = time_remaining(token, now=now)
    if remaining is None:
        return "unknown"
    if remaining > 0:
        hours = int(remaining) // 3600
        minutes = (int(remaining) % 3600) // 60
        return f"expires in {hours}h {minutes}m"
    return f"EXPIRED {int(-remaining)}s ago"
