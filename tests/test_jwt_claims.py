import pytest

from auth.jwt_claims import decode_claims, describe_expiry, expires_at, expires_within, time_remaining
from tests.client_helpers import make_jwt

NOW = 1_700_000_000.0


def test_decode_claims_reads_payload() -> None:
    token = make_jwt({"sub": "user-1", "exp": 1_700_003_600})

    assert decode_claims(token) == {"sub": "user-1", "exp": 1_700_003_600}


def test_decode_claims_rejects_opaque_token() -> None:
    with pytest.raises(RuntimeError, match="Invalid token format"):
        decode_claims("opaque-token")


def test_decode_claims_rejects_garbage_payload() -> None:
    with pytest.raises(RuntimeError, match="base64url JSON"):
        decode_claims("header.!!!.signature")


def test_expires_at_missing_claim() -> None:
    assert expires_at(make_jwt({"sub": "user-1"})) is None
    assert expires_at(make_jwt({"exp": "tomorrow"})) is None
    assert expires_at(None) is None
    assert expires_at("not-a-jwt") is None


def test_time_remaining_uses_clock() -> None:
    token = make_jwt({"exp": NOW + 90})

    assert time_remaining(token, now=NOW) == 90


def test_expires_within() -> None:
    token = make_jwt({"exp": NOW + 30})

    assert expires_within(token, 60, now=NOW) is True
    assert expires_within(token, 10, now=NOW) is False
    assert expires_within("opaque", 10, now=NOW) is True


def test_describe_expiry() -> None:
    assert describe_expiry(make_jwt({"exp": NOW + 7260}), now=NOW) == "expires in 2h 1m"
    assert describe_expiry(make_jwt({"exp": NOW - 45}), now=NOW) == "EXPIRED 45s ago"
    assert describe_expiry(None, now=NOW) == "unknown"
