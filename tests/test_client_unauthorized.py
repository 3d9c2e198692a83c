import json

import httpx
import pytest

from alltime.events import ConnectionExpiredEvent, ForceSignOut, SessionRefreshed
from alltime.outcomes import (
    ConnectionExpired,
    HttpError,
    RetryWithNewToken,
    SessionExpired,
    Success,
)
from tests.client_helpers import build_client, reply


@pytest.mark.asyncio
async def test_refresh_endpoint_401_signs_out_once(backend) -> None:
    backend.on("POST", "/auth/refresh", reply(401, json_body={"message": "invalid refresh token"}))
    client, _store, bus = build_client(backend)
    request = client.build_request("POST", "/auth/refresh", json={"refreshToken": "refresh-1"})

    outcome = await client.send(request)

    assert outcome == SessionExpired()
    assert bus.of_type(ForceSignOut) == [ForceSignOut(reason="refresh_token_invalid")]
    assert len(backend.calls("POST", "/auth/refresh")) == 1
    assert client.refresh_count == 0
    await client.aclose()


@pytest.mark.asyncio
async def test_health_check_401_is_not_refreshed(backend) -> None:
    backend.on("GET", "/health", reply(401, json_body={"message": "unauthorized"}))
    client, _store, bus = build_client(backend)

    outcome = await client.request("GET", "/health")

    assert isinstance(outcome, HttpError)
    assert outcome.status_code == 401
    assert outcome.message == "unauthorized"
    assert backend.calls("POST", "/auth/refresh") == []
    assert bus.events == []
    await client.aclose()


@pytest.mark.asyncio
async def test_structured_connection_expiry(backend) -> None:
    backend.on(
        "GET",
        "/api/v1/calendars",
        reply(401, json_body={"error": "token_expired", "provider": "google"}),
    )
    client, store, bus = build_client(backend)

    outcome = await client.request("GET", "/api/v1/calendars")

    assert outcome == ConnectionExpired(provider="google")
    assert bus.events == [ConnectionExpiredEvent(provider="google")]
    assert bus.of_type(ForceSignOut) == []
    assert backend.calls("POST", "/auth/refresh") == []
    assert await store.get_access_token() == "access-1"
    await client.aclose()


@pytest.mark.asyncio
async def test_legacy_connection_expiry_matches_structured(backend) -> None:
    backend.on(
        "GET",
        "/api/v1/calendars",
        reply(401, json_body={"message": "reconnect calendar", "provider": "microsoft"}),
    )
    client, _store, bus = build_client(backend)

    outcome = await client.request("GET", "/api/v1/calendars")

    assert outcome == ConnectionExpired(provider="microsoft", message="reconnect calendar")
    assert bus.events == [
        ConnectionExpiredEvent(provider="microsoft", message="reconnect calendar")
    ]
    assert backend.calls("POST", "/auth/refresh") == []
    await client.aclose()


@pytest.mark.asyncio
async def test_legacy_action_required_connection_expiry(backend) -> None:
    backend.on(
        "POST",
        "/api/v1/sync",
        reply(
            401,
            json_body={
                "error": "Google access was revoked",
                "provider": "Google",
                "action_required": "reconnect_google",
            },
        ),
    )
    client, _store, bus = build_client(backend)

    outcome = await client.request("POST", "/api/v1/sync")

    assert outcome == ConnectionExpired(provider="google", message="Google access was revoked")
    assert bus.of_type(ForceSignOut) == []
    await client.aclose()


@pytest.mark.asyncio
async def test_session_expiry_refreshes_and_signals_retry(refreshing_backend) -> None:
    backend = refreshing_backend
    backend.on("GET", "/api/v1/events", reply(401, json_body={"message": "jwt expired"}))
    client, store, bus = build_client(backend)
    request = client.build_request("GET", "/api/v1/events")

    outcome = await client.send(request)

    assert outcome == RetryWithNewToken()
    assert await store.get_access_token() == "access-2"
    assert await store.get_refresh_token() == "refresh-1"
    assert bus.events == [SessionRefreshed()]
    refresh_calls = backend.calls("POST", "/auth/refresh")
    assert len(refresh_calls) == 1
    assert json.loads(refresh_calls[0].content) == {"refreshToken": "refresh-1"}
    await client.aclose()


@pytest.mark.asyncio
async def test_token_expired_without_provider_is_session_expiry(refreshing_backend) -> None:
    backend = refreshing_backend
    backend.on("GET", "/api/v1/events", reply(401, json_body={"error": "token_expired"}))
    client, _store, bus = build_client(backend)

    outcome = await client.send(client.build_request("GET", "/api/v1/events"))

    assert outcome == RetryWithNewToken()
    assert bus.of_type(ConnectionExpiredEvent) == []
    await client.aclose()


@pytest.mark.asyncio
async def test_request_retries_once_with_new_token(refreshing_backend) -> None:
    backend = refreshing_backend
    backend.on(
        "GET",
        "/api/v1/summary",
        reply(401, json_body={"message": "jwt expired"}),
        reply(200, json_body={"summary": "Busy day"}),
    )
    client, _store, bus = build_client(backend)

    outcome = await client.request("GET", "/api/v1/summary")

    assert isinstance(outcome, Success)
    assert outcome.json() == {"summary": "Busy day"}
    summary_calls = backend.calls("GET", "/api/v1/summary")
    assert [call.headers["Authorization"] for call in summary_calls] == [
        "Bearer access-1",
        "Bearer access-2",
    ]
    assert bus.events == [SessionRefreshed()]
    await client.aclose()


@pytest.mark.asyncio
async def test_request_gives_up_after_one_retry(refreshing_backend) -> None:
    backend = refreshing_backend
    backend.on("GET", "/api/v1/summary", reply(401, json_body={"message": "jwt expired"}))
    client, _store, bus = build_client(backend)

    outcome = await client.request("GET", "/api/v1/summary")

    assert outcome == SessionExpired()
    assert len(backend.calls("GET", "/api/v1/summary")) == 2
    assert len(backend.calls("POST", "/auth/refresh")) == 1
    assert bus.of_type(ForceSignOut) == [ForceSignOut(reason="unauthorized_after_refresh")]
    await client.aclose()


@pytest.mark.asyncio
async def test_rejected_refresh_signs_out_once(backend) -> None:
    backend.on("GET", "/api/v1/events", reply(401, json_body={"message": "jwt expired"}))
    backend.on("POST", "/auth/refresh", reply(401, json_body={"message": "refresh expired"}))
    client, store, bus = build_client(backend)

    outcome = await client.request("GET", "/api/v1/events")

    assert outcome == SessionExpired()
    assert bus.events == [ForceSignOut(reason="refresh_rejected")]
    assert len(backend.calls("POST", "/auth/refresh")) == 1
    assert await store.get_access_token() == "access-1"
    await client.aclose()


@pytest.mark.asyncio
async def test_refresh_server_error_signs_out(backend) -> None:
    backend.on("GET", "/api/v1/events", reply(401))
    backend.on("POST", "/auth/refresh", reply(500, text="boom"))
    client, _store, bus = build_client(backend)

    outcome = await client.request("GET", "/api/v1/events")

    assert outcome == SessionExpired()
    assert bus.events == [ForceSignOut(reason="refresh_rejected")]
    await client.aclose()


@pytest.mark.asyncio
async def test_missing_refresh_token_signs_out_without_calling_backend(backend) -> None:
    backend.on("GET", "/api/v1/events", reply(401))
    client, store, bus = build_client(backend, credentials=None)
    await store.store("access-only")

    outcome = await client.request("GET", "/api/v1/events")

    assert outcome == SessionExpired()
    assert bus.events == [ForceSignOut(reason="missing_refresh_token")]
    assert backend.calls("POST", "/auth/refresh") == []
    await client.aclose()


@pytest.mark.asyncio
async def test_refresh_response_without_access_token_signs_out(backend) -> None:
    backend.on("GET", "/api/v1/events", reply(401))
    backend.on("POST", "/auth/refresh", reply(200, json_body={"tokenType": "Bearer"}))
    client, store, bus = build_client(backend)

    outcome = await client.request("GET", "/api/v1/events")

    assert outcome == SessionExpired()
    assert bus.events == [ForceSignOut(reason="refresh_response_invalid")]
    assert await store.get_access_token() == "access-1"
    await client.aclose()


@pytest.mark.asyncio
async def test_refresh_network_error_signs_out(backend) -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("offline", request=request)

    backend.on("GET", "/api/v1/events", reply(401))
    backend.on("POST", "/auth/refresh", refuse)
    client, _store, bus = build_client(backend)

    outcome = await client.request("GET", "/api/v1/events")

    assert outcome == SessionExpired()
    assert bus.events == [ForceSignOut(reason="refresh_network_error")]
    assert len(backend.calls("GET", "/api/v1/events")) == 1
    await client.aclose()


@pytest.mark.asyncio
async def test_snake_case_refresh_response_is_accepted(backend) -> None:
    backend.on("GET", "/api/v1/events", reply(401), reply(200, json_body={"events": []}))
    backend.on(
        "POST",
        "/auth/refresh",
        reply(
            200,
            json_body={
                "access_token": "access-snake",
                "refresh_token": "refresh-rotated",
                "token_type": "Bearer",
                "expires_in": 3600,
                "refresh_expires_in": 86400,
            },
        ),
    )
    client, store, _bus = build_client(backend)

    outcome = await client.request("GET", "/api/v1/events")

    assert isinstance(outcome, Success)
    assert await store.get_access_token() == "access-snake"
    assert await store.get_refresh_token() == "refresh-1"
    await client.aclose()
