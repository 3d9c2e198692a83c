from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass

import httpx

from auth import jwt_claims
from auth.refresh import (
    LOGOUT_PATH,
    REFRESH_PATH,
    RefreshRejectedError,
    refresh_access_token,
)
from auth.token_store import TokenStore

from .classify import (
    ErrorBody,
    generic_error,
    match_connection_expiry,
    match_transient_failure,
    parse_error_body,
)
from .constants import HEALTH_PATH, LOGGER
from .events import ConnectionExpiredEvent, EventBus, ForceSignOut, SessionRefreshed
from .outcomes import (
    NetworkError,
    RefreshResult,
    ResponseOutcome,
    RetryWithNewToken,
    SessionExpired,
    Success,
)


@dataclass
class TokenDiagnostics:
    has_access_token: bool
    has_refresh_token: bool
    expires_at: float | None
    time_remaining: float | None
    status: str
    refresh_in_progress: bool


def bearer_header(token: str | None) -> str:
    # A missing token is still sent so the backend's 401 can drive a refresh.
    # HTTP/1.1 header values cannot end in whitespace, hence no trailing space.
    if not token:
        return "Bearer"
    return f"Bearer {token}"


def sent_token(request: httpx.Request) -> str | None:
    """Access token carried by an outgoing request; None when it had no bearer header."""
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip()


class AuthenticatedClient:
    """Sends backend requests with the stored bearer token.

    Every response is reduced to exactly one ``ResponseOutcome``. A 401 caused
    by an expired session token starts at most one refresh at a time; callers
    that receive ``RetryWithNewToken`` re-issue their request once. A 401 for
    a token that has since been replaced skips the refresh and signals a retry.

    With ``refresh_leeway`` set, ``send`` refreshes an access token whose
    ``exp`` claim falls inside the leeway before the request goes out, so a
    request that would have succeeded can still be preceded by a refresh.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token_store: TokenStore,
        bus: EventBus,
        *,
        refresh_join_timeout: float | None = None,
        refresh_leeway: float | None = None,
        refresh_path: str = REFRESH_PATH,
        health_path: str = HEALTH_PATH,
        refresh_fn=refresh_access_token,
        clock=time.time,
    ) -> None:
        self._http = http_client
        self._token_store = token_store
        self._bus = bus
        self._refresh_join_timeout = refresh_join_timeout
        self._refresh_leeway = refresh_leeway
        self._refresh_path = refresh_path.rstrip("/")
        self._health_path = health_path.rstrip("/")
        self._refresh_fn = refresh_fn
        self._clock = clock

        self._refresh_lock = asyncio.Lock()
        self._refresh_task: asyncio.Task[RefreshResult] | None = None
        self.refresh_count = 0

    async def __aenter__(self) -> "AuthenticatedClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        task = self._refresh_task
        try:
            if task is not None:
                await asyncio.shield(task)
        finally:
            await self._http.aclose()

    @property
    def refresh_in_progress(self) -> bool:
        return self._refresh_task is not None

    def build_request(self, method: str, url: str, **kwargs) -> httpx.Request:
        return self._http.build_request(method, url, **kwargs)

    # -- sending -----------------------------------------------------------------

    async def send(self, request: httpx.Request, *, allow_refresh: bool = True) -> ResponseOutcome:
        if self._refresh_leeway is not None:
            early = await self._refresh_if_expiring()
            if early is not None:
                return early

        prepared = await self._authorize(request)
        try:
            response = await self._http.send(prepared)
        except httpx.TransportError as error:
            LOGGER.warning(
                "Network error for %s %s: %s", prepared.method, prepared.url, error
            )
            return NetworkError(message=str(error) or type(error).__name__)

        return await self.validate(response, allow_refresh=allow_refresh)

    async def request(self, method: str, url: str, **kwargs) -> ResponseOutcome:
        request = self.build_request(method, url, **kwargs)
        outcome = await self.send(request)
        if isinstance(outcome, RetryWithNewToken):
            LOGGER.info("Retrying %s %s once with the refreshed token", method, url)
            outcome = await self.send(request, allow_refresh=False)
        return outcome

    async def _authorize(self, request: httpx.Request) -> httpx.Request:
        token = await self._token_store.get_access_token()
        if not token:
            LOGGER.warning(
                "No access token stored; sending %s %s with an empty bearer token",
                request.method,
                request.url,
            )

        headers = httpx.Headers(request.headers)
        headers["Authorization"] = bearer_header(token)
        return httpx.Request(
            method=request.method,
            url=request.url,
            headers=headers,
            content=request.content,
            extensions=request.extensions,
        )

    # -- validation --------------------------------------------------------------

    async def validate(
        self, response: httpx.Response, *, allow_refresh: bool = True
    ) -> ResponseOutcome:
        status_code = response.status_code
        if 200 <= status_code < 300:
            return Success(status_code=status_code, body=response.content)

        body = parse_error_body(response.content)
        if status_code == 401:
            return await self._classify_unauthorized(response.request, body, allow_refresh)

        transient = match_transient_failure(status_code, body)
        if transient is not None:
            LOGGER.warning(
                "Transient backend failure retryable=%s provider=%s: %s",
                transient.retryable,
                transient.provider,
                transient.message,
            )
            return transient

        outcome = generic_error(status_code, body)
        LOGGER.warning(
            "Backend error status=%s endpoint=%s message=%s",
            status_code,
            response.request.url,
            outcome.message,
        )
        return outcome

    async def _classify_unauthorized(
        self, request: httpx.Request, body: ErrorBody, allow_refresh: bool
    ) -> ResponseOutcome:
        if self._is_endpoint(request, self._refresh_path):
            LOGGER.warning("Refresh token rejected; signing out")
            self._bus.publish(ForceSignOut(reason="refresh_token_invalid"))
            return SessionExpired()

        if self._is_endpoint(request, self._health_path):
            return generic_error(401, body)

        connection = match_connection_expiry(body)
        if connection is not None:
            LOGGER.warning("%s calendar connection expired", connection.provider)
            self._bus.publish(
                ConnectionExpiredEvent(provider=connection.provider, message=connection.message)
            )
            return connection

        if not allow_refresh:
            LOGGER.warning("Request still unauthorized after token refresh; signing out")
            self._bus.publish(ForceSignOut(reason="unauthorized_after_refresh"))
            return SessionExpired()

        result = await self.refresh_if_needed(stale_token=sent_token(request))
        if result.success:
            return RetryWithNewToken()
        if result.network_error:
            return NetworkError(message=result.reason or "Token refresh failed.")
        return SessionExpired()

    def _is_endpoint(self, request: httpx.Request, path: str) -> bool:
        expected = self._http.base_url.path.rstrip("/") + path
        return request.url.path.rstrip("/") == expected

    # -- refresh -----------------------------------------------------------------

    async def refresh_if_needed(self, *, stale_token: str | None = None) -> RefreshResult:
        """Run or join the single in-flight token refresh.

        ``stale_token`` is the access token a rejected request carried. When
        the store already holds a different token, an earlier refresh has
        replaced it and no new refresh is started.
        """
        async with self._refresh_lock:
            task = self._refresh_task
            if task is None and stale_token is not None:
                current = await self._token_store.get_access_token()
                if current and current != stale_token:
                    LOGGER.info("Access token already refreshed; retrying without a new refresh")
                    return RefreshResult(success=True, access_token=current)
            if task is None:
                task = asyncio.create_task(self._run_refresh())
                self._refresh_task = task
                self.refresh_count += 1
            else:
                LOGGER.info("Token refresh already in progress; waiting for its result")

        # Shielded so a cancelled caller never abandons other waiters.
        if self._refresh_join_timeout is None:
            return await asyncio.shield(task)
        try:
            return await asyncio.wait_for(asyncio.shield(task), self._refresh_join_timeout)
        except asyncio.TimeoutError:
            LOGGER.warning(
                "Gave up waiting %ss for token refresh", self._refresh_join_timeout
            )
            return RefreshResult(
                success=False,
                reason="Timed out waiting for token refresh.",
                network_error=True,
            )

    async def _run_refresh(self) -> RefreshResult:
        try:
            return await self._perform_refresh()
        finally:
            async with self._refresh_lock:
                self._refresh_task = None

    async def _perform_refresh(self) -> RefreshResult:
        try:
            refresh_token = await self._token_store.get_refresh_token()
        except RuntimeError as error:
            return self._store_failed(error)
        if not refresh_token:
            LOGGER.warning("No refresh token available; signing out")
            self._bus.publish(ForceSignOut(reason="missing_refresh_token"))
            return RefreshResult(success=False, reason="No refresh token available.")

        LOGGER.info("Refreshing access token")
        try:
            refreshed = await self._refresh_fn(
                self._http, refresh_token, path=self._refresh_path
            )
        except httpx.TransportError as error:
            LOGGER.warning("Token refresh network error: %s; signing out", error)
            self._bus.publish(ForceSignOut(reason="refresh_network_error"))
            return RefreshResult(success=False, reason=f"Token refresh network error: {error}")
        except RefreshRejectedError as error:
            LOGGER.warning("Token refresh rejected with status %s", error.status_code)
            self._bus.publish(ForceSignOut(reason="refresh_rejected"))
            return RefreshResult(success=False, reason=str(error))
        except RuntimeError as error:
            LOGGER.warning("Token refresh response unusable: %s", error)
            self._bus.publish(ForceSignOut(reason="refresh_response_invalid"))
            return RefreshResult(success=False, reason=str(error))

        try:
            stored = await self._token_store.store(refreshed.access_token)
        except RuntimeError as error:
            return self._store_failed(error)
        if not stored:
            return self._store_failed("write failed")

        LOGGER.info("Access token refreshed")
        self._bus.publish(SessionRefreshed())
        return RefreshResult(success=True, access_token=refreshed.access_token)

    def _store_failed(self, error) -> RefreshResult:
        LOGGER.error("Token store unusable during refresh: %s; signing out", error)
        self._bus.publish(ForceSignOut(reason="token_store_failed"))
        return RefreshResult(success=False, reason=f"Token store unusable: {error}")

    async def _refresh_if_expiring(self) -> ResponseOutcome | None:
        token = await self._token_store.get_access_token()
        now = self._clock()
        # Tokens without a readable exp claim are left to the 401 path.
        if jwt_claims.expires_at(token) is None:
            return None
        if not jwt_claims.expires_within(token, self._refresh_leeway, now=now):
            return None

        LOGGER.info(
            "Access token expires in %.0fs; refreshing before request",
            jwt_claims.time_remaining(token, now=now),
        )
        result = await self.refresh_if_needed(stale_token=token)
        if result.success or result.network_error:
            return None
        return SessionExpired()

    # -- session endpoints ---------------------------------------------------------

    async def logout(self) -> ResponseOutcome:
        prepared = await self._authorize(self.build_request("POST", LOGOUT_PATH))
        try:
            response = await self._http.send(prepared)
        except httpx.TransportError as error:
            LOGGER.warning("Logout request failed: %s", error)
            outcome: ResponseOutcome = NetworkError(message=str(error) or type(error).__name__)
        else:
            if response.is_success:
                outcome = Success(status_code=response.status_code, body=response.content)
            else:
                outcome = generic_error(response.status_code, parse_error_body(response.content))
        finally:
            await self._token_store.clear()
        return outcome

    async def health_check(self) -> bool:
        try:
            response = await self._http.get(self._health_path)
        except httpx.TransportError as error:
            LOGGER.warning("Health check failed: %s", error)
            return False
        return response.status_code == 200

    async def token_diagnostics(self) -> TokenDiagnostics:
        access_token = await self._token_store.get_access_token()
        refresh_token = await self._token_store.get_refresh_token()
        now = self._clock()
        return TokenDiagnostics(
            has_access_token=bool(access_token),
            has_refresh_token=bool(refresh_token),
            expires_at=jwt_claims.expires_at(access_token),
            time_remaining=jwt_claims.time_remaining(access_token, now=now),
            status=jwt_claims.describe_expiry(access_token, now=now),
            refresh_in_progress=self.refresh_in_progress,
        )
