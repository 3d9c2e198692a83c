from __future__ import annotations

from dataclasses import dataclass

import httpx

REFRESH_PATH = "/auth/refresh"
LOGOUT_PATH = "/auth/logout"


class RefreshRejectedError(RuntimeError):
    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(f"Token refresh failed with status {status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


@dataclass
class RefreshTokenResponse:
    access_token: str
    refresh_token: str | None = None
    token_type: str | None = None
    expires_in: int | None = None

    @classmethod
    def from_payload(cls, payload: object) -> "RefreshTokenResponse":
        if not isinstance(payload, dict):
            raise RuntimeError("Refresh response must be a JSON object.")

        # The backend has shipped both camelCase and snake_case bodies.
        access_token = payload.get("accessToken", payload.get("access_token"))
        refresh_token = payload.get("refreshToken", payload.get("refresh_token"))
        token_type = payload.get("tokenType", payload.get("token_type"))
        expires_in = payload.get("expiresIn", payload.get("expires_in"))

        if not isinstance(access_token, str) or not access_token:
            raise RuntimeError("Refresh response missing access token.")
        if refresh_token is not None and not isinstance(refresh_token, str):
            raise RuntimeError("Refresh response refresh token must be a string.")
        if token_type is not None and not isinstance(token_type, str):
            raise RuntimeError("Refresh response token type must be a string.")
        if expires_in is not None and not isinstance(expires_in, int):
            expires_in = None

        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            token_type=token_type,
            expires_in=expires_in,
        )


async def refresh_access_token(
    client: httpx.AsyncClient,
    refresh_token: str,
    *,
    path: str = REFRESH_PATH,
) -> RefreshTokenResponse:
    """Exchange a refresh token for a new access token.

    The response is checked here rather than by the caller's validation path,
    so a 401 from this endpoint can never start another refresh. Transport
    errors propagate as ``httpx.TransportError``.
    """
    response = await client.post(path, json={"refreshToken": refresh_token})
    if response.status_code != 200:
        raise RefreshRejectedError(response.status_code, response.text)

    try:
        payload = response.json()
    except ValueError as error:
        raise RuntimeError("Refresh response is not valid JSON.") from error
    return RefreshTokenResponse.from_payload(payload)
