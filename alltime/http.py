from __future__ import annotations

import httpx

from .constants import APP_VERSION, ERROR_BODY_LOG_LIMIT, LOGGER
from .env import ClientSettings


def truncate_body(text: str, limit: int = ERROR_BODY_LOG_LIMIT) -> str:
    if len(text) > limit:
        return text[:limit] + "...<truncated>"
    return text


def build_event_hooks(debug_enabled: bool) -> dict[str, list]:
    async def log_request(request: httpx.Request) -> None:
        if not debug_enabled:
            return
        LOGGER.info("AllTime API request %s %s", request.method, request.url)

    async def log_response(response: httpx.Response) -> None:
        if not debug_enabled:
            return
        LOGGER.info(
            "AllTime API response %s %s -> %s",
            response.request.method,
            response.request.url,
            response.status_code,
        )
        if response.status_code >= 400:
            body = await response.aread()
            LOGGER.warning(
                "AllTime API error body: %s",
                truncate_body(body.decode("utf-8", errors="replace")),
            )

    return {"request": [log_request], "response": [log_response]}


def build_http_client(
    settings: ClientSettings,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=settings.base_url,
        headers={"User-Agent": f"alltime-client/{APP_VERSION}"},
        timeout=settings.timeout,
        transport=transport,
        event_hooks=build_event_hooks(settings.debug),
    )
