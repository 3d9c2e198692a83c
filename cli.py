from __future__ import annotations

import asyncio

import httpx

from alltime.client import AuthenticatedClient
from alltime.constants import APP_VERSION, LOGGER
from alltime.env import load_env, load_settings, setup_logging, validate_env
from alltime.events import EventBus, ForceSignOut
from alltime.http import build_http_client
from auth.token_store import FileTokenStore

_PENDING_CLEARS: set[asyncio.Task] = set()


def create_client(
    *,
    bus: EventBus | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AuthenticatedClient:
    load_env()
    setup_logging()
    validate_env()

    settings = load_settings()
    token_store = FileTokenStore(settings.token_store_path)
    bus = bus or EventBus()

    def clear_tokens_on_sign_out(event) -> None:
        if not isinstance(event, ForceSignOut):
            return
        LOGGER.info("Signed out (%s); clearing stored tokens", event.reason)
        task = asyncio.get_running_loop().create_task(token_store.clear())
        _PENDING_CLEARS.add(task)
        task.add_done_callback(_PENDING_CLEARS.discard)

    bus.subscribe(clear_tokens_on_sign_out)

    return AuthenticatedClient(
        build_http_client(settings, transport=transport),
        token_store,
        bus,
        refresh_join_timeout=settings.refresh_join_timeout,
        refresh_leeway=settings.refresh_leeway,
    )


async def wait_for_pending_clears() -> None:
    """Let sign-out token clears finish before the event loop shuts down."""
    while _PENDING_CLEARS:
        results = await asyncio.gather(*list(_PENDING_CLEARS), return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                LOGGER.error("Failed to clear stored tokens after sign-out: %s", result)


async def check_backend(client: AuthenticatedClient) -> bool:
    healthy = await client.health_check()
    diagnostics = await client.token_diagnostics()

    print(f"AllTime client {APP_VERSION}")
    print(f"Backend healthy: {'yes' if healthy else 'no'}")
    print(f"Access token stored: {'yes' if diagnostics.has_access_token else 'no'}")
    print(f"Refresh token stored: {'yes' if diagnostics.has_refresh_token else 'no'}")
    print(f"Token status: {diagnostics.status}")
    return healthy


async def _run() -> int:
    async with create_client() as client:
        healthy = await check_backend(client)
    await wait_for_pending_clears()
    return 0 if healthy else 1


def main() -> int:
    return asyncio.run(_run())


if __name__ == "__main__":
    raise SystemExit(main())
