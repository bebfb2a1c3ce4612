"""
Async HTTP client construction.

Clients are built explicitly and owned by whoever builds them; each
client-side grid session owns its own.
"""

import inspect
from typing import Any, Optional

import httpx
import structlog

from resgrid.shared.core.config import Settings, get_settings

logger = structlog.get_logger()


def build_http_client(
    settings: Optional[Settings] = None,
    *,
    base_url: str = "",
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """Return a new pooled httpx.AsyncClient configured from settings."""
    settings = settings or get_settings()
    client = httpx.AsyncClient(
        base_url=base_url,
        transport=transport,
        timeout=httpx.Timeout(settings.HTTP_TIMEOUT_SECONDS, connect=10.0),
        limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
        headers={"User-Agent": f"resgrid/{settings.VERSION}"},
    )
    logger.info(
        "http_client_initialized",
        base_url=base_url or None,
        timeout_seconds=settings.HTTP_TIMEOUT_SECONDS,
    )
    return client


async def close_http_client(client: Any) -> None:
    """Gracefully close a client, flushing its connection pool."""
    if client is None:
        return

    close_result = None
    aclose = getattr(client, "aclose", None)
    if callable(aclose):
        close_result = aclose()
    else:
        close = getattr(client, "close", None)
        if callable(close):
            close_result = close()

    if inspect.isawaitable(close_result):
        await close_result

    logger.info("http_client_closed")
