from __future__ import annotations

import httpx

from .config import settings


def _timeout(timeout: float | None) -> httpx.Timeout:
    if timeout is not None:
        return httpx.Timeout(timeout)
    return httpx.Timeout(settings.read_timeout, connect=settings.connect_timeout)


def _limits(max_connections: int | None, max_keepalive: int | None) -> httpx.Limits:
    return httpx.Limits(
        max_connections=max_connections or settings.max_connections,
        max_keepalive_connections=max_keepalive or settings.max_keepalive,
    )


def http_client(
    timeout: float | None = None,
    max_connections: int | None = None,
    max_keepalive: int | None = None,
    transport: httpx.BaseTransport | None = None,
) -> httpx.Client:
    """Create a blocking httpx.Client; connect/read timeouts default to settings."""
    return httpx.Client(
        timeout=_timeout(timeout), limits=_limits(max_connections, max_keepalive), transport=transport
    )


def async_http_client(
    timeout: float | None = None,
    max_connections: int | None = None,
    max_keepalive: int | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create an httpx.AsyncClient with sane limits for our workloads."""
    return httpx.AsyncClient(
        timeout=_timeout(timeout), limits=_limits(max_connections, max_keepalive), transport=transport
    )
