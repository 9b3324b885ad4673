from __future__ import annotations

from typing import Awaitable, Callable

from fastapi import HTTPException, Request

from .client import AsyncRateLimiterServiceClient


def rate_limited(
    client: AsyncRateLimiterServiceClient,
    rate_id: str,
    rate: str,
    condition: str | None = None,
    parent_id: str | None = None,
) -> Callable[[Request], Awaitable[None]]:
    """FastAPI dependency rejecting requests with 429 once ``rate`` is used up.

    Usage::

        @app.get("/login", dependencies=[Depends(rate_limited(client, "login", "5/m"))])
    """

    async def dependency(request: Request) -> None:
        if not await client.check_limit(request, rate_id, rate, condition, parent_id):
            raise HTTPException(status_code=429, detail="rate limit exceeded")

    return dependency
