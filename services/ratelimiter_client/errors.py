"""Failure classes raised by the rate limiter client.

Strict entry points raise these unchanged. Callers that would rather inspect a
value than catch an exception can wrap a call with :func:`outcome_of` (or
:func:`outcome_of_async`) and look at ``Outcome.error``.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar


T = TypeVar("T")


class RateLimiterClientError(Exception):
    pass


class TransportFailure(RateLimiterClientError):
    """No response was obtained: connection refused, DNS, transport timeout."""


class PermitTimeout(RateLimiterClientError, TimeoutError):
    """A caller-supplied timeout elapsed before the service answered."""

    def __init__(self, rate_id: str, timeout: float) -> None:
        super().__init__(f"timed out after {timeout}s waiting on rate {rate_id}")
        self.rate_id = rate_id
        self.timeout = timeout


class ValidationFailure(RateLimiterClientError, ValueError):
    """A rate rule failed local validation; nothing was sent."""


class ServerFault(RateLimiterClientError):
    __match_args__ = ("status_code", "message", "body")

    def __init__(self, status_code: int = 0, message: str = "", body: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.body = body

    def __str__(self) -> str:
        return (
            f"ServerFault{{status_code={self.status_code}, "
            f"message='{self.message}', body='{self.body}'}}"
        )


# Failures the error policy may convert into a permit decision
REMOTE_FAILURES = (TransportFailure, ServerFault, PermitTimeout)


@dataclass(frozen=True)
class Outcome(Generic[T]):
    value: T | None = None
    error: RateLimiterClientError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


def outcome_of(fn: Callable[..., T], *args: Any, **kwargs: Any) -> Outcome[T]:
    try:
        return Outcome(value=fn(*args, **kwargs))
    except RateLimiterClientError as e:
        return Outcome(error=e)


async def outcome_of_async(aw: Awaitable[T]) -> Outcome[T]:
    try:
        return Outcome(value=await aw)
    except RateLimiterClientError as e:
        return Outcome(error=e)
