from __future__ import annotations

import logging
from typing import Any, Protocol

from .config import settings
from .logging_metrics import policy_decisions_total

logger = logging.getLogger(__name__)


class ErrorPolicy(Protocol):
    def __call__(self, action: str, error: Exception, rate_id: str, request: Any) -> bool: ...


class FailOpenPolicy:
    """Grant the permit when the service failed: an outage must not block traffic."""

    granted = True

    def __call__(self, action: str, error: Exception, rate_id: str, request: Any) -> bool:
        policy_decisions_total.labels(
            action=action, error=type(error).__name__, granted=str(self.granted).lower()
        ).inc()
        logger.warning(f"{action} error. Rate: {rate_id} for: {request!r}. {error}")
        return self.granted


class FailClosedPolicy(FailOpenPolicy):
    granted = False


def policy_from_settings() -> ErrorPolicy:
    return FailOpenPolicy() if settings.fail_open else FailClosedPolicy()
