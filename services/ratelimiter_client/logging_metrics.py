from __future__ import annotations

import contextvars
import json
import logging
import time
from contextlib import contextmanager
from typing import Any, Iterator

from fastapi import APIRouter, Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)


# Prometheus custom registry and metrics
registry = CollectorRegistry()
requests_total = Counter(
    "ratelimiter_client_requests_total",
    "Round trips to the rate limiter service",
    ["op", "outcome"],
    registry=registry,
)
latency_seconds = Histogram(
    "ratelimiter_client_latency_seconds",
    "Round trip latency by operation",
    ["op"],
    registry=registry,
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2, 5),
)
policy_decisions_total = Counter(
    "ratelimiter_client_policy_decisions_total",
    "Failures converted into a permit decision by the error policy",
    ["action", "error", "granted"],
    registry=registry,
)


# Rate id of the call in flight, attached to every log line
rate_id: contextvars.ContextVar[str | None] = contextvars.ContextVar("rate_id", default=None)


@contextmanager
def bound_rate_id(value: str) -> Iterator[None]:
    token = rate_id.set(value)
    try:
        yield
    finally:
        rate_id.reset(token)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "time": time.strftime("%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "rate_id": rate_id.get(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def setup_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.handlers.clear()
    h = logging.StreamHandler()
    h.setFormatter(JsonFormatter())
    root.addHandler(h)
    root.setLevel(level)


# Metrics router, mounted by the host application
metrics_router = APIRouter()


@metrics_router.get("/metrics")
def metrics() -> Response:
    data = generate_latest(registry)
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
