#!/usr/bin/env python3
from __future__ import annotations

import argparse
import time

from ratelimiter_client import RateLimiterServiceClient, RateRule, RequestSnapshot
from ratelimiter_client.config import settings
from ratelimiter_client.logging_metrics import setup_logging


def sample_request() -> RequestSnapshot:
    return RequestSnapshot(
        character_encoding="UTF-8",
        headers={"Content-Type": ("application/json",)},
        context_path="",
        method="GET",
        request_uri="http://localhost:8081/basket",
        servlet_path="/checkout",
    )


def timed(label: str, fn) -> None:  # type: ignore[no-untyped-def]
    start = time.perf_counter()
    fn()
    print(f"{label}, time spent: {int((time.perf_counter() - start) * 1000)} ms", flush=True)


def main() -> None:
    ap = argparse.ArgumentParser(description="Time the main round trips against a live service")
    ap.add_argument("--url", default=None, help="Service base URL (default: RATELIMITER_BASE_URL)")
    ap.add_argument("--rate-id", default="ServiceCheck")
    ns = ap.parse_args()
    setup_logging(settings.log_level)
    rate_id = ns.rate_id
    with RateLimiterServiceClient(ns.url) as client:
        rule = RateRule.of(rate_id, "1/s", "web.request.header[X-SAMPLE-TRIGGER] = true")
        timed("Add limit", lambda: client.post_rate(rule))
        timed("Acquire permit without request", lambda: client.try_to_acquire_permits(rate_id, 1, False, None))
        timed(
            "Acquire permit with request",
            lambda: client.try_to_acquire_permits(rate_id, 1, False, sample_request()),
        )
        timed("Delete limit", lambda: client.delete_rates(rate_id))


if __name__ == "__main__":
    main()
