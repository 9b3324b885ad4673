#!/usr/bin/env python3
from __future__ import annotations

import argparse
import time

from ratelimiter_client import RateLimiterServiceClient
from ratelimiter_client.config import settings
from ratelimiter_client.logging_metrics import setup_logging


def log(message: str) -> None:
    print(f"{time.strftime('%H:%M:%S')} {message}", flush=True)


def happy_path(client: RateLimiterServiceClient, rate_id: str) -> None:
    posted = client.post_rates({rate_id: "1/s"})
    log(f"POST expected rate of: 1/s, result: {posted[0].sub_rates[0].rate}")
    fetched = client.get_rates(rate_id)
    log(f" GET expected rate of: 1/s, result: {fetched.sub_rates[0].rate}")
    log(f"Available expected: true, result: {client.is_permit_available(rate_id)}")
    log(f"  Acquire expected: true, result: {client.try_to_acquire_permit(rate_id)}")
    log(f"Available expected: false, result: {client.is_permit_available(rate_id)}")
    log(f"  Acquire expected: false, result: {client.try_to_acquire_permit(rate_id)}")
    client.delete_rates(rate_id)
    log("Delete successful")
    tree = {"id": rate_id, "rates": [{"rate": "3/s"}]}
    log(f"POST expected rate of: 3/s, result: {client.post_rate_tree(tree)[0].sub_rates[0].rate}")
    client.delete_rates(rate_id)
    log("Delete successful")


def main() -> None:
    ap = argparse.ArgumentParser(description="Walk through the rate limiter service happy path")
    ap.add_argument("--url", default=None, help="Service base URL (default: RATELIMITER_BASE_URL)")
    ap.add_argument("--rate-id", default="HappyPathCheck")
    ns = ap.parse_args()
    setup_logging(settings.log_level)
    with RateLimiterServiceClient(ns.url) as client:
        happy_path(client, ns.rate_id)


if __name__ == "__main__":
    main()
