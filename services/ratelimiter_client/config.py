from __future__ import annotations

import os
from dataclasses import dataclass


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    env: str = os.getenv("ENV", "dev")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Remote rate limiter service
    base_url: str = os.getenv("RATELIMITER_BASE_URL", "http://localhost:8080")
    connect_timeout: float = float(os.getenv("RATELIMITER_CONNECT_TIMEOUT", "15"))
    read_timeout: float = float(os.getenv("RATELIMITER_READ_TIMEOUT", "15"))
    max_connections: int = int(os.getenv("RATELIMITER_MAX_CONNECTIONS", "20"))
    max_keepalive: int = int(os.getenv("RATELIMITER_MAX_KEEPALIVE", "10"))
    # Encoding of outgoing JSON bodies
    charset: str = os.getenv("RATELIMITER_CHARSET", "utf-8")

    # Quiet entry points grant the permit when the service cannot be reached
    fail_open: bool = _flag("RATELIMITER_FAIL_OPEN", "true")


settings = Settings()
