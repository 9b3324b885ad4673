from .client import AsyncRateLimiterServiceClient, RateLimiterServiceClient
from .errors import (
    Outcome,
    PermitTimeout,
    RateLimiterClientError,
    ServerFault,
    TransportFailure,
    ValidationFailure,
    outcome_of,
    outcome_of_async,
)
from .models import Operator, RateLimit, RateRule, RequestSnapshot
from .policy import FailClosedPolicy, FailOpenPolicy
from .registry import RegistrationCache
from .snapshot import MappingRequestSource, RequestSource, StarletteRequestSource, build_snapshot

__all__ = [
    "AsyncRateLimiterServiceClient",
    "FailClosedPolicy",
    "FailOpenPolicy",
    "MappingRequestSource",
    "Operator",
    "Outcome",
    "PermitTimeout",
    "RateLimit",
    "RateLimiterClientError",
    "RateLimiterServiceClient",
    "RateRule",
    "RegistrationCache",
    "RequestSnapshot",
    "RequestSource",
    "ServerFault",
    "StarletteRequestSource",
    "TransportFailure",
    "ValidationFailure",
    "build_snapshot",
    "outcome_of",
    "outcome_of_async",
]
