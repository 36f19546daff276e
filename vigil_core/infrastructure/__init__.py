"""Infrastructure components for Vigil.

This package contains infrastructure-level components like:
- Claim rate limiting
- Broker dispatch of job wake-ups
"""

from vigil_core.infrastructure.dispatch import CeleryDispatcher, Dispatcher
from vigil_core.infrastructure.rate_limiter import (
    ClaimRateLimitConfig,
    ClaimRateLimiter,
    RateLimitExceeded,
)

__all__ = [
    "CeleryDispatcher",
    "ClaimRateLimitConfig",
    "ClaimRateLimiter",
    "Dispatcher",
    "RateLimitExceeded",
]
