"""Scalability layer: login rate limiting. No FastAPI."""

from dashboard_iam.scalability.rate_limiter import (
    InMemoryRateLimitBackend,
    LoginThrottle,
    RedisRateLimitBackend,
)

__all__ = [
    "InMemoryRateLimitBackend",
    "LoginThrottle",
    "RedisRateLimitBackend",
]
