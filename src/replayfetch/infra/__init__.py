"""
replayfetch Infrastructure - shared state used across worker processes.
"""

from replayfetch.infra.ratelimit import (
    InMemoryCounterStore,
    RateLimiter,
    RateLimitPolicy,
    RedisCounterStore,
)

__all__ = ["InMemoryCounterStore", "RateLimiter", "RateLimitPolicy", "RedisCounterStore"]
