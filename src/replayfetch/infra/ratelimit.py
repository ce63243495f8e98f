"""
Shared Rate Limiting - Window counters and capacity gauges keyed by service.

Counters live in a CounterStore so every worker process sees the same budget:

- RedisCounterStore: production store, shared across hosts
- InMemoryCounterStore: process-local store for single-process use and tests

Admission is advisory. There is no distributed lock; a window allows up to
``max_requests`` increments and the store's atomic INCR keeps concurrent
workers from both taking the last unit.

The parser slot gauge is a best-effort counting semaphore. A worker that
crashes between increment and decrement leaves the gauge high until the
slot key's safety TTL expires.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Protocol

from replayfetch.errors import RateLimitWaitCancelled

logger = logging.getLogger(__name__)

DEMO_URL_SERVICE = "demo_url_service"
STEAM_API = "steam_api"
PARSER_SERVICE = "parser_service"

DEFAULT_KEY_PREFIX = "rate_limit:"
DEFAULT_POLL_INTERVAL = 1.0

# Slot keys expire if nobody touches them for this long
SLOT_TTL_SECONDS = 300


@dataclass(frozen=True)
class RateLimitPolicy:
    """A named budget. window_seconds=None means a pure concurrency gauge."""

    service: str
    max_requests: int
    window_seconds: int | None = None

    @property
    def is_gauge(self) -> bool:
        return self.window_seconds is None


# ============================================================================
# Counter stores
# ============================================================================


class CounterStore(Protocol):
    """Shared integer counters with optional expiry."""

    def get(self, key: str) -> int: ...

    def increment(self, key: str, ttl_seconds: int | None = None, refresh_ttl: bool = False) -> int:
        """Atomically add one. Sets expiry on a fresh key, or always when refresh_ttl."""
        ...

    def decrement(self, key: str) -> int:
        """Atomically subtract one, never going below zero."""
        ...

    def ttl(self, key: str) -> float | None: ...

    def reset(self, key: str) -> None: ...


@dataclass
class _Counter:
    value: int = 0
    expires_at: float | None = None


@dataclass
class InMemoryCounterStore:
    """Process-local counter store; safe default."""

    clock: Callable[[], float] = time.monotonic
    _counters: dict[str, _Counter] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def _live(self, key: str) -> _Counter | None:
        counter = self._counters.get(key)
        if counter is None:
            return None
        if counter.expires_at is not None and counter.expires_at <= self.clock():
            del self._counters[key]
            return None
        return counter

    def get(self, key: str) -> int:
        with self._lock:
            counter = self._live(key)
            return counter.value if counter else 0

    def increment(self, key: str, ttl_seconds: int | None = None, refresh_ttl: bool = False) -> int:
        with self._lock:
            counter = self._live(key)
            if counter is None:
                counter = _Counter()
                self._counters[key] = counter
                if ttl_seconds is not None:
                    counter.expires_at = self.clock() + ttl_seconds
            elif refresh_ttl and ttl_seconds is not None:
                counter.expires_at = self.clock() + ttl_seconds
            counter.value += 1
            return counter.value

    def decrement(self, key: str) -> int:
        with self._lock:
            counter = self._live(key)
            if counter is None or counter.value <= 0:
                return 0
            counter.value -= 1
            return counter.value

    def ttl(self, key: str) -> float | None:
        with self._lock:
            counter = self._live(key)
            if counter is None or counter.expires_at is None:
                return None
            return max(0.0, counter.expires_at - self.clock())

    def reset(self, key: str) -> None:
        with self._lock:
            self._counters.pop(key, None)


# Decrement only when positive, in one round trip
_DECREMENT_FLOOR_LUA = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
if current > 0 then
    return redis.call('DECR', KEYS[1])
end
return 0
"""


class RedisCounterStore:
    """
    Cross-host counter store in Redis.

    Parameters
    ----------
    url : str
        Redis connection string, e.g. redis://localhost:6379/0
    client : redis.Redis
        Pre-built client (takes precedence over url)
    """

    def __init__(self, url: str | None = None, client=None):
        if client is None:
            import redis

            if not url:
                raise ValueError("RedisCounterStore needs a url or a client")
            client = redis.Redis.from_url(
                url,
                socket_timeout=2.0,
                socket_connect_timeout=2.0,
                decode_responses=True,
            )
        self._client = client
        self._decrement_floor = client.register_script(_DECREMENT_FLOOR_LUA)

    def get(self, key: str) -> int:
        raw = self._client.get(key)
        return int(raw) if raw else 0

    def increment(self, key: str, ttl_seconds: int | None = None, refresh_ttl: bool = False) -> int:
        pipe = self._client.pipeline(transaction=True)
        pipe.incr(key)
        if ttl_seconds is not None:
            if refresh_ttl:
                pipe.expire(key, ttl_seconds)
            else:
                # Only the first increment of a window sets the expiry
                pipe.expire(key, ttl_seconds, nx=True)
        results = pipe.execute()
        return int(results[0])

    def decrement(self, key: str) -> int:
        return int(self._decrement_floor(keys=[key]))

    def ttl(self, key: str) -> float | None:
        remaining = self._client.ttl(key)
        # -2: missing key, -1: no expiry
        if remaining is None or remaining < 0:
            return None
        return float(remaining)

    def reset(self, key: str) -> None:
        self._client.delete(key)

    def close(self) -> None:
        self._client.close()


# ============================================================================
# Rate limiter
# ============================================================================


class RateLimiter:
    """
    Window-based admission control over a shared CounterStore.

    Example:
        >>> limiter = RateLimiter(InMemoryCounterStore())
        >>> limiter.acquire("demo_url_service", max_requests=20, window_seconds=60)
        True
    """

    def __init__(
        self,
        store: CounterStore | None = None,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store if store is not None else InMemoryCounterStore()
        self.key_prefix = key_prefix
        self.poll_interval = poll_interval
        self._sleep = sleep

    def _key(self, service: str) -> str:
        return f"{self.key_prefix}{service}"

    def current(self, service: str) -> int:
        """Requests counted in the live window (0 when none is open)."""
        return self.store.get(self._key(service))

    def window_remaining(self, service: str) -> float | None:
        """Seconds until the current window closes, None if no window is open."""
        return self.store.ttl(self._key(service))

    def check_limit(self, service: str, max_requests: int, window_seconds: int) -> bool:
        """Return True if the window has room. Does not consume capacity."""
        current = self.current(service)
        if current >= max_requests:
            logger.warning(
                f"Rate limit exceeded for {service}: {current}/{max_requests} "
                f"in {window_seconds}s window"
            )
            return False
        return True

    def record(self, service: str, window_seconds: int) -> int:
        """Count one request; the first request of a fresh window opens it."""
        return self.store.increment(self._key(service), ttl_seconds=window_seconds)

    def acquire(self, service: str, max_requests: int, window_seconds: int) -> bool:
        """
        Check and consume one unit of the window budget.

        The increment happens first and is rolled back when it overshoots, so
        two workers racing for the last unit cannot both be admitted.
        """
        if not self.check_limit(service, max_requests, window_seconds):
            return False

        count = self.record(service, window_seconds)
        if count > max_requests:
            self.store.decrement(self._key(service))
            logger.warning(f"Rate limit exceeded for {service}: lost race for last slot")
            return False
        return True

    def wait_for_limit(
        self,
        service: str,
        max_requests: int,
        window_seconds: int,
        cancel: threading.Event | None = None,
    ) -> None:
        """
        Block until a unit of budget is acquired.

        Polls every ``poll_interval`` seconds. Without ``cancel`` this waits
        indefinitely, so only call it from background workers.

        Raises:
            RateLimitWaitCancelled: if ``cancel`` is set before capacity frees up
        """
        waited = 0.0
        while not self.acquire(service, max_requests, window_seconds):
            if cancel is not None:
                if cancel.wait(self.poll_interval):
                    raise RateLimitWaitCancelled(
                        f"Gave up waiting for {service} after {waited:.0f}s"
                    )
            else:
                self._sleep(self.poll_interval)
            waited += self.poll_interval
            logger.debug(f"Waiting for {service} rate limit ({waited:.0f}s)")

        if waited:
            logger.info(f"Rate limit for {service} cleared after {waited:.0f}s")

    def acquire_policy(self, policy: RateLimitPolicy) -> bool:
        if policy.is_gauge:
            return self.has_capacity(policy.service, policy.max_requests)
        return self.acquire(policy.service, policy.max_requests, policy.window_seconds)

    def wait_for_policy(self, policy: RateLimitPolicy, cancel: threading.Event | None = None) -> None:
        if policy.is_gauge:
            raise ValueError(f"{policy.service} is a concurrency gauge, use parser_slot()")
        self.wait_for_limit(policy.service, policy.max_requests, policy.window_seconds, cancel)

    # ------------------------------------------------------------------
    # Concurrency gauge
    # ------------------------------------------------------------------

    def slot_count(self, service: str = PARSER_SERVICE) -> int:
        return self.store.get(self._key(service))

    def has_capacity(self, service: str, max_concurrent: int) -> bool:
        return self.slot_count(service) < max_concurrent

    def wait_for_capacity(
        self,
        service: str,
        max_concurrent: int,
        cancel: threading.Event | None = None,
    ) -> None:
        """Block until the gauge drops below ``max_concurrent``."""
        while not self.has_capacity(service, max_concurrent):
            logger.debug(f"{service} at capacity ({max_concurrent}), waiting")
            if cancel is not None:
                if cancel.wait(self.poll_interval):
                    raise RateLimitWaitCancelled(f"Gave up waiting for {service} capacity")
            else:
                self._sleep(self.poll_interval)

    def increment_slot(self, service: str = PARSER_SERVICE) -> int:
        return self.store.increment(self._key(service), ttl_seconds=SLOT_TTL_SECONDS, refresh_ttl=True)

    def decrement_slot(self, service: str = PARSER_SERVICE) -> int:
        return self.store.decrement(self._key(service))

    @contextmanager
    def parser_slot(self, service: str = PARSER_SERVICE) -> Iterator[int]:
        """Hold one slot of the gauge for the duration of the block."""
        in_flight = self.increment_slot(service)
        logger.debug(f"{service} slot taken ({in_flight} in flight)")
        try:
            yield in_flight
        finally:
            remaining = self.decrement_slot(service)
            logger.debug(f"{service} slot released ({remaining} in flight)")


def default_policies(config) -> dict[str, RateLimitPolicy]:
    """Build the three policies callers rely on from a RateLimitConfig."""
    return {
        DEMO_URL_SERVICE: RateLimitPolicy(
            DEMO_URL_SERVICE, config.demo_url_max_requests, config.demo_url_window_seconds
        ),
        STEAM_API: RateLimitPolicy(
            STEAM_API, config.steam_api_max_requests, config.steam_api_window_seconds
        ),
        PARSER_SERVICE: RateLimitPolicy(PARSER_SERVICE, config.parser_max_concurrent_jobs),
    }


def build_rate_limiter(config) -> RateLimiter:
    """Create a RateLimiter for a ReplayFetchConfig."""
    if config.store.redis_url:
        store: CounterStore = RedisCounterStore(url=config.store.redis_url)
        logger.info("Using Redis for shared rate limit counters")
    else:
        store = InMemoryCounterStore()
        logger.info("Using in-process rate limit counters")

    return RateLimiter(
        store,
        key_prefix=config.store.key_prefix,
        poll_interval=config.rate_limits.poll_interval_seconds,
    )
