"""
Fixed-window rate limiting for the management API.

Each limiter counts requests per client address inside discrete windows of
``window_seconds``. Counters live either in a process-local table or in Redis
so that replicas behind a load balancer share one budget. The backing store is
chosen once at startup by ``RateLimiterSet.initialize``; a configured Redis
that cannot be reached downgrades the process to local counting, and counter
operations that fail later on are allowed through (fail open).
"""
from __future__ import annotations

import asyncio
import logging
import math
import threading
import time
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Callable, Dict, Optional, Protocol, Tuple

import redis.asyncio as redis
from fastapi import HTTPException, Request, Response
from redis.exceptions import RedisError

from .config import ConfigurationError, Settings

logger = logging.getLogger(__name__)

REDIS_KEY_PREFIX = "rl:"
REDIS_CONNECT_TIMEOUT = 2.0
REDIS_OPERATION_TIMEOUT = 1.0

# Route names that no limiter ever counts. Public object reads are high-volume,
# cache-friendly paths and stay unthrottled.
PUBLIC_READ_ROUTES = frozenset({"public_object_read", "public_object_head"})

Clock = Callable[[], float]


class CounterStoreUnavailable(Exception):
    """A counter operation could not reach its backing store."""


class BackingState(str, Enum):
    UNCONFIGURED = "unconfigured"
    CONNECTING_SHARED = "connecting_shared"
    SHARED_ACTIVE = "shared_active"
    LOCAL_FALLBACK = "local_fallback"


class CounterStore(Protocol):
    async def increment(self, key: str, ttl_seconds: int) -> int:
        ...


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after: int

    def headers(self) -> Dict[str, str]:
        headers = {
            "RateLimit-Limit": str(self.limit),
            "RateLimit-Remaining": str(self.remaining),
            "RateLimit-Reset": str(self.retry_after),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after)
        return headers


class LocalCounterStore:
    """
    Mutex-protected counter table for a single process.

    Expired entries are swept every ``sweep_every`` increments; an expired entry
    that has not been swept yet is treated as absent.
    """

    def __init__(self, sweep_every: int = 1000, clock: Clock = time.time):
        self.sweep_every = sweep_every
        self._clock = clock
        self._lock = threading.Lock()
        self._counters: Dict[str, Tuple[float, int]] = {}
        self._operations = 0

    async def increment(self, key: str, ttl_seconds: int) -> int:
        now = self._clock()
        with self._lock:
            entry = self._counters.get(key)
            if entry is None or entry[0] <= now:
                entry = (now + ttl_seconds, 1)
            else:
                entry = (entry[0], entry[1] + 1)
            self._counters[key] = entry
            self._operations += 1
            if self._operations % self.sweep_every == 0:
                self._sweep(now)
            return entry[1]

    def _sweep(self, now: float) -> None:
        expired = [key for key, (expires_at, _) in self._counters.items() if expires_at <= now]
        for key in expired:
            del self._counters[key]

    def __len__(self) -> int:
        return len(self._counters)


class RedisCounterStore:
    """Counters shared by every replica, using Redis ``INCR`` for atomicity."""

    def __init__(self, client: "redis.Redis", prefix: str = REDIS_KEY_PREFIX):
        self.client = client
        self.prefix = prefix

    async def increment(self, key: str, ttl_seconds: int) -> int:
        full_key = f"{self.prefix}{key}"
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.incr(full_key)
                pipe.expire(full_key, ttl_seconds)
                count, _ = await pipe.execute()
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            raise CounterStoreUnavailable(str(exc)) from exc
        return int(count)

    async def close(self) -> None:
        await self.client.aclose()


def client_address(request: Request, trust_proxy_headers: bool = False) -> str:
    """Identity used for counting: the peer address, or the first forwarded hop."""
    if trust_proxy_headers:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            first_hop = forwarded.split(",")[0].strip()
            if first_hop:
                return first_hop
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def is_public_read(request: Request) -> bool:
    route = request.scope.get("route")
    return getattr(route, "name", None) in PUBLIC_READ_ROUTES


class FixedWindowLimiter:
    """
    Count requests per ``(name, client, window index)`` and reject once the
    count exceeds ``max_requests``.

    Instances are FastAPI dependencies: allowed requests get ``RateLimit-*``
    response headers, rejected ones raise HTTP 429 with ``Retry-After``.
    """

    def __init__(
        self,
        name: str,
        window_seconds: float,
        max_requests: int,
        store: CounterStore,
        exempt: Optional[Callable[[Request], bool]] = None,
        identify: Callable[[Request], str] = client_address,
        clock: Clock = time.time,
    ):
        self.name = name
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self.store = store
        self.exempt = exempt
        self.identify = identify
        self._clock = clock

    async def hit(self, client_id: str, now: Optional[float] = None) -> RateLimitResult:
        if now is None:
            now = self._clock()
        window_index = int(now // self.window_seconds)
        reset_at = (window_index + 1) * self.window_seconds
        retry_after = max(1, math.ceil(reset_at - now))
        key = f"{self.name}:{client_id}:{window_index}"

        try:
            count = await self.store.increment(key, retry_after)
        except CounterStoreUnavailable as exc:
            logger.warning("Rate limit store unavailable for %s, allowing request: %s", self.name, exc)
            return RateLimitResult(True, self.max_requests, self.max_requests, reset_at, retry_after)

        allowed = count <= self.max_requests
        remaining = max(0, self.max_requests - count)
        return RateLimitResult(allowed, self.max_requests, remaining, reset_at, retry_after)

    async def check(self, request: Request) -> Optional[RateLimitResult]:
        """Count ``request`` unless it is exempt; exempt requests return ``None``."""
        if self.exempt is not None and self.exempt(request):
            return None
        client_id = self.identify(request)
        result = await self.hit(client_id)
        if not result.allowed:
            logger.warning("Rate limit exceeded on %s for %s", self.name, client_id)
        return result

    async def __call__(self, request: Request, response: Response) -> None:
        result = await self.check(request)
        if result is None:
            return
        if not result.allowed:
            raise HTTPException(
                status_code=429,
                detail="Too many requests, please try again later",
                headers=result.headers(),
            )
        response.headers.update(result.headers())


def rate_limited(name: str):
    """Route dependency that applies the app's limiter called ``name``."""

    async def dependency(request: Request, response: Response) -> None:
        limiters: RateLimiterSet = request.app.state.limiters
        await limiters[name](request, response)

    return dependency


def _default_redis_factory(url: str) -> "redis.Redis":
    return redis.from_url(
        url,
        socket_connect_timeout=REDIS_CONNECT_TIMEOUT,
        socket_timeout=REDIS_OPERATION_TIMEOUT,
    )


class RateLimiterSet:
    """
    Owner of the process-wide limiters and of their backing store.

    Limiters count locally until ``initialize`` runs. ``initialize`` moves the
    set into ``SHARED_ACTIVE`` or ``LOCAL_FALLBACK``; both are terminal and the
    set never reconnects afterwards.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        redis_factory: Optional[Callable[[str], "redis.Redis"]] = None,
        connect_timeout: float = REDIS_CONNECT_TIMEOUT,
        trust_proxy_headers: bool = False,
        clock: Clock = time.time,
    ):
        self.redis_url = redis_url
        self.redis_factory = redis_factory or _default_redis_factory
        self.connect_timeout = connect_timeout
        self.trust_proxy_headers = trust_proxy_headers
        self.state = BackingState.UNCONFIGURED
        self._clock = clock
        self._local = LocalCounterStore(clock=clock)
        self._shared: Optional[RedisCounterStore] = None
        self._limiters: Dict[str, FixedWindowLimiter] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        redis_factory: Optional[Callable[[str], "redis.Redis"]] = None,
        clock: Clock = time.time,
    ) -> "RateLimiterSet":
        limiters = cls(
            redis_url=settings.redis_url,
            redis_factory=redis_factory,
            trust_proxy_headers=settings.trust_proxy_headers,
            clock=clock,
        )
        limiters.build_limiter("auth", settings.auth_window_ms / 1000, settings.auth_max_requests)
        limiters.build_limiter("api", settings.api_window_ms / 1000, settings.api_max_requests)
        return limiters

    @property
    def store(self) -> CounterStore:
        if self.state is BackingState.SHARED_ACTIVE and self._shared is not None:
            return self._shared
        return self._local

    @property
    def auth(self) -> FixedWindowLimiter:
        return self._limiters["auth"]

    @property
    def api(self) -> FixedWindowLimiter:
        return self._limiters["api"]

    def __getitem__(self, name: str) -> FixedWindowLimiter:
        return self._limiters[name]

    def build_limiter(
        self,
        name: str,
        window_seconds: float,
        max_requests: int,
        exempt: Optional[Callable[[Request], bool]] = is_public_read,
    ) -> FixedWindowLimiter:
        if isinstance(window_seconds, bool) or not isinstance(window_seconds, (int, float)):
            raise ConfigurationError(f"Window for limiter {name!r} must be a number")
        if not window_seconds > 0 or math.isinf(window_seconds):
            raise ConfigurationError(f"Window for limiter {name!r} must be positive")
        if isinstance(max_requests, bool) or not isinstance(max_requests, int) or max_requests <= 0:
            raise ConfigurationError(f"Quota for limiter {name!r} must be a positive integer")

        limiter = FixedWindowLimiter(
            name=name,
            window_seconds=window_seconds,
            max_requests=max_requests,
            store=self.store,
            exempt=exempt,
            identify=partial(client_address, trust_proxy_headers=self.trust_proxy_headers),
            clock=self._clock,
        )
        self._limiters[name] = limiter
        return limiter

    async def initialize(self) -> BackingState:
        """Pick the backing store. Safe to call more than once."""
        if self.state in (BackingState.SHARED_ACTIVE, BackingState.LOCAL_FALLBACK):
            return self.state

        if not self.redis_url:
            self.state = BackingState.LOCAL_FALLBACK
            logger.info("Rate limiting uses in-memory counters")
            return self.state

        self.state = BackingState.CONNECTING_SHARED
        try:
            client = self.redis_factory(self.redis_url)
        except ValueError as exc:
            raise ConfigurationError(f"Invalid REDIS_URL: {exc}") from exc

        try:
            await asyncio.wait_for(client.ping(), timeout=self.connect_timeout)
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            logger.warning(
                "Failed to connect to Redis, using in-memory rate limiting: %s", exc
            )
            await _close_quietly(client)
            self.state = BackingState.LOCAL_FALLBACK
            return self.state

        self._shared = RedisCounterStore(client)
        self.state = BackingState.SHARED_ACTIVE
        for limiter in self._limiters.values():
            limiter.store = self._shared
        logger.info("Redis connected for rate limiting")
        return self.state

    async def close(self) -> None:
        if self._shared is not None:
            await _close_quietly(self._shared.client)


async def _close_quietly(client: "redis.Redis") -> None:
    try:
        await client.aclose()
    except (RedisError, OSError) as exc:
        logger.debug("Error closing Redis client: %s", exc)
