"""Fixed-window rate limiting for write endpoints, keyed by client address."""

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Protocol

from cachetools import TTLCache
from fastapi import Request, Response
from redis.asyncio import Redis
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from westroy.core.redis import get_redis_pool

logger = logging.getLogger(__name__)

DEFAULT_PROTECTED_ROUTES = (
    ("POST", "/api/v1/requests"),
    ("POST", "/api/v1/offers"),
    ("POST", "/api/v1/guest-requests"),
)


@dataclass(frozen=True)
class RateLimitResult:
    success: bool
    remaining: int
    reset_ms: int


class RateLimiter(Protocol):
    max_requests: int

    async def check(self, key: str) -> RateLimitResult: ...


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


class MemoryRateLimiter:
    """Per-process fixed-window counter.

    Each key maps to `(window_start_ms, count)`. The TTL cache runs on the
    same clock as the windows, so idle keys drop out on their own.
    """

    def __init__(
        self,
        window_ms: int = 60_000,
        max_requests: int = 10,
        maxsize: int = 10_000,
        timer: Callable[[], float] = _monotonic_ms,
    ):
        self.window_ms = window_ms
        self.max_requests = max_requests
        self.timer = timer
        self._windows: TTLCache = TTLCache(maxsize=maxsize, ttl=window_ms, timer=timer)

    async def check(self, key: str) -> RateLimitResult:
        now = self.timer()
        window_start, count = self._windows.get(key, (now, 0))
        if now - window_start >= self.window_ms:
            window_start, count = now, 0

        reset_ms = max(0, math.ceil(window_start + self.window_ms - now))
        if count >= self.max_requests:
            return RateLimitResult(success=False, remaining=0, reset_ms=reset_ms)

        count += 1
        self._windows[key] = (window_start, count)
        return RateLimitResult(
            success=True,
            remaining=self.max_requests - count,
            reset_ms=reset_ms,
        )


class RedisRateLimiter:
    """Fixed-window counter shared across processes through Redis.

    One atomic Lua call per check: INCR, set the window expiry on the first
    hit, and report the remaining TTL. If Redis is unreachable the request
    is allowed and a warning is logged.
    """

    RATE_LIMIT_SCRIPT = """
    local current = redis.call('INCR', KEYS[1])
    if current == 1 then
        redis.call('PEXPIRE', KEYS[1], ARGV[1])
    end
    local ttl = redis.call('PTTL', KEYS[1])
    if ttl < 0 then
        -- key lost its expiry; start a fresh window
        redis.call('PEXPIRE', KEYS[1], ARGV[1])
        ttl = tonumber(ARGV[1])
    end
    return {current, ttl}
    """

    def __init__(
        self,
        redis: Redis,
        window_ms: int = 60_000,
        max_requests: int = 10,
        prefix: str = "ratelimit",
    ):
        self.redis = redis
        self.window_ms = window_ms
        self.max_requests = max_requests
        self.prefix = prefix
        self._script = None

    def _get_script(self):
        """Get or register the rate limit Lua script."""
        if self._script is None:
            self._script = self.redis.register_script(self.RATE_LIMIT_SCRIPT)
        return self._script

    async def check(self, key: str) -> RateLimitResult:
        try:
            script = self._get_script()
            current, ttl = await script(keys=[f"{self.prefix}:{key}"], args=[self.window_ms])
        except (RedisError, OSError) as e:
            logger.warning(f"Rate limiter unavailable, allowing request: {e}")
            return RateLimitResult(success=True, remaining=self.max_requests, reset_ms=self.window_ms)

        current = int(current)
        return RateLimitResult(
            success=current <= self.max_requests,
            remaining=max(0, self.max_requests - current),
            reset_ms=max(0, int(ttl)),
        )


def get_client_ip(request: Request) -> str:
    """First X-Forwarded-For hop, then X-Real-IP, then the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Applies a limiter to selected routes before authentication runs."""

    def __init__(
        self,
        app,
        limiter: RateLimiter,
        protected: Iterable[tuple[str, str]] = DEFAULT_PROTECTED_ROUTES,
    ):
        super().__init__(app)
        self.limiter = limiter
        self.protected = {(method.upper(), path.rstrip("/")) for method, path in protected}

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        route = (request.method.upper(), request.url.path.rstrip("/"))
        if route not in self.protected:
            return await call_next(request)

        result = await self.limiter.check(get_client_ip(request))
        if not result.success:
            retry_after = max(1, math.ceil(result.reset_ms / 1000))
            return JSONResponse(
                status_code=429,
                content={
                    "detail": {
                        "code": "RATE_LIMITED",
                        "message": "Too many requests, please try again later",
                    }
                },
                headers={"Retry-After": str(retry_after)},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Remaining"] = str(result.remaining)
        return response


def build_rate_limiter(settings, redis: Optional[Redis] = None) -> RateLimiter:
    """Pick the limiter backend from configuration."""
    if settings.RATE_LIMIT_BACKEND == "redis":
        if redis is None:
            redis = Redis(connection_pool=get_redis_pool())
        return RedisRateLimiter(
            redis,
            window_ms=settings.RATE_LIMIT_WINDOW_MS,
            max_requests=settings.RATE_LIMIT_MAX_REQUESTS,
        )
    return MemoryRateLimiter(
        window_ms=settings.RATE_LIMIT_WINDOW_MS,
        max_requests=settings.RATE_LIMIT_MAX_REQUESTS,
    )
