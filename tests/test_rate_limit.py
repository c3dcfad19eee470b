"""Tests for the fixed-window rate limiters and middleware."""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from fastapi import FastAPI
from redis.exceptions import ConnectionError as RedisConnectionError

from westroy.middleware.rate_limit import (
    MemoryRateLimiter,
    RateLimitMiddleware,
    RedisRateLimiter,
    get_client_ip,
)


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class TestMemoryRateLimiter:
    """Test the in-process limiter."""

    @pytest.mark.asyncio
    async def test_fourth_call_in_window_is_rejected(self):
        limiter = MemoryRateLimiter(window_ms=1000, max_requests=3, timer=FakeClock())

        results = [await limiter.check("1.2.3.4") for _ in range(4)]

        assert [r.success for r in results] == [True, True, True, False]
        assert [r.remaining for r in results] == [2, 1, 0, 0]

    @pytest.mark.asyncio
    async def test_key_is_allowed_again_after_window(self):
        clock = FakeClock()
        limiter = MemoryRateLimiter(window_ms=1000, max_requests=3, timer=clock)
        for _ in range(4):
            await limiter.check("1.2.3.4")

        clock.advance(1001)
        result = await limiter.check("1.2.3.4")

        assert result.success is True
        assert result.remaining == 2

    @pytest.mark.asyncio
    async def test_keys_are_independent(self):
        limiter = MemoryRateLimiter(window_ms=1000, max_requests=1, timer=FakeClock())

        assert (await limiter.check("a")).success is True
        assert (await limiter.check("a")).success is False
        assert (await limiter.check("b")).success is True

    @pytest.mark.asyncio
    async def test_reset_counts_down_within_window(self):
        clock = FakeClock()
        limiter = MemoryRateLimiter(window_ms=1000, max_requests=3, timer=clock)

        first = await limiter.check("k")
        clock.advance(400)
        second = await limiter.check("k")

        assert first.reset_ms == 1000
        assert second.reset_ms == 600


class TestRedisRateLimiter:
    """Test the Redis-backed limiter against a mocked script."""

    @pytest.mark.asyncio
    async def test_under_limit(self, mock_redis):
        limiter = RedisRateLimiter(mock_redis, window_ms=60_000, max_requests=10)

        result = await limiter.check("1.2.3.4")

        assert result.success is True
        assert result.remaining == 9
        assert result.reset_ms == 60_000
        script = mock_redis.register_script.return_value
        script.assert_awaited_once_with(keys=["ratelimit:1.2.3.4"], args=[60_000])

    @pytest.mark.asyncio
    async def test_over_limit(self, mock_redis):
        mock_redis.register_script = MagicMock(return_value=AsyncMock(return_value=[4, 250]))
        limiter = RedisRateLimiter(mock_redis, window_ms=1000, max_requests=3)

        result = await limiter.check("1.2.3.4")

        assert result.success is False
        assert result.remaining == 0
        assert result.reset_ms == 250

    @pytest.mark.asyncio
    async def test_script_registered_once(self, mock_redis):
        limiter = RedisRateLimiter(mock_redis)

        await limiter.check("a")
        await limiter.check("b")

        mock_redis.register_script.assert_called_once()

    @pytest.mark.asyncio
    async def test_fails_open_when_redis_is_down(self, mock_redis):
        mock_redis.register_script = MagicMock(
            return_value=AsyncMock(side_effect=RedisConnectionError("connection refused"))
        )
        limiter = RedisRateLimiter(mock_redis, max_requests=5)

        result = await limiter.check("1.2.3.4")

        assert result.success is True
        assert result.remaining == 5


class TestClientIp:
    """Test client address extraction."""

    def _request(self, headers: dict, host: str = "10.0.0.1"):
        request = MagicMock()
        request.headers = {k.lower(): v for k, v in headers.items()}
        request.client.host = host
        return request

    def test_forwarded_for_first_hop(self):
        request = self._request({"X-Forwarded-For": "203.0.113.5, 10.0.0.2"})
        assert get_client_ip(request) == "203.0.113.5"

    def test_real_ip(self):
        assert get_client_ip(self._request({"X-Real-IP": "198.51.100.7"})) == "198.51.100.7"

    def test_socket_peer(self):
        assert get_client_ip(self._request({})) == "10.0.0.1"


class TestRateLimitMiddleware:
    """Test the middleware on a minimal app."""

    def _app(self, limiter) -> FastAPI:
        app = FastAPI()
        app.add_middleware(RateLimitMiddleware, limiter=limiter)

        @app.post("/api/v1/requests")
        async def create_request():
            return {"ok": True}

        @app.get("/api/v1/requests")
        async def list_requests():
            return {"ok": True}

        return app

    @pytest.mark.asyncio
    async def test_protected_route_returns_429_with_retry_after(self):
        limiter = MemoryRateLimiter(window_ms=1000, max_requests=2, timer=FakeClock())
        transport = httpx.ASGITransport(app=self._app(limiter))

        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            first = await client.post("/api/v1/requests")
            await client.post("/api/v1/requests")
            third = await client.post("/api/v1/requests")

        assert first.status_code == 200
        assert first.headers["X-RateLimit-Remaining"] == "1"
        assert third.status_code == 429
        assert third.headers["Retry-After"] == "1"
        assert third.json()["detail"]["code"] == "RATE_LIMITED"

    @pytest.mark.asyncio
    async def test_unprotected_route_is_not_limited(self):
        limiter = MemoryRateLimiter(window_ms=1000, max_requests=1, timer=FakeClock())
        transport = httpx.ASGITransport(app=self._app(limiter))

        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            responses = [await client.get("/api/v1/requests") for _ in range(3)]

        assert all(r.status_code == 200 for r in responses)
