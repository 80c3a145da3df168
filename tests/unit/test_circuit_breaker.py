"""
Unit tests for the shared circuit breaker.
"""

import pytest
from unittest.mock import AsyncMock, patch

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException, CircuitBreakerState
from shared.errors import StoreUnavailableError


class TestCircuitBreaker:
    """Test cases for CircuitBreaker."""

    @pytest.fixture
    def breaker(self):
        return CircuitBreaker(
            failure_threshold=2,
            recovery_timeout=30.0,
            expected_exception=StoreUnavailableError,
            name="test"
        )

    async def fail(self, breaker):
        with pytest.raises(StoreUnavailableError):
            await breaker.call(AsyncMock(side_effect=StoreUnavailableError()))

    @pytest.mark.asyncio
    async def test_passes_results_through(self, breaker):
        assert await breaker.call(AsyncMock(return_value=42)) == 42
        assert breaker.get_state()["state"] == "closed"

    @pytest.mark.asyncio
    async def test_opens_at_threshold(self, breaker):
        await self.fail(breaker)
        assert not breaker.is_open()

        await self.fail(breaker)
        assert breaker.is_open()

        func = AsyncMock()
        with pytest.raises(CircuitBreakerOpenException):
            await breaker.call(func)
        func.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unexpected_exceptions_do_not_count(self, breaker):
        for _ in range(3):
            with pytest.raises(ValueError):
                await breaker.call(AsyncMock(side_effect=ValueError("bad")))

        assert breaker.get_state()["failure_count"] == 0
        assert not breaker.is_open()

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self, breaker):
        await self.fail(breaker)
        await breaker.call(AsyncMock(return_value=None))
        await self.fail(breaker)

        assert not breaker.is_open()

    @pytest.mark.asyncio
    async def test_half_open_success_closes(self, breaker):
        await self.fail(breaker)
        await self.fail(breaker)

        with patch("shared.circuit_breaker.time.monotonic", return_value=breaker._last_failure_time + 31):
            assert await breaker.call(AsyncMock(return_value="ok")) == "ok"

        assert breaker._state == CircuitBreakerState.CLOSED

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self, breaker):
        await self.fail(breaker)
        await self.fail(breaker)
        reset_time = breaker._last_failure_time + 31

        with patch("shared.circuit_breaker.time.monotonic", return_value=reset_time):
            await self.fail(breaker)

        assert breaker.is_open()
