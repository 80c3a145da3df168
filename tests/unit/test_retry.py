"""
Unit tests for shared retry helpers.
"""

import pytest
from unittest.mock import AsyncMock, patch

from shared.retry import RetryConfig, RetryError, calculate_delay, retry_on_exception


class TestCalculateDelay:
    """Test cases for calculate_delay."""

    def test_exponential(self):
        config = RetryConfig(base_delay=0.5, max_delay=100.0, jitter=False)
        assert [calculate_delay(a, config) for a in (1, 2, 3, 4)] == [0.5, 1.0, 2.0, 4.0]

    def test_linear(self):
        config = RetryConfig(base_delay=0.5, jitter=False, backoff_strategy="linear")
        assert [calculate_delay(a, config) for a in (1, 2, 3)] == [0.5, 1.0, 1.5]

    def test_fixed(self):
        config = RetryConfig(base_delay=0.5, jitter=False, backoff_strategy="fixed")
        assert calculate_delay(5, config) == 0.5

    def test_capped_at_max_delay(self):
        config = RetryConfig(base_delay=1.0, max_delay=3.0, jitter=False)
        assert calculate_delay(10, config) == 3.0

    def test_jitter_stays_within_ten_percent(self):
        config = RetryConfig(base_delay=1.0, max_delay=10.0, jitter=True)
        for _ in range(50):
            assert 0.9 <= calculate_delay(1, config) <= 1.1


class TestRetryOnException:
    """Test cases for retry_on_exception."""

    @pytest.fixture
    def config(self):
        return RetryConfig(max_attempts=3, base_delay=0.0, max_delay=0.0, jitter=False)

    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self, config):
        func = AsyncMock(side_effect=[OSError("down"), OSError("down"), "ok"])
        func.__name__ = "connect"

        result = await retry_on_exception((OSError,), config)(func)()

        assert result == "ok"
        assert func.await_count == 3

    @pytest.mark.asyncio
    async def test_exhausted_attempts_raise_retry_error(self, config):
        func = AsyncMock(side_effect=OSError("down"))
        func.__name__ = "connect"

        with pytest.raises(RetryError) as exc_info:
            await retry_on_exception((OSError,), config)(func)()

        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_exception, OSError)

    @pytest.mark.asyncio
    async def test_other_exceptions_not_retried(self, config):
        func = AsyncMock(side_effect=ValueError("bad input"))
        func.__name__ = "connect"

        with pytest.raises(ValueError):
            await retry_on_exception((OSError,), config)(func)()

        assert func.await_count == 1

    @pytest.mark.asyncio
    async def test_sleeps_between_attempts(self):
        config = RetryConfig(max_attempts=3, base_delay=0.2, max_delay=10.0, jitter=False)
        func = AsyncMock(side_effect=OSError("down"))
        func.__name__ = "connect"

        with patch("shared.retry.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            with pytest.raises(RetryError):
                await retry_on_exception((OSError,), config)(func)()

        assert [c.args[0] for c in mock_sleep.await_args_list] == pytest.approx([0.2, 0.4])
