"""Tests for retry configuration and the async retry decorator."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from core.errors import ResolutionError, UnknownDeviceError
from core.resilience import RetryConfig, with_retry_async


class TestRetryConfig:

    def test_defaults(self):
        config = RetryConfig()
        assert config.max_attempts == 3
        assert config.jitter is True
        assert config.respect_permanent is True

    def test_invalid_max_attempts(self):
        with pytest.raises(ValueError, match="max_attempts"):
            RetryConfig(max_attempts=0)

    def test_coerces_string_values(self):
        config = RetryConfig(max_attempts="5", base_delay="2")
        assert config.max_attempts == 5
        assert config.base_delay == 2.0

    def test_fixed_delay(self):
        config = RetryConfig.fixed(2.5)
        assert config.max_attempts is None
        assert [config.get_delay(n) for n in range(4)] == [2.5, 2.5, 2.5, 2.5]

    def test_exponential_delay_capped(self):
        config = RetryConfig(base_delay=1.0, max_delay=5.0, jitter=False)
        assert [config.get_delay(n) for n in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_jitter_stays_within_bounds(self):
        config = RetryConfig(base_delay=4.0, max_delay=4.0, jitter=True)
        for _ in range(20):
            assert 2.0 <= config.get_delay(0) <= 4.0

    def test_should_retry_stops_at_max_attempts(self):
        config = RetryConfig(max_attempts=3)
        error = ResolutionError("no topic")
        assert config.should_retry(error, 0)
        assert config.should_retry(error, 1)
        assert not config.should_retry(error, 2)

    def test_unbounded_attempts(self):
        config = RetryConfig.fixed(1.0)
        assert config.should_retry(ResolutionError("no topic"), 1000)

    def test_permanent_errors_not_retried(self):
        config = RetryConfig()
        assert not config.should_retry(UnknownDeviceError("d1", "acme"), 0)

    def test_permanent_errors_retried_when_not_respected(self):
        config = RetryConfig(respect_permanent=False)
        assert config.should_retry(UnknownDeviceError("d1", "acme"), 0)

    def test_always_retry_overrides_classification(self):
        config = RetryConfig(always_retry={UnknownDeviceError})
        assert config.should_retry(UnknownDeviceError("d1", "acme"), 0)


class TestWithRetryAsync:

    @pytest.mark.asyncio
    async def test_returns_first_success(self):
        func = AsyncMock(return_value=["acme"])
        wrapped = with_retry_async(RetryConfig.fixed(0.0))(func)

        assert await wrapped() == ["acme"]
        assert func.await_count == 1

    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        func = AsyncMock(
            side_effect=[ResolutionError("down"), ResolutionError("down"), ["acme", "globex"]]
        )
        func.__name__ = "list_tenants"
        on_retry = MagicMock()

        with patch("core.resilience.retry.asyncio.sleep", new=AsyncMock()) as sleep:
            wrapped = with_retry_async(RetryConfig.fixed(2.5), on_retry=on_retry)(func)
            result = await wrapped()

        assert result == ["acme", "globex"]
        assert func.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [2.5, 2.5]
        assert on_retry.call_count == 2

    @pytest.mark.asyncio
    async def test_gives_up_with_original_error(self):
        error = ResolutionError("down")
        func = AsyncMock(side_effect=error)
        func.__name__ = "resolve"

        with patch("core.resilience.retry.asyncio.sleep", new=AsyncMock()):
            wrapped = with_retry_async(RetryConfig.fixed(1.0, max_attempts=2))(func)
            with pytest.raises(ResolutionError) as exc_info:
                await wrapped()

        assert exc_info.value is error
        assert func.await_count == 2

    @pytest.mark.asyncio
    async def test_single_attempt(self):
        func = AsyncMock(side_effect=ResolutionError("down"))
        func.__name__ = "resolve"

        wrapped = with_retry_async(RetryConfig.fixed(1.0, max_attempts=1))(func)
        with pytest.raises(ResolutionError):
            await wrapped()

        assert func.await_count == 1

    @pytest.mark.asyncio
    async def test_permanent_error_not_retried(self):
        func = AsyncMock(side_effect=UnknownDeviceError("d1", "acme"))
        func.__name__ = "get_device"

        wrapped = with_retry_async(RetryConfig.fixed(1.0))(func)
        with pytest.raises(UnknownDeviceError):
            await wrapped()

        assert func.await_count == 1

    @pytest.mark.asyncio
    async def test_on_retry_errors_do_not_abort(self):
        func = AsyncMock(side_effect=[ResolutionError("down"), "ok"])
        func.__name__ = "resolve"

        with patch("core.resilience.retry.asyncio.sleep", new=AsyncMock()):
            wrapped = with_retry_async(
                RetryConfig.fixed(0.0), on_retry=MagicMock(side_effect=RuntimeError("cb"))
            )(func)
            assert await wrapped() == "ok"
