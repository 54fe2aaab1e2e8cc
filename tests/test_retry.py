"""Tests for the bounded exponential-backoff executor."""

from unittest.mock import AsyncMock, call

import pytest

from augment_engine.core.errors import ConfigurationError, TransientProducerError
from augment_engine.core.retry import retry_with_backoff


class TestRetryWithBackoff:
    @pytest.mark.asyncio
    async def test_first_attempt_succeeds(self, no_sleep):
        operation = AsyncMock(return_value="ok")

        assert await retry_with_backoff(operation, sleep=no_sleep) == "ok"
        operation.assert_awaited_once()
        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delays_double_between_attempts(self, no_sleep):
        operation = AsyncMock(
            side_effect=[TransientProducerError("429"), TransientProducerError("503"), "ok"]
        )

        result = await retry_with_backoff(operation, base_delay=1.0, sleep=no_sleep)

        assert result == "ok"
        assert operation.await_count == 3
        assert no_sleep.await_args_list == [call(1.0), call(2.0)]

    @pytest.mark.asyncio
    async def test_last_error_reraised_unchanged(self, no_sleep):
        errors = [TransientProducerError(f"fail {i}") for i in range(3)]
        operation = AsyncMock(side_effect=errors)

        with pytest.raises(TransientProducerError) as exc_info:
            await retry_with_backoff(operation, max_attempts=3, sleep=no_sleep)

        assert exc_info.value is errors[-1]
        assert operation.await_count == 3
        assert no_sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_non_retryable_error_propagates_immediately(self, no_sleep):
        operation = AsyncMock(side_effect=ConfigurationError("bad key", code="missing"))

        with pytest.raises(ConfigurationError):
            await retry_with_backoff(
                operation, retry_on=(TransientProducerError,), sleep=no_sleep
            )

        operation.assert_awaited_once()
        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rejects_zero_attempts(self, no_sleep):
        with pytest.raises(ValueError):
            await retry_with_backoff(AsyncMock(), max_attempts=0, sleep=no_sleep)
