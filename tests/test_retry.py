"""Tests for the retry policy."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from unistore.core.errors import InvalidConfigError, NotFoundError, TransientError
from unistore.core.storage.retry import NO_RETRY, RetryPolicy


class TestRetryPolicy:
    """Test retry behavior around async calls."""

    @pytest.fixture
    def policy(self):
        return RetryPolicy(max_attempts=3, backoff_base=0, backoff_cap=0)

    @pytest.mark.asyncio
    async def test_success_first_try(self, policy):
        fn = AsyncMock(return_value="ok")

        assert await policy.run(fn, 1, key="v") == "ok"
        fn.assert_awaited_once_with(1, key="v")

    @pytest.mark.asyncio
    async def test_transient_retried_until_success(self, policy):
        fn = AsyncMock(side_effect=[TransientError("slow down"), TransientError("slow down"), "ok"])

        assert await policy.run(fn) == "ok"
        assert fn.await_count == 3

    @pytest.mark.asyncio
    async def test_transient_surfaces_after_budget(self, policy):
        error = TransientError("still failing")
        fn = AsyncMock(side_effect=error)

        with pytest.raises(TransientError) as exc_info:
            await policy.run(fn)

        assert exc_info.value is error
        assert fn.await_count == 3

    @pytest.mark.asyncio
    async def test_other_kinds_not_retried(self, policy):
        fn = AsyncMock(side_effect=NotFoundError("missing"))

        with pytest.raises(NotFoundError):
            await policy.run(fn)
        assert fn.await_count == 1

    @pytest.mark.asyncio
    async def test_no_retry_policy(self):
        fn = AsyncMock(side_effect=TransientError("once"))

        with pytest.raises(TransientError):
            await NO_RETRY.run(fn)
        assert fn.await_count == 1

    def test_from_config(self):
        policy = RetryPolicy.from_config(
            {"max_retries": "5", "retry_backoff_base": 0.5, "retry_backoff_cap": 2}
        )
        assert policy == RetryPolicy(max_attempts=5, backoff_base=0.5, backoff_cap=2.0)

    def test_from_config_defaults(self):
        assert RetryPolicy.from_config({}) == RetryPolicy()

    @pytest.mark.parametrize(
        "config",
        [{"max_retries": 0}, {"max_retries": "many"}, {"retry_backoff_base": -1}],
    )
    def test_invalid_config(self, config):
        with pytest.raises(InvalidConfigError):
            RetryPolicy.from_config(config)
