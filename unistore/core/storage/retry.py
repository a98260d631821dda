"""Bounded exponential backoff for transient backend failures."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from unistore.core.errors import InvalidConfigError, TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_BASE = 0.1
DEFAULT_BACKOFF_CAP = 5.0


@dataclass(frozen=True)
class RetryPolicy:
    """Retry policy applied around every adapter protocol call.

    Only ``TransientError`` is retried. Delays follow full-jitter exponential
    backoff: a random wait in ``[0, min(cap, base * 2**attempt)]``.
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff_base: float = DEFAULT_BACKOFF_BASE
    backoff_cap: float = DEFAULT_BACKOFF_CAP

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise InvalidConfigError(f"max_retries must be at least 1, got {self.max_attempts}")
        if self.backoff_base < 0 or self.backoff_cap < 0:
            raise InvalidConfigError("Retry backoff values must be non-negative")

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> RetryPolicy:
        """Build a policy from the common backend options."""
        try:
            return cls(
                max_attempts=int(config.get("max_retries", DEFAULT_MAX_ATTEMPTS)),
                backoff_base=float(config.get("retry_backoff_base", DEFAULT_BACKOFF_BASE)),
                backoff_cap=float(config.get("retry_backoff_cap", DEFAULT_BACKOFF_CAP)),
            )
        except (TypeError, ValueError) as e:
            raise InvalidConfigError(f"Invalid retry configuration: {e}") from e

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            retry=retry_if_exception_type(TransientError),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_random_exponential(multiplier=self.backoff_base, max=self.backoff_cap),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    async def run(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Await ``fn(*args, **kwargs)``, retrying transient failures.

        Raises:
            TransientError: The last transient failure once attempts run out
            ObjectStoreError: Any other kind, on first occurrence
        """
        async for attempt in self._retrying():
            with attempt:
                return await fn(*args, **kwargs)
        raise AssertionError("unreachable: tenacity re-raises on the final attempt")


NO_RETRY = RetryPolicy(max_attempts=1)
