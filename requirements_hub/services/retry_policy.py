"""
One reusable retry / backoff / timeout rule applied to
every reasoning-service call site.

    policy = RetryPolicy(max_attempts=3, backoff_base=1.0, timeout=150)
    text = await policy.run(lambda: client.complete(system, user), label="grouping")
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from requirements_hub.config import Settings, get_settings
from requirements_hub.exceptions import ClusteringTransientError, RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryHook = Callable[[int, BaseException, float], None]


class RetryPolicy:
    """
    Attempt an async operation up to *max_attempts* times.

    After failed attempt ``n`` (1-based) the policy sleeps
    ``backoff_base * 2 ** n`` seconds, so the default base of 1.0 gives
    2s then 4s. Each attempt is bounded by *timeout* seconds when set.
    Exceptions outside *retry_on* propagate immediately.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        backoff_base: float = 1.0,
        timeout: Optional[float] = None,
        retry_on: tuple[type[BaseException], ...] = (Exception,),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.timeout = timeout
        self.retry_on = retry_on
        self._sleep = sleep

    # ── Presets ──────────────────────────────────────────

    @classmethod
    def for_grouping(cls, settings: Settings | None = None) -> RetryPolicy:
        settings = settings or get_settings()
        return cls(
            max_attempts=settings.grouping_max_attempts,
            backoff_base=settings.grouping_backoff_base_seconds,
            timeout=settings.grouping_timeout_seconds,
            retry_on=(ClusteringTransientError,),
        )

    @classmethod
    def for_category_match(cls, settings: Settings | None = None) -> RetryPolicy:
        settings = settings or get_settings()
        return cls(max_attempts=1, timeout=settings.category_timeout_seconds)

    @classmethod
    def for_assistant(cls, settings: Settings | None = None) -> RetryPolicy:
        settings = settings or get_settings()
        return cls(max_attempts=1, timeout=settings.assistant_timeout_seconds)

    # ── Execution ────────────────────────────────────────

    def backoff(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based)."""
        return self.backoff_base * (2 ** attempt)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        label: str = "operation",
        on_retry: Optional[RetryHook] = None,
    ) -> T:
        last_error: BaseException | None = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                if self.timeout is not None:
                    return await asyncio.wait_for(operation(), timeout=self.timeout)
                return await operation()
            except asyncio.TimeoutError:
                last_error = TimeoutError(f"{label} timed out after {self.timeout:g}s")
            except self.retry_on as exc:
                last_error = exc

            if attempt >= self.max_attempts:
                break

            delay = self.backoff(attempt)
            logger.warning(
                f"[RETRY] {label} failed (attempt {attempt}/{self.max_attempts}): "
                f"{last_error}. Retrying in {delay:g}s"
            )
            if on_retry is not None:
                on_retry(attempt, last_error, delay)
            await self._sleep(delay)

        logger.error(f"[RETRY] {label} failed after {self.max_attempts} attempt(s): {last_error}")
        raise RetryExhaustedError(self.max_attempts, last_error)
