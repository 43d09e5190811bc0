"""Retry policy for flaky provider calls.

Attempts are spaced by exponential backoff. An optional fallback transform
rewrites the request argument once, before the first retry (for example,
simplifying a team name or shortening a prompt), so a query the provider
rejects is not simply resent verbatim. A ``fallback_on`` predicate lets a
non-retryable rejection (a 404 for an unknown name) trigger that one
rewritten attempt.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import structlog

from app.services.engine.errors import EngineError, ExternalProviderError

logger = structlog.get_logger(__name__)

A = TypeVar("A")
R = TypeVar("R")


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: base_delay * multiplier ** (attempt - 1), capped."""

    max_attempts: int = 3
    base_delay: float = 0.3
    multiplier: float = 3.0
    max_delay: float = 5.0

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay,
            multiplier=settings.retry_multiplier,
            max_delay=settings.retry_max_delay,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        return min(self.base_delay * self.multiplier ** (attempt - 1), self.max_delay)

    def total_budget(self, attempt_timeout: float) -> float:
        """Worst-case wall time of one ``run`` when every attempt times out."""
        waits = sum(self.delay_for(i) for i in range(1, self.max_attempts))
        return self.max_attempts * attempt_timeout + waits

    async def run(
        self,
        operation: str,
        call: Callable[[A], Awaitable[R]],
        argument: A,
        fallback: Callable[[A], A] | None = None,
        fallback_on: Callable[[EngineError], bool] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> R:
        """Call ``call(argument)`` until it succeeds or attempts run out.

        Only retryable EngineErrors are retried; anything else propagates
        immediately, unless ``fallback_on`` accepts it and the fallback has
        not been used yet, in which case the transformed argument gets one
        more attempt.

        Raises:
            ExternalProviderError: After the last failed attempt
        """
        current = argument
        last_error: EngineError | None = None
        fallback_used = False

        for attempt in range(1, self.max_attempts + 1):
            try:
                return await call(current)
            except EngineError as e:
                use_fallback = (
                    fallback is not None
                    and not fallback_used
                    and (e.retryable or (fallback_on is not None and fallback_on(e)))
                )
                if not e.retryable and not use_fallback:
                    raise
                last_error = e
                if attempt == self.max_attempts:
                    break

                wait_time = self.delay_for(attempt)
                if use_fallback:
                    transformed = fallback(current)
                    logger.info(
                        "provider_fallback_applied",
                        operation=operation,
                        original=str(current)[:120],
                        transformed=str(transformed)[:120],
                    )
                    current = transformed
                    fallback_used = True
                logger.warning(
                    "provider_call_retrying",
                    operation=operation,
                    attempt=attempt,
                    wait_time=wait_time,
                    error=e.message,
                )
                await sleep(wait_time)

        logger.error(
            "provider_call_exhausted",
            operation=operation,
            attempts=self.max_attempts,
            error=last_error.message if last_error else None,
        )
        raise ExternalProviderError(
            f"{operation} failed after {self.max_attempts} attempts: "
            f"{last_error.message if last_error else 'unknown error'}"
        ) from last_error
