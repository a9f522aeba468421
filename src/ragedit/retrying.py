"""Bounded exponential backoff shared by store and provider calls."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_exponential


@dataclass(frozen=True)
class RetryPolicy:
    """How many attempts to make and how long to back off between them."""

    max_attempts: int = 4
    backoff_multiplier: float = 0.5
    backoff_max_seconds: float = 8.0

    def retrying(
        self,
        exceptions: type[BaseException] | tuple[type[BaseException], ...],
        *,
        logger: structlog.BoundLogger,
        event: str,
        on_retry: Callable[[RetryCallState], None] | None = None,
    ) -> AsyncRetrying:
        def _before_sleep(state: RetryCallState) -> None:
            error = state.outcome.exception() if state.outcome else None
            logger.warning(event, attempt=state.attempt_number, error=str(error))
            if on_retry is not None:
                on_retry(state)

        return AsyncRetrying(
            stop=stop_after_attempt(max(1, self.max_attempts)),
            wait=wait_exponential(multiplier=self.backoff_multiplier, max=self.backoff_max_seconds),
            retry=retry_if_exception_type(exceptions),
            before_sleep=_before_sleep,
            reraise=True,
        )
