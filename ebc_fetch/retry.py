"""Tenacity retry policies built from RetryConfig."""

from __future__ import annotations

from collections.abc import Callable

import structlog
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import RetryConfig

logger = structlog.get_logger()


def _log_attempt(state: RetryCallState) -> None:
    exc = state.outcome.exception() if state.outcome else None
    logger.warning(
        "retry_scheduled",
        attempt=state.attempt_number,
        error=str(exc) if exc else None,
    )


def _policy(config: RetryConfig, retryable: tuple[type[BaseException], ...]) -> dict:
    return {
        "stop": stop_after_attempt(config.max_attempts),
        "wait": wait_exponential(
            multiplier=config.multiplier,
            min=config.initial_wait_seconds,
            max=config.max_wait_seconds,
        ),
        "retry": retry_if_exception_type(retryable),
        "before_sleep": _log_attempt,
        "reraise": True,
    }


def with_retry(
    config: RetryConfig,
    *,
    retryable_exceptions: tuple[type[BaseException], ...] = (Exception,),
) -> Callable:
    """Return a tenacity retry decorator configured from *config*.

    Usage::

        @with_retry(config.retry, retryable_exceptions=(AcknowledgeFailure,))
        async def store(uids: list[int]) -> None: ...
    """
    return retry(**_policy(config, retryable_exceptions))

