"""
Resilience utilities for error handling and fault tolerance.

This module provides:
- retry_with_backoff decorator for transient host API errors (rate limits)
- ErrorRecoveryManager helpers for partial failures across a sync batch
"""

import asyncio
import time
import logging
import traceback
from datetime import datetime, timezone
from typing import Callable, Optional, TypeVar, ParamSpec
from functools import wraps

from scaffold_sync.models.error import ErrorRecord

logger = logging.getLogger(__name__)

P = ParamSpec('P')
T = TypeVar('T')


def _backoff_delay(
    error: Exception,
    attempt: int,
    base_delay: float,
    max_delay: float,
    exponential_base: float
) -> float:
    """Exponential delay, stretched to the server's Retry-After hint when given."""
    delay = base_delay * (exponential_base ** attempt)
    retry_after: Optional[float] = getattr(error, "retry_after", None)
    if retry_after is not None:
        delay = max(delay, retry_after)
    return min(delay, max_delay)


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    exceptions: tuple = (Exception,)
):
    """
    Decorator for retrying functions with exponential backoff.

    Only the exception types listed in ``exceptions`` are retried; anything
    else propagates immediately. If the raised exception carries a
    ``retry_after`` attribute (seconds), the delay is at least that long.
    Works on both coroutine functions and plain functions.

    Args:
        max_retries: Maximum number of attempts (default: 3)
        base_delay: Initial delay in seconds between retries (default: 1.0)
        max_delay: Maximum delay in seconds between retries (default: 60.0)
        exponential_base: Base for exponential backoff calculation (default: 2.0)
        exceptions: Tuple of exception types to catch and retry

    Example:
        @retry_with_backoff(max_retries=3, exceptions=(RateLimitError,))
        async def create_ref(...):
            ...
    """
    def next_delay(name: str, attempt: int, error: Exception) -> float:
        # Re-raises on the last attempt
        if attempt == max_retries - 1:
            logger.error(f"{name} failed after {max_retries} attempts: {error}")
            raise error

        delay = _backoff_delay(error, attempt, base_delay, max_delay, exponential_base)
        logger.warning(
            f"{name} failed on attempt {attempt + 1}/{max_retries}: {error}. "
            f"Retrying in {delay:.1f}s..."
        )
        return delay

    def log_recovery(name: str, attempt: int) -> None:
        if attempt > 0:
            logger.info(f"{name} succeeded on attempt {attempt + 1}/{max_retries}")

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        @wraps(func)
        async def async_wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            for attempt in range(max_retries):
                try:
                    result = await func(*args, **kwargs)
                except exceptions as e:
                    await asyncio.sleep(next_delay(func.__name__, attempt, e))
                    continue
                log_recovery(func.__name__, attempt)
                return result
            raise RuntimeError(f"{func.__name__} was not attempted (max_retries={max_retries})")

        @wraps(func)
        def sync_wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            for attempt in range(max_retries):
                try:
                    result = func(*args, **kwargs)
                except exceptions as e:
                    time.sleep(next_delay(func.__name__, attempt, e))
                    continue
                log_recovery(func.__name__, attempt)
                return result
            raise RuntimeError(f"{func.__name__} was not attempted (max_retries={max_retries})")

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


class ErrorRecoveryManager:
    """
    Helpers for isolating and reporting per-target failures.

    Provides utilities for:
    - Logging partial failures of a batch (continue with the rest)
    - Turning an exception into an ErrorRecord for the sync report
    """

    @staticmethod
    def handle_partial_failure(
        operation_name: str,
        total_items: int,
        successful_items: int,
        errors: list,
        context: dict
    ) -> None:
        """
        Log the outcome of a batch where each item may fail independently.

        Logs a warning with the first ten error messages when any item failed,
        an info line otherwise.
        """
        failed_items = total_items - successful_items
        extra = {
            "operation": operation_name,
            "total_items": total_items,
            "successful_items": successful_items,
            "failed_items": failed_items,
            "context": context,
        }

        if not failed_items:
            logger.info(f"{operation_name} completed for all {total_items} item(s)", extra=extra)
            return

        logger.warning(
            f"Partial failure in {operation_name}: "
            f"{successful_items}/{total_items} succeeded, {failed_items} failed",
            extra={**extra, "errors": errors[:10]}
        )

    @staticmethod
    def build_error_record(error: BaseException, phase: str) -> ErrorRecord:
        """
        Build an error record for the sync report.

        Args:
            error: Exception that occurred
            phase: Pipeline stage where it occurred

        Returns:
            ErrorRecord describing the failure
        """
        stack_trace = None
        if error.__traceback__ is not None:
            stack_trace = "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            )

        return ErrorRecord(
            phase=phase,
            error_type=type(error).__name__,
            message=str(error) or type(error).__name__,
            stack_trace=stack_trace,
            timestamp=datetime.now(timezone.utc)
        )
