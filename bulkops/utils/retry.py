"""Retry and polling helpers with structured logging using tenacity."""

from __future__ import annotations

import functools
from typing import TYPE_CHECKING, ParamSpec, TypeVar

import requests
from tenacity import (
    RetryCallState,
    Retrying,
    retry,
    retry_base,
    retry_if_exception,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
)

from bulkops.core.errors import BulkOpsError
from bulkops.utils.logger import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

P = ParamSpec("P")
T = TypeVar("T")

logger = get_logger(__name__)

# Exception types that trigger retries:
# - requests transport failures (connection refused, DNS, read timeouts)
# - standard Python network errors (ConnectionError, TimeoutError)
# bulkops errors are never retried: they already carry a decision.
_RETRYABLE_EXCEPTIONS: tuple[type[BaseException], ...] = (
    requests.ConnectionError,
    requests.Timeout,
    ConnectionError,
    TimeoutError,
)


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, _RETRYABLE_EXCEPTIONS) and not isinstance(exc, BulkOpsError)


def _log_retry(retry_state: RetryCallState) -> None:
    """Log retry attempt with structured context."""
    logger.warning(
        "retrying_operation",
        attempt=retry_state.attempt_number,
        function=getattr(retry_state.fn, "__name__", "unknown"),
        error=str(retry_state.outcome.exception()) if retry_state.outcome else "unknown",
    )


def retry_with_logging(
    max_attempts: int = 3,
    min_wait: float = 2,
    max_wait: float = 10,
) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Decorator using tenacity with structured logging.

    Retries transport-level failures only. Uses exponential backoff
    starting at min_wait seconds, capped at max_wait.
    """

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        @retry(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
            retry=retry_if_exception(_is_retryable),
            before_sleep=_log_retry,
            reraise=True,
        )
        @functools.wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            return func(*args, **kwargs)

        return wrapper  # type: ignore[return-value]

    return decorator


def poll_until(
    fetch: Callable[[], T],
    is_done: Callable[[T], bool],
    interval: float,
    max_attempts: int,
    retry_on: Callable[[BaseException], bool] | None = None,
) -> T:
    """Call fetch every `interval` seconds until is_done(result) holds.

    Returns the first result that satisfies is_done. Exceptions matching
    retry_on spend one attempt each; any other exception propagates at once.
    Raises tenacity.RetryError once max_attempts polls have been spent; the
    last result or exception is available on the error's last_attempt.
    """
    condition: retry_base = retry_if_result(lambda result: not is_done(result))
    if retry_on is not None:
        condition = condition | retry_if_exception(retry_on)
    retrying = Retrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_fixed(interval),
        retry=condition,
        before_sleep=_log_poll_failure,
        reraise=False,
    )
    return retrying(fetch)


def _log_poll_failure(retry_state: RetryCallState) -> None:
    """Log polls that failed with an exception; pending results are routine."""
    if retry_state.outcome is not None and retry_state.outcome.failed:
        logger.warning(
            "poll_attempt_failed",
            attempt=retry_state.attempt_number,
            error=str(retry_state.outcome.exception()),
        )
