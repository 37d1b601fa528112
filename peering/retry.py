"""
Retry policy for AWS API calls.

Throttling, service-unavailable and network timeout errors are retried with
exponential backoff; validation and permission errors propagate immediately.
"""

import threading
import time
from typing import Callable, Iterable, Optional, TypeVar

from botocore.exceptions import (
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from peering.config import Config
from peering.errors import TransientAPIError
from peering.utils.logging_utils import log_progress

T = TypeVar("T")

TRANSIENT_ERROR_CODES = frozenset(
    {
        "Throttling",
        "ThrottlingException",
        "RequestLimitExceeded",
        "RequestThrottled",
        "RequestThrottledException",
        "TooManyRequestsException",
        "ServiceUnavailable",
        "Unavailable",
        "InternalError",
        "InternalFailure",
    }
)

TRANSIENT_EXCEPTIONS = (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError)


def error_code(error: BaseException) -> str:
    """Return the AWS error code of a ClientError, or an empty string."""
    if isinstance(error, ClientError):
        return error.response.get("Error", {}).get("Code", "")
    return ""


def is_transient(error: BaseException, extra_codes: Iterable[str] = ()) -> bool:
    """
    Classify an exception as retryable.

    Args:
        error: Exception raised by a boto3 call
        extra_codes: Additional ClientError codes to treat as retryable
            (e.g. eventual-consistency NotFound codes right after a create)

    Returns:
        bool: True if the call should be retried
    """
    if isinstance(error, TRANSIENT_EXCEPTIONS):
        return True
    code = error_code(error)
    return bool(code) and (code in TRANSIENT_ERROR_CODES or code in set(extra_codes))


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before retry number `attempt` (0-based), doubling each time."""
    return min(base_delay * (2**attempt), max_delay)


def call_with_retries(
    operation: str,
    func: Callable[[], T],
    retry_codes: Iterable[str] = (),
    max_attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
    max_delay: Optional[float] = None,
    cancel_event: Optional[threading.Event] = None,
) -> T:
    """
    Call `func` until it succeeds, retrying transient failures with backoff.

    Args:
        operation: Human-readable name of the call, used in logs and errors
        func: Zero-argument callable performing the API call
        retry_codes: Extra ClientError codes to treat as transient
        max_attempts: Total attempts (defaults to Config.MAX_RETRIES)
        base_delay: First backoff delay in seconds (defaults to Config.RETRY_BASE_DELAY)
        max_delay: Backoff cap in seconds (defaults to Config.RETRY_MAX_DELAY)
        cancel_event: When set, no further attempts are started and a pending
            backoff wait ends early

    Returns:
        Whatever `func` returns

    Raises:
        TransientAPIError: If every attempt failed with a transient error
        Exception: Any non-transient error raised by `func`, unchanged
    """
    max_attempts = max_attempts or Config.MAX_RETRIES
    base_delay = Config.RETRY_BASE_DELAY if base_delay is None else base_delay
    max_delay = Config.RETRY_MAX_DELAY if max_delay is None else max_delay
    retry_codes = tuple(retry_codes)

    last_error: Optional[BaseException] = None
    attempts = 0
    for attempt in range(max_attempts):
        attempts = attempt + 1
        try:
            return func()
        except Exception as e:
            if not is_transient(e, retry_codes):
                raise
            last_error = e
            if attempt == max_attempts - 1:
                break
            if cancel_event is not None and cancel_event.is_set():
                break
            wait_time = backoff_delay(attempt, base_delay, max_delay)
            log_progress(
                "Retry",
                f"{operation}: {error_code(e) or type(e).__name__}, retrying in {wait_time}s "
                f"(attempt {attempt + 1}/{max_attempts})",
            )
            if cancel_event is not None:
                # Wakes as soon as cancellation is requested
                if cancel_event.wait(wait_time):
                    break
            else:
                time.sleep(wait_time)

    raise TransientAPIError(operation, attempts, last_error)
