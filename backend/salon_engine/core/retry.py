"""
Explicit retry policy for transactional operations.

Only transient storage failures are retried. Business-rule failures
(conflicts, validation, availability) propagate on the first attempt.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import time
from typing import Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError

from .config import settings
from .exceptions import RepositoryException, RetryExhaustedException, TransientStorageException

logger = logging.getLogger(__name__)

T = TypeVar("T")

# serialization_failure, deadlock_detected, lock_not_available, query_canceled
TRANSIENT_SQLSTATES = frozenset({"40001", "40P01", "55P03", "57014"})

_TRANSIENT_MESSAGE_SNIPPETS = (
    "could not serialize access",
    "deadlock detected",
    "database is locked",
    "server closed the connection",
    "ssl connection has been closed unexpectedly",
    "connection reset",
    "statement timeout",
    "canceling statement due to statement timeout",
)


def _sqlstate(exc: BaseException) -> Optional[str]:
    orig = getattr(exc, "orig", None)
    for candidate in (orig, getattr(orig, "diag", None)):
        if candidate is None:
            continue
        code = getattr(candidate, "pgcode", None) or getattr(candidate, "sqlstate", None)
        if code:
            return str(code)
    return None


def is_transient_storage_error(exc: BaseException) -> bool:
    """Return True for failures that a fresh transaction attempt may resolve."""
    if isinstance(exc, TransientStorageException):
        return True
    if isinstance(exc, RepositoryException) and exc.__cause__ is not None:
        return is_transient_storage_error(exc.__cause__)
    if not isinstance(exc, DBAPIError):
        return False
    if exc.connection_invalidated:
        return True
    if _sqlstate(exc) in TRANSIENT_SQLSTATES:
        return True
    if isinstance(exc, OperationalError):
        message = str(exc).lower()
        return any(snippet in message for snippet in _TRANSIENT_MESSAGE_SNIPPETS)
    return False


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded exponential backoff.

    Attributes:
        max_attempts: Total attempts including the first one
        base_delay: Delay before the second attempt, in seconds
        multiplier: Growth factor between consecutive delays
        max_delay: Upper bound for a single delay
        is_retryable: Predicate deciding whether an exception is transient
        sleep: Injected sleep function (tests pass a no-op)
    """

    max_attempts: int = 3
    base_delay: float = 0.05
    multiplier: float = 2.0
    max_delay: float = 1.0
    is_retryable: Callable[[BaseException], bool] = is_transient_storage_error
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")

    @classmethod
    def from_settings(cls, **overrides) -> "RetryPolicy":
        values = {
            "max_attempts": settings.assignment_max_attempts,
            "base_delay": settings.assignment_retry_base_delay_seconds,
            "multiplier": settings.assignment_retry_multiplier,
            "max_delay": settings.assignment_retry_max_delay_seconds,
        }
        values.update(overrides)
        return cls(**values)

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given (1-indexed) failed attempt."""
        return min(self.base_delay * (self.multiplier ** (attempt - 1)), self.max_delay)

    def run(
        self,
        op_name: str,
        func: Callable[[], T],
        *,
        on_retry: Optional[Callable[[int, BaseException], None]] = None,
    ) -> T:
        """
        Execute ``func`` retrying transient failures.

        Raises:
            RetryExhaustedException: When every attempt failed transiently
            Exception: Any non-retryable error, unchanged, on first occurrence
        """
        attempt = 1
        while True:
            try:
                return func()
            except Exception as exc:
                if not self.is_retryable(exc):
                    raise
                if attempt >= self.max_attempts:
                    logger.error(
                        "Transient failure persisted, giving up",
                        extra={"event": "retry_exhausted", "op": op_name, "attempts": attempt},
                    )
                    raise RetryExhaustedException(op_name, attempt) from exc

                delay = self.delay_for(attempt)
                logger.warning(
                    "Transient failure detected, retrying",
                    extra={
                        "event": "tx_retry",
                        "op": op_name,
                        "attempt": attempt,
                        "delay": delay,
                        "error": str(exc),
                    },
                )
                if on_retry is not None:
                    on_retry(attempt, exc)
                self.sleep(delay)
                attempt += 1
