"""
Reliability Utilities.

Includes Circuit Breaker pattern and storage retry with backoff.
"""

import time
import asyncio
import logging
from functools import wraps
from typing import Callable, Any, Optional

from sqlalchemy.exc import DBAPIError, OperationalError

from chickentender.app.core.config import settings

logger = logging.getLogger(__name__)


class CircuitOpenError(Exception):
    pass


class CircuitBreaker:
    """
    Simple Circuit Breaker implementation.
    If 'failure_threshold' failures occur within 'reset_timeout',
    the circuit opens and rejects calls for 'reset_timeout' seconds.
    """
    def __init__(self, failure_threshold: int = 5, reset_timeout: int = 60):
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.failures = 0
        self.last_failure_time = 0
        self.state = "CLOSED" # CLOSED, OPEN, HALF_OPEN

    async def call(self, func: Callable, *args, **kwargs) -> Any:
        if self.state == "OPEN":
            if time.time() - self.last_failure_time > self.reset_timeout:
                self.state = "HALF_OPEN"
            else:
                raise CircuitOpenError("Circuit is OPEN")

        try:
            result = await func(*args, **kwargs)
            if self.state == "HALF_OPEN":
                self.reset_state()
            return result
        except Exception as e:
            self.record_failure()
            raise e

    def record_failure(self):
        self.failures += 1
        self.last_failure_time = time.time()
        if self.failures >= self.failure_threshold:
            self.state = "OPEN"

    def reset_state(self):
        self.failures = 0
        self.state = "CLOSED"


# Global instance guarding notification delivery
notification_circuit_breaker = CircuitBreaker(
    failure_threshold=settings.notification_failure_threshold,
    reset_timeout=settings.notification_reset_timeout,
)


# serialization_failure, deadlock_detected
RETRYABLE_SQLSTATES = frozenset({"40001", "40P01"})


def sqlstate_of(exc: DBAPIError) -> Optional[str]:
    """SQLSTATE of the driver error behind `exc`, if the driver reports one."""
    orig = getattr(exc, "orig", None)
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def is_transient_storage_error(exc: BaseException) -> bool:
    """
    Failures worth retrying: lost connections, plus serialization failures
    and deadlocks where the transaction lost a race for a row. Constraint
    violations are not.
    """
    if isinstance(exc, OperationalError):
        return True
    if not isinstance(exc, DBAPIError):
        return False
    return exc.connection_invalidated or sqlstate_of(exc) in RETRYABLE_SQLSTATES


def with_storage_retry(func: Callable) -> Callable:
    """
    Retry an async storage operation on transient connectivity failures.

    Delay doubles after every attempt starting at settings.db_retry_base_delay.
    The wrapped operation must roll back its own unit of work on failure.
    """
    @wraps(func)
    async def wrapper(*args, **kwargs):
        attempts = max(1, settings.db_retry_attempts)
        delay = settings.db_retry_base_delay
        for attempt in range(1, attempts + 1):
            try:
                return await func(*args, **kwargs)
            except DBAPIError as e:
                if attempt == attempts or not is_transient_storage_error(e):
                    raise
                logger.warning(
                    "Transient storage failure in %s (attempt %d/%d): %s",
                    func.__name__, attempt, attempts, e
                )
                await asyncio.sleep(delay)
                delay *= 2
    return wrapper
