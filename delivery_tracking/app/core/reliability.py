"""
Reliability utilities for calls leaving the service.

Includes a Circuit Breaker and an async retry helper with exponential backoff.
"""

import time
import asyncio
import logging
from typing import Awaitable, Callable, Any, Tuple, Type

logger = logging.getLogger("delivery_tracking.reliability")


class CircuitOpenError(Exception):
    pass


class CircuitBreaker:
    """
    Simple Circuit Breaker implementation.
    If 'failure_threshold' consecutive failures occur, the circuit opens and
    rejects calls for 'reset_timeout' seconds before letting one probe through.
    """
    def __init__(self, failure_threshold: int = 5, reset_timeout: float = 60):
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.failures = 0
        self.last_failure_time = 0.0
        self.state = "CLOSED"  # CLOSED, OPEN, HALF_OPEN

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        if self.state == "OPEN":
            if time.monotonic() - self.last_failure_time > self.reset_timeout:
                self.state = "HALF_OPEN"
            else:
                raise CircuitOpenError("Circuit is OPEN")

        try:
            result = await func(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise
        self.reset_state()
        return result

    def record_failure(self):
        self.failures += 1
        self.last_failure_time = time.monotonic()
        if self.state == "HALF_OPEN" or self.failures >= self.failure_threshold:
            self.state = "OPEN"

    def reset_state(self):
        self.failures = 0
        self.state = "CLOSED"


async def retry_with_backoff(
    func: Callable[..., Awaitable[Any]],
    *args,
    attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 10.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    operation: str = "call",
    **kwargs,
) -> Any:
    """
    Await func(*args, **kwargs), retrying on failure.

    Delay doubles after every failed attempt (base_delay, 2*base_delay, ...)
    capped at max_delay. The last exception is re-raised once attempts are
    exhausted.
    """
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            return await func(*args, **kwargs)
        except retry_on as exc:
            if attempt == attempts:
                raise
            delay = min(max_delay, base_delay * (2 ** (attempt - 1)))
            logger.warning(
                "%s failed (attempt %d/%d): %s; retrying in %.2fs",
                operation, attempt, attempts, exc, delay
            )
            await asyncio.sleep(delay)


# Shared breaker for the courier platform API
courier_circuit_breaker = CircuitBreaker(failure_threshold=5, reset_timeout=30)
