"""
Circuit breaker guarding the metadata lookups.

After `failure_threshold` consecutive failures lookups are refused for
`recovery_timeout` seconds. The first lookup after that is a trial call: success
closes the circuit again, failure reopens it.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from enum import Enum

log = logging.getLogger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerError(Exception):
    """Raised on entry while the circuit is open."""


class CircuitBreaker:
    """Async context manager: failures inside the block count against the service."""

    def __init__(
        self,
        failure_threshold: int = 3,
        recovery_timeout: float = 30,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at: float | None = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()

    async def record_success(self) -> None:
        async with self._lock:
            if self._state is CircuitState.HALF_OPEN:
                log.info("[green]✓ Metadata service reachable again.[/green]")
            self._state = CircuitState.CLOSED
            self._failures = 0

    async def record_failure(self) -> None:
        async with self._lock:
            self._failures += 1
            if self._state is CircuitState.HALF_OPEN:
                self._open()
            elif (
                self._state is CircuitState.CLOSED
                and self._failures >= self.failure_threshold
            ):
                log.warning(
                    f"[yellow]Metadata lookups paused for {self.recovery_timeout:.0f}s "
                    f"after {self._failures} failures in a row.[/yellow]"
                )
                self._open()

    async def __aenter__(self):
        async with self._lock:
            if self._state is CircuitState.OPEN:
                waited = self._clock() - (self._opened_at or 0.0)
                if waited < self.recovery_timeout:
                    raise CircuitBreakerError(
                        f"Metadata lookups paused for another "
                        f"{self.recovery_timeout - waited:.0f}s"
                    )
                self._state = CircuitState.HALF_OPEN
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            await self.record_success()
        else:
            await self.record_failure()
