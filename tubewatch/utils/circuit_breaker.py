"""
One-way circuit breaker used to stop scheduling new API work after a
systemic failure (exhausted quota, revoked key) during a single run.
"""

import logging
from typing import Optional

from tubewatch.exceptions import CircuitBreakerError

log = logging.getLogger(__name__)


class CircuitBreaker:
    """
    A latch that starts closed and opens at most once.

    Work that has already started is never interrupted; callers check
    `is_open` before dispatching anything new. There is no half-open or
    recovery state: a new run gets a new breaker.
    """

    def __init__(self, name: str = "api"):
        self.name = name
        self._open = False
        self._reason: Optional[str] = None

    @property
    def is_open(self) -> bool:
        """Whether new work must be skipped."""
        return self._open

    @property
    def reason(self) -> Optional[str]:
        """The failure that opened the breaker, if any."""
        return self._reason

    def trip(self, reason: str) -> bool:
        """
        Opens the breaker. Only the first call has an effect.

        Returns:
            True if this call opened the breaker, False if it was already open.
        """
        if self._open:
            return False
        self._open = True
        self._reason = reason
        log.error(
            f"[red]✗ Circuit breaker '{self.name}' OPENED: {reason}. "
            "Remaining work will be skipped.[/red]"
        )
        return True

    def check(self) -> None:
        """Raises CircuitBreakerError if the breaker is open."""
        if self._open:
            raise CircuitBreakerError(
                f"Skipped: circuit breaker '{self.name}' is open ({self._reason})"
            )
