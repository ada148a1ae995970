"""
Per-request deadline and cancellation shared by every unit of work of one extraction
"""

import threading
import time
from typing import Optional

from errors import DeadlineExceeded


class RequestContext:
    """
    Deadline-bound cancellation context for one extraction request.

    Every blocking network call takes its timeout from `timeout_for()`, so once
    the deadline passes (or `cancel()` is called) in-flight and subsequent calls
    fail promptly with DeadlineExceeded instead of hanging.
    """

    def __init__(self, timeout_seconds: float, clock=time.monotonic):
        self._clock = clock
        self._deadline = clock() + timeout_seconds
        self._cancelled = threading.Event()

    def remaining(self) -> float:
        """Seconds left before the deadline, never negative"""
        if self._cancelled.is_set():
            return 0.0
        return max(0.0, self._deadline - self._clock())

    def expired(self) -> bool:
        return self.remaining() <= 0.0

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def check(self, operation: str = "request") -> None:
        """Raise DeadlineExceeded if the request can no longer make progress"""
        if self._cancelled.is_set():
            raise DeadlineExceeded(f"{operation}: request cancelled")
        if self._clock() >= self._deadline:
            raise DeadlineExceeded(f"{operation}: deadline exceeded")

    def bounded(self, timeout_seconds: float) -> "RequestContext":
        """
        Context for a sub-step that must finish within timeout_seconds and
        before this context's deadline. The cancellation event is shared.
        """
        child = RequestContext(min(timeout_seconds, self.remaining()), clock=self._clock)
        child._cancelled = self._cancelled
        return child

    def timeout_for(self, operation: str, cap: Optional[float] = None) -> float:
        """
        Timeout to hand to a blocking call

        Args:
            operation: Name used in the error message if no time is left
            cap: Upper bound for this single call

        Returns:
            Remaining seconds, bounded by cap and always positive

        Raises:
            DeadlineExceeded: No time is left for the call
        """
        self.check(operation)
        timeout = self.remaining()
        if cap is not None:
            timeout = min(timeout, cap)
        if timeout <= 0.0:
            raise DeadlineExceeded(f"{operation}: deadline exceeded")
        return timeout
