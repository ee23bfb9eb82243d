from __future__ import annotations

import threading
import time

from .errors import RequestCancelled


class RequestDeadline:
    """Overall time budget for one lookup, cancellable from another thread.

    The HTTP layer cancels it when the client goes away. Pipeline phases call
    ``check()`` at their boundaries and size their I/O timeouts with ``bound()``.
    """

    def __init__(self, budget_s: float, clock=time.monotonic) -> None:
        self._clock = clock
        self._expires_at = clock() + max(0.0, budget_s)
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def remaining(self) -> float:
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self.cancelled or self.remaining() <= 0.0

    def bound(self, timeout_s: float, floor_s: float = 0.1) -> float:
        return max(floor_s, min(timeout_s, self.remaining()))

    def check(self, phase: str) -> None:
        if self.cancelled:
            raise RequestCancelled(f"request cancelled before {phase}")
        if self.remaining() <= 0.0:
            raise RequestCancelled(f"request deadline exceeded before {phase}")

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; returns False early when cancelled."""
        return not self._cancelled.wait(timeout=max(0.0, min(seconds, self.remaining())))
