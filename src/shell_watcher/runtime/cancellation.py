"""Cancellation token shared between the runner and external notifiers."""

from __future__ import annotations

import threading

__all__ = ["CancellationToken"]


class CancellationToken:
    """Write-once, read-many cancellation flag.

    Backed by threading.Event, so setting it from a signal handler or another
    thread is visible to the runner thread without extra locking. Once
    cancelled it stays cancelled; only the first reason is kept.

    Example:
        token = CancellationToken()
        # consumer / signal thread
        token.cancel("sigint")
        # runner thread
        if token.wait(interval):
            ...  # cancelled while sleeping
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        # RLock: cancel() may be re-entered from a signal handler on the same thread
        self._lock = threading.RLock()
        self._reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> bool:
        """Set the token.

        Returns:
            True if this call set it, False if it was already set
        """
        with self._lock:
            if self._event.is_set():
                return False
            self._reason = reason
            self._event.set()
            return True

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        """Reason passed to the first cancel() call."""
        return self._reason

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or timeout elapses.

        Returns:
            True if the token is cancelled
        """
        return self._event.wait(timeout)

    def __repr__(self) -> str:
        state = f"cancelled({self._reason})" if self.is_cancelled else "active"
        return f"CancellationToken({state})"
