"""Cooperative cancellation for sync runs"""

import threading
from typing import Optional

from app.services.errors import OperationCancelledError


class CancellationToken:
    """Thread-safe cancellation flag shared by a run and whoever may abort it.

    Blocking waits go through :meth:`wait` so an abort interrupts them immediately.
    """

    def __init__(self):
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: Optional[str] = None) -> None:
        if not self._event.is_set():
            self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError(self.reason or "Operation cancelled")

    def wait(self, seconds: float) -> bool:
        """Sleep up to `seconds`; return True if cancelled meanwhile."""
        return self._event.wait(timeout=max(0.0, seconds))

    def __repr__(self):
        return f"<CancellationToken(cancelled={self.cancelled})>"
