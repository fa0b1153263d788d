"""Progress event channel between the orchestrator and its observers"""

import logging
import threading
from typing import Callable, List

from app.services.sync_types import SyncProgress

logger = logging.getLogger(__name__)

ProgressListener = Callable[[SyncProgress], None]


class ProgressPublisher:
    """Fan-out of progress snapshots to subscribed listeners.

    A listener that raises is logged and skipped; it never interrupts the run.
    """

    def __init__(self):
        self._listeners: List[ProgressListener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: ProgressListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def publish(self, progress: SyncProgress) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(progress)
            except Exception as e:
                logger.warning(f"Progress listener failed: {e}")
