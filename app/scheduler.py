"""Background scheduler for sync runs and operation cleanup"""

import logging
from typing import Any, Callable, Optional, Sequence

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.services.operation_store import SyncOperationStore

logger = logging.getLogger(__name__)

CLEANUP_JOB_ID = "sync_operations_cleanup"


class SyncScheduler:
    """Runs sync operations off the request thread and reaps finished ones periodically"""

    def __init__(
        self,
        operation_store: Optional[SyncOperationStore] = None,
        retention_hours: int = 24,
        cleanup_interval_minutes: int = 60,
        scheduler: Optional[BackgroundScheduler] = None,
    ):
        self.scheduler = scheduler or BackgroundScheduler()
        self.operation_store = operation_store
        self.retention_hours = retention_hours
        self.cleanup_interval_minutes = cleanup_interval_minutes

    def start(self):
        """Start the scheduler"""
        self.scheduler.start()
        logger.info("Sync scheduler started")

        if self.operation_store is not None:
            self.schedule_cleanup()

    def stop(self):
        """Stop the scheduler"""
        self.scheduler.shutdown(wait=False)
        logger.info("Sync scheduler stopped")

    def submit(self, func: Callable[..., Any], job_id: str, args: Sequence[Any] = ()):
        """Run `func(*args)` once, as soon as a worker thread is free"""
        # No trigger: APScheduler runs the job immediately, then drops it
        self.scheduler.add_job(
            func=func,
            id=job_id,
            args=list(args),
            replace_existing=True,
            misfire_grace_time=None,
        )
        logger.info(f"Queued job {job_id}")

    def schedule_cleanup(self):
        """Schedule the periodic removal of old finished operations"""
        existing = self.scheduler.get_job(CLEANUP_JOB_ID)
        if existing is not None:
            self.scheduler.remove_job(CLEANUP_JOB_ID)

        self.scheduler.add_job(
            func=self._cleanup_job,
            trigger=IntervalTrigger(minutes=self.cleanup_interval_minutes),
            id=CLEANUP_JOB_ID,
            replace_existing=True,
        )
        logger.info(
            f"Scheduled operation cleanup every {self.cleanup_interval_minutes} minutes "
            f"(retention {self.retention_hours}h)"
        )

    def _cleanup_job(self):
        """Job function removing finished operations past retention"""
        try:
            removed = self.operation_store.cleanup(self.retention_hours)
            logger.debug(f"Operation cleanup removed {removed} operation(s)")
        except Exception as e:
            logger.error(f"Operation cleanup failed: {e}")
