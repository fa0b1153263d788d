"""Triggering interface for asynchronous sync runs"""

import logging
import threading
from typing import Callable, Optional

from sqlalchemy.orm import Session

from app.models import SyncLog
from app.models.issue import utcnow
from app.models.sync_log import SyncStatus
from app.services.errors import (
    OperationAlreadyFinishedError,
    RateLimitError,
    SyncAlreadyRunningError,
    SyncOperationNotFoundError,
)
from app.services.operation_store import SyncOperation, SyncOperationStore
from app.services.progress import ProgressPublisher
from app.services.sync_service import IssueSyncService, SyncOptions
from app.services.sync_types import OperationStatus, SyncResults, SyncType

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Operation cancelled by user"
_ACTIVE = (OperationStatus.PENDING, OperationStatus.IN_PROGRESS)

# Builds an IssueSyncService bound to a worker's DB session and progress publisher
ServiceFactory = Callable[[Session, ProgressPublisher], IssueSyncService]


def _failure_message(exc: Exception) -> str:
    if isinstance(exc, RateLimitError):
        return f"{exc.provider.value} is rate limiting requests. Please retry later."
    return str(exc) or exc.__class__.__name__


class SyncManager:
    """Starts sync runs in the background and answers status/cancel requests"""

    def __init__(
        self,
        store: SyncOperationStore,
        scheduler,
        session_factory: Callable[[], Session],
        service_factory: ServiceFactory,
    ):
        self.store = store
        self.scheduler = scheduler
        self.session_factory = session_factory
        self.service_factory = service_factory
        self._start_lock = threading.Lock()

    def start_sync(
        self,
        connection_id: str,
        project_id: str,
        user_id: str,
        sync_type: SyncType = SyncType.FULL,
        include_closed: bool = False,
    ) -> str:
        """Create a pending operation and queue it; returns the operation id"""
        with self._start_lock:
            active = self.store.find_active_by_repository(connection_id)
            if active is not None:
                raise SyncAlreadyRunningError(connection_id)
            operation = self.store.create(
                SyncOperation.new(connection_id, project_id, user_id, sync_type, include_closed)
            )

        logger.info(f"Queued {sync_type.value} sync {operation.id} for connection {connection_id}")
        try:
            self.scheduler.submit(self.run_operation, job_id=f"sync_{operation.id}", args=[operation.id])
        except Exception as e:
            logger.error(f"Failed to queue sync {operation.id}: {e}")
            self.store.update(
                operation.id, status=OperationStatus.FAILED, error=f"Failed to queue sync: {e}", completed_at=utcnow()
            )
            raise
        return operation.id

    def get_sync_status(self, operation_id: str) -> Optional[SyncOperation]:
        return self.store.get(operation_id)

    def cancel_sync(self, operation_id: str) -> SyncOperation:
        operation = self.store.get(operation_id)
        if operation is None:
            raise SyncOperationNotFoundError(operation_id)
        if operation.status.is_terminal:
            raise OperationAlreadyFinishedError(operation_id)

        cancelled = self.store.update(
            operation_id,
            expected_status=_ACTIVE,
            status=OperationStatus.FAILED,
            error=CANCELLED_MESSAGE,
            completed_at=utcnow(),
        )
        if cancelled is None:
            # Finished between the lookup and the status change
            raise OperationAlreadyFinishedError(operation_id)

        operation.cancel_token.cancel(CANCELLED_MESSAGE)
        logger.info(f"Cancellation requested for sync {operation_id}")
        return cancelled

    def run_operation(self, operation_id: str) -> None:
        """Job function executing one queued operation on a worker thread"""
        operation = self.store.get(operation_id)
        if operation is None:
            logger.warning(f"Sync {operation_id} vanished before it started")
            return

        started = self.store.update(
            operation_id,
            expected_status=OperationStatus.PENDING,
            status=OperationStatus.IN_PROGRESS,
            started_at=utcnow(),
        )
        if started is None:
            logger.info(f"Sync {operation_id} was cancelled before it started")
            return

        db = self.session_factory()
        publisher = ProgressPublisher()
        unsubscribe = publisher.subscribe(lambda progress: self.store.update(operation_id, progress=progress))
        try:
            service = self.service_factory(db, publisher)
            options = SyncOptions(
                sync_type=operation.sync_type,
                include_closed=operation.include_closed,
                cancel_token=operation.cancel_token,
                operation_id=operation_id,
            )
            try:
                results = service.sync_repository_issues(operation.repository_connection_id, operation.user_id, options)
            except Exception as e:
                logger.exception(f"Sync {operation_id} failed")
                message = _failure_message(e)
                self.store.update(
                    operation_id,
                    expected_status=OperationStatus.IN_PROGRESS,
                    status=OperationStatus.FAILED,
                    error=message,
                    completed_at=utcnow(),
                )
                self._log_sync(db, operation, SyncStatus.FAILED, None, f"Sync failed: {message}")
                return

            self._finish(db, operation, results)
        finally:
            unsubscribe()
            db.close()

    def _finish(self, db: Session, operation: SyncOperation, results: SyncResults) -> None:
        completed = None
        if not operation.cancel_token.cancelled:
            completed = self.store.update(
                operation.id,
                expected_status=OperationStatus.IN_PROGRESS,
                status=OperationStatus.COMPLETED,
                results=results,
                completed_at=utcnow(),
            )
        if completed is None:
            # Cancelled while running: keep the failed status, attach what was done
            self.store.update(operation.id, results=results)
            self._log_sync(db, operation, SyncStatus.FAILED, results, CANCELLED_MESSAGE)
            return

        self._log_sync(
            db,
            operation,
            SyncStatus.COMPLETED,
            results,
            f"Sync completed: created={results.created} updated={results.updated} "
            f"skipped={results.skipped} failed={results.failed}",
        )

    def _log_sync(
        self,
        db: Session,
        operation: SyncOperation,
        status: SyncStatus,
        results: Optional[SyncResults],
        message: str = "",
    ):
        """Log sync operation"""
        try:
            log = SyncLog(
                operation_id=operation.id,
                repository_connection_id=operation.repository_connection_id,
                user_id=operation.user_id,
                status=status,
                sync_type=operation.sync_type.value,
                created_count=results.created if results else 0,
                updated_count=results.updated if results else 0,
                skipped_count=results.skipped if results else 0,
                failed_count=results.failed if results else 0,
                message=message,
            )
            db.add(log)
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to write sync log for {operation.id}: {e}")
