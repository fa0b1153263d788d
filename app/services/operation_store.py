"""Lifecycle bookkeeping for asynchronous sync operations"""

import copy
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Union

from app.models.issue import utcnow
from app.services.cancellation import CancellationToken
from app.services.sync_types import OperationStatus, SyncProgress, SyncResults, SyncType

logger = logging.getLogger(__name__)

# Fields `update` may change
_UPDATABLE = ("status", "progress", "results", "error", "started_at", "completed_at")


@dataclass
class SyncOperation:
    id: str
    repository_connection_id: str
    project_id: str
    user_id: str
    status: OperationStatus = OperationStatus.PENDING
    sync_type: SyncType = SyncType.FULL
    include_closed: bool = False
    progress: Optional[SyncProgress] = None
    results: Optional[SyncResults] = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancel_token: CancellationToken = field(default_factory=CancellationToken, repr=False, compare=False)

    @classmethod
    def new(
        cls,
        repository_connection_id: str,
        project_id: str,
        user_id: str,
        sync_type: SyncType = SyncType.FULL,
        include_closed: bool = False,
    ) -> "SyncOperation":
        return cls(
            id=str(uuid.uuid4()),
            repository_connection_id=repository_connection_id,
            project_id=project_id,
            user_id=user_id,
            sync_type=sync_type,
            include_closed=include_closed,
        )

    @property
    def is_active(self) -> bool:
        return not self.status.is_terminal


def _copy(operation: SyncOperation) -> SyncOperation:
    # Copies share the cancel token
    return replace(operation, results=copy.deepcopy(operation.results))


class SyncOperationStore(ABC):
    """Where sync operations live between start and cleanup.

    Implementations must be safe to call from the request thread and worker threads.
    """

    @abstractmethod
    def create(self, operation: SyncOperation) -> SyncOperation:
        ...

    @abstractmethod
    def get(self, operation_id: str) -> Optional[SyncOperation]:
        ...

    @abstractmethod
    def update(
        self,
        operation_id: str,
        expected_status: Union[OperationStatus, Iterable[OperationStatus], None] = None,
        **changes,
    ) -> Optional[SyncOperation]:
        """Merge the given fields; returns None for unknown ids.

        With `expected_status` the merge is a compare-and-set: nothing changes, and None
        is returned, unless the current status is one of the expected ones.
        """

    @abstractmethod
    def delete(self, operation_id: str) -> bool:
        ...

    @abstractmethod
    def find_active_by_repository(self, repository_connection_id: str) -> Optional[SyncOperation]:
        ...

    @abstractmethod
    def cleanup(self, older_than_hours: int = 24) -> int:
        ...


class InMemorySyncOperationStore(SyncOperationStore):
    """Process-local store. Operations do not survive a restart."""

    def __init__(self):
        self._operations: Dict[str, SyncOperation] = {}
        self._lock = threading.RLock()

    def create(self, operation: SyncOperation) -> SyncOperation:
        with self._lock:
            self._operations[operation.id] = operation
            return _copy(operation)

    def get(self, operation_id: str) -> Optional[SyncOperation]:
        with self._lock:
            operation = self._operations.get(operation_id)
            return _copy(operation) if operation else None

    def update(
        self,
        operation_id: str,
        expected_status: Union[OperationStatus, Iterable[OperationStatus], None] = None,
        **changes,
    ) -> Optional[SyncOperation]:
        unknown = set(changes) - set(_UPDATABLE)
        if unknown:
            raise ValueError(f"Cannot update operation field(s): {', '.join(sorted(unknown))}")
        if isinstance(expected_status, OperationStatus):
            expected_status = (expected_status,)
        with self._lock:
            operation = self._operations.get(operation_id)
            if operation is None:
                return None
            if expected_status is not None and operation.status not in tuple(expected_status):
                return None
            for key, value in changes.items():
                if key == "results":
                    value = copy.deepcopy(value)
                setattr(operation, key, value)
            operation.updated_at = utcnow()
            return _copy(operation)

    def delete(self, operation_id: str) -> bool:
        with self._lock:
            return self._operations.pop(operation_id, None) is not None

    def find_active_by_repository(self, repository_connection_id: str) -> Optional[SyncOperation]:
        with self._lock:
            for operation in self._operations.values():
                if operation.repository_connection_id == repository_connection_id and operation.is_active:
                    return _copy(operation)
            return None

    def list(self) -> List[SyncOperation]:
        with self._lock:
            return [_copy(op) for op in self._operations.values()]

    def cleanup(self, older_than_hours: int = 24) -> int:
        cutoff = utcnow() - timedelta(hours=older_than_hours)
        with self._lock:
            expired = [
                op_id
                for op_id, op in self._operations.items()
                if op.status.is_terminal and op.completed_at is not None and op.completed_at < cutoff
            ]
            for op_id in expired:
                del self._operations[op_id]
        if expired:
            logger.info(f"Removed {len(expired)} finished sync operation(s) older than {older_than_hours}h")
        return len(expired)
