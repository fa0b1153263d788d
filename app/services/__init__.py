"""Services"""

from app.services.operation_store import InMemorySyncOperationStore, SyncOperationStore
from app.services.sync_manager import SyncManager
from app.services.sync_service import IssueSyncService, SyncOptions

__all__ = [
    "InMemorySyncOperationStore",
    "IssueSyncService",
    "SyncManager",
    "SyncOperationStore",
    "SyncOptions",
]
