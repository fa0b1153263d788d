"""Main FastAPI application"""

import logging
from contextlib import asynccontextmanager
from functools import partial

from fastapi import FastAPI

from app.api import issues, repositories, sync
from app.config import settings
from app.credentials import CredentialCipher
from app.models.base import SessionLocal, init_db
from app.scheduler import SyncScheduler
from app.services.operation_store import InMemorySyncOperationStore
from app.services.providers import build_adapter
from app.services.rate_limiter import BackoffConfig
from app.services.storage import ConnectionStore, SqlIssueStore
from app.services.sync_manager import SyncManager
from app.services.sync_service import IssueSyncService

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def build_sync_service(db, publisher, cipher: CredentialCipher) -> IssueSyncService:
    """IssueSyncService for one worker session, configured from settings"""
    return IssueSyncService(
        issue_store=SqlIssueStore(db),
        connection_store=ConnectionStore(db),
        cipher=cipher,
        adapter_factory=partial(build_adapter, settings=settings),
        backoff_config=BackoffConfig.from_settings(settings),
        progress_interval=settings.sync_progress_interval,
        max_error_summaries=settings.sync_max_error_summaries,
        page_size=settings.sync_page_size,
        publisher=publisher,
    )


cipher = CredentialCipher(settings.encryption_secret)
operation_store = InMemorySyncOperationStore()
scheduler = SyncScheduler(
    operation_store,
    retention_hours=settings.sync_operation_retention_hours,
    cleanup_interval_minutes=settings.sync_cleanup_interval_minutes,
)
sync_manager = SyncManager(
    operation_store,
    scheduler,
    session_factory=SessionLocal,
    service_factory=partial(build_sync_service, cipher=cipher),
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    # Startup
    logger.info("Starting Repository Issue Sync Service")
    init_db()
    scheduler.start()
    yield
    # Shutdown
    logger.info("Stopping Repository Issue Sync Service")
    scheduler.stop()


app = FastAPI(
    title="Repository Issue Sync Service",
    description="Import issues and security advisories from GitHub, GitLab and Bitbucket",
    version="1.0.0",
    lifespan=lifespan,
)

app.state.cipher = cipher
app.state.sync_manager = sync_manager

# Include API routers
app.include_router(repositories.router)
app.include_router(sync.router)
app.include_router(issues.router)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "Repository Issue Sync"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level=settings.log_level.lower(),
    )
