"""Sync management endpoints"""
from fastapi import APIRouter, Body, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List, Optional
from pydantic import BaseModel
from datetime import datetime

from app.api.deps import get_sync_manager, get_user_id
from app.api.repositories import get_connection_or_404
from app.models.base import get_db
from app.models import SyncLog
from app.models.sync_log import SyncStatus
from app.services.errors import (
    OperationAlreadyFinishedError,
    SyncAlreadyRunningError,
    SyncOperationNotFoundError,
)
from app.services.operation_store import SyncOperation
from app.services.sync_manager import SyncManager
from app.services.sync_types import OperationStatus, SyncStage, SyncType

router = APIRouter(tags=["sync"])

SYNC_PATH = "/api/projects/{project_id}/repositories/{repository_id}/sync"


class SyncRequest(BaseModel):
    sync_type: SyncType = SyncType.FULL
    include_closed: bool = False
    # Required when importing closed issues or when a webhook already keeps the repository in sync
    confirmation: bool = False


class SyncStartedResponse(BaseModel):
    operation_id: str
    status: OperationStatus
    location: str


class SyncProgressResponse(BaseModel):
    current: int
    total: int
    processed: int
    stage: SyncStage

    class Config:
        from_attributes = True


class SyncCountsResponse(BaseModel):
    created: int
    updated: int
    skipped: int
    failed: int

    class Config:
        from_attributes = True


class SyncErrorResponse(BaseModel):
    issue_id: Optional[str] = None
    error: str

    class Config:
        from_attributes = True


class SyncResultsResponse(SyncCountsResponse):
    security_advisories: SyncCountsResponse
    errors: List[SyncErrorResponse] = []


class SyncOperationResponse(BaseModel):
    id: str
    repository_connection_id: str
    project_id: str
    status: OperationStatus
    sync_type: SyncType
    include_closed: bool
    progress: Optional[SyncProgressResponse] = None
    results: Optional[SyncResultsResponse] = None
    error: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SyncLogResponse(BaseModel):
    id: int
    operation_id: str
    repository_connection_id: str
    user_id: Optional[str] = None
    status: SyncStatus
    sync_type: str
    created_count: int
    updated_count: int
    skipped_count: int
    failed_count: int
    message: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


def _operation_for_repository(
    manager: SyncManager, project_id: str, repository_id: str, operation_id: str
) -> SyncOperation:
    operation = manager.get_sync_status(operation_id)
    if operation is None:
        raise HTTPException(status_code=404, detail="Sync operation not found")
    if operation.repository_connection_id != repository_id or operation.project_id != project_id:
        raise HTTPException(status_code=403, detail="Sync operation belongs to another repository")
    return operation


@router.post(SYNC_PATH, response_model=SyncStartedResponse, status_code=202)
def trigger_sync(
    project_id: str,
    repository_id: str,
    body: Optional[SyncRequest] = Body(None),
    db: Session = Depends(get_db),
    manager: SyncManager = Depends(get_sync_manager),
    user_id: str = Depends(get_user_id),
):
    """Start an asynchronous sync for a repository connection"""
    body = body or SyncRequest()
    connection = get_connection_or_404(project_id, repository_id, db)

    if (body.include_closed or connection.is_active) and not body.confirmation:
        reason = (
            "Importing closed issues may create a large number of issues"
            if body.include_closed
            else "A webhook already keeps this repository in sync"
        )
        raise HTTPException(
            status_code=400,
            detail={"error": f"{reason}. Confirm to continue.", "requires_confirmation": True},
        )

    try:
        operation_id = manager.start_sync(
            connection.id,
            project_id,
            user_id,
            sync_type=body.sync_type,
            include_closed=body.include_closed,
        )
    except SyncAlreadyRunningError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return SyncStartedResponse(
        operation_id=operation_id,
        status=OperationStatus.PENDING,
        location=SYNC_PATH.format(project_id=project_id, repository_id=repository_id) + f"/{operation_id}",
    )


@router.get(SYNC_PATH + "/{operation_id}", response_model=SyncOperationResponse)
def get_sync_status(
    project_id: str,
    repository_id: str,
    operation_id: str,
    manager: SyncManager = Depends(get_sync_manager),
):
    """Poll the status of a sync operation"""
    operation = _operation_for_repository(manager, project_id, repository_id, operation_id)
    return SyncOperationResponse.model_validate(operation)


@router.delete(SYNC_PATH + "/{operation_id}", response_model=SyncOperationResponse)
def cancel_sync(
    project_id: str,
    repository_id: str,
    operation_id: str,
    manager: SyncManager = Depends(get_sync_manager),
):
    """Abort a pending or running sync operation"""
    _operation_for_repository(manager, project_id, repository_id, operation_id)
    try:
        operation = manager.cancel_sync(operation_id)
    except SyncOperationNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except OperationAlreadyFinishedError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return SyncOperationResponse.model_validate(operation)


@router.get("/api/sync/logs", response_model=List[SyncLogResponse])
def list_sync_logs(
    limit: int = 100,
    repository_connection_id: str = None,
    db: Session = Depends(get_db)
):
    """List sync logs"""
    query = db.query(SyncLog).order_by(SyncLog.created_at.desc())
    if repository_connection_id:
        query = query.filter(SyncLog.repository_connection_id == repository_connection_id)
    logs = query.limit(limit).all()
    return logs
