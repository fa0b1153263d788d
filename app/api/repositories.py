"""Repository connection management endpoints"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List, Optional
from pydantic import BaseModel
from datetime import datetime

from app.api.deps import get_cipher
from app.credentials import CredentialCipher
from app.models.base import get_db
from app.models import ProviderType, RepositoryConnection
from app.services.errors import InvalidRepositoryUrlError
from app.services.providers import build_adapter

router = APIRouter(prefix="/api/projects/{project_id}/repositories", tags=["repositories"])


class RepositoryConnectionCreate(BaseModel):
    service_type: ProviderType
    repository_url: str
    access_token: str
    is_active: bool = False


class RepositoryConnectionResponse(BaseModel):
    id: str
    project_id: str
    service_type: str
    repository_url: str
    is_active: bool
    last_sync_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


def get_connection_or_404(project_id: str, repository_id: str, db: Session) -> RepositoryConnection:
    connection = db.query(RepositoryConnection).filter(
        RepositoryConnection.id == repository_id
    ).first()
    if not connection or connection.project_id != project_id:
        raise HTTPException(status_code=404, detail="Repository connection not found")
    return connection


@router.get("/", response_model=List[RepositoryConnectionResponse])
def list_repositories(project_id: str, db: Session = Depends(get_db)):
    """List a project's repository connections"""
    return db.query(RepositoryConnection).filter(
        RepositoryConnection.project_id == project_id
    ).order_by(RepositoryConnection.created_at).all()


@router.post("/", response_model=RepositoryConnectionResponse, status_code=201)
def create_repository(
    project_id: str,
    connection: RepositoryConnectionCreate,
    db: Session = Depends(get_db),
    cipher: CredentialCipher = Depends(get_cipher),
):
    """Connect a repository to a project"""
    try:
        with build_adapter(connection.service_type, connection.access_token, connection.repository_url) as adapter:
            adapter.parse_repository_url(connection.repository_url)
    except InvalidRepositoryUrlError as e:
        raise HTTPException(status_code=400, detail=str(e))

    existing = db.query(RepositoryConnection).filter(
        RepositoryConnection.project_id == project_id,
        RepositoryConnection.service_type == connection.service_type.value,
        RepositoryConnection.repository_url == connection.repository_url,
    ).first()
    if existing:
        raise HTTPException(status_code=400, detail="Repository already connected to this project")

    db_connection = RepositoryConnection(
        project_id=project_id,
        service_type=connection.service_type.value,
        repository_url=connection.repository_url,
        access_token=cipher.encrypt(connection.access_token),
        is_active=connection.is_active,
    )
    db.add(db_connection)
    db.commit()
    db.refresh(db_connection)
    return db_connection


@router.get("/{repository_id}", response_model=RepositoryConnectionResponse)
def get_repository(project_id: str, repository_id: str, db: Session = Depends(get_db)):
    """Get a specific repository connection"""
    return get_connection_or_404(project_id, repository_id, db)


@router.delete("/{repository_id}")
def delete_repository(project_id: str, repository_id: str, db: Session = Depends(get_db)):
    """Disconnect a repository (already imported issues are kept)"""
    connection = get_connection_or_404(project_id, repository_id, db)
    db.delete(connection)
    db.commit()
    return {"message": "Repository connection deleted successfully"}
