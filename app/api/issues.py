"""Issue endpoints owned by the sync engine"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field
from datetime import datetime

from app.api.deps import get_user_id
from app.models.base import get_db
from app.models import ProviderType
from app.services.errors import (
    ExternalIdConflictError,
    IssueNotFoundError,
    RepositoryConnectionNotFoundError,
)
from app.services.linking import ExternalLinkService
from app.services.storage import ConnectionStore, SqlIssueStore

router = APIRouter(prefix="/api/projects/{project_id}/issues", tags=["issues"])


class LinkExternalRequest(BaseModel):
    provider_type: ProviderType
    repository_url: str
    external_id: Optional[str] = Field(None, max_length=500)
    issue_number: Optional[int] = Field(None, gt=0)


class IssueResponse(BaseModel):
    id: str
    project_id: str
    title: str
    description: Optional[str] = None
    status: str
    type: str
    priority: Optional[str] = None
    custom_fields: Dict[str, Any] = {}
    reporter_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class LinkExternalResponse(BaseModel):
    success: bool
    external_id: str
    issue: IssueResponse


@router.post("/{issue_id}/link-external", response_model=LinkExternalResponse)
def link_external_issue(
    project_id: str,
    issue_id: str,
    link: LinkExternalRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
):
    """Manually link an issue to an issue in a connected repository"""
    service = ExternalLinkService(SqlIssueStore(db), ConnectionStore(db))
    try:
        issue, external_id = service.link(
            project_id,
            issue_id,
            link.provider_type,
            link.repository_url,
            external_id=link.external_id,
            issue_number=link.issue_number,
        )
    except IssueNotFoundError:
        raise HTTPException(status_code=404, detail="Issue not found")
    except RepositoryConnectionNotFoundError:
        raise HTTPException(
            status_code=404,
            detail="Repository connection not found. Connect the repository to this project first.",
        )
    except ExternalIdConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return LinkExternalResponse(success=True, external_id=external_id, issue=IssueResponse.model_validate(issue))
