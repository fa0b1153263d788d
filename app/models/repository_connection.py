"""Repository connection model"""
import enum

from sqlalchemy import Boolean, Column, DateTime, String

from app.models.base import Base
from app.models.issue import new_id, utcnow


class ProviderType(str, enum.Enum):
    """Supported Git hosting providers"""
    GITHUB = "GitHub"
    GITLAB = "GitLab"
    BITBUCKET = "Bitbucket"


class RepositoryConnection(Base):
    """A project's link to one repository on an external Git host"""

    __tablename__ = "repository_connections"

    id = Column(String(36), primary_key=True, default=new_id)
    project_id = Column(String, nullable=False, index=True)

    service_type = Column(String, nullable=False)  # ProviderType value
    repository_url = Column(String, nullable=False)
    # Encrypted with app.credentials.CredentialCipher; never stored in plaintext.
    access_token = Column(String, nullable=False)

    # True while the provider webhook is delivering events for this repository
    is_active = Column(Boolean, default=False)

    last_sync_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def provider(self) -> ProviderType:
        return ProviderType(self.service_type)

    def __repr__(self):
        return f"<RepositoryConnection(service='{self.service_type}', url='{self.repository_url}')>"
