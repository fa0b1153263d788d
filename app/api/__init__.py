"""API routes"""

from app.api import issues, repositories, sync

__all__ = ["repositories", "sync", "issues"]
