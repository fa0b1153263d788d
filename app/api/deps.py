"""Shared route dependencies"""
from typing import Optional

from fastapi import Header, HTTPException, Request

from app.credentials import CredentialCipher
from app.services.sync_manager import SyncManager


def get_sync_manager(request: Request) -> SyncManager:
    """Sync manager owned by the application (see app.main)"""
    return request.app.state.sync_manager


def get_cipher(request: Request) -> CredentialCipher:
    return request.app.state.cipher


def get_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Caller identity; authentication happens upstream"""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id
