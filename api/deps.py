from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from config import Settings
from database import get_db
from models import Admin
from services.auth import get_admin, verify_token
from services.errors import Unauthenticated
from services.storage import StorageBackend

# auto_error=False so a missing header goes through our 401 body, not FastAPI's 403
bearer_scheme = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_storage(request: Request) -> StorageBackend:
    return request.app.state.storage


async def get_current_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Admin:
    token = credentials.credentials if credentials else None
    admin_id = verify_token(token, settings)
    admin = await get_admin(db, admin_id)
    if admin is None:
        raise Unauthenticated()
    return admin


async def get_optional_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Optional[Admin]:
    """Like get_current_admin, but anonymous callers get None instead of a 401."""
    if credentials is None:
        return None
    try:
        return await get_current_admin(credentials, db, settings)
    except Unauthenticated:
        return None
