from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config import Settings
from models import Admin
from services.errors import (
    Conflict,
    EmailChangeLocked,
    InvalidCredentials,
    Unauthenticated,
    ValidationFailed,
)

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(plain: str) -> str:
    return pwd_context.hash(plain)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def issue_token(admin_id: str, settings: Settings) -> str:
    now = int(time.time())
    payload = {
        "sub": admin_id,
        "iat": now,
        "exp": now + settings.access_token_expire_days * 24 * 3600,
    }
    return jwt.encode(payload, settings.require_jwt_secret(), algorithm=settings.jwt_algorithm)


def verify_token(token: Optional[str], settings: Settings) -> str:
    """Return the admin id carried by `token`; never say why a token was refused."""
    if not token:
        raise Unauthenticated()
    try:
        payload = jwt.decode(token, settings.require_jwt_secret(), algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise Unauthenticated() from None
    sub = payload.get("sub")
    if not sub:
        raise Unauthenticated()
    return str(sub)


def admin_to_response(admin: Admin) -> dict:
    return {"id": admin.id, "name": admin.name, "email": admin.email}


async def get_admin_by_email(session: AsyncSession, email: str) -> Optional[Admin]:
    result = await session.execute(select(Admin).where(func.lower(Admin.email) == email.strip().lower()))
    return result.scalar_one_or_none()


async def get_admin(session: AsyncSession, admin_id: str) -> Optional[Admin]:
    result = await session.execute(select(Admin).where(Admin.id == admin_id))
    return result.scalar_one_or_none()


async def login(session: AsyncSession, email: str, password: str, settings: Settings) -> tuple[str, Admin]:
    admin = await get_admin_by_email(session, email)
    if admin is None:
        # Unknown emails pay the same bcrypt cost as a wrong password
        pwd_context.dummy_verify()
        valid = False
    else:
        valid = verify_password(password, admin.password_hash)
    # Same failure for unknown email and wrong password
    if not valid:
        logger.info("Failed login attempt for %s", email.strip().lower())
        raise InvalidCredentials()
    return issue_token(admin.id, settings), admin


async def change_credentials(
    session: AsyncSession,
    admin: Admin,
    *,
    name: Optional[str] = None,
    email: Optional[str] = None,
    old_password: Optional[str] = None,
    new_password: Optional[str] = None,
) -> Admin:
    """
    Apply a profile change. Nothing is written unless every requested change is allowed.
    """
    if email is not None:
        if admin.email_updated:
            raise EmailChangeLocked()
        new_email = email.strip().lower()
        if new_email != admin.email:
            other = await get_admin_by_email(session, new_email)
            if other is not None and other.id != admin.id:
                raise Conflict("Email already in use")
    if new_password is not None:
        if not old_password:
            raise ValidationFailed("Old password is required")
        if not verify_password(old_password, admin.password_hash):
            raise InvalidCredentials("Old password is incorrect", status_code=400)

    if name is not None:
        admin.name = name
    if email is not None:
        admin.email = email.strip().lower()
        admin.email_updated = True
    if new_password is not None:
        admin.password_hash = hash_password(new_password)
    admin.updated_at = datetime.now(timezone.utc)
    await session.flush()
    return admin


async def ensure_admin(session: AsyncSession, email: str, password: str, name: str) -> Admin:
    """Create the admin account if it does not exist yet; existing accounts are left alone."""
    existing = await get_admin_by_email(session, email)
    if existing is not None:
        return existing
    now = datetime.now(timezone.utc)
    admin = Admin(
        id=uuid.uuid4().hex,
        email=email.strip().lower(),
        password_hash=hash_password(password),
        name=name,
        email_updated=False,
        created_at=now,
        updated_at=now,
    )
    session.add(admin)
    await session.flush()
    logger.info("Created admin account %s", admin.email)
    return admin
