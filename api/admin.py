from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_admin, get_settings
from config import Settings
from database import get_db
from models import Admin
from schemas.admin import AdminUpdate, LoginRequest
from services import auth

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/login")
async def login(body: LoginRequest, db: AsyncSession = Depends(get_db), settings: Settings = Depends(get_settings)):
    token, admin = await auth.login(db, body.email, body.password, settings)
    return {
        "message": "Login successful",
        "token": token,
        "admin": auth.admin_to_response(admin),
    }


@router.get("/profile")
async def profile(admin: Admin = Depends(get_current_admin)):
    return {**auth.admin_to_response(admin), "emailUpdated": bool(admin.email_updated)}


@router.put("/update")
async def update_admin(
    body: AdminUpdate,
    db: AsyncSession = Depends(get_db),
    admin: Admin = Depends(get_current_admin),
):
    updated = await auth.change_credentials(
        db,
        admin,
        name=body.name,
        email=body.email,
        old_password=body.old_password,
        new_password=body.new_password,
    )
    return {
        "message": "Admin updated successfully",
        "admin": auth.admin_to_response(updated),
    }
