from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.core.settings import settings
from app.db import get_db
from app.deps import get_current_admin
from app.models.admin import Admin
from app.services.security import verify_password, create_admin_token

router = APIRouter(prefix="/api/admin", tags=["admin"])


class AdminLoginIn(BaseModel):
    username: str
    password: str


@router.post("/login")
async def admin_login(payload: AdminLoginIn, response: Response, db: AsyncSession = Depends(get_db)):
    admin = (await db.execute(select(Admin).where(Admin.username == payload.username.strip()))).scalar_one_or_none()
    if not admin or not admin.is_active:
        raise HTTPException(status_code=400, detail="invalid_credentials")
    if not verify_password(payload.password, admin.password_hash):
        raise HTTPException(status_code=400, detail="invalid_credentials")
    response.set_cookie(settings.ADMIN_COOKIE_NAME, create_admin_token(admin.id), httponly=True, samesite="lax")
    return {"ok": True}


@router.post("/logout")
async def admin_logout(response: Response):
    response.delete_cookie(settings.ADMIN_COOKIE_NAME)
    return {"ok": True}


@router.get("/me")
async def admin_me(admin: Admin = Depends(get_current_admin)):
    return {"id": admin.id, "username": admin.username}
