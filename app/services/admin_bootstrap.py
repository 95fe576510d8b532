from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.core.settings import settings
from app.models.admin import Admin
from app.services.security import hash_password

logger = logging.getLogger(__name__)


async def ensure_default_admin(db: AsyncSession) -> None:
    username = settings.DEFAULT_ADMIN_USERNAME
    if not username:
        return
    admin = (await db.execute(select(Admin).where(Admin.username == username))).scalar_one_or_none()
    if admin:
        return
    db.add(Admin(username=username, password_hash=hash_password(settings.DEFAULT_ADMIN_PASSWORD)))
    logger.info("Created default admin %r", username)
