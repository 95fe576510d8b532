from __future__ import annotations

from datetime import datetime
from typing import Callable

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.core.errors import ServiceError
from app.core.settings import settings
from app.db import AsyncSessionLocal, get_db
from app.models.admin import Admin
from app.services.notifications import Notifier, build_notifier
from app.services.plan_confirmation import PlanConfirmationWorkflow
from app.services.points_service import SqlUserBalanceStore, UserBalanceStore
from app.services.security import admin_id_from_token
from app.services.telegram_auth import TelegramUser, validate_init_data
from app.services.transaction_ledger import (
    InMemoryTransactionLedger,
    SqlTransactionLedger,
    TransactionLedger,
)

_memory_ledger = InMemoryTransactionLedger()


def http_error(e: ServiceError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.code)


def get_clock() -> Callable[[], datetime]:
    return datetime.utcnow


def get_balance_store() -> UserBalanceStore:
    return SqlUserBalanceStore(AsyncSessionLocal)


def get_ledger() -> TransactionLedger:
    if settings.TRANSACTION_STORE == "memory":
        return _memory_ledger
    return SqlTransactionLedger(AsyncSessionLocal)


def get_notifier() -> Notifier:
    return build_notifier()


def get_workflow(
    ledger: TransactionLedger = Depends(get_ledger),
    store: UserBalanceStore = Depends(get_balance_store),
    notifier: Notifier = Depends(get_notifier),
) -> PlanConfirmationWorkflow:
    return PlanConfirmationWorkflow(ledger, store, notifier)


def telegram_user_from(init_data: str | None) -> TelegramUser:
    """Validate WebApp ``initData``; 400 when malformed, 403 when the signature is bad."""
    try:
        return validate_init_data(
            init_data or "",
            settings.BOT_TOKEN,
            max_age=settings.INIT_DATA_MAX_AGE_SECONDS,
        )
    except ServiceError as e:
        raise http_error(e)


async def get_optional_admin(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Admin | None:
    admin_id = admin_id_from_token(request.cookies.get(settings.ADMIN_COOKIE_NAME))
    if admin_id is None:
        return None
    admin = (await db.execute(select(Admin).where(Admin.id == admin_id))).scalar_one_or_none()
    if not admin or not admin.is_active:
        return None
    return admin


async def get_current_admin(admin: Admin | None = Depends(get_optional_admin)) -> Admin:
    if admin is None:
        raise HTTPException(status_code=401, detail="admin_not_logged_in")
    return admin


def is_admin_telegram_user(user: TelegramUser) -> bool:
    return bool(settings.ADMIN_TELEGRAM_ID) and user.id == settings.ADMIN_TELEGRAM_ID
