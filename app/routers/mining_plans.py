from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field, StrictFloat, StrictInt, field_validator

from app.core.errors import ServiceError, UserNotFound
from app.core.settings import settings
from app.deps import (
    get_current_admin,
    get_ledger,
    get_notifier,
    get_optional_admin,
    get_workflow,
    http_error,
    is_admin_telegram_user,
    telegram_user_from,
)
from app.models.admin import Admin
from app.routers.mine import InitDataIn
from app.services import notifications
from app.services.notifications import Notifier
from app.services.plan_confirmation import ACTIONS, PlanConfirmationWorkflow
from app.services.transaction_ledger import VALID_PLAN_AMOUNTS, TransactionLedger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/mining-plans", tags=["mining-plans"])


class PurchaseIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    init_data: str | None = Field(default=None, alias="initData")
    plan_amount: StrictInt | StrictFloat | None = Field(default=None, alias="planAmount")
    transaction_hash: str | None = Field(default=None, alias="transactionHash", max_length=255)

    @field_validator("plan_amount", mode="before")
    @classmethod
    def _numbers_only(cls, v):
        # "15" or true is not a tier; let the route answer invalid_plan_amount
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            return None
        return v


class ConfirmIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    transaction_id: str | None = Field(default=None, alias="transactionId")
    action: str | None = None
    admin_init_data: str | None = Field(default=None, alias="adminInitData")


@router.post("/purchase")
async def purchase(
    payload: PurchaseIn,
    ledger: TransactionLedger = Depends(get_ledger),
    notifier: Notifier = Depends(get_notifier),
):
    if not payload.init_data:
        raise HTTPException(status_code=400, detail="missing_init_data")
    if payload.plan_amount not in VALID_PLAN_AMOUNTS:
        raise HTTPException(status_code=400, detail="invalid_plan_amount")

    tg_user = telegram_user_from(payload.init_data)
    plan_amount = int(payload.plan_amount)
    transaction_hash = (payload.transaction_hash or "").strip() or None

    existing = await ledger.get_transactions_by_user(tg_user.id)
    if any(tx.is_pending for tx in existing):
        raise HTTPException(status_code=400, detail="pending_transaction_exists")

    try:
        tx = await ledger.create_transaction(tg_user.id, tg_user.display_name, plan_amount, transaction_hash)
    except ServiceError as e:
        raise http_error(e)
    logger.info("Mining plan request %s: user %s, %s USDT", tx.id, tx.telegram_id, tx.plan_amount)

    if settings.ADMIN_TELEGRAM_ID:
        text, markup = notifications.admin_purchase_request(tx, settings.USDT_DEPOSIT_ADDRESS)
        await notifications.notify_quietly(notifier, settings.ADMIN_TELEGRAM_ID, text, reply_markup=markup)
    else:
        logger.warning("ADMIN_TELEGRAM_ID not configured, admin not notified about %s", tx.id)
    await notifications.notify_quietly(
        notifier, tx.telegram_id, notifications.user_deposit_instructions(tx, settings.USDT_DEPOSIT_ADDRESS)
    )

    return {
        "success": True,
        "transactionId": tx.id,
        "pointsToReceive": tx.points_to_receive,
        "message": "Transaction submitted successfully. Waiting for admin confirmation.",
    }


@router.post("/history")
async def history(payload: InitDataIn, ledger: TransactionLedger = Depends(get_ledger)):
    tg_user = telegram_user_from(payload.init_data)
    return [tx.as_dict() for tx in await ledger.get_transactions_by_user(tg_user.id)]


@router.post("/confirm")
async def confirm(
    payload: ConfirmIn,
    admin: Admin | None = Depends(get_optional_admin),
    workflow: PlanConfirmationWorkflow = Depends(get_workflow),
):
    if not payload.transaction_id or not payload.action:
        raise HTTPException(status_code=400, detail="missing_transaction_id_or_action")
    if payload.action not in ACTIONS:
        raise HTTPException(status_code=400, detail="invalid_action")

    if admin is None:
        if not payload.admin_init_data:
            raise HTTPException(status_code=401, detail="admin_not_logged_in")
        if not is_admin_telegram_user(telegram_user_from(payload.admin_init_data)):
            raise HTTPException(status_code=403, detail="not_admin")

    try:
        result = await workflow.process(payload.transaction_id, payload.action)
    except UserNotFound as e:
        # the transaction is confirmed but nothing was credited
        raise HTTPException(status_code=500, detail=e.code)
    except ServiceError as e:
        raise http_error(e)
    return result.as_response()


@router.get("/pending")
async def pending(_: Admin = Depends(get_current_admin), ledger: TransactionLedger = Depends(get_ledger)):
    return [tx.as_dict() for tx in await ledger.get_pending_transactions()]
