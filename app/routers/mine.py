from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from fastapi import APIRouter, Depends, HTTPException
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from app.core.errors import ServiceError
from app.deps import get_balance_store, get_clock, http_error, telegram_user_from
from app.services.game_mechanics import calculate_level_index
from app.services.mining_service import apply_accrual
from app.services.points_service import UserBalanceStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["mining"])


class InitDataIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    init_data: str | None = Field(default=None, alias="initData")


class UserIn(BaseModel):
    # the Mini App polls this endpoint with telegramInitData
    init_data: str | None = Field(
        default=None, validation_alias=AliasChoices("telegramInitData", "initData", "init_data")
    )


@router.post("/mine")
async def mine(
    payload: InitDataIn,
    store: UserBalanceStore = Depends(get_balance_store),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    tg_user = telegram_user_from(payload.init_data)
    try:
        result = await apply_accrual(store, tg_user.id, clock())
    except ServiceError as e:
        raise http_error(e)
    except Exception:
        logger.exception("Error processing mine request for %s", tg_user.id)
        raise HTTPException(status_code=500, detail="mine_failed")
    return result.as_response()


@router.post("/user")
async def current_user(
    payload: UserIn,
    store: UserBalanceStore = Depends(get_balance_store),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Fetch the caller's balance, creating the record on first visit."""
    tg_user = telegram_user_from(payload.init_data)
    user = await store.get_or_create(tg_user.id, tg_user.username, tg_user.first_name, clock())
    return {
        "telegramId": user.telegram_id,
        "username": user.username,
        "firstName": user.first_name,
        "points": user.points,
        "pointsBalance": user.points_balance,
        "levelIndex": calculate_level_index(user.points),
        "lastPointsUpdateTimestamp": user.last_points_update_timestamp.isoformat(),
    }
