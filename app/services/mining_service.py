"""Mining accrual: the time-gated passive income applied to a user's balance.

The user's ``last_points_update_timestamp`` is the optimistic-lock version. An
accrual only lands if the timestamp read at the start of the attempt is still
the stored one; a loser re-reads, which normally turns into a cooldown answer.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable

from app.core.errors import ConcurrencyExhausted, UserNotFound
from app.core.settings import settings
from app.services.game_mechanics import calculate_level_index
from app.services.points_service import UserBalanceStore

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class AccrualPolicy:
    interval: timedelta = timedelta(seconds=settings.ACCRUAL_INTERVAL_SECONDS)
    points_per_interval: float = settings.POINTS_PER_INTERVAL
    max_attempts: int = settings.ACCRUAL_MAX_ATTEMPTS
    retry_delay: float = settings.ACCRUAL_RETRY_DELAY_MS / 1000

    def backoff(self, attempt: int) -> float:
        return self.retry_delay * (2 ** attempt)


@dataclass(frozen=True)
class AccrualResult:
    applied: bool
    points_added: float
    points: float
    points_balance: float
    last_points_update_timestamp: datetime
    time_remaining_ms: int | None = None
    new_level_index: int | None = None

    def as_response(self) -> dict:
        body = {
            "success": True,
            "applied": self.applied,
            "pointsAdded": self.points_added,
            "balance": self.points_balance,
            "points": self.points,
        }
        if self.applied:
            body["message"] = "Points mined successfully"
            body["newLevelIndex"] = self.new_level_index
        else:
            body["message"] = "Mining in progress"
            body["timeRemaining"] = self.time_remaining_ms
        return body


def _millis(delta: timedelta) -> int:
    return int(delta / timedelta(milliseconds=1))


async def apply_accrual(
    store: UserBalanceStore,
    telegram_id: str,
    now: datetime,
    policy: AccrualPolicy | None = None,
    sleep: Sleep = asyncio.sleep,
) -> AccrualResult:
    policy = policy or AccrualPolicy()

    for attempt in range(1, policy.max_attempts + 1):
        user = await store.get(telegram_id)
        if user is None:
            raise UserNotFound()

        elapsed = now - user.last_points_update_timestamp
        if elapsed < policy.interval:
            return AccrualResult(
                applied=False,
                points_added=0,
                points=user.points,
                points_balance=user.points_balance,
                last_points_update_timestamp=user.last_points_update_timestamp,
                time_remaining_ms=_millis(policy.interval - elapsed),
            )

        updated = await store.compare_and_swap_accrual(
            telegram_id,
            expected_timestamp=user.last_points_update_timestamp,
            delta=policy.points_per_interval,
            new_timestamp=now,
        )
        if updated is not None:
            return AccrualResult(
                applied=True,
                points_added=policy.points_per_interval,
                points=updated.points,
                points_balance=updated.points_balance,
                last_points_update_timestamp=updated.last_points_update_timestamp,
                new_level_index=calculate_level_index(updated.points),
            )

        logger.warning("Mining accrual lost optimistic lock for user %s (attempt %d/%d)",
                       telegram_id, attempt, policy.max_attempts)
        if attempt < policy.max_attempts:
            await sleep(policy.backoff(attempt))

    logger.error("Mining accrual retries exhausted for user %s", telegram_id)
    raise ConcurrencyExhausted("Max retries reached for optimistic locking")
