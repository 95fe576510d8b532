from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.points import PointsLedger
from app.models.user import User


@dataclass(frozen=True)
class BalanceSnapshot:
    user_id: int
    telegram_id: str
    points: float
    points_balance: float
    last_points_update_timestamp: datetime
    username: str | None = None
    first_name: str | None = None


class UserBalanceStore(Protocol):
    """Persistent user balances.

    Every mutation of ``points``/``points_balance`` goes through one of the two
    write primitives below; both must be atomic at the storage layer.
    """

    async def get(self, telegram_id: str) -> BalanceSnapshot | None: ...

    async def get_or_create(
        self, telegram_id: str, username: str | None, first_name: str | None, now: datetime
    ) -> BalanceSnapshot: ...

    async def compare_and_swap_accrual(
        self, telegram_id: str, expected_timestamp: datetime, delta: float, new_timestamp: datetime
    ) -> BalanceSnapshot | None:
        """Add ``delta`` and move the timestamp, only if it still equals ``expected_timestamp``.

        Returns ``None`` when the precondition failed (or the user vanished).
        """
        ...

    async def credit(self, telegram_id: str, amount: float, ref_id: str | None = None) -> BalanceSnapshot | None:
        """Unconditional atomic add. ``None`` if the user does not exist."""
        ...


def _snapshot_columns():
    return select(
        User.id,
        User.telegram_id,
        User.points,
        User.points_balance,
        User.last_points_update_timestamp,
        User.username,
        User.first_name,
    )


async def _read(db: AsyncSession, telegram_id: str) -> BalanceSnapshot | None:
    # column select, so the identity map never hands back stale values
    row = (await db.execute(_snapshot_columns().where(User.telegram_id == telegram_id))).one_or_none()
    if row is None:
        return None
    return BalanceSnapshot(
        user_id=row.id,
        telegram_id=row.telegram_id,
        points=row.points,
        points_balance=row.points_balance,
        last_points_update_timestamp=row.last_points_update_timestamp,
        username=row.username,
        first_name=row.first_name,
    )


class SqlUserBalanceStore:
    """``UserBalanceStore`` over SQLAlchemy; each call is its own short transaction."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def get(self, telegram_id: str) -> BalanceSnapshot | None:
        async with self._session_factory() as db:
            return await _read(db, telegram_id)

    async def get_or_create(
        self, telegram_id: str, username: str | None, first_name: str | None, now: datetime
    ) -> BalanceSnapshot:
        existing = await self.get(telegram_id)
        if existing:
            return existing
        try:
            async with self._session_factory() as db, db.begin():
                db.add(User(
                    telegram_id=telegram_id,
                    username=username,
                    first_name=first_name,
                    points=0,
                    points_balance=0,
                    last_points_update_timestamp=now,
                    created_at=now,
                ))
        except IntegrityError:
            # created concurrently by another request
            pass
        return await self.get(telegram_id)

    async def compare_and_swap_accrual(
        self, telegram_id: str, expected_timestamp: datetime, delta: float, new_timestamp: datetime
    ) -> BalanceSnapshot | None:
        async with self._session_factory() as db, db.begin():
            result = await db.execute(
                update(User)
                .where(
                    User.telegram_id == telegram_id,
                    User.last_points_update_timestamp == expected_timestamp,
                )
                .values(
                    points=User.points + delta,
                    points_balance=User.points_balance + delta,
                    last_points_update_timestamp=new_timestamp,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return None
            snapshot = await _read(db, telegram_id)
            db.add(PointsLedger(user_id=snapshot.user_id, change=delta, reason="mining", created_at=new_timestamp))
            return snapshot

    async def credit(self, telegram_id: str, amount: float, ref_id: str | None = None) -> BalanceSnapshot | None:
        async with self._session_factory() as db, db.begin():
            result = await db.execute(
                update(User)
                .where(User.telegram_id == telegram_id)
                .values(
                    points=User.points + amount,
                    points_balance=User.points_balance + amount,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return None
            snapshot = await _read(db, telegram_id)
            db.add(PointsLedger(
                user_id=snapshot.user_id,
                change=amount,
                reason="mining_plan",
                ref_type="mining_plan_tx" if ref_id else None,
                ref_id=ref_id,
            ))
            return snapshot
