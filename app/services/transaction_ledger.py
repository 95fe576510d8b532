from __future__ import annotations

import asyncio
import secrets
import string
import time
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from app.core.errors import AlreadyProcessed, PendingTransactionExists, TransactionNotFound
from app.models.mining import MiningPlanTransaction

PENDING = "pending"
CONFIRMED = "confirmed"
REJECTED = "rejected"

# plan amount (USDT) -> amount credited on confirmation
PLAN_REWARDS: dict[int, float] = {
    15: 16.50,
    25: 27.50,
    50: 55,
    100: 110,
    250: 275,
    500: 550,
}
VALID_PLAN_AMOUNTS = tuple(PLAN_REWARDS)

_ID_ALPHABET = string.digits + string.ascii_lowercase


def points_for_plan(plan_amount: int) -> float:
    return PLAN_REWARDS.get(plan_amount, plan_amount)


def new_transaction_id() -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(7))
    return f"tx_{int(time.time() * 1000)}_{suffix}"


@dataclass(frozen=True)
class PlanTransaction:
    id: str
    telegram_id: str
    user_name: str
    plan_amount: int
    points_to_receive: float
    status: str
    created_at: datetime
    transaction_hash: str | None = None
    confirmed_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == PENDING

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "telegramId": self.telegram_id,
            "userName": self.user_name,
            "planAmount": self.plan_amount,
            "pointsToReceive": self.points_to_receive,
            "transactionHash": self.transaction_hash,
            "status": self.status,
            "createdAt": self.created_at.isoformat(),
            "confirmedAt": self.confirmed_at.isoformat() if self.confirmed_at else None,
        }


class TransactionLedger(Protocol):
    async def create_transaction(
        self, telegram_id: str, user_name: str, plan_amount: int, transaction_hash: str | None = None
    ) -> PlanTransaction: ...

    async def get_transactions_by_user(self, telegram_id: str) -> list[PlanTransaction]: ...

    async def get_transaction_by_id(self, transaction_id: str) -> PlanTransaction | None: ...

    async def get_pending_transactions(self) -> list[PlanTransaction]: ...

    async def update_status(
        self, transaction_id: str, status: str, expected_status: str | None = None
    ) -> PlanTransaction:
        """Move a transaction to ``status``.

        Raises ``TransactionNotFound`` for unknown ids. With ``expected_status`` the
        write is conditional and raises ``AlreadyProcessed`` if the stored status
        differs at write time.
        """
        ...


def _new_record(telegram_id: str, user_name: str, plan_amount: int, transaction_hash: str | None) -> PlanTransaction:
    return PlanTransaction(
        id=new_transaction_id(),
        telegram_id=telegram_id,
        user_name=user_name,
        plan_amount=plan_amount,
        points_to_receive=points_for_plan(plan_amount),
        transaction_hash=transaction_hash,
        status=PENDING,
        created_at=datetime.utcnow(),
    )


class InMemoryTransactionLedger:
    """Volatile, process-local ledger. Lost on restart."""

    def __init__(self):
        self._transactions: dict[str, PlanTransaction] = {}
        self._lock = asyncio.Lock()

    async def create_transaction(
        self, telegram_id: str, user_name: str, plan_amount: int, transaction_hash: str | None = None
    ) -> PlanTransaction:
        async with self._lock:
            if any(tx.telegram_id == telegram_id and tx.is_pending for tx in self._transactions.values()):
                raise PendingTransactionExists()
            tx = _new_record(telegram_id, user_name, plan_amount, transaction_hash)
            self._transactions[tx.id] = tx
            return tx

    async def get_transactions_by_user(self, telegram_id: str) -> list[PlanTransaction]:
        return sorted(
            (tx for tx in self._transactions.values() if tx.telegram_id == telegram_id),
            key=lambda tx: tx.created_at,
        )

    async def get_transaction_by_id(self, transaction_id: str) -> PlanTransaction | None:
        return self._transactions.get(transaction_id)

    async def get_pending_transactions(self) -> list[PlanTransaction]:
        return sorted(
            (tx for tx in self._transactions.values() if tx.is_pending),
            key=lambda tx: tx.created_at,
        )

    async def update_status(
        self, transaction_id: str, status: str, expected_status: str | None = None
    ) -> PlanTransaction:
        async with self._lock:
            tx = self._transactions.get(transaction_id)
            if tx is None:
                raise TransactionNotFound()
            if expected_status is not None and tx.status != expected_status:
                raise AlreadyProcessed(tx.status)
            tx = replace(tx, status=status, confirmed_at=datetime.utcnow())
            self._transactions[transaction_id] = tx
            return tx


def _to_record(row: MiningPlanTransaction) -> PlanTransaction:
    return PlanTransaction(
        id=row.id,
        telegram_id=row.telegram_id,
        user_name=row.user_name,
        plan_amount=row.plan_amount,
        points_to_receive=row.points_to_receive,
        transaction_hash=row.transaction_hash,
        status=row.status,
        created_at=row.created_at,
        confirmed_at=row.confirmed_at,
    )


class SqlTransactionLedger:
    """Durable ledger on the ``mining_plan_transactions`` table."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def create_transaction(
        self, telegram_id: str, user_name: str, plan_amount: int, transaction_hash: str | None = None
    ) -> PlanTransaction:
        tx = _new_record(telegram_id, user_name, plan_amount, transaction_hash)
        try:
            async with self._session_factory() as db, db.begin():
                db.add(MiningPlanTransaction(
                    id=tx.id,
                    telegram_id=tx.telegram_id,
                    user_name=tx.user_name,
                    plan_amount=tx.plan_amount,
                    points_to_receive=tx.points_to_receive,
                    transaction_hash=tx.transaction_hash,
                    status=tx.status,
                    created_at=tx.created_at,
                ))
        except IntegrityError as e:
            # partial unique index: one pending transaction per user
            raise PendingTransactionExists() from e
        return tx

    async def _select(self, *criteria) -> list[PlanTransaction]:
        async with self._session_factory() as db:
            rows = (await db.execute(
                select(MiningPlanTransaction)
                .where(*criteria)
                .order_by(MiningPlanTransaction.created_at)
            )).scalars().all()
            return [_to_record(r) for r in rows]

    async def get_transactions_by_user(self, telegram_id: str) -> list[PlanTransaction]:
        return await self._select(MiningPlanTransaction.telegram_id == telegram_id)

    async def get_transaction_by_id(self, transaction_id: str) -> PlanTransaction | None:
        found = await self._select(MiningPlanTransaction.id == transaction_id)
        return found[0] if found else None

    async def get_pending_transactions(self) -> list[PlanTransaction]:
        return await self._select(MiningPlanTransaction.status == PENDING)

    async def update_status(
        self, transaction_id: str, status: str, expected_status: str | None = None
    ) -> PlanTransaction:
        criteria = [MiningPlanTransaction.id == transaction_id]
        if expected_status is not None:
            criteria.append(MiningPlanTransaction.status == expected_status)

        async with self._session_factory() as db, db.begin():
            result = await db.execute(
                update(MiningPlanTransaction)
                .where(*criteria)
                .values(status=status, confirmed_at=datetime.utcnow())
                .execution_options(synchronize_session=False)
            )
            row = (await db.execute(
                select(MiningPlanTransaction).where(MiningPlanTransaction.id == transaction_id)
            )).scalar_one_or_none()
            if row is None:
                raise TransactionNotFound()
            if result.rowcount != 1:
                raise AlreadyProcessed(row.status)
            return _to_record(row)
