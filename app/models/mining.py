from __future__ import annotations

from datetime import datetime

from sqlalchemy import String, Integer, Float, DateTime, Index, text
from sqlalchemy.orm import Mapped, mapped_column

from app.db import Base


class MiningPlanTransaction(Base):
    __tablename__ = "mining_plan_transactions"
    __table_args__ = (
        # at most one pending purchase per user
        Index(
            "uq_mining_plan_pending_per_user",
            "telegram_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    telegram_id: Mapped[str] = mapped_column(String(32), index=True)
    user_name: Mapped[str] = mapped_column(String(128))

    plan_amount: Mapped[int] = mapped_column(Integer)
    points_to_receive: Mapped[float] = mapped_column(Float)
    # wallet address or chain tx id supplied by the user, never verified
    transaction_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)

    status: Mapped[str] = mapped_column(String(16), default="pending")  # pending/confirmed/rejected

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
