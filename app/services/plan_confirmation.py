"""Admin confirmation of mining plan purchases.

``pending --confirm--> confirmed`` credits the user once; ``pending --reject-->
rejected`` credits nothing. Both end states are terminal.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from app.core.errors import AlreadyProcessed, TransactionNotFound, UserNotFound, ValidationError
from app.services.notifications import Notifier, notify_quietly, user_plan_confirmed, user_plan_rejected
from app.services.points_service import UserBalanceStore
from app.services.transaction_ledger import CONFIRMED, PENDING, REJECTED, TransactionLedger

logger = logging.getLogger(__name__)

ACTIONS = {"confirm": CONFIRMED, "reject": REJECTED}


@dataclass(frozen=True)
class ConfirmationResult:
    success: bool
    message: str
    transaction_id: str
    points_credited: float = 0

    def as_response(self) -> dict:
        return {
            "success": self.success,
            "message": self.message,
            "transactionId": self.transaction_id,
            "pointsCredited": self.points_credited,
        }


class PlanConfirmationWorkflow:
    def __init__(self, ledger: TransactionLedger, store: UserBalanceStore, notifier: Notifier):
        self.ledger = ledger
        self.store = store
        self.notifier = notifier

    async def process(self, transaction_id: str, action: str) -> ConfirmationResult:
        new_status = ACTIONS.get(action)
        if new_status is None:
            raise ValidationError(f"Invalid action: {action!r}", code="invalid_action")

        tx = await self.ledger.get_transaction_by_id(transaction_id)
        if tx is None:
            raise TransactionNotFound()
        if tx.status != PENDING:
            raise AlreadyProcessed(tx.status)

        # conditional on pending, so only one concurrent caller gets past here
        tx = await self.ledger.update_status(transaction_id, new_status, expected_status=PENDING)
        logger.info("Mining plan transaction %s %s by admin", tx.id, tx.status)

        if new_status == REJECTED:
            await notify_quietly(self.notifier, tx.telegram_id, user_plan_rejected(tx))
            return ConfirmationResult(
                success=True,
                message=f"Transaction {action}ed successfully.",
                transaction_id=tx.id,
            )

        credited = await self.store.credit(tx.telegram_id, tx.points_to_receive, ref_id=tx.id)
        if credited is None:
            # status stays confirmed; needs manual reconciliation
            logger.error("Transaction %s confirmed but user %s not found, %s USDT NOT credited",
                         tx.id, tx.telegram_id, tx.points_to_receive)
            raise UserNotFound(f"User {tx.telegram_id} not found; transaction {tx.id} left uncredited")

        await notify_quietly(self.notifier, tx.telegram_id, user_plan_confirmed(tx))
        return ConfirmationResult(
            success=True,
            message=f"Transaction {action}ed successfully. {tx.points_to_receive} USDT added to user's account.",
            transaction_id=tx.id,
            points_credited=tx.points_to_receive,
        )
