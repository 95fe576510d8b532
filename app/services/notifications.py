from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from app.core.errors import DownstreamUnavailable
from app.core.settings import settings
from app.services.transaction_ledger import PlanTransaction

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def send(self, chat_id: str, text: str, reply_markup: dict[str, Any] | None = None) -> bool:
        """Best effort; never raises. Returns whether the message was accepted."""
        ...

    async def answer_callback(self, callback_query_id: str, text: str) -> bool: ...


class TelegramNotifier:
    """Sends messages through the Telegram Bot API ``sendMessage`` method."""

    def __init__(
        self,
        bot_token: str,
        api_base: str = "https://api.telegram.org",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.bot_token = bot_token
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def _post(self, method: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.api_base}/bot{self.bot_token}/{method}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(url, json=payload)
        except httpx.HTTPError as e:
            raise DownstreamUnavailable(f"telegram {method} failed: {e.__class__.__name__}") from e
        if resp.status_code != 200:
            raise DownstreamUnavailable(f"telegram {method} returned {resp.status_code}: {resp.text[:200]}")
        try:
            return resp.json()
        except ValueError as e:
            # e.g. a gateway error page served with 200
            raise DownstreamUnavailable(f"telegram {method} returned non-JSON body: {resp.text[:200]}") from e

    async def send(self, chat_id: str, text: str, reply_markup: dict[str, Any] | None = None) -> bool:
        if not self.bot_token:
            logger.warning("BOT_TOKEN not configured, dropping message to %s", chat_id)
            return False
        payload: dict[str, Any] = {"chat_id": chat_id, "text": text, "parse_mode": "Markdown"}
        if reply_markup:
            payload["reply_markup"] = reply_markup
        try:
            await self._post("sendMessage", payload)
        except DownstreamUnavailable as e:
            logger.warning("Notification to %s not delivered: %s", chat_id, e)
            return False
        return True

    async def answer_callback(self, callback_query_id: str, text: str) -> bool:
        if not self.bot_token:
            return False
        try:
            await self._post("answerCallbackQuery", {"callback_query_id": callback_query_id, "text": text})
        except DownstreamUnavailable as e:
            logger.warning("answerCallbackQuery failed: %s", e)
            return False
        return True


async def notify_quietly(
    notifier: Notifier, chat_id: str, text: str, reply_markup: dict[str, Any] | None = None
) -> bool:
    """Send through any ``Notifier`` after a committed state change; never raises."""
    try:
        return await notifier.send(chat_id, text, reply_markup=reply_markup)
    except Exception:
        logger.warning("Notifier failed sending to %s", chat_id, exc_info=True)
        return False


def build_notifier() -> TelegramNotifier:
    return TelegramNotifier(
        settings.BOT_TOKEN,
        api_base=settings.TELEGRAM_API_BASE,
        timeout=settings.NOTIFY_TIMEOUT_SECONDS,
    )


# ---------------- messages ----------------

def confirm_callback_data(transaction_id: str) -> str:
    return f"confirm_{transaction_id}"


def reject_callback_data(transaction_id: str) -> str:
    return f"reject_{transaction_id}"


def admin_purchase_request(tx: PlanTransaction, deposit_address: str) -> tuple[str, dict[str, Any]]:
    text = (
        "🔔 *New Mining Plan Purchase Request*\n\n"
        f"👤 *User:* {tx.user_name}\n"
        f"🆔 *Telegram ID:* {tx.telegram_id}\n"
        f"💰 *Amount:* {tx.plan_amount} USDT\n"
        f"🎁 *USDT to Receive:* {tx.points_to_receive}\n"
        f"💳 *Deposit Address:* `{deposit_address}`\n"
        f"🔑 *Transaction ID:* {tx.id}\n"
        + (f"📝 *Wallet Address:* `{tx.transaction_hash}`\n" if tx.transaction_hash else "")
        + "\n⚠️ *Please verify the payment was sent to the deposit address before confirming.*\n"
    )
    markup = {
        "inline_keyboard": [[
            {"text": "✅ Confirm Transaction", "callback_data": confirm_callback_data(tx.id)},
            {"text": "❌ Reject Transaction", "callback_data": reject_callback_data(tx.id)},
        ]]
    }
    return text, markup


def user_deposit_instructions(tx: PlanTransaction, deposit_address: str) -> str:
    return (
        "💰 *Mining Plan Purchase Request*\n\n"
        f"You have requested to purchase a mining plan for *{tx.plan_amount} USDT*.\n\n"
        "📋 *Deposit Instructions:*\n"
        f"Send exactly *{tx.plan_amount} USDT* to:\n"
        f"`{deposit_address}`\n\n"
        f"🎁 *You will receive:* {tx.points_to_receive} USDT\n\n"
        "⏳ Please wait for admin confirmation after making the deposit.\n"
        "You will be notified once your USDT are added to your account."
    )


def user_plan_confirmed(tx: PlanTransaction) -> str:
    return (
        "✅ *Mining Plan Confirmed*\n\n"
        f"Your purchase of *{tx.plan_amount} USDT* has been confirmed!\n\n"
        f"💰 *USDT Added:* {tx.points_to_receive} USDT\n\n"
        "Your balance has been updated. Thank you for your purchase!"
    )


def user_plan_rejected(tx: PlanTransaction) -> str:
    return (
        "❌ *Mining Plan Rejected*\n\n"
        f"Your purchase request for *{tx.plan_amount} USDT* has been rejected.\n\n"
        "Please contact support if you believe this is an error."
    )
