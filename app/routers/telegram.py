"""Bot webhook: lets the admin confirm/reject purchases from the inline buttons
(or ``/confirm_<id>`` / ``/reject_<id>`` commands) of the request message.

Disabled unless ``TELEGRAM_WEBHOOK_SECRET`` is configured."""
from __future__ import annotations

import hmac
import logging
import re
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException

from app.core.errors import ServiceError
from app.core.settings import settings
from app.deps import get_notifier, get_workflow
from app.services.notifications import Notifier, notify_quietly
from app.services.plan_confirmation import PlanConfirmationWorkflow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/telegram", tags=["telegram"])

COMMAND_RE = re.compile(r"^/?(confirm|reject)_(tx_[0-9A-Za-z_]+)$")


def parse_command(data: str | None) -> tuple[str, str] | None:
    m = COMMAND_RE.match((data or "").strip())
    return (m.group(1), m.group(2)) if m else None


async def _run(workflow: PlanConfirmationWorkflow, action: str, transaction_id: str) -> str:
    try:
        result = await workflow.process(transaction_id, action)
    except ServiceError as e:
        logger.warning("Admin %s of %s failed: %s", action, transaction_id, e)
        return f"⚠️ {e}"
    return f"✅ {result.message}"


@router.post("/webhook")
async def webhook(
    update: dict[str, Any],
    x_telegram_bot_api_secret_token: str | None = Header(None),
    workflow: PlanConfirmationWorkflow = Depends(get_workflow),
    notifier: Notifier = Depends(get_notifier),
):
    # sender ids in the body are caller-controlled; only the secret header proves the update came from Telegram
    if not settings.TELEGRAM_WEBHOOK_SECRET:
        raise HTTPException(status_code=404, detail="webhook_disabled")
    if not hmac.compare_digest(x_telegram_bot_api_secret_token or "", settings.TELEGRAM_WEBHOOK_SECRET):
        raise HTTPException(status_code=401, detail="invalid_webhook_secret")

    callback = update.get("callback_query")
    if callback:
        sender = str((callback.get("from") or {}).get("id", ""))
        command = parse_command(callback.get("data"))
        if not command or not settings.ADMIN_TELEGRAM_ID or sender != settings.ADMIN_TELEGRAM_ID:
            await notifier.answer_callback(callback.get("id", ""), "Not allowed")
            return {"status": "ignored"}
        reply = await _run(workflow, *command)
        await notifier.answer_callback(callback.get("id", ""), reply[:200])
        await notify_quietly(notifier, sender, reply)
        return {"status": "processed"}

    message = update.get("message") or {}
    sender = str((message.get("from") or {}).get("id", ""))
    command = parse_command(message.get("text"))
    if command and settings.ADMIN_TELEGRAM_ID and sender == settings.ADMIN_TELEGRAM_ID:
        reply = await _run(workflow, *command)
        await notify_quietly(notifier, sender, reply)
        return {"status": "processed"}

    return {"status": "ignored"}
