from __future__ import annotations

import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from urllib.parse import parse_qsl

from app.core.errors import AuthenticationError, ValidationError


@dataclass(frozen=True)
class TelegramUser:
    id: str
    username: str | None = None
    first_name: str | None = None

    @property
    def display_name(self) -> str:
        return self.first_name or self.username or "Unknown User"


def _secret_key(bot_token: str) -> bytes:
    return hmac.new(b"WebAppData", bot_token.encode(), hashlib.sha256).digest()


def data_check_string(fields: dict[str, str]) -> str:
    return "\n".join(f"{k}={fields[k]}" for k in sorted(fields))


def sign_init_data(fields: dict[str, str], bot_token: str) -> str:
    """Hash for ``fields`` the way Telegram signs WebApp ``initData``."""
    return hmac.new(_secret_key(bot_token), data_check_string(fields).encode(), hashlib.sha256).hexdigest()


def validate_init_data(
    init_data: str,
    bot_token: str,
    max_age: int = 0,
    now: float | None = None,
) -> TelegramUser:
    if not init_data:
        raise ValidationError("missing initData", code="missing_init_data")
    if not bot_token:
        raise AuthenticationError("bot token not configured")

    fields = dict(parse_qsl(init_data, keep_blank_values=True))
    received = fields.pop("hash", None)
    if not received:
        raise AuthenticationError("initData has no hash")
    if not hmac.compare_digest(sign_init_data(fields, bot_token), received):
        raise AuthenticationError("initData hash mismatch")

    if max_age:
        try:
            auth_date = int(fields.get("auth_date", "0"))
        except ValueError:
            raise AuthenticationError("bad auth_date")
        if (now if now is not None else time.time()) - auth_date > max_age:
            raise AuthenticationError("initData expired")

    try:
        user = json.loads(fields.get("user") or "{}")
    except json.JSONDecodeError:
        raise ValidationError("malformed user field", code="invalid_user_data")
    if not isinstance(user, dict) or user.get("id") in (None, ""):
        raise ValidationError("missing telegramId", code="invalid_user_data")

    return TelegramUser(
        id=str(user["id"]),
        username=user.get("username"),
        first_name=user.get("first_name"),
    )
