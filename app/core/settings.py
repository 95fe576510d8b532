from __future__ import annotations

from pathlib import Path
from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent.parent / ".env"
if ENV_PATH.exists():
    load_dotenv(ENV_PATH)

class Settings(BaseSettings):
    # --- App ---
    APP_NAME: str = "Tap Miner"
    LOG_LEVEL: str = "INFO"

    # --- Admin auth ---
    JWT_SECRET: str = "change-me"
    JWT_ALG: str = "HS256"
    JWT_EXPIRE_DAYS: int = 14
    ADMIN_COOKIE_NAME: str = "tapminer_admin_token"

    # --- Database ---
    DATABASE_URL: str = "sqlite+aiosqlite:///./tapminer.db"

    # --- Admin bootstrap ---
    DEFAULT_ADMIN_USERNAME: str = "admin"
    DEFAULT_ADMIN_PASSWORD: str = "000000"

    # ================= Telegram =================
    BOT_TOKEN: str = ""
    ADMIN_TELEGRAM_ID: str = ""
    TELEGRAM_API_BASE: str = "https://api.telegram.org"
    TELEGRAM_WEBHOOK_SECRET: str = ""
    # 0 = initData never expires
    INIT_DATA_MAX_AGE_SECONDS: int = 86400
    NOTIFY_TIMEOUT_SECONDS: float = 10.0
    # ============================================

    # --- Mining ---
    ACCRUAL_INTERVAL_SECONDS: int = 300
    POINTS_PER_INTERVAL: float = 1
    ACCRUAL_MAX_ATTEMPTS: int = 3
    ACCRUAL_RETRY_DELAY_MS: int = 100

    # --- Mining plans ---
    USDT_DEPOSIT_ADDRESS: str = ""
    TRANSACTION_STORE: str = "database"  # database/memory

    model_config = SettingsConfigDict(
        env_file=ENV_PATH,
        env_file_encoding="utf-8",
        extra="ignore"
    )

settings = Settings()
