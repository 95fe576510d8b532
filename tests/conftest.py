import asyncio
import json
import os
import tempfile
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from urllib.parse import urlencode

_TMP = Path(tempfile.mkdtemp(prefix="tapminer-tests-"))
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP / 'app.db'}"
os.environ["BOT_TOKEN"] = "123456:TEST-TOKEN"
os.environ["ADMIN_TELEGRAM_ID"] = "999"
os.environ["INIT_DATA_MAX_AGE_SECONDS"] = "0"
os.environ["TRANSACTION_STORE"] = "database"
os.environ["TELEGRAM_WEBHOOK_SECRET"] = "hook-secret"
os.environ["DEFAULT_ADMIN_USERNAME"] = "root"
os.environ["DEFAULT_ADMIN_PASSWORD"] = "s3cret!"
os.environ["USDT_DEPOSIT_ADDRESS"] = "TTestDepositAddress"

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from app.db import create_schema, make_engine, make_session_factory  # noqa: E402
from app.services.points_service import BalanceSnapshot  # noqa: E402
from app.services.telegram_auth import sign_init_data  # noqa: E402

BOT_TOKEN = os.environ["BOT_TOKEN"]
ADMIN_ID = os.environ["ADMIN_TELEGRAM_ID"]
WEBHOOK_SECRET = os.environ["TELEGRAM_WEBHOOK_SECRET"]
T0 = datetime(2026, 1, 1, 12, 0, 0)


def make_init_data(user_id, first_name="Alice", username="alice", bot_token=BOT_TOKEN, auth_date=1_700_000_000):
    fields = {
        "auth_date": str(auth_date),
        "query_id": "AAF-test",
        "user": json.dumps({"id": int(user_id), "first_name": first_name, "username": username}),
    }
    fields["hash"] = sign_init_data(fields, bot_token)
    return urlencode(fields)


class FakeNotifier:
    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []
        self.answers = []

    async def send(self, chat_id, text, reply_markup=None):
        self.sent.append({"chat_id": str(chat_id), "text": text, "reply_markup": reply_markup})
        return not self.fail

    async def answer_callback(self, callback_query_id, text):
        self.answers.append((callback_query_id, text))
        return not self.fail

    def sent_to(self, chat_id):
        return [m for m in self.sent if m["chat_id"] == str(chat_id)]


class FakeBalanceStore:
    """In-memory UserBalanceStore; writes are atomic under a lock."""

    def __init__(self):
        self.users = {}
        self.lock = asyncio.Lock()
        self.cas_calls = 0
        self.credits = []
        # called with the telegram id right before each CAS, to simulate a racing writer
        self.before_cas = None

    def seed(self, telegram_id, points=0, points_balance=None, ts=T0):
        self.users[telegram_id] = BalanceSnapshot(
            user_id=len(self.users) + 1,
            telegram_id=telegram_id,
            points=points,
            points_balance=points if points_balance is None else points_balance,
            last_points_update_timestamp=ts,
        )
        return self.users[telegram_id]

    async def get(self, telegram_id):
        await asyncio.sleep(0)
        return self.users.get(telegram_id)

    async def get_or_create(self, telegram_id, username, first_name, now):
        async with self.lock:
            if telegram_id not in self.users:
                self.seed(telegram_id, ts=now)
                self.users[telegram_id] = replace(self.users[telegram_id], username=username, first_name=first_name)
            return self.users[telegram_id]

    async def compare_and_swap_accrual(self, telegram_id, expected_timestamp, delta, new_timestamp):
        self.cas_calls += 1
        if self.before_cas:
            await self.before_cas(telegram_id)
        async with self.lock:
            user = self.users.get(telegram_id)
            if user is None or user.last_points_update_timestamp != expected_timestamp:
                return None
            user = replace(
                user,
                points=user.points + delta,
                points_balance=user.points_balance + delta,
                last_points_update_timestamp=new_timestamp,
            )
            self.users[telegram_id] = user
            return user

    async def credit(self, telegram_id, amount, ref_id=None):
        await asyncio.sleep(0)
        async with self.lock:
            user = self.users.get(telegram_id)
            if user is None:
                return None
            user = replace(user, points=user.points + amount, points_balance=user.points_balance + amount)
            self.users[telegram_id] = user
            self.credits.append((telegram_id, amount, ref_id))
            return user


async def no_sleep(_seconds):
    return None


@pytest.fixture()
def notifier():
    return FakeNotifier()


@pytest.fixture()
def fake_store():
    return FakeBalanceStore()


@pytest_asyncio.fixture()
async def session_factory(tmp_path):
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
    await create_schema(engine)
    yield make_session_factory(engine)
    await engine.dispose()


async def _wipe_app_db():
    from app.db import Base, engine
    from app.models import all_models  # noqa: F401

    async with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            if table.name != "admins":
                await conn.execute(table.delete())


class Clock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture()
def clock():
    return Clock()


@pytest.fixture()
def client(notifier, clock):
    from app.deps import get_clock, get_notifier
    from main import app

    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_clock] = lambda: clock
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()
        asyncio.run(_wipe_app_db())
