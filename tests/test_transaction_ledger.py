import asyncio
import re

import pytest
import pytest_asyncio

from app.core.errors import AlreadyProcessed, PendingTransactionExists, TransactionNotFound
from app.services.transaction_ledger import (
    InMemoryTransactionLedger,
    PLAN_REWARDS,
    SqlTransactionLedger,
    new_transaction_id,
    points_for_plan,
)


@pytest_asyncio.fixture(params=["memory", "sql"])
async def ledger(request, session_factory):
    if request.param == "memory":
        return InMemoryTransactionLedger()
    return SqlTransactionLedger(session_factory)


def test_tier_table():
    assert points_for_plan(15) == 16.5
    assert points_for_plan(100) == 110
    assert points_for_plan(9999) == 9999
    assert set(PLAN_REWARDS) == {15, 25, 50, 100, 250, 500}


def test_ids_are_unique_and_well_formed():
    ids = {new_transaction_id() for _ in range(500)}
    assert len(ids) == 500
    assert all(re.fullmatch(r"tx_\d+_[0-9a-z]{7}", i) for i in ids)


@pytest.mark.asyncio
async def test_create_and_lookup(ledger):
    tx = await ledger.create_transaction("1", "Alice", 15, "TWalletAddr")
    assert tx.status == "pending"
    assert tx.points_to_receive == 16.5
    assert tx.confirmed_at is None

    assert await ledger.get_transaction_by_id(tx.id) == tx
    assert await ledger.get_transaction_by_id("tx_0_missing") is None
    assert await ledger.get_transactions_by_user("1") == [tx]
    assert await ledger.get_transactions_by_user("2") == []


@pytest.mark.asyncio
async def test_unlisted_tier_falls_back_to_amount(ledger):
    tx = await ledger.create_transaction("1", "Alice", 9999)
    assert tx.points_to_receive == 9999
    assert tx.transaction_hash is None


@pytest.mark.asyncio
async def test_one_pending_per_user(ledger):
    first = await ledger.create_transaction("1", "Alice", 25)
    with pytest.raises(PendingTransactionExists):
        await ledger.create_transaction("1", "Alice", 50)

    # other users are independent
    await ledger.create_transaction("2", "Bob", 50)

    await ledger.update_status(first.id, "rejected", expected_status="pending")
    second = await ledger.create_transaction("1", "Alice", 50)
    assert [t.id for t in await ledger.get_transactions_by_user("1")] == [first.id, second.id]


@pytest.mark.asyncio
async def test_concurrent_creates_admit_one_pending(ledger):
    results = await asyncio.gather(
        *(ledger.create_transaction("1", "Alice", 15) for _ in range(4)),
        return_exceptions=True,
    )
    created = [r for r in results if not isinstance(r, Exception)]
    assert len(created) == 1
    assert all(isinstance(r, PendingTransactionExists) for r in results if isinstance(r, Exception))


@pytest.mark.asyncio
async def test_update_status(ledger):
    tx = await ledger.create_transaction("1", "Alice", 100)
    done = await ledger.update_status(tx.id, "confirmed")
    assert done.status == "confirmed"
    assert done.confirmed_at is not None
    assert (await ledger.get_transaction_by_id(tx.id)).status == "confirmed"
    assert await ledger.get_pending_transactions() == []


@pytest.mark.asyncio
async def test_conditional_update_refuses_terminal_transaction(ledger):
    tx = await ledger.create_transaction("1", "Alice", 100)
    await ledger.update_status(tx.id, "confirmed", expected_status="pending")

    with pytest.raises(AlreadyProcessed) as excinfo:
        await ledger.update_status(tx.id, "rejected", expected_status="pending")
    assert excinfo.value.current_status == "confirmed"
    assert (await ledger.get_transaction_by_id(tx.id)).status == "confirmed"


@pytest.mark.asyncio
async def test_update_unknown_transaction(ledger):
    with pytest.raises(TransactionNotFound):
        await ledger.update_status("tx_0_missing", "confirmed")


@pytest.mark.asyncio
async def test_pending_listing(ledger):
    a = await ledger.create_transaction("1", "Alice", 15)
    b = await ledger.create_transaction("2", "Bob", 25)
    await ledger.update_status(a.id, "confirmed")
    assert [t.id for t in await ledger.get_pending_transactions()] == [b.id]
    assert b.as_dict()["pointsToReceive"] == 27.5
