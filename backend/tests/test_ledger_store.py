"""
backend/tests/test_ledger_store.py

Purpose:
    In-memory ledger store contract: update operators, guarded writes,
    query paging and optimistic transaction retry.
"""

from __future__ import annotations

import asyncio

import pytest

from app.services.ledger_store import TransactionAborted
from app.services.memory_ledger_store import InMemoryLedgerStore, apply_update, matches


def test_apply_update_operators() -> None:
    doc = {"_id": "u1", "wallet": 10, "ids": ["a"], "nested": {"x": 1}}
    apply_update(doc, {
        "$inc": {"wallet": -4, "pnl": 2},
        "$addToSet": {"ids": {"$each": ["a", "b"]}},
        "$set": {"nested.y": 2},
    })
    assert doc == {"_id": "u1", "wallet": 6, "pnl": 2, "ids": ["a", "b"], "nested": {"x": 1, "y": 2}}

    apply_update(doc, {"$pull": {"ids": "a"}, "$unset": {"nested": ""}, "$push": {"log": 1}})
    assert doc["ids"] == ["b"]
    assert "nested" not in doc
    assert doc["log"] == [1]


def test_matches_filters() -> None:
    doc = {"status": "Won", "ids": ["t1", "t2"], "n": 5}
    assert matches(doc, {"status": {"$in": ["Won", "Lost"]}})
    assert matches(doc, {"ids": "t1"})
    assert not matches(doc, {"ids": {"$nin": ["t2", "t9"]}})
    assert matches(doc, {"ids": {"$ne": "t3"}, "n": {"$gte": 5, "$lt": 6}})
    assert matches(doc, {"missing": {"$exists": False}})
    assert matches(doc, {"$or": [{"n": 1}, {"status": "Won"}]})


@pytest.mark.asyncio
async def test_conditional_update_and_upsert() -> None:
    store = InMemoryLedgerStore()
    await store.insert("trades", {"_id": "t1", "status": "Pending"})

    assert await store.update("trades", "t1", {"$set": {"status": "Won"}}, condition={"status": "Pending"})
    assert not await store.update("trades", "t1", {"$set": {"status": "Lost"}}, condition={"status": "Pending"})
    assert (await store.get("trades", "t1"))["status"] == "Won"

    assert not await store.update("users", "u1", {"$set": {"x": 1}})
    assert await store.update("users", "u1", {"$setOnInsert": {"wallet_balance": 0.0}}, upsert=True)
    assert await store.get("users", "u1") == {"_id": "u1", "wallet_balance": 0.0}


@pytest.mark.asyncio
async def test_query_order_and_cursor() -> None:
    store = InMemoryLedgerStore()
    for idx in range(5):
        await store.insert("odds_history", {"_id": f"h{idx}", "event_id": "e1", "timestamp": idx})
    await store.insert("odds_history", {"_id": "other", "event_id": "e2", "timestamp": 0})

    first = await store.query("odds_history", {"event_id": "e1"}, order_by=("timestamp", 1), limit=2)
    rest = await store.query(
        "odds_history", {"event_id": "e1"}, order_by=("timestamp", 1), start_after=first[-1]["_id"],
    )
    newest = await store.query("odds_history", {"event_id": "e1"}, order_by=("timestamp", -1), limit=1)

    assert [r["_id"] for r in first] == ["h0", "h1"]
    assert [r["_id"] for r in rest] == ["h2", "h3", "h4"]
    assert newest[0]["_id"] == "h4"


@pytest.mark.asyncio
async def test_transaction_reads_own_writes_and_rolls_back_on_error() -> None:
    store = InMemoryLedgerStore()
    await store.insert("users", {"_id": "u1", "wallet_balance": 10})

    async def failing(session):
        await store.update("users", "u1", {"$inc": {"wallet_balance": -5}}, session=session)
        assert (await store.get("users", "u1", session=session))["wallet_balance"] == 5
        raise ValueError("boom")

    with pytest.raises(ValueError):
        await store.run_transaction(failing)
    assert (await store.get("users", "u1"))["wallet_balance"] == 10


@pytest.mark.asyncio
async def test_conflicting_transactions_are_retried() -> None:
    store = InMemoryLedgerStore(max_attempts=20)
    await store.insert("counters", {"_id": "c", "value": 0})

    async def increment(session):
        doc = await store.get("counters", "c", session=session)
        await asyncio.sleep(0)
        await store.update("counters", "c", {"$set": {"value": doc["value"] + 1}}, session=session)

    await asyncio.gather(*(store.run_transaction(increment) for _ in range(10)))

    assert (await store.get("counters", "c"))["value"] == 10
    assert store.conflicts > 0


@pytest.mark.asyncio
async def test_retry_budget_exhausted_raises_aborted() -> None:
    store = InMemoryLedgerStore(max_attempts=3)
    await store.insert("counters", {"_id": "c", "value": 0})

    async def always_conflicts(session):
        await store.get("counters", "c", session=session)
        # a non-transactional writer sneaks in before every commit
        await store.update("counters", "c", {"$inc": {"value": 1}})

    with pytest.raises(TransactionAborted) as exc_info:
        await store.run_transaction(always_conflicts)
    assert exc_info.value.attempts == 3
