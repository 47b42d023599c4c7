"""
backend/tests/test_mongo_ledger_store.py

Purpose:
    MongoLedgerStore against fake motor client/session/collection objects:
    transaction retry on error labels, retry budget, bulk writes and the
    start_after paging filter.
"""

from __future__ import annotations

from types import SimpleNamespace

import pytest
from pymongo import UpdateOne
from pymongo.errors import PyMongoError

from app.services.ledger_store import MongoLedgerStore, TransactionAborted, retry_delay


def _transient(message: str = "write conflict") -> PyMongoError:
    return PyMongoError(message, error_labels=["TransientTransactionError"])


class _Session:
    def __init__(self, commit_errors=()):
        self.in_transaction = False
        self.started = 0
        self.commits = 0
        self.aborts = 0
        self._commit_errors = list(commit_errors)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *_exc):
        return False

    def start_transaction(self):
        self.in_transaction = True
        self.started += 1

    async def commit_transaction(self):
        if self._commit_errors:
            raise self._commit_errors.pop(0)
        self.in_transaction = False
        self.commits += 1

    async def abort_transaction(self):
        self.in_transaction = False
        self.aborts += 1


class _Client:
    def __init__(self, session: _Session):
        self.session = session

    async def start_session(self):
        return self.session


class _Cursor:
    def __init__(self, docs):
        self._docs = list(docs)
        self.sort_spec = None
        self.limit_value = None

    def sort(self, spec):
        self.sort_spec = spec
        return self

    def limit(self, value):
        self.limit_value = value
        return self

    async def to_list(self, length=None):
        return self._docs if length is None else self._docs[:length]


class _Collection:
    def __init__(self, docs=None, matched: int = 0):
        self.docs = {doc["_id"]: dict(doc) for doc in (docs or [])}
        self.matched = matched
        self.last_query = None
        self.last_cursor = None
        self.bulk_calls = []
        self.update_calls = []

    def find(self, query, session=None):
        self.last_query = query
        self.last_cursor = _Cursor(self.docs.values())
        return self.last_cursor

    async def find_one(self, query, _projection=None, session=None):
        doc = self.docs.get(query.get("_id"))
        return dict(doc) if doc is not None else None

    async def update_one(self, query, update, upsert=False, session=None):
        self.update_calls.append((query, update, upsert))
        return SimpleNamespace(matched_count=self.matched, upserted_id=None)

    async def bulk_write(self, ops, ordered=True):
        self.bulk_calls.append((ops, ordered))
        return SimpleNamespace(matched_count=self.matched)


class _Database(dict):
    def __missing__(self, name):
        coll = _Collection()
        self[name] = coll
        return coll


def _store(session=None, db=None, **kwargs) -> MongoLedgerStore:
    params = {"max_attempts": 5, "retry_base_delay": 0.0}
    params.update(kwargs)
    return MongoLedgerStore(_Client(session or _Session()), db if db is not None else _Database(), **params)


@pytest.mark.asyncio
async def test_transient_transaction_error_is_retried() -> None:
    session = _Session()
    store = _store(session)
    calls = 0

    async def txn(sess):
        nonlocal calls
        calls += 1
        assert sess is session
        if calls < 3:
            raise _transient()
        return "committed"

    assert await store.run_transaction(txn) == "committed"
    assert calls == 3
    assert (session.started, session.aborts, session.commits) == (3, 2, 1)


@pytest.mark.asyncio
async def test_retry_budget_exhausted_raises_aborted() -> None:
    session = _Session()
    store = _store(session, max_attempts=3)
    calls = 0

    async def txn(_sess):
        nonlocal calls
        calls += 1
        raise _transient()

    with pytest.raises(TransactionAborted) as exc_info:
        await store.run_transaction(txn)

    assert exc_info.value.attempts == 3
    assert calls == 3
    assert session.aborts == 3
    assert session.commits == 0


@pytest.mark.asyncio
async def test_unlabelled_errors_abort_without_retry() -> None:
    session = _Session()
    store = _store(session)
    calls = 0

    async def duplicate_key(_sess):
        nonlocal calls
        calls += 1
        raise PyMongoError("E11000 duplicate key")

    async def domain_error(_sess):
        raise ValueError("insufficient balance")

    with pytest.raises(PyMongoError):
        await store.run_transaction(duplicate_key)
    with pytest.raises(ValueError):
        await store.run_transaction(domain_error)

    assert calls == 1
    assert session.aborts == 2
    assert session.commits == 0


@pytest.mark.asyncio
async def test_unknown_commit_result_retries_commit_only() -> None:
    session = _Session(commit_errors=[
        PyMongoError("network blip", error_labels=["UnknownTransactionCommitResult"]),
        PyMongoError("network blip", error_labels=["UnknownTransactionCommitResult"]),
    ])
    store = _store(session)
    calls = 0

    async def txn(_sess):
        nonlocal calls
        calls += 1
        return calls

    assert await store.run_transaction(txn) == 1
    assert session.started == 1
    assert session.commits == 1
    assert session.aborts == 0


@pytest.mark.asyncio
async def test_bulk_update_is_unordered_and_returns_matched_count() -> None:
    db = _Database(trades=_Collection(matched=1))
    store = _store(db=db)

    matched = await store.bulk_update("trades", [
        ("t1", {"$set": {"delta_applied": True}}, None),
        ("t2", {"$set": {"status": "Won"}}, {"status": "Pending", "user_id": "u1"}),
    ])

    assert matched == 1
    ops, ordered = db["trades"].bulk_calls[0]
    assert ordered is False
    assert ops == [
        UpdateOne({"_id": "t1"}, {"$set": {"delta_applied": True}}),
        UpdateOne({"_id": "t2", "status": "Pending", "user_id": "u1"}, {"$set": {"status": "Won"}}),
    ]
    assert await store.bulk_update("trades", []) == 0
    assert len(db["trades"].bulk_calls) == 1


@pytest.mark.asyncio
async def test_conditional_update_reports_no_match() -> None:
    db = _Database(trades=_Collection(matched=0))
    store = _store(db=db)

    ok = await store.update("trades", "t1", {"$set": {"for_sale": True}}, condition={"status": "Pending"})

    assert ok is False
    assert db["trades"].update_calls == [
        ({"_id": "t1", "status": "Pending"}, {"$set": {"for_sale": True}}, False),
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize(("direction", "op"), [(1, "$gt"), (-1, "$lt")])
async def test_query_start_after_builds_anchor_filter(direction, op) -> None:
    db = _Database(odds_history=_Collection([{"_id": "h2", "event_id": "e1", "timestamp": 5}]))
    store = _store(db=db)

    await store.query(
        "odds_history", {"event_id": "e1"}, order_by=("timestamp", direction), limit=2, start_after="h2",
    )

    coll = db["odds_history"]
    assert coll.last_query == {
        "$and": [
            {"event_id": "e1"},
            {"$or": [
                {"timestamp": {op: 5}},
                {"timestamp": 5, "_id": {op: "h2"}},
            ]},
        ]
    }
    assert coll.last_cursor.sort_spec == [("timestamp", direction), ("_id", direction)]
    assert coll.last_cursor.limit_value == 2


@pytest.mark.asyncio
async def test_query_with_unknown_cursor_falls_back_to_filter() -> None:
    db = _Database(trades=_Collection())
    store = _store(db=db)

    await store.query("trades", {"status": "Pending"}, start_after="gone")

    assert db["trades"].last_query == {"status": "Pending"}
    assert db["trades"].last_cursor.sort_spec == [("_id", 1)]


def test_retry_delay_grows_and_is_capped() -> None:
    for attempt in range(1, 12):
        delay = retry_delay(attempt, 0.01, 0.25)
        assert 0.0 <= delay <= min(0.25, 0.01 * 2 ** (attempt - 1))
    assert retry_delay(3, 0.0, 0.25) == 0.0
