"""
backend/app/services/ledger_store.py

Purpose:
    Transactional document-store contract used by the market engine, plus the
    MongoDB implementation on top of motor sessions.

    Updates use MongoDB update documents throughout:
      $set       -> set / merge fields
      $inc       -> atomic numeric increment
      $addToSet  -> atomic array union
      $pull      -> atomic array remove
    An optional `condition` narrows the match so that guarded writes
    ("only if still Pending") stay single-document atomic.

Dependencies:
    - motor.motor_asyncio
    - pymongo
    - bson
"""

from __future__ import annotations

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, UpdateOne
from pymongo.errors import PyMongoError

logger = logging.getLogger("oddsmarket.ledger_store")

T = TypeVar("T")
TransactionFn = Callable[[Any], Awaitable[T]]

# (key, update document, optional extra match condition)
BulkUpdate = tuple[str, dict, "dict | None"]


def retry_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Full-jitter exponential backoff before retrying after failed attempt `attempt` (1-based)."""
    ceiling = min(max_delay, base_delay * (2 ** (attempt - 1)))
    return random.uniform(0, max(0.0, ceiling))


class TransactionAborted(Exception):
    """The store gave up committing a transaction after its retry budget."""

    def __init__(self, attempts: int, reason: str = "") -> None:
        super().__init__(f"transaction aborted after {attempts} attempt(s): {reason}")
        self.attempts = attempts


class LedgerStore(ABC):
    """Abstract transactional document store.

    Every read/write method accepts `session`; inside `run_transaction` the
    callback receives the session to pass along so reads see the
    transaction's own writes and all writes commit or roll back together.
    """

    @staticmethod
    def new_id() -> str:
        return str(ObjectId())

    @abstractmethod
    async def get(self, collection: str, key: str, *, session: Any = None) -> dict | None:
        ...

    @abstractmethod
    async def insert(self, collection: str, doc: dict, *, session: Any = None) -> str:
        """Insert a document; generates `_id` when absent. Returns the key."""
        ...

    @abstractmethod
    async def update(
        self,
        collection: str,
        key: str,
        update: dict,
        *,
        condition: dict | None = None,
        upsert: bool = False,
        session: Any = None,
    ) -> bool:
        """Apply an update document. Returns whether a document matched (or was upserted)."""
        ...

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: dict,
        *,
        order_by: tuple[str, int] | None = None,
        limit: int | None = None,
        start_after: str | None = None,
        session: Any = None,
    ) -> list[dict]:
        """Find documents. `start_after` is the `_id` of the last document of the previous page."""
        ...

    @abstractmethod
    async def bulk_update(self, collection: str, updates: list[BulkUpdate]) -> int:
        """Apply many single-document updates as one batch. Returns matched count."""
        ...

    @abstractmethod
    async def run_transaction(self, fn: TransactionFn) -> T:
        """Run `fn(session)` atomically, retrying it on write conflicts."""
        ...


class MongoLedgerStore(LedgerStore):
    """LedgerStore over a MongoDB replica set (transactions need one)."""

    def __init__(
        self,
        client: AsyncIOMotorClient,
        db: AsyncIOMotorDatabase,
        *,
        max_attempts: int = 20,
        retry_base_delay: float = 0.005,
        retry_max_delay: float = 0.25,
    ) -> None:
        self._client = client
        self._db = db
        self._max_attempts = max(1, int(max_attempts))
        self._retry_base_delay = retry_base_delay
        self._retry_max_delay = retry_max_delay

    async def get(self, collection: str, key: str, *, session: Any = None) -> dict | None:
        return await self._db[collection].find_one({"_id": key}, session=session)

    async def insert(self, collection: str, doc: dict, *, session: Any = None) -> str:
        if "_id" not in doc:
            doc["_id"] = self.new_id()
        await self._db[collection].insert_one(doc, session=session)
        return doc["_id"]

    async def update(
        self,
        collection: str,
        key: str,
        update: dict,
        *,
        condition: dict | None = None,
        upsert: bool = False,
        session: Any = None,
    ) -> bool:
        match = {"_id": key, **(condition or {})}
        result = await self._db[collection].update_one(match, update, upsert=upsert, session=session)
        return result.matched_count > 0 or result.upserted_id is not None

    async def query(
        self,
        collection: str,
        filters: dict,
        *,
        order_by: tuple[str, int] | None = None,
        limit: int | None = None,
        start_after: str | None = None,
        session: Any = None,
    ) -> list[dict]:
        coll = self._db[collection]
        match = dict(filters)
        field, direction = order_by or ("_id", ASCENDING)
        if start_after is not None:
            anchor = await coll.find_one({"_id": start_after}, {field: 1}, session=session)
            if anchor is not None:
                op = "$gt" if direction >= 0 else "$lt"
                match = {
                    "$and": [
                        match,
                        {"$or": [
                            {field: {op: anchor.get(field)}},
                            {field: anchor.get(field), "_id": {op: start_after}},
                        ]},
                    ]
                }
        sort = [(field, direction)] if field == "_id" else [(field, direction), ("_id", direction)]
        cursor = coll.find(match, session=session).sort(sort)
        if limit:
            cursor = cursor.limit(int(limit))
        return await cursor.to_list(length=None)

    async def bulk_update(self, collection: str, updates: list[BulkUpdate]) -> int:
        if not updates:
            return 0
        ops = [UpdateOne({"_id": key, **(condition or {})}, update) for key, update, condition in updates]
        result = await self._db[collection].bulk_write(ops, ordered=False)
        return result.matched_count

    async def run_transaction(self, fn: TransactionFn) -> T:
        attempts = 0
        async with await self._client.start_session() as session:
            while True:
                attempts += 1
                session.start_transaction()
                try:
                    result = await fn(session)
                    await self._commit_with_retry(session)
                    return result
                except PyMongoError as exc:
                    await _abort(session)
                    if not exc.has_error_label("TransientTransactionError"):
                        raise
                    if attempts >= self._max_attempts:
                        logger.error("Transaction aborted after %d attempts: %s", attempts, exc)
                        raise TransactionAborted(attempts, str(exc)) from exc
                    logger.warning("Transient transaction error (attempt %d), retrying: %s", attempts, exc)
                    await asyncio.sleep(retry_delay(attempts, self._retry_base_delay, self._retry_max_delay))
                except BaseException:
                    await _abort(session)
                    raise

    async def _commit_with_retry(self, session: Any) -> None:
        for attempt in range(1, self._max_attempts + 1):
            try:
                await session.commit_transaction()
                return
            except PyMongoError as exc:
                if exc.has_error_label("UnknownTransactionCommitResult") and attempt < self._max_attempts:
                    logger.warning("Unknown commit result (attempt %d), retrying commit", attempt)
                    continue
                raise


async def _abort(session: Any) -> None:
    if not session.in_transaction:
        return
    try:
        await session.abort_transaction()
    except PyMongoError:
        logger.debug("abort_transaction failed", exc_info=True)
