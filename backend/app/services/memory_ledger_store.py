"""
backend/app/services/memory_ledger_store.py

Purpose:
    Single-process LedgerStore with optimistic concurrency. Each document
    carries a version; a transaction buffers its writes (reads see them) and
    at commit verifies that nothing it read or wrote was changed by another
    writer, otherwise the whole callback is re-run. Non-transactional writes
    apply immediately and bump versions, so they conflict with open
    transactions exactly like single-document writes do on MongoDB.

    Supports the subset of MongoDB filter and update syntax the engine uses.

Dependencies:
    - asyncio
    - app.services.ledger_store
"""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import Any

from app.services.ledger_store import (
    BulkUpdate,
    LedgerStore,
    TransactionAborted,
    TransactionFn,
    T,
    retry_delay,
)

logger = logging.getLogger("oddsmarket.memory_ledger_store")

_MISSING = object()


class _WriteConflict(Exception):
    pass


# ---------- Filter / update evaluation ----------

def _get_path(doc: dict, path: str) -> Any:
    current: Any = doc
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _set_path(doc: dict, path: str, value: Any) -> None:
    parts = path.split(".")
    current = doc
    for part in parts[:-1]:
        nxt = current.get(part)
        if not isinstance(nxt, dict):
            nxt = {}
            current[part] = nxt
        current = nxt
    current[parts[-1]] = value


def _unset_path(doc: dict, path: str) -> None:
    parts = path.split(".")
    current = doc
    for part in parts[:-1]:
        current = current.get(part)
        if not isinstance(current, dict):
            return
    current.pop(parts[-1], None)


def _equals(actual: Any, expected: Any) -> bool:
    if actual is _MISSING:
        return expected is None
    if isinstance(actual, list) and not isinstance(expected, list):
        return expected in actual
    return actual == expected


def _compare(actual: Any, op: str, operand: Any) -> bool:
    if op == "$in":
        return any(_equals(actual, item) for item in operand)
    if op == "$nin":
        return not any(_equals(actual, item) for item in operand)
    if op == "$ne":
        return not _equals(actual, operand)
    if op == "$exists":
        return (actual is not _MISSING) is bool(operand)
    if actual is _MISSING or actual is None:
        return False
    if op == "$gt":
        return actual > operand
    if op == "$gte":
        return actual >= operand
    if op == "$lt":
        return actual < operand
    if op == "$lte":
        return actual <= operand
    raise ValueError(f"Unsupported filter operator: {op}")


def matches(doc: dict, filters: dict) -> bool:
    """Evaluate a MongoDB-style filter against a document."""
    for key, expected in filters.items():
        if key == "$and":
            if not all(matches(doc, clause) for clause in expected):
                return False
            continue
        if key == "$or":
            if not any(matches(doc, clause) for clause in expected):
                return False
            continue
        actual = _get_path(doc, key)
        if isinstance(expected, dict) and expected and all(k.startswith("$") for k in expected):
            if not all(_compare(actual, op, operand) for op, operand in expected.items()):
                return False
        elif not _equals(actual, expected):
            return False
    return True


def apply_update(doc: dict, update: dict, *, inserting: bool = False) -> dict:
    """Apply a MongoDB-style update document in place and return the document."""
    for op, fields in update.items():
        if op == "$setOnInsert":
            if inserting:
                for path, value in fields.items():
                    _set_path(doc, path, copy.deepcopy(value))
        elif op == "$set":
            for path, value in fields.items():
                _set_path(doc, path, copy.deepcopy(value))
        elif op == "$unset":
            for path in fields:
                _unset_path(doc, path)
        elif op == "$inc":
            for path, delta in fields.items():
                current = _get_path(doc, path)
                base = 0 if current is _MISSING or current is None else current
                _set_path(doc, path, base + delta)
        elif op in ("$addToSet", "$push"):
            for path, value in fields.items():
                current = _get_path(doc, path)
                items = list(current) if isinstance(current, list) else []
                values = value["$each"] if isinstance(value, dict) and "$each" in value else [value]
                for item in values:
                    if op == "$push" or item not in items:
                        items.append(copy.deepcopy(item))
                _set_path(doc, path, items)
        elif op == "$pull":
            for path, value in fields.items():
                current = _get_path(doc, path)
                if isinstance(current, list):
                    _set_path(doc, path, [item for item in current if item != value])
        else:
            raise ValueError(f"Unsupported update operator: {op}")
    return doc


def _upsert_seed(key: str, condition: dict | None) -> dict:
    doc: dict = {"_id": key}
    for path, value in (condition or {}).items():
        if not path.startswith("$") and not isinstance(value, dict):
            _set_path(doc, path, copy.deepcopy(value))
    return doc


def _sort_rows(rows: list[dict], order_by: tuple[str, int] | None) -> list[dict]:
    field, direction = order_by or ("_id", 1)

    def _key(doc: dict):
        value = _get_path(doc, field)
        missing = value is _MISSING or value is None
        return (missing, value if not missing else 0, str(doc.get("_id")))

    return sorted(rows, key=_key, reverse=direction < 0)


def _page(rows: list[dict], start_after: str | None, limit: int | None) -> list[dict]:
    if start_after is not None:
        for idx, row in enumerate(rows):
            if row.get("_id") == start_after:
                rows = rows[idx + 1:]
                break
    if limit:
        rows = rows[: int(limit)]
    return rows


# ---------- Transaction ----------

class _MemoryTransaction:
    def __init__(self, store: InMemoryLedgerStore) -> None:
        self._store = store
        self.observed: dict[tuple[str, str], int] = {}
        self.staged: dict[tuple[str, str], dict | None] = {}

    def _observe(self, ref: tuple[str, str]) -> None:
        if ref not in self.observed:
            self.observed[ref] = self._store._version(ref)

    def read(self, ref: tuple[str, str]) -> dict | None:
        if ref in self.staged:
            return copy.deepcopy(self.staged[ref])
        self._observe(ref)
        doc = self._store._docs.get(ref[0], {}).get(ref[1])
        return copy.deepcopy(doc) if doc is not None else None

    def stage(self, ref: tuple[str, str], doc: dict) -> None:
        self._observe(ref)
        self.staged[ref] = copy.deepcopy(doc)

    def visible_rows(self, collection: str) -> list[dict]:
        rows = {key: doc for key, doc in self._store._docs.get(collection, {}).items()}
        for (coll, key), doc in self.staged.items():
            if coll == collection and doc is not None:
                rows[key] = doc
        return [copy.deepcopy(doc) for doc in rows.values()]


class InMemoryLedgerStore(LedgerStore):
    def __init__(
        self,
        *,
        max_attempts: int = 20,
        retry_base_delay: float = 0.005,
        retry_max_delay: float = 0.25,
    ) -> None:
        self._max_attempts = max(1, int(max_attempts))
        self._retry_base_delay = retry_base_delay
        self._retry_max_delay = retry_max_delay
        self._docs: dict[str, dict[str, dict]] = {}
        self._versions: dict[tuple[str, str], int] = {}
        self.commits = 0
        self.conflicts = 0

    def _version(self, ref: tuple[str, str]) -> int:
        return self._versions.get(ref, 0)

    def _write(self, ref: tuple[str, str], doc: dict) -> None:
        self._docs.setdefault(ref[0], {})[ref[1]] = doc
        self._versions[ref] = self._version(ref) + 1

    async def get(self, collection: str, key: str, *, session: Any = None) -> dict | None:
        await asyncio.sleep(0)
        if session is not None:
            return session.read((collection, key))
        doc = self._docs.get(collection, {}).get(key)
        return copy.deepcopy(doc) if doc is not None else None

    async def insert(self, collection: str, doc: dict, *, session: Any = None) -> str:
        if "_id" not in doc:
            doc["_id"] = self.new_id()
        ref = (collection, doc["_id"])
        if session is not None:
            if session.read(ref) is not None:
                raise ValueError(f"Duplicate key {doc['_id']} in {collection}")
            session.stage(ref, doc)
            return doc["_id"]
        if ref[1] in self._docs.get(collection, {}):
            raise ValueError(f"Duplicate key {doc['_id']} in {collection}")
        self._write(ref, copy.deepcopy(doc))
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
        ref = (collection, key)
        if session is not None:
            current = session.read(ref)
        else:
            stored = self._docs.get(collection, {}).get(key)
            current = copy.deepcopy(stored) if stored is not None else None

        if current is None:
            if not upsert:
                return False
            doc = apply_update(_upsert_seed(key, condition), update, inserting=True)
        else:
            if condition and not matches(current, condition):
                return False
            doc = apply_update(current, update)

        if session is not None:
            session.stage(ref, doc)
        else:
            self._write(ref, doc)
        return True

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
        await asyncio.sleep(0)
        if session is not None:
            rows = [row for row in session.visible_rows(collection) if matches(row, filters)]
            for row in rows:
                if (collection, row["_id"]) not in session.staged:
                    session._observe((collection, row["_id"]))
        else:
            rows = [
                copy.deepcopy(row)
                for row in self._docs.get(collection, {}).values()
                if matches(row, filters)
            ]
        return _page(_sort_rows(rows, order_by), start_after, limit)

    async def bulk_update(self, collection: str, updates: list[BulkUpdate]) -> int:
        matched = 0
        for key, update, condition in updates:
            if await self.update(collection, key, update, condition=condition):
                matched += 1
        return matched

    async def run_transaction(self, fn: TransactionFn) -> T:
        for attempt in range(1, self._max_attempts + 1):
            tx = _MemoryTransaction(self)
            result = await fn(tx)
            try:
                self._commit(tx)
            except _WriteConflict:
                self.conflicts += 1
                logger.warning("Write conflict (attempt %d), retrying transaction", attempt)
                if attempt < self._max_attempts:
                    await asyncio.sleep(retry_delay(attempt, self._retry_base_delay, self._retry_max_delay))
                continue
            return result
        logger.error("Transaction aborted after %d attempts", self._max_attempts)
        raise TransactionAborted(self._max_attempts, "write conflict")

    def _commit(self, tx: _MemoryTransaction) -> None:
        # No awaits: validation and apply happen as one step on the event loop.
        for ref, version in tx.observed.items():
            if self._version(ref) != version:
                raise _WriteConflict(ref)
        for ref, doc in tx.staged.items():
            if doc is not None:
                self._write(ref, doc)
        self.commits += 1
