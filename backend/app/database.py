"""
backend/app/database.py

Purpose:
    MongoDB connection bootstrap, index management for the market collections
    and construction of the configured ledger store.

Dependencies:
    - motor.motor_asyncio
    - pymongo
    - app.config
"""

import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from app.config import Settings, settings
from app.services.ledger_store import LedgerStore, MongoLedgerStore
from app.services.memory_ledger_store import InMemoryLedgerStore

client: AsyncIOMotorClient = None
db: AsyncIOMotorDatabase = None

logger = logging.getLogger("oddsmarket.database")


async def connect_db() -> None:
    global client, db
    client = AsyncIOMotorClient(
        settings.MONGO_URI,
        maxPoolSize=25,
        minPoolSize=5,
    )
    db = client[settings.MONGO_DB]
    await _ensure_indexes()


async def close_db() -> None:
    global client
    if client:
        client.close()


async def _ensure_indexes() -> None:
    """Create indexes on startup. Idempotent, safe to run repeatedly."""

    # ---- Trades ----
    await db.trades.create_index([("event_id", ASCENDING), ("status", ASCENDING)])
    await db.trades.create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    await db.trades.create_index([("created_at", DESCENDING)])
    await db.trades.create_index(
        [("for_sale", ASCENDING), ("listed_at", DESCENDING)],
        partialFilterExpression={"for_sale": True},
    )
    await db.trades.create_index(
        [("status", ASCENDING), ("delta_applied", ASCENDING)],
        partialFilterExpression={"delta_applied": False},
    )
    await db.trades.create_index("settlement_run", sparse=True)

    # ---- Odds history (append-only) ----
    await db.odds_history.create_index([("event_id", ASCENDING), ("timestamp", ASCENDING)])

    # ---- Events ----
    await db.events.create_index([("status", ASCENDING), ("start_at", ASCENDING)])

    logger.info("Indexes ensured")


def build_ledger_store(config: Settings = settings) -> LedgerStore:
    """LedgerStore for the configured backend; "mongo" requires connect_db() first."""
    backend = (config.LEDGER_BACKEND or "mongo").strip().lower()
    if backend == "memory":
        logger.warning("Using in-memory ledger store; data is not persisted")
        return InMemoryLedgerStore(**_retry_policy(config))
    if backend != "mongo":
        raise ValueError(f"Unknown LEDGER_BACKEND: {config.LEDGER_BACKEND}")
    if client is None or db is None:
        raise RuntimeError("connect_db() must run before building the Mongo ledger store")
    return MongoLedgerStore(client, db, **_retry_policy(config))


def _retry_policy(config: Settings) -> dict:
    return {
        "max_attempts": config.TRANSACTION_MAX_ATTEMPTS,
        "retry_base_delay": config.TRANSACTION_RETRY_BASE_DELAY_S,
        "retry_max_delay": config.TRANSACTION_RETRY_MAX_DELAY_S,
    }
