"""
backend/tests/conftest.py

Purpose:
    Shared pytest bootstrap: import paths, required environment and
    in-memory engine fixtures.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

_THIS_FILE = Path(__file__).resolve()
_BACKEND_DIR = _THIS_FILE.parents[1]
_TESTS_DIR = _THIS_FILE.parent

for candidate in (str(_BACKEND_DIR), str(_TESTS_DIR)):
    if candidate not in sys.path:
        sys.path.insert(0, candidate)

os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("LEDGER_BACKEND", "memory")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

from app.config import Settings  # noqa: E402
from app.services.market_engine import MarketEngine  # noqa: E402
from app.services.memory_ledger_store import InMemoryLedgerStore  # noqa: E402


@pytest.fixture
def market_settings() -> Settings:
    return Settings(JWT_SECRET="test-secret", _env_file=None)


@pytest.fixture
def store(market_settings: Settings) -> InMemoryLedgerStore:
    return InMemoryLedgerStore(max_attempts=market_settings.TRANSACTION_MAX_ATTEMPTS)


@pytest.fixture
def engine(store: InMemoryLedgerStore, market_settings: Settings) -> MarketEngine:
    return MarketEngine(store, market_settings)
