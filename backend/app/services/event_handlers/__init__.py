"""
backend/app/services/event_handlers/__init__.py

Purpose:
    Central registration entrypoint for event bus subscribers.

Dependencies:
    - app.services.event_bus
    - app.services.event_handlers.settlement_handlers
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from app.services.event_bus import InMemoryEventBus
from app.services.event_handlers.settlement_handlers import make_event_finalized_handler

if TYPE_CHECKING:
    from app.services.market_engine import MarketEngine


def register_event_handlers(bus: InMemoryEventBus, engine: "MarketEngine") -> None:
    bus.subscribe(
        "event.finalized",
        make_event_finalized_handler(engine),
        handler_name="event_finalized_settlement",
    )
