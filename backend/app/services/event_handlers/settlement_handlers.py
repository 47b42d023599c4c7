"""
backend/app/services/event_handlers/settlement_handlers.py

Purpose:
    Subscriber logic for finalized events. Settlement is idempotent, so a
    redelivered or duplicated event.finalized only settles what is still pending.

Dependencies:
    - app.services.event_models
    - app.services.market_engine
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from app.services.event_models import BaseEvent

if TYPE_CHECKING:
    from app.services.market_engine import MarketEngine

logger = logging.getLogger("oddsmarket.event_handlers.settlement")


def make_event_finalized_handler(engine: "MarketEngine"):
    async def handle_event_finalized(event: BaseEvent) -> None:
        sport_event_id = str(getattr(event, "sport_event_id", "") or "")
        if not sport_event_id:
            return
        result = await engine.settle_event(sport_event_id)
        logger.info(
            "Processed event.finalized for event=%s winner=%s resolved=%d",
            sport_event_id, result.winning_outcome, result.resolved,
        )

    return handle_event_finalized
