"""
backend/app/services/market_engine.py

Purpose:
    Facade over the market services. Constructed once at startup with its
    ledger store and settings and handed to routers and workers, so every
    caller shares the same store instead of reaching for a global handle.

Dependencies:
    - app.services.ledger_store
    - app.services.bet_placement_service
    - app.services.settlement_service
    - app.services.marketplace_service
    - app.services.event_ingest_service
    - app.services.user_service
"""

from __future__ import annotations

import logging

from app.config import Settings
from app.models.market import (
    EventIngestRequest,
    PlaceBetResponse,
    ReconciliationResult,
    SettlementResult,
    SuccessResponse,
)
from app.providers.prior_source import BasePriorSource, StaticPriorSource
from app.services import (
    bet_placement_service,
    event_ingest_service,
    marketplace_service,
    settlement_service,
    user_service,
)
from app.services.event_bus import InMemoryEventBus
from app.services.event_ingest_service import IngestResult
from app.services.event_models import EventFinalizedEvent
from app.services.ledger_store import LedgerStore
from app.services.market_errors import not_found, unauthenticated

logger = logging.getLogger("oddsmarket.engine")


class MarketEngine:
    def __init__(
        self,
        store: LedgerStore,
        settings: Settings,
        *,
        prior_source: BasePriorSource | None = None,
        event_bus: InMemoryEventBus | None = None,
    ) -> None:
        self.store = store
        self.settings = settings
        self.prior_source = prior_source or StaticPriorSource()
        self.event_bus = event_bus

    # ---- Bets ----

    async def place_bet(
        self,
        user_id: str | None,
        event_id: str,
        bet_amount: float,
        selected_outcome: str,
        odds: float | None = None,
    ) -> PlaceBetResponse:
        return await bet_placement_service.place_bet(
            self.store, self.settings, user_id, event_id, bet_amount, selected_outcome, odds,
        )

    async def sell_bet(self, seller_id: str | None, bet_id: str, sale_price) -> SuccessResponse:
        return await marketplace_service.sell_bet(self.store, seller_id, bet_id, sale_price)

    async def buy_bet(self, buyer_id: str | None, bet_id: str) -> SuccessResponse:
        return await marketplace_service.buy_bet(self.store, buyer_id, bet_id)

    async def list_marketplace(self, limit: int = 50, cursor: str | None = None) -> list[dict]:
        return await marketplace_service.list_marketplace(self.store, limit=limit, cursor=cursor)

    async def latest_activity(self, user_id: str | None, limit: int = 15, cursor: str | None = None) -> list[dict]:
        """Recent trades across all users, newest first. `cursor` is the last trade id seen."""
        if not user_id:
            raise unauthenticated()
        return await self.store.query(
            "trades", {}, order_by=("created_at", -1), limit=limit, start_after=cursor,
        )

    # ---- Settlement ----

    async def settle_event(self, event_id: str, outcome=settlement_service.FROM_EVENT) -> SettlementResult:
        return await settlement_service.settle_event(self.store, self.settings, event_id, outcome)

    async def reconcile_settlements(self, limit: int = 5000) -> ReconciliationResult:
        return await settlement_service.reconcile_settlements(self.store, self.settings, limit=limit)

    async def sweep_final_events(self, limit: int = 5000) -> list[SettlementResult]:
        return await settlement_service.sweep_final_events(self.store, self.settings, limit=limit)

    # ---- Events ----

    async def ingest_event(self, payload: EventIngestRequest) -> IngestResult:
        result = await event_ingest_service.ingest_event(
            self.store, self.settings, payload, self.prior_source,
        )
        if result.became_final:
            if self.event_bus is not None and self.event_bus.running:
                queued = await self.event_bus.publish(
                    EventFinalizedEvent(source="event_ingest", sport_event_id=result.event_id),
                )
                if not queued:
                    # Still final with pending trades; the sweep job settles it.
                    logger.warning("event.finalized dropped for event=%s; left for settlement sweep", result.event_id)
            else:
                await self.settle_event(result.event_id)
        return result

    async def get_event(self, event_id: str) -> dict:
        event = await self.store.get("events", event_id)
        if not event:
            raise not_found("Event not found.")
        return event

    async def get_odds_history(self, event_id: str, limit: int = 500, cursor: str | None = None) -> list[dict]:
        await self.get_event(event_id)
        return await self.store.query(
            "odds_history",
            {"event_id": event_id},
            order_by=("timestamp", 1),
            limit=limit,
            start_after=cursor,
        )

    # ---- Users ----

    async def get_or_create_user(self, user_id: str | None) -> dict:
        return await user_service.get_or_create_user(self.store, user_id)

    async def get_user_trades(self, user_id: str, limit: int = 100) -> list[dict]:
        return await user_service.get_user_trades(self.store, user_id, limit=limit)
