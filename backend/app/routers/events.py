"""Events API: current odds, pools and odds history."""

from fastapi import APIRouter, Depends, Query

from app.models.market import EventResponse, OddsHistoryEntry
from app.services.auth_service import get_market_engine
from app.services.event_ingest_service import event_to_response
from app.services.market_engine import MarketEngine
from app.utils import as_utc

router = APIRouter(prefix="/api/events", tags=["events"])


@router.get("/{event_id}", response_model=EventResponse)
async def get_event(event_id: str, engine: MarketEngine = Depends(get_market_engine)):
    return event_to_response(await engine.get_event(event_id))


@router.get("/{event_id}/odds-history", response_model=list[OddsHistoryEntry])
async def get_odds_history(
    event_id: str,
    limit: int = Query(500, ge=1, le=2000),
    cursor: str | None = Query(None),
    engine: MarketEngine = Depends(get_market_engine),
):
    """Odds observations for the event, oldest first."""
    rows = await engine.get_odds_history(event_id, limit=limit, cursor=cursor)
    return [
        OddsHistoryEntry(
            event_id=row["event_id"],
            timestamp=as_utc(row["timestamp"]),
            odds=row["odds"],
            source=row["source"],
            trade_id=row.get("trade_id"),
        )
        for row in rows
    ]
