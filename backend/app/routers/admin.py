"""Admin API: event ingestion, manual settlement and reconciliation."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.models.market import EventIngestRequest, ReconciliationResult, SettlementResult
from app.services.auth_service import get_admin_user, get_market_engine
from app.services.market_engine import MarketEngine
from app.services.settlement_service import FROM_EVENT

logger = logging.getLogger("oddsmarket.admin")
router = APIRouter(prefix="/api/admin", tags=["admin"])


class SettleRequest(BaseModel):
    # Omitted: derive the winner from the stored result. Explicit null: no winner.
    winning_outcome: Optional[str] = None


@router.post("/events")
async def ingest_event(
    body: EventIngestRequest,
    admin=Depends(get_admin_user),
    engine: MarketEngine = Depends(get_market_engine),
):
    """Create or update an event from a normalized feed payload."""
    result = await engine.ingest_event(body)
    logger.info(
        "Admin %s ingested event=%s created=%s status=%s",
        admin["_id"], result.event_id, result.created, result.status,
    )
    return {
        "event_id": result.event_id,
        "created": result.created,
        "status": result.status,
        "became_final": result.became_final,
    }


@router.post("/events/{event_id}/settle", response_model=SettlementResult)
async def settle_event(
    event_id: str,
    body: SettleRequest | None = None,
    admin=Depends(get_admin_user),
    engine: MarketEngine = Depends(get_market_engine),
):
    outcome = FROM_EVENT
    if body is not None and "winning_outcome" in body.model_fields_set:
        outcome = body.winning_outcome
    result = await engine.settle_event(event_id, outcome)
    logger.info("Admin %s settled event=%s resolved=%d", admin["_id"], event_id, result.resolved)
    return result


@router.post("/settlements/reconcile", response_model=ReconciliationResult)
async def reconcile(
    admin=Depends(get_admin_user),
    engine: MarketEngine = Depends(get_market_engine),
):
    return await engine.reconcile_settlements()
