"""Bets API: placement and the secondary marketplace."""

from fastapi import APIRouter, Depends, Query, status

from app.models.market import (
    PlaceBetRequest,
    PlaceBetResponse,
    SellBetRequest,
    SuccessResponse,
    TradeResponse,
)
from app.services.auth_service import get_current_user_id, get_market_engine
from app.services.market_engine import MarketEngine
from app.services.user_service import trade_to_response

router = APIRouter(prefix="/api/bets", tags=["bets"])


@router.post("", response_model=PlaceBetResponse, status_code=status.HTTP_201_CREATED)
async def place_bet(
    body: PlaceBetRequest,
    user_id: str = Depends(get_current_user_id),
    engine: MarketEngine = Depends(get_market_engine),
):
    """Place a bet at the event's current odds."""
    return await engine.place_bet(
        user_id,
        body.event_id,
        body.bet_amount,
        body.selected_outcome,
        body.odds,
    )


@router.get("/activity", response_model=list[TradeResponse])
async def latest_activity(
    limit: int = Query(15, ge=1, le=100),
    cursor: str | None = Query(None),
    user_id: str = Depends(get_current_user_id),
    engine: MarketEngine = Depends(get_market_engine),
):
    """Latest trades on the platform; trade owners are not exposed."""
    trades = await engine.latest_activity(user_id, limit=limit, cursor=cursor)
    return [trade_to_response(t) for t in trades]


@router.get("/marketplace", response_model=list[TradeResponse])
async def marketplace(
    limit: int = Query(50, ge=1, le=200),
    cursor: str | None = Query(None),
    engine: MarketEngine = Depends(get_market_engine),
):
    """Bets currently listed for sale, newest listing first."""
    trades = await engine.list_marketplace(limit=limit, cursor=cursor)
    return [trade_to_response(t) for t in trades]


@router.post("/{bet_id}/sell", response_model=SuccessResponse)
async def sell_bet(
    bet_id: str,
    body: SellBetRequest,
    user_id: str = Depends(get_current_user_id),
    engine: MarketEngine = Depends(get_market_engine),
):
    return await engine.sell_bet(user_id, bet_id, body.sale_price)


@router.post("/{bet_id}/buy", response_model=SuccessResponse)
async def buy_bet(
    bet_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: MarketEngine = Depends(get_market_engine),
):
    return await engine.buy_bet(user_id, bet_id)
