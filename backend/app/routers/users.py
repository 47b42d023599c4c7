import logging

from fastapi import APIRouter, Depends, Query

from app.models.market import TradeResponse, UserResponse
from app.services.auth_service import get_current_user_id, get_market_engine
from app.services.market_engine import MarketEngine
from app.services.user_service import trade_to_response, user_to_response

logger = logging.getLogger("oddsmarket.users")
router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("/me", response_model=UserResponse)
async def me(
    user_id: str = Depends(get_current_user_id),
    engine: MarketEngine = Depends(get_market_engine),
):
    """The caller's wallet; the user document is created on first sign-in."""
    return user_to_response(await engine.get_or_create_user(user_id))


@router.get("/me/trades", response_model=list[TradeResponse])
async def my_trades(
    limit: int = Query(100, ge=1, le=500),
    user_id: str = Depends(get_current_user_id),
    engine: MarketEngine = Depends(get_market_engine),
):
    trades = await engine.get_user_trades(user_id, limit=limit)
    return [trade_to_response(t) for t in trades]
