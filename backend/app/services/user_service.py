"""User documents: lazy creation on first sign-in and trade listings."""

import logging

from app.models.market import TradeResponse, TradeStatus, UserResponse
from app.services.ledger_store import LedgerStore
from app.services.market_errors import unauthenticated
from app.utils import as_utc, utcnow

logger = logging.getLogger("oddsmarket.user_service")


async def get_or_create_user(store: LedgerStore, user_id: str) -> dict:
    """Get the user's document, creating it with an empty wallet on first sign-in."""
    if not user_id:
        raise unauthenticated()
    user = await store.get("users", user_id)
    if user:
        return user

    now = utcnow()
    await store.update("users", user_id, {
        "$setOnInsert": {
            "wallet_balance": 0.0,
            "lifetime_pnl": 0.0,
            "trade_ids": [],
            "sold_trade_ids": [],
            "settled_trade_ids": [],
            "is_admin": False,
            "created_at": now,
        },
        "$set": {"last_seen_at": now},
    }, upsert=True)
    logger.info("User created: user=%s", user_id)
    return await store.get("users", user_id)


async def get_user_trades(store: LedgerStore, user_id: str, limit: int = 100) -> list[dict]:
    """Trades the user owns plus trades they sold, newest first.

    Sold trades are reported with status Sold regardless of how they resolved
    for the buyer.
    """
    owned = await store.query(
        "trades", {"user_id": user_id}, order_by=("created_at", -1), limit=limit,
    )
    user = await store.get("users", user_id) or {}
    sold_ids = [tid for tid in user.get("sold_trade_ids") or [] if tid not in {t["_id"] for t in owned}]
    sold = await store.query("trades", {"_id": {"$in": sold_ids}}) if sold_ids else []
    for trade in sold:
        trade["status"] = TradeStatus.sold.value
        trade["for_sale"] = False
        trade["sale_price"] = next(
            (t.get("price") for t in reversed(trade.get("transfers") or []) if t.get("from_user_id") == user_id),
            None,
        )
    rows = owned + sold
    rows.sort(key=lambda t: t.get("created_at"), reverse=True)
    return rows[:limit]


def trade_to_response(trade: dict) -> TradeResponse:
    return TradeResponse(
        id=str(trade["_id"]),
        event_id=trade["event_id"],
        amount=trade["amount"],
        selected_outcome=trade["selected_outcome"],
        odds_at_placement=trade["odds_at_placement"],
        expected_payout=trade["expected_payout"],
        current_stake_value=trade.get("current_stake_value", trade["amount"]),
        status=trade.get("status", TradeStatus.pending.value),
        for_sale=bool(trade.get("for_sale")),
        sale_price=trade.get("sale_price"),
        created_at=as_utc(trade.get("created_at")),
    )


def user_to_response(user: dict) -> UserResponse:
    return UserResponse(
        id=str(user["_id"]),
        wallet_balance=float(user.get("wallet_balance") or 0.0),
        lifetime_pnl=float(user.get("lifetime_pnl") or 0.0),
        trade_count=len(user.get("trade_ids") or []),
    )
