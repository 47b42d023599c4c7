"""
backend/app/services/marketplace_service.py

Purpose:
    Secondary market for pending trades: owners list a trade at a price and
    another user buys it, moving ownership and coins in one transaction.

Dependencies:
    - app.services.ledger_store
    - app.services.market_errors
"""

from __future__ import annotations

import logging

from app.models.market import SuccessResponse, TradeStatus
from app.services.ledger_store import LedgerStore, TransactionAborted
from app.services.market_errors import (
    aborted,
    failed_precondition,
    invalid_argument,
    not_found,
    permission_denied,
    unauthenticated,
)
from app.utils import is_number, utcnow

logger = logging.getLogger("oddsmarket.marketplace")


async def sell_bet(
    store: LedgerStore,
    seller_id: str | None,
    bet_id: str,
    sale_price,
) -> SuccessResponse:
    """List a pending trade the caller owns for sale at `sale_price`."""
    if not seller_id:
        raise unauthenticated("Not signed in.")
    if not bet_id or not is_number(sale_price) or sale_price <= 0:
        raise invalid_argument("Missing or invalid arguments.")
    price = float(sale_price)

    async def _txn(session) -> None:
        bet = await store.get("trades", bet_id, session=session)
        if not bet:
            raise not_found("Bet not found.")
        if bet.get("user_id") != seller_id:
            raise permission_denied("You do not own this bet.")
        if bet.get("for_sale"):
            raise failed_precondition("Bet already for sale.")
        if bet.get("status", TradeStatus.pending.value) != TradeStatus.pending.value:
            raise failed_precondition("Bet is not pending.")
        await store.update("trades", bet_id, {
            "$set": {"for_sale": True, "sale_price": price, "listed_at": utcnow()},
        }, session=session)

    try:
        await store.run_transaction(_txn)
    except TransactionAborted as exc:
        raise aborted() from exc

    logger.info("Bet listed: trade=%s seller=%s price=%.2f", bet_id, seller_id, price)
    return SuccessResponse()


async def buy_bet(store: LedgerStore, buyer_id: str | None, bet_id: str) -> SuccessResponse:
    """Buy a listed trade: ownership and coins move together or not at all."""
    if not buyer_id:
        raise unauthenticated("Not signed in.")
    if not bet_id:
        raise invalid_argument("Missing betId.")

    async def _txn(session) -> tuple[str, float]:
        bet = await store.get("trades", bet_id, session=session)
        if not bet:
            raise not_found("Bet not found.")
        if not bet.get("for_sale"):
            raise failed_precondition("Bet not for sale.")
        if bet.get("status", TradeStatus.pending.value) != TradeStatus.pending.value:
            raise failed_precondition("Bet is not pending.")
        seller_id = bet.get("user_id")
        if seller_id == buyer_id:
            raise failed_precondition("Cannot buy your own bet.")
        sale_price = bet.get("sale_price")
        if not is_number(sale_price) or sale_price <= 0:
            raise invalid_argument("Invalid sale price.")

        buyer = await store.get("users", buyer_id, session=session)
        seller = await store.get("users", seller_id, session=session) if seller_id else None
        if not buyer:
            raise not_found("Buyer not found.")
        if not seller:
            raise not_found("Seller not found.")
        if float(buyer.get("wallet_balance") or 0.0) < sale_price:
            raise failed_precondition("Insufficient funds.")

        now = utcnow()
        await store.update("trades", bet_id, {
            "$set": {"user_id": buyer_id, "for_sale": False, "sale_price": None, "updated_at": now},
            "$push": {"transfers": {
                "from_user_id": seller_id,
                "to_user_id": buyer_id,
                "price": float(sale_price),
                "at": now,
            }},
        }, session=session)
        await store.update("users", buyer_id, {
            "$inc": {"wallet_balance": -float(sale_price)},
            "$addToSet": {"trade_ids": bet_id},
            "$set": {"updated_at": now},
        }, session=session)
        await store.update("users", seller_id, {
            "$inc": {"wallet_balance": float(sale_price)},
            "$pull": {"trade_ids": bet_id},
            "$addToSet": {"sold_trade_ids": bet_id},
            "$set": {"updated_at": now},
        }, session=session)
        return seller_id, float(sale_price)

    try:
        seller_id, price = await store.run_transaction(_txn)
    except TransactionAborted as exc:
        raise aborted() from exc

    logger.info("Bet sold: trade=%s seller=%s buyer=%s price=%.2f", bet_id, seller_id, buyer_id, price)
    return SuccessResponse()


async def list_marketplace(store: LedgerStore, limit: int = 50, cursor: str | None = None) -> list[dict]:
    return await store.query(
        "trades",
        {"for_sale": True, "status": TradeStatus.pending.value},
        order_by=("listed_at", -1),
        limit=limit,
        start_after=cursor,
    )
