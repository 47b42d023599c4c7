"""
backend/app/services/bet_placement_service.py

Purpose:
    Bet placement as one atomic ledger transaction: balance check, trade
    creation, wallet debit, pool increment, odds recomputation with history
    record, and re-pricing of the other pending trades on the event.

Dependencies:
    - app.services.ledger_store
    - app.services.odds_engine
    - app.services.market_errors
"""

from __future__ import annotations

import logging

from app.config import Settings
from app.models.market import (
    EventStatus,
    Outcome,
    PlaceBetResponse,
    TradeStatus,
    outcomes_for,
)
from app.services.ledger_store import LedgerStore, TransactionAborted
from app.services.market_errors import (
    aborted,
    failed_precondition,
    invalid_argument,
    not_found,
    unauthenticated,
)
from app.services.odds_engine import (
    OddsParams,
    compute_odds,
    expected_payout,
    repriced_stake_value,
    resolve_prior_odds,
)
from app.utils import is_number, utcnow

logger = logging.getLogger("oddsmarket.bet_placement")

_VALID_OUTCOMES = {o.value for o in Outcome}


def odds_params(settings: Settings) -> OddsParams:
    return OddsParams(
        alpha=settings.ODDS_ALPHA_DEFAULT,
        beta=settings.ODDS_SMOOTHING_BETA,
        unbacked_odds=settings.UNBACKED_MARKET_ODDS,
        prior_default=settings.PRIOR_ODDS_DEFAULT,
        prior_draw_default=settings.PRIOR_DRAW_ODDS_DEFAULT,
    )


def validate_bet_request(
    user_id: str | None,
    event_id,
    bet_amount,
    selected_outcome,
    odds,
) -> None:
    """Boundary checks that never touch the store."""
    if not user_id:
        raise unauthenticated()
    if not event_id or not isinstance(event_id, str) or bet_amount is None or not selected_outcome:
        raise invalid_argument("Missing required fields.")
    if not is_number(bet_amount) or bet_amount <= 0:
        raise invalid_argument("Bet amount must be a positive number.")
    if selected_outcome not in _VALID_OUTCOMES:
        raise invalid_argument("Selected outcome must be 'home', 'away', or 'draw'.")
    if odds is not None and (not is_number(odds) or odds <= 0):
        raise invalid_argument("Odds must be a positive number.")


def _lock_odds(settings: Settings, current: float, displayed: float | None) -> float:
    if displayed is None:
        return current
    if settings.TRUST_CLIENT_ODDS:
        return float(displayed)
    if abs(displayed - current) / max(current, 0.01) > settings.CLIENT_ODDS_TOLERANCE:
        raise failed_precondition("Odds have changed. Please reload.")
    return current


async def place_bet(
    store: LedgerStore,
    settings: Settings,
    user_id: str | None,
    event_id: str,
    bet_amount: float,
    selected_outcome: str,
    odds: float | None = None,
) -> PlaceBetResponse:
    """Place a bet; all-or-nothing against the ledger store."""
    validate_bet_request(user_id, event_id, bet_amount, selected_outcome, odds)
    amount = float(bet_amount)
    params = odds_params(settings)

    async def _txn(session) -> PlaceBetResponse:
        user = await store.get("users", user_id, session=session)
        if not user:
            raise not_found("User document not found.")
        balance = float(user.get("wallet_balance") or 0.0)
        if amount > balance:
            raise failed_precondition("Insufficient balance.")

        event = await store.get("events", event_id, session=session)
        if not event:
            raise not_found("Event not found.")
        kind = event["sport_kind"]
        outcomes = outcomes_for(kind)
        if selected_outcome not in outcomes:
            raise invalid_argument("Draw is only available for three-outcome events.")
        if settings.REJECT_BETS_ON_FINAL_EVENTS and event.get("status") == EventStatus.final.value:
            raise failed_precondition("Event has already finished.")

        previous_odds = dict(event.get("odds") or {})
        current = resolve_prior_odds(kind, previous_odds, event.get("prior_odds"), params)
        locked_odds = _lock_odds(settings, current[selected_outcome], odds)
        payout = expected_payout(amount, locked_odds)

        now = utcnow()
        trade_id = store.new_id()
        await store.insert("trades", {
            "_id": trade_id,
            "user_id": user_id,
            "event_id": event_id,
            "amount": amount,
            "selected_outcome": selected_outcome,
            "odds_at_placement": locked_odds,
            "expected_payout": payout,
            "current_stake_value": amount,
            "status": TradeStatus.pending.value,
            "for_sale": False,
            "sale_price": None,
            "transfers": [],
            "created_at": now,
        }, session=session)

        await store.update("users", user_id, {
            "$inc": {"wallet_balance": -amount, "lifetime_pnl": 0.0},
            "$addToSet": {"trade_ids": trade_id},
            "$set": {"updated_at": now},
        }, session=session)

        pools = {o: float((event.get("pools") or {}).get(o) or 0.0) for o in outcomes}
        pools[selected_outcome] += amount
        quote = compute_odds(
            kind, pools, event.get("prior_odds"), previous_odds, params, event.get("alpha"),
        )

        await store.update("events", event_id, {
            "$inc": {f"pools.{selected_outcome}": amount},
            "$set": {
                "odds": quote.odds,
                "prior_odds": quote.prior_odds,
                "alpha": quote.alpha,
                "updated_at": now,
            },
            "$addToSet": {"trade_ids": trade_id},
        }, session=session)

        await store.insert("odds_history", {
            "event_id": event_id,
            "timestamp": now,
            "odds": quote.odds,
            "source": "bet",
            "trade_id": trade_id,
        }, session=session)

        repriced = await _reprice_pending_trades(
            store, session, event_id, trade_id, previous_odds, quote.odds,
        )

        logger.info(
            "Bet placed: user=%s event=%s trade=%s outcome=%s amount=%.2f odds=%.2f repriced=%d",
            user_id, event_id, trade_id, selected_outcome, amount, locked_odds, repriced,
        )
        return PlaceBetResponse(trade_id=trade_id, expected_payout=payout, selected_odds=locked_odds)

    try:
        return await store.run_transaction(_txn)
    except TransactionAborted as exc:
        logger.error("placeBet aborted for user=%s event=%s: %s", user_id, event_id, exc)
        raise aborted() from exc


async def _reprice_pending_trades(
    store: LedgerStore,
    session,
    event_id: str,
    new_trade_id: str,
    previous_odds: dict,
    new_odds: dict[str, float],
) -> int:
    """Update current_stake_value of sibling pending trades whose outcome odds moved."""
    siblings = await store.query(
        "trades",
        {"event_id": event_id, "status": TradeStatus.pending.value},
        session=session,
    )
    updated = 0
    for trade in siblings:
        if trade["_id"] == new_trade_id:
            continue
        outcome = trade.get("selected_outcome")
        placed_at = trade.get("odds_at_placement")
        current = new_odds.get(outcome)
        if not is_number(current) or not is_number(placed_at) or placed_at <= 0:
            continue
        if is_number(previous_odds.get(outcome)) and previous_odds[outcome] == current:
            continue
        await store.update("trades", trade["_id"], {
            "$set": {"current_stake_value": repriced_stake_value(trade["amount"], placed_at, current)},
        }, session=session)
        updated += 1
    return updated
