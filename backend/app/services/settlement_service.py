"""
backend/app/services/settlement_service.py

Purpose:
    Resolve every pending trade on a concluded event exactly once and apply
    wallet / P&L deltas to the owners.

    Settlement runs in phases instead of one transaction because a popular
    event can touch more documents than a single transaction allows:
      1. trade status batch (guarded on status == Pending and the owner read)
      2. per-user $inc batch, guarded by the user's settled_trade_ids set
      3. delta_applied markers on the trades
    A crash between phases leaves trades with delta_applied == False, which
    reconcile_settlements() re-applies through the same guard.

Dependencies:
    - app.services.ledger_store
    - app.services.market_errors
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field

from app.config import Settings
from app.models.market import (
    EventStatus,
    Outcome,
    ReconciliationResult,
    SettlementResult,
    SportKind,
    TERMINAL_TRADE_STATUSES,
    TradeStatus,
    outcomes_for,
)
from app.services.ledger_store import LedgerStore
from app.services.market_errors import failed_precondition, invalid_argument, not_found
from app.utils import utcnow

logger = logging.getLogger("oddsmarket.settlement")

FROM_EVENT = object()

_RESULT_WINNER = {
    "HOME_TEAM": Outcome.home.value,
    "AWAY_TEAM": Outcome.away.value,
    "DRAW": Outcome.draw.value,
}


@dataclass
class _UserDelta:
    wallet: float = 0.0
    pnl: float = 0.0
    trade_ids: list[str] = field(default_factory=list)


def determine_winning_outcome(event: dict) -> str | None:
    """Winning outcome of a final event, or None when there is no winner.

    Three-outcome events prefer the explicit result field and fall back to
    the score, where a tie is a draw. Two-outcome events have no draw, so a
    tie yields None and every trade on the event loses.
    """
    home = event.get("home_score")
    away = event.get("away_score")
    if SportKind(event["sport_kind"]) == SportKind.three_outcome:
        winner = _RESULT_WINNER.get(str(event.get("result_winner") or "").upper())
        if winner:
            return winner
        if home is None or away is None:
            return None
        if home > away:
            return Outcome.home.value
        if away > home:
            return Outcome.away.value
        return Outcome.draw.value

    if home is None or away is None:
        return None
    if home > away:
        return Outcome.home.value
    if away > home:
        return Outcome.away.value
    return None


def resolve_trade(trade: dict, winning_outcome: str | None) -> tuple[str, float, float]:
    """(status, wallet_delta, pnl_delta) for one pending trade."""
    amount = float(trade.get("amount") or 0.0)
    if winning_outcome is not None and trade.get("selected_outcome") == winning_outcome:
        payout = float(trade.get("expected_payout") or 0.0)
        return TradeStatus.won.value, payout, payout - amount
    # Stake was debited at placement; a loss only moves P&L.
    return TradeStatus.lost.value, 0.0, -amount


def _chunks(items: list, size: int):
    size = max(1, int(size))
    for idx in range(0, len(items), size):
        yield items[idx: idx + size]


async def settle_event(
    store: LedgerStore,
    settings: Settings,
    event_id: str,
    outcome=FROM_EVENT,
) -> SettlementResult:
    """Settle all pending trades on a final event. Re-running is a no-op."""
    event = await store.get("events", event_id)
    if not event:
        raise not_found("Event not found.")
    if event.get("status") != EventStatus.final.value:
        raise failed_precondition("Event is not final yet.")

    if outcome is FROM_EVENT:
        winning = determine_winning_outcome(event)
    else:
        if outcome is not None and outcome not in outcomes_for(event["sport_kind"]):
            raise invalid_argument("Outcome is not valid for this event.")
        winning = outcome

    run_id = store.new_id()
    now = utcnow()

    # Phase 1. Re-query while trades remain pending: a marketplace transfer
    # between the read and the guarded write leaves the trade for the next round.
    for _round in range(max(1, settings.TRANSACTION_MAX_ATTEMPTS)):
        pending = await store.query(
            "trades", {"event_id": event_id, "status": TradeStatus.pending.value},
        )
        if not pending:
            break
        writes = []
        for trade in pending:
            new_status, wallet_delta, pnl_delta = resolve_trade(trade, winning)
            writes.append((
                trade["_id"],
                {"$set": {
                    "status": new_status,
                    "wallet_delta": wallet_delta,
                    "pnl_delta": pnl_delta,
                    "delta_applied": False,
                    "settlement_run": run_id,
                    "resolved_at": now,
                    "for_sale": False,
                    "sale_price": None,
                }},
                {"status": TradeStatus.pending.value, "user_id": trade.get("user_id")},
            ))
        for batch in _chunks(writes, settings.SETTLEMENT_BATCH_SIZE):
            await store.bulk_update("trades", batch)

    resolved = await store.query("trades", {"event_id": event_id, "settlement_run": run_id})
    if not resolved:
        logger.debug("No pending trades to settle for event=%s", event_id)
        await _mark_event_settled(store, event_id, winning, now)
        return SettlementResult(event_id=event_id, winning_outcome=winning)

    # Phase 2
    per_user: dict[str, _UserDelta] = defaultdict(_UserDelta)
    for trade in resolved:
        delta = per_user[trade["user_id"]]
        delta.wallet += float(trade.get("wallet_delta") or 0.0)
        delta.pnl += float(trade.get("pnl_delta") or 0.0)
        delta.trade_ids.append(trade["_id"])

    user_writes = []
    for user_id, delta in per_user.items():
        inc = {"lifetime_pnl": delta.pnl}
        if delta.wallet:
            inc["wallet_balance"] = delta.wallet
        user_writes.append((
            user_id,
            {"$inc": inc, "$addToSet": {"settled_trade_ids": {"$each": delta.trade_ids}}},
            {"settled_trade_ids": {"$nin": delta.trade_ids}},
        ))
    matched = 0
    for batch in _chunks(user_writes, settings.SETTLEMENT_BATCH_SIZE):
        matched += await store.bulk_update("users", batch)

    if matched == len(user_writes):
        applied_ids = [trade["_id"] for trade in resolved]
    else:
        logger.warning(
            "Settlement event=%s: %d/%d user batches missed, applying per trade",
            event_id, len(user_writes) - matched, len(user_writes),
        )
        applied_ids = []
        for trade in resolved:
            if await apply_trade_delta(store, trade) != "missing":
                applied_ids.append(trade["_id"])

    # Phase 3
    await _mark_delta_applied(store, settings, applied_ids)
    await _mark_event_settled(store, event_id, winning, now)

    won = sum(1 for trade in resolved if trade["status"] == TradeStatus.won.value)
    credited = sum(1 for delta in per_user.values() if delta.wallet)
    logger.info(
        "Settled event=%s winner=%s trades=%d won=%d users=%d",
        event_id, winning, len(resolved), won, len(per_user),
    )
    return SettlementResult(
        event_id=event_id,
        winning_outcome=winning,
        resolved=len(resolved),
        won=won,
        users_credited=credited,
    )


async def apply_trade_delta(store: LedgerStore, trade: dict) -> str:
    """Apply one resolved trade's deltas to its owner at most once.

    Returns "applied", "already_applied" or "missing" (owner document absent).
    """
    user_id = trade.get("user_id")
    inc = {"lifetime_pnl": float(trade.get("pnl_delta") or 0.0)}
    wallet_delta = float(trade.get("wallet_delta") or 0.0)
    if wallet_delta:
        inc["wallet_balance"] = wallet_delta
    applied = await store.update(
        "users",
        user_id,
        {"$inc": inc, "$addToSet": {"settled_trade_ids": trade["_id"]}},
        condition={"settled_trade_ids": {"$ne": trade["_id"]}},
    )
    if applied:
        return "applied"
    user = await store.get("users", user_id)
    if user and trade["_id"] in (user.get("settled_trade_ids") or []):
        return "already_applied"
    logger.error("Settlement delta for trade=%s has no owner document user=%s", trade["_id"], user_id)
    return "missing"


async def reconcile_settlements(
    store: LedgerStore,
    settings: Settings,
    limit: int = 5000,
) -> ReconciliationResult:
    """Re-apply deltas for resolved trades whose wallet update never landed."""
    stale = await store.query(
        "trades",
        {"status": {"$in": list(TERMINAL_TRADE_STATUSES)}, "delta_applied": False},
        limit=limit,
    )
    result = ReconciliationResult(scanned=len(stale))
    done: list[str] = []
    for trade in stale:
        outcome = await apply_trade_delta(store, trade)
        if outcome == "applied":
            result.applied += 1
        elif outcome == "already_applied":
            result.already_applied += 1
        if outcome != "missing":
            done.append(trade["_id"])
    await _mark_delta_applied(store, settings, done)
    if result.applied:
        logger.warning("Reconciliation re-applied %d settlement deltas", result.applied)
    return result


async def sweep_final_events(store: LedgerStore, settings: Settings, limit: int = 5000) -> list[SettlementResult]:
    """Settle final events that still hold pending trades (missed triggers)."""
    pending = await store.query("trades", {"status": TradeStatus.pending.value}, limit=limit)
    results = []
    for event_id in sorted({trade["event_id"] for trade in pending}):
        event = await store.get("events", event_id)
        if not event or event.get("status") != EventStatus.final.value:
            continue
        results.append(await settle_event(store, settings, event_id))
    return results


async def _mark_delta_applied(store: LedgerStore, settings: Settings, trade_ids: list[str]) -> None:
    writes = [(trade_id, {"$set": {"delta_applied": True}}, None) for trade_id in trade_ids]
    for batch in _chunks(writes, settings.SETTLEMENT_BATCH_SIZE):
        await store.bulk_update("trades", batch)


async def _mark_event_settled(store: LedgerStore, event_id: str, winning: str | None, now) -> None:
    await store.update("events", event_id, {
        "$set": {"winning_outcome": winning, "settled_at": now, "updated_at": now},
    })
