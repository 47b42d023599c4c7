"""
backend/app/services/event_ingest_service.py

Purpose:
    Upsert event documents from the schedule/score feed. New events get their
    prior odds cached as current odds, zero pools and an initial odds-history
    record. The transition into final status is detected inside the same
    transaction that writes it, so exactly one caller sees it and triggers
    settlement.

Dependencies:
    - app.services.ledger_store
    - app.providers.prior_source
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from app.config import Settings
from app.models.market import EventIngestRequest, EventResponse, EventStatus, outcomes_for
from app.providers.prior_source import BasePriorSource, normalize_prior
from app.services.ledger_store import LedgerStore, TransactionAborted
from app.services.market_errors import aborted, invalid_argument
from app.utils import as_utc, utcnow

logger = logging.getLogger("oddsmarket.event_ingest")

_FINAL_STATUSES = {"final", "finished", "ft", "aet", "pen", "awarded"}
_LIVE_STATUSES = {"in_progress", "in_play", "inplay", "live", "paused", "halftime", "half", "ot"}


@dataclass
class IngestResult:
    event_id: str
    created: bool
    status: str
    became_final: bool


def normalize_status(raw: str | None) -> str:
    """Map raw feed statuses ("Final", "FINISHED", "3rd Qtr", "IN_PLAY", ...) onto EventStatus."""
    value = (raw or "").strip().lower()
    if value in _FINAL_STATUSES:
        return EventStatus.final.value
    if value in _LIVE_STATUSES or "qtr" in value or value.startswith("half") or value.endswith(" ot"):
        return EventStatus.in_progress.value
    return EventStatus.scheduled.value


def _feed_fields(payload: EventIngestRequest, status: str, now) -> dict:
    fields = {"status": status, "updated_at": now}
    for name in ("start_at", "home_team", "away_team", "home_score", "away_score", "result_winner"):
        value = getattr(payload, name)
        if value is not None and value != "":
            fields[name] = value
    return fields


async def ingest_event(
    store: LedgerStore,
    settings: Settings,
    payload: EventIngestRequest,
    prior_source: BasePriorSource,
) -> IngestResult:
    if not payload.event_id:
        raise invalid_argument("Missing event id.")
    event_id = payload.event_id
    kind = payload.sport_kind.value
    status = normalize_status(payload.status)

    prior = None
    if await store.get("events", event_id) is None:
        try:
            estimate = await prior_source.estimate(payload)
        except Exception:
            logger.exception("Prior source failed for event=%s, using defaults", event_id)
            estimate = None
        prior = normalize_prior(
            kind, estimate, settings.PRIOR_ODDS_DEFAULT, settings.PRIOR_DRAW_ODDS_DEFAULT,
        )

    async def _txn(session) -> IngestResult:
        now = utcnow()
        current = await store.get("events", event_id, session=session)
        fields = _feed_fields(payload, status, now)

        if current is None:
            odds = prior or normalize_prior(
                kind, None, settings.PRIOR_ODDS_DEFAULT, settings.PRIOR_DRAW_ODDS_DEFAULT,
            )
            await store.insert("events", {
                "_id": event_id,
                "sport_kind": kind,
                **fields,
                "odds": dict(odds),
                "prior_odds": dict(odds),
                "pools": {o: 0.0 for o in outcomes_for(kind)},
                "alpha": settings.ODDS_ALPHA_DEFAULT,
                "trade_ids": [],
                "created_at": now,
            }, session=session)
            await store.insert("odds_history", {
                "event_id": event_id,
                "timestamp": now,
                "odds": dict(odds),
                "source": "prior",
                "trade_id": None,
            }, session=session)
            return IngestResult(event_id, True, status, status == EventStatus.final.value)

        previous = current.get("status")
        if previous == EventStatus.final.value and status != EventStatus.final.value:
            logger.warning("Ignoring status regression for final event=%s (%s)", event_id, payload.status)
            fields["status"] = EventStatus.final.value
        # Odds, prior, pools and alpha are owned by bet placement and never overwritten here.
        await store.update("events", event_id, {"$set": fields}, session=session)
        became_final = previous != EventStatus.final.value and fields["status"] == EventStatus.final.value
        return IngestResult(event_id, False, fields["status"], became_final)

    try:
        result = await store.run_transaction(_txn)
    except TransactionAborted as exc:
        raise aborted() from exc

    if result.created:
        logger.info("Event created: event=%s kind=%s status=%s", event_id, kind, result.status)
    if result.became_final:
        logger.info("Event final: event=%s score=%s-%s", event_id, payload.home_score, payload.away_score)
    return result


def event_to_response(event: dict) -> EventResponse:
    return EventResponse(
        id=str(event["_id"]),
        sport_kind=event["sport_kind"],
        status=event.get("status", EventStatus.scheduled.value),
        start_at=as_utc(event.get("start_at")),
        home_team=event.get("home_team") or "",
        away_team=event.get("away_team") or "",
        home_score=event.get("home_score"),
        away_score=event.get("away_score"),
        odds=event.get("odds") or {},
        pools=event.get("pools") or {},
    )
