"""
backend/tests/test_event_ingest.py

Purpose:
    Event upsert from the schedule/score feed: prior caching and fallback,
    status normalization and the final-transition settlement trigger.
"""

from __future__ import annotations

import pytest

from app.models.market import EventIngestRequest, SportKind
from app.providers.prior_source import BasePriorSource, normalize_prior
from app.services.event_ingest_service import normalize_status
from app.services.market_engine import MarketEngine
from factories import seed_user


class _FixedPrior(BasePriorSource):
    def __init__(self, estimate):
        self.estimate_value = estimate
        self.calls = 0

    async def estimate(self, event):
        self.calls += 1
        return self.estimate_value


class _BrokenPrior(BasePriorSource):
    async def estimate(self, event):
        raise RuntimeError("model offline")


def _payload(**overrides) -> EventIngestRequest:
    data = {
        "event_id": "g1",
        "sport_kind": SportKind.two_outcome,
        "status": "Scheduled",
        "home_team": "Hawks",
        "away_team": "Bulls",
    }
    data.update(overrides)
    return EventIngestRequest(**data)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Final", "final"),
        ("FINISHED", "final"),
        ("IN_PLAY", "in_progress"),
        ("PAUSED", "in_progress"),
        ("3rd Qtr", "in_progress"),
        ("Halftime", "in_progress"),
        ("TIMED", "scheduled"),
        ("", "scheduled"),
        (None, "scheduled"),
    ],
)
def test_normalize_status(raw, expected) -> None:
    assert normalize_status(raw) == expected


def test_normalize_prior_rejects_bad_sums() -> None:
    assert normalize_prior(SportKind.two_outcome, {"home": 70, "away": 50}) == {"home": 50.0, "away": 50.0}
    assert normalize_prior(SportKind.three_outcome, {"home": 45, "away": 30}) == {"home": 40.0, "draw": 20.0, "away": 40.0}
    assert normalize_prior(SportKind.two_outcome, {"home": 62, "away": 40}) == {"home": 62.0, "away": 40.0}


@pytest.mark.asyncio
async def test_new_event_caches_prior_and_records_history(store, market_settings) -> None:
    prior = _FixedPrior({"home": 65.0, "away": 35.0})
    engine = MarketEngine(store, market_settings, prior_source=prior)

    result = await engine.ingest_event(_payload())

    assert result.created is True
    event = await store.get("events", "g1")
    assert event["odds"] == {"home": 65.0, "away": 35.0}
    assert event["prior_odds"] == {"home": 65.0, "away": 35.0}
    assert event["pools"] == {"home": 0.0, "away": 0.0}
    assert event["alpha"] == market_settings.ODDS_ALPHA_DEFAULT
    assert event["status"] == "scheduled"
    history = await engine.get_odds_history("g1")
    assert [(h["source"], h["odds"]) for h in history] == [("prior", {"home": 65.0, "away": 35.0})]


@pytest.mark.asyncio
async def test_prior_failure_falls_back_to_defaults(store, market_settings) -> None:
    engine = MarketEngine(store, market_settings, prior_source=_BrokenPrior())

    await engine.ingest_event(_payload(event_id="s1", sport_kind=SportKind.three_outcome))

    event = await store.get("events", "s1")
    assert event["odds"] == {"home": 40.0, "draw": 20.0, "away": 40.0}


@pytest.mark.asyncio
async def test_update_keeps_odds_and_pools(store, market_settings) -> None:
    prior = _FixedPrior({"home": 55.0, "away": 45.0})
    engine = MarketEngine(store, market_settings, prior_source=prior)
    await engine.ingest_event(_payload())
    await seed_user(store, "u1", balance=100)
    await engine.place_bet("u1", "g1", 10, "home")
    before = await store.get("events", "g1")

    result = await engine.ingest_event(_payload(status="2nd Qtr", home_score=30, away_score=28, home_team=""))

    after = await store.get("events", "g1")
    assert result.created is False
    assert result.became_final is False
    assert prior.calls == 1
    assert after["status"] == "in_progress"
    assert after["home_score"] == 30
    assert after["home_team"] == "Hawks"
    assert after["odds"] == before["odds"]
    assert after["pools"] == before["pools"]


@pytest.mark.asyncio
async def test_final_transition_settles_inline_once(engine, store) -> None:
    await engine.ingest_event(_payload())
    await seed_user(store, "u1", balance=100)
    placed = await engine.place_bet("u1", "g1", 10, "away")

    first = await engine.ingest_event(_payload(status="Final", home_score=99, away_score=101))
    second = await engine.ingest_event(_payload(status="Final", home_score=99, away_score=101))

    assert first.became_final is True
    assert second.became_final is False
    trade = await store.get("trades", placed.trade_id)
    assert trade["status"] == "Won"
    user = await store.get("users", "u1")
    assert user["wallet_balance"] == pytest.approx(90.0 + 20.0)


@pytest.mark.asyncio
async def test_final_status_does_not_regress(engine, store) -> None:
    await engine.ingest_event(_payload(status="FINISHED", home_score=1, away_score=0))

    result = await engine.ingest_event(_payload(status="IN_PLAY"))

    assert result.status == "final"
    assert (await store.get("events", "g1"))["status"] == "final"


@pytest.mark.asyncio
async def test_result_winner_drives_three_outcome_settlement(engine, store) -> None:
    await engine.ingest_event(_payload(event_id="cup", sport_kind=SportKind.three_outcome))
    await seed_user(store, "u1", balance=100)
    placed = await engine.place_bet("u1", "cup", 10, "home")

    # level after extra time, decided on penalties
    await engine.ingest_event(_payload(
        event_id="cup",
        sport_kind=SportKind.three_outcome,
        status="PEN",
        home_score=2,
        away_score=2,
        result_winner="HOME_TEAM",
    ))

    assert (await store.get("trades", placed.trade_id))["status"] == "Won"
