"""
backend/tests/test_odds_engine.py

Purpose:
    Unit tests for the pure odds computation: market odds, blending,
    smoothing and three-outcome renormalization.
"""

from __future__ import annotations

import pytest

from app.models.market import SportKind
from app.services.odds_engine import (
    OddsParams,
    compute_odds,
    expected_payout,
    market_odds,
    repriced_stake_value,
    resolve_prior_odds,
    smooth,
)

PARAMS = OddsParams()


def test_market_odds_unbacked_outcome_gets_placeholder() -> None:
    odds = market_odds({"home": 100.0, "away": 0.0}, ("home", "away"), 1000.0)
    assert odds == {"home": 100.0, "away": 1000.0}


def test_market_odds_split_pool() -> None:
    odds = market_odds({"home": 75.0, "away": 25.0}, ("home", "away"), 1000.0)
    assert odds["home"] == pytest.approx(133.333, rel=1e-4)
    assert odds["away"] == pytest.approx(400.0)


def test_smooth_caps_move_at_beta() -> None:
    assert smooth(60.0, 80.0, 0.1) == pytest.approx(60.1)
    assert smooth(60.0, 20.0, 0.1) == pytest.approx(59.9)
    assert smooth(60.0, 60.05, 0.1) == pytest.approx(60.05)


def test_first_bet_on_two_outcome_event() -> None:
    quote = compute_odds(
        SportKind.two_outcome,
        {"home": 100.0, "away": 0.0},
        {"home": 60.0, "away": 40.0},
        {"home": 60.0, "away": 40.0},
        PARAMS,
        alpha=0.5,
    )
    assert quote.market_odds["home"] == pytest.approx(100.0)
    assert quote.raw_odds["home"] == pytest.approx(80.0)
    assert quote.odds["home"] == pytest.approx(60.1)
    assert quote.odds["away"] == pytest.approx(40.1)
    # two-outcome odds are left unnormalized
    assert sum(quote.odds.values()) == pytest.approx(100.2)


def test_expected_payout_uses_odds_at_placement() -> None:
    assert expected_payout(100.0, 60.0) == pytest.approx(166.67, abs=0.01)
    assert expected_payout(50.0, 40.0) == pytest.approx(125.0)


def test_three_outcome_odds_sum_to_100() -> None:
    prior = {"home": 40.0, "draw": 20.0, "away": 40.0}
    quote = compute_odds(
        SportKind.three_outcome,
        {"home": 10.0, "draw": 0.0, "away": 0.0},
        prior,
        prior,
        PARAMS,
    )
    assert sum(quote.odds.values()) == pytest.approx(100.0)
    assert quote.odds["home"] == pytest.approx(40.1 / 100.3 * 100)
    assert quote.odds["draw"] == pytest.approx(20.1 / 100.3 * 100)


def test_missing_prior_falls_back_to_current_then_defaults() -> None:
    resolved = resolve_prior_odds(
        SportKind.three_outcome,
        {"home": 45.0},
        {"away": 35.0},
        PARAMS,
    )
    assert resolved == {"home": 45.0, "draw": 20.0, "away": 35.0}
    assert resolve_prior_odds(SportKind.two_outcome, None, None, PARAMS) == {"home": 50.0, "away": 50.0}


def test_alpha_override_changes_blend() -> None:
    quote = compute_odds(
        SportKind.two_outcome,
        {"home": 100.0, "away": 100.0},
        {"home": 50.0, "away": 50.0},
        None,
        PARAMS,
        alpha=1.0,
    )
    # With alpha 1 the market is ignored; no previous odds means raw is adopted as is.
    assert quote.odds == {"home": 50.0, "away": 50.0}
    assert quote.alpha == 1.0


def test_repriced_stake_value() -> None:
    assert repriced_stake_value(100.0, 60.0, 60.2) == pytest.approx(100.3333, rel=1e-4)
