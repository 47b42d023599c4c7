"""
backend/app/services/odds_engine.py

Purpose:
    Pure odds computation for pari-mutuel style events. Odds are implied
    win percentages (0-100). New odds blend the cached prior with the
    market view implied by pooled stakes, then move at most `beta`
    percentage points per placed bet.

    Three-outcome events are renormalized to sum to 100 after smoothing.
    Two-outcome events are not, so their odds may drift from summing to 100.

Dependencies:
    - app.models.market
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from app.models.market import Outcome, SportKind, outcomes_for
from app.utils import is_number


@dataclass(frozen=True)
class OddsParams:
    alpha: float = 0.5
    beta: float = 0.1
    unbacked_odds: float = 1000.0
    prior_default: float = 50.0
    prior_draw_default: float = 20.0


@dataclass(frozen=True)
class OddsQuote:
    odds: dict[str, float]
    prior_odds: dict[str, float]
    market_odds: dict[str, float]
    raw_odds: dict[str, float]
    alpha: float


def market_odds(pools: dict[str, float], outcomes: tuple[str, ...], unbacked_odds: float) -> dict[str, float]:
    """Implied odds from the stake distribution; an unbacked outcome gets `unbacked_odds`."""
    total = sum(pools.get(o, 0.0) for o in outcomes)
    return {
        o: (100.0 * total / pools[o]) if pools.get(o, 0.0) > 0 else unbacked_odds
        for o in outcomes
    }


def smooth(previous: float, raw: float, beta: float) -> float:
    if abs(raw - previous) > beta:
        return previous + math.copysign(beta, raw - previous)
    return raw


def normalize(odds: dict[str, float]) -> dict[str, float]:
    total = sum(odds.values())
    if total <= 0:
        return dict(odds)
    return {o: value / total * 100.0 for o, value in odds.items()}


def resolve_prior_odds(
    kind: SportKind | str,
    prior_odds: dict | None,
    current_odds: dict | None,
    params: OddsParams,
) -> dict[str, float]:
    """Cached prior per outcome, else current odds, else the configured default."""
    prior_odds = prior_odds or {}
    current_odds = current_odds or {}
    resolved: dict[str, float] = {}
    for o in outcomes_for(kind):
        if is_number(prior_odds.get(o)):
            resolved[o] = float(prior_odds[o])
        elif is_number(current_odds.get(o)):
            resolved[o] = float(current_odds[o])
        elif o == Outcome.draw.value:
            resolved[o] = params.prior_draw_default
        else:
            resolved[o] = params.prior_default
    return resolved


def compute_odds(
    kind: SportKind | str,
    pools: dict[str, float],
    prior_odds: dict | None,
    previous_odds: dict | None,
    params: OddsParams,
    alpha: float | None = None,
) -> OddsQuote:
    """Recompute per-outcome odds after a stake was added to `pools`.

    `pools` must already include the new bet. `alpha` overrides the default
    blend weight with the one persisted on the event.
    """
    outcomes = outcomes_for(kind)
    weight = float(alpha) if is_number(alpha) else params.alpha
    priors = resolve_prior_odds(kind, prior_odds, previous_odds, params)
    market = market_odds(pools, outcomes, params.unbacked_odds)
    previous_odds = previous_odds or {}

    raw: dict[str, float] = {}
    new: dict[str, float] = {}
    for o in outcomes:
        raw[o] = weight * priors[o] + (1.0 - weight) * market[o]
        prev = float(previous_odds[o]) if is_number(previous_odds.get(o)) else raw[o]
        new[o] = smooth(prev, raw[o], params.beta)

    if SportKind(kind) == SportKind.three_outcome:
        new = normalize(new)

    return OddsQuote(odds=new, prior_odds=priors, market_odds=market, raw_odds=raw, alpha=weight)


def expected_payout(amount: float, odds: float) -> float:
    """Payout for a winning stake placed at `odds` (implied percentage)."""
    return amount * (100.0 / odds)


def repriced_stake_value(amount: float, odds_at_placement: float, current_odds: float) -> float:
    return amount * (current_odds / odds_at_placement)
