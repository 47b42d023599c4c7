"""
backend/app/providers/prior_source.py

Purpose:
    Prior probability estimates for a matchup. The model behind an estimate
    is external; the engine only consumes (home, draw?, away) percentages
    and caches them on the event the first time it is ingested.

Dependencies:
    - app.models.market
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

from app.models.market import Outcome, SportKind, outcomes_for
from app.utils import is_number

logger = logging.getLogger("oddsmarket.prior_source")

# Estimates whose percentages do not sum to roughly 100 are discarded.
_SUM_TOLERANCE = 5.0


class BasePriorSource(ABC):
    """Abstract base class for prior probability providers."""

    @abstractmethod
    async def estimate(self, event: Any) -> dict[str, float] | None:
        """Return win percentages keyed by outcome for the given event payload.

        Two-outcome events: {"home": float, "away": float}
        Three-outcome events: {"home": float, "draw": float, "away": float}
        None means no estimate is available.
        """
        ...


class StaticPriorSource(BasePriorSource):
    """Returns no estimate; events fall back to the configured defaults."""

    async def estimate(self, event: Any) -> dict[str, float] | None:
        return None


def default_prior(kind: SportKind | str, prior_default: float, draw_default: float) -> dict[str, float]:
    if SportKind(kind) == SportKind.three_outcome:
        side = (100.0 - draw_default) / 2
        return {Outcome.home.value: side, Outcome.draw.value: draw_default, Outcome.away.value: side}
    return {Outcome.home.value: prior_default, Outcome.away.value: 100.0 - prior_default}


def normalize_prior(
    kind: SportKind | str,
    estimate: dict | None,
    prior_default: float = 50.0,
    draw_default: float = 20.0,
) -> dict[str, float]:
    """Validate an estimate, falling back to defaults when unusable."""
    fallback = default_prior(kind, prior_default, draw_default)
    if not estimate:
        return fallback
    outcomes = outcomes_for(kind)
    values = {o: estimate.get(o) for o in outcomes}
    if not all(is_number(v) and v > 0 for v in values.values()):
        logger.warning("Prior estimate missing outcomes or non-positive: %s", estimate)
        return fallback
    total = sum(values.values())
    if abs(total - 100.0) > _SUM_TOLERANCE:
        logger.warning("Prior percentages don't sum close to 100%% (%.1f%%). Using defaults.", total)
        return fallback
    return {o: float(v) for o, v in values.items()}
