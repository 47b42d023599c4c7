"""Settlement reconciliation: re-applies wallet deltas lost between settlement phases."""

import logging

from app.services.market_engine import MarketEngine

logger = logging.getLogger("oddsmarket.reconciliation")


async def run_reconciliation(engine: MarketEngine) -> None:
    result = await engine.reconcile_settlements()
    if result.scanned:
        logger.info(
            "Reconciliation complete: scanned=%d applied=%d already_applied=%d",
            result.scanned, result.applied, result.already_applied,
        )
    else:
        logger.debug("Reconciliation complete: no unapplied deltas")
