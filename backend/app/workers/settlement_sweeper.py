"""Settlement sweep: settles final events whose trigger was missed."""

import logging

from app.services.market_engine import MarketEngine

logger = logging.getLogger("oddsmarket.settlement_sweeper")


async def run_settlement_sweep(engine: MarketEngine) -> None:
    results = await engine.sweep_final_events()
    resolved = sum(r.resolved for r in results)
    if resolved:
        logger.info("Settlement sweep complete: %d events, %d trades resolved", len(results), resolved)
    else:
        logger.debug("Settlement sweep complete: nothing pending on final events")
