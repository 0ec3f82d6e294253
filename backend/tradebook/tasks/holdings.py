"""
Holding maintenance tasks.

Runs the one-time backfill that rebuilds holdings from the full trade
history.
"""
import asyncio
import logging

from tradebook.scheduler.celery_app import app
from tradebook.services.holding_backfill import backfill_holdings as _backfill_holdings

logger = logging.getLogger(__name__)


@app.task(name="tradebook.tasks.holdings.backfill_holdings")
def backfill_holdings() -> dict:
    """
    Replay every stored trade into holdings, once.

    A second run is a no-op reporting status "exists". Ranking caches live in
    the API process; they expire on their own TTL or can be dropped through
    the admin endpoint.
    """
    result = asyncio.run(_backfill_holdings())
    logger.info(f"Holdings backfill: {result}")
    return result
