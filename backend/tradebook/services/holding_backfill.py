"""
One-time historical backfill of holdings from the full trade ledger.

Guarded by the InitializationStatus singleton so the replay runs at most
once per database.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from tradebook.core.database import AsyncSessionLocal
from tradebook.core.errors import TransactionFailure
from tradebook.models.initialization_status import InitializationStatus
from tradebook.services.holding_store import HoldingStore
from tradebook.services.position_reconciler import PositionReconciler
from tradebook.services.ranking_service import RankingService
from tradebook.services.trade_store import TradeStore

logger = logging.getLogger(__name__)


async def backfill_holdings(
    session_factory: Callable[[], Any] = AsyncSessionLocal,
    ranking: Optional[RankingService] = None,
) -> dict[str, Any]:
    try:
        async with session_factory() as session, session.begin():
            stmt = select(InitializationStatus).order_by(InitializationStatus.id).limit(1).with_for_update()
            status = (await session.execute(stmt)).scalar_one_or_none()

            if status is not None and status.is_initialized:
                logger.info(f"Holdings already initialized at {status.initialized_at}")
                return {
                    "status": "exists",
                    "initialized_at": status.initialized_at.isoformat() if status.initialized_at else None,
                }

            trades = await TradeStore(session).all_in_order()
            logger.info(f"Replaying {len(trades)} trades into holdings")
            result = await PositionReconciler(HoldingStore(session)).reconcile(trades)

            if status is None:
                status = InitializationStatus()
                session.add(status)
            status.is_initialized = True
            status.initialized_at = datetime.utcnow()
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Holdings backfill rolled back: {e}")
        raise TransactionFailure("Holdings backfill failed", e) from e

    if ranking is not None:
        ranking.on_holdings_changed(result)

    return {
        "status": "created",
        "trades_replayed": len(trades),
        "initialized_at": status.initialized_at.isoformat(),
        **result.summary(),
    }
