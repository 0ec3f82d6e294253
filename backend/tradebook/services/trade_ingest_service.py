"""
Trade ingestion.

Deduplicates a parsed batch against the ledger, stores the new trades and
reconciles holdings in a single transaction. Cache invalidation runs only
after the transaction commits.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from sqlalchemy.exc import SQLAlchemyError

from tradebook.core.database import AsyncSessionLocal
from tradebook.core.errors import DuplicateTradeError, TradeValidationError, TransactionFailure
from tradebook.core.metrics import metrics
from tradebook.services.holding_store import HoldingStore
from tradebook.services.position_reconciler import PositionReconciler, ReconcileResult
from tradebook.services.ranking_service import RankingService, get_ranking_service
from tradebook.services.trade_csv import TradeRow
from tradebook.services.trade_store import TradeStore

logger = logging.getLogger(__name__)


@dataclass
class IngestResult:
    records_imported: int = 0
    duplicates: list[DuplicateTradeError] = field(default_factory=list)
    invalid: list[TradeValidationError] = field(default_factory=list)
    reconciliation: ReconcileResult = field(default_factory=ReconcileResult)

    @property
    def duplicates_skipped(self) -> int:
        return len(self.duplicates)

    @property
    def invalid_rows(self) -> int:
        return len(self.invalid)

    @property
    def holdings_changed(self) -> bool:
        return self.reconciliation.holdings_changed

    def to_dict(self) -> dict[str, Any]:
        return {
            "records_imported": self.records_imported,
            "duplicates_skipped": self.duplicates_skipped,
            "invalid_rows": self.invalid_rows,
            "duplicate_records": [d.to_dict() for d in self.duplicates],
            "invalid_records": [e.to_dict() for e in self.invalid],
            "holdings_changed": self.holdings_changed,
        }


class TradeIngestService:
    def __init__(
        self,
        ranking: RankingService,
        session_factory: Callable[[], Any] = AsyncSessionLocal,
    ) -> None:
        self.ranking = ranking
        self.session_factory = session_factory

    async def ingest(
        self,
        rows: Sequence[TradeRow],
        invalid: Sequence[TradeValidationError] = (),
    ) -> IngestResult:
        """
        Store new trades and fold them into holdings.

        Duplicates (already stored, or repeated within the batch) are skipped
        and reported. Any store failure rolls back trades and holdings alike
        and surfaces as TransactionFailure.
        """
        result = IngestResult(invalid=list(invalid))

        try:
            async with self.session_factory() as session, session.begin():
                trade_store = TradeStore(session)
                accepted: list[TradeRow] = []
                seen: set[tuple] = set()
                for row in rows:
                    identity = row.identity
                    if identity in seen or await trade_store.exists(identity):
                        result.duplicates.append(DuplicateTradeError(row))
                        continue
                    seen.add(identity)
                    accepted.append(row)

                result.records_imported = await trade_store.insert_batch(
                    [row.to_model() for row in accepted]
                )
                reconciler = PositionReconciler(HoldingStore(session))
                result.reconciliation = await reconciler.reconcile(accepted)
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Ingestion rolled back: {e}")
            raise TransactionFailure("Trade batch could not be stored", e) from e

        metrics.trades_ingested(result.records_imported, result.duplicates_skipped, result.invalid_rows)
        if result.duplicates:
            logger.info("Skipped %d duplicate trade(s)", result.duplicates_skipped)

        self.ranking.on_holdings_changed(result.reconciliation)
        return result


ingest_service = TradeIngestService(ranking=get_ranking_service())


def get_ingest_service() -> TradeIngestService:
    return ingest_service
