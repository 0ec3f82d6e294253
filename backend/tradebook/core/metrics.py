"""
Metrics emission system for observability.

Provides structured metrics for:
- Trade ingestion (imported, duplicate and invalid rows)
- Holding reconciliation (created, extended, reduced, closed, netted)
- Ranking cache activity (hits, misses, invalidations, failed recomputes)

Metrics are emitted to:
1. Python logging (immediate visibility)
2. Redis stream (real-time consumers, dashboard)
3. In-memory buffer (API aggregation)
"""
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

from tradebook.core.redis import StreamNames

logger = logging.getLogger(__name__)


@dataclass
class MetricEvent:
    """Structured metric event."""
    timestamp: datetime
    category: str          # "ingest", "holding", "cache"
    event_type: str        # "imported", "closed", "hit", etc.
    symbol: Optional[str]
    value: float
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "category": self.category,
            "event_type": self.event_type,
            "symbol": self.symbol,
            "value": self.value,
            "metadata": self.metadata
        }


class MetricsEmitter:
    """
    Emit structured metrics to multiple destinations.
    """

    CATEGORY_INGEST = "ingest"
    CATEGORY_HOLDING = "holding"
    CATEGORY_CACHE = "cache"

    def __init__(self, redis_client=None, buffer_size: int = 1000):
        """
        Initialize metrics emitter.

        Args:
            redis_client: Optional Redis client for stream publishing
            buffer_size: Max events to keep in memory buffer
        """
        self.redis = redis_client
        self.buffer_size = buffer_size
        self._buffer: List[MetricEvent] = []

    def set_redis(self, redis_client) -> None:
        """Set Redis client (for lazy initialization)."""
        self.redis = redis_client

    def emit(
        self,
        category: str,
        event_type: str,
        value: float,
        symbol: str = None,
        metadata: dict = None
    ) -> MetricEvent:
        """
        Emit a metric event.

        Args:
            category: Event category (ingest, holding, cache)
            event_type: Specific event type within category
            value: Numeric value (1.0/0.0 for boolean, count otherwise)
            symbol: Optional instrument symbol
            metadata: Additional context as key-value pairs

        Returns:
            The emitted MetricEvent
        """
        event = MetricEvent(
            timestamp=datetime.now(timezone.utc),
            category=category,
            event_type=event_type,
            symbol=symbol,
            value=value,
            metadata=metadata or {}
        )

        meta_str = f" {metadata}" if metadata else ""
        logger.info(
            f"METRIC [{category}/{event_type}] "
            f"symbol={symbol} value={value}{meta_str}"
        )

        self._buffer.append(event)
        if len(self._buffer) > self.buffer_size:
            self._buffer = self._buffer[-self.buffer_size:]

        if self.redis:
            try:
                self.redis.xadd(StreamNames.METRICS, {
                    "data": json.dumps(event.to_dict(), default=str)
                })
            except Exception as e:
                logger.warning(f"Failed to publish metric to Redis: {e}")

        return event

    # =========================================================================
    # Convenience methods for common metrics
    # =========================================================================

    def trades_ingested(self, imported: int, duplicates: int, invalid: int) -> MetricEvent:
        """Record the outcome of one upload batch."""
        return self.emit(
            self.CATEGORY_INGEST, "batch", float(imported),
            metadata={"duplicates": duplicates, "invalid": invalid}
        )

    def holding_event(self, event_type: str, client_name: str, symbol: str,
                      quantity: int, **extra) -> MetricEvent:
        """Record a holding mutation (created, extended, reduced, closed, ...)."""
        metadata = {"client_name": client_name}
        metadata.update({k: str(v) for k, v in extra.items()})
        return self.emit(
            self.CATEGORY_HOLDING, event_type, float(quantity),
            symbol=symbol, metadata=metadata
        )

    def cache_event(self, event_type: str, key: str) -> MetricEvent:
        """Record cache hit/miss/invalidation."""
        return self.emit(self.CATEGORY_CACHE, event_type, 1.0, metadata={"key": key})

    # =========================================================================
    # Query methods for API
    # =========================================================================

    def get_recent(
        self,
        category: str = None,
        event_type: str = None,
        symbol: str = None,
        limit: int = 100
    ) -> List[MetricEvent]:
        """Get recent metrics from buffer with optional filtering."""
        events = self._buffer

        if category:
            events = [e for e in events if e.category == category]
        if event_type:
            events = [e for e in events if e.event_type == event_type]
        if symbol:
            events = [e for e in events if e.symbol == symbol]

        return events[-limit:]

    def get_summary(self, category: str = None) -> Dict[str, Dict[str, int]]:
        """Get count summary of recent events by category and type."""
        events = self._buffer
        if category:
            events = [e for e in events if e.category == category]

        summary: Dict[str, Dict[str, int]] = {}
        for event in events:
            summary.setdefault(event.category, {})
            summary[event.category][event.event_type] = (
                summary[event.category].get(event.event_type, 0) + 1
            )

        return summary

    def clear_buffer(self) -> None:
        """Clear the in-memory buffer."""
        self._buffer = []


# Global metrics instance
metrics = MetricsEmitter()
