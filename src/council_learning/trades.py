from __future__ import annotations

import sqlite3
import time
import uuid
from typing import Any, Mapping

from loguru import logger

from .db import TRADES, KnowledgeRepository
from .models import TradeOutcome


class TradeLedger:
    """Closed-trade outcomes reported by the execution side; read by the learning cycle."""

    def __init__(self, repository: KnowledgeRepository) -> None:
        self.repository = repository

    def record(self, trade: Mapping[str, Any] | TradeOutcome) -> str:
        if isinstance(trade, TradeOutcome):
            outcome = trade
        else:
            fields = dict(trade)
            if "pnl" not in fields:
                raise ValueError("Trade outcome requires 'pnl'")
            fields.setdefault("id", f"trade_{uuid.uuid4().hex[:12]}")
            fields.setdefault("timestamp", time.time())
            outcome = TradeOutcome.from_record(fields)

        if self.repository.insert(TRADES, outcome.id, outcome.to_record()):
            logger.debug("Trade outcome {} recorded (pnl={:+.2f})", outcome.id, outcome.pnl)
        return outcome.id

    def recent(self, limit: int = 100, since: float | None = None) -> list[TradeOutcome]:
        """Newest ``limit`` outcomes after ``since``, returned oldest first."""
        trades = self._query(direction="desc", limit=limit, since=since)
        return list(reversed(trades))

    def pending(self, since: float | None = None, limit: int = 100) -> list[TradeOutcome]:
        """Oldest ``limit`` outcomes after ``since``; a backlog drains over several calls.

        A batch never ends part-way through a timestamp, so a cursor taken
        from its last trade cannot skip a same-stamped neighbour.
        """
        trades = self._query(direction="asc", limit=limit + 1, since=since)
        if len(trades) <= limit:
            return trades
        overflow = trades[limit].timestamp
        batch = [trade for trade in trades[:limit] if trade.timestamp < overflow]
        return batch or trades[:limit]

    def _query(self, direction: str, limit: int, since: float | None) -> list[TradeOutcome]:
        try:
            records = self.repository.query(
                TRADES, order_by="timestamp", direction=direction, limit=limit, since=since
            )
        except sqlite3.Error as exc:
            logger.info("Trade outcomes query skipped (no data yet): {}", exc)
            return []
        return [TradeOutcome.from_record(record) for record in records]
