from __future__ import annotations

import sqlite3
import time
import uuid
from typing import Any, Mapping

from loguru import logger

from .confidence import estimate_confidence
from .db import LESSONS, KnowledgeRepository
from .models import IMPACTS, Lesson, PerformanceMetric, TradeOutcome
from .performance import HIGH_WIN_RATE, LOW_WIN_RATE
from .rules import RuleEngine
from .settings import Settings, settings as default_settings


LARGE_LOSS = 100.0


class LessonLog:
    def __init__(
        self,
        repository: KnowledgeRepository,
        rule_engine: RuleEngine,
        config: Settings | None = None,
    ) -> None:
        self.repository = repository
        self.rule_engine = rule_engine
        self.config = config or default_settings

    def record(self, lesson: Mapping[str, Any] | Lesson, lesson_id: str | None = None) -> str:
        if isinstance(lesson, Lesson):
            entry = lesson
        else:
            fields = dict(lesson)
            fields.setdefault("id", lesson_id or f"lesson_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}")
            fields.setdefault("timestamp", time.time())
            if not fields.get("title"):
                raise ValueError("Lesson requires a title")
            entry = Lesson.from_record(fields)

        if entry.impact not in IMPACTS:
            raise ValueError(f"Lesson impact must be one of {IMPACTS}, got {entry.impact!r}")
        try:
            severity = float(entry.severity)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Lesson severity must be numeric, got {entry.severity!r}") from exc
        entry.severity = int(max(1, min(10, severity)))

        if not self.repository.insert(LESSONS, entry.id, entry.to_record()):
            logger.debug("Lesson {} already recorded", entry.id)
            return entry.id

        logger.info("Recorded {} lesson {}: {} (severity {})", entry.impact, entry.id, entry.title, entry.severity)
        if entry.actionable_insight:
            self.rule_engine.promote(entry)
        return entry.id

    def get(self, lesson_id: str) -> Lesson | None:
        record = self.repository.get(LESSONS, lesson_id)
        return Lesson.from_record(record) if record else None

    def from_performance(self, metric: PerformanceMetric) -> Lesson | None:
        if metric.trades <= 0:
            return None

        if metric.win_rate < LOW_WIN_RATE:
            lesson = Lesson(
                id=f"lesson_{metric.id}",
                timestamp=time.time(),
                title="Low Win Rate Period Analysis",
                description=f"Win rate dropped to {metric.win_rate:.2f} during {metric.market_regime} market",
                category="performance_analysis",
                market_condition=metric.market_regime,
                triggering_event=f"win_rate<{LOW_WIN_RATE} in {metric.market_regime}",
                impact="negative",
                severity=8,
                actionable_insight="Reduce position size in similar market conditions",
                agent_contributions=metric.agent_metrics,
            )
        elif metric.win_rate > HIGH_WIN_RATE:
            lesson = Lesson(
                id=f"lesson_{metric.id}",
                timestamp=time.time(),
                title="High Performance Period Analysis",
                description=f"Achieved {metric.win_rate:.2f} win rate during {metric.market_regime} market",
                category="performance_analysis",
                market_condition=metric.market_regime,
                triggering_event=f"win_rate>{HIGH_WIN_RATE} in {metric.market_regime}",
                impact="positive",
                severity=9,
                actionable_insight="Increase confidence in similar market conditions",
                agent_contributions=metric.agent_metrics,
            )
        else:
            return None

        self.record(lesson)
        return lesson

    def from_failure(self, trade: TradeOutcome, market_condition: str = "neutral") -> Lesson:
        lesson = Lesson(
            id=f"lesson_{trade.id}",
            timestamp=time.time(),
            title="Loss Analysis",
            description=f"Trade {trade.id} on {trade.market} resulted in {trade.pnl:.2f} loss",
            category="trade_failure",
            market_condition=market_condition,
            triggering_event=trade.setup or trade.pattern_type or "unknown",
            impact="negative",
            severity=8 if abs(trade.pnl) > LARGE_LOSS else 5,
            actionable_insight="Review entry criteria",
            preventative_measure="Tighten stop loss",
            agent_contributions=dict(trade.agent_scores),
        )
        self.record(lesson)
        return lesson

    def relevant(self, market_condition: str, limit: int | None = None) -> list[Lesson]:
        """Most severe lessons recorded under ``market_condition``."""
        cap = self.config.context_item_limit if limit is None else limit
        try:
            records = self.repository.query(
                LESSONS,
                order_by="severity",
                direction="desc",
                limit=self.config.lesson_query_limit,
                filters={"market_condition": market_condition},
            )
        except sqlite3.Error as exc:
            logger.info("Lessons query skipped (no data yet): {}", exc)
            return []
        return [Lesson.from_record(record) for record in records][:cap]

    def record_application(self, lesson_id: str, successful: bool) -> Lesson | None:
        lesson = self.get(lesson_id)
        if lesson is None:
            logger.warning("Application reported for unknown lesson {}", lesson_id)
            return None

        lesson.application_count += 1
        if successful:
            lesson.successful_applications += 1
        lesson.confidence = estimate_confidence(lesson.successful_applications, lesson.application_count)
        lesson.validated = lesson.confidence > self.config.promotion_confidence_threshold
        self.repository.put(LESSONS, lesson.id, lesson.to_record())

        if lesson.actionable_insight:
            self.rule_engine.promote(lesson, lesson.confidence)
        return lesson
