from __future__ import annotations

import sqlite3
import time

from loguru import logger

from .db import RULES, KnowledgeRepository
from .models import Lesson, Pattern, Rule
from .settings import Settings, settings as default_settings


def rule_id_for(source_id: str) -> str:
    return f"rule_{source_id}"


def _describe_pattern(pattern: Pattern) -> tuple[str, str, float]:
    parts = [f"{pattern.type} on {pattern.market}"]
    if pattern.setup:
        parts.append(f"setup={pattern.setup}")
    if pattern.indicators.rsi is not None:
        parts.append(f"rsi~{pattern.indicators.rsi:.0f}")
    condition = ", ".join(parts)
    action = (
        f"Favor {pattern.type} entries on {pattern.market} "
        f"(similar setups succeeded {pattern.success_rate:.0%} of the time)"
    )
    return condition, action, round(pattern.confidence * 10, 2)


def _describe_lesson(lesson: Lesson) -> tuple[str, str, float]:
    condition = lesson.triggering_event or f"market_condition={lesson.market_condition}"
    return condition, lesson.actionable_insight, float(lesson.severity)


class RuleEngine:
    """Confidence-weighted condition -> action rules promoted from patterns and lessons."""

    def __init__(self, repository: KnowledgeRepository, config: Settings | None = None) -> None:
        self.repository = repository
        self.config = config or default_settings

    def promote(self, source: Pattern | Lesson, confidence: float | None = None) -> Rule:
        if isinstance(source, Pattern):
            kind = "pattern"
            condition, action, priority = _describe_pattern(source)
        elif isinstance(source, Lesson):
            kind = "lesson"
            condition, action, priority = _describe_lesson(source)
        else:
            raise TypeError(f"Cannot promote {type(source).__name__} to a rule")

        if confidence is None:
            confidence = getattr(source, "confidence", None)
        if confidence is None:
            confidence = 0.5

        rule_id = rule_id_for(source.id)
        existing = self.get(rule_id)
        if existing is not None:
            existing.condition = condition
            existing.action = action
            existing.priority = priority
            existing.confidence = float(confidence)
            rule = existing
        else:
            rule = Rule(
                id=rule_id,
                source=kind,
                source_id=source.id,
                condition=condition,
                action=action,
                confidence=float(confidence),
                priority=priority,
            )

        self.repository.put(RULES, rule.id, rule.to_record())
        logger.info(
            "Rule {} promoted from {} {} (confidence={:.2f}, active={})",
            rule.id, kind, source.id, rule.confidence, rule.active,
        )
        return rule

    def get(self, rule_id: str) -> Rule | None:
        record = self.repository.get(RULES, rule_id)
        return Rule.from_record(record) if record else None

    def active_rules(self, min_confidence: float | None = None, limit: int | None = None) -> list[Rule]:
        threshold = self.config.promotion_confidence_threshold if min_confidence is None else min_confidence
        cap = limit or self.config.active_rule_limit
        try:
            records = self.repository.query(
                RULES,
                order_by="confidence",
                direction="desc",
                limit=cap,
                filters={"active": True},
            )
        except sqlite3.Error as exc:
            logger.info("Rules query skipped (no data yet): {}", exc)
            return []
        rules = [Rule.from_record(record) for record in records]
        return [rule for rule in rules if rule.confidence > threshold]

    def deactivate(self, rule_id: str) -> Rule | None:
        rule = self.get(rule_id)
        if rule is None:
            return None
        rule.active = False
        self.repository.put(RULES, rule.id, rule.to_record())
        logger.info("Rule {} deactivated", rule_id)
        return rule

    def record_usage(self, rule_id: str, successful: bool) -> Rule | None:
        rule = self.get(rule_id)
        if rule is None:
            logger.warning("Usage reported for unknown rule {}", rule_id)
            return None
        rule.last_used = time.time()
        rule.use_count += 1
        if successful:
            rule.success_count += 1
        self.repository.put(RULES, rule.id, rule.to_record())
        return rule
