from __future__ import annotations

import sqlite3
import time
import uuid
from typing import Any, Mapping

from loguru import logger

from .confidence import estimate_confidence
from .db import PATTERN_RELATIONSHIPS, PATTERNS, KnowledgeRepository
from .models import OUTCOMES, Indicators, MarketSnapshot, Pattern
from .rules import RuleEngine
from .settings import Settings, settings as default_settings
from .similarity import similarity


def _optional_float(observation: Mapping[str, Any], key: str) -> float | None:
    value = observation.get(key)
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Pattern field {key!r} must be numeric, got {value!r}") from exc


def build_pattern(
    observation: Mapping[str, Any],
    pattern_id: str | None = None,
    default_market: str = "BTC-PERP",
) -> Pattern:
    """Validate a flat observation (``rsi``, ``price``, ``outcome``...) into a Pattern."""
    pattern_type = str(observation.get("type") or "").strip()
    if not pattern_type:
        raise ValueError("Pattern requires a non-empty 'type'")
    outcome = observation.get("outcome")
    if outcome not in OUTCOMES:
        raise ValueError(f"Pattern outcome must be one of {OUTCOMES}, got {outcome!r}")

    indicators = observation.get("indicators")
    if isinstance(indicators, Mapping):
        parsed_indicators = Indicators(
            rsi=_optional_float(indicators, "rsi"),
            macd=indicators.get("macd"),
            bollinger=indicators.get("bollinger"),
            volume_profile=indicators.get("volume_profile"),
        )
    else:
        parsed_indicators = Indicators(
            rsi=_optional_float(observation, "rsi"),
            macd=observation.get("macd"),
            bollinger=observation.get("bollinger"),
            volume_profile=observation.get("volume_profile"),
        )

    return Pattern(
        id=pattern_id or f"pattern_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}",
        timestamp=time.time(),
        market=str(observation.get("market") or default_market),
        type=pattern_type,
        outcome=outcome,
        price=_optional_float(observation, "price"),
        volume=_optional_float(observation, "volume"),
        indicators=parsed_indicators,
        setup=observation.get("setup"),
        pnl=float(observation.get("pnl") or 0.0),
        duration=_optional_float(observation, "duration"),
        agent_analysis=dict(observation.get("agent_analysis") or {}),
        confidence=float(observation.get("confidence", 0.5) or 0.5),
        success_rate=1.0 if outcome == "success" else 0.0,
    )


class PatternStore:
    def __init__(
        self,
        repository: KnowledgeRepository,
        rule_engine: RuleEngine,
        config: Settings | None = None,
    ) -> None:
        self.repository = repository
        self.rule_engine = rule_engine
        self.config = config or default_settings

    def record(self, observation: Mapping[str, Any] | Pattern, pattern_id: str | None = None) -> str:
        if isinstance(observation, Pattern):
            pattern = observation
        else:
            pattern = build_pattern(observation, pattern_id, self.config.market_symbol)

        if not self.repository.insert(PATTERNS, pattern.id, pattern.to_record()):
            logger.debug("Pattern {} already recorded; skipping reinforcement", pattern.id)
            return pattern.id

        logger.info(
            "Recorded pattern {} ({} {} -> {})", pattern.id, pattern.market, pattern.type, pattern.outcome
        )
        self._reinforce(pattern)
        return pattern.id

    def _reinforce(self, pattern: Pattern) -> None:
        similar = self.find_scored(pattern, self.config.similarity_threshold)
        if not similar:
            return

        success_count = sum(1 for match, _ in similar if match.outcome == "success")
        success_rate = success_count / len(similar)
        confidence = estimate_confidence(success_count, len(similar))

        pattern.reinforced = True
        pattern.reinforcement_count = max(pattern.reinforcement_count, len(similar))
        pattern.success_rate = success_rate
        pattern.confidence = confidence
        self.repository.put(PATTERNS, pattern.id, pattern.to_record())

        self.repository.put(
            PATTERN_RELATIONSHIPS,
            f"rel_{pattern.id}",
            {
                "id": f"rel_{pattern.id}",
                "timestamp": time.time(),
                "pattern_id": pattern.id,
                "similar": [{"id": match.id, "similarity": round(score, 4)} for match, score in similar],
                "success_rate": success_rate,
                "confidence": confidence,
            },
        )
        logger.debug(
            "Pattern {} reinforced by {} similar (success={:.0%}, confidence={:.3f})",
            pattern.id, len(similar), success_rate, confidence,
        )

        if confidence > self.config.promotion_confidence_threshold:
            self.rule_engine.promote(pattern, confidence)

    def find(self, target: Pattern, threshold: float | None = None) -> list[Pattern]:
        return [match for match, _ in self.find_scored(target, threshold)]

    def similar_to_market(self, snapshot: MarketSnapshot, limit: int, threshold: float | None = None) -> list[Pattern]:
        """Patterns whose recorded conditions resemble the live snapshot, any type or setup."""
        target = Pattern(
            id="live_market",
            timestamp=snapshot.timestamp,
            market=self.config.market_symbol,
            type="",
            outcome="partial",
            price=snapshot.btc_price,
            volume=snapshot.volume,
            indicators=Indicators(rsi=snapshot.rsi),
        )
        cutoff = self.config.context_similarity_threshold if threshold is None else threshold
        return self.find(target, cutoff)[:limit]

    def find_scored(self, target: Pattern, threshold: float | None = None) -> list[tuple[Pattern, float]]:
        """Recent patterns matching the target's type/market, scored and ranked by similarity."""
        cutoff = self.config.similarity_threshold if threshold is None else threshold
        try:
            records = self.repository.query(
                PATTERNS,
                order_by="timestamp",
                direction="desc",
                limit=self.config.pattern_query_limit,
            )
        except sqlite3.Error as exc:
            logger.info("Patterns query skipped (no data yet): {}", exc)
            return []

        matches: list[tuple[Pattern, float]] = []
        for record in records:
            candidate = Pattern.from_record(record)
            if target.type and candidate.type != target.type:
                continue
            if target.market and candidate.market != target.market:
                continue
            score = similarity(target, candidate)
            if score > cutoff:
                matches.append((candidate, score))

        matches.sort(key=lambda item: item[1], reverse=True)
        return matches[: self.config.similar_pattern_limit]

    def get(self, pattern_id: str) -> Pattern | None:
        record = self.repository.get(PATTERNS, pattern_id)
        return Pattern.from_record(record) if record else None

    def recent(self, limit: int = 20) -> list[Pattern]:
        try:
            records = self.repository.query(PATTERNS, order_by="timestamp", direction="desc", limit=limit)
        except sqlite3.Error as exc:
            logger.info("Patterns query skipped (no data yet): {}", exc)
            return []
        return [Pattern.from_record(record) for record in records]
