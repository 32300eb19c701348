"""Records persisted by the knowledge base and discussion transcript.

Every record round-trips through a plain JSON body (``to_record`` /
``from_record``); unknown keys in stored bodies are ignored so older
documents keep loading after fields are added.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any, Mapping


class AdvisorRole(str, Enum):
    SENTIMENT = "sentiment"
    MARKET = "market"
    MACRO = "macro"
    COORDINATOR = "rl80"


ROLE_SEQUENCE: tuple[AdvisorRole, ...] = (
    AdvisorRole.SENTIMENT,
    AdvisorRole.MARKET,
    AdvisorRole.MACRO,
    AdvisorRole.COORDINATOR,
)


class Topic(str, Enum):
    MARKET_ANALYSIS = "market_analysis"
    RISK_ASSESSMENT = "risk_assessment"
    ENTRY_OPPORTUNITIES = "entry_opportunities"
    EXIT_STRATEGIES = "exit_strategies"
    MACRO_OUTLOOK = "macro_outlook"
    SENTIMENT_CHECK = "sentiment_check"
    PERFORMANCE_REVIEW = "performance_review"


OUTCOMES = ("success", "failure", "partial")
IMPACTS = ("positive", "negative", "neutral")


def _from_dict(cls, data: Mapping[str, Any]):
    known = {f.name for f in fields(cls)}
    return cls(**{key: value for key, value in data.items() if key in known})


@dataclass
class Indicators:
    rsi: float | None = None
    macd: float | None = None
    bollinger: Any = None
    volume_profile: Any = None


@dataclass
class Pattern:
    id: str
    timestamp: float
    market: str
    type: str
    outcome: str
    price: float | None = None
    volume: float | None = None
    indicators: Indicators = field(default_factory=Indicators)
    setup: str | None = None
    pnl: float = 0.0
    duration: float | None = None
    agent_analysis: dict = field(default_factory=dict)
    confidence: float = 0.5
    reinforced: bool = False
    reinforcement_count: int = 0
    success_rate: float = 0.0

    def to_record(self) -> dict:
        return asdict(self)

    @classmethod
    def from_record(cls, data: Mapping[str, Any]) -> "Pattern":
        payload = dict(data)
        indicators = payload.get("indicators") or {}
        if isinstance(indicators, Mapping):
            payload["indicators"] = _from_dict(Indicators, indicators)
        return _from_dict(cls, payload)


@dataclass
class Lesson:
    id: str
    timestamp: float
    title: str
    description: str = ""
    category: str = "general"
    market_condition: str = "neutral"
    triggering_event: str = ""
    impact: str = "neutral"
    severity: int = 5
    actionable_insight: str = ""
    preventative_measure: str = ""
    agent_contributions: dict = field(default_factory=dict)
    validated: bool = False
    application_count: int = 0
    successful_applications: int = 0
    confidence: float = 0.5

    def to_record(self) -> dict:
        return asdict(self)

    @classmethod
    def from_record(cls, data: Mapping[str, Any]) -> "Lesson":
        return _from_dict(cls, data)


@dataclass
class Rule:
    id: str
    source: str
    source_id: str
    condition: str
    action: str
    confidence: float
    priority: float = 0
    active: bool = True
    created: float = field(default_factory=time.time)
    last_used: float | None = None
    use_count: int = 0
    success_count: int = 0

    def to_record(self) -> dict:
        return asdict(self)

    @classmethod
    def from_record(cls, data: Mapping[str, Any]) -> "Rule":
        return _from_dict(cls, data)


@dataclass
class PerformanceMetric:
    id: str
    timestamp: float
    period: str
    trades: int
    win_rate: float
    pnl: float
    sharpe_ratio: float
    max_drawdown: float
    market_regime: str = "neutral"
    volatility: float = 0.0
    trend: str = "neutral"
    agent_metrics: dict = field(default_factory=dict)
    strengths: list[str] = field(default_factory=list)
    weaknesses: list[str] = field(default_factory=list)
    improvements: list[str] = field(default_factory=list)

    def to_record(self) -> dict:
        return asdict(self)

    @classmethod
    def from_record(cls, data: Mapping[str, Any]) -> "PerformanceMetric":
        return _from_dict(cls, data)


@dataclass
class Message:
    id: str
    timestamp: float
    agent: str
    topic: str
    message: str
    confidence: float = 0.5
    data: dict = field(default_factory=dict)

    def to_record(self) -> dict:
        return asdict(self)

    @classmethod
    def from_record(cls, data: Mapping[str, Any]) -> "Message":
        return _from_dict(cls, data)


@dataclass
class TradeOutcome:
    """A closed trade reported by the execution side."""
    id: str
    timestamp: float
    pnl: float
    market: str = "BTC-PERP"
    entry_price: float | None = None
    volume: float | None = None
    rsi: float | None = None
    pattern_type: str | None = None
    setup: str | None = None
    duration: float | None = None
    confidence: float = 0.5
    return_pct: float | None = None
    agent_scores: dict = field(default_factory=dict)
    agent_analysis: dict = field(default_factory=dict)

    @property
    def is_win(self) -> bool:
        return self.pnl > 0

    @property
    def is_loss(self) -> bool:
        return self.pnl < 0

    def to_record(self) -> dict:
        return asdict(self)

    @classmethod
    def from_record(cls, data: Mapping[str, Any]) -> "TradeOutcome":
        return _from_dict(cls, data)

    def to_pattern_observation(self) -> dict:
        return {
            "market": self.market,
            "price": self.entry_price,
            "volume": self.volume,
            "rsi": self.rsi,
            "type": self.pattern_type,
            "setup": self.setup,
            "outcome": "success" if self.is_win else "failure" if self.is_loss else "partial",
            "pnl": self.pnl,
            "duration": self.duration,
            "agent_analysis": self.agent_analysis,
            "confidence": self.confidence,
        }


@dataclass
class MarketSnapshot:
    btc_price: float
    rsi: float
    volume: float
    volatility: float
    eth_price: float | None = None
    funding_rate: float | None = None
    fear_greed: float | None = None
    timestamp: float = field(default_factory=time.time)

    def condition(self) -> str:
        if self.volatility > 40:
            return "high_volatility"
        if self.rsi > 70:
            return "overbought"
        if self.rsi < 30:
            return "oversold"
        if self.volatility < 15:
            return "low_volatility"
        return "neutral"

    def to_record(self) -> dict:
        return asdict(self)


@dataclass
class AgentState:
    last_update: float | None = None
    confidence: float = 0.5
    learning_progress: float = 0.0
