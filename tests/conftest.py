"""
Pytest configuration and shared fixtures.
"""
import itertools

import pytest

from council_learning.db import KnowledgeRepository
from council_learning.lessons import LessonLog
from council_learning.market_data import StaticMarketFeed, default_snapshot
from council_learning.models import Indicators, Message, Pattern, TradeOutcome
from council_learning.patterns import PatternStore
from council_learning.performance import PerformanceAnalyzer
from council_learning.rules import RuleEngine
from council_learning.settings import Settings
from council_learning.trades import TradeLedger


@pytest.fixture
def config(tmp_path):
    """Settings isolated from any local .env file."""
    return Settings(
        _env_file=None,
        db_path=tmp_path / "knowledge.sqlite3",
        mock_mode=True,
        run_initial_discussion=False,
        discussion_interval_seconds=3600,
        learning_interval_seconds=3600,
        advisor_timeout_seconds=5,
    )


@pytest.fixture
def repository(config):
    repo = KnowledgeRepository(config.db_path)
    repo.initialize()
    return repo


@pytest.fixture
def rule_engine(repository, config):
    return RuleEngine(repository, config)


@pytest.fixture
def pattern_store(repository, rule_engine, config):
    return PatternStore(repository, rule_engine, config)


@pytest.fixture
def lesson_log(repository, rule_engine, config):
    return LessonLog(repository, rule_engine, config)


@pytest.fixture
def analyzer(repository, config):
    return PerformanceAnalyzer(repository, config)


@pytest.fixture
def ledger(repository):
    return TradeLedger(repository)


@pytest.fixture
def feed(config):
    return StaticMarketFeed(default_snapshot(config))


@pytest.fixture
def ticking_clock():
    """Strictly increasing clock so persisted ordering is deterministic."""
    counter = itertools.count(1_000)
    return lambda: float(next(counter))


def make_pattern(pattern_id="p1", **overrides) -> Pattern:
    fields = {
        "id": pattern_id,
        "timestamp": 0.0,
        "market": "BTC-PERP",
        "type": "breakout",
        "outcome": "success",
        "price": 95_000.0,
        "volume": 1_000_000.0,
        "indicators": Indicators(rsi=55.0),
        "setup": "range_break",
    }
    fields.update(overrides)
    return Pattern(**fields)


def make_trade(trade_id, pnl, timestamp=1_000.0, **overrides) -> TradeOutcome:
    fields = {"id": trade_id, "timestamp": timestamp, "pnl": pnl}
    fields.update(overrides)
    return TradeOutcome(**fields)


def make_message(agent, text, message_id=None, timestamp=0.0, confidence=0.6) -> Message:
    return Message(
        id=message_id or f"msg_test_{agent}",
        timestamp=timestamp,
        agent=agent,
        topic="market_analysis",
        message=text,
        confidence=confidence,
    )
