"""
Tests for pattern recording, reinforcement and retrieval.
"""
import sqlite3

import pytest

from conftest import make_pattern
from council_learning.db import PATTERN_RELATIONSHIPS, PATTERNS
from council_learning.market_data import default_snapshot
from council_learning.rules import rule_id_for


def observation(**overrides):
    fields = {
        "type": "breakout",
        "outcome": "success",
        "market": "BTC-PERP",
        "price": 95_000,
        "volume": 1_000_000,
        "rsi": 55,
        "setup": "range_break",
        "pnl": 120.0,
    }
    fields.update(overrides)
    return fields


class TestRecordAndReinforce:

    def test_nine_matching_successes_promote_a_rule(self, pattern_store, rule_engine):
        ids = [pattern_store.record(observation(), pattern_id=f"p{i}") for i in range(8)]
        assert rule_engine.active_rules() == []

        last_id = pattern_store.record(observation(), pattern_id="p8")
        rules = rule_engine.active_rules()
        assert len(rules) == 1
        assert rules[0].id == rule_id_for(last_id)
        assert rules[0].source == "pattern"
        assert rules[0].confidence > 0.7

        stored = pattern_store.get(last_id)
        assert stored.reinforced is True
        assert stored.reinforcement_count == 9
        assert stored.success_rate == 1.0
        assert len(ids) == 8

    def test_five_matching_successes_stay_below_threshold(self, pattern_store, rule_engine):
        for i in range(5):
            pattern_store.record(observation(), pattern_id=f"p{i}")
        assert pattern_store.get("p4").confidence == pytest.approx(0.5655, abs=1e-3)
        assert rule_engine.active_rules() == []

    def test_relationship_document_is_stored(self, pattern_store, repository):
        pattern_store.record(observation(), pattern_id="p0")
        pattern_store.record(observation(), pattern_id="p1")
        relationship = repository.get(PATTERN_RELATIONSHIPS, "rel_p1")
        assert relationship is not None
        assert {entry["id"] for entry in relationship["similar"]} == {"p0", "p1"}

    def test_failures_dilute_confidence(self, pattern_store):
        for i in range(4):
            pattern_store.record(observation(), pattern_id=f"win{i}")
        pattern_store.record(observation(outcome="failure"), pattern_id="loss")
        stored = pattern_store.get("loss")
        assert stored.success_rate == pytest.approx(0.8)

    def test_rerecording_an_id_is_a_noop(self, pattern_store, repository):
        assert pattern_store.record(observation(), pattern_id="p0") == "p0"
        assert pattern_store.record(observation(pnl=-5), pattern_id="p0") == "p0"
        assert repository.count(PATTERNS) == 1
        assert pattern_store.get("p0").pnl == 120.0

    def test_accepts_nested_indicators(self, pattern_store):
        obs = observation()
        del obs["rsi"]
        obs["indicators"] = {"rsi": 42, "macd": 1.5}
        pattern_id = pattern_store.record(obs)
        stored = pattern_store.get(pattern_id)
        assert stored.indicators.rsi == 42.0
        assert stored.indicators.macd == 1.5


class TestValidation:

    def test_type_is_required(self, pattern_store):
        with pytest.raises(ValueError):
            pattern_store.record(observation(type=""))

    def test_outcome_must_be_known(self, pattern_store):
        with pytest.raises(ValueError):
            pattern_store.record(observation(outcome="win"))

    def test_numeric_fields_must_be_numeric(self, pattern_store):
        with pytest.raises(ValueError):
            pattern_store.record(observation(price="a lot"))


class TestFind:

    def test_filters_by_type_and_market(self, pattern_store):
        pattern_store.record(observation(), pattern_id="keep")
        pattern_store.record(observation(type="reversal"), pattern_id="other_type")
        pattern_store.record(observation(market="ETH-PERP"), pattern_id="other_market")

        found = pattern_store.find(make_pattern("query"), 0.8)
        assert [pattern.id for pattern in found] == ["keep"]

    def test_repository_errors_yield_empty_results(self, pattern_store, monkeypatch):
        def broken_query(*args, **kwargs):
            raise sqlite3.OperationalError("no such table: documents")

        monkeypatch.setattr(pattern_store.repository, "query", broken_query)
        assert pattern_store.find(make_pattern("query"), 0.8) == []
        assert pattern_store.recent() == []

    def test_similar_to_market_ignores_type(self, pattern_store, config):
        pattern_store.record(observation(), pattern_id="near")
        pattern_store.record(observation(type="reversal", price=50_000, volume=10, rsi=10), pattern_id="far")

        matches = pattern_store.similar_to_market(default_snapshot(config), limit=3)
        assert [pattern.id for pattern in matches] == ["near"]

    def test_recent_is_newest_first(self, pattern_store):
        for i in range(3):
            pattern_store.record(observation(type=f"kind{i}"), pattern_id=f"p{i}")
        assert [pattern.id for pattern in pattern_store.recent(2)] == ["p2", "p1"]
