"""
Tests for weighted topic selection.
"""
import random
from collections import Counter

import pytest

from council_learning.models import MarketSnapshot, Topic
from council_learning.topics import pick_weighted, topic_weights


def snapshot(**overrides):
    fields = {"btc_price": 95_000, "rsi": 55, "volume": 1_000_000, "volatility": 25}
    fields.update(overrides)
    return MarketSnapshot(**fields)


class FixedRandom:
    def __init__(self, value):
        self.value = value

    def random(self):
        return self.value


class TestTopicWeights:

    def test_calm_market_is_uniform(self):
        weights = topic_weights(snapshot(), discussion_number=1)
        assert list(weights) == list(Topic)
        assert set(weights.values()) == {1.0}

    def test_volatility_boosts_risk(self):
        assert topic_weights(snapshot(volatility=35), 1)[Topic.RISK_ASSESSMENT] == 2.0

    def test_low_rsi_boosts_entries(self):
        assert topic_weights(snapshot(rsi=35), 1)[Topic.ENTRY_OPPORTUNITIES] == 2.0

    def test_high_rsi_boosts_exits(self):
        assert topic_weights(snapshot(rsi=75), 1)[Topic.EXIT_STRATEGIES] == 2.0

    @pytest.mark.parametrize("number,expected", [(20, 3.0), (40, 3.0), (19, 1.0), (0, 1.0)])
    def test_performance_review_every_twentieth(self, number, expected):
        assert topic_weights(snapshot(), number)[Topic.PERFORMANCE_REVIEW] == expected


class TestPickWeighted:

    def test_uniform_draws_are_balanced(self):
        rng = random.Random(7)
        weights = topic_weights(snapshot(), 1)
        counts = Counter(pick_weighted(weights, rng) for _ in range(10_000))
        for topic in Topic:
            assert counts[topic] / 10_000 == pytest.approx(1 / 7, abs=0.05)

    def test_boosted_topic_is_drawn_more_often(self):
        rng = random.Random(11)
        weights = topic_weights(snapshot(volatility=50), 1)
        counts = Counter(pick_weighted(weights, rng) for _ in range(10_000))
        assert counts[Topic.RISK_ASSESSMENT] > counts[Topic.MACRO_OUTLOOK]

    def test_subtraction_order(self):
        weights = topic_weights(snapshot(), 1)
        assert pick_weighted(weights, FixedRandom(0.0)) is Topic.MARKET_ANALYSIS
        assert pick_weighted(weights, FixedRandom(0.99)) is Topic.PERFORMANCE_REVIEW

    def test_empty_weights_fall_back(self):
        assert pick_weighted({}, FixedRandom(0.5)) is Topic.MARKET_ANALYSIS
