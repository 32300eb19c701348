"""
Tests for batch performance analysis.
"""
import pytest

from conftest import make_trade
from council_learning.db import METRICS
from council_learning.performance import (
    max_drawdown_pct,
    role_accuracy,
    sharpe_ratio,
    summarize_performance,
    win_rate,
)


def batch(wins, losses):
    trades = [make_trade(f"w{i}", 50.0, timestamp=1_000 + i) for i in range(wins)]
    trades += [make_trade(f"l{i}", -25.0, timestamp=2_000 + i) for i in range(losses)]
    return trades


class TestMetrics:

    def test_win_rate_ignores_breakeven(self):
        trades = [make_trade("a", 10), make_trade("b", 0), make_trade("c", -10)]
        assert win_rate(trades) == 0.5
        assert win_rate([]) == 0.0

    def test_sharpe_needs_variation(self):
        assert sharpe_ratio([1.0]) == 0.0
        assert sharpe_ratio([2.0, 2.0, 2.0]) == 0.0
        assert sharpe_ratio([1.0, 3.0]) > 0

    def test_max_drawdown(self):
        assert max_drawdown_pct([100, -300, 50], 1_000) == pytest.approx(300 / 1_100 * 100)
        assert max_drawdown_pct([10, 20], 1_000) == 0.0

    def test_drawdown_is_capped(self):
        assert max_drawdown_pct([-5_000], 1_000) == 100.0

    def test_role_accuracy(self):
        trades = [
            make_trade("a", 10, agent_scores={"market": 80, "macro": 50}),
            make_trade("b", -10, agent_scores={"market": 20}),
            make_trade("c", -10, agent_scores={"market": 90}),
        ]
        metrics = role_accuracy(trades)
        assert metrics["market"]["calls"] == 3
        assert metrics["market"]["accuracy"] == pytest.approx(2 / 3)
        assert metrics["macro"]["calls"] == 0
        assert metrics["sentiment"]["accuracy"] == 0.5


class TestPerformanceAnalyzer:

    def test_poor_batch(self, analyzer):
        metric = analyzer.analyze(batch(3, 7), market_regime="high_volatility", volatility=45)
        assert metric.trades == 10
        assert metric.win_rate == pytest.approx(0.3)
        assert metric.pnl == pytest.approx(3 * 50 - 7 * 25)
        assert metric.trend == "down"
        assert metric.market_regime == "high_volatility"
        assert analyzer.is_lesson_worthy(metric)
        assert metric.weaknesses

    def test_average_batch_is_not_lesson_worthy(self, analyzer):
        metric = analyzer.analyze(batch(5, 5))
        assert not analyzer.is_lesson_worthy(metric)

    def test_empty_batch(self, analyzer):
        metric = analyzer.analyze([])
        assert metric.trades == 0
        assert metric.win_rate == 0.0
        assert not analyzer.is_lesson_worthy(metric)

    def test_return_pct_preferred_for_sharpe(self, analyzer):
        trades = [
            make_trade("a", 100, timestamp=1, return_pct=1.0),
            make_trade("b", 100, timestamp=2, return_pct=1.0),
        ]
        assert analyzer.analyze(trades).sharpe_ratio == 0.0

    def test_record_is_append_only(self, analyzer, repository):
        metric = analyzer.analyze(batch(3, 7))
        analyzer.record(metric)
        analyzer.record(metric)
        assert repository.count(METRICS) == 1

    def test_recent_is_newest_first_and_limited(self, analyzer):
        for regime in ("neutral", "oversold", "overbought"):
            analyzer.record(analyzer.analyze(batch(2, 2), market_regime=regime))
        assert [metric.market_regime for metric in analyzer.recent(2)] == ["overbought", "oversold"]
        assert len(analyzer.recent()) == 3

    def test_summary_of_nothing_is_empty(self, analyzer):
        assert analyzer.summary() == {}
        assert summarize_performance([]) == {}


class TestSummary:

    def test_average_and_regime_extremes(self, analyzer):
        metrics = [
            analyzer.analyze(batch(1, 3), market_regime="high_volatility"),
            analyzer.analyze(batch(3, 1), market_regime="oversold"),
            analyzer.analyze(batch(2, 2), market_regime="neutral"),
        ]
        summary = summarize_performance(metrics)
        assert summary["metrics"] == 3
        assert summary["trades"] == 12
        assert summary["avg_win_rate"] == pytest.approx(0.5)
        assert summary["total_pnl"] == pytest.approx(6 * 50 - 6 * 25)
        assert summary["best_regime"] == "oversold"
        assert summary["worst_regime"] == "high_volatility"

    def test_agent_accuracy_skips_batches_without_calls(self, analyzer):
        called = analyzer.analyze([
            make_trade("a", 10, agent_scores={"market": 80}),
            make_trade("b", -10, agent_scores={"market": 90}),
        ])
        silent = analyzer.analyze(batch(2, 0))
        summary = summarize_performance([called, silent])
        assert summary["agent_accuracy"] == {"market": 0.5}
