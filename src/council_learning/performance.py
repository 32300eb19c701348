from __future__ import annotations

import math
import sqlite3
import statistics
import time
import uuid
from typing import Iterable

from loguru import logger

from .db import METRICS, KnowledgeRepository
from .models import ROLE_SEQUENCE, PerformanceMetric, TradeOutcome
from .settings import Settings, settings as default_settings


TRADING_DAYS = 252
BULLISH_SCORE = 60
BEARISH_SCORE = 40
LOW_WIN_RATE = 0.4
HIGH_WIN_RATE = 0.7


def win_rate(trades: list[TradeOutcome]) -> float:
    wins = sum(1 for trade in trades if trade.is_win)
    losses = sum(1 for trade in trades if trade.is_loss)
    decided = wins + losses
    return wins / decided if decided > 0 else 0.0


def sharpe_ratio(returns: list[float]) -> float:
    if len(returns) < 2:
        return 0.0
    stdev = statistics.stdev(returns)
    if stdev == 0:
        return 0.0
    return statistics.mean(returns) / stdev * math.sqrt(TRADING_DAYS)


def max_drawdown_pct(pnls: Iterable[float], starting_equity: float) -> float:
    """Largest peak-to-trough drop of ``starting_equity + cumulative pnl``, in percent."""
    equity = starting_equity
    peak = starting_equity
    worst = 0.0
    for pnl in pnls:
        equity += pnl
        peak = max(peak, equity)
        if peak > 0:
            worst = max(worst, (peak - equity) / peak * 100)
    return max(0.0, min(100.0, worst))


def role_accuracy(trades: list[TradeOutcome]) -> dict[str, dict]:
    """How often each role's pre-trade score called the eventual result.

    Scores above 60 predict success, below 40 predict failure; anything in
    between (and breakeven trades) is not counted.
    """
    metrics: dict[str, dict] = {}
    for role in ROLE_SEQUENCE:
        calls = 0
        correct = 0
        for trade in trades:
            score = trade.agent_scores.get(role.value)
            if score is None or trade.pnl == 0:
                continue
            if score > BULLISH_SCORE:
                predicted_win = True
            elif score < BEARISH_SCORE:
                predicted_win = False
            else:
                continue
            calls += 1
            if predicted_win == trade.is_win:
                correct += 1
        metrics[role.value] = {
            "accuracy": correct / calls if calls else 0.5,
            "calls": calls,
            "contribution": round(1 / len(ROLE_SEQUENCE), 4),
        }
    return metrics


def summarize_performance(metrics: list[PerformanceMetric]) -> dict:
    """Roll recent metrics into the figures advisors see; ``{}`` when there are none.

    Regime ties go to the earlier entry in ``metrics``, which is the newest
    when they come from ``PerformanceAnalyzer.recent``.
    """
    if not metrics:
        return {}

    best = max(metrics, key=lambda metric: metric.win_rate)
    worst = min(metrics, key=lambda metric: metric.win_rate)

    accuracy: dict[str, float] = {}
    for role in ROLE_SEQUENCE:
        observed = [
            metric.agent_metrics[role.value]["accuracy"]
            for metric in metrics
            if metric.agent_metrics.get(role.value, {}).get("calls")
        ]
        if observed:
            accuracy[role.value] = statistics.mean(observed)

    return {
        "metrics": len(metrics),
        "trades": sum(metric.trades for metric in metrics),
        "avg_win_rate": statistics.mean(metric.win_rate for metric in metrics),
        "total_pnl": sum(metric.pnl for metric in metrics),
        "best_regime": best.market_regime,
        "worst_regime": worst.market_regime,
        "agent_accuracy": accuracy,
    }


class PerformanceAnalyzer:
    def __init__(self, repository: KnowledgeRepository, config: Settings | None = None) -> None:
        self.repository = repository
        self.config = config or default_settings

    def analyze(
        self,
        trades: list[TradeOutcome],
        market_regime: str = "neutral",
        volatility: float = 0.0,
        period: str = "learning_cycle",
    ) -> PerformanceMetric:
        ordered = sorted(trades, key=lambda trade: trade.timestamp)
        pnls = [trade.pnl for trade in ordered]
        returns = [trade.return_pct if trade.return_pct is not None else trade.pnl for trade in ordered]
        total_pnl = sum(pnls)

        metric = PerformanceMetric(
            id=f"metric_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}",
            timestamp=time.time(),
            period=period,
            trades=len(ordered),
            win_rate=win_rate(ordered),
            pnl=total_pnl,
            sharpe_ratio=sharpe_ratio(returns),
            max_drawdown=max_drawdown_pct(pnls, self.config.analysis_starting_equity),
            market_regime=market_regime,
            volatility=volatility,
            trend="up" if total_pnl > 0 else "down" if total_pnl < 0 else "neutral",
            agent_metrics=role_accuracy(ordered),
        )
        self._annotate(metric)
        return metric

    @staticmethod
    def _annotate(metric: PerformanceMetric) -> None:
        if metric.trades == 0:
            return
        if metric.win_rate > 0.6:
            metric.strengths.append(f"Win rate {metric.win_rate:.0%} in {metric.market_regime} market")
        elif metric.win_rate < LOW_WIN_RATE:
            metric.weaknesses.append(f"Win rate {metric.win_rate:.0%} in {metric.market_regime} market")
            metric.improvements.append("Reduce position size until win rate recovers")
        if metric.max_drawdown > 10:
            metric.weaknesses.append(f"Drawdown reached {metric.max_drawdown:.1f}%")
            metric.improvements.append("Tighten stops to cap drawdown")
        if metric.sharpe_ratio > 1:
            metric.strengths.append(f"Sharpe-like ratio {metric.sharpe_ratio:.2f}")

        for role, stats in metric.agent_metrics.items():
            if stats["calls"] < 3:
                continue
            if stats["accuracy"] >= 0.6:
                metric.strengths.append(f"{role} calls {stats['accuracy']:.0%} accurate")
            elif stats["accuracy"] < 0.4:
                metric.weaknesses.append(f"{role} calls {stats['accuracy']:.0%} accurate")
                metric.improvements.append(f"Down-weight {role} input")

    def is_lesson_worthy(self, metric: PerformanceMetric) -> bool:
        return metric.trades > 0 and (metric.win_rate < LOW_WIN_RATE or metric.win_rate > HIGH_WIN_RATE)

    def record(self, metric: PerformanceMetric) -> str:
        self.repository.insert(METRICS, metric.id, metric.to_record())
        logger.info(
            "Performance metric {}: trades={} win_rate={:.0%} pnl={:+.2f} sharpe={:.2f} drawdown={:.1f}%",
            metric.id, metric.trades, metric.win_rate, metric.pnl, metric.sharpe_ratio, metric.max_drawdown,
        )
        return metric.id

    def recent(self, limit: int | None = None) -> list[PerformanceMetric]:
        try:
            records = self.repository.query(
                METRICS,
                order_by="timestamp",
                direction="desc",
                limit=limit or self.config.performance_history_limit,
            )
        except sqlite3.Error as exc:
            logger.info("Performance metrics query skipped (no data yet): {}", exc)
            return []
        return [PerformanceMetric.from_record(record) for record in records]

    def summary(self, limit: int | None = None) -> dict:
        return summarize_performance(self.recent(limit))
