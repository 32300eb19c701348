from __future__ import annotations

import random

from .models import MarketSnapshot, Topic


PERFORMANCE_REVIEW_EVERY = 20


def topic_weights(market: MarketSnapshot, discussion_number: int) -> dict[Topic, float]:
    """Selection weights for the next discussion; every topic starts at 1."""
    weights = {topic: 1.0 for topic in Topic}
    if market.volatility > 30:
        weights[Topic.RISK_ASSESSMENT] = 2.0
    if market.rsi < 40:
        weights[Topic.ENTRY_OPPORTUNITIES] = 2.0
    if market.rsi > 70:
        weights[Topic.EXIT_STRATEGIES] = 2.0
    if discussion_number > 0 and discussion_number % PERFORMANCE_REVIEW_EVERY == 0:
        weights[Topic.PERFORMANCE_REVIEW] = 3.0
    return weights


def pick_weighted(weights: dict[Topic, float], rng: random.Random | None = None) -> Topic:
    total = sum(weights.values())
    draw = (rng or random).random() * total
    for topic, weight in weights.items():
        draw -= weight
        if draw <= 0:
            return topic
    return Topic.MARKET_ANALYSIS
