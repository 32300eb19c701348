from __future__ import annotations

from .models import Pattern


RSI_WEIGHT = 0.2
PRICE_WEIGHT = 0.3
VOLUME_WEIGHT = 0.2
SETUP_WEIGHT = 0.3


def _present(value) -> bool:
    return value is not None and value != 0


def similarity(a: Pattern, b: Pattern) -> float:
    """Weighted closeness of two patterns in [0, 1].

    A feature only counts when both patterns carry it. Price and volume
    distances are relative to ``a``, so ``similarity(a, b)`` and
    ``similarity(b, a)`` can differ.
    """
    score = 0.0
    weights = 0.0

    rsi_a, rsi_b = a.indicators.rsi, b.indicators.rsi
    if rsi_a is not None and rsi_b is not None:
        score += (1 - abs(rsi_a - rsi_b) / 100) * RSI_WEIGHT
        weights += RSI_WEIGHT

    if _present(a.price) and _present(b.price):
        price_diff = abs((a.price - b.price) / a.price)
        score += max(0.0, 1 - price_diff * 10) * PRICE_WEIGHT
        weights += PRICE_WEIGHT

    if _present(a.volume) and _present(b.volume):
        volume_diff = abs((a.volume - b.volume) / a.volume)
        score += max(0.0, 1 - volume_diff * 5) * VOLUME_WEIGHT
        weights += VOLUME_WEIGHT

    if a.setup and b.setup:
        if a.setup == b.setup:
            score += SETUP_WEIGHT
        weights += SETUP_WEIGHT

    return score / weights if weights > 0 else 0.0
