import math


Z_95 = 1.96


def estimate_confidence(success_count: float, sample_size: float) -> float:
    """Wilson score lower bound for a success proportion at 95% confidence.

    Returns 0.5 (undecided) when there are no samples.
    """
    n = max(float(sample_size), 0.0)
    if n == 0:
        return 0.5

    successes = min(max(float(success_count), 0.0), n)
    p = successes / n
    z2 = Z_95 * Z_95

    denominator = 1 + z2 / n
    centre = (p + z2 / (2 * n)) / denominator
    offset = Z_95 * math.sqrt(p * (1 - p) / n + z2 / (4 * n * n)) / denominator
    return max(0.0, min(1.0, centre - offset))
