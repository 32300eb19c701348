"""
Tests for the Wilson lower-bound confidence estimate.
"""
import pytest

from council_learning.confidence import estimate_confidence


class TestEstimateConfidence:
    """Wilson score lower bound at 95%."""

    def test_no_samples_is_undecided(self):
        assert estimate_confidence(0, 0) == 0.5

    def test_five_straight_successes(self):
        assert estimate_confidence(5, 5) == pytest.approx(0.5655, abs=1e-3)

    def test_nine_straight_successes_clear_promotion_threshold(self):
        assert estimate_confidence(8, 8) < 0.7
        assert estimate_confidence(9, 9) > 0.7

    def test_all_failures_is_zero(self):
        assert estimate_confidence(0, 10) == pytest.approx(0.0, abs=1e-12)

    def test_more_evidence_raises_the_bound(self):
        assert estimate_confidence(8, 10) < estimate_confidence(80, 100)

    def test_inputs_are_clamped(self):
        assert estimate_confidence(-3, 5) == estimate_confidence(0, 5)
        assert estimate_confidence(12, 5) == estimate_confidence(5, 5)
        assert estimate_confidence(3, -1) == 0.5

    @pytest.mark.parametrize("successes,samples", [(1, 1), (3, 7), (50, 51), (1, 1000)])
    def test_result_in_unit_interval(self, successes, samples):
        assert 0.0 <= estimate_confidence(successes, samples) <= 1.0
