"""Unit tests for confidence aggregation.

CRITICAL TESTS:
- Mirrored factor sets produce mirrored confidence
- The 30/20/50 scenario gives edge_raw = 39 and near-max confidence
- Empty factor sets are rejected, never scored
"""

import math

import pytest

from app.services.engine.aggregator import aggregate, sigmoid
from app.services.engine.errors import InsufficientSignal, ValidationError
from app.services.engine.types import ConfidenceScale, Factor


def _factor(key: str, weight: float, value: float) -> Factor:
    return Factor(key=key, display_name=key, normalized_value=value, weight_percent=weight)


class TestSigmoid:
    """Test the logistic function."""

    def test_midpoint(self):
        assert sigmoid(0.0) == 0.5

    def test_symmetry(self):
        for x in (0.1, 1.0, 7.5, 40.0):
            assert sigmoid(-x) == pytest.approx(1.0 - sigmoid(x))

    def test_large_inputs_do_not_overflow(self):
        assert sigmoid(1000.0) == 1.0
        assert sigmoid(-1000.0) == 0.0


class TestAggregate:
    """Test factor aggregation."""

    def setup_method(self):
        """Set up test fixtures."""
        self.factors = [
            _factor("paceIndex", 30, 0.6),
            _factor("offForm", 20, -0.2),
            _factor("defErosion", 50, 0.5),
        ]

    def test_reference_scenario(self):
        result = aggregate(self.factors)

        assert result.edge_raw == pytest.approx(39.0)
        assert result.direction == 1
        assert result.conf_score == pytest.approx(5.0)
        assert result.side_conf_score == pytest.approx(5.0)
        assert [c.contribution for c in result.contributions] == pytest.approx([18.0, -4.0, 25.0])

    def test_mirrored_factors_mirror_confidence(self):
        mirrored = [_factor(f.key, f.weight_percent, -f.normalized_value) for f in self.factors]

        up = aggregate(self.factors)
        down = aggregate(mirrored)

        assert down.edge_raw == pytest.approx(-up.edge_raw)
        assert down.edge_pct == pytest.approx(1.0 - up.edge_pct)
        assert down.direction == -1
        assert down.side_conf_score == pytest.approx(up.side_conf_score)

    def test_zero_edge_is_midpoint(self):
        result = aggregate([_factor("a", 50, 0.0)])

        assert result.edge_pct == 0.5
        assert result.conf_score == pytest.approx(2.5)
        assert result.side_conf_score == 0.0
        assert result.direction == 0

    def test_small_edge_follows_formula(self):
        result = aggregate([_factor("a", 10, 0.01)], scaling_constant=2.5)

        expected_pct = 1.0 / (1.0 + math.exp(-0.1 * 2.5))
        assert result.edge_pct == pytest.approx(expected_pct)
        assert result.conf_score == pytest.approx(5.0 * expected_pct)

    def test_scale_is_applied(self):
        result = aggregate(
            [_factor("a", 10, 0.01)],
            scale=ConfidenceScale(base_min=0.0, base_max=10.0),
        )

        assert result.conf_score == pytest.approx(10.0 * result.edge_pct)

    def test_deterministic(self):
        assert aggregate(self.factors) == aggregate(self.factors)

    def test_empty_factors_rejected(self):
        with pytest.raises(InsufficientSignal):
            aggregate([])

    def test_duplicate_keys_rejected(self):
        with pytest.raises(ValidationError):
            aggregate([_factor("a", 10, 0.1), _factor("a", 20, 0.2)])

    def test_non_positive_scaling_constant_rejected(self):
        with pytest.raises(ValidationError):
            aggregate(self.factors, scaling_constant=0.0)


class TestFactor:
    """Test factor construction rules."""

    def test_out_of_range_value_is_clamped_and_flagged(self):
        factor = _factor("a", 10, 1.7)

        assert factor.normalized_value == 1.0
        assert factor.was_capped is True
        assert factor.cap_reason == "normalized value clamped to [-1, 1]"

    def test_weight_outside_percent_range_rejected(self):
        with pytest.raises(ValidationError):
            _factor("a", 120, 0.1)

    def test_non_finite_value_rejected(self):
        with pytest.raises(ValidationError):
            _factor("a", 10, float("nan"))

    def test_contribution(self):
        assert _factor("a", 40, -0.25).contribution == pytest.approx(-10.0)
