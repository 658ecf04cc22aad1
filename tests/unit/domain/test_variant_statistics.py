"""
Unit tests for variant branch balancing and the two-proportion test.
"""

import pytest

from missionflow.modules.variants.balancer import choose_branch
from missionflow.modules.variants.statistics import normal_cdf, two_proportion_test


@pytest.mark.unit
@pytest.mark.domain
class TestChooseBranch:
    def test_picks_the_emptiest_branch(self):
        assert choose_branch([("base", 3), ("v1", 1), ("v2", 2)]) == "v1"

    def test_ties_go_to_the_first_branch(self):
        assert choose_branch([("base", 0), ("v1", 0)]) == "base"

    def test_alternates_when_filled_greedily(self):
        # Arrange
        counts = {"base": 0, "v1": 0}
        picks = []

        # Act
        for _ in range(4):
            choice = choose_branch(counts.items())
            counts[choice] += 1
            picks.append(choice)

        # Assert
        assert picks == ["base", "v1", "base", "v1"]

    def test_requires_a_branch(self):
        with pytest.raises(ValueError):
            choose_branch([])


@pytest.mark.unit
@pytest.mark.domain
class TestNormalCdf:
    @pytest.mark.parametrize(
        "x, expected",
        [(0.0, 0.5), (1.96, 0.9750021), (-1.96, 0.0249979), (3.0, 0.9986501)],
    )
    def test_known_values(self, x, expected):
        assert normal_cdf(x) == pytest.approx(expected, abs=1e-7)

    @pytest.mark.parametrize("x", [0.3, 1.0, 2.5, 6.0])
    def test_symmetric_about_zero(self, x):
        assert normal_cdf(x) + normal_cdf(-x) == pytest.approx(1.0, abs=1e-12)


@pytest.mark.unit
@pytest.mark.domain
class TestTwoProportionTest:
    def test_clear_difference_is_significant(self):
        result = two_proportion_test(80, 100, 50, 100)

        assert result.significant is True
        assert result.p_value < 0.001
        assert result.z_score == pytest.approx(4.4475, abs=1e-3)
        assert result.confidence > 99.9

    def test_small_difference_is_not_significant(self):
        result = two_proportion_test(11, 20, 10, 20)

        assert result.significant is False
        assert result.p_value > 0.5

    def test_empty_branch_is_not_significant(self):
        result = two_proportion_test(5, 10, 0, 0)

        assert result.significant is False
        assert result.p_value == 1.0
        assert result.z_score == 0.0

    def test_zero_variance_is_not_significant(self):
        result = two_proportion_test(10, 10, 20, 20)

        assert result.significant is False
        assert result.p_value == 1.0

    def test_alpha_controls_the_verdict(self):
        borderline = two_proportion_test(60, 100, 45, 100, alpha=0.05)
        strict = two_proportion_test(60, 100, 45, 100, alpha=0.01)

        assert borderline.p_value == strict.p_value
        assert borderline.significant is True
        assert strict.significant is False

    @pytest.mark.parametrize(
        "args",
        [(-1, 10, 0, 10), (11, 10, 0, 10), (0, 10, 5, 4)],
    )
    def test_invalid_proportions_raise(self, args):
        with pytest.raises(ValueError):
            two_proportion_test(*args)

    def test_to_dict(self):
        result = two_proportion_test(80, 100, 50, 100)

        assert set(result.to_dict()) == {"significant", "p_value", "confidence", "z_score"}
