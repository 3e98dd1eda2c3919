"""Tests for risk functions and their binding to a training table."""

from __future__ import annotations

import math

import numpy as np
import pytest
from pytest_check import check

from cartkit.exceptions import InvalidConfigurationError
from cartkit.risk import (
    CLASSIFICATION_RISKS,
    RISK_FUNCTIONS,
    REGRESSION_RISKS,
    RiskConfig,
    risk_entropy,
    risk_error,
    risk_gini,
    risk_sae,
    risk_sse,
    risk_twoing,
)
from cartkit.table import CategoricalColumn, NumericColumn, TypedTable

# ---------------------------------------------------------------------------
# Classification risks
# ---------------------------------------------------------------------------


class TestClassificationRisks:
    """Tests for error, gini, entropy, and twoing risks."""

    def test_gini_pure_side_contributes_zero(self) -> None:
        """A perfectly pure side of a split has zero Gini risk."""
        # Arrange
        n = np.array([3.0, 2.0])
        left, right = np.array([0, 0]), np.array([0, 1, 1])

        # Act
        risks = risk_gini((left, right), n, n / n.sum(), False)

        # Assert
        with check:
            assert risks[0] == 0.0, "Pure left side should contribute 0"
        with check:
            assert risks[1] > 0.0, "Mixed right side should contribute a positive risk"

    @pytest.mark.parametrize("risk", [risk_error, risk_gini, risk_entropy], ids=["error", "gini", "entropy"])
    def test_single_class_node_average_is_zero(self, risk) -> None:  # noqa: ANN001
        """A node holding one class has zero averaged risk.

        Args:
            risk: The risk function under test.
        """
        n = np.array([2.0, 3.0])

        assert risk(np.array([1, 1, 1]), n, n / n.sum(), True) == 0.0

    @pytest.mark.parametrize(
        ("risk", "expected"),
        [(risk_error, 0.5), (risk_gini, 0.5), (risk_entropy, math.log(2.0))],
        ids=["error", "gini", "entropy"],
    )
    def test_balanced_node_per_side_values(self, risk, expected: float) -> None:  # noqa: ANN001
        """A balanced two-class node has the textbook impurity, weighted by its full mass.

        Args:
            risk: The risk function under test.
            expected (float): Expected single-side risk.
        """
        # Arrange
        n = np.array([2.0, 2.0])

        # Act
        risks = risk(np.array([0, 0, 1, 1]), n, n / n.sum(), False)

        # Assert
        assert risks.tolist() == pytest.approx([expected])

    def test_entropy_treats_zero_probability_as_zero(self) -> None:
        """`0 * log(0)` is taken as 0, so a pure node has finite, zero entropy."""
        n = np.array([2.0, 2.0])

        risks = risk_entropy(np.array([0, 0]), n, n / n.sum(), False)

        assert np.isfinite(risks).all() and risks[0] == 0.0

    def test_empty_side_contributes_zero(self) -> None:
        """A side with no rows has zero risk instead of NaN."""
        n = np.array([1.0, 1.0])

        risks = risk_gini((np.array([0, 1]), np.array([], dtype=np.intp)), n, n / n.sum(), False)

        assert risks.tolist() == [0.5, 0.0]

    def test_prior_reweights_classes(self) -> None:
        """Priors change the joint mass and therefore the error of a node."""
        # Arrange - 3 of class 0, 1 of class 1, but class 1 given 3/4 prior
        n = np.array([3.0, 1.0])
        prior = np.array([0.25, 0.75])

        # Act
        risk = risk_error(np.array([0, 0, 0, 1]), n, prior, True)

        # Assert - majority by weight is class 1, so the error is the class-0 share
        assert risk == pytest.approx(0.25)

    def test_twoing_perfect_separation(self) -> None:
        """Twoing returns one negative scalar for a perfectly separating split."""
        # Arrange
        n = np.array([2.0, 2.0])

        # Act
        risk = risk_twoing((np.array([0, 0]), np.array([1, 1])), n, n / n.sum(), False)

        # Assert
        assert risk == pytest.approx(-0.0625)

    def test_twoing_single_subset_is_zero(self) -> None:
        """A lone subset is treated as a split with an empty side, which separates nothing."""
        n = np.array([2.0, 2.0])

        assert risk_twoing(np.array([0, 0, 1, 1]), n, n / n.sum(), True) == 0.0


# ---------------------------------------------------------------------------
# Regression risks
# ---------------------------------------------------------------------------


class TestRegressionRisks:
    """Tests for SSE and SAE."""

    def test_sse_sums_over_subsets(self) -> None:
        """SSE adds the squared deviations of every subset from its own mean."""
        assert risk_sse((np.array([1.0, 3.0]), np.array([10.0])), None, None, False) == pytest.approx(2.0)

    def test_sae_single_subset(self) -> None:
        """SAE of one subset is the sum of absolute deviations from its mean."""
        assert risk_sae(np.array([1.0, 3.0, 5.0]), None, None, True) == pytest.approx(4.0)

    def test_empty_subsets_ignored(self) -> None:
        """Empty subsets contribute nothing."""
        assert risk_sse((np.array([2.0, 2.0]), np.array([])), None, None, False) == 0.0


# ---------------------------------------------------------------------------
# Registry and RiskConfig
# ---------------------------------------------------------------------------


class TestRiskRegistry:
    """Tests for the name registry."""

    def test_registry_names(self) -> None:
        """Every built-in risk is registered under its short name."""
        with check:
            assert set(CLASSIFICATION_RISKS) == {"error", "gini", "entropy", "twoing"}
        with check:
            assert set(REGRESSION_RISKS) == {"sse", "sae"}
        with check:
            assert set(RISK_FUNCTIONS) == set(CLASSIFICATION_RISKS) | set(REGRESSION_RISKS)


class TestRiskConfig:
    """Tests for `RiskConfig.for_table` and `RiskConfig.for_forest`."""

    def test_defaults_for_classification(self) -> None:
        """By default the root's prune risk is its misclassification mass."""
        # Arrange
        table = _make_label_table(["A", "A", "B", "B"])

        # Act
        config = RiskConfig.for_table(table)

        # Assert
        with check:
            assert config.n.tolist() == [2.0, 2.0]
        with check:
            assert config.prior.tolist() == [0.5, 0.5]
        with check:
            assert config.prune_risk(np.array([0, 0, 1, 1])) == pytest.approx(0.5)
        with check:
            assert float(np.sum(config.build_risk((np.array([0, 0]), np.array([1, 1]))))) == 0.0

    def test_prior_is_normalized(self) -> None:
        """Priors are rescaled to sum to one."""
        table = _make_label_table(["A", "B"])

        config = RiskConfig.for_table(table, prior=[1.0, 3.0])

        assert config.prior.tolist() == [0.25, 0.75]

    def test_regression_defaults_ignore_counts(self) -> None:
        """Regression tables bind no class counts and use SSE."""
        # Arrange
        table = TypedTable([NumericColumn("price", np.array([1.0, 3.0])), NumericColumn("area", np.array([1.0, 2.0]))])

        # Act
        config = RiskConfig.for_table(table)

        # Assert
        with check:
            assert config.n is None and config.prior is None
        with check:
            assert config.prune_risk(np.array([1.0, 3.0])) == pytest.approx(2.0)

    def test_custom_callable_is_used(self) -> None:
        """Any callable with the risk signature can replace a built-in risk."""
        # Arrange
        calls: list[int] = []

        def count_rows(y, n, prior, avg):  # noqa: ANN001, ANN202, ARG001
            calls.append(len(y))
            return np.array([float(len(side)) for side in y])

        table = _make_label_table(["A", "B", "B"])

        # Act
        config = RiskConfig.for_table(table, build_risk=count_rows)
        total = config.build_risk((np.array([0]), np.array([1, 1])))

        # Assert
        with check:
            assert calls == [2]
        with check:
            assert total.tolist() == [1.0, 2.0]

    def test_forest_prune_risk_is_zero(self) -> None:
        """Forest trees are never pruned, so their prune risk is constantly 0."""
        table = _make_label_table(["A", "B"])

        config = RiskConfig.for_forest(table, risk="entropy")

        assert config.prune_risk(np.array([0, 1])) == 0.0

    @pytest.mark.parametrize(
        ("kwargs", "match"),
        [
            ({"build_risk": "mae"}, "Unknown risk function"),
            ({"prune_risk": "sse"}, "cannot be used for classification"),
            ({"prior": [0.5, 0.3, 0.2]}, "one entry per response level"),
            ({"prior": [-0.5, 1.5]}, "non-negative"),
            ({"prior": [0.0, 0.0]}, "non-negative"),
        ],
        ids=["unknown-name", "wrong-task", "prior-length", "negative-prior", "zero-prior"],
    )
    def test_invalid_configuration_rejected(self, kwargs: dict, match: str) -> None:
        """Unknown or mismatched risks and malformed priors raise InvalidConfigurationError.

        Args:
            kwargs (dict): Keyword arguments for `for_table`.
            match (str): Expected message fragment.
        """
        table = _make_label_table(["A", "B"])

        with pytest.raises(InvalidConfigurationError, match=match):
            RiskConfig.for_table(table, **kwargs)


# ---------------------------------------------------------------------------
# Private test helpers
# ---------------------------------------------------------------------------


def _make_label_table(labels: list[str]) -> TypedTable:
    """Build a classification table with levels `A` and `B` and one numeric covariate.

    Args:
        labels (list[str]): Response labels.

    Returns:
        TypedTable: The table.
    """
    return TypedTable([
        CategoricalColumn("label", np.array(labels, dtype=object), ("A", "B")),
        NumericColumn("x", np.arange(len(labels), dtype=np.float64)),
    ])
