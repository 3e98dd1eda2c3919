"""Tests for cross-validation, the one-standard-error rule, and `make_tree`."""

from __future__ import annotations

import math

import numpy as np
import polars as pl
import pytest
from pytest_check import check

from cartkit.exceptions import ColumnsNotFoundError, InvalidConfigurationError
from cartkit.table import CategoricalColumn, NumericColumn, TypedTable
from cartkit.tree.store import Tree
from cartkit.tuning import CV_COLUMNS, cross_validate, make_tree, select_cutoff

# ---------------------------------------------------------------------------
# select_cutoff
# ---------------------------------------------------------------------------


class TestSelectCutoff:
    """Tests for the one-standard-error rule."""

    def test_prefers_largest_cutoff_within_one_standard_error(self) -> None:
        """0.2 has the lowest error, but 0.5 is within one standard error and prunes more."""
        # Arrange
        cv = _make_cv([0.0, 0.2, 0.5], [0.30, 0.20, 0.24], [0.05, 0.05, 0.05])

        # Act
        cutoff = select_cutoff(cv)

        # Assert
        assert cutoff == 0.5

    def test_boundary_is_inclusive(self) -> None:
        """An estimate exactly one standard error above the best is still eligible."""
        cv = _make_cv([0.0, 1.0, 2.0], [0.5, 0.25, 0.5], [0.25, 0.25, 0.25])

        assert select_cutoff(cv) == 2.0

    def test_first_minimum_sets_the_limit(self) -> None:
        """With tied minima the first one's standard error defines the band."""
        cv = _make_cv([0.0, 1.0, 2.0], [0.2, 0.2, 0.9], [0.0, 1.0, 1.0])

        assert select_cutoff(cv) == 1.0

    def test_no_eligible_alternative_returns_best(self) -> None:
        """When nothing else is close enough, the minimum-error cutoff is returned."""
        cv = _make_cv([0.0, 0.1, 0.3], [0.50, 0.10, 0.40], [0.01, 0.01, 0.01])

        assert select_cutoff(cv) == pytest.approx(0.1)

    def test_missing_columns_raise(self) -> None:
        """A table without the standard columns raises ColumnsNotFoundError."""
        cv = pl.DataFrame({"parameter": [0.0], "estimate": [0.1]})

        with pytest.raises(ColumnsNotFoundError) as exc_info:
            select_cutoff(cv)

        assert exc_info.value.missing_columns == ["error"]

    def test_empty_table_raises(self) -> None:
        """An empty table has nothing to select."""
        cv = _make_cv([], [], [])

        with pytest.raises(InvalidConfigurationError, match="empty"):
            select_cutoff(cv)


# ---------------------------------------------------------------------------
# cross_validate
# ---------------------------------------------------------------------------


class TestCrossValidate:
    """Tests for the generic k-fold harness."""

    def test_output_shape_and_constant_scores(self) -> None:
        """One row per tuning value, in the given order; constant scores have zero error."""
        # Arrange
        table = _make_numeric_table(10)

        # Act
        cv = cross_validate(
            table,
            lambda training: training.n_rows,  # type: ignore[arg-type,return-value]
            lambda value, model, test: value + test.n_rows,  # noqa: ARG005
            [0.5, 0.0, 0.25],
            5,
            random_state=1,
        )

        # Assert
        with check:
            assert tuple(cv.columns) == CV_COLUMNS
        with check:
            assert cv["parameter"].to_list() == [0.5, 0.0, 0.25]
        with check:
            assert cv["estimate"].to_list() == pytest.approx([2.5, 2.0, 2.25])
        with check:
            assert cv["error"].to_list() == pytest.approx([0.0, 0.0, 0.0])

    def test_each_row_held_out_once_and_standard_error(self) -> None:
        """Folds partition the rows; the error is the sample standard deviation over sqrt(folds)."""
        # Arrange
        table = _make_numeric_table(12)
        held_out: list[float] = []
        fold_scores: list[float] = []

        def validate(value: float, model: object, test: TypedTable) -> float:  # noqa: ARG001
            values = test.column("x").values
            held_out.extend(values.tolist())
            fold_scores.append(float(values.mean()))
            return float(values.mean())

        # Act
        cv = cross_validate(table, lambda training: None, validate, [0.0], 4, random_state=7)  # type: ignore[arg-type]

        # Assert
        with check:
            assert sorted(held_out) == table.column("x").values.tolist()
        with check:
            assert cv["estimate"][0] == pytest.approx(np.mean(fold_scores))
        with check:
            assert cv["error"][0] == pytest.approx(np.std(fold_scores, ddof=1) / math.sqrt(4))

    @pytest.mark.parametrize("folds", [1, 0, 13])
    def test_fold_count_out_of_range(self, folds: int) -> None:
        """Fewer than 2 folds or more folds than rows is rejected.

        Args:
            folds (int): Requested fold count.
        """
        table = _make_numeric_table(12)

        with pytest.raises(InvalidConfigurationError, match="folds must be between 2"):
            cross_validate(table, lambda training: None, lambda v, m, t: 0.0, [0.0], folds)  # type: ignore[arg-type]

    def test_random_state_fixes_the_folds(self) -> None:
        """The same seed yields the same result with or without worker threads."""
        # Arrange
        table = _make_numeric_table(15)

        def validate(value: float, model: object, test: TypedTable) -> float:  # noqa: ARG001
            return float(test.column("x").values.sum())

        # Act
        serial = cross_validate(table, lambda t: None, validate, [0.0], 5, random_state=3)  # type: ignore[arg-type]
        threaded = cross_validate(
            table,
            lambda t: None,  # type: ignore[arg-type]
            validate,
            [0.0],
            5,
            random_state=3,
            n_jobs=2,
        )

        # Assert
        assert serial.equals(threaded)


# ---------------------------------------------------------------------------
# make_tree
# ---------------------------------------------------------------------------


class TestMakeTree:
    """Tests for single-tree training with cross-validated pruning."""

    def test_without_cross_validation_returns_full_tree(self) -> None:
        """`folds=0` returns the finalized, unpruned tree with no cutoff."""
        # Arrange
        table = _make_noisy_table()

        # Act
        tree = make_tree(table, min_split=2, min_bucket=1, folds=0)

        # Assert
        with check:
            assert tree.cv_results is None
        with check:
            assert tree.cutoff is None
        with check:
            assert len(tree.collapse_sequence()) == tree.node_count - tree.n_leaves
        with check:
            assert tree.predict(table, -math.inf).tolist() == table.response.values.tolist()

    def test_cross_validation_prunes_at_selected_cutoff(self) -> None:
        """The committed cutoff comes from the CV table and no kept branch collapses at or below it."""
        # Arrange
        table = _make_noisy_table()
        full = make_tree(table, min_split=4, folds=0)

        # Act
        tree = make_tree(table, min_split=4, folds=5, random_state=0)

        # Assert
        cv = tree.cv_results
        with check:
            assert cv is not None and tuple(cv.columns) == CV_COLUMNS
        with check:
            assert cv["parameter"][0] == 0.0
        with check:
            assert cv["parameter"].to_list() == sorted(set(cv["parameter"].to_list()))
        with check:
            assert tree.cutoff in cv["parameter"].to_list()
        with check:
            assert tree.cutoff == select_cutoff(cv)
        with check:
            assert all(tree.node(node_id).collapse > tree.cutoff for node_id in tree.node_ids())
        with check:
            assert tree.node_count <= full.node_count
        with check:
            assert tree.node(1).leaf_count == tree.n_leaves

    def test_committed_pruning_matches_prediction_cutoff(self) -> None:
        """Predicting with the default cutoff on the pruned tree matches the full tree at the selected cutoff."""
        # Arrange
        table = _make_noisy_table()
        full = make_tree(table, min_split=4, folds=0)

        # Act
        tree = make_tree(table, min_split=4, folds=5, random_state=0)

        # Assert
        assert tree.predict(table).tolist() == full.predict(table, tree.cutoff).tolist()

    def test_thread_count_does_not_change_result(self) -> None:
        """A fixed seed gives identical CV tables for serial and threaded folds."""
        table = _make_noisy_table()

        serial = make_tree(table, min_split=4, folds=4, random_state=9)
        threaded = make_tree(table, min_split=4, folds=4, random_state=9, n_jobs=2)

        with check:
            assert serial.cv_results is not None and serial.cv_results.equals(threaded.cv_results)
        with check:
            assert serial.cutoff == threaded.cutoff

    def test_regression_scores_are_mean_squared_errors(self) -> None:
        """Regression trees are cross-validated on mean squared error."""
        # Arrange
        rng = np.random.default_rng(2)
        area = rng.uniform(30.0, 200.0, 50)
        price = 2.0 * area + rng.normal(0.0, 10.0, 50)
        table = TypedTable([NumericColumn("price", price), NumericColumn("area", area)])

        # Act
        tree = make_tree(table, min_split=6, folds=5, random_state=4)

        # Assert
        with check:
            assert tree.task_type == "regression"
        with check:
            assert tree.cv_results is not None and (tree.cv_results["estimate"] >= 0.0).all()
        with check:
            assert isinstance(tree, Tree)

    def test_more_folds_than_rows_rejected(self) -> None:
        """Cross-validation needs at least one row per fold."""
        table = _make_numeric_table(4)

        with pytest.raises(InvalidConfigurationError, match="cannot exceed"):
            make_tree(table, min_split=2, min_bucket=1, folds=5)

    def test_single_fold_rejected(self) -> None:
        """One fold leaves nothing to validate on."""
        table = _make_numeric_table(4)

        with pytest.raises(InvalidConfigurationError, match="Invalid tree parameters"):
            make_tree(table, folds=1)


# ---------------------------------------------------------------------------
# Private test helpers
# ---------------------------------------------------------------------------


def _make_cv(parameters: list[float], estimates: list[float], errors: list[float]) -> pl.DataFrame:
    """Build a cross-validation table.

    Args:
        parameters (list[float]): Cutoffs.
        estimates (list[float]): Mean scores.
        errors (list[float]): Standard errors.

    Returns:
        pl.DataFrame: Table with the standard CV columns.
    """
    return pl.DataFrame(
        {"parameter": parameters, "estimate": estimates, "error": errors},
        schema={"parameter": pl.Float64, "estimate": pl.Float64, "error": pl.Float64},
    )


def _make_numeric_table(n_rows: int) -> TypedTable:
    """Build a regression table whose covariate `x` is `0..n_rows-1`.

    Args:
        n_rows (int): Number of rows.

    Returns:
        TypedTable: The table.
    """
    x = np.arange(n_rows, dtype=np.float64)
    return TypedTable([NumericColumn("y", 2.0 * x), NumericColumn("x", x)])


def _make_noisy_table(n_rows: int = 80, seed: int = 21) -> TypedTable:
    """Build a two-class table where `x1 > 0` mostly means `"yes"`.

    Args:
        n_rows (int): Number of rows.
        seed (int): Random seed.

    Returns:
        TypedTable: The table.
    """
    rng = np.random.default_rng(seed)
    x1 = rng.normal(size=n_rows)
    x2 = rng.normal(size=n_rows)
    flipped = rng.uniform(size=n_rows) < 0.2
    labels = np.where((x1 > 0) ^ flipped, "yes", "no").astype(object)
    return TypedTable([
        CategoricalColumn("answer", labels, ("no", "yes")),
        NumericColumn("x1", x1),
        NumericColumn("x2", x2),
    ])
