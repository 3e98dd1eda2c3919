"""Cross-validated choice of the pruning cutoff and single-tree training.

`make_tree` grows a full tree, computes its weakest-link collapse values, and
uses k-fold cross-validation to pick a pruning cutoff with the
one-standard-error rule: among cutoffs whose mean validation error is within
one standard error of the best, the largest (most heavily pruned) one wins.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Sequence
from typing import Final

import numpy as np
import polars as pl
from loguru import logger
from sklearn.metrics import accuracy_score, mean_squared_error
from sklearn.model_selection import KFold

from cartkit.exceptions import ColumnsNotFoundError, InvalidConfigurationError
from cartkit.logging import TRAINING_LEVEL
from cartkit.parallel import map_ordered
from cartkit.risk import RiskConfig, RiskFunction
from cartkit.table import TypedTable
from cartkit.tree.induction import check_trainable, grow_subtree
from cartkit.tree.models import TreeParameters
from cartkit.tree.store import Tree

type TrainFn = Callable[[TypedTable], Tree]
type ValidateFn = Callable[[float, Tree, TypedTable], float]

CV_COLUMNS: Final[tuple[str, str, str]] = ("parameter", "estimate", "error")

# ---------------------------------------------------------------------------
# Public interface -- Cross-validation harness
# ---------------------------------------------------------------------------


def cross_validate(
    table: TypedTable,
    train_fn: TrainFn,
    validate_fn: ValidateFn,
    tuning_values: Sequence[float] | np.ndarray,
    folds: int,
    *,
    random_state: int | None = None,
    n_jobs: int = 1,
) -> pl.DataFrame:
    """Estimate the validation score of every tuning value by k-fold cross-validation.

    Rows are shuffled into `folds` parts. For each part, `train_fn` fits a model
    on the other parts and `validate_fn` scores it on the held-out part once
    per tuning value.

    Args:
        table (TypedTable): All rows.
        train_fn (TrainFn): Fits a model on a training table.
        validate_fn (ValidateFn): Scores `(tuning_value, model, validation_table)`;
            lower is better.
        tuning_values (Sequence[float] | np.ndarray): Values to evaluate, in the
            order they appear in the result.
        folds (int): Number of folds, between 2 and the row count.
        random_state (int | None): Seed for the row shuffle.
        n_jobs (int): Folds evaluated in parallel; -1 uses every CPU.

    Returns:
        pl.DataFrame: One row per tuning value with columns `parameter`,
            `estimate` (mean score across folds), and `error` (standard error
            of that mean).

    Raises:
        InvalidConfigurationError: If `folds` is below 2 or above the row count.
    """
    if folds < 2 or folds > table.n_rows:
        raise InvalidConfigurationError(
            f"folds must be between 2 and the number of rows ({table.n_rows}), got {folds}."
        )
    tuning = np.asarray(tuning_values, dtype=np.float64)
    logger.log(TRAINING_LEVEL, "Cross-validating", folds=folds, n_rows=table.n_rows, n_values=len(tuning))

    splits = list(KFold(n_splits=folds, shuffle=True, random_state=random_state).split(np.arange(table.n_rows)))

    def run_fold(fold: int) -> np.ndarray:
        train_rows, test_rows = splits[fold]
        model = train_fn(table.take(train_rows))
        test_table = table.take(test_rows)
        scores = np.array([validate_fn(float(value), model, test_table) for value in tuning], dtype=np.float64)
        logger.debug("Fold validated", fold=fold + 1, folds=folds, n_test=len(test_rows))
        return scores

    scores = np.vstack(map_ordered(run_fold, range(folds), n_jobs=n_jobs))
    return pl.DataFrame({
        "parameter": tuning,
        "estimate": scores.mean(axis=0),
        "error": scores.std(axis=0, ddof=1) / math.sqrt(folds),
    })


def select_cutoff(cv: pl.DataFrame) -> float:
    """Pick a cutoff from cross-validation results with the one-standard-error rule.

    The best row is the first one with the lowest `estimate`. Every row whose
    estimate is at most the best estimate plus the best row's `error` is
    eligible, and the largest eligible `parameter` is returned.

    Args:
        cv (pl.DataFrame): Output of `cross_validate`.

    Returns:
        float: The selected cutoff.

    Raises:
        ColumnsNotFoundError: If a required column is missing.
        InvalidConfigurationError: If `cv` has no rows.

    Examples:
        >>> cv = pl.DataFrame({
        ...     "parameter": [0.0, 0.2, 0.5],
        ...     "estimate": [0.30, 0.20, 0.24],
        ...     "error": [0.05, 0.05, 0.05],
        ... })
        >>> select_cutoff(cv)
        0.5
    """
    missing = [name for name in CV_COLUMNS if name not in cv.columns]
    if missing:
        raise ColumnsNotFoundError(missing_columns=missing, available_columns=list(cv.columns))
    if cv.height == 0:
        raise InvalidConfigurationError("Cannot select a cutoff from an empty cross-validation table.")

    estimates = cv["estimate"].to_numpy()
    best = int(np.argmin(estimates))
    limit = estimates[best] + cv["error"].to_numpy()[best]
    eligible = cv["parameter"].to_numpy()[estimates <= limit]
    return float(eligible.max())


# ---------------------------------------------------------------------------
# Public interface -- Single-tree training
# ---------------------------------------------------------------------------


def make_tree(
    table: TypedTable,
    *,
    build_risk: str | RiskFunction | None = None,
    prune_risk: str | RiskFunction | None = None,
    min_split: int = 20,
    min_bucket: int | None = None,
    folds: int = 10,
    prior: Sequence[float] | np.ndarray | None = None,
    random_state: int | None = None,
    n_jobs: int = 1,
) -> Tree:
    """Grow a tree and prune it at a cross-validated cutoff.

    The candidate cutoffs are 0 plus every finite collapse value of the full
    tree. Each fold grows and finalizes a fresh tree with the same risk
    configuration, bound to the class counts and priors of the whole table.
    Classification folds are scored by misclassification rate, regression
    folds by mean squared error. With `folds=0` the full tree is returned
    unpruned.

    Args:
        table (TypedTable): Training rows, response first.
        build_risk (str | RiskFunction | None): Risk used to choose splits;
            `"gini"` (classification) or `"sse"` (regression) by default.
        prune_risk (str | RiskFunction | None): Risk stored on nodes for pruning;
            `"error"` (classification) or `"sse"` (regression) by default.
        min_split (int): Minimum rows needed to attempt a split.
        min_bucket (int | None): Minimum rows per child; `round(min_split / 3)` by default.
        folds (int): Cross-validation folds; 0 skips cross-validation.
        prior (Sequence[float] | np.ndarray | None): Class priors in level order.
        random_state (int | None): Seed for the fold shuffle.
        n_jobs (int): Folds evaluated in parallel; -1 uses every CPU.

    Returns:
        Tree: The finalized tree. When cross-validated, `cv_results` and
            `cutoff` are set and the tree is pruned at `cutoff`.

    Raises:
        InvalidConfigurationError: If a parameter is invalid or `folds` exceeds
            the row count.
        MalformedTableError: If the table has no rows or no covariates.

    Examples:
        >>> df = pl.DataFrame({"label": ["A", "A", "B", "B"], "x": [1, 2, 3, 4]})
        >>> tree = make_tree(TypedTable.from_polars(df, "label"), min_split=2, min_bucket=1, folds=0)
        >>> tree.n_leaves
        2
    """
    params = TreeParameters.build(min_split=min_split, min_bucket=min_bucket, folds=folds)
    check_trainable(table)
    if params.folds > table.n_rows:
        raise InvalidConfigurationError(f"folds ({params.folds}) cannot exceed the number of rows ({table.n_rows}).")
    risk_config = RiskConfig.for_table(table, build_risk=build_risk, prune_risk=prune_risk, prior=prior)

    logger.log(
        TRAINING_LEVEL,
        "Training tree",
        task_type=table.task_type,
        n_rows=table.n_rows,
        n_covariates=len(table.covariates),
        folds=params.folds,
    )

    def train(training_table: TypedTable) -> Tree:
        model = grow_subtree(training_table, risk_config, params.min_split, params.min_bucket)
        model.finalize_collapse()
        return model

    tree = train(table)
    if params.folds == 0:
        return tree

    tuning = np.unique(np.concatenate([[0.0], tree.get_tuning()]))
    cv = cross_validate(
        table,
        train,
        _validation_score,
        tuning,
        params.folds,
        random_state=random_state,
        n_jobs=n_jobs,
    )
    cutoff = select_cutoff(cv)
    removed = tree.prune(cutoff)
    tree.cv_results = cv
    tree.cutoff = cutoff
    logger.info("Pruning cutoff selected", cutoff=cutoff, removed=removed, n_leaves=tree.n_leaves)
    return tree


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _validation_score(cutoff: float, tree: Tree, table: TypedTable) -> float:
    """Score a fold tree on held-out rows: misclassification rate or mean squared error."""
    predictions = tree.predict(table, cutoff)
    actual = table.response.values
    if tree.task_type == "classification":
        return 1.0 - float(accuracy_score(actual, predictions))
    return float(mean_squared_error(actual, predictions))
