"""Random forests: unpruned trees grown on bootstrap samples and combined by vote."""

from __future__ import annotations

import math
from collections.abc import Iterator, Sequence

import numpy as np
from loguru import logger

from cartkit.exceptions import InvalidConfigurationError
from cartkit.logging import TRAINING_LEVEL
from cartkit.parallel import map_ordered
from cartkit.risk import RiskConfig, RiskFunction
from cartkit.table import TaskType, TypedTable
from cartkit.tree.induction import check_trainable, grow_subtree
from cartkit.tree.models import TreeParameters
from cartkit.tree.store import Tree


class Forest:
    """An ordered collection of independently grown trees.

    Classification forests predict the plurality class across trees, breaking
    ties by class level order. Regression forests predict the mean of the
    tree predictions. Every tree is traversed to its true leaves.
    """

    def __init__(self, trees: Sequence[Tree]) -> None:
        """Initialize the forest.

        Args:
            trees (Sequence[Tree]): The member trees; all must share a task type
                and response levels.

        Raises:
            InvalidConfigurationError: If `trees` is empty or the trees disagree
                on their response.
        """
        if not trees:
            raise InvalidConfigurationError("A forest needs at least one tree.")
        if len({tree.response_levels for tree in trees}) != 1:
            raise InvalidConfigurationError("All trees in a forest must share the same response levels.")
        self._trees: tuple[Tree, ...] = tuple(trees)

    def __len__(self) -> int:
        return len(self._trees)

    def __iter__(self) -> Iterator[Tree]:
        return iter(self._trees)

    def __repr__(self) -> str:
        return f"Random forest with {len(self._trees)} trees."

    @property
    def trees(self) -> tuple[Tree, ...]:
        """tuple[Tree, ...]: The member trees, in training order."""
        return self._trees

    @property
    def task_type(self) -> TaskType:
        """TaskType: The task shared by every tree."""
        return self._trees[0].task_type

    def predict(self, table: TypedTable) -> np.ndarray:
        """Predict every row by combining the predictions of all trees.

        Args:
            table (TypedTable): Rows to predict.

        Returns:
            np.ndarray: Class labels (object array) or mean predictions (float array).
        """
        votes = np.vstack([tree.predict(table, -math.inf) for tree in self._trees])
        if self.task_type == "regression":
            return votes.astype(np.float64).mean(axis=0)

        levels = self._trees[0].response_levels or ()
        index = {level: code for code, level in enumerate(levels)}
        counts = np.zeros((table.n_rows, len(levels)), dtype=np.intp)
        rows = np.arange(table.n_rows)
        for tree_votes in votes:
            counts[rows, [index[label] for label in tree_votes]] += 1
        return np.asarray([levels[code] for code in counts.argmax(axis=1)], dtype=object)


def train_forest(
    table: TypedTable,
    *,
    num_trees: int,
    num_covariates: float,
    risk: str | RiskFunction | None = None,
    min_split: int = 20,
    min_bucket: int | None = None,
    prior: Sequence[float] | np.ndarray | None = None,
    random_state: int | None = None,
    n_jobs: int = 1,
) -> Forest:
    """Grow a random forest.

    Each tree is grown, unpruned, on a bootstrap sample of the rows (drawn with
    replacement, same size as the table) and samples `num_covariates`
    covariates at every split. Every tree gets its own random stream spawned
    from `random_state`, so the forest does not depend on `n_jobs`.

    Args:
        table (TypedTable): Training rows, response first.
        num_trees (int): Number of trees to grow.
        num_covariates (float): Covariates sampled per split; values at or above
            the covariate count, including `inf`, search every covariate.
        risk (str | RiskFunction | None): Risk used to choose splits; `"gini"`
            (classification) or `"sse"` (regression) by default.
        min_split (int): Minimum rows needed to attempt a split.
        min_bucket (int | None): Minimum rows per child; `round(min_split / 3)` by default.
        prior (Sequence[float] | np.ndarray | None): Class priors in level order.
        random_state (int | None): Seed for bootstrap draws and covariate sampling.
        n_jobs (int): Trees grown in parallel; -1 uses every CPU.

    Returns:
        Forest: The trained forest.

    Raises:
        InvalidConfigurationError: If `num_trees < 1` or another parameter is invalid.
        MalformedTableError: If the table has no rows or no covariates.
    """
    if num_trees < 1:
        raise InvalidConfigurationError(f"num_trees must be at least 1, got {num_trees}.")
    params = TreeParameters.build(
        min_split=min_split,
        min_bucket=min_bucket,
        num_covariates=num_covariates,
        folds=0,
    )
    check_trainable(table)
    risk_config = RiskConfig.for_forest(table, risk=risk, prior=prior)

    logger.log(
        TRAINING_LEVEL,
        "Training forest",
        task_type=table.task_type,
        n_rows=table.n_rows,
        num_trees=num_trees,
        num_covariates=params.num_covariates,
    )

    def grow(seed: np.random.SeedSequence) -> Tree:
        rng = np.random.default_rng(seed)
        rows = rng.choice(table.n_rows, size=table.n_rows, replace=True)
        return grow_subtree(
            table.take(rows),
            risk_config,
            params.min_split,
            params.min_bucket,
            params.num_covariates,
            rng=rng,
        )

    seeds = np.random.SeedSequence(random_state).spawn(num_trees)
    forest = Forest(map_ordered(grow, seeds, n_jobs=n_jobs))
    logger.info("Forest trained", num_trees=len(forest), mean_leaves=float(np.mean([t.n_leaves for t in forest])))
    return forest
