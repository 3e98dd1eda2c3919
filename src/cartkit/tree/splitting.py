"""Best-split search over categorical subsets and numeric midpoints."""

from __future__ import annotations

import math
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass

import numpy as np

from cartkit.table import CategoricalColumn, Column, TypedTable
from cartkit.tree.models import CategoricalSubset, NumericThreshold, goes_left

type BuildRisk = Callable[[Sequence[np.ndarray]], float | np.ndarray]


@dataclass(frozen=True)
class SplitCandidate:
    """The winning split of a node.

    Attributes:
        variable_index (int): Position of the covariate among the table's covariates.
        variable (str): Covariate name.
        split_point (NumericThreshold | CategoricalSubset): Rows satisfying it go left.
        score (float): Summed side risks divided by the node's row count.
    """

    variable_index: int
    variable: str
    split_point: NumericThreshold | CategoricalSubset
    score: float


def best_split(
    table: TypedTable,
    build_risk: BuildRisk,
    num_covariates: float = math.inf,
    *,
    rng: np.random.Generator | None = None,
) -> SplitCandidate | None:
    """Find the covariate and split point with the lowest score.

    Covariates are searched in table order and candidates in the order
    `candidate_split_points` yields them; the first candidate reaching the
    minimum wins.

    Args:
        table (TypedTable): Rows of the node being split.
        build_risk (BuildRisk): Returns per-side risks for a `(left, right)` pair
            of response subsets; the sides are summed.
        num_covariates (float): Covariates to sample without replacement before
            searching. `inf`, or any value at least the covariate count, searches all.
        rng (np.random.Generator | None): Source for covariate sampling.

    Returns:
        SplitCandidate | None: The best split, or `None` when no covariate has
            two distinct observed values.
    """
    response = table.response
    y = response.codes() if isinstance(response, CategoricalColumn) else response.values
    n_rows = table.n_rows

    best: SplitCandidate | None = None
    for index in _sampled_covariates(len(table.covariates), num_covariates, rng):
        column = table.covariates[index]
        for split_point in candidate_split_points(column):
            to_left = goes_left(column.values, split_point)
            score = float(np.sum(build_risk((y[to_left], y[~to_left])))) / n_rows
            if best is None or score < best.score:
                best = SplitCandidate(index, column.name, split_point, score)
    return best


def candidate_split_points(column: Column) -> Iterator[NumericThreshold | CategoricalSubset]:
    """Yield every distinct binary split of one covariate.

    Numeric columns yield the midpoints between adjacent distinct values, in
    increasing order. Categorical columns yield the `2^(L-1) - 1` subsets of
    the `L` levels observed in `column`; each subset holds the first observed
    level (in level order), so no subset is the complement of another.

    Args:
        column (Column): The covariate values at one node.

    Yields:
        NumericThreshold | CategoricalSubset: Candidate split points.

    Examples:
        >>> col = CategoricalColumn("c", np.array(["x", "y", "z"]), ("x", "y", "z"))
        >>> [sorted(s.levels) for s in candidate_split_points(col)]
        [['x', 'z'], ['x', 'y'], ['x']]
    """
    if isinstance(column, CategoricalColumn):
        present = set(column.values.tolist())
        observed = [level for level in column.levels if level in present]
        first, rest = observed[0:1], observed[1:]
        for mask in range(1, 2 ** len(rest)):
            chosen = [level for bit, level in enumerate(rest) if not (mask >> bit) & 1]
            yield CategoricalSubset(levels=frozenset(first + chosen))
        return

    distinct = np.unique(column.values)
    for threshold in (distinct[:-1] + distinct[1:]) / 2.0:
        yield NumericThreshold(threshold=float(threshold))


def _sampled_covariates(
    n_covariates: int,
    num_covariates: float,
    rng: np.random.Generator | None,
) -> list[int]:
    """Pick the covariate indices to search, in increasing order.

    Args:
        n_covariates (int): Covariates in the table.
        num_covariates (float): Requested sample size; capped at `n_covariates`.
        rng (np.random.Generator | None): Sampling source; a fresh one if `None`.

    Returns:
        list[int]: Sorted covariate indices.
    """
    if math.isinf(num_covariates) or num_covariates >= n_covariates:
        return list(range(n_covariates))
    rng = rng if rng is not None else np.random.default_rng()
    chosen = rng.choice(n_covariates, size=int(num_covariates), replace=False)
    return sorted(int(index) for index in chosen)
