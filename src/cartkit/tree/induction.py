"""Tree induction: grow a `Tree` by repeated best-split search."""

from __future__ import annotations

import math

import numpy as np
from loguru import logger

from cartkit.exceptions import MalformedTableError
from cartkit.risk import RiskConfig
from cartkit.table import CategoricalColumn, TypedTable
from cartkit.tree.models import TreeParameters, goes_left
from cartkit.tree.splitting import best_split
from cartkit.tree.store import ROOT_ID, Tree


def grow_subtree(
    table: TypedTable,
    risk_config: RiskConfig,
    min_split: int = 20,
    min_bucket: int | None = None,
    num_covariates: float = math.inf,
    *,
    rng: np.random.Generator | None = None,
) -> Tree:
    """Grow a full, unpruned tree from a training table.

    Every node stores its decision, response summary, and prune risk. A node
    with fewer than `min_split` rows stays a leaf, as does a node whose rows
    all share one class (or one response value), a node whose best
    split leaves fewer than `min_bucket` rows (at least 1) on either side, or
    whose covariates are all constant. Once the structure is complete, leaf
    totals and collapse values are filled in bottom-up.

    Args:
        table (TypedTable): Training rows, response first.
        risk_config (RiskConfig): Build and prune risks bound to the full
            training table.
        min_split (int): Minimum rows needed to attempt a split.
        min_bucket (int | None): Minimum rows in each child; defaults to
            `round(min_split / 3)`.
        num_covariates (float): Covariates sampled at each split; `inf` searches all.
        rng (np.random.Generator | None): Source for covariate sampling.

    Returns:
        Tree: The grown tree, not yet finalized for pruning.

    Raises:
        InvalidConfigurationError: If the stopping rules are invalid.
        MalformedTableError: If the table has no rows or no covariates.
    """
    params = TreeParameters.build(min_split=min_split, min_bucket=min_bucket, num_covariates=num_covariates, folds=0)
    check_trainable(table)

    tree = Tree.for_table(table)
    smallest_child = max(params.min_bucket, 1)
    stack: list[tuple[int, TypedTable]] = [(ROOT_ID, table)]
    while stack:
        node_id, node_table = stack.pop()
        y = _response_array(node_table)
        _store_details(tree, node_id, node_table, y)
        tree.set_risk(node_id, risk_config.prune_risk(y))

        if node_table.n_rows < params.min_split or _is_pure(y):
            continue
        candidate = best_split(node_table, risk_config.build_risk, params.num_covariates, rng=rng)
        if candidate is None:
            continue
        to_left = goes_left(node_table.covariates[candidate.variable_index].values, candidate.split_point)
        n_left = int(to_left.sum())
        if min(n_left, node_table.n_rows - n_left) < smallest_child:
            continue

        left_id, right_id = tree.add_split(node_id, candidate.variable_index, candidate.split_point)
        stack.append((right_id, node_table.take(~to_left)))
        stack.append((left_id, node_table.take(to_left)))

    for node_id in reversed(tree.node_ids()):
        tree.update_collapse(node_id)

    logger.debug(
        "Tree grown",
        n_rows=table.n_rows,
        node_count=tree.node_count,
        n_leaves=tree.n_leaves,
        depth=tree.depth,
    )
    return tree


def check_trainable(table: TypedTable) -> None:
    """Reject tables a tree cannot be grown from.

    Raises:
        MalformedTableError: If the table has no rows or no covariates.
    """
    if table.n_rows == 0:
        raise MalformedTableError("Cannot grow a tree from an empty table.")
    if not table.covariates:
        raise MalformedTableError("Cannot grow a tree without covariates.")


def _response_array(table: TypedTable) -> np.ndarray:
    response = table.response
    return response.codes() if isinstance(response, CategoricalColumn) else response.values


def _is_pure(y: np.ndarray) -> bool:
    """Return `True` when every row has the same class, or the same response value."""
    return bool((y == y[0]).all())


def _store_details(tree: Tree, node_id: int, table: TypedTable, y: np.ndarray) -> None:
    """Store the majority class (or mean) and response summary of one node.

    Classification ties go to the first class in level order. Regression nodes
    store `[count, mean, std]`.
    """
    response = table.response
    if isinstance(response, CategoricalColumn):
        counts = np.bincount(y, minlength=len(response.levels))
        decision: str | float = response.levels[int(np.argmax(counts))]
    else:
        decision = float(y.mean())
        counts = np.array([len(y), decision, float(y.std())])
    tree.set_details(node_id, decision=decision, class_counts=counts, n_obs=len(y))
