"""Array-backed binary tree store with cost-complexity pruning and prediction.

Nodes are addressed by 1-based integer ids into parallel arrays; id 0 is the
"no node" sentinel. Children are always created in pairs, so every node has
either two children or none. Ids freed by pruning are handed out again,
lowest first, before the arrays grow.
"""

from __future__ import annotations

import heapq
import math
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

import numpy as np
from loguru import logger

from cartkit.exceptions import MalformedTableError
from cartkit.table import CategoricalColumn, TaskType, TypedTable
from cartkit.tree.models import (
    CategoricalSubset,
    ClassificationRule,
    NumericThreshold,
    Predicate,
    RegressionRule,
    goes_left,
)

if TYPE_CHECKING:
    import polars as pl

NO_NODE: Final[int] = 0
ROOT_ID: Final[int] = 1

_INITIAL_CAPACITY: Final[int] = 15
_NO_VARIABLE: Final[int] = -1


@dataclass(frozen=True)
class Node:
    """Read-only snapshot of one node.

    Attributes:
        node_id (int): The node's id; the root is 1.
        parent_id (int | None): Parent id, `None` for the root.
        left_id (int | None): Left child id, `None` for a leaf.
        right_id (int | None): Right child id, `None` for a leaf.
        split_variable (int | None): Index of the split covariate, `None` for a leaf.
        split_point (NumericThreshold | CategoricalSubset | None): The split, `None` for a leaf.
        decision (str | float | None): Majority class or mean response.
        class_counts (np.ndarray | None): Per-class counts for classification;
            `[count, mean, std]` for regression.
        n_obs (int): Training rows that reached the node.
        risk (float): The node's own prune risk.
        leaf_risk (float): Sum of leaf risks in the subtree.
        leaf_count (int): Number of leaves in the subtree.
        collapse (float): Complexity parameter; `inf` for leaves.
    """

    node_id: int
    parent_id: int | None
    left_id: int | None
    right_id: int | None
    split_variable: int | None
    split_point: NumericThreshold | CategoricalSubset | None
    decision: str | float | None
    class_counts: np.ndarray | None
    n_obs: int
    risk: float
    leaf_risk: float
    leaf_count: int
    collapse: float

    @property
    def is_leaf(self) -> bool:
        """bool: `True` when the node has no children."""
        return self.left_id is None and self.right_id is None


class Tree:
    """A CART tree stored as parallel arrays indexed by node id.

    Attributes:
        covariate_names (tuple[str, ...]): Covariates of the training table, in
            order; `split_variable` indexes into this tuple.
        response_levels (tuple[str, ...] | None): Class labels for a
            classification tree, `None` for regression.
        cv_results (pl.DataFrame | None): Cross-validation table set by
            `make_tree`, with columns `parameter`, `estimate`, `error`.
        cutoff (float | None): Pruning cutoff committed by `make_tree`.
    """

    def __init__(
        self,
        covariate_names: Sequence[str],
        response_levels: Sequence[str] | None = None,
        *,
        capacity: int = _INITIAL_CAPACITY,
    ) -> None:
        """Create a tree holding only an empty root.

        Args:
            covariate_names (Sequence[str]): Covariate names of the training table.
            response_levels (Sequence[str] | None): Class labels, or `None` for regression.
            capacity (int): Initial number of node slots.
        """
        self.covariate_names: tuple[str, ...] = tuple(covariate_names)
        self.response_levels: tuple[str, ...] | None = (
            tuple(response_levels) if response_levels is not None else None
        )
        self.cv_results: pl.DataFrame | None = None
        self.cutoff: float | None = None

        self._capacity = 0
        self._next_id = ROOT_ID
        self._free_ids: list[int] = []
        self._collapse_order: list[tuple[int, float]] = []
        self._resize(max(capacity, 1))
        self._allocate()

    @classmethod
    def for_table(cls, table: TypedTable) -> Tree:
        """Create an empty tree shaped for a training table.

        Args:
            table (TypedTable): The training table.

        Returns:
            Tree: A tree holding only an empty root.
        """
        response = table.response
        levels = response.levels if isinstance(response, CategoricalColumn) else None
        return cls([column.name for column in table.covariates], levels)

    def __repr__(self) -> str:
        return f"Tree(task_type={self.task_type!r}, node_count={self.node_count}, n_leaves={self.n_leaves})"

    # ------------------------------------------------------------------
    # Size and shape
    # ------------------------------------------------------------------

    @property
    def task_type(self) -> TaskType:
        """TaskType: `"classification"` when the tree predicts class labels."""
        return "classification" if self.response_levels is not None else "regression"

    @property
    def capacity(self) -> int:
        """int: Node slots currently allocated."""
        return self._capacity

    @property
    def node_count(self) -> int:
        """int: Live nodes reachable from the root."""
        return len(self.node_ids())

    @property
    def n_leaves(self) -> int:
        """int: Leaves reachable from the root."""
        return len(self.leaf_ids())

    @property
    def depth(self) -> int:
        """int: Length of the longest root-to-leaf path; 0 for a single leaf."""
        deepest = 0
        stack = [(ROOT_ID, 0)]
        while stack:
            node_id, level = stack.pop()
            deepest = max(deepest, level)
            if not self.is_leaf(node_id):
                stack.append((int(self._left[node_id]), level + 1))
                stack.append((int(self._right[node_id]), level + 1))
        return deepest

    def node_ids(self) -> list[int]:
        """Return live node ids in pre-order (node, left subtree, right subtree).

        Returns:
            list[int]: Ids reachable from the root through child links.
        """
        ordered: list[int] = []
        stack = [ROOT_ID]
        while stack:
            node_id = stack.pop()
            ordered.append(node_id)
            if not self.is_leaf(node_id):
                stack.append(int(self._right[node_id]))
                stack.append(int(self._left[node_id]))
        return ordered

    def leaf_ids(self) -> list[int]:
        """Return the ids of all reachable leaves, left to right.

        Returns:
            list[int]: Leaf ids.
        """
        return [node_id for node_id in self.node_ids() if self.is_leaf(node_id)]

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def is_leaf(self, node_id: int) -> bool:
        return self._left[node_id] == NO_NODE and self._right[node_id] == NO_NODE

    def is_root(self, node_id: int) -> bool:
        return node_id == ROOT_ID

    def left(self, node_id: int) -> int | None:
        return _optional_id(self._left[node_id])

    def right(self, node_id: int) -> int | None:
        return _optional_id(self._right[node_id])

    def parent(self, node_id: int) -> int | None:
        return _optional_id(self._parent[node_id])

    def node(self, node_id: int) -> Node:
        """Return a snapshot of one live node.

        Args:
            node_id (int): The node id.

        Returns:
            Node: The node's fields.

        Raises:
            KeyError: If `node_id` is not a live node.
        """
        if not (ROOT_ID <= node_id <= self._capacity) or not self._live[node_id]:
            raise KeyError(f"No live node with id {node_id}")
        variable = int(self._variable[node_id])
        return Node(
            node_id=node_id,
            parent_id=self.parent(node_id),
            left_id=self.left(node_id),
            right_id=self.right(node_id),
            split_variable=None if variable == _NO_VARIABLE else variable,
            split_point=self._split_point[node_id],
            decision=self._decision[node_id],
            class_counts=self._counts[node_id],
            n_obs=int(self._n_obs[node_id]),
            risk=float(self._risk[node_id]),
            leaf_risk=float(self._leaf_risk[node_id]),
            leaf_count=int(self._leaf_count[node_id]),
            collapse=float(self._collapse[node_id]),
        )

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def set_details(
        self,
        node_id: int,
        *,
        decision: str | float,
        class_counts: np.ndarray,
        n_obs: int,
    ) -> None:
        """Store a node's decision and response summary.

        Args:
            node_id (int): The node id.
            decision (str | float): Majority class or mean response.
            class_counts (np.ndarray): Per-class counts, or `[count, mean, std]`.
            n_obs (int): Rows that reached the node.
        """
        self._decision[node_id] = decision
        self._counts[node_id] = class_counts
        self._n_obs[node_id] = n_obs

    def set_risk(self, node_id: int, risk: float) -> None:
        self._risk[node_id] = risk

    def add_split(
        self,
        node_id: int,
        variable: int,
        split_point: NumericThreshold | CategoricalSubset,
    ) -> tuple[int, int]:
        """Turn a leaf into a branch by creating its two children.

        Args:
            node_id (int): The leaf to split.
            variable (int): Index of the split covariate.
            split_point (NumericThreshold | CategoricalSubset): The split.

        Returns:
            tuple[int, int]: `(left_id, right_id)` of the new, empty children.

        Raises:
            ValueError: If the node already has children.
        """
        if not self.is_leaf(node_id):
            raise ValueError(f"Node {node_id} is already split")
        left_id = self._allocate()
        right_id = self._allocate()
        self._parent[left_id] = self._parent[right_id] = node_id
        self._left[node_id] = left_id
        self._right[node_id] = right_id
        self._variable[node_id] = variable
        self._split_point[node_id] = split_point
        return left_id, right_id

    def update_collapse(self, node_id: int) -> None:
        """Recompute a node's leaf totals and complexity parameter from its children.

        A leaf's leaf risk is its own risk, its leaf count is 1, and its
        collapse value is infinite. A branch sums its children's leaf totals
        and gets `(risk - leaf_risk) / (leaf_count - 1)`.

        Args:
            node_id (int): The node to update.
        """
        _update_collapse(self, node_id, self._leaf_risk, self._leaf_count, self._collapse)

    def remove_children(self, node_id: int) -> int:
        """Delete every descendant of a node, turning it into a leaf.

        Args:
            node_id (int): The node whose subtree is removed.

        Returns:
            int: Number of nodes removed.
        """
        if self.is_leaf(node_id):
            return 0
        removed = 0
        stack = [int(self._left[node_id]), int(self._right[node_id])]
        while stack:
            child_id = stack.pop()
            if not self.is_leaf(child_id):
                stack.extend((int(self._left[child_id]), int(self._right[child_id])))
            self._release(child_id)
            removed += 1
        self._left[node_id] = self._right[node_id] = NO_NODE
        self._variable[node_id] = _NO_VARIABLE
        self._split_point[node_id] = None
        self.update_collapse(node_id)
        return removed

    # ------------------------------------------------------------------
    # Cost-complexity pruning
    # ------------------------------------------------------------------

    def finalize_collapse(self) -> None:
        """Replace every branch's collapse value with its weakest-link pruning threshold.

        Repeatedly takes the branch with the smallest collapse value (lowest id
        on ties), records that value, treats the branch as a leaf, and
        recomputes its ancestors, until the root is taken. Branches still
        below a branch when it is taken are pruned with it and record the same
        value. Ties are handled one branch per iteration. Recorded values are
        clamped at 0. Leaf risks and leaf counts are left as grown.
        """
        ids = self.node_ids()
        leaf_risk = self._leaf_risk.copy()
        leaf_count = self._leaf_count.copy()
        collapse = self._collapse.copy()
        settled = np.zeros(self._capacity + 1, dtype=bool)
        order: list[tuple[int, float]] = []

        candidates = [node_id for node_id in ids if not self.is_leaf(node_id)]
        while candidates:
            weakest = min(candidates, key=lambda node_id: (collapse[node_id], node_id))
            value = max(float(collapse[weakest]), 0.0)
            for node_id in self._unsettled_branches(weakest, settled):
                settled[node_id] = True
                order.append((node_id, value))
            if weakest == ROOT_ID:
                break

            leaf_risk[weakest] = self._risk[weakest]
            leaf_count[weakest] = 1
            collapse[weakest] = math.inf
            ancestor = int(self._parent[weakest])
            while ancestor != NO_NODE:
                _update_collapse(self, ancestor, leaf_risk, leaf_count, collapse)
                ancestor = int(self._parent[ancestor])
            candidates = [node_id for node_id in candidates if not settled[node_id]]

        for node_id, value in order:
            self._collapse[node_id] = value
        self._collapse_order = order
        logger.debug("Collapse values finalized", branch_count=len(order), node_count=len(ids))

    def collapse_sequence(self) -> list[tuple[int, float]]:
        """Return `(node_id, collapse)` pairs in the order `finalize_collapse` took them.

        Returns:
            list[tuple[int, float]]: Empty until `finalize_collapse` has run.
        """
        return list(self._collapse_order)

    def get_tuning(self) -> np.ndarray:
        """Return the finite collapse values of all live branches, in pre-order.

        Returns:
            np.ndarray: 1-D float array of candidate pruning cutoffs.
        """
        values = [float(self._collapse[node_id]) for node_id in self.node_ids()]
        return np.asarray([value for value in values if math.isfinite(value)], dtype=np.float64)

    def prune(self, cutoff: float) -> int:
        """Remove, top-down, every subtree whose root has `collapse <= cutoff`.

        Leaf risks and leaf counts of the surviving nodes are recomputed
        afterwards; branch collapse values are kept.

        Args:
            cutoff (float): The pruning cutoff.

        Returns:
            int: Number of nodes removed.
        """
        removed = 0
        stack = [ROOT_ID]
        while stack:
            node_id = stack.pop()
            if self.is_leaf(node_id):
                continue
            if self._collapse[node_id] <= cutoff:
                removed += self.remove_children(node_id)
            else:
                stack.extend((int(self._right[node_id]), int(self._left[node_id])))

        for node_id in reversed(self.node_ids()):
            if self.is_leaf(node_id):
                self.update_collapse(node_id)
            else:
                children = [int(self._left[node_id]), int(self._right[node_id])]
                self._leaf_risk[node_id] = self._leaf_risk[children].sum()
                self._leaf_count[node_id] = self._leaf_count[children].sum()

        logger.debug("Tree pruned", cutoff=cutoff, removed=removed, n_leaves=self.n_leaves)
        return removed

    # ------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------

    def apply(self, table: TypedTable, cutoff: float = 0.0) -> np.ndarray:
        """Find the node each row stops at.

        A row moves down while its current node is a branch with
        `collapse > cutoff`. A cutoff of `-inf` always reaches a true leaf.

        Args:
            table (TypedTable): Rows to route; must contain every covariate the
                tree splits on.
            cutoff (float): The pruning cutoff applied at prediction time.

        Returns:
            np.ndarray: 1-D `intp` array of node ids, one per row.

        Raises:
            MalformedTableError: If a split covariate is missing or has the wrong kind.
        """
        ids = np.full(table.n_rows, ROOT_ID, dtype=np.intp)
        cache: dict[int, np.ndarray] = {}
        while True:
            active = (self._left[ids] != NO_NODE) & (self._collapse[ids] > cutoff)
            if not active.any():
                return ids
            for node_id in np.unique(ids[active]):
                rows = np.flatnonzero(ids == node_id)
                values = self._covariate_values(table, int(self._variable[node_id]), cache)[rows]
                to_left = goes_left(values, self._split_point[node_id])
                ids[rows] = np.where(to_left, self._left[node_id], self._right[node_id])

    def predict(self, table: TypedTable, cutoff: float = 0.0) -> np.ndarray:
        """Predict the response of every row.

        Args:
            table (TypedTable): Rows to predict.
            cutoff (float): The pruning cutoff; 0 respects committed pruning,
                `-inf` uses the full tree.

        Returns:
            np.ndarray: Class labels (object array) or fitted values (float array).
        """
        ids = self.apply(table, cutoff)
        dtype = object if self.task_type == "classification" else np.float64
        return np.asarray([self._decision[node_id] for node_id in ids], dtype=dtype)

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def rules(self) -> list[ClassificationRule] | list[RegressionRule]:
        """Describe every leaf as the chain of conditions leading to it.

        Returns:
            list[ClassificationRule] | list[RegressionRule]: One rule per leaf,
                left to right.
        """
        rules: list = []
        stack: list[tuple[int, list[Predicate]]] = [(ROOT_ID, [])]
        while stack:
            node_id, path = stack.pop()
            if self.is_leaf(node_id):
                rules.append(self._leaf_rule(node_id, path))
                continue
            name = self.covariate_names[self._variable[node_id]]
            split_point = self._split_point[node_id]
            right_path = [*path, Predicate.for_branch(name, split_point, left=False)]
            left_path = [*path, Predicate.for_branch(name, split_point, left=True)]
            stack.append((int(self._right[node_id]), right_path))
            stack.append((int(self._left[node_id]), left_path))
        return rules

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _leaf_rule(self, node_id: int, path: list[Predicate]) -> ClassificationRule | RegressionRule:
        counts = self._counts[node_id]
        n_obs = int(self._n_obs[node_id])
        if self.task_type == "classification":
            confidence = float(counts.max() / n_obs) if n_obs > 0 else 0.0
            return ClassificationRule(
                node_id=node_id,
                predicates=path,
                prediction=str(self._decision[node_id]),
                samples=n_obs,
                confidence=round(confidence, 4),
            )
        return RegressionRule(
            node_id=node_id,
            predicates=path,
            prediction=float(self._decision[node_id]),
            samples=n_obs,
            std=float(counts[2]),
        )

    def _unsettled_branches(self, node_id: int, settled: np.ndarray) -> list[int]:
        """Collect `node_id` and the branches below it not yet taken by `finalize_collapse`."""
        found: list[int] = []
        stack = [node_id]
        while stack:
            current = stack.pop()
            if self.is_leaf(current) or settled[current]:
                continue
            found.append(current)
            stack.extend((int(self._right[current]), int(self._left[current])))
        return found

    def _covariate_values(self, table: TypedTable, variable: int, cache: dict[int, np.ndarray]) -> np.ndarray:
        """Fetch (and cache) the values of a split covariate from a prediction table.

        Raises:
            MalformedTableError: If the covariate is missing, or its kind does not
                match the splits stored for it.
        """
        if variable not in cache:
            name = self.covariate_names[variable]
            column = table.column(name)
            split_kinds = {
                self._split_point[node_id].kind
                for node_id in self.node_ids()
                if self._variable[node_id] == variable
            }
            if split_kinds - {column.kind}:
                raise MalformedTableError(
                    f"Column '{name}' is {column.kind}, but the tree splits on it as {sorted(split_kinds)[0]}.",
                    column=name,
                )
            cache[variable] = column.values
        return cache[variable]

    def _allocate(self) -> int:
        """Hand out a free id, growing the arrays when none is left."""
        if self._free_ids:
            node_id = heapq.heappop(self._free_ids)
        else:
            node_id = self._next_id
            self._next_id += 1
            if node_id > self._capacity:
                self._resize(2 * self._capacity + 1)
        self._reset(node_id)
        self._live[node_id] = True
        return node_id

    def _release(self, node_id: int) -> None:
        self._reset(node_id)
        self._live[node_id] = False
        heapq.heappush(self._free_ids, node_id)

    def _reset(self, node_id: int) -> None:
        self._left[node_id] = self._right[node_id] = self._parent[node_id] = NO_NODE
        self._variable[node_id] = _NO_VARIABLE
        self._n_obs[node_id] = 0
        self._risk[node_id] = self._leaf_risk[node_id] = 0.0
        self._leaf_count[node_id] = 1
        self._collapse[node_id] = math.inf
        self._split_point[node_id] = None
        self._decision[node_id] = None
        self._counts[node_id] = None

    def _resize(self, capacity: int) -> None:
        """Grow every per-node array to hold ids `1..capacity`."""
        size = capacity + 1
        old_size = self._capacity + 1 if self._capacity else 0

        def grown(old: np.ndarray | None, fill: float | int | bool, dtype: type) -> np.ndarray:
            array = np.full(size, fill, dtype=dtype)
            if old is not None:
                array[:old_size] = old[:old_size]
            return array

        first = self._capacity == 0
        self._left = grown(None if first else self._left, NO_NODE, np.intp)
        self._right = grown(None if first else self._right, NO_NODE, np.intp)
        self._parent = grown(None if first else self._parent, NO_NODE, np.intp)
        self._variable = grown(None if first else self._variable, _NO_VARIABLE, np.intp)
        self._n_obs = grown(None if first else self._n_obs, 0, np.intp)
        self._risk = grown(None if first else self._risk, 0.0, np.float64)
        self._leaf_risk = grown(None if first else self._leaf_risk, 0.0, np.float64)
        self._leaf_count = grown(None if first else self._leaf_count, 1, np.intp)
        self._collapse = grown(None if first else self._collapse, math.inf, np.float64)
        self._live = grown(None if first else self._live, False, bool)  # noqa: FBT003

        padding = [None] * (size - old_size)
        if first:
            self._split_point: list[NumericThreshold | CategoricalSubset | None] = list(padding)
            self._decision: list[str | float | None] = list(padding)
            self._counts: list[np.ndarray | None] = list(padding)
        else:
            self._split_point.extend(padding)
            self._decision.extend(padding)
            self._counts.extend(padding)
        self._capacity = capacity


def _update_collapse(
    tree: Tree,
    node_id: int,
    leaf_risk: np.ndarray,
    leaf_count: np.ndarray,
    collapse: np.ndarray,
) -> None:
    """Recompute one node's leaf totals and collapse value into the given arrays.

    `finalize_collapse` passes working copies so that virtual collapses never
    touch the stored values.
    """
    if tree.is_leaf(node_id):
        leaf_risk[node_id] = tree._risk[node_id]  # noqa: SLF001
        leaf_count[node_id] = 1
        collapse[node_id] = math.inf
        return
    children = [int(tree._left[node_id]), int(tree._right[node_id])]  # noqa: SLF001
    leaf_risk[node_id] = leaf_risk[children].sum()
    leaf_count[node_id] = leaf_count[children].sum()
    collapse[node_id] = (tree._risk[node_id] - leaf_risk[node_id]) / (leaf_count[node_id] - 1)  # noqa: SLF001


def _optional_id(value: np.integer) -> int | None:
    return None if value == NO_NODE else int(value)
