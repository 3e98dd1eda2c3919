"""Tree sub-package: split models, the tree store, split search, and induction."""

from __future__ import annotations

from cartkit.tree.induction import grow_subtree
from cartkit.tree.models import (
    CategoricalSubset,
    ClassificationRule,
    DecisionRule,
    NumericThreshold,
    Predicate,
    PredicateOp,
    RegressionRule,
    SplitPoint,
    TreeParameters,
    goes_left,
)
from cartkit.tree.splitting import SplitCandidate, best_split, candidate_split_points
from cartkit.tree.store import NO_NODE, ROOT_ID, Node, Tree

__all__ = [
    "NO_NODE",
    "ROOT_ID",
    "CategoricalSubset",
    "ClassificationRule",
    "DecisionRule",
    "Node",
    "NumericThreshold",
    "Predicate",
    "PredicateOp",
    "RegressionRule",
    "SplitCandidate",
    "SplitPoint",
    "Tree",
    "TreeParameters",
    "best_split",
    "candidate_split_points",
    "goes_left",
    "grow_subtree",
]
