"""cartkit: CART classification and regression trees with cost-complexity pruning and random forests."""

from loguru import logger

from cartkit.exceptions import (
    ColumnsNotFoundError,
    DuplicateColumnsError,
    InvalidConfigurationError,
    MalformedTableError,
)
from cartkit.forest import Forest, train_forest
from cartkit.logging import PACKAGE_NAME, enable_logging
from cartkit.risk import (
    RISK_FUNCTIONS,
    RiskConfig,
    RiskFunction,
    risk_entropy,
    risk_error,
    risk_gini,
    risk_sae,
    risk_sse,
    risk_twoing,
)
from cartkit.table import CategoricalColumn, NumericColumn, TypedTable
from cartkit.tree import (
    CategoricalSubset,
    Node,
    NumericThreshold,
    Tree,
    TreeParameters,
    best_split,
    goes_left,
    grow_subtree,
)
from cartkit.tuning import cross_validate, make_tree, select_cutoff

logger.disable(PACKAGE_NAME)  # noqa: RUF067 - Disable logging for the cartkit module by default

__all__ = [
    "RISK_FUNCTIONS",
    "CategoricalColumn",
    "CategoricalSubset",
    "ColumnsNotFoundError",
    "DuplicateColumnsError",
    "Forest",
    "InvalidConfigurationError",
    "MalformedTableError",
    "Node",
    "NumericColumn",
    "NumericThreshold",
    "RiskConfig",
    "RiskFunction",
    "Tree",
    "TreeParameters",
    "TypedTable",
    "best_split",
    "cross_validate",
    "enable_logging",
    "goes_left",
    "grow_subtree",
    "make_tree",
    "risk_entropy",
    "risk_error",
    "risk_gini",
    "risk_sae",
    "risk_sse",
    "risk_twoing",
    "select_cutoff",
    "train_forest",
]
