"""Risk functions: impurity and spread measures for candidate partitions of a response.

Every risk function shares one signature, `risk(y, n, prior, avg)`:

- `y` is either a single subset of response observations or a sequence of
  subsets (normally `(left, right)` for a candidate split). Classification
  subsets hold integer class indices; regression subsets hold floats.
- `n` holds the overall per-class observation counts and `prior` the per-class
  prior probabilities. Regression risks ignore both.
- `avg` selects between the per-side risk vector (`False`) and the
  probability-mass weighted average across sides (`True`).

For classification the joint probability of class `j` on side `s` is
`prior[j] * count[s, j] / n[j]`; each side's impurity is weighted by that
side's probability mass, so per-side risks add up across the leaves of a tree.
Any callable with this signature can replace the built-in functions.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Final, Protocol

import numpy as np

from cartkit.exceptions import InvalidConfigurationError
from cartkit.table import CategoricalColumn, TypedTable

type Subsets = np.ndarray | Sequence[np.ndarray]


class RiskFunction(Protocol):
    """Callable computing the risk of one or more response subsets."""

    def __call__(
        self,
        y: Subsets,
        n: np.ndarray | None,
        prior: np.ndarray | None,
        avg: bool,  # noqa: FBT001 - positional flag is part of the risk signature
    ) -> float | np.ndarray: ...


# ---------------------------------------------------------------------------
# Public interface -- Classification risks
# ---------------------------------------------------------------------------


def risk_error(
    y: Subsets,
    n: np.ndarray | None,
    prior: np.ndarray | None,
    avg: bool,  # noqa: FBT001
) -> float | np.ndarray:
    """Misclassification risk: `1 - max(conditional)` on each side.

    Args:
        y (Subsets): One class-index array or a sequence of them.
        n (np.ndarray | None): Overall per-class counts.
        prior (np.ndarray | None): Per-class prior probabilities.
        avg (bool): Return the mass-weighted average instead of per-side risks.

    Returns:
        float | np.ndarray: Per-side risks, or their weighted average.

    Examples:
        >>> n = np.array([2, 2])
        >>> risk_error(np.array([0, 0]), n, n / n.sum(), True)
        0.0
    """
    joint, conditional = _node_probabilities(y, n, prior)
    impurity = 1.0 - conditional.max(axis=1)
    return _side_risks(impurity, joint, avg=avg)


def risk_gini(
    y: Subsets,
    n: np.ndarray | None,
    prior: np.ndarray | None,
    avg: bool,  # noqa: FBT001
) -> float | np.ndarray:
    """Gini impurity risk: `sum(p * (1 - p))` over the conditional class probabilities of each side.

    Args:
        y (Subsets): One class-index array or a sequence of them.
        n (np.ndarray | None): Overall per-class counts.
        prior (np.ndarray | None): Per-class prior probabilities.
        avg (bool): Return the mass-weighted average instead of per-side risks.

    Returns:
        float | np.ndarray: Per-side risks, or their weighted average.
    """
    joint, conditional = _node_probabilities(y, n, prior)
    impurity = (conditional * (1.0 - conditional)).sum(axis=1)
    return _side_risks(impurity, joint, avg=avg)


def risk_entropy(
    y: Subsets,
    n: np.ndarray | None,
    prior: np.ndarray | None,
    avg: bool,  # noqa: FBT001
) -> float | np.ndarray:
    """Information entropy risk, with `0 * log(0)` taken as 0.

    Args:
        y (Subsets): One class-index array or a sequence of them.
        n (np.ndarray | None): Overall per-class counts.
        prior (np.ndarray | None): Per-class prior probabilities.
        avg (bool): Return the mass-weighted average instead of per-side risks.

    Returns:
        float | np.ndarray: Per-side risks, or their weighted average.
    """
    joint, conditional = _node_probabilities(y, n, prior)
    log_conditional = np.log(conditional, out=np.zeros_like(conditional), where=conditional > 0)
    impurity = (-conditional * log_conditional).sum(axis=1)
    return _side_risks(impurity, joint, avg=avg)


def risk_twoing(
    y: Subsets,
    n: np.ndarray | None,
    prior: np.ndarray | None,
    avg: bool,  # noqa: FBT001, ARG001
) -> float:
    """Twoing risk of a two-sided split; always a single scalar.

    The value is `-(mass_left / mass) * (mass_right / mass) * sum(|joint_left - joint_right|)^2 / 4`,
    so better separated splits score lower. A single subset is treated as a
    split with an empty right side. `avg` is ignored.

    Args:
        y (Subsets): A `(left, right)` pair of class-index arrays, or one array.
        n (np.ndarray | None): Overall per-class counts.
        prior (np.ndarray | None): Per-class prior probabilities.
        avg (bool): Ignored.

    Returns:
        float: The twoing risk.
    """
    subsets = _as_subsets(y)
    if len(subsets) == 1:
        subsets = (subsets[0], subsets[0][:0])
    joint, _ = _node_probabilities(subsets[:2], n, prior)
    mass = joint.sum(axis=1)
    total = mass.sum()
    if total <= 0:
        return 0.0
    separation = np.abs(joint[0] - joint[1]).sum() ** 2
    return float(-(mass[0] / total) * (mass[1] / total) * separation / 4.0)


# ---------------------------------------------------------------------------
# Public interface -- Regression risks
# ---------------------------------------------------------------------------


def risk_sse(
    y: Subsets,
    n: np.ndarray | None,
    prior: np.ndarray | None,
    avg: bool,  # noqa: FBT001, ARG001
) -> float:
    """Sum of squared deviations from each subset's mean, summed over subsets.

    Args:
        y (Subsets): One response array or a sequence of them.
        n (np.ndarray | None): Ignored.
        prior (np.ndarray | None): Ignored.
        avg (bool): Ignored.

    Returns:
        float: Total squared error; empty subsets contribute 0.
    """
    return float(sum(((s - s.mean()) ** 2).sum() for s in _as_subsets(y) if len(s) > 0))


def risk_sae(
    y: Subsets,
    n: np.ndarray | None,
    prior: np.ndarray | None,
    avg: bool,  # noqa: FBT001, ARG001
) -> float:
    """Sum of absolute deviations from each subset's mean, summed over subsets.

    Args:
        y (Subsets): One response array or a sequence of them.
        n (np.ndarray | None): Ignored.
        prior (np.ndarray | None): Ignored.
        avg (bool): Ignored.

    Returns:
        float: Total absolute error; empty subsets contribute 0.
    """
    return float(sum(np.abs(s - s.mean()).sum() for s in _as_subsets(y) if len(s) > 0))


CLASSIFICATION_RISKS: Final[Mapping[str, RiskFunction]] = {
    "error": risk_error,
    "gini": risk_gini,
    "entropy": risk_entropy,
    "twoing": risk_twoing,
}

REGRESSION_RISKS: Final[Mapping[str, RiskFunction]] = {
    "sse": risk_sse,
    "sae": risk_sae,
}

RISK_FUNCTIONS: Final[Mapping[str, RiskFunction]] = {**CLASSIFICATION_RISKS, **REGRESSION_RISKS}


# ---------------------------------------------------------------------------
# Public interface -- Bound risk configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RiskConfig:
    """Risk functions bound to the overall class counts and priors of a training table.

    Attributes:
        build_risk (Callable[[Sequence[np.ndarray]], float | np.ndarray]): Scores
            a candidate `(left, right)` split with per-side (`avg=False`) risks;
            split search sums the result.
        prune_risk (Callable[[np.ndarray], float]): Scores one node's own response
            subset; stored as the node risk used by cost-complexity pruning.
        n (np.ndarray | None): Overall per-class counts, `None` for regression.
        prior (np.ndarray | None): Per-class priors, `None` for regression.
    """

    build_risk: Callable[[Sequence[np.ndarray]], float | np.ndarray]
    prune_risk: Callable[[np.ndarray], float]
    n: np.ndarray | None = None
    prior: np.ndarray | None = None

    @classmethod
    def for_table(
        cls,
        table: TypedTable,
        *,
        build_risk: str | RiskFunction | None = None,
        prune_risk: str | RiskFunction | None = None,
        prior: Sequence[float] | np.ndarray | None = None,
    ) -> RiskConfig:
        """Bind risk functions to a training table.

        Defaults follow CART: Gini impurity to grow and misclassification error
        to prune for classification; SSE for both in regression.

        Args:
            table (TypedTable): The full training table.
            build_risk (str | RiskFunction | None): Risk used by split search.
            prune_risk (str | RiskFunction | None): Risk stored on nodes for pruning.
            prior (Sequence[float] | np.ndarray | None): Per-class priors in level
                order; defaults to the empirical class frequencies.

        Returns:
            RiskConfig: The bound configuration.

        Raises:
            InvalidConfigurationError: If a risk name is unknown or does not fit
                the response type, or the prior is malformed.
        """
        is_classification = table.task_type == "classification"
        build = _resolve_risk(build_risk, "gini" if is_classification else "sse", classification=is_classification)
        prune = _resolve_risk(prune_risk, "error" if is_classification else "sse", classification=is_classification)

        n, prior_array = _class_weights(table, prior)

        def bound_build(subsets: Sequence[np.ndarray]) -> float | np.ndarray:
            return build(subsets, n, prior_array, False)

        def bound_prune(y: np.ndarray) -> float:
            return float(np.atleast_1d(prune((y, y[:0]), n, prior_array, False))[0])

        return cls(build_risk=bound_build, prune_risk=bound_prune, n=n, prior=prior_array)

    @classmethod
    def for_forest(
        cls,
        table: TypedTable,
        *,
        risk: str | RiskFunction | None = None,
        prior: Sequence[float] | np.ndarray | None = None,
    ) -> RiskConfig:
        """Bind a build risk for forest trees, which are never pruned.

        The prune risk is the constant 0 so that every node still carries a risk.

        Args:
            table (TypedTable): The full training table.
            risk (str | RiskFunction | None): Risk used by split search.
            prior (Sequence[float] | np.ndarray | None): Per-class priors.

        Returns:
            RiskConfig: The bound configuration.
        """
        config = cls.for_table(table, build_risk=risk, prior=prior)
        return cls(build_risk=config.build_risk, prune_risk=_zero_risk, n=config.n, prior=config.prior)


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _zero_risk(y: np.ndarray) -> float:  # noqa: ARG001
    return 0.0


def _as_subsets(y: Subsets) -> tuple[np.ndarray, ...]:
    """Normalize `y` to a tuple of 1-D arrays.

    Args:
        y (Subsets): One array or a sequence of arrays.

    Returns:
        tuple[np.ndarray, ...]: The subsets.
    """
    if isinstance(y, np.ndarray):
        return (y,)
    return tuple(np.asarray(subset) for subset in y)


def _node_probabilities(
    y: Subsets,
    n: np.ndarray | None,
    prior: np.ndarray | None,
) -> tuple[np.ndarray, np.ndarray]:
    """Compute joint and per-side conditional class probabilities.

    Classes absent from the training data (`n == 0`) and empty sides get
    probability 0 rather than NaN.

    Args:
        y (Subsets): Class-index subsets.
        n (np.ndarray | None): Overall per-class counts.
        prior (np.ndarray | None): Per-class priors; defaults to `n / n.sum()`.

    Returns:
        tuple[np.ndarray, np.ndarray]: `(joint, conditional)`, both shaped
            `(n_sides, n_classes)`.
    """
    subsets = _as_subsets(y)
    if n is None:
        raise InvalidConfigurationError("Classification risks need overall class counts.")
    n = np.asarray(n, dtype=np.float64)
    prior = n / n.sum() if prior is None else np.asarray(prior, dtype=np.float64)

    counts = np.stack([np.bincount(subset.astype(np.intp), minlength=len(n)) for subset in subsets])
    scale = np.divide(prior, n, out=np.zeros_like(n), where=n > 0)
    joint = counts * scale
    mass = joint.sum(axis=1, keepdims=True)
    conditional = np.divide(joint, mass, out=np.zeros_like(joint), where=mass > 0)
    return joint, conditional


def _side_risks(impurity: np.ndarray, joint: np.ndarray, *, avg: bool) -> float | np.ndarray:
    """Weight each side's impurity by its probability mass.

    Args:
        impurity (np.ndarray): Per-side impurity.
        joint (np.ndarray): Joint probabilities shaped `(n_sides, n_classes)`.
        avg (bool): Collapse to the mass-weighted average.

    Returns:
        float | np.ndarray: Per-side risks, or their weighted average.
    """
    mass = joint.sum(axis=1)
    risk = impurity * mass
    if not avg:
        return risk
    total = mass.sum()
    return float(risk.sum() / total) if total > 0 else 0.0


def _resolve_risk(risk: str | RiskFunction | None, default: str, *, classification: bool) -> RiskFunction:
    """Turn a risk name, callable, or `None` into a risk function.

    Args:
        risk (str | RiskFunction | None): Requested risk.
        default (str): Name used when `risk` is `None`.
        classification (bool): Whether the response is categorical.

    Returns:
        RiskFunction: The resolved function.

    Raises:
        InvalidConfigurationError: If the name is unknown or belongs to the other task type.
    """
    if risk is None:
        risk = default
    if not isinstance(risk, str):
        return risk
    if risk not in RISK_FUNCTIONS:
        raise InvalidConfigurationError(f"Unknown risk function '{risk}'. Choose from {sorted(RISK_FUNCTIONS)}.")
    allowed = CLASSIFICATION_RISKS if classification else REGRESSION_RISKS
    if risk not in allowed:
        task = "classification" if classification else "regression"
        raise InvalidConfigurationError(
            f"Risk function '{risk}' cannot be used for {task}; choose from {sorted(allowed)}."
        )
    return allowed[risk]


def _class_weights(
    table: TypedTable,
    prior: Sequence[float] | np.ndarray | None,
) -> tuple[np.ndarray | None, np.ndarray | None]:
    """Compute overall class counts and validated priors for a classification response.

    Args:
        table (TypedTable): The training table.
        prior (Sequence[float] | np.ndarray | None): Requested priors.

    Returns:
        tuple[np.ndarray | None, np.ndarray | None]: `(n, prior)`, or
            `(None, None)` for a numeric response.

    Raises:
        InvalidConfigurationError: If the prior has the wrong length, negative
            entries, or sums to zero.
    """
    response = table.response
    if not isinstance(response, CategoricalColumn):
        return None, None

    n = np.bincount(response.codes(), minlength=len(response.levels)).astype(np.float64)
    if prior is None:
        return n, n / n.sum()

    prior_array = np.asarray(prior, dtype=np.float64)
    if prior_array.shape != (len(response.levels),):
        raise InvalidConfigurationError(
            f"prior must have one entry per response level ({len(response.levels)}), got shape {prior_array.shape}."
        )
    if (prior_array < 0).any() or not math.isfinite(prior_array.sum()) or prior_array.sum() <= 0:
        raise InvalidConfigurationError("prior entries must be non-negative with a positive, finite total.")
    return n, prior_array / prior_array.sum()
