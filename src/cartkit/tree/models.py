"""Pydantic models for tree splits, growth parameters, and extracted rules."""

from __future__ import annotations

import math
from typing import Annotated, Any, Literal, Self

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from cartkit.exceptions import InvalidConfigurationError

# ---------------------------------------------------------------------------
# Public type aliases
# ---------------------------------------------------------------------------

type PredicateOp = Literal["<=", ">", "in", "not in"]

# ---------------------------------------------------------------------------
# Public models -- Split points
# ---------------------------------------------------------------------------


class NumericThreshold(BaseModel):
    """Split point for a numeric covariate: rows with `x <= threshold` go left.

    Attributes:
        kind (Literal["numeric"]): Discriminator; always `"numeric"`.
        threshold (float): Midpoint between two adjacent observed values.

    Examples:
        >>> NumericThreshold(threshold=2.5).goes_left(np.array([1.0, 3.0]))
        array([ True, False])
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["numeric"] = "numeric"
    threshold: float

    def goes_left(self, values: np.ndarray) -> np.ndarray:
        """Shortcut for `goes_left(values, self)`."""
        return goes_left(values, self)


class CategoricalSubset(BaseModel):
    """Split point for a categorical covariate: rows whose level is in `levels` go left.

    Attributes:
        kind (Literal["categorical"]): Discriminator; always `"categorical"`.
        levels (frozenset[str]): Levels sent to the left branch.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["categorical"] = "categorical"
    levels: frozenset[str]

    def goes_left(self, values: np.ndarray) -> np.ndarray:
        """Shortcut for `goes_left(values, self)`."""
        return goes_left(values, self)


type SplitPoint = Annotated[NumericThreshold | CategoricalSubset, Field(discriminator="kind")]


def goes_left(values: np.ndarray, split_point: NumericThreshold | CategoricalSubset) -> np.ndarray:
    """Apply the left-branch test element-wise over a column.

    This is the only place the branch direction is decided; split search,
    induction, and prediction all route rows through it.

    Args:
        values (np.ndarray): Column values (floats or level labels).
        split_point (NumericThreshold | CategoricalSubset): The split to apply.

    Returns:
        np.ndarray: Boolean mask, `True` where the row goes left.

    Raises:
        ValueError: If `split_point` has an unknown kind.
    """
    match split_point.kind:
        case "numeric":
            return np.asarray(values, dtype=np.float64) <= split_point.threshold
        case "categorical":
            return np.isin(np.asarray(values, dtype=object), list(split_point.levels))
        case _:
            raise ValueError(f"Unexpected split kind: {split_point.kind!r}")


# ---------------------------------------------------------------------------
# Public models -- Growth and tuning parameters
# ---------------------------------------------------------------------------


class TreeParameters(BaseModel):
    """Validated stopping rules and tuning settings for tree growth.

    Attributes:
        min_split (int): Minimum rows a node needs before a split is attempted.
        min_bucket (int): Minimum rows each child of a kept split must hold.
            Defaults to `round(min_split / 3)`.
        num_covariates (float): Covariates sampled per split; `inf` searches all.
        folds (int): Cross-validation folds for choosing the pruning cutoff; 0
            skips cross-validation.

    Examples:
        >>> TreeParameters(min_split=30).min_bucket
        10
    """

    model_config = ConfigDict(frozen=True)

    min_split: int = Field(default=20, ge=1, description="Minimum rows needed to attempt a split.")
    min_bucket: int = Field(default=None, ge=0, description="Minimum rows in each child.")  # type: ignore[assignment]
    num_covariates: float = Field(default=math.inf, gt=0, description="Covariates sampled per split.")
    folds: int = Field(default=10, ge=0, description="Cross-validation folds; 0 disables cross-validation.")

    @model_validator(mode="before")
    @classmethod
    def _default_min_bucket(cls, data: Any) -> Any:
        """Fill `min_bucket` from `min_split` when it is missing or `None`.

        Args:
            data (Any): Raw constructor input.

        Returns:
            Any: The input with `min_bucket` filled in.
        """
        if isinstance(data, dict) and data.get("min_bucket") is None:
            try:
                min_split = int(data.get("min_split", 20))
            except (TypeError, ValueError):
                # min_split itself fails validation and reports the problem.
                return {**data, "min_bucket": 0}
            data = {**data, "min_bucket": round(min_split / 3)}
        return data

    @field_validator("num_covariates", mode="after")
    @classmethod
    def _validate_num_covariates(cls, value: float) -> float:
        """Require a whole number of covariates, or infinity.

        Args:
            value (float): The requested sample size.

        Returns:
            float: The validated value.

        Raises:
            ValueError: If `value` is finite and not a whole number.
        """
        if math.isfinite(value) and not float(value).is_integer():
            raise ValueError(f"num_covariates must be a whole number or infinity, got {value}")
        return value

    @field_validator("folds", mode="after")
    @classmethod
    def _validate_folds(cls, value: int) -> int:
        """Reject a single fold, which would hold out nothing to validate on.

        Args:
            value (int): Requested fold count.

        Returns:
            int: The validated value.

        Raises:
            ValueError: If `value` is 1.
        """
        if value == 1:
            raise ValueError("folds must be 0 (no cross-validation) or at least 2")
        return value

    @model_validator(mode="after")
    def _validate_bucket_below_split(self) -> Self:
        """Require `min_bucket < min_split`.

        Returns:
            Self: The validated model instance.

        Raises:
            ValueError: If `min_bucket >= min_split`.
        """
        if self.min_bucket >= self.min_split:
            raise ValueError(f"min_bucket ({self.min_bucket}) must be smaller than min_split ({self.min_split})")
        return self

    @classmethod
    def build(cls, **kwargs: Any) -> TreeParameters:
        """Construct parameters, reporting failures as `InvalidConfigurationError`.

        Args:
            **kwargs (Any): Field values; `None` values fall back to defaults.

        Returns:
            TreeParameters: The validated parameters.

        Raises:
            InvalidConfigurationError: If any value is out of range or inconsistent.
        """
        supplied = {key: value for key, value in kwargs.items() if value is not None}
        try:
            return cls(**supplied)
        except ValidationError as exc:
            details = "; ".join(str(error["msg"]) for error in exc.errors())
            raise InvalidConfigurationError(
                f"Invalid tree parameters: {details}", errors=[dict(error) for error in exc.errors()]
            ) from exc


# ---------------------------------------------------------------------------
# Public models -- Rules
# ---------------------------------------------------------------------------


class Predicate(BaseModel):
    """One condition on the path from the root to a leaf.

    Attributes:
        variable (str): Covariate name, e.g. `"count"` or `"spray"`.
        operator (PredicateOp): `"<="`/`">"` for numeric thresholds,
            `"in"`/`"not in"` for categorical subsets.
        value (float | frozenset[str]): The threshold or level set.

    Examples:
        >>> str(Predicate(variable="spray", operator="in", value=frozenset({"C", "D"})))
        'spray in {C, D}'
    """

    model_config = ConfigDict(frozen=True)

    variable: str = Field(description="Covariate name the condition applies to.")
    operator: PredicateOp = Field(description="Comparison operator.")
    value: float | frozenset[str] = Field(description="Numeric threshold or set of levels.")

    @model_validator(mode="after")
    def _validate_operator_value_compatibility(self) -> Self:
        """Pair membership operators with level sets and comparisons with numbers.

        Returns:
            Self: The validated model instance.

        Raises:
            ValueError: If the operator does not fit the value type.
        """
        is_membership = self.operator in {"in", "not in"}
        if is_membership != isinstance(self.value, frozenset):
            raise ValueError(f"Operator '{self.operator}' is incompatible with value {self.value!r}")
        return self

    def __str__(self) -> str:
        """Return the predicate as `"<variable> <operator> <value>"`."""
        if isinstance(self.value, frozenset):
            return f"{self.variable} {self.operator} {{{', '.join(sorted(self.value))}}}"
        return f"{self.variable} {self.operator} {self.value}"

    @property
    def split_point(self) -> NumericThreshold | CategoricalSubset:
        """The split this predicate is one branch of."""
        if isinstance(self.value, frozenset):
            return CategoricalSubset(levels=self.value)
        return NumericThreshold(threshold=self.value)

    @property
    def is_left(self) -> bool:
        """Whether this predicate describes the left branch of its split."""
        return self.operator in {"<=", "in"}

    def eval(self, x: float | str) -> bool:
        """Evaluate this predicate against one covariate value.

        The branch test is delegated to `goes_left`, so a rule agrees with the
        tree it was extracted from.

        Args:
            x (float | str): The covariate value.

        Returns:
            bool: `True` if the condition holds.
        """
        left = bool(goes_left(np.array([x], dtype=object), self.split_point)[0])
        return left == self.is_left

    @classmethod
    def for_branch(cls, variable: str, split_point: NumericThreshold | CategoricalSubset, *, left: bool) -> Predicate:
        """Describe one branch of a split.

        Args:
            variable (str): Covariate name.
            split_point (NumericThreshold | CategoricalSubset): The split.
            left (bool): Describe the left branch when `True`, else the right.

        Returns:
            Predicate: The branch condition.
        """
        if isinstance(split_point, NumericThreshold):
            return cls(variable=variable, operator="<=" if left else ">", value=split_point.threshold)
        return cls(variable=variable, operator="in" if left else "not in", value=split_point.levels)


class ClassificationRule(BaseModel):
    """The path to one leaf of a classification tree and the class it predicts.

    Attributes:
        task_type (Literal["classification"]): Discriminator; always `"classification"`.
        node_id (int): Id of the leaf in its tree.
        predicates (list[Predicate]): Conditions from the root to the leaf; empty
            for a single-leaf tree.
        prediction (str): Majority class at the leaf.
        samples (int): Training rows that reached the leaf.
        confidence (float): Share of those rows in the majority class.
    """

    task_type: Literal["classification"] = "classification"
    node_id: int = Field(ge=1)
    predicates: list[Predicate]
    prediction: str
    samples: int = Field(ge=0)
    confidence: float = Field(ge=0.0, le=1.0)


class RegressionRule(BaseModel):
    """The path to one leaf of a regression tree and the value it predicts.

    Attributes:
        task_type (Literal["regression"]): Discriminator; always `"regression"`.
        node_id (int): Id of the leaf in its tree.
        predicates (list[Predicate]): Conditions from the root to the leaf.
        prediction (float): Mean response at the leaf.
        samples (int): Training rows that reached the leaf.
        std (float): Standard deviation of the response at the leaf.
    """

    task_type: Literal["regression"] = "regression"
    node_id: int = Field(ge=1)
    predicates: list[Predicate]
    prediction: float
    samples: int = Field(ge=0)
    std: float = Field(ge=0.0)


type DecisionRule = Annotated[ClassificationRule | RegressionRule, Field(discriminator="task_type")]
