"""Custom exceptions for cartkit.

Every exception raised to callers subclasses `ValueError`, so a single
`except ValueError` handles any rejected input:

- InvalidConfigurationError: Raised before training when growth, pruning, or
  forest parameters are out of range or inconsistent.
- MalformedTableError: Raised when a typed table cannot be built or used, e.g.
  ragged columns, values outside their declared levels, or null values.
- ColumnsNotFoundError: Raised when requested columns do not exist in a DataFrame.
- DuplicateColumnsError: Raised when duplicate column names are provided.

Split search, induction, and pruning never raise for data-dependent outcomes; a
node without a valid split simply stays a leaf.
"""

from __future__ import annotations

from typing import Any


class InvalidConfigurationError(ValueError):
    """Raised when training parameters are rejected before any work starts.

    Attributes:
        errors (list[dict[str, Any]]): Structured validation failures, one entry
            per offending field, in the shape produced by pydantic's
            `ValidationError.errors()`. Empty when the failure was detected
            outside model validation.

    Examples:
        >>> err = InvalidConfigurationError("min_bucket must be smaller than min_split")
        >>> err.errors
        []
    """

    errors: list[dict[str, Any]]

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None) -> None:
        """Initialize InvalidConfigurationError.

        Args:
            message (str): Description of the configuration problem.
            errors (list[dict[str, Any]] | None): Structured per-field failures.
        """
        super().__init__(message)
        self.errors = errors if errors is not None else []


class MalformedTableError(ValueError):
    """Raised when a typed table is inconsistent or unusable for training or prediction.

    Attributes:
        column (str | None): Name of the offending column, when one can be singled out.
    """

    column: str | None

    def __init__(self, message: str, column: str | None = None) -> None:
        """Initialize MalformedTableError.

        Args:
            message (str): Description of the problem.
            column (str | None): The column that triggered the error, if any.
        """
        super().__init__(message)
        self.column = column

    def __repr__(self) -> str:
        """Return detailed representation for debugging.

        Returns:
            str: Representation including the message and column.
        """
        return f"{type(self).__name__}({self.args[0]!r}, column={self.column!r})"


class ColumnsNotFoundError(ValueError):
    """Raised when requested columns do not exist in a DataFrame.

    Attributes:
        missing_columns (list[str]): Column names that were not found.
        available_columns (list[str]): Column names present in the DataFrame.

    Examples:
        >>> err = ColumnsNotFoundError(
        ...     missing_columns=["petal_width"],
        ...     available_columns=["species", "sepal_length"],
        ... )
        >>> err.missing_columns
        ['petal_width']
    """

    missing_columns: list[str]
    available_columns: list[str]

    def __init__(
        self,
        missing_columns: list[str],
        available_columns: list[str],
    ) -> None:
        """Initialize ColumnsNotFoundError.

        Args:
            missing_columns (list[str]): Column names not found in the DataFrame.
            available_columns (list[str]): Column names present in the DataFrame.
        """
        super().__init__(f"Columns not found in DataFrame: {sorted(missing_columns)}")
        self.missing_columns = missing_columns
        self.available_columns = available_columns


class DuplicateColumnsError(ValueError):
    """Raised when duplicate column names are provided.

    Attributes:
        columns (list[str]): The column list that contains duplicates.
        duplicate_columns (list[str]): The specific column names that are
            duplicated (each listed once).

    Examples:
        >>> err = DuplicateColumnsError(columns=["spray", "count", "spray"])
        >>> err.duplicate_columns
        ['spray']
    """

    columns: list[str]
    duplicate_columns: list[str]

    def __init__(self, columns: list[str]) -> None:
        """Initialize DuplicateColumnsError.

        Args:
            columns (list[str]): The column list containing duplicates.
        """
        super().__init__("Duplicate column names are not allowed")
        self.columns = columns
        seen: set[str] = set()
        self.duplicate_columns = []
        for col in columns:
            if col in seen and col not in self.duplicate_columns:
                self.duplicate_columns.append(col)
            seen.add(col)
