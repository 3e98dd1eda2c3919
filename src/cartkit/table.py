"""Typed tables: the response and covariate columns consumed by tree induction.

A `TypedTable` is an ordered sequence of named columns whose first column is
the response. Each column is either categorical (values drawn from a fixed,
ordered tuple of levels) or numeric. Row subsets keep the level tuples of the
parent table, so class indices stay stable across every node of a tree and
across cross-validation folds.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Literal

import numpy as np
import polars as pl

from cartkit.exceptions import ColumnsNotFoundError, DuplicateColumnsError, MalformedTableError

type ColumnKind = Literal["categorical", "numeric"]

type TaskType = Literal["classification", "regression"]

# ---------------------------------------------------------------------------
# Public columns
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CategoricalColumn:
    """A column of labels drawn from an ordered set of levels.

    Attributes:
        name (str): Column name.
        values (np.ndarray): 1-D object array of string labels.
        levels (tuple[str, ...]): Every admissible label, in level order. The
            order defines class indices for a response column and candidate
            subset order for a covariate.
    """

    name: str
    values: np.ndarray
    levels: tuple[str, ...]
    kind: ColumnKind = field(default="categorical", init=False)

    def __post_init__(self) -> None:
        """Coerce values to an object array and check them against the levels.

        Raises:
            MalformedTableError: If levels repeat, or a value is null or not a level.
        """
        values = np.asarray(self.values, dtype=object)
        if values.ndim != 1:
            raise MalformedTableError(f"Column '{self.name}' must be one-dimensional.", column=self.name)
        if len(set(self.levels)) != len(self.levels):
            raise MalformedTableError(f"Column '{self.name}' has repeated levels.", column=self.name)
        unknown = set(values.tolist()) - set(self.levels)
        if unknown:
            raise MalformedTableError(
                f"Column '{self.name}' contains values outside its levels: {sorted(map(str, unknown))}",
                column=self.name,
            )
        object.__setattr__(self, "values", values)

    def __len__(self) -> int:
        return len(self.values)

    def codes(self) -> np.ndarray:
        """Return each value's position in `levels`.

        Returns:
            np.ndarray: 1-D `intp` array of level indices.
        """
        index = {level: code for code, level in enumerate(self.levels)}
        return np.fromiter((index[value] for value in self.values), dtype=np.intp, count=len(self.values))

    def take(self, rows: np.ndarray) -> CategoricalColumn:
        """Return the selected rows, keeping the full level tuple.

        Args:
            rows (np.ndarray): Integer indices or a boolean mask.

        Returns:
            CategoricalColumn: The row subset.
        """
        return CategoricalColumn(name=self.name, values=self.values[rows], levels=self.levels)


@dataclass(frozen=True)
class NumericColumn:
    """A column of real numbers.

    Attributes:
        name (str): Column name.
        values (np.ndarray): 1-D float64 array.
    """

    name: str
    values: np.ndarray
    kind: ColumnKind = field(default="numeric", init=False)

    def __post_init__(self) -> None:
        """Coerce values to float64 and reject missing entries.

        Raises:
            MalformedTableError: If the values are not one-dimensional or contain NaN.
        """
        values = np.asarray(self.values, dtype=np.float64)
        if values.ndim != 1:
            raise MalformedTableError(f"Column '{self.name}' must be one-dimensional.", column=self.name)
        if np.isnan(values).any():
            raise MalformedTableError(f"Column '{self.name}' contains missing values.", column=self.name)
        object.__setattr__(self, "values", values)

    def __len__(self) -> int:
        return len(self.values)

    def take(self, rows: np.ndarray) -> NumericColumn:
        """Return the selected rows.

        Args:
            rows (np.ndarray): Integer indices or a boolean mask.

        Returns:
            NumericColumn: The row subset.
        """
        return NumericColumn(name=self.name, values=self.values[rows])


type Column = CategoricalColumn | NumericColumn


# ---------------------------------------------------------------------------
# Public table
# ---------------------------------------------------------------------------


class TypedTable:
    """An ordered collection of typed columns sharing one row count.

    The first column is always the response; the remaining columns are the
    covariates, in order.

    Examples:
        >>> table = TypedTable([
        ...     CategoricalColumn("label", np.array(["A", "A", "B", "B"]), ("A", "B")),
        ...     NumericColumn("x", np.array([1.0, 2.0, 3.0, 4.0])),
        ... ])
        >>> table.n_rows, table.task_type
        (4, 'classification')
    """

    def __init__(self, columns: Sequence[Column]) -> None:
        """Initialize the table.

        Args:
            columns (Sequence[Column]): Response column followed by covariate columns.

        Raises:
            MalformedTableError: If there are no columns or the columns differ in length.
            DuplicateColumnsError: If two columns share a name.
        """
        if not columns:
            raise MalformedTableError("A table needs at least a response column.")
        names = [column.name for column in columns]
        if len(set(names)) != len(names):
            raise DuplicateColumnsError(names)
        lengths = {len(column) for column in columns}
        if len(lengths) != 1:
            raise MalformedTableError(f"Columns have unequal lengths: {sorted(lengths)}")
        self._columns: tuple[Column, ...] = tuple(columns)
        self._by_name: dict[str, Column] = {column.name: column for column in self._columns}

    def __len__(self) -> int:
        return self.n_rows

    def __repr__(self) -> str:
        kinds = ", ".join(f"{column.name}: {column.kind}" for column in self._columns)
        return f"TypedTable(n_rows={self.n_rows}, columns=[{kinds}])"

    @property
    def n_rows(self) -> int:
        """int: Number of rows shared by every column."""
        return len(self._columns[0])

    @property
    def columns(self) -> tuple[Column, ...]:
        """tuple[Column, ...]: All columns, response first."""
        return self._columns

    @property
    def names(self) -> tuple[str, ...]:
        """tuple[str, ...]: Column names, response first."""
        return tuple(column.name for column in self._columns)

    @property
    def response(self) -> Column:
        """Column: The response column."""
        return self._columns[0]

    @property
    def covariates(self) -> tuple[Column, ...]:
        """tuple[Column, ...]: The covariate columns, in order."""
        return self._columns[1:]

    @property
    def task_type(self) -> TaskType:
        """TaskType: `"classification"` for a categorical response, else `"regression"`."""
        return "classification" if isinstance(self.response, CategoricalColumn) else "regression"

    def column(self, name: str) -> Column:
        """Look up a column by name.

        Args:
            name (str): Column name.

        Returns:
            Column: The matching column.

        Raises:
            MalformedTableError: If no column has that name.
        """
        try:
            return self._by_name[name]
        except KeyError:
            raise MalformedTableError(f"Table has no column named '{name}'.", column=name) from None

    def take(self, rows: np.ndarray) -> TypedTable:
        """Return a table holding only the selected rows.

        Args:
            rows (np.ndarray): Integer indices (repeats allowed) or a boolean mask.

        Returns:
            TypedTable: The row subset with the same columns and levels.
        """
        return TypedTable([column.take(rows) for column in self._columns])

    @classmethod
    def from_polars(
        cls,
        df: pl.DataFrame,
        response: str,
        covariates: Sequence[str] | None = None,
    ) -> TypedTable:
        """Build a typed table from a Polars DataFrame.

        Numeric dtypes become numeric columns and booleans become 0/1 numeric
        columns. `String` and `Categorical` columns become categorical columns
        with sorted unique levels; `Enum` columns keep their declared level order.

        Args:
            df (pl.DataFrame): Source data.
            response (str): Name of the response column.
            covariates (Sequence[str] | None): Covariate names, in order. When
                `None`, every column other than `response` is used.

        Returns:
            TypedTable: The typed table, response first.

        Raises:
            ColumnsNotFoundError: If `response` or a covariate is not in `df`.
            DuplicateColumnsError: If a name is requested twice.
            MalformedTableError: If a column has nulls or an unsupported dtype.
        """
        covariate_names = list(covariates) if covariates is not None else [c for c in df.columns if c != response]
        requested = [response, *covariate_names]
        missing = [name for name in requested if name not in df.columns]
        if missing:
            raise ColumnsNotFoundError(missing_columns=missing, available_columns=list(df.columns))
        if len(set(requested)) != len(requested):
            raise DuplicateColumnsError(requested)
        return cls([_column_from_series(df[name]) for name in requested])


# ---------------------------------------------------------------------------
# Private helpers -- Polars conversion
# ---------------------------------------------------------------------------


def _column_from_series(series: pl.Series) -> Column:
    """Convert one Polars Series into a typed column.

    Args:
        series (pl.Series): The source column.

    Returns:
        Column: A categorical or numeric column.

    Raises:
        MalformedTableError: If the series has nulls or an unsupported dtype.
    """
    if series.null_count() > 0:
        raise MalformedTableError(f"Column '{series.name}' contains null values.", column=series.name)

    dtype = series.dtype
    if dtype.is_numeric():
        return NumericColumn(name=series.name, values=series.to_numpy(allow_copy=True))
    if dtype == pl.Boolean:
        return NumericColumn(name=series.name, values=series.cast(pl.Int8).to_numpy(allow_copy=True))
    if isinstance(dtype, pl.Enum):
        levels = tuple(str(level) for level in dtype.categories.to_list())
        return CategoricalColumn(name=series.name, values=_labels(series), levels=levels)
    if dtype == pl.String or isinstance(dtype, pl.Categorical):
        values = _labels(series)
        return CategoricalColumn(name=series.name, values=values, levels=tuple(sorted(set(values.tolist()))))

    raise MalformedTableError(f"Column '{series.name}' has unsupported dtype {dtype}.", column=series.name)


def _labels(series: pl.Series) -> np.ndarray:
    """Return the values of a label-like series as an object array of strings.

    Args:
        series (pl.Series): A String, Categorical, or Enum series.

    Returns:
        np.ndarray: 1-D object array of Python strings.
    """
    return np.asarray(series.cast(pl.String).to_list(), dtype=object)
