"""Tests for custom exceptions.

This module checks that every cartkit exception subclasses ValueError, stores
its structured attributes, and is raised where the public API promises it.
"""

from __future__ import annotations

import pytest
from pytest_check import check

from cartkit.exceptions import (
    ColumnsNotFoundError,
    DuplicateColumnsError,
    InvalidConfigurationError,
    MalformedTableError,
)
from cartkit.tree.models import TreeParameters


class TestInvalidConfigurationError:
    """Tests for InvalidConfigurationError."""

    def test_is_value_error_with_empty_errors_by_default(self) -> None:
        """A bare message produces an empty `errors` list and is catchable as ValueError."""
        # Arrange
        error = InvalidConfigurationError("num_trees must be at least 1, got 0.")

        # Act & Assert
        with pytest.raises(ValueError, match="num_trees"):
            raise error
        with check:
            assert error.errors == [], "errors should default to an empty list"

    def test_tree_parameters_build_wraps_validation_error(self) -> None:
        """`TreeParameters.build` reports pydantic failures as InvalidConfigurationError with details."""
        # Act
        with pytest.raises(InvalidConfigurationError) as exc_info:
            TreeParameters.build(min_split=0)

        # Assert
        with check:
            assert len(exc_info.value.errors) >= 1, "Structured errors should be attached"
        with check:
            assert exc_info.value.errors[0]["loc"] == ("min_split",), "The failing field should be reported"
        with check:
            assert isinstance(exc_info.value.__cause__, Exception), "The pydantic error should be chained"


class TestMalformedTableError:
    """Tests for MalformedTableError."""

    def test_stores_column_and_repr(self) -> None:
        """The offending column is stored and shown in the repr."""
        # Arrange
        error = MalformedTableError("Column 'spray' contains null values.", column="spray")

        # Assert
        with check:
            assert isinstance(error, ValueError), "Should subclass ValueError"
        with check:
            assert error.column == "spray", "Column should be stored"
        with check:
            assert "column='spray'" in repr(error), "repr should include the column"
        with check:
            assert str(error) == "Column 'spray' contains null values.", "str should be the message"

    def test_column_defaults_to_none(self) -> None:
        """Table-wide problems carry no column."""
        error = MalformedTableError("A table needs at least a response column.")

        assert error.column is None


class TestColumnsNotFoundError:
    """Tests for ColumnsNotFoundError."""

    def test_message_lists_missing_columns_sorted(self) -> None:
        """The message lists the missing columns in sorted order."""
        # Arrange
        error = ColumnsNotFoundError(
            missing_columns=["sepal_width", "petal_width"],
            available_columns=["species", "sepal_length"],
        )

        # Assert
        with check:
            assert str(error) == "Columns not found in DataFrame: ['petal_width', 'sepal_width']"
        with check:
            assert error.available_columns == ["species", "sepal_length"]
        with check:
            assert isinstance(error, ValueError)


class TestDuplicateColumnsError:
    """Tests for DuplicateColumnsError."""

    @pytest.mark.parametrize(
        ("columns", "expected_duplicates"),
        [
            (["spray", "count", "spray"], ["spray"]),
            (["a", "b", "a", "b", "a"], ["a", "b"]),
            (["x", "y"], []),
        ],
        ids=["single-duplicate", "repeated-duplicates", "no-duplicates"],
    )
    def test_duplicate_columns_listed_once(self, columns: list[str], expected_duplicates: list[str]) -> None:
        """Each duplicated name is listed once, in first-repeat order.

        Args:
            columns (list[str]): Input column names.
            expected_duplicates (list[str]): Expected `duplicate_columns`.
        """
        # Act
        error = DuplicateColumnsError(columns)

        # Assert
        with check:
            assert error.duplicate_columns == expected_duplicates
        with check:
            assert error.columns == columns
        with check:
            assert str(error) == "Duplicate column names are not allowed"
