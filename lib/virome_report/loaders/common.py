"""
Shared reading helpers for the input table loaders.

All inputs are flat delimited files. Every column is read as a string so that
identifiers such as sample numbers keep their leading zeros; loaders cast the
columns they own explicitly.
"""

from __future__ import annotations

from collections import Counter
from pathlib import Path
from typing import TYPE_CHECKING

import polars as pl
from loguru import logger

from virome_report.errors import SchemaError

if TYPE_CHECKING:
    from collections.abc import Iterable

NULL_VALUES = ["", "NA", "N/A", "NaN", "nan", "null"]


def separator_for(path: Path) -> str:
    """Pick the field separator from the file suffix (comma for .csv, else tab)."""
    suffixes = [s.lower() for s in Path(path).suffixes]
    if ".csv" in suffixes:
        return ","
    return "\t"


def read_table(
    path: Path,
    required: Iterable[str],
    label: str,
) -> pl.DataFrame:
    """
    Read a delimited table with every column as a string.

    Args:
        path: Path to the TSV/CSV file
        required: Column names that must be present
        label: Human-readable table name used in error messages

    Returns:
        DataFrame with stripped header names

    Raises:
        SchemaError: If the file is missing, empty or unreadable, repeats a
                     column name (after stripping whitespace), or lacks a
                     required column
    """
    path = Path(path)
    if not path.is_file():
        msg = f"{label} not found: {path}"
        raise SchemaError(msg)

    separator = separator_for(path)
    try:
        # Header read as a data row: read_csv would rename duplicate names
        header = pl.read_csv(
            path,
            separator=separator,
            has_header=False,
            n_rows=1,
            infer_schema_length=0,
        ).row(0)
        df = pl.read_csv(
            path,
            separator=separator,
            has_header=True,
            infer_schema_length=0,
            null_values=NULL_VALUES,
        )
    except pl.exceptions.NoDataError as e:
        msg = f"{label} is empty: {path}"
        raise SchemaError(msg) from e
    except pl.exceptions.PolarsError as e:
        msg = f"Could not parse {label} {path}: {e}"
        raise SchemaError(msg) from e

    names = [(c or "").strip() for c in header]
    duplicated = sorted(name for name, n in Counter(names).items() if n > 1)
    if duplicated:
        msg = f"{label} {path} has duplicate column(s): {', '.join(duplicated)}"
        raise SchemaError(msg)

    df = df.rename(lambda c: c.strip())

    missing = [c for c in required if c not in df.columns]
    if missing:
        msg = f"{label} {path} is missing column(s): {', '.join(missing)}"
        raise SchemaError(msg)

    logger.debug(f"Read {label} {path}: {df.height} rows x {df.width} columns")
    return df


def blank_to_null(column: str) -> pl.Expr:
    """Strip whitespace from a string column and turn empty strings into null."""
    stripped = pl.col(column).str.strip_chars()
    return pl.when(stripped == "").then(None).otherwise(stripped).alias(column)


def cast_integer_column(df: pl.DataFrame, column: str, label: str) -> pl.DataFrame:
    """Cast a string column to Int64, raising SchemaError on bad values."""
    try:
        return df.with_columns(pl.col(column).str.strip_chars().cast(pl.Int64))
    except pl.exceptions.PolarsError as e:
        msg = f"{label} column '{column}' contains non-integer values: {e}"
        raise SchemaError(msg) from e
