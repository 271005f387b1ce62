"""
Count matrix loader for the virome report.

Reads the classifier's taxon-by-sample read count matrix:

    tax_id    <sample_1>    <sample_2>    ...
    10239     12            0
    ...

Some sample headers are corrupted by the upstream file naming and need a
literal rename (see `ReportConfig.count_column_renames`). Missing cells are
zero; after loading every cell is a non-negative integer.
"""

from __future__ import annotations

from collections import Counter
from typing import TYPE_CHECKING

import polars as pl
from loguru import logger

from virome_report.errors import SchemaError

from .common import cast_integer_column, read_table

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path


def load_count_matrix(
    tsv_path: Path,
    column_renames: Mapping[str, str] | None = None,
) -> pl.DataFrame:
    """
    Load the count matrix indexed by TaxID.

    Args:
        tsv_path: Path to the count matrix (TSV or CSV)
        column_renames: Literal header fixes, old name -> new name

    Returns:
        DataFrame with TaxID (Int64) followed by one Int64 column per sample

    Raises:
        SchemaError: If tax_id is missing or duplicated, there are no sample
                     columns, or a cell is negative or non-integer
    """
    df = read_table(tsv_path, ["tax_id"], "Count matrix")

    renames = {"tax_id": "TaxID"}
    for old, new in (column_renames or {}).items():
        if old in df.columns:
            logger.info(f"Renaming count matrix column '{old}' -> '{new}'")
            renames[old] = new
        else:
            logger.debug(f"Column rename '{old}' not needed, column absent")

    final_names = [renames.get(c, c) for c in df.columns]
    clashes = [name for name, n in Counter(final_names).items() if n > 1]
    if clashes:
        msg = f"Count matrix {tsv_path} has duplicate sample column(s): {', '.join(clashes)}"
        raise SchemaError(msg)
    df = df.rename(renames)

    sample_ids = [c for c in df.columns if c != "TaxID"]
    if not sample_ids:
        msg = f"Count matrix {tsv_path} has no sample columns"
        raise SchemaError(msg)

    df = cast_integer_column(df, "TaxID", "Count matrix")
    if df["TaxID"].null_count():
        msg = f"Count matrix {tsv_path} has rows without a tax_id"
        raise SchemaError(msg)
    duplicated = df.filter(pl.col("TaxID").is_duplicated())["TaxID"].unique().sort()
    if len(duplicated):
        shown = ", ".join(str(t) for t in duplicated.head(10).to_list())
        msg = f"Count matrix {tsv_path} has duplicate tax_id row(s): {shown}"
        raise SchemaError(msg)

    try:
        df = df.with_columns(
            pl.col(sample_ids).str.strip_chars().cast(pl.Float64).fill_null(0.0),
        )
    except pl.exceptions.PolarsError as e:
        msg = f"Count matrix {tsv_path} contains non-numeric counts: {e}"
        raise SchemaError(msg) from e

    invalid = df.select(
        [
            (
                pl.col(c).is_nan()
                | pl.col(c).is_infinite()
                | (pl.col(c) < 0)
                | (pl.col(c) != pl.col(c).floor())
            )
            .any()
            .alias(c)
            for c in sample_ids
        ],
    ).row(0, named=True)
    bad_columns = [c for c, is_bad in invalid.items() if is_bad]
    if bad_columns:
        msg = (
            f"Count matrix {tsv_path} has negative or non-integer counts in: "
            f"{', '.join(bad_columns)}"
        )
        raise SchemaError(msg)

    df = df.with_columns(pl.col(sample_ids).cast(pl.Int64))

    logger.info(
        f"Loaded count matrix with {df.height} taxa x {len(sample_ids)} samples from {tsv_path}",
    )
    return df


def sample_columns(matrix: pl.DataFrame) -> list[str]:
    """Return the sample identifiers of a loaded count matrix, in file order."""
    return [c for c in matrix.columns if c != "TaxID"]


def counts_to_long(matrix: pl.DataFrame, *, keep_zeros: bool = False) -> pl.DataFrame:
    """
    Convert the wide matrix into (TaxID, SampleID, Count) records.

    Args:
        matrix: DataFrame from load_count_matrix
        keep_zeros: Keep zero cells instead of treating them as implicit

    Returns:
        Long-format DataFrame sorted by SampleID then TaxID
    """
    long = matrix.unpivot(
        index="TaxID",
        on=sample_columns(matrix),
        variable_name="SampleID",
        value_name="Count",
    )
    if not keep_zeros:
        long = long.filter(pl.col("Count") > 0)
    return long.sort(["SampleID", "TaxID"])
