"""
Sample metadata loaders for the virome report.

Two independently maintained tables describe the samples:

- the sample table (Subject, SampleType, SampleNo, Timepoint, Location and
  optionally StudyGroup; other columns are ignored)
- the pipeline run-summary table (sample_filename, read-mapping statistics,
  reference database identifier)

Loaders only validate and type the columns. Matching them to sample
identifiers happens in `virome_report.reconcile`.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

import polars as pl
from loguru import logger

from virome_report.config import DEFAULT_SAMPLE_FILENAME_PATTERN, RunSummaryColumns
from virome_report.errors import SchemaError

from .common import blank_to_null, read_table

if TYPE_CHECKING:
    from pathlib import Path

SAMPLE_TABLE_COLUMNS = ["Subject", "SampleType", "SampleNo", "Timepoint", "Location"]


def load_sample_table(tsv_path: Path, date_format: str = "%Y-%m-%d") -> pl.DataFrame:
    """
    Load the subject/timepoint/location table.

    Args:
        tsv_path: Path to the sample table (TSV or CSV)
        date_format: strftime format of the Timepoint column

    Returns:
        DataFrame with Subject, SampleType, SampleNo, Timepoint (Date),
        Location and StudyGroup (null when the file has no such column)

    Raises:
        SchemaError: On missing columns or unparseable dates
    """
    df = read_table(tsv_path, SAMPLE_TABLE_COLUMNS, "Sample table")

    if "StudyGroup" in df.columns:
        df = df.select([*SAMPLE_TABLE_COLUMNS, "StudyGroup"])
    else:
        df = df.select(SAMPLE_TABLE_COLUMNS).with_columns(
            pl.lit(None, dtype=pl.String).alias("StudyGroup"),
        )

    df = df.with_columns(
        [blank_to_null(c) for c in [*SAMPLE_TABLE_COLUMNS, "StudyGroup"]],
    )

    try:
        df = df.with_columns(
            pl.col("Timepoint").str.to_date(format=date_format, strict=True),
        )
    except pl.exceptions.PolarsError as e:
        msg = f"Sample table {tsv_path} has Timepoint values not matching '{date_format}': {e}"
        raise SchemaError(msg) from e

    logger.info(f"Loaded {df.height} sample metadata rows from {tsv_path}")
    return df


def load_run_summary(
    tsv_path: Path,
    columns: RunSummaryColumns | None = None,
    filename_pattern: str = DEFAULT_SAMPLE_FILENAME_PATTERN,
) -> pl.DataFrame:
    """
    Load the pipeline run-summary table.

    The join key (RunKey) is the `sample` group of `filename_pattern` applied
    to the sample filename; filenames the pattern does not match are used
    as-is.

    Args:
        tsv_path: Path to the run summary (TSV or CSV)
        columns: Column names of the file (defaults to RunSummaryColumns())
        filename_pattern: Regex with a named group `sample`

    Returns:
        DataFrame with RunKey, SampleFilename, MappedReads (Int64) and
        ReferenceDatabase

    Raises:
        SchemaError: On missing columns, a pattern without a `sample` group,
                     or read counts that are not non-negative integers
    """
    columns = columns or RunSummaryColumns()

    try:
        compiled = re.compile(filename_pattern)
    except re.error as e:
        msg = f"Invalid sample filename pattern '{filename_pattern}': {e}"
        raise SchemaError(msg) from e
    if "sample" not in compiled.groupindex:
        msg = f"Sample filename pattern '{filename_pattern}' needs a named group 'sample'"
        raise SchemaError(msg)

    required = [columns.sample_filename, columns.mapped_reads, columns.database]
    df = read_table(tsv_path, required, "Run summary")

    df = df.select(
        blank_to_null(columns.sample_filename).alias("SampleFilename"),
        blank_to_null(columns.mapped_reads).alias("MappedReads"),
        blank_to_null(columns.database).alias("ReferenceDatabase"),
    )

    try:
        df = df.with_columns(pl.col("MappedReads").cast(pl.Float64))
    except pl.exceptions.PolarsError as e:
        msg = f"Run summary {tsv_path} has non-numeric '{columns.mapped_reads}' values: {e}"
        raise SchemaError(msg) from e

    reads = pl.col("MappedReads")
    bad = df.filter(
        reads.is_nan() | reads.is_infinite() | (reads < 0) | (reads != reads.floor()),
    )["SampleFilename"]
    if len(bad):
        shown = ", ".join(str(s) for s in bad.head(10).to_list())
        msg = (
            f"Run summary {tsv_path} has negative or non-integer '{columns.mapped_reads}' "
            f"values for: {shown}"
        )
        raise SchemaError(msg)
    df = df.with_columns(reads.cast(pl.Int64))

    df = df.with_columns(
        pl.coalesce(
            pl.col("SampleFilename")
            .str.extract_groups(filename_pattern)
            .struct.field("sample"),
            pl.col("SampleFilename"),
        ).alias("RunKey"),
    ).select(["RunKey", "SampleFilename", "MappedReads", "ReferenceDatabase"])

    logger.info(f"Loaded {df.height} run summary rows from {tsv_path}")
    return df
