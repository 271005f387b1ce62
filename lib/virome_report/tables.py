"""
Summary tables for the virome report.

Each function returns a small polars DataFrame ready for TSV output and for
rendering in the HTML report:

- sample_tally: samples per SampleType x LibraryMethod x StudyGroup
- kingdom_tally: taxa, reads and share of reads per Kingdom
- kingdom_reads_by_sample: reads of one kingdom per sample over time
- rank_summary: reads of one kingdom per rank label and cohort dimension
- read_depth_table: per-sample classified reads vs. mapped reads
- diagnostics_table: reconciliation and aggregation problems
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import polars as pl
from loguru import logger

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from pathlib import Path

    from .aggregate import AbundanceTable
    from .schema import Diagnostic

UNRESOLVED_LABEL = "(unresolved)"


def sample_tally(samples: pl.DataFrame) -> pl.DataFrame:
    """Number of samples per SampleType, LibraryMethod and StudyGroup."""
    keys = ["SampleType", "LibraryMethod", "StudyGroup"]
    return (
        samples.group_by(keys)
        .agg(
            pl.len().alias("Samples"),
            pl.col("Subject").n_unique().alias("Subjects"),
        )
        .sort(keys, nulls_last=True)
    )


def kingdom_tally(abundance: AbundanceTable) -> pl.DataFrame:
    """Distinct taxa, reads and share of all reads per Kingdom."""
    total = abundance.total_reads
    return (
        abundance.data.with_columns(pl.col("Kingdom").fill_null(UNRESOLVED_LABEL))
        .group_by("Kingdom")
        .agg(
            pl.col("TaxID").n_unique().alias("Taxa"),
            pl.col("Count").sum().alias("Reads"),
        )
        .with_columns(
            (pl.col("Reads") / total if total else pl.lit(0.0)).alias("ReadShare"),
        )
        .sort(["Reads", "Kingdom"], descending=[True, False])
    )


def kingdom_reads_by_sample(
    abundance: AbundanceTable,
    samples: pl.DataFrame,
    kingdom: str,
) -> pl.DataFrame:
    """
    Reads assigned to `kingdom` for every sample, including samples with none.

    Returns:
        DataFrame with SampleID, Subject, SampleType, LibraryMethod, Timepoint,
        KingdomReads, TotalCount and KingdomFraction, sorted by Subject and
        Timepoint
    """
    per_sample = (
        abundance.filter_kingdom(kingdom)
        .data.group_by("SampleID")
        .agg(pl.col("Count").sum().alias("KingdomReads"))
    )
    metadata = samples.select(
        "SampleID",
        "Subject",
        "SampleType",
        "LibraryMethod",
        "Timepoint",
    )
    return (
        abundance.sample_totals.select("SampleID", "TotalCount")
        .join(metadata, on="SampleID", how="left")
        .join(per_sample, on="SampleID", how="left")
        .with_columns(pl.col("KingdomReads").fill_null(0))
        .with_columns(
            pl.when(pl.col("TotalCount") > 0)
            .then(pl.col("KingdomReads") / pl.col("TotalCount"))
            .otherwise(0.0)
            .alias("KingdomFraction"),
        )
        .select(
            "SampleID",
            "Subject",
            "SampleType",
            "LibraryMethod",
            "Timepoint",
            "KingdomReads",
            "TotalCount",
            "KingdomFraction",
        )
        .sort(["Subject", "Timepoint", "SampleID"], nulls_last=True)
    )


def rank_summary(
    abundance: AbundanceTable,
    kingdom: str,
    rank: str = "Family",
    by: Sequence[str] = ("StudyGroup",),
) -> pl.DataFrame:
    """
    Reads and mean relative frequency of one kingdom per rank label and group.

    Controls are left out; means are taken over every cohort sample of a group,
    including samples without reads of the kingdom.
    """
    return abundance.filter_kingdom(kingdom).cohort().summarize(list(by), rank)


def read_depth_table(abundance: AbundanceTable, samples: pl.DataFrame) -> pl.DataFrame:
    """
    Per-sample classified reads against the pipeline's mapped read count.

    ClassifiedFraction is null where MappedReads is missing or zero.
    """
    return (
        samples.select(
            "SampleID",
            "Subject",
            "SampleType",
            "LibraryMethod",
            "MappedReads",
            "ReferenceDatabase",
        )
        .join(
            abundance.sample_totals.select("SampleID", "TotalCount"),
            on="SampleID",
            how="left",
        )
        .with_columns(
            pl.when(pl.col("MappedReads") > 0)
            .then(pl.col("TotalCount") / pl.col("MappedReads"))
            .otherwise(None)
            .alias("ClassifiedFraction"),
        )
        .sort("SampleID")
    )


def diagnostics_table(diagnostics: Sequence[Diagnostic]) -> pl.DataFrame:
    """Flatten diagnostics into a table, one row each."""
    schema = {
        "kind": pl.String,
        "sample_id": pl.String,
        "detail": pl.String,
        "is_control": pl.Boolean,
    }
    return pl.DataFrame(
        [d.model_dump(mode="json") for d in diagnostics],
        schema=schema,
    )


def write_tables(tables: Mapping[str, pl.DataFrame], output_dir: Path) -> list[Path]:
    """
    Write each table as `<name>.tsv` under output_dir.

    Returns:
        List of written paths
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    written = []
    for name, df in tables.items():
        path = output_dir / f"{name}.tsv"
        df.write_csv(path, separator="\t")
        written.append(path)
        logger.info(f"Wrote {name} table ({df.height} rows) to {path}")
    return written
