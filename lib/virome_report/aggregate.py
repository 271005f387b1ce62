"""
Abundance aggregation for the virome report.

Agglomerates the count matrix with reconciled sample metadata and taxon ranks
into one long-format table (one row per non-zero taxon/sample pair) and adds
per-sample relative frequency:

    RelativeFrequency = Count / TotalCount(sample)

Samples with a zero total get RelativeFrequency 0.0 and a degenerate-sample
diagnostic. Counts whose TaxID is missing from the taxonomy keep their row
with null ranks and TaxonomyMatched = false.

Downstream views (kingdom filters, group-by summaries, pivots) all work from
the joined table without redoing the join.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

import polars as pl
from loguru import logger

from .errors import DegenerateAggregationError
from .loaders.counts import counts_to_long
from .loaders.taxonomy import build_taxonomy_index
from .schema import ABUNDANCE_COLUMNS, RANKS, Diagnostic, DiagnosticKind

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from .loaders.taxonomy import TaxonRecord
    from .reconcile import ReconciledSamples


@dataclass(frozen=True)
class AbundanceTable:
    """
    Joined long-format abundance records plus per-sample totals.

    `samples` is the reconciled sample table (one row per matrix sample). It is
    the population group means are taken over, so samples without reads in a
    view still count as zero.
    """

    data: pl.DataFrame
    sample_totals: pl.DataFrame
    samples: pl.DataFrame
    diagnostics: tuple[Diagnostic, ...] = field(default_factory=tuple)

    def __len__(self) -> int:
        return self.data.height

    @property
    def total_reads(self) -> int:
        return int(self.data["Count"].sum())

    def filter_kingdom(self, kingdom: str) -> AbundanceTable:
        """Keep only records whose Kingdom equals `kingdom` exactly."""
        return replace(self, data=self.data.filter(pl.col("Kingdom") == kingdom))

    def filter(self, *predicates: pl.Expr) -> AbundanceTable:
        """Keep records matching all polars predicates; the sample population is unchanged."""
        return replace(self, data=self.data.filter(*predicates))

    def cohort(self) -> AbundanceTable:
        """Drop control samples from both the records and the sample population."""
        is_sample = ~pl.col("IsControl").fill_null(False)
        return replace(self, data=self.data.filter(is_sample), samples=self.samples.filter(is_sample))

    def summarize(self, by: Sequence[str], rank: str | None = None) -> pl.DataFrame:
        """
        Aggregate reads over metadata dimensions, optionally per rank label.

        Args:
            by: Sample metadata columns, e.g. ["StudyGroup", "SampleType"]
            rank: Optional rank column, e.g. "Family"

        Returns:
            DataFrame with the grouping columns and
                Reads: summed read count
                Samples: samples with at least one read in the group
                GroupSamples: samples of the population sharing the `by` values
                Taxa: distinct TaxIDs in the group
                MeanRelativeFrequency: summed relative frequency divided by
                    GroupSamples, so samples without reads count as zero
        """
        keys = [*by, rank] if rank else list(by)
        _check_columns(self.data, keys)
        _check_columns(self.samples, by)

        if self.data.height == 0:
            schema = {k: self.data.schema[k] for k in keys}
            schema.update(
                {
                    "Reads": pl.Int64,
                    "Samples": pl.UInt32,
                    "GroupSamples": pl.UInt32,
                    "Taxa": pl.UInt32,
                    "MeanRelativeFrequency": pl.Float64,
                },
            )
            return pl.DataFrame(schema=schema)

        group_size = pl.col("SampleID").n_unique()
        population = self.samples.select(
            "SampleID",
            (group_size.over(by) if by else group_size).alias("GroupSamples"),
        )

        return (
            self.data.join(population, on="SampleID", how="left")
            .group_by(keys)
            .agg(
                pl.col("Count").sum().alias("Reads"),
                pl.col("SampleID").n_unique().alias("Samples"),
                pl.col("GroupSamples").first(),
                pl.col("TaxID").n_unique().alias("Taxa"),
                (pl.col("RelativeFrequency").sum() / pl.col("GroupSamples").first()).alias(
                    "MeanRelativeFrequency",
                ),
            )
            .sort(["Reads", *keys], descending=[True, *[False] * len(keys)], nulls_last=True)
        )

    def top_taxa(self, n: int, rank: str = "Strain") -> list[str]:
        """Labels at `rank` with the most reads, ties broken alphabetically."""
        _check_columns(self.data, [rank])
        return (
            self.data.filter(pl.col(rank).is_not_null())
            .group_by(rank)
            .agg(pl.col("Count").sum().alias("Reads"))
            .sort(["Reads", rank], descending=[True, False])
            .head(n)[rank]
            .to_list()
        )

    def wide(self, rank: str = "Strain", value: str = "Count") -> pl.DataFrame:
        """Pivot back to a rank-label x sample matrix, absent cells as zero."""
        _check_columns(self.data, [rank, value])
        summed = self.data.group_by([rank, "SampleID"]).agg(pl.col(value).sum())
        samples = sorted(summed["SampleID"].unique().to_list())
        return (
            summed.pivot(on="SampleID", index=rank, values=value)
            .select([rank, *samples])
            .fill_null(0)
            .sort(rank, nulls_last=True)
        )


def _check_columns(df: pl.DataFrame, columns: Sequence[str]) -> None:
    missing = [c for c in columns if c not in df.columns]
    if missing:
        msg = f"Unknown abundance column(s): {', '.join(missing)}"
        raise KeyError(msg)


def relative_frequency_expr() -> pl.Expr:
    """Count / TotalCount, 0.0 where the sample total is zero."""
    return (
        pl.when(pl.col("TotalCount") > 0)
        .then(pl.col("Count") / pl.col("TotalCount"))
        .otherwise(pl.lit(0.0))
        .alias("RelativeFrequency")
    )


def agglomerate(
    matrix: pl.DataFrame,
    samples: ReconciledSamples,
    taxonomy: pl.DataFrame,
    *,
    taxa: Mapping[int, TaxonRecord] | None = None,
    keep_zeros: bool = False,
    strict: bool = False,
) -> AbundanceTable:
    """
    Join counts with sample metadata and taxon ranks.

    Args:
        matrix: Count matrix from load_count_matrix
        samples: Reconciled sample metadata
        taxonomy: Taxon table from load_taxonomy
        taxa: Tax ID index of the same table; built from `taxonomy` when None
        keep_zeros: Keep zero-count cells as explicit records
        strict: Raise on zero-total samples instead of recording diagnostics

    Returns:
        AbundanceTable with ABUNDANCE_COLUMNS, sorted by SampleID and rank

    Raises:
        DegenerateAggregationError: In strict mode, if any sample has no reads
    """
    long = counts_to_long(matrix, keep_zeros=True)

    totals = (
        long.group_by("SampleID", maintain_order=True)
        .agg(pl.col("Count").sum().alias("TotalCount"))
        .join(samples.table, on="SampleID", how="left")
        .select("SampleID", "TotalCount", "MappedReads")
        .sort("SampleID")
    )

    degenerate = totals.filter(pl.col("TotalCount") == 0)["SampleID"].to_list()
    diagnostics = list(samples.diagnostics)
    if degenerate:
        if strict:
            raise DegenerateAggregationError(degenerate)
        logger.warning(
            f"{len(degenerate)} sample(s) have zero total count; relative frequency set to 0",
        )
        diagnostics.extend(
            Diagnostic(
                kind=DiagnosticKind.DEGENERATE_SAMPLE,
                sample_id=sample_id,
                detail="zero total count; relative frequencies reported as 0",
            )
            for sample_id in degenerate
        )

    if not keep_zeros:
        long = long.filter(pl.col("Count") > 0)

    if taxa is None:
        taxa = build_taxonomy_index(taxonomy)
    unresolved_ids = pl.Series(
        "TaxID",
        sorted(set(long["TaxID"].to_list()).difference(taxa)),
        dtype=pl.Int64,
    )

    data = (
        long.join(taxonomy.select(["TaxID", *RANKS]), on="TaxID", how="left")
        .with_columns((~pl.col("TaxID").is_in(unresolved_ids)).alias("TaxonomyMatched"))
        .join(samples.table, on="SampleID", how="left")
        .join(totals.select("SampleID", "TotalCount"), on="SampleID", how="left")
        .with_columns(relative_frequency_expr())
        .select(ABUNDANCE_COLUMNS)
        .sort(["SampleID", *RANKS, "TaxID"], nulls_last=True)
    )

    unresolved = (
        data.filter(~pl.col("TaxonomyMatched"))
        .group_by("TaxID")
        .agg(pl.col("SampleID").n_unique().alias("Samples"))
        .sort("TaxID")
    )
    if unresolved.height:
        logger.warning(
            f"{unresolved.height} tax ID(s) in the count matrix are missing from the taxonomy",
        )
        diagnostics.extend(
            Diagnostic(
                kind=DiagnosticKind.UNRESOLVED_TAXON,
                sample_id=str(row["TaxID"]),
                detail=f"TaxID absent from taxon table; ranks left null in {row['Samples']} sample(s)",
            )
            for row in unresolved.iter_rows(named=True)
        )

    logger.info(
        f"Agglomerated {data.height} abundance records over "
        f"{totals.height} samples and {data['TaxID'].n_unique()} taxa",
    )

    return AbundanceTable(
        data=data,
        sample_totals=totals,
        samples=samples.table,
        diagnostics=tuple(diagnostics),
    )
