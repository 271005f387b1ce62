"""
Abundance heatmaps for the virome report.

Two views of the same kingdom-filtered abundance table:
- full heatmap: every taxon (at the Strain rank) x sample
- condensed heatmap: reads aggregated to a higher rank, top N labels only

Both use fixed page dimensions so the vector output lays out the same way on
every run. Color is log1p(reads); tooltips carry raw reads and relative
frequency.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import altair as alt
import polars as pl

from virome_report.schema import RANKS

from .utils import (
    HEATMAP_SCHEME,
    register_virome_theme,
    save_chart,
    with_taxon_label,
)

if TYPE_CHECKING:
    from pathlib import Path

    from virome_report.aggregate import AbundanceTable

HEATMAP_SCHEMA = {
    "TaxonLabel": pl.String,
    "SampleID": pl.String,
    "Subject": pl.String,
    "SampleType": pl.String,
    "Reads": pl.Int64,
    "RelativeFrequency": pl.Float64,
    "log_reads": pl.Float64,
}


def prepare_heatmap_data(
    abundance: AbundanceTable,
    rank: str = "Strain",
    top_n: int | None = None,
) -> pl.DataFrame:
    """
    Aggregate abundance records to one cell per (rank label, sample).

    Args:
        abundance: Abundance table, usually already filtered to one kingdom
        rank: Rank at which taxa are labelled and summed
        top_n: Keep only the labels with the most reads (None keeps all)

    Returns:
        DataFrame with TaxonLabel, SampleID, Subject, SampleType, Reads,
        RelativeFrequency and log_reads
    """
    if rank not in RANKS:
        msg = f"Unknown rank '{rank}'. Use one of: {', '.join(RANKS)}"
        raise ValueError(msg)

    if len(abundance) == 0:
        return pl.DataFrame(schema=HEATMAP_SCHEMA)

    data = with_taxon_label(abundance.data, rank)

    cells = data.group_by(["TaxonLabel", "SampleID"]).agg(
        pl.col("Subject").first(),
        pl.col("SampleType").first(),
        pl.col("Count").sum().alias("Reads"),
        pl.col("RelativeFrequency").sum(),
    )

    if top_n is not None:
        keep = (
            cells.group_by("TaxonLabel")
            .agg(pl.col("Reads").sum())
            .sort(["Reads", "TaxonLabel"], descending=[True, False])
            .head(top_n)["TaxonLabel"]
        )
        cells = cells.filter(pl.col("TaxonLabel").is_in(keep.to_list()))

    return (
        cells.with_columns(
            pl.col("Reads").cast(pl.Float64).log1p().alias("log_reads"),
        )
        .select(list(HEATMAP_SCHEMA))
        .sort(["TaxonLabel", "SampleID"])
    )


def taxon_order(abundance: AbundanceTable, rank: str) -> list[str]:
    """Rank labels in taxonomic order (higher ranks first, then alphabetical)."""
    data = with_taxon_label(abundance.data, rank)
    parents = RANKS[: RANKS.index(rank)]
    return (
        data.select([*parents, "TaxonLabel"])
        .unique()
        .sort([*parents, "TaxonLabel"], nulls_last=True)["TaxonLabel"]
        .unique(maintain_order=True)
        .to_list()
    )


def sample_order(data: pl.DataFrame) -> list[str]:
    """Samples grouped by subject, then by identifier."""
    return (
        data.select("Subject", "SampleID")
        .unique()
        .sort(["Subject", "SampleID"], nulls_last=True)["SampleID"]
        .to_list()
    )


def abundance_heatmap_chart(
    abundance: AbundanceTable,
    rank: str = "Strain",
    top_n: int | None = None,
    width: int = 800,
    height: int = 1100,
    title: str = "Viral Abundance",
) -> alt.Chart | None:
    """
    Build a taxon x sample heatmap chart.

    Args:
        abundance: Abundance table, usually already filtered to one kingdom
        rank: Rank at which taxa are labelled and summed
        top_n: Keep only the labels with the most reads (None keeps all)
        width: Fixed plot width in pixels
        height: Fixed plot height in pixels
        title: Chart title

    Returns:
        Altair chart, or None when there is nothing to plot
    """
    register_virome_theme()

    data = prepare_heatmap_data(abundance, rank, top_n)
    if len(data) == 0:
        return None

    kept = set(data["TaxonLabel"].to_list())
    y_order = [label for label in taxon_order(abundance, rank) if label in kept]

    return (
        alt.Chart(data)
        .mark_rect()
        .encode(
            alt.X("SampleID:N")
            .sort(sample_order(data))
            .axis(labelAngle=-60, labelOverlap=False)
            .title("Sample"),
            alt.Y("TaxonLabel:N")
            .sort(y_order)
            .axis(labelOverlap=False)
            .title(rank),
            alt.Color("log_reads:Q").scale(scheme=HEATMAP_SCHEME).title("Reads (log)"),
            tooltip=[
                alt.Tooltip("TaxonLabel:N", title=rank),
                alt.Tooltip("SampleID:N", title="Sample"),
                alt.Tooltip("Subject:N", title="Subject"),
                alt.Tooltip("SampleType:N", title="Sample type"),
                alt.Tooltip("Reads:Q", title="Reads", format=","),
                alt.Tooltip("RelativeFrequency:Q", title="Relative frequency", format=".3%"),
            ],
        )
        .properties(width=width, height=height, title=title)
    )


def full_heatmap(
    abundance: AbundanceTable,
    output_path: Path,
    formats: list[str] | None = None,
    width: int = 800,
    height: int = 1100,
    title: str = "Viral Abundance (all taxa)",
) -> list[Path]:
    """
    Write the full taxon x sample heatmap at the Strain rank.

    Returns:
        List of paths to saved files (empty when there is nothing to plot)
    """
    if formats is None:
        formats = ["svg"]

    chart = abundance_heatmap_chart(
        abundance,
        rank="Strain",
        width=width,
        height=height,
        title=title,
    )
    if chart is None:
        return []
    return save_chart(chart, output_path, formats)


def condensed_heatmap(
    abundance: AbundanceTable,
    output_path: Path,
    rank: str = "Family",
    top_n: int = 25,
    formats: list[str] | None = None,
    width: int = 800,
    height: int = 500,
    title: str | None = None,
) -> list[Path]:
    """
    Write the condensed heatmap: reads summed to `rank`, top N labels.

    Returns:
        List of paths to saved files (empty when there is nothing to plot)
    """
    if formats is None:
        formats = ["svg"]

    chart = abundance_heatmap_chart(
        abundance,
        rank=rank,
        top_n=top_n,
        width=width,
        height=height,
        title=title or f"Viral Abundance by {rank} (top {top_n})",
    )
    if chart is None:
        return []
    return save_chart(chart, output_path, formats)
