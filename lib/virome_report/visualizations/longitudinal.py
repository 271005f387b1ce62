"""
Longitudinal and cohort bar charts for the virome report.

- longitudinal bar chart: one chart per subject, relative frequency of the
  kingdom's taxa stacked by rank label over Timepoint, one bar per sample
- study-group bar chart: mean relative frequency per rank label, grouped by
  StudyGroup

Rank labels outside the top N are folded into "Other" so the legend stays
readable.
"""

from __future__ import annotations

import re
from dataclasses import replace
from typing import TYPE_CHECKING

import altair as alt
import polars as pl

from .utils import (
    CATEGORY_SCHEME,
    COLORS,
    OTHER_LABEL,
    register_virome_theme,
    save_chart,
    with_taxon_label,
    with_timepoint_label,
)

if TYPE_CHECKING:
    from pathlib import Path

    from virome_report.aggregate import AbundanceTable


# First colors of the tableau20 scheme, used when "Other" has to be pinned.
TABLEAU20 = [
    "#4c78a8", "#9ecae9", "#f58518", "#ffbf79", "#54a24b", "#88d27a",
    "#b79a20", "#f2cf5b", "#439894", "#83bcb6", "#e45756", "#ff9d98",
    "#79706e", "#bab0ac", "#d67195", "#fcbfd2", "#b279a2", "#d6a5c9",
    "#9e765f", "#d8b5a5",
]  # fmt: skip


def _fold_minor_labels(data: pl.DataFrame, top_n: int) -> pl.DataFrame:
    """Replace TaxonLabel values outside the top N (by reads) with OTHER_LABEL."""
    top = (
        data.group_by("TaxonLabel")
        .agg(pl.col("Count").sum())
        .sort(["Count", "TaxonLabel"], descending=[True, False])
        .head(top_n)["TaxonLabel"]
        .to_list()
    )
    return data.with_columns(
        pl.when(pl.col("TaxonLabel").is_in(top))
        .then(pl.col("TaxonLabel"))
        .otherwise(pl.lit(OTHER_LABEL))
        .alias("TaxonLabel"),
    )


def _color_scale(labels: list[str]) -> alt.Scale:
    """Categorical scale with OTHER_LABEL pinned to a neutral color, last."""
    named = sorted(label for label in labels if label != OTHER_LABEL)
    if OTHER_LABEL not in labels or len(named) > len(TABLEAU20):
        return alt.Scale(domain=named, scheme=CATEGORY_SCHEME)
    return alt.Scale(
        domain=[*named, OTHER_LABEL],
        range=[*TABLEAU20[: len(named)], COLORS["other"]],
    )


def prepare_longitudinal_data(
    abundance: AbundanceTable,
    subject: str,
    rank: str = "Family",
    top_n: int = 10,
) -> pl.DataFrame:
    """
    Per-sample relative frequency by rank label for one subject.

    Args:
        abundance: Abundance table, usually already filtered to one kingdom
        subject: Subject identifier
        rank: Rank used to label and stack the bars
        top_n: Labels kept before folding the rest into "Other"

    Returns:
        DataFrame with SampleID, SampleType, LibraryMethod, Timepoint,
        TimepointLabel, TaxonLabel, Count and RelativeFrequency
    """
    data = abundance.data.filter(
        (pl.col("Subject") == subject) & ~pl.col("IsControl").fill_null(False),
    )
    if data.height == 0:
        return pl.DataFrame(
            schema={
                "SampleID": pl.String,
                "SampleType": pl.String,
                "LibraryMethod": pl.String,
                "Timepoint": pl.Date,
                "TimepointLabel": pl.String,
                "TaxonLabel": pl.String,
                "Count": pl.Int64,
                "RelativeFrequency": pl.Float64,
            },
        )

    data = _fold_minor_labels(with_taxon_label(data, rank), top_n)
    data = with_timepoint_label(data)

    keys = [
        "SampleID",
        "SampleType",
        "LibraryMethod",
        "Timepoint",
        "TimepointLabel",
        "TaxonLabel",
    ]
    return (
        data.group_by(keys)
        .agg(pl.col("Count").sum(), pl.col("RelativeFrequency").sum())
        .sort(["Timepoint", "SampleID", "TaxonLabel"], nulls_last=True)
    )


def longitudinal_bar_chart(
    abundance: AbundanceTable,
    subject: str,
    rank: str = "Family",
    top_n: int = 10,
    title: str | None = None,
) -> alt.Chart | None:
    """
    Build a stacked bar chart of one subject's samples over time.

    Returns:
        Altair chart, or None when the subject has no reads to plot
    """
    register_virome_theme()

    data = prepare_longitudinal_data(abundance, subject, rank, top_n)
    if data.height == 0:
        return None

    timepoints = data.select("Timepoint", "TimepointLabel").unique().sort(
        "Timepoint",
        nulls_last=True,
    )["TimepointLabel"].to_list()

    return (
        alt.Chart(data)
        .mark_bar()
        .encode(
            alt.X("TimepointLabel:N").sort(timepoints).title("Timepoint").axis(labelAngle=-45),
            alt.XOffset("SampleID:N"),
            alt.Y("RelativeFrequency:Q")
            .stack("zero")
            .axis(format="%")
            .title("Relative frequency"),
            alt.Color("TaxonLabel:N")
            .scale(_color_scale(data["TaxonLabel"].unique().to_list()))
            .title(rank),
            tooltip=[
                alt.Tooltip("SampleID:N", title="Sample"),
                alt.Tooltip("TimepointLabel:N", title="Timepoint"),
                alt.Tooltip("SampleType:N", title="Sample type"),
                alt.Tooltip("LibraryMethod:N", title="Library"),
                alt.Tooltip("TaxonLabel:N", title=rank),
                alt.Tooltip("Count:Q", title="Reads", format=","),
                alt.Tooltip("RelativeFrequency:Q", title="Relative frequency", format=".3%"),
            ],
        )
        .properties(
            width=max(300, len(timepoints) * 60),
            height=300,
            title=title or f"Subject {subject}",
        )
    )


def _safe_name(text: str) -> str:
    return re.sub(r"[^A-Za-z0-9_-]+", "_", text).strip("_") or "unnamed"


def longitudinal_bar_charts(
    abundance: AbundanceTable,
    output_dir: Path,
    rank: str = "Family",
    top_n: int = 10,
    formats: list[str] | None = None,
) -> list[Path]:
    """
    Write one longitudinal bar chart per non-control subject.

    Files are named `longitudinal_<subject>` under output_dir.

    Returns:
        List of paths to saved files
    """
    if formats is None:
        formats = ["html"]

    subjects = (
        abundance.data.filter(~pl.col("IsControl").fill_null(False))["Subject"]
        .drop_nulls()
        .unique()
        .sort()
        .to_list()
    )

    saved: list[Path] = []
    for subject in subjects:
        chart = longitudinal_bar_chart(abundance, subject, rank, top_n)
        if chart is None:
            continue
        saved.extend(
            save_chart(chart, output_dir / f"longitudinal_{_safe_name(subject)}", formats),
        )
    return saved


def study_group_bar_chart(
    abundance: AbundanceTable,
    rank: str = "Family",
    top_n: int = 15,
    title: str = "Mean Relative Frequency by Study Group",
) -> alt.Chart | None:
    """
    Build a grouped bar chart of mean relative frequency per rank label.

    Controls are excluded; samples without a StudyGroup are shown as
    "unassigned".

    Returns:
        Altair chart, or None when there is nothing to plot
    """
    register_virome_theme()

    cohort = abundance.cohort()
    if len(cohort) == 0:
        return None

    top = cohort.top_taxa(top_n, rank) if rank in cohort.data.columns else []
    labelled = replace(cohort, data=with_taxon_label(cohort.data, rank))
    data = (
        labelled.filter(pl.col("TaxonLabel").is_in(top))
        .summarize(["StudyGroup"], "TaxonLabel")
        .with_columns(pl.col("StudyGroup").fill_null("unassigned"))
        .sort(["TaxonLabel", "StudyGroup"])
    )
    if data.height == 0:
        return None

    return (
        alt.Chart(data)
        .mark_bar()
        .encode(
            alt.X("TaxonLabel:N").sort(top).title(rank).axis(labelAngle=-45),
            alt.XOffset("StudyGroup:N"),
            alt.Y("MeanRelativeFrequency:Q").axis(format="%").title("Mean relative frequency"),
            alt.Color("StudyGroup:N").title("Study group"),
            tooltip=[
                alt.Tooltip("StudyGroup:N", title="Study group"),
                alt.Tooltip("TaxonLabel:N", title=rank),
                alt.Tooltip("GroupSamples:Q", title="Samples"),
                alt.Tooltip("MeanRelativeFrequency:Q", title="Mean frequency", format=".3%"),
            ],
        )
        .properties(width=max(400, len(top) * 40), height=300, title=title)
    )


def study_group_bar(
    abundance: AbundanceTable,
    output_path: Path,
    rank: str = "Family",
    top_n: int = 15,
    formats: list[str] | None = None,
) -> list[Path]:
    """
    Write the study-group bar chart.

    Returns:
        List of paths to saved files (empty when there is nothing to plot)
    """
    if formats is None:
        formats = ["html"]

    chart = study_group_bar_chart(abundance, rank, top_n)
    if chart is None:
        return []
    return save_chart(chart, output_path, formats)
