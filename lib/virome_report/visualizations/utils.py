"""
Altair theme and chart utilities for virome report visualizations.

Provides a consistent visual theme, shared chart-data helpers, and one
function for saving charts in multiple formats (HTML, SVG, PNG).
"""

from __future__ import annotations

from pathlib import Path

import altair as alt
import polars as pl
from loguru import logger

from virome_report.schema import RANKS

COLORS = {
    "primary": "#2563eb",  # Blue
    "secondary": "#64748b",  # Slate
    "viral": "#7c3aed",  # Violet
    "control": "#f59e0b",  # Amber
    "other": "#cbd5e1",  # Light slate
}

# Sequential color scheme for heatmaps
HEATMAP_SCHEME = "viridis"

# Categorical scheme for rank labels in stacked bars
CATEGORY_SCHEME = "tableau20"

OTHER_LABEL = "Other"
UNKNOWN_TIMEPOINT = "unknown"


@alt.theme.register("virome", enable=True)
def _virome_theme() -> alt.theme.ThemeConfig:
    """Return the virome report Altair theme configuration."""
    return alt.theme.ThemeConfig(
        {
            "background": "#ffffff",
            "config": {
                "title": {
                    "fontSize": 16,
                    "fontWeight": "bold",
                    "anchor": "start",
                    "color": "#1e293b",
                },
                "axis": {
                    "labelFontSize": 10,
                    "titleFontSize": 12,
                    "titleColor": "#475569",
                    "labelColor": "#64748b",
                    "gridColor": "#e2e8f0",
                    "domainColor": "#cbd5e1",
                    "labelLimit": 260,
                },
                "legend": {
                    "labelFontSize": 10,
                    "titleFontSize": 12,
                    "titleColor": "#475569",
                    "labelColor": "#64748b",
                    "labelLimit": 260,
                },
                "view": {
                    "strokeWidth": 0,
                },
            },
        }
    )


def register_virome_theme() -> None:
    """
    Enable the virome report Altair theme.

    The theme is registered via decorator at import time; calling this makes
    sure it is the active one even if another theme was enabled since.
    """
    alt.theme.enable("virome")


def with_taxon_label(data: pl.DataFrame, rank: str) -> pl.DataFrame:
    """
    Add a TaxonLabel column: the label at `rank`, falling back to lower-
    resolution ranks above it and finally to the tax ID.
    """
    fallbacks = [pl.col(r) for r in reversed(RANKS[: RANKS.index(rank) + 1])]
    return data.with_columns(
        pl.coalesce(
            *fallbacks,
            pl.concat_str(pl.lit("taxid:"), pl.col("TaxID").cast(pl.String)),
        ).alias("TaxonLabel"),
    )


def with_timepoint_label(data: pl.DataFrame) -> pl.DataFrame:
    """Add TimepointLabel (ISO date string, 'unknown' when missing)."""
    return data.with_columns(
        pl.col("Timepoint")
        .dt.strftime("%Y-%m-%d")
        .fill_null(UNKNOWN_TIMEPOINT)
        .alias("TimepointLabel"),
    )


# Extra keyword arguments to Chart.save per output format
SAVE_OPTIONS: dict[str, dict] = {
    "html": {"embed_options": {"renderer": "svg"}},
    "svg": {},
    "png": {"scale_factor": 2},
}


def save_chart(
    chart: alt.TopLevelMixin,
    output_path: Path,
    formats: list[str] | None = None,
) -> list[Path]:
    """
    Write a report figure once per requested format.

    `output_path` has no extension; each format adds its own suffix, and the
    parent directory (usually the report's figures/) is created. SVG and PNG
    go through vl-convert. Formats are checked before anything is written.

    Returns:
        Paths of the written files, in the order of `formats`
    """
    if formats is None:
        formats = ["html"]

    unknown = [fmt for fmt in formats if fmt not in SAVE_OPTIONS]
    if unknown:
        msg = f"Unsupported format: {', '.join(unknown)}. Use one of: {', '.join(SAVE_OPTIONS)}"
        raise ValueError(msg)

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    saved_paths = []
    for fmt in formats:
        path = output_path.with_name(f"{output_path.name}.{fmt}")
        chart.save(path, **SAVE_OPTIONS[fmt])
        logger.debug(f"Wrote figure {path}")
        saved_paths.append(path)
    return saved_paths
