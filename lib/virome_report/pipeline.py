"""
End-to-end report run.

    load_inputs    read and validate all four input tables
    build_report   reconcile sample metadata and agglomerate abundance
    run_report     write tables, figures, the HTML report and the JSON summary

Every input is read and every join is done before the first output file is
written, so a schema or strict-mode error leaves the output directory alone.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import polars as pl
from loguru import logger

from .aggregate import AbundanceTable, agglomerate
from .loaders import (
    build_taxonomy_index,
    load_count_matrix,
    load_run_summary,
    load_sample_table,
    load_taxonomy,
    sample_columns,
)
from .reconcile import ReconciledSamples, reconcile_samples
from .report import (
    REPORT_FILENAME,
    build_summary,
    outcomes_table,
    write_html_report,
    write_summary_json,
)
from .tables import (
    diagnostics_table,
    kingdom_reads_by_sample,
    kingdom_tally,
    rank_summary,
    read_depth_table,
    sample_tally,
    write_tables,
)
from .visualizations import (
    abundance_heatmap_chart,
    condensed_heatmap,
    full_heatmap,
    longitudinal_bar_chart,
    longitudinal_bar_charts,
    study_group_bar,
    study_group_bar_chart,
)

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

    from .config import ReportConfig
    from .loaders import TaxonRecord
    from .schema import ReportSummary

FIGURES_DIR = "figures"
TABLES_DIR = "tables"


@dataclass(frozen=True)
class ReportInputs:
    """The four validated input tables and the tax ID index built from the taxon table."""

    taxonomy: pl.DataFrame
    taxa: Mapping[int, TaxonRecord]
    matrix: pl.DataFrame
    sample_table: pl.DataFrame
    run_summary: pl.DataFrame


@dataclass(frozen=True)
class ReportData:
    """Reconciled samples and the joined abundance table for one run."""

    config: ReportConfig
    samples: ReconciledSamples
    abundance: AbundanceTable

    @property
    def kingdom(self) -> AbundanceTable:
        """Abundance records of the kingdom of interest."""
        return self.abundance.filter_kingdom(self.config.kingdom)


def load_inputs(config: ReportConfig) -> ReportInputs:
    """
    Read all input tables named by the configuration.

    Raises:
        SchemaError: If any table is missing, unreadable or malformed
    """
    logger.info(f"Loading inputs from {config.data_dir}")
    taxonomy = load_taxonomy(config.taxonomy_path)
    return ReportInputs(
        taxonomy=taxonomy,
        taxa=build_taxonomy_index(taxonomy),
        matrix=load_count_matrix(config.counts_path, config.count_column_renames),
        sample_table=load_sample_table(config.samples_path, config.date_format),
        run_summary=load_run_summary(
            config.run_summary_path,
            config.run_summary_columns,
            config.sample_filename_pattern,
        ),
    )


def build_report(config: ReportConfig, inputs: ReportInputs | None = None) -> ReportData:
    """
    Reconcile and agglomerate, without writing anything.

    Args:
        config: Report configuration
        inputs: Pre-loaded inputs; loaded from config when None

    Raises:
        SchemaError: If any input table is malformed
        KeyMismatchError: In strict mode, on unparseable or unmatched samples
        DegenerateAggregationError: In strict mode, on zero-total samples
    """
    if inputs is None:
        inputs = load_inputs(config)

    samples = reconcile_samples(
        sample_columns(inputs.matrix),
        inputs.sample_table,
        inputs.run_summary,
        config,
    )
    abundance = agglomerate(
        inputs.matrix,
        samples,
        inputs.taxonomy,
        taxa=inputs.taxa,
        strict=config.strict,
    )
    return ReportData(config=config, samples=samples, abundance=abundance)


def report_tables(data: ReportData) -> dict[str, tuple[str, pl.DataFrame]]:
    """All summary tables, keyed by output name, with a display title."""
    kingdom = data.config.kingdom
    return {
        "sample_tally": ("Samples per type, library method and study group", sample_tally(data.samples.table)),
        "kingdom_tally": ("Reads per kingdom", kingdom_tally(data.abundance)),
        "viral_family_summary": (
            f"{kingdom} reads per Family and study group",
            rank_summary(data.abundance, kingdom, "Family", ("StudyGroup",)),
        ),
        "viral_reads_by_sample": (
            f"{kingdom} reads per sample",
            kingdom_reads_by_sample(data.abundance, data.samples.table, kingdom),
        ),
        "read_depth": ("Classified reads vs. mapped reads", read_depth_table(data.abundance, data.samples.table)),
        "sample_outcomes": ("Sample identifier outcomes", outcomes_table(data.samples)),
        "diagnostics": ("Diagnostics", diagnostics_table(data.abundance.diagnostics)),
    }  # fmt: skip


def write_figures(
    data: ReportData,
    figures_dir: Path,
    figure_formats: list[str] | None = None,
) -> list[Path]:
    """
    Write heatmaps in `figure_formats` (SVG by default) and the interactive
    bar charts as HTML.
    """
    if figure_formats is None:
        figure_formats = ["svg"]

    config = data.config
    kingdom = data.kingdom
    written: list[Path] = []

    written.extend(
        full_heatmap(
            kingdom,
            figures_dir / "viral_heatmap_full",
            formats=figure_formats,
            width=config.heatmap_width,
            height=config.heatmap_height,
            title=f"{config.kingdom} abundance (all taxa)",
        ),
    )
    written.extend(
        condensed_heatmap(
            kingdom,
            figures_dir / "viral_heatmap_condensed",
            rank=config.condensed_rank,
            top_n=config.condensed_top_n,
            formats=figure_formats,
            width=config.heatmap_width,
        ),
    )
    written.extend(
        longitudinal_bar_charts(kingdom, figures_dir, rank=config.condensed_rank, formats=["html"]),
    )
    written.extend(
        study_group_bar(
            kingdom,
            figures_dir / "study_group_bar",
            rank=config.condensed_rank,
            formats=["html"],
        ),
    )

    if not written:
        logger.warning(f"No {config.kingdom} reads to plot; no figures written")
    return written


def embedded_charts(data: ReportData) -> dict:
    """Charts embedded in the HTML report, keyed by display title."""
    config = data.config
    kingdom = data.kingdom
    charts = {
        f"{config.kingdom} by {config.condensed_rank} (top {config.condensed_top_n})": abundance_heatmap_chart(
            kingdom,
            rank=config.condensed_rank,
            top_n=config.condensed_top_n,
            width=config.heatmap_width,
            height=500,
            title=f"{config.kingdom} abundance by {config.condensed_rank}",
        ),
        "Study groups": study_group_bar_chart(kingdom, rank=config.condensed_rank),
    }
    subjects = (
        data.samples.table.filter(~pl.col("IsControl"))["Subject"]
        .drop_nulls()
        .unique()
        .sort()
        .to_list()
    )
    for subject in subjects:
        charts[f"Subject {subject}"] = longitudinal_bar_chart(
            kingdom,
            subject,
            rank=config.condensed_rank,
        )
    return {title: chart for title, chart in charts.items() if chart is not None}


def run_report(
    config: ReportConfig,
    output_dir: Path,
    figure_formats: list[str] | None = None,
) -> ReportSummary:
    """
    Produce every report output under output_dir.

    Layout:
        figures/   heatmaps, longitudinal and study-group charts
        tables/    summary tables as TSV
        virome_report.html
        virome_report_summary.json

    Returns:
        The ReportSummary that was written as JSON
    """
    data = build_report(config)

    tables = report_tables(data)
    written = write_tables({name: df for name, (_, df) in tables.items()}, output_dir / TABLES_DIR)

    figures = write_figures(data, output_dir / FIGURES_DIR, figure_formats)
    written.extend(figures)

    report_path = output_dir / REPORT_FILENAME
    written.append(report_path)
    summary = build_summary(config, data.samples, data.abundance, written)

    write_html_report(
        output_dir,
        summary,
        tables,
        embedded_charts(data),
        [str(p.relative_to(output_dir)) for p in figures],
    )
    summary_path = write_summary_json(output_dir, summary)

    logger.success(
        f"Report for {summary.sample_count} samples written to {output_dir} "
        f"({len(written) + 1} files, {len(summary.diagnostics)} diagnostics)",
    )
    logger.debug(f"Run summary at {summary_path}")
    return summary
