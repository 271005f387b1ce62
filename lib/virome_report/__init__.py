"""
Virome report package.

Loads taxonomic classification counts from a metagenomic sequencing pipeline,
reconciles them with sample metadata, and produces descriptive tables,
heatmaps and longitudinal charts of viral abundance across patient cohorts.

Subpackages:
    loaders: Taxon table, count matrix, sample table and run-summary readers
    visualizations: Altair heatmaps and bar charts

Modules:
    sample_ids: Sample identifier grammar
    reconcile: Sample metadata reconciliation
    aggregate: Joined long-format abundance table and summaries
    tables: Summary tables and TSV output
    report: HTML report and JSON run summary
    pipeline: End-to-end report run
    config: Report configuration
    errors: Exception hierarchy
    schema: Pydantic models and shared column names
"""

from .aggregate import AbundanceTable, agglomerate
from .config import ReportConfig, load_config
from .errors import (
    DegenerateAggregationError,
    KeyMismatchError,
    SchemaError,
    ViromeReportError,
)
from .pipeline import build_report, load_inputs, run_report
from .reconcile import ReconciledSamples, reconcile_samples
from .sample_ids import parse_sample_id

__all__ = [
    "AbundanceTable",
    "DegenerateAggregationError",
    "KeyMismatchError",
    "ReconciledSamples",
    "ReportConfig",
    "SchemaError",
    "ViromeReportError",
    "agglomerate",
    "build_report",
    "load_config",
    "load_inputs",
    "parse_sample_id",
    "reconcile_samples",
    "run_report",
]
