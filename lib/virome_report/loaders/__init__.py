"""
Input table loaders for the virome report.

Each loader reads one flat delimited file, validates the columns it needs and
returns a typed polars DataFrame. Schema problems raise SchemaError before any
output is produced.

Loaders:
    taxonomy: Taxon table with canonical rank columns
    counts: Taxon-by-sample read count matrix
    metadata: Sample table and pipeline run summary
"""

from .counts import counts_to_long, load_count_matrix, sample_columns
from .metadata import load_run_summary, load_sample_table
from .taxonomy import TaxonRecord, build_taxonomy_index, load_taxonomy

__all__ = [
    "TaxonRecord",
    "build_taxonomy_index",
    "counts_to_long",
    "load_count_matrix",
    "load_run_summary",
    "load_sample_table",
    "load_taxonomy",
    "sample_columns",
]
