"""
Pydantic models and shared column definitions for the virome report.

These models define the structured records that flow out of reconciliation
and aggregation:
- Diagnostics collected instead of silently producing null metadata
- Per-sample join outcomes
- The JSON run summary written next to the HTML report

Column names of the long-format abundance table are also defined here so
loaders, aggregation and charts agree on a single vocabulary.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

# Canonical rank order, highest to lowest. Strain comes after the standard ranks.
RANKS = [
    "Kingdom",
    "Phylum",
    "Class",
    "Order",
    "Family",
    "Genus",
    "Species",
    "Strain",
]

# Taxon table header (classifier naming) -> canonical rank name
TAXONOMY_RENAME_MAP = {
    "tax_id": "TaxID",
    "superkingdom": "Kingdom",
    "phylum": "Phylum",
    "class": "Class",
    "order": "Order",
    "family": "Family",
    "genus": "Genus",
    "species": "Species",
    "name": "Strain",
}

SAMPLE_COLUMNS = [
    "SampleID",
    "DerivingSampleID",
    "Subject",
    "SampleTypeRaw",
    "SampleType",
    "SampleNo",
    "ExtractionNo",
    "LibraryMethod",
    "IsControl",
    "Timepoint",
    "Location",
    "StudyGroup",
    "MappedReads",
    "ReferenceDatabase",
    "Parsed",
    "MetadataMatched",
    "RunSummaryMatched",
]

ABUNDANCE_COLUMNS = [
    "TaxID",
    *RANKS,
    "TaxonomyMatched",
    *SAMPLE_COLUMNS,
    "Count",
    "TotalCount",
    "RelativeFrequency",
]


class DiagnosticKind(str, Enum):
    """Category of a reconciliation or aggregation problem."""

    UNPARSEABLE_SAMPLE_ID = "unparseable_sample_id"
    METADATA_UNMATCHED = "metadata_unmatched"
    RUN_SUMMARY_UNMATCHED = "run_summary_unmatched"
    DUPLICATE_METADATA_KEY = "duplicate_metadata_key"
    AMBIGUOUS_SAMPLE_TYPE = "ambiguous_sample_type"
    UNRESOLVED_TAXON = "unresolved_taxon"
    DEGENERATE_SAMPLE = "degenerate_sample"


class Diagnostic(BaseModel):
    """A single problem found while reconciling or aggregating."""

    kind: DiagnosticKind
    sample_id: str = Field(description="Raw sample identifier or metadata key")
    detail: str = Field(description="Human-readable explanation")
    is_control: bool = Field(
        default=False,
        description="Whether the affected sample is an extraction control",
    )


class SampleJoinOutcome(BaseModel):
    """Result of decomposing one sample identifier and joining its metadata."""

    sample_id: str
    parsed: bool
    metadata_matched: bool = False
    run_summary_matched: bool = False
    reason: Optional[str] = None

    @property
    def complete(self) -> bool:
        """True when the identifier parsed and both metadata sources matched."""
        return self.parsed and self.metadata_matched and self.run_summary_matched


class ReportSummary(BaseModel):
    """Top-level run summary written as JSON alongside the HTML report."""

    generated_at: datetime
    data_dir: str
    kingdom: str
    sample_count: int = Field(ge=0)
    control_sample_count: int = Field(ge=0)
    taxon_count: int = Field(ge=0)
    total_reads: int = Field(ge=0)
    kingdom_reads: int = Field(ge=0, description="Reads assigned to the kingdom of interest")
    kingdom_taxon_count: int = Field(ge=0)
    outcomes: list[SampleJoinOutcome] = Field(default_factory=list)
    diagnostics: list[Diagnostic] = Field(default_factory=list)
    outputs: list[str] = Field(default_factory=list, description="Written file paths")
