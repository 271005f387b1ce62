"""
Configuration for the virome report.

Every path and every dataset-specific naming convention lives in
`ReportConfig`. Values come from defaults, an optional YAML file, and finally
command-line overrides.

Example YAML:

    data_dir: /data/scid_virome
    count_column_renames:
      "P07_S_2_1_WGS.1": "P07_S_2_1_WGS"
    study_groups:
      P01: SCID
      P02: healthy
    strict: false
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import SchemaError
from .schema import RANKS

DEFAULT_SAMPLE_FILENAME_PATTERN = (
    r"^(?:.*/)?(?P<sample>[^/]+?)(?:\.(?:fastq|fq|fasta|fa|bam|sam|tsv|txt))?(?:\.gz)?$"
)


class RunSummaryColumns(BaseModel):
    """Column names of the pipeline run-summary table."""

    sample_filename: str = "sample_filename"
    mapped_reads: str = "mapped_reads"
    database: str = "database"


class ReportConfig(BaseModel):
    """All knobs of one report run."""

    data_dir: Path = Path()
    taxonomy_file: str = "taxonomy.tsv"
    counts_file: str = "counts.tsv"
    samples_file: str = "samples.tsv"
    run_summary_file: str = "run_summary.tsv"

    # Literal renames for sample headers the upstream file naming corrupted
    count_column_renames: dict[str, str] = Field(default_factory=dict)

    sample_type_recodes: dict[str, str] = Field(
        default_factory=lambda: {"1": "EC", "blank": "EC"},
    )
    # Recoded sample types whose meaning is not confirmed; flagged per sample
    ambiguous_sample_types: list[str] = Field(default_factory=lambda: ["1"])
    control_sample_types: list[str] = Field(default_factory=lambda: ["EC"])
    deriving_id_aliases: dict[str, str] = Field(
        default_factory=lambda: {"library_blank": "library-blank"},
    )
    sample_filename_pattern: str = DEFAULT_SAMPLE_FILENAME_PATTERN
    run_summary_columns: RunSummaryColumns = Field(default_factory=RunSummaryColumns)
    date_format: str = "%Y-%m-%d"
    study_groups: dict[str, str] = Field(default_factory=dict)

    kingdom: str = "Viruses"
    condensed_rank: str = "Family"
    condensed_top_n: int = Field(default=25, gt=0)
    heatmap_width: int = Field(default=800, gt=0)
    heatmap_height: int = Field(default=1100, gt=0)

    strict: bool = False

    @field_validator("condensed_rank")
    @classmethod
    def _known_rank(cls, value: str) -> str:
        if value not in RANKS:
            msg = f"condensed_rank must be one of: {', '.join(RANKS)}"
            raise ValueError(msg)
        return value

    def input_path(self, name: str) -> Path:
        """Resolve an input file name against the data directory."""
        return self.data_dir / name

    @property
    def taxonomy_path(self) -> Path:
        return self.input_path(self.taxonomy_file)

    @property
    def counts_path(self) -> Path:
        return self.input_path(self.counts_file)

    @property
    def samples_path(self) -> Path:
        return self.input_path(self.samples_file)

    @property
    def run_summary_path(self) -> Path:
        return self.input_path(self.run_summary_file)


def load_config(
    config_path: Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> ReportConfig:
    """
    Build a ReportConfig from an optional YAML file plus overrides.

    Args:
        config_path: YAML file with ReportConfig fields (optional)
        overrides: Values taking precedence over the file, None values ignored

    Returns:
        Validated ReportConfig

    Raises:
        SchemaError: If the file cannot be read or fails validation
    """
    values: dict[str, Any] = {}

    if config_path is not None:
        try:
            loaded = yaml.safe_load(Path(config_path).read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as e:
            msg = f"Could not read config file {config_path}: {e}"
            raise SchemaError(msg) from e
        if loaded is not None and not isinstance(loaded, dict):
            msg = f"Config file {config_path} must contain a mapping"
            raise SchemaError(msg)
        values.update(loaded or {})

    if overrides:
        values.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return ReportConfig.model_validate(values)
    except ValidationError as e:
        msg = f"Invalid configuration: {e}"
        raise SchemaError(msg) from e
