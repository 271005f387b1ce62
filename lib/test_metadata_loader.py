"""Tests for the sample table and run summary loaders."""

from datetime import date
from pathlib import Path

import polars as pl
import pytest
from conftest import write_tsv
from virome_report.config import RunSummaryColumns
from virome_report.errors import SchemaError
from virome_report.loaders.metadata import load_run_summary, load_sample_table


class TestLoadSampleTable:
    """Test reading the subject/timepoint/location table."""

    def test_types_and_columns(self, dataset_dir: Path) -> None:
        """Timepoint is parsed as a date; StudyGroup is kept."""
        df = load_sample_table(dataset_dir / "samples.tsv")
        assert df.columns == ["Subject", "SampleType", "SampleNo", "Timepoint", "Location", "StudyGroup"]
        assert df.schema["Timepoint"] == pl.Date
        assert df["Timepoint"][0] == date(2021, 3, 1)

    def test_blank_cells_are_null(self, dataset_dir: Path) -> None:
        """The control row has null SampleNo and Timepoint."""
        df = load_sample_table(dataset_dir / "samples.tsv")
        control = df.filter(pl.col("Subject") == "library").row(0, named=True)
        assert control["SampleNo"] is None
        assert control["Timepoint"] is None
        assert control["StudyGroup"] is None

    def test_study_group_optional(self, tmp_path: Path) -> None:
        """A table without StudyGroup gets a null column."""
        path = write_tsv(
            tmp_path / "samples.tsv",
            [
                ["Subject", "SampleType", "SampleNo", "Timepoint", "Location", "Notes"],
                ["P01", "S", "1", "2021-03-01", "Ward A", "ignored"],
            ],
        )
        df = load_sample_table(path)
        assert "Notes" not in df.columns
        assert df["StudyGroup"].to_list() == [None]

    def test_custom_date_format(self, tmp_path: Path) -> None:
        """Dates follow the configured format."""
        path = write_tsv(
            tmp_path / "samples.tsv",
            [
                ["Subject", "SampleType", "SampleNo", "Timepoint", "Location"],
                ["P01", "S", "1", "01.03.2021", "Ward A"],
            ],
        )
        df = load_sample_table(path, date_format="%d.%m.%Y")
        assert df["Timepoint"].to_list() == [date(2021, 3, 1)]

    def test_bad_date(self, tmp_path: Path) -> None:
        """Dates not matching the format are schema errors."""
        path = write_tsv(
            tmp_path / "samples.tsv",
            [
                ["Subject", "SampleType", "SampleNo", "Timepoint", "Location"],
                ["P01", "S", "1", "March 2021", "Ward A"],
            ],
        )
        with pytest.raises(SchemaError, match="Timepoint"):
            load_sample_table(path)

    def test_missing_column(self, tmp_path: Path) -> None:
        """Location is required."""
        path = write_tsv(
            tmp_path / "samples.tsv",
            [["Subject", "SampleType", "SampleNo", "Timepoint"], ["P01", "S", "1", "2021-03-01"]],
        )
        with pytest.raises(SchemaError, match="Location"):
            load_sample_table(path)


class TestLoadRunSummary:
    """Test reading the pipeline run-summary table."""

    def test_run_key_from_filename(self, dataset_dir: Path) -> None:
        """The sample name is extracted from the read file name."""
        df = load_run_summary(dataset_dir / "run_summary.tsv")
        assert df.columns == ["RunKey", "SampleFilename", "MappedReads", "ReferenceDatabase"]
        assert df["RunKey"].to_list() == [
            "P01_S_1_1_WGS",
            "P01_S_2_1_WGS",
            "P02_S_1_WGS",
            "library-blank_WGS",
        ]
        assert df.schema["MappedReads"] == pl.Int64
        assert df["MappedReads"].to_list() == [250, 260, 120, 5]

    def test_directory_prefix_stripped(self, tmp_path: Path) -> None:
        """Paths in the filename column are reduced to the sample name."""
        path = write_tsv(
            tmp_path / "run_summary.tsv",
            [
                ["sample_filename", "mapped_reads", "database"],
                ["/runs/2021/P01_S_1_1_WGS.fq", "10", "db"],
            ],
        )
        assert load_run_summary(path)["RunKey"].to_list() == ["P01_S_1_1_WGS"]

    def test_custom_columns(self, tmp_path: Path) -> None:
        """Column names of the run summary are configurable."""
        path = write_tsv(
            tmp_path / "run_summary.tsv",
            [["file", "reads", "db"], ["P01_S_1_1_WGS.fastq.gz", "1.2e3", "refseq"]],
        )
        columns = RunSummaryColumns(sample_filename="file", mapped_reads="reads", database="db")
        df = load_run_summary(path, columns)
        assert df.row(0) == ("P01_S_1_1_WGS", "P01_S_1_1_WGS.fastq.gz", 1200, "refseq")

    def test_pattern_without_sample_group(self, dataset_dir: Path) -> None:
        """The filename pattern needs a named 'sample' group."""
        with pytest.raises(SchemaError, match="sample"):
            load_run_summary(dataset_dir / "run_summary.tsv", filename_pattern=r"^(.*)$")

    def test_non_numeric_mapped_reads(self, tmp_path: Path) -> None:
        """Mapped read counts must be numeric."""
        path = write_tsv(
            tmp_path / "run_summary.tsv",
            [["sample_filename", "mapped_reads", "database"], ["a.fastq", "lots", "db"]],
        )
        with pytest.raises(SchemaError, match="mapped_reads"):
            load_run_summary(path)

    @pytest.mark.parametrize("value", ["250.7", "-3"])
    def test_fractional_or_negative_mapped_reads(self, tmp_path: Path, value: str) -> None:
        """Mapped read counts are not rounded into integers."""
        path = write_tsv(
            tmp_path / "run_summary.tsv",
            [["sample_filename", "mapped_reads", "database"], ["P01_S_1_1_WGS.fastq.gz", value, "db"]],
        )
        with pytest.raises(SchemaError, match="non-integer 'mapped_reads' values for: P01_S_1_1_WGS.fastq.gz"):
            load_run_summary(path)

    def test_missing_column(self, tmp_path: Path) -> None:
        """The database column is required."""
        path = write_tsv(
            tmp_path / "run_summary.tsv",
            [["sample_filename", "mapped_reads"], ["a.fastq", "1"]],
        )
        with pytest.raises(SchemaError, match="database"):
            load_run_summary(path)
