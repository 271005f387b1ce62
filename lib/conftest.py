"""Shared fixtures: a small four-table virome dataset written to tmp_path."""

from pathlib import Path

import pytest
from virome_report.config import ReportConfig


def write_tsv(path: Path, rows: list[list[str]]) -> Path:
    """Write rows as a tab-separated file."""
    path.write_text("\n".join("\t".join(row) for row in rows) + "\n")
    return path


TAXONOMY_ROWS = [
    ["tax_id", "superkingdom", "phylum", "class", "order", "family", "genus", "species", "name"],
    ["1001", "Viruses", "Uroviricota", "Caudoviricetes", "Caudovirales", "Siphoviridae", "Lambdavirus", "Escherichia virus Lambda", "Lambda phage"],
    ["1002", "Viruses", "Cressdnaviricota", "Arfiviricetes", "Cirlivirales", "Circoviridae", "Circovirus", "Porcine circovirus 2", "PCV2"],
    ["1003", "Viruses", "Pisuviricota", "Pisoniviricetes", "Picornavirales", "Picornaviridae", "Enterovirus", "Enterovirus A", ""],
    ["2001", "Bacteria", "Pseudomonadota", "Gammaproteobacteria", "Enterobacterales", "Enterobacteriaceae", "Escherichia", "Escherichia coli", "E. coli K-12"],
    ["2002", "Bacteria", "Bacillota", "Bacilli", "Lactobacillales", "Streptococcaceae", "Streptococcus", "Streptococcus mitis", "S. mitis"],
]  # fmt: skip

# Per-sample totals: 200, 200, 100, 3. Viral reads: 100, 100, 20, 1.
COUNT_ROWS = [
    ["tax_id", "P01_S_1_1_WGS", "P01_S_2_1_WGS", "P02_S_1_WGS", "library_blank_WGS"],
    ["1001", "10", "0", "5", "0"],
    ["1002", "90", "40", "0", "1"],
    ["1003", "0", "60", "15", "0"],
    ["2001", "100", "100", "80", "2"],
    ["2002", "0", "", "0", "0"],
]

SAMPLE_ROWS = [
    ["Subject", "SampleType", "SampleNo", "Timepoint", "Location", "StudyGroup"],
    ["P01", "S", "1", "2021-03-01", "Ward A", "SCID"],
    ["P01", "S", "2", "2021-04-01", "Ward A", "SCID"],
    ["P02", "S", "1", "2021-03-15", "Ward B", "healthy"],
    ["library", "blank", "", "", "", ""],
]

RUN_SUMMARY_ROWS = [
    ["sample_filename", "mapped_reads", "database"],
    ["P01_S_1_1_WGS.fastq.gz", "250", "refseq_viral"],
    ["P01_S_2_1_WGS.fastq.gz", "260", "refseq_viral"],
    ["P02_S_1_WGS.fastq.gz", "120", "refseq_viral"],
    ["library-blank_WGS.fastq.gz", "5", "refseq_viral"],
]

VIRAL_READS = 221
TOTAL_READS = 503


@pytest.fixture
def dataset_dir(tmp_path: Path) -> Path:
    """Directory holding taxonomy, counts, samples and run summary tables."""
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    write_tsv(data_dir / "taxonomy.tsv", TAXONOMY_ROWS)
    write_tsv(data_dir / "counts.tsv", COUNT_ROWS)
    write_tsv(data_dir / "samples.tsv", SAMPLE_ROWS)
    write_tsv(data_dir / "run_summary.tsv", RUN_SUMMARY_ROWS)
    return data_dir


@pytest.fixture
def report_config(dataset_dir: Path) -> ReportConfig:
    """Default configuration pointed at the fixture dataset."""
    return ReportConfig(data_dir=dataset_dir)


@pytest.fixture
def zero_viral_config(dataset_dir: Path) -> ReportConfig:
    """Fixture dataset plus a third SCID sample with bacterial reads only."""
    extra = ["P01_S_3_1_WGS", "0", "0", "0", "50", "0"]
    write_tsv(dataset_dir / "counts.tsv", [[*row, cell] for row, cell in zip(COUNT_ROWS, extra, strict=True)])
    write_tsv(dataset_dir / "samples.tsv", [*SAMPLE_ROWS, ["P01", "S", "3", "2021-05-01", "Ward A", "SCID"]])
    write_tsv(
        dataset_dir / "run_summary.tsv",
        [*RUN_SUMMARY_ROWS, ["P01_S_3_1_WGS.fastq.gz", "60", "refseq_viral"]],
    )
    return ReportConfig(data_dir=dataset_dir)
