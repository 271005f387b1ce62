"""Tests for abundance aggregation."""

from pathlib import Path

import polars as pl
import pytest
from conftest import COUNT_ROWS, TOTAL_READS, VIRAL_READS
from virome_report.aggregate import AbundanceTable, agglomerate
from virome_report.config import ReportConfig
from virome_report.errors import DegenerateAggregationError
from virome_report.loaders import (
    load_count_matrix,
    load_run_summary,
    load_sample_table,
    load_taxonomy,
    sample_columns,
)
from virome_report.pipeline import build_report
from virome_report.reconcile import reconcile_samples
from virome_report.schema import ABUNDANCE_COLUMNS, RANKS, DiagnosticKind

EMPTY_SAMPLE_TABLE = pl.DataFrame(
    schema={
        "Subject": pl.String,
        "SampleType": pl.String,
        "SampleNo": pl.String,
        "Timepoint": pl.Date,
        "Location": pl.String,
        "StudyGroup": pl.String,
    },
)
EMPTY_RUN_SUMMARY = pl.DataFrame(
    schema={
        "RunKey": pl.String,
        "SampleFilename": pl.String,
        "MappedReads": pl.Int64,
        "ReferenceDatabase": pl.String,
    },
)


def _taxonomy(rows: dict[int, str]) -> pl.DataFrame:
    """Minimal taxon table: tax ID -> Kingdom, other ranks named after the ID."""
    return pl.DataFrame(
        {
            "TaxID": list(rows),
            "Kingdom": list(rows.values()),
            **{rank: [f"{rank}_{t}" for t in rows] for rank in RANKS[1:]},
        },
        schema={"TaxID": pl.Int64, **dict.fromkeys(RANKS, pl.String)},
    )


def _agglomerate_matrix(matrix: pl.DataFrame, taxonomy: pl.DataFrame, **kwargs) -> AbundanceTable:
    config = ReportConfig()
    samples = reconcile_samples(sample_columns(matrix), EMPTY_SAMPLE_TABLE, EMPTY_RUN_SUMMARY, config)
    return agglomerate(matrix, samples, taxonomy, **kwargs)


@pytest.fixture
def abundance(dataset_dir: Path) -> AbundanceTable:
    """Abundance table of the fixture dataset."""
    config = ReportConfig(data_dir=dataset_dir)
    matrix = load_count_matrix(config.counts_path)
    samples = reconcile_samples(
        sample_columns(matrix),
        load_sample_table(config.samples_path),
        load_run_summary(config.run_summary_path),
        config,
    )
    return agglomerate(matrix, samples, load_taxonomy(config.taxonomy_path))


@pytest.fixture
def two_sample_matrix() -> pl.DataFrame:
    """Taxon 1001 {A: 10, B: 0}, taxon 1002 {A: 90, B: 5}."""
    return pl.DataFrame(
        {"TaxID": [1001, 1002], "SampleA": [10, 90], "SampleB": [0, 5]},
        schema={"TaxID": pl.Int64, "SampleA": pl.Int64, "SampleB": pl.Int64},
    )


class TestAgglomerate:
    """Test the joined long-format abundance table."""

    def test_columns(self, abundance: AbundanceTable) -> None:
        """Records carry taxon ranks, sample metadata and frequencies."""
        assert abundance.data.columns == ABUNDANCE_COLUMNS
        assert len(abundance) == 11

    def test_relative_frequency_sums_to_one(self, abundance: AbundanceTable) -> None:
        """Relative frequencies within each sample sum to 1."""
        sums = abundance.data.group_by("SampleID").agg(pl.col("RelativeFrequency").sum())
        for total in sums["RelativeFrequency"]:
            assert total == pytest.approx(1.0)

    def test_two_sample_example(self, two_sample_matrix: pl.DataFrame) -> None:
        """In SampleB taxon 1002 has frequency 1.0 and taxon 1001 has 0.0."""
        taxonomy = _taxonomy({1001: "Viruses", 1002: "Viruses"})
        table = _agglomerate_matrix(two_sample_matrix, taxonomy, keep_zeros=True)
        freq = {
            (row["SampleID"], row["TaxID"]): row["RelativeFrequency"]
            for row in table.data.iter_rows(named=True)
        }
        assert freq[("SampleB", 1002)] == pytest.approx(1.0)
        assert freq[("SampleB", 1001)] == 0.0
        assert freq[("SampleA", 1001)] == pytest.approx(0.1)
        assert freq[("SampleA", 1002)] == pytest.approx(0.9)

    def test_no_pair_dropped(self, dataset_dir: Path) -> None:
        """With explicit zeros every taxon x sample pair is present."""
        config = ReportConfig(data_dir=dataset_dir)
        matrix = load_count_matrix(config.counts_path)
        samples = reconcile_samples(
            sample_columns(matrix),
            load_sample_table(config.samples_path),
            load_run_summary(config.run_summary_path),
            config,
        )
        table = agglomerate(matrix, samples, load_taxonomy(config.taxonomy_path), keep_zeros=True)
        assert len(table) == matrix.height * len(sample_columns(matrix))
        assert table.data.select("TaxID", "SampleID").unique().height == len(table)

    def test_read_totals(self, abundance: AbundanceTable) -> None:
        """The joined table keeps every read."""
        assert abundance.total_reads == TOTAL_READS
        totals = dict(zip(abundance.sample_totals["SampleID"], abundance.sample_totals["TotalCount"], strict=True))
        assert totals == {
            "P01_S_1_1_WGS": 200,
            "P01_S_2_1_WGS": 200,
            "P02_S_1_WGS": 100,
            "library_blank_WGS": 3,
        }

    def test_viral_filter_preserves_viral_total(self, abundance: AbundanceTable, dataset_dir: Path) -> None:
        """Filtering by Kingdom keeps exactly the viral reads of the matrix."""
        viral = abundance.filter_kingdom("Viruses")
        assert viral.total_reads == VIRAL_READS
        matrix = load_count_matrix(dataset_dir / "counts.tsv")
        viral_ids = [1001, 1002, 1003]
        expected = sum(
            matrix.filter(pl.col("TaxID").is_in(viral_ids))[c].sum() for c in COUNT_ROWS[0][1:]
        )
        assert viral.total_reads == expected

    def test_kingdom_filter_is_exact(self, abundance: AbundanceTable) -> None:
        """Kingdom matching is exact, not a substring match."""
        assert len(abundance.filter_kingdom("Virus")) == 0

    def test_sample_metadata_joined(self, abundance: AbundanceTable) -> None:
        """Abundance records carry reconciled metadata."""
        row = abundance.data.filter(
            (pl.col("SampleID") == "P02_S_1_WGS") & (pl.col("TaxID") == 1003),
        ).row(0, named=True)
        assert row["Subject"] == "P02"
        assert row["StudyGroup"] == "healthy"
        assert row["Family"] == "Picornaviridae"
        assert row["RelativeFrequency"] == pytest.approx(0.15)

    def test_unresolved_taxon_kept(self, two_sample_matrix: pl.DataFrame) -> None:
        """Counts whose TaxID is missing from the taxonomy keep null ranks."""
        table = _agglomerate_matrix(two_sample_matrix, _taxonomy({1001: "Viruses"}))
        unresolved = table.data.filter(pl.col("TaxID") == 1002)
        assert unresolved.height == 2
        assert unresolved["TaxonomyMatched"].to_list() == [False, False]
        assert unresolved["Kingdom"].null_count() == 2
        assert table.total_reads == 105
        kinds = [d.kind for d in table.diagnostics]
        assert kinds.count(DiagnosticKind.UNRESOLVED_TAXON) == 1

    def test_degenerate_sample(self) -> None:
        """A zero-total sample gets frequency 0 and a diagnostic."""
        matrix = pl.DataFrame(
            {"TaxID": [1001, 1002], "SampleA": [3, 1], "SampleB": [0, 0]},
            schema={"TaxID": pl.Int64, "SampleA": pl.Int64, "SampleB": pl.Int64},
        )
        table = _agglomerate_matrix(matrix, _taxonomy({1001: "Viruses", 1002: "Bacteria"}), keep_zeros=True)
        sample_b = table.data.filter(pl.col("SampleID") == "SampleB")
        assert sample_b["RelativeFrequency"].to_list() == [0.0, 0.0]
        degenerate = [d for d in table.diagnostics if d.kind == DiagnosticKind.DEGENERATE_SAMPLE]
        assert [d.sample_id for d in degenerate] == ["SampleB"]

    def test_degenerate_sample_strict(self) -> None:
        """Strict mode raises on zero-total samples."""
        matrix = pl.DataFrame(
            {"TaxID": [1001], "SampleA": [3], "SampleB": [0]},
            schema={"TaxID": pl.Int64, "SampleA": pl.Int64, "SampleB": pl.Int64},
        )
        with pytest.raises(DegenerateAggregationError) as excinfo:
            _agglomerate_matrix(matrix, _taxonomy({1001: "Viruses"}), strict=True)
        assert excinfo.value.sample_ids == ["SampleB"]


class TestAbundanceViews:
    """Test filters, summaries and pivots on the abundance table."""

    def test_summarize_by_family(self, abundance: AbundanceTable) -> None:
        """Viral reads per Family, sorted by reads."""
        summary = abundance.filter_kingdom("Viruses").summarize([], "Family")
        assert summary["Family"].to_list() == ["Circoviridae", "Picornaviridae", "Siphoviridae"]
        assert summary["Reads"].to_list() == [131, 75, 15]
        assert summary["Samples"].to_list() == [3, 2, 2]

    def test_summarize_mean_frequency(self, abundance: AbundanceTable) -> None:
        """Mean relative frequency is averaged over every sample of the group."""
        summary = abundance.filter_kingdom("Viruses").summarize(["Subject"], "Family")
        row = summary.filter(
            (pl.col("Subject") == "P01") & (pl.col("Family") == "Circoviridae"),
        ).row(0, named=True)
        assert row["MeanRelativeFrequency"] == pytest.approx((0.45 + 0.2) / 2)

    def test_summarize_unknown_column(self, abundance: AbundanceTable) -> None:
        """Grouping by an unknown column is an error."""
        with pytest.raises(KeyError):
            abundance.summarize(["Ward"])

    def test_summarize_empty(self, abundance: AbundanceTable) -> None:
        """An empty table summarizes to an empty frame with the same columns."""
        summary = abundance.filter_kingdom("Archaea").summarize(["StudyGroup"], "Family")
        assert summary.height == 0
        assert summary.columns == [
            "StudyGroup",
            "Family",
            "Reads",
            "Samples",
            "GroupSamples",
            "Taxa",
            "MeanRelativeFrequency",
        ]

    def test_top_taxa(self, abundance: AbundanceTable) -> None:
        """Top labels by reads at a rank."""
        assert abundance.filter_kingdom("Viruses").top_taxa(2, "Family") == ["Circoviridae", "Picornaviridae"]

    def test_wide(self, abundance: AbundanceTable) -> None:
        """Pivot back to a label x sample matrix with zeros filled."""
        wide = abundance.filter_kingdom("Viruses").wide("Family")
        assert wide.columns == ["Family", *sorted(COUNT_ROWS[0][1:])]
        sipho = wide.filter(pl.col("Family") == "Siphoviridae").row(0, named=True)
        assert sipho["P01_S_1_1_WGS"] == 10
        assert sipho["P01_S_2_1_WGS"] == 0

    def test_filter_predicates(self, abundance: AbundanceTable) -> None:
        """Arbitrary polars predicates narrow the records."""
        controls = abundance.filter(pl.col("IsControl"))
        assert set(controls.data["SampleID"]) == {"library_blank_WGS"}

    def test_summarize_counts_samples_without_reads(self, zero_viral_config: ReportConfig) -> None:
        """A cohort sample with no viral reads lowers the group mean."""
        viral = build_report(zero_viral_config).kingdom.cohort()
        summary = viral.summarize(["StudyGroup"], "Family")
        row = summary.filter(
            (pl.col("StudyGroup") == "SCID") & (pl.col("Family") == "Picornaviridae"),
        ).row(0, named=True)
        assert row["Samples"] == 1
        assert row["GroupSamples"] == 3
        assert row["MeanRelativeFrequency"] == pytest.approx(0.1)

    def test_cohort_drops_controls(self, abundance: AbundanceTable) -> None:
        """Controls leave both the records and the sample population."""
        cohort = abundance.cohort()
        assert "library_blank_WGS" not in cohort.data["SampleID"].to_list()
        assert cohort.samples.height == 3
