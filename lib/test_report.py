"""Tests for the HTML report and JSON run summary."""

from pathlib import Path

import polars as pl
import pytest
from virome_report.config import ReportConfig
from virome_report.pipeline import ReportData, build_report, embedded_charts, report_tables
from virome_report.report import (
    MAX_HTML_ROWS,
    build_summary,
    outcomes_table,
    render_html,
    write_html_report,
    write_summary_json,
)
from virome_report.schema import ReportSummary


@pytest.fixture
def report_data(report_config: ReportConfig) -> ReportData:
    return build_report(report_config)


@pytest.fixture
def summary(report_data: ReportData) -> ReportSummary:
    return build_summary(report_data.config, report_data.samples, report_data.abundance)


class TestBuildSummary:
    """Test run-level counts."""

    def test_counts(self, summary: ReportSummary) -> None:
        """Sample, read and taxon counts of the fixture dataset."""
        assert summary.sample_count == 4
        assert summary.control_sample_count == 1
        assert summary.total_reads == 503
        assert summary.kingdom == "Viruses"
        assert summary.kingdom_reads == 221
        assert summary.kingdom_taxon_count == 3
        assert summary.taxon_count == 4

    def test_outcomes_sorted(self, summary: ReportSummary) -> None:
        """Outcomes are listed by sample ID, all complete."""
        ids = [o.sample_id for o in summary.outcomes]
        assert ids == sorted(ids)
        assert all(o.complete for o in summary.outcomes)


class TestOutcomesTable:
    """Test the per-sample outcome table."""

    def test_rows(self, report_data: ReportData) -> None:
        """One row per sample."""
        table = outcomes_table(report_data.samples)
        assert table.height == 4
        assert table["parsed"].all()


class TestRenderHtml:
    """Test the report document."""

    def test_tab_panels(self, report_data: ReportData, summary: ReportSummary) -> None:
        """The document has the four panels and embedded charts."""
        html = render_html(summary, report_tables(report_data), embedded_charts(report_data))
        for panel in ("overview", "abundance", "charts", "diagnostics"):
            assert f'id="{panel}"' in html
        assert "vegaEmbed(" in html
        assert "Circoviridae" in html

    def test_values_are_escaped(self, summary: ReportSummary) -> None:
        """Table cells are HTML-escaped."""
        df = pl.DataFrame({"Location": ["<b>Ward</b>"]})
        html = render_html(summary, {"custom": ("Custom", df)})
        assert "&lt;b&gt;Ward&lt;/b&gt;" in html
        assert "<b>Ward</b>" not in html

    def test_long_tables_truncated(self, summary: ReportSummary) -> None:
        """Only the first rows of long tables are rendered."""
        df = pl.DataFrame({"n": list(range(MAX_HTML_ROWS + 10))})
        html = render_html(summary, {"long": ("Long", df)})
        assert f"Showing {MAX_HTML_ROWS} of {MAX_HTML_ROWS + 10} rows" in html


class TestWriteOutputs:
    """Test writing the report files."""

    def test_html_file(self, report_data: ReportData, summary: ReportSummary, tmp_path: Path) -> None:
        """The report is written as virome_report.html."""
        path = write_html_report(tmp_path, summary, report_tables(report_data))
        assert path == tmp_path / "virome_report.html"
        assert path.read_text().startswith("<!DOCTYPE html>")

    def test_summary_json_round_trip(self, summary: ReportSummary, tmp_path: Path) -> None:
        """The JSON summary validates back into the model."""
        path = write_summary_json(tmp_path, summary)
        assert path.name == "virome_report_summary.json"
        assert ReportSummary.model_validate_json(path.read_text()) == summary
