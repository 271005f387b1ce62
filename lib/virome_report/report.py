"""
HTML report and JSON run summary.

The HTML report is one self-contained document with four tab panels:

- Overview: run summary, sample tally, reads per kingdom
- Abundance: kingdom-of-interest tables (rank summary, per-sample reads, depth)
- Charts: embedded Vega-Lite specs rendered client-side with vega-embed
- Diagnostics: per-sample join outcomes and collected diagnostics

The JSON summary is the ReportSummary model dumped next to it.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

import polars as pl
from jinja2 import Environment
from loguru import logger

from .schema import ReportSummary

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from pathlib import Path

    import altair as alt

    from .aggregate import AbundanceTable
    from .config import ReportConfig
    from .reconcile import ReconciledSamples

REPORT_FILENAME = "virome_report.html"
SUMMARY_FILENAME = "virome_report_summary.json"

# Rows rendered per HTML table; the TSV outputs always carry every row.
MAX_HTML_ROWS = 500

VEGA_SCRIPTS = [
    "https://cdn.jsdelivr.net/npm/vega@5",
    "https://cdn.jsdelivr.net/npm/vega-lite@5",
    "https://cdn.jsdelivr.net/npm/vega-embed@6",
]

REPORT_TEMPLATE = """\
<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>{{ title }}</title>
{% for src in vega_scripts %}<script src="{{ src }}"></script>
{% endfor %}<style>
  body { font-family: -apple-system, "Segoe UI", Helvetica, Arial, sans-serif; margin: 24px; color: #1e293b; }
  h1 { font-size: 22px; margin-bottom: 4px; }
  .meta { color: #64748b; font-size: 13px; margin-bottom: 16px; }
  .tabs { display: flex; gap: 4px; border-bottom: 1px solid #cbd5e1; }
  .tabs button { border: 1px solid #cbd5e1; border-bottom: none; background: #f1f5f9;
                 padding: 6px 14px; cursor: pointer; font-size: 14px; }
  .tabs button.active { background: #ffffff; font-weight: bold; }
  .panel { display: none; padding: 16px 0; }
  .panel.active { display: block; }
  .stats { display: flex; flex-wrap: wrap; gap: 12px; margin-bottom: 16px; }
  .stat { border: 1px solid #e2e8f0; border-radius: 4px; padding: 8px 12px; min-width: 140px; }
  .stat .value { font-size: 20px; font-weight: bold; }
  .stat .label { font-size: 12px; color: #64748b; }
  table { border-collapse: collapse; font-size: 12px; margin-bottom: 20px; }
  th, td { border: 1px solid #e2e8f0; padding: 3px 8px; text-align: left; }
  th { background: #f1f5f9; }
  td.num { text-align: right; font-variant-numeric: tabular-nums; }
  .truncated { color: #64748b; font-size: 12px; }
  .chart { margin-bottom: 28px; }
</style>
</head>
<body>
<h1>{{ title }}</h1>
<div class="meta">Generated {{ summary.generated_at.strftime("%Y-%m-%d %H:%M") }} from {{ summary.data_dir }}</div>

<div class="tabs">
{% for panel in panels %}  <button data-panel="{{ panel.id }}"{% if loop.first %} class="active"{% endif %}>{{ panel.title }}</button>
{% endfor %}</div>

{% for panel in panels %}
<div class="panel{% if loop.first %} active{% endif %}" id="{{ panel.id }}">
{% if panel.id == "overview" %}
  <div class="stats">
    <div class="stat"><div class="value">{{ summary.sample_count }}</div><div class="label">Samples</div></div>
    <div class="stat"><div class="value">{{ summary.control_sample_count }}</div><div class="label">Control samples</div></div>
    <div class="stat"><div class="value">{{ "{:,}".format(summary.total_reads) }}</div><div class="label">Classified reads</div></div>
    <div class="stat"><div class="value">{{ "{:,}".format(summary.kingdom_reads) }}</div><div class="label">{{ summary.kingdom }} reads</div></div>
    <div class="stat"><div class="value">{{ summary.kingdom_taxon_count }}</div><div class="label">{{ summary.kingdom }} taxa</div></div>
    <div class="stat"><div class="value">{{ summary.diagnostics | length }}</div><div class="label">Diagnostics</div></div>
  </div>
{% endif %}
{% for table in panel.tables %}
  <h3>{{ table.title }}</h3>
  {% if table.rows %}
  <table>
    <thead><tr>{% for column in table.columns %}<th>{{ column }}</th>{% endfor %}</tr></thead>
    <tbody>
    {% for row in table.rows %}<tr>{% for cell, numeric in row %}<td{% if numeric %} class="num"{% endif %}>{{ cell }}</td>{% endfor %}</tr>
    {% endfor %}</tbody>
  </table>
  {% if table.truncated %}<div class="truncated">Showing {{ table.rows | length }} of {{ table.height }} rows; see {{ table.name }}.tsv for all of them.</div>{% endif %}
  {% else %}
  <p class="truncated">No rows.</p>
  {% endif %}
{% endfor %}
{% for chart in panel.charts %}
  <div class="chart"><h3>{{ chart.title }}</h3><div id="{{ chart.id }}"></div></div>
{% endfor %}
{% if panel.links %}
  <h3>Figure files</h3>
  <ul>{% for link in panel.links %}<li><a href="{{ link }}">{{ link }}</a></li>{% endfor %}</ul>
{% endif %}
</div>
{% endfor %}

<script>
  document.querySelectorAll(".tabs button").forEach(function (button) {
    button.addEventListener("click", function () {
      document.querySelectorAll(".tabs button").forEach(function (b) { b.classList.remove("active"); });
      document.querySelectorAll(".panel").forEach(function (p) { p.classList.remove("active"); });
      button.classList.add("active");
      document.getElementById(button.dataset.panel).classList.add("active");
    });
  });
{% for chart in charts %}  vegaEmbed("#{{ chart.id }}", {{ chart.spec | safe }}, {"renderer": "svg", "actions": false});
{% endfor %}</script>
</body>
</html>
"""

_environment = Environment(autoescape=True)


def _format_cell(value: object) -> tuple[str, bool]:
    """Render one cell as text, plus whether it is numeric."""
    if value is None:
        return "", False
    if isinstance(value, bool):
        return str(value).lower(), False
    if isinstance(value, int):
        return f"{value:,}", True
    if isinstance(value, float):
        return f"{value:.4g}", True
    return str(value), False


def _table_context(name: str, title: str, df: pl.DataFrame) -> dict:
    shown = df.head(MAX_HTML_ROWS)
    return {
        "name": name,
        "title": title,
        "columns": shown.columns,
        "rows": [[_format_cell(v) for v in row] for row in shown.iter_rows()],
        "height": df.height,
        "truncated": df.height > MAX_HTML_ROWS,
    }


def _chart_spec(chart: alt.TopLevelMixin) -> str:
    # A literal "</" inside a script block would end it early.
    return chart.to_json(indent=None).replace("</", "<\\/")


def build_summary(
    config: ReportConfig,
    samples: ReconciledSamples,
    abundance: AbundanceTable,
    outputs: Sequence[Path] = (),
) -> ReportSummary:
    """
    Collect run-level counts, outcomes and diagnostics into a ReportSummary.

    Args:
        config: Report configuration (data directory, kingdom of interest)
        samples: Reconciled sample metadata
        abundance: Agglomerated abundance table (all kingdoms)
        outputs: Files written by the run

    Returns:
        ReportSummary ready to be dumped as JSON
    """
    kingdom = abundance.filter_kingdom(config.kingdom)
    return ReportSummary(
        generated_at=datetime.now(),
        data_dir=str(config.data_dir),
        kingdom=config.kingdom,
        sample_count=samples.table.height,
        control_sample_count=int(samples.table["IsControl"].sum()),
        taxon_count=abundance.data["TaxID"].n_unique(),
        total_reads=abundance.total_reads,
        kingdom_reads=kingdom.total_reads,
        kingdom_taxon_count=kingdom.data["TaxID"].n_unique(),
        outcomes=sorted(samples.outcomes.values(), key=lambda o: o.sample_id),
        diagnostics=list(abundance.diagnostics),
        outputs=[str(p) for p in outputs],
    )


def render_html(
    summary: ReportSummary,
    tables: Mapping[str, tuple[str, pl.DataFrame]],
    charts: Mapping[str, alt.TopLevelMixin] | None = None,
    figure_links: Sequence[str] = (),
    title: str = "Virome Report",
) -> str:
    """
    Render the report document.

    Args:
        summary: Run summary shown on the overview panel
        tables: Table name -> (display title, DataFrame). Names select the
                panel: "diagnostics" and "sample_outcomes" go to the
                diagnostics panel, "sample_tally" and "kingdom_tally" to the
                overview, everything else to the abundance panel.
        charts: Display title -> Altair chart, embedded in the charts panel
        figure_links: Relative paths of figure files, listed under the charts
        title: Document title

    Returns:
        HTML document as a string
    """
    overview_names = {"sample_tally", "kingdom_tally"}
    diagnostic_names = {"diagnostics", "sample_outcomes"}

    panels = {
        "overview": {"id": "overview", "title": "Overview", "tables": [], "charts": [], "links": []},
        "abundance": {"id": "abundance", "title": "Abundance", "tables": [], "charts": [], "links": []},
        "charts": {"id": "charts", "title": "Charts", "tables": [], "charts": [], "links": []},
        "diagnostics": {"id": "diagnostics", "title": "Diagnostics", "tables": [], "charts": [], "links": []},
    }  # fmt: skip

    for name, (table_title, df) in tables.items():
        if name in overview_names:
            target = "overview"
        elif name in diagnostic_names:
            target = "diagnostics"
        else:
            target = "abundance"
        panels[target]["tables"].append(_table_context(name, table_title, df))

    embedded = [
        {"id": f"chart-{i}", "title": chart_title, "spec": _chart_spec(chart)}
        for i, (chart_title, chart) in enumerate((charts or {}).items())
    ]
    panels["charts"]["charts"] = embedded
    panels["charts"]["links"] = list(figure_links)

    template = _environment.from_string(REPORT_TEMPLATE)
    return template.render(
        title=title,
        summary=summary,
        panels=list(panels.values()),
        charts=embedded,
        vega_scripts=VEGA_SCRIPTS,
    )


def outcomes_table(samples: ReconciledSamples) -> pl.DataFrame:
    """One row per sample with its parse and join outcome."""
    schema = {
        "sample_id": pl.String,
        "parsed": pl.Boolean,
        "metadata_matched": pl.Boolean,
        "run_summary_matched": pl.Boolean,
        "reason": pl.String,
    }
    return pl.DataFrame(
        [o.model_dump() for o in samples.outcomes.values()],
        schema=schema,
    ).sort("sample_id")


def write_html_report(
    output_dir: Path,
    summary: ReportSummary,
    tables: Mapping[str, tuple[str, pl.DataFrame]],
    charts: Mapping[str, alt.TopLevelMixin] | None = None,
    figure_links: Sequence[str] = (),
) -> Path:
    """
    Write virome_report.html under output_dir.

    Returns:
        Path to the written document
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / REPORT_FILENAME
    path.write_text(
        render_html(summary, tables, charts, figure_links),
        encoding="utf-8",
    )
    logger.info(f"Wrote HTML report to {path}")
    return path


def write_summary_json(output_dir: Path, summary: ReportSummary) -> Path:
    """Write virome_report_summary.json under output_dir."""
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / SUMMARY_FILENAME
    path.write_text(summary.model_dump_json(indent=2), encoding="utf-8")
    logger.info(f"Wrote run summary to {path}")
    return path
