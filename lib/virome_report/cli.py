"""
Command line entry point for the virome report.

Usage:
    virome-report run \\
        --data-dir /data/scid_virome \\
        --output-dir results/

    virome-report reconcile --config virome.yaml

    virome-report --help
"""

import sys
from pathlib import Path
from typing import Annotated

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from .config import load_config
from .errors import KeyMismatchError, ViromeReportError
from .loaders import load_count_matrix, load_run_summary, load_sample_table, sample_columns
from .pipeline import run_report
from .reconcile import reconcile_samples

app = typer.Typer(
    name="virome-report",
    help="Viral abundance report from metagenomic classification counts.",
    add_completion=False,
    rich_markup_mode="rich",
    no_args_is_help=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)
console = Console()

FIGURE_FORMATS = ("svg", "png", "html")


def _configure_logging(verbosity: int) -> None:
    """
    Send loguru records to stderr at the level picked by `-v`.

    Without `-v` only warnings show, which includes one line per kind of
    reconciliation diagnostic. `-v` adds the final success line, `-vv` loaded
    table sizes and written outputs, `-vvv` each figure file.
    """
    logger.remove()

    level = {
        0: "WARNING",
        1: "SUCCESS",
        2: "INFO",
        3: "DEBUG",
    }.get(min(verbosity, 3), "INFO")

    logger.add(
        sys.stderr,
        colorize=True,
        level=level,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>",
    )


DataDirOption = Annotated[
    Path | None,
    typer.Option(
        "--data-dir",
        "-d",
        help="Directory holding the input tables (overrides the config file)",
        file_okay=False,
        dir_okay=True,
        resolve_path=True,
    ),
]
ConfigOption = Annotated[
    Path | None,
    typer.Option(
        "--config",
        "-c",
        help="YAML file with report settings",
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
        resolve_path=True,
    ),
]
StrictOption = Annotated[
    bool | None,
    typer.Option(
        "--strict/--lenient",
        help="Fail on unmatched sample keys and zero-total samples instead of reporting them (default from config)",
    ),
]
VerboseOption = Annotated[
    int,
    typer.Option(
        "--verbose",
        "-v",
        count=True,
        help="Increase verbosity (-v, -vv, -vvv)",
        rich_help_panel="Logging",
    ),
]


@app.command("run")
def run(
    output_dir: Annotated[
        Path,
        typer.Option(
            "--output-dir",
            "-o",
            help="Output directory for figures, tables and the report",
            file_okay=False,
            dir_okay=True,
            resolve_path=True,
        ),
    ],
    data_dir: DataDirOption = None,
    config: ConfigOption = None,
    strict: StrictOption = None,
    figure_format: Annotated[
        str,
        typer.Option(
            "--figure-format",
            "-f",
            help="Heatmap format: svg, png or html",
        ),
    ] = "svg",
    verbose: VerboseOption = 0,
) -> None:
    """
    Build the full virome report.

    Reads the taxon table, count matrix, sample table and run summary,
    reconciles sample metadata, and writes heatmaps, longitudinal charts,
    summary tables, an HTML report and a JSON run summary.

    [bold cyan]Example:[/bold cyan]

    [green]$ virome-report run -d /data/scid_virome -o results/ --strict[/green]
    """
    _configure_logging(verbose)

    if figure_format not in FIGURE_FORMATS:
        console.print(
            f"[red]Unsupported figure format '{figure_format}'. "
            f"Use one of: {', '.join(FIGURE_FORMATS)}[/red]",
        )
        raise typer.Exit(1)

    try:
        settings = load_config(config, {"data_dir": data_dir, "strict": strict})
        console.print(f"[blue]Building report from {settings.data_dir}[/blue]")
        summary = run_report(settings, output_dir, [figure_format])
    except KeyMismatchError as e:
        console.print(f"[red]{e}[/red]")
        for diagnostic in e.diagnostics:
            console.print(f"  [yellow]{diagnostic.kind.value}[/yellow] {diagnostic.sample_id}: {diagnostic.detail}")
        raise typer.Exit(1) from e
    except ViromeReportError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from e

    console.print(
        f"[green]Report for {summary.sample_count} samples "
        f"({summary.kingdom_reads:,} {summary.kingdom} reads) written to {output_dir}[/green]",
    )
    if summary.diagnostics:
        console.print(
            f"[yellow]{len(summary.diagnostics)} diagnostic(s); "
            "see tables/diagnostics.tsv[/yellow]",
        )


@app.command("reconcile")
def reconcile(
    data_dir: DataDirOption = None,
    config: ConfigOption = None,
    strict: StrictOption = None,
    verbose: VerboseOption = 0,
) -> None:
    """
    Check sample identifiers against both metadata sources.

    Prints one row per count-matrix sample with its parse and join outcome,
    without writing any output.
    """
    _configure_logging(verbose)

    try:
        settings = load_config(config, {"data_dir": data_dir, "strict": strict})
        matrix = load_count_matrix(settings.counts_path, settings.count_column_renames)
        samples = reconcile_samples(
            sample_columns(matrix),
            load_sample_table(settings.samples_path, settings.date_format),
            load_run_summary(
                settings.run_summary_path,
                settings.run_summary_columns,
                settings.sample_filename_pattern,
            ),
            settings,
        )
    except ViromeReportError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from e

    table = Table(title="Sample identifier outcomes")
    table.add_column("Sample")
    table.add_column("Parsed")
    table.add_column("Sample table")
    table.add_column("Run summary")
    table.add_column("Reason")

    def mark(ok: bool) -> str:
        return "[green]yes[/green]" if ok else "[red]no[/red]"

    for outcome in sorted(samples.outcomes.values(), key=lambda o: o.sample_id):
        table.add_row(
            outcome.sample_id,
            mark(outcome.parsed),
            mark(outcome.metadata_matched),
            mark(outcome.run_summary_matched),
            outcome.reason or "",
        )
    console.print(table)

    incomplete = samples.incomplete()
    if incomplete:
        console.print(f"[yellow]{len(incomplete)} of {len(samples.outcomes)} samples incomplete[/yellow]")
    else:
        console.print(f"[green]All {len(samples.outcomes)} samples reconciled[/green]")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
