"""
Sample metadata reconciliation.

Decomposes every raw sample identifier, recodes sentinel sample types,
and joins the two metadata sources onto the decomposed keys:

    sample table   on (Subject, SampleType, SampleNo)   after recoding both sides
    run summary    on RunKey                            after deriving-ID aliases

Each sample gets a SampleJoinOutcome. Unmatched keys keep their row with null
metadata and add a Diagnostic; in strict mode they raise KeyMismatchError.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING

import polars as pl
from loguru import logger

from .errors import KeyMismatchError
from .schema import SAMPLE_COLUMNS, Diagnostic, DiagnosticKind, SampleJoinOutcome
from .sample_ids import parse_sample_id, recode_sample_type, run_summary_key

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from .config import ReportConfig

SAMPLE_KEY_COLUMNS = ["Subject", "SampleType", "SampleNo"]

_PARSED_SCHEMA = {
    "SampleID": pl.String,
    "DerivingSampleID": pl.String,
    "Subject": pl.String,
    "SampleTypeRaw": pl.String,
    "SampleType": pl.String,
    "SampleNo": pl.String,
    "ExtractionNo": pl.String,
    "LibraryMethod": pl.String,
    "IsControl": pl.Boolean,
    "Parsed": pl.Boolean,
    "RunKey": pl.String,
}


@dataclass(frozen=True)
class ReconciledSamples:
    """Per-sample metadata after reconciliation, with outcomes and diagnostics."""

    table: pl.DataFrame
    outcomes: Mapping[str, SampleJoinOutcome]
    diagnostics: tuple[Diagnostic, ...] = field(default_factory=tuple)

    @property
    def sample_ids(self) -> list[str]:
        return self.table["SampleID"].to_list()

    def incomplete(self) -> list[SampleJoinOutcome]:
        """Outcomes where parsing or either metadata join failed."""
        return [o for o in self.outcomes.values() if not o.complete]


def _control_raw_types(config: ReportConfig) -> set[str]:
    """Raw sample types that are, or recode to, a control category."""
    controls = set(config.control_sample_types)
    controls.update(
        raw for raw, recoded in config.sample_type_recodes.items() if recoded in controls
    )
    return controls


def _parse_identifiers(
    sample_ids: Sequence[str],
    config: ReportConfig,
) -> tuple[pl.DataFrame, list[Diagnostic]]:
    """Decompose identifiers into the key columns used by both joins."""
    control_raw = _control_raw_types(config)
    rows: list[dict] = []
    diagnostics: list[Diagnostic] = []

    for sample_id in sample_ids:
        outcome = parse_sample_id(sample_id, control_raw)
        if not outcome.ok:
            diagnostics.append(
                Diagnostic(
                    kind=DiagnosticKind.UNPARSEABLE_SAMPLE_ID,
                    sample_id=sample_id,
                    detail=outcome.reason or "unparseable",
                ),
            )
            rows.append(
                {"SampleID": sample_id, "IsControl": False, "Parsed": False, "RunKey": sample_id},
            )
            continue

        key = outcome.key
        recoded = recode_sample_type(key.sample_type, config.sample_type_recodes)
        is_control = recoded in config.control_sample_types
        if key.sample_type in config.ambiguous_sample_types:
            diagnostics.append(
                Diagnostic(
                    kind=DiagnosticKind.AMBIGUOUS_SAMPLE_TYPE,
                    sample_id=sample_id,
                    detail=(
                        f"SampleType '{key.sample_type}' recoded to '{recoded}'; "
                        "original value kept in SampleTypeRaw"
                    ),
                    is_control=is_control,
                ),
            )
        rows.append(
            {
                "SampleID": sample_id,
                "DerivingSampleID": key.deriving_sample_id,
                "Subject": key.subject,
                "SampleTypeRaw": key.sample_type,
                "SampleType": recoded,
                "SampleNo": key.sample_no,
                "ExtractionNo": key.extraction_no,
                "LibraryMethod": key.library_method,
                "IsControl": is_control,
                "Parsed": True,
                "RunKey": run_summary_key(key, config.deriving_id_aliases),
            },
        )

    return pl.DataFrame(rows, schema=_PARSED_SCHEMA), diagnostics


def _dedupe(
    df: pl.DataFrame,
    keys: list[str],
    label: str,
) -> tuple[pl.DataFrame, list[Diagnostic]]:
    """Keep the first row per key, reporting every duplicated key once."""
    duplicated = (
        df.filter(pl.struct(keys).is_duplicated())
        .select(keys)
        .unique(maintain_order=True)
    )
    diagnostics = [
        Diagnostic(
            kind=DiagnosticKind.DUPLICATE_METADATA_KEY,
            sample_id="/".join("" if v is None else str(v) for v in row),
            detail=f"{label} has several rows for this key; the first one is used",
        )
        for row in duplicated.iter_rows()
    ]
    return df.unique(subset=keys, keep="first", maintain_order=True), diagnostics


def _metadata_key() -> pl.Expr:
    """
    Composite sample-table key. Missing SampleNo values match each other, so
    control rows without a sample number still join.
    """
    return pl.concat_str(
        [pl.col(c).fill_null("") for c in SAMPLE_KEY_COLUMNS],
        separator="\x1f",
    ).alias("MetadataKey")


def _study_group_expr(config: ReportConfig) -> pl.Expr:
    """StudyGroup from the sample table, falling back to the configured mapping."""
    if not config.study_groups:
        return pl.col("StudyGroup")
    mapped = pl.col("Subject").replace_strict(
        config.study_groups,
        default=None,
        return_dtype=pl.String,
    )
    return pl.coalesce(pl.col("StudyGroup"), mapped).alias("StudyGroup")


def reconcile_samples(
    sample_ids: Sequence[str],
    sample_table: pl.DataFrame,
    run_summary: pl.DataFrame,
    config: ReportConfig,
) -> ReconciledSamples:
    """
    Reconcile raw sample identifiers with both metadata sources.

    Args:
        sample_ids: Raw identifiers, e.g. count matrix sample columns
        sample_table: DataFrame from load_sample_table
        run_summary: DataFrame from load_run_summary
        config: Report configuration (recodes, aliases, strict mode)

    Returns:
        ReconciledSamples with one row per identifier, in input order

    Raises:
        KeyMismatchError: In strict mode, when any identifier is unparseable
                          or a non-control sample lacks a match in either
                          metadata source
    """
    parsed, diagnostics = _parse_identifiers(sample_ids, config)

    metadata = sample_table.with_columns(
        pl.col("SampleType").replace(config.sample_type_recodes),
    )
    metadata, duplicate_diags = _dedupe(metadata, SAMPLE_KEY_COLUMNS, "Sample table")
    diagnostics.extend(duplicate_diags)
    metadata = metadata.select(
        _metadata_key(),
        "Timepoint",
        "Location",
        "StudyGroup",
        pl.lit(True).alias("MetadataMatched"),
    )

    runs, duplicate_diags = _dedupe(run_summary, ["RunKey"], "Run summary")
    diagnostics.extend(duplicate_diags)
    runs = runs.select(
        "RunKey",
        "MappedReads",
        "ReferenceDatabase",
        pl.lit(True).alias("RunSummaryMatched"),
    )

    table = (
        parsed.with_columns(
            pl.when(pl.col("Parsed")).then(_metadata_key()).alias("MetadataKey"),
        )
        .join(metadata, on="MetadataKey", how="left", maintain_order="left")
        .join(runs, on="RunKey", how="left", maintain_order="left")
        .with_columns(
            pl.col("MetadataMatched").fill_null(False),
            pl.col("RunSummaryMatched").fill_null(False),
        )
        .with_columns(_study_group_expr(config))
        .select(SAMPLE_COLUMNS)
    )

    outcomes: dict[str, SampleJoinOutcome] = {}
    for row in table.iter_rows(named=True):
        sample_id = row["SampleID"]
        reasons = []
        if not row["Parsed"]:
            reasons.append("identifier not parseable")
        else:
            if not row["MetadataMatched"]:
                diagnostics.append(
                    Diagnostic(
                        kind=DiagnosticKind.METADATA_UNMATCHED,
                        sample_id=sample_id,
                        detail=(
                            "no sample table row for "
                            f"Subject={row['Subject']} SampleType={row['SampleType']} "
                            f"SampleNo={row['SampleNo']}"
                        ),
                        is_control=row["IsControl"],
                    ),
                )
                reasons.append("no sample table match")
        if not row["RunSummaryMatched"]:
            diagnostics.append(
                Diagnostic(
                    kind=DiagnosticKind.RUN_SUMMARY_UNMATCHED,
                    sample_id=sample_id,
                    detail="no run summary row for this sample",
                    is_control=row["IsControl"],
                ),
            )
            reasons.append("no run summary match")
        outcomes[sample_id] = SampleJoinOutcome(
            sample_id=sample_id,
            parsed=row["Parsed"],
            metadata_matched=row["MetadataMatched"],
            run_summary_matched=row["RunSummaryMatched"],
            reason="; ".join(reasons) or None,
        )

    _log_diagnostics(diagnostics)

    if config.strict:
        blocking = [d for d in diagnostics if _is_blocking(d)]
        if blocking:
            raise KeyMismatchError(blocking)

    matched = sum(o.complete for o in outcomes.values())
    logger.info(f"Reconciled {matched}/{len(outcomes)} samples with both metadata sources")

    return ReconciledSamples(
        table=table,
        outcomes=MappingProxyType(outcomes),
        diagnostics=tuple(diagnostics),
    )


def _is_blocking(diagnostic: Diagnostic) -> bool:
    """Whether a diagnostic stops a strict run."""
    if diagnostic.kind == DiagnosticKind.UNPARSEABLE_SAMPLE_ID:
        return True
    if diagnostic.kind in (
        DiagnosticKind.METADATA_UNMATCHED,
        DiagnosticKind.RUN_SUMMARY_UNMATCHED,
    ):
        return not diagnostic.is_control
    return False


def _log_diagnostics(diagnostics: Sequence[Diagnostic]) -> None:
    """Log one warning per diagnostic kind with a short sample preview."""
    by_kind: dict[DiagnosticKind, list[str]] = {}
    for diagnostic in diagnostics:
        by_kind.setdefault(diagnostic.kind, []).append(diagnostic.sample_id)
    for kind, ids in by_kind.items():
        preview = ", ".join(ids[:5]) + (" ..." if len(ids) > 5 else "")
        logger.warning(f"{len(ids)} x {kind.value}: {preview}")
