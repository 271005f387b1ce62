"""
Exception hierarchy for the virome report.

Schema errors are fatal and abort the run before any output is written.
Key mismatches and degenerate aggregations are normally collected as
diagnostics; the matching exceptions are raised only in strict mode.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .schema import Diagnostic


class ViromeReportError(Exception):
    """Super-class for all virome report errors."""


class SchemaError(ViromeReportError):
    """An input table is missing, unreadable, or lacks expected columns."""


class KeyMismatchError(ViromeReportError):
    """Sample identifiers failed to parse or to match a metadata source."""

    def __init__(self, diagnostics: Sequence[Diagnostic]) -> None:
        self.diagnostics = list(diagnostics)
        preview = ", ".join(d.sample_id for d in self.diagnostics[:5])
        more = len(self.diagnostics) - 5
        suffix = f" (+{more} more)" if more > 0 else ""
        super().__init__(
            f"{len(self.diagnostics)} sample key mismatch(es): {preview}{suffix}",
        )


class DegenerateAggregationError(ViromeReportError):
    """A sample has zero total count, so relative frequency is undefined."""

    def __init__(self, sample_ids: Sequence[str]) -> None:
        self.sample_ids = list(sample_ids)
        super().__init__(
            "Zero total count for sample(s): " + ", ".join(self.sample_ids),
        )
