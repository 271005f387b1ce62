"""
Sample identifier grammar.

Raw sample identifiers (the count matrix headers) follow

    <Subject>_<SampleType>[_<SampleNo>[_<ExtractionNo>]]_<LibraryMethod>

Slots:
    Subject          first token
    SampleType       second token (control sentinels such as "blank" allowed)
    SampleNo         optional, but required unless SampleType is a control
    ExtractionNo     optional
    LibraryMethod    always the last token

`DerivingSampleID` is everything before the library method. Examples:

    P01_S_3_1_WGS      -> P01 / S / 3 / 1 / WGS
    P01_S_3_WGS        -> P01 / S / 3 / - / WGS
    library_blank_WGS  -> library / blank / - / - / WGS
"""

from __future__ import annotations

import re
from collections.abc import Collection
from dataclasses import dataclass

SAMPLE_ID_PATTERN = re.compile(
    r"""
    ^(?P<deriving>
        (?P<subject>[^_]+)
        _(?P<sample_type>[^_]+)
        (?:_(?P<sample_no>[^_]+))?
        (?:_(?P<extraction_no>[^_]+))?
    )
    _(?P<library_method>[^_]+)$
    """,
    re.VERBOSE,
)

# Raw sample types that may omit SampleNo
CONTROL_SAMPLE_TYPES = frozenset({"EC", "blank", "1"})


@dataclass(frozen=True, slots=True)
class SampleKey:
    """A decomposed sample identifier."""

    sample_id: str
    deriving_sample_id: str
    subject: str
    sample_type: str
    sample_no: str | None
    extraction_no: str | None
    library_method: str


@dataclass(frozen=True, slots=True)
class ParseOutcome:
    """Result of matching one identifier against the grammar."""

    sample_id: str
    key: SampleKey | None = None
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.key is not None


def parse_sample_id(
    sample_id: str,
    control_sample_types: Collection[str] = CONTROL_SAMPLE_TYPES,
) -> ParseOutcome:
    """
    Decompose a raw sample identifier.

    Args:
        sample_id: Raw identifier, e.g. a count matrix header
        control_sample_types: Raw SampleType values allowed to omit SampleNo

    Returns:
        ParseOutcome holding a SampleKey, or a reason when unparseable
    """
    text = sample_id.strip()
    if not text:
        return ParseOutcome(sample_id=sample_id, reason="empty identifier")

    match = SAMPLE_ID_PATTERN.match(text)
    if match is None:
        tokens = len(text.split("_"))
        return ParseOutcome(
            sample_id=sample_id,
            reason=f"expected 3 to 5 underscore-delimited tokens, found {tokens}",
        )

    sample_type = match["sample_type"]
    if match["sample_no"] is None and sample_type not in control_sample_types:
        return ParseOutcome(
            sample_id=sample_id,
            reason=f"missing SampleNo for non-control sample type '{sample_type}'",
        )

    return ParseOutcome(
        sample_id=sample_id,
        key=SampleKey(
            sample_id=sample_id,
            deriving_sample_id=match["deriving"],
            subject=match["subject"],
            sample_type=sample_type,
            sample_no=match["sample_no"],
            extraction_no=match["extraction_no"],
            library_method=match["library_method"],
        ),
    )


def recode_sample_type(sample_type: str | None, recodes: dict[str, str]) -> str | None:
    """Map sentinel sample types (e.g. "1", "blank") onto their unified category."""
    if sample_type is None:
        return None
    return recodes.get(sample_type, sample_type)


def run_summary_key(key: SampleKey, aliases: dict[str, str]) -> str:
    """
    Build the run-summary join key for a decomposed identifier.

    The run summary names some deriving IDs differently (e.g. "library-blank"
    for "library_blank"); aliases are applied to the deriving part only.
    """
    deriving = aliases.get(key.deriving_sample_id, key.deriving_sample_id)
    return f"{deriving}_{key.library_method}"
