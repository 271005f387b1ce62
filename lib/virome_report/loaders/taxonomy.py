"""
Taxonomy loader for the virome report.

Reads the classifier's taxon table and renames its rank columns to the
canonical schema:

    tax_id, superkingdom, phylum, class, order, family, genus, species, name
    -> TaxID, Kingdom, Phylum, Class, Order, Family, Genus, Species, Strain

Rows are ordered by the canonical rank order (Kingdom -> Strain). Missing rank
values stay null; nothing is inferred from neighbouring ranks.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING

import polars as pl
from loguru import logger

from virome_report.errors import SchemaError
from virome_report.schema import RANKS, TAXONOMY_RENAME_MAP

from .common import blank_to_null, cast_integer_column, read_table

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path


@dataclass(frozen=True, slots=True)
class TaxonRecord:
    """Rank labels for one taxonomic ID."""

    tax_id: int
    kingdom: str | None
    phylum: str | None
    class_: str | None
    order: str | None
    family: str | None
    genus: str | None
    species: str | None
    strain: str | None

    def rank(self, name: str) -> str | None:
        """Return the label at a canonical rank name such as "Family"."""
        attr = "class_" if name == "Class" else name.lower()
        return getattr(self, attr)


def load_taxonomy(tsv_path: Path) -> pl.DataFrame:
    """
    Load the taxon table with canonical rank column names.

    Args:
        tsv_path: Path to the taxon table (TSV or CSV)

    Returns:
        DataFrame with columns TaxID (Int64) and Kingdom..Strain (String),
        sorted by rank with nulls last

    Raises:
        SchemaError: On missing columns, non-integer or duplicate tax IDs
    """
    df = read_table(tsv_path, TAXONOMY_RENAME_MAP.keys(), "Taxon table")

    df = df.select(list(TAXONOMY_RENAME_MAP)).rename(TAXONOMY_RENAME_MAP)
    df = df.with_columns([blank_to_null(rank) for rank in RANKS])
    df = cast_integer_column(df, "TaxID", "Taxon table")

    if df["TaxID"].null_count():
        msg = f"Taxon table {tsv_path} has rows without a tax_id"
        raise SchemaError(msg)

    duplicated = df.filter(pl.col("TaxID").is_duplicated())["TaxID"].unique().sort()
    if len(duplicated):
        shown = ", ".join(str(t) for t in duplicated.head(10).to_list())
        msg = f"Taxon table {tsv_path} has duplicate tax_id value(s): {shown}"
        raise SchemaError(msg)

    df = df.sort([*RANKS, "TaxID"], nulls_last=True)

    logger.info(f"Loaded {df.height} taxa from {tsv_path}")
    return df


def build_taxonomy_index(taxonomy: pl.DataFrame) -> Mapping[int, TaxonRecord]:
    """
    Build a read-only mapping of tax ID to TaxonRecord.

    The mapping is constructed once from the loaded table and cannot be
    modified afterwards.
    """
    index: dict[int, TaxonRecord] = {}
    for row in taxonomy.select(["TaxID", *RANKS]).iter_rows(named=True):
        index[row["TaxID"]] = TaxonRecord(
            tax_id=row["TaxID"],
            kingdom=row["Kingdom"],
            phylum=row["Phylum"],
            class_=row["Class"],
            order=row["Order"],
            family=row["Family"],
            genus=row["Genus"],
            species=row["Species"],
            strain=row["Strain"],
        )
    return MappingProxyType(index)
