"""
Contig to taxid mapping for the alignment-based screens.

The superfast and quick screens need to know which reference contigs stand
for which taxon. The built-in catalogue covers the decoy contigs of common
human references; other references can supply a TSV.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

import polars as pl

from microsift.core.constants import MICROBIAL_CONTIGS
from microsift.core.exceptions import ConfigurationError, MissingInputError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContigTaxonMap:
    """Mapping from reference contig names to taxids.

    Example:
        >>> mapping = ContigTaxonMap.default()
        >>> mapping.taxid_for("chrEBV")
        10376
        >>> sorted(mapping.contigs_for(10376))
        ['NC_007605', 'NC_009334', 'chrEBV']
    """

    contig_to_taxid: dict[str, int] = field(default_factory=dict)
    names: dict[int, str] = field(default_factory=dict)

    @classmethod
    def default(cls) -> ContigTaxonMap:
        """Built-in catalogue of microbial decoy contigs."""
        return cls(
            contig_to_taxid={c.contig: c.taxid for c in MICROBIAL_CONTIGS},
            names={c.taxid: c.name for c in MICROBIAL_CONTIGS},
        )

    @classmethod
    def from_tsv(cls, path: Path) -> ContigTaxonMap:
        """Load mapping from TSV file.

        Expected format (tab-separated, header required):
            contig	taxid	name
            chrEBV	10376	EBV
            NC_001526.4	333760	HPV16

        The ``name`` column is optional.
        """
        if not path.exists():
            raise MissingInputError(str(path), "Contig map")

        df = pl.read_csv(path, separator="\t", schema_overrides={"contig": pl.Utf8})

        required = {"contig", "taxid"}
        if not required.issubset(df.columns):
            raise ConfigurationError(
                f"Contig map must have columns {sorted(required)}, found: {df.columns}",
                suggestion="Add a header row: contig<TAB>taxid[<TAB>name]",
            )

        contig_to_taxid = dict(
            zip(
                df["contig"].to_list(),
                df["taxid"].cast(pl.Int64).to_list(),
                strict=True,
            )
        )
        names: dict[int, str] = {}
        if "name" in df.columns:
            for taxid, name in zip(
                df["taxid"].cast(pl.Int64).to_list(), df["name"].to_list(), strict=True
            ):
                if name is not None:
                    names.setdefault(taxid, name)

        logger.info("Loaded contig map with %d contigs from %s", len(contig_to_taxid), path)

        return cls(contig_to_taxid=contig_to_taxid, names=names)

    def taxid_for(self, contig: str) -> int | None:
        return self.contig_to_taxid.get(contig)

    def contigs_for(self, taxid: int) -> list[str]:
        """All contigs representing ``taxid``, in mapping order."""
        return [c for c, t in self.contig_to_taxid.items() if t == taxid]

    @property
    def taxids(self) -> list[int]:
        """Distinct taxids, in first-seen order."""
        return list(dict.fromkeys(self.contig_to_taxid.values()))

    def present_in(self, references: Iterable[str]) -> ContigTaxonMap:
        """Restrict the mapping to contigs declared in an alignment header."""
        declared = set(references)
        return ContigTaxonMap(
            contig_to_taxid={
                c: t for c, t in self.contig_to_taxid.items() if c in declared
            },
            names=self.names,
        )

    def name_for(self, taxid: int) -> str | None:
        return self.names.get(taxid)

    def __len__(self) -> int:
        return len(self.contig_to_taxid)

    def __contains__(self, contig: object) -> bool:
        return contig in self.contig_to_taxid
