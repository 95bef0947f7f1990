"""
Streaming parsers for Kraken2 classifier outputs.

Two formats are read:

- per-read output (``--output``): one line per read with its assigned taxid
- report (``--report``): one line per taxon with clade counts, the taxon
  hierarchy encoded by indenting the name column

Both parsers stream line by line and hand malformed lines to an
:class:`IssueTally`, so a damaged line costs one record rather than the run.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from pathlib import Path
from typing import NamedTuple

from microsift.core.exceptions import MalformedReportLineError, MissingInputError
from microsift.core.io_utils import open_text
from microsift.core.issues import IssueTally

logger = logging.getLogger(__name__)

# "Human gammaherpesvirus 4 (taxid 10376)" written by kraken2 --use-names
_NAMED_TAXID = re.compile(r"\(taxid (\d+)\)\s*$")
_MATE_SUFFIX = re.compile(r"/[12]$")


def normalize_read_id(name: str) -> str:
    """Read identifier without FASTA/FASTQ markers, comments or mate suffix.

    Example:
        >>> normalize_read_id("@read_001/1 1:N:0:ATCACG")
        'read_001'
    """
    token = name.split(maxsplit=1)[0] if name.strip() else ""
    if token[:1] in ("@", ">"):
        token = token[1:]
    return _MATE_SUFFIX.sub("", token)


# =============================================================================
# Per-read classification output
# =============================================================================


class ClassificationRecord(NamedTuple):
    """
    Classifier assignment for one read.

    ``length`` and ``kmer_mapping`` carry the optional support columns of the
    per-read output (sequence length(s) and the LCA k-mer mapping string).
    """

    read_id: str
    taxid: int
    classified: bool
    length: str | None = None
    kmer_mapping: str | None = None


class KrakenOutputParser:
    """
    Restartable stream of :class:`ClassificationRecord` from Kraken2 output.

    Expected format (tab-separated, no header):
        C|U  read_id  taxid  length  lca_mapping

    The taxid column may instead hold ``name (taxid N)`` when Kraken2 ran
    with ``--use-names``.

    Example:
        >>> parser = KrakenOutputParser(Path("sample.kraken"))
        >>> classified = sum(1 for r in parser if r.classified)
    """

    MIN_COLUMNS = 3

    def __init__(self, path: Path, tally: IssueTally | None = None):
        if not path.exists():
            raise MissingInputError(str(path), "Kraken2 per-read output")
        self.path = path
        self.tally = tally if tally is not None else IssueTally(source=str(path))

    def __iter__(self) -> Iterator[ClassificationRecord]:
        with open_text(self.path) as f:
            for line_num, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    yield self.parse_line(line, line_num)
                except MalformedReportLineError as e:
                    self.tally.record(e)

    def parse_line(self, line: str, line_num: int = 0) -> ClassificationRecord:
        """Parse one output line.

        Raises:
            MalformedReportLineError: If the line cannot be interpreted.
        """
        parts = line.rstrip("\n").split("\t")
        if len(parts) < self.MIN_COLUMNS:
            raise MalformedReportLineError(
                str(self.path),
                line_num,
                f"expected at least {self.MIN_COLUMNS} columns, got {len(parts)}",
            )

        status = parts[0].strip()
        if status not in ("C", "U"):
            raise MalformedReportLineError(
                str(self.path), line_num, f"unknown classification status '{status}'"
            )

        taxid = _parse_taxid(parts[2])
        if taxid is None:
            raise MalformedReportLineError(
                str(self.path), line_num, f"cannot read taxid from '{parts[2]}'"
            )

        read_id = normalize_read_id(parts[1])
        if not read_id:
            raise MalformedReportLineError(str(self.path), line_num, "empty read id")

        return ClassificationRecord(
            read_id=read_id,
            taxid=taxid,
            classified=status == "C" and taxid != 0,
            length=parts[3].strip() if len(parts) > 3 else None,
            kmer_mapping=parts[4].strip() if len(parts) > 4 else None,
        )


def _parse_taxid(field: str) -> int | None:
    field = field.strip()
    if field.isdigit():
        return int(field)
    match = _NAMED_TAXID.search(field)
    if match:
        return int(match.group(1))
    return None


# =============================================================================
# Report
# =============================================================================


class ReportRow(NamedTuple):
    """One taxon line of a Kraken-style report."""

    percent: float
    clade_reads: int
    taxon_reads: int
    rank: str
    taxid: int
    name: str
    depth: int


class KrakenReport:
    """Parser for Kraken2 report files.

    Handles the standard 6-column layout and the 8-column layout written with
    ``--report-minimizer-data``. The depth of each taxon is recovered from the
    indentation of the name column (two spaces per level).
    """

    def __init__(self, report_path: Path, tally: IssueTally | None = None):
        """Initialize with path to kreport file.

        Args:
            report_path: Path to Kraken2 report file.
            tally: Receives malformed lines; defaults to a non-strict tally.
        """
        if not report_path.exists():
            raise MissingInputError(str(report_path), "Kraken2 report")
        self.report_path = report_path
        self.tally = tally if tally is not None else IssueTally(source=str(report_path))
        self._data: list[ReportRow] | None = None

    def __iter__(self) -> Iterator[ReportRow]:
        with open_text(self.report_path) as f:
            for line_num, line in enumerate(f, start=1):
                if not line.strip() or line.startswith("#"):
                    continue
                try:
                    yield self.parse_line(line, line_num)
                except MalformedReportLineError as e:
                    self.tally.record(e)

    def parse_line(self, line: str, line_num: int = 0) -> ReportRow:
        parts = line.rstrip("\n").split("\t")
        if len(parts) == 8:
            # Drop minimizer and distinct-minimizer columns
            parts = parts[:3] + parts[5:]
        if len(parts) != 6:
            raise MalformedReportLineError(
                str(self.report_path),
                line_num,
                f"expected 6 or 8 columns, got {len(parts)}",
            )

        raw_name = parts[5]
        stripped = raw_name.lstrip(" ")
        try:
            return ReportRow(
                percent=float(parts[0]),
                clade_reads=int(parts[1]),
                taxon_reads=int(parts[2]),
                rank=parts[3].strip(),
                taxid=int(parts[4]),
                name=stripped.strip(),
                depth=(len(raw_name) - len(stripped)) // 2,
            )
        except ValueError as e:
            raise MalformedReportLineError(
                str(self.report_path), line_num, f"non-numeric field ({e})"
            ) from None

    def parse(self) -> list[ReportRow]:
        """Parse the whole report once and cache the rows."""
        if self._data is None:
            self._data = list(self)
        return self._data

    def get_taxon_reads(self, taxid: int) -> int:
        """Reads assigned directly to a taxon (not including children)."""
        for row in self.parse():
            if row.taxid == taxid:
                return row.taxon_reads
        return 0

    def get_clade_reads(self, taxid: int) -> int:
        """Reads assigned to a taxon and all of its descendants."""
        for row in self.parse():
            if row.taxid == taxid:
                return row.clade_reads
        return 0

    @property
    def total_reads(self) -> int:
        """Reads in the report (unclassified plus root clade)."""
        return sum(row.clade_reads for row in self.parse() if row.depth == 0)
