"""
Streaming access to alignment files.

Wraps pysam so that the rest of the engine sees immutable
:class:`AlignmentRecord` tuples rather than live ``AlignedSegment`` objects.
Every call to :meth:`AlignmentSource.records` opens the file again, so a
source can be iterated any number of times without holding it in memory.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Iterator
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, NamedTuple

import polars as pl
import pysam

from microsift.core.exceptions import (
    CorruptAlignmentRecordError,
    MalformedReportLineError,
    MissingInputError,
    MissingReferenceContigError,
)
from microsift.core.issues import IssueTally

if TYPE_CHECKING:
    from microsift.models.config import ReadQualityFilter

logger = logging.getLogger(__name__)

# CIGAR operation code for soft clipping (pysam.CSOFT_CLIP)
_SOFT_CLIP = 4
_CIGAR_OP = re.compile(r"(\d+)([MIDNSHP=X])")


class MateRole(str, Enum):
    """Position of a read within its template."""

    UNPAIRED = "unpaired"
    READ1 = "read1"
    READ2 = "read2"

    @property
    def suffix(self) -> str:
        return {"read1": "/1", "read2": "/2"}.get(self.value, "")


class AlignmentRecord(NamedTuple):
    """
    One primary or secondary alignment record.

    Built once from a pysam segment and never modified. Sequence and
    qualities are stored in original read orientation (reverse-strand
    alignments are complemented back) so they can be written straight to
    FASTQ.
    """

    read_id: str
    mate: MateRole
    contig: str | None
    position: int
    end: int
    mapq: int
    is_unmapped: bool
    mate_unmapped: bool
    is_secondary: bool
    is_supplementary: bool
    mate_contig: str | None = None
    mate_position: int = -1
    is_duplicate: bool = False
    is_qcfail: bool = False
    soft_clipped: int = 0
    query_length: int = 0
    sequence: str = ""
    qualities: str | None = None
    alignment_score: int | None = None
    mate_soft_clip_fraction: float | None = None
    mate_end: int | None = None

    @property
    def is_primary(self) -> bool:
        return not (self.is_secondary or self.is_supplementary)

    @property
    def is_paired(self) -> bool:
        return self.mate is not MateRole.UNPAIRED

    @property
    def has_position(self) -> bool:
        return self.contig is not None and self.position >= 0

    @property
    def mean_quality(self) -> float:
        if not self.qualities:
            return 0.0
        return sum(ord(c) - 33 for c in self.qualities) / len(self.qualities)

    @property
    def soft_clip_fraction(self) -> float:
        if self.query_length <= 0:
            return 0.0
        return self.soft_clipped / self.query_length

    @classmethod
    def from_segment(cls, segment: pysam.AlignedSegment) -> AlignmentRecord:
        """Convert a pysam segment, validating field consistency.

        Raises:
            CorruptAlignmentRecordError: If the record is internally inconsistent.
        """
        read_id = segment.query_name
        if not read_id:
            raise CorruptAlignmentRecordError(None, "missing read name")

        is_unmapped = segment.is_unmapped
        contig = segment.reference_name if segment.reference_id >= 0 else None
        position = segment.reference_start
        if not is_unmapped and (contig is None or position < 0):
            raise CorruptAlignmentRecordError(
                read_id, "mapped record has no reference position"
            )

        sequence = segment.get_forward_sequence() or ""
        raw_qualities = segment.get_forward_qualities()
        qualities = None
        if raw_qualities is not None and len(raw_qualities) > 0:
            if sequence and len(raw_qualities) != len(sequence):
                raise CorruptAlignmentRecordError(
                    read_id,
                    f"sequence length {len(sequence)} does not match "
                    f"quality length {len(raw_qualities)}",
                )
            qualities = "".join(chr(q + 33) for q in raw_qualities)

        if segment.is_paired:
            mate = MateRole.READ2 if segment.is_read2 else MateRole.READ1
        else:
            mate = MateRole.UNPAIRED

        soft_clipped = 0
        if segment.cigartuples:
            soft_clipped = sum(n for op, n in segment.cigartuples if op == _SOFT_CLIP)

        end = segment.reference_end if segment.reference_end is not None else position
        alignment_score = segment.get_tag("AS") if segment.has_tag("AS") else None
        mate_cigar = segment.get_tag("MC") if segment.has_tag("MC") else None
        mate_position = segment.next_reference_start
        mate_end = None
        if mate_cigar is not None and mate_position >= 0:
            mate_end = mate_position + _reference_length(str(mate_cigar))

        return cls(
            read_id=read_id,
            mate=mate,
            contig=contig,
            position=position,
            end=max(end, position),
            mapq=segment.mapping_quality,
            is_unmapped=is_unmapped,
            mate_unmapped=segment.is_paired and segment.mate_is_unmapped,
            is_secondary=segment.is_secondary,
            is_supplementary=segment.is_supplementary,
            mate_contig=(
                segment.next_reference_name if segment.next_reference_id >= 0 else None
            ),
            mate_position=mate_position,
            is_duplicate=segment.is_duplicate,
            is_qcfail=segment.is_qcfail,
            soft_clipped=soft_clipped,
            query_length=segment.query_length or len(sequence),
            sequence=sequence,
            qualities=qualities,
            alignment_score=int(alignment_score) if alignment_score is not None else None,
            mate_soft_clip_fraction=(
                _soft_clip_fraction(str(mate_cigar)) if mate_cigar is not None else None
            ),
            mate_end=mate_end,
        )


def _reference_length(cigar: str) -> int:
    """Reference bases spanned by a CIGAR string (M, D, N, = and X)."""
    return sum(int(n) for n, op in _CIGAR_OP.findall(cigar) if op in "MDN=X")


def _soft_clip_fraction(cigar: str) -> float | None:
    """Soft-clipped share of the query from a CIGAR string (e.g. an MC tag)."""
    ops = _CIGAR_OP.findall(cigar)
    query = sum(int(n) for n, op in ops if op in "MIS=X")
    if query == 0:
        return None
    return sum(int(n) for n, op in ops if op == "S") / query


# =============================================================================
# Quality predicates
# =============================================================================


def is_good_quality_sequence(record: AlignmentRecord, criteria: ReadQualityFilter) -> bool:
    """Whether a read looks like a real biological sequence.

    Good sequences are long enough, have an acceptable mean Phred score,
    contain few ambiguous bases, and are neither duplicates nor QC failures.
    This says nothing about how well the read aligned.
    """
    if record.is_qcfail or record.is_duplicate:
        return False
    if len(record.sequence) < criteria.min_length:
        return False
    if record.sequence.upper().count("N") > criteria.max_n:
        return False
    return record.mean_quality >= criteria.min_mean_quality


def is_good_quality_alignment(record: AlignmentRecord, criteria: ReadQualityFilter) -> bool:
    """Whether a read is a good sequence with a convincing primary alignment."""
    if not is_good_quality_sequence(record, criteria):
        return False
    return (
        record.is_primary
        and not record.is_unmapped
        and record.mapq > criteria.min_mapq
        and (record.alignment_score or 0) > criteria.min_alignment_score
    )


# =============================================================================
# Index statistics
# =============================================================================


class ContigStats(NamedTuple):
    """Per-contig read counts in samtools idxstats layout."""

    contig: str
    length: int
    mapped: int
    unmapped: int


class AlignmentStats:
    """Per-contig alignment counts (samtools idxstats style).

    The superfast screen works from these counts alone and never looks at
    individual reads.
    """

    COLUMNS = ("contig", "length", "mapped", "unmapped")
    UNPLACED = "*"

    def __init__(self, contigs: Iterable[ContigStats], unplaced_unmapped: int = 0):
        self.contigs: tuple[ContigStats, ...] = tuple(contigs)
        self.unplaced_unmapped = unplaced_unmapped
        self._by_name = {c.contig: c for c in self.contigs}

    @classmethod
    def from_idxstats(cls, path: Path) -> AlignmentStats:
        """Load a ``samtools idxstats`` table.

        The trailing ``*`` row (reads without any placement) is kept
        separately so that it does not count as a contig.
        """
        if not path.exists():
            raise MissingInputError(str(path), "Index statistics file")

        df = pl.read_csv(
            path,
            separator="\t",
            has_header=False,
            new_columns=list(cls.COLUMNS),
            schema_overrides={
                "contig": pl.Utf8,
                "length": pl.Int64,
                "mapped": pl.Int64,
                "unmapped": pl.Int64,
            },
        )
        if df.width != len(cls.COLUMNS):
            raise MalformedReportLineError(
                str(path), 1, f"expected {len(cls.COLUMNS)} columns, got {df.width}"
            )

        contigs = []
        unplaced = 0
        for row in df.iter_rows():
            stats = ContigStats(*row)
            if stats.contig == cls.UNPLACED:
                unplaced += stats.unmapped
            else:
                contigs.append(stats)
        return cls(contigs, unplaced_unmapped=unplaced)

    @classmethod
    def from_alignment(cls, path: Path) -> AlignmentStats:
        """Read counts from the index of a BAM/CRAM file."""
        source = AlignmentSource(path)
        with source.open() as bam:
            if not bam.has_index():
                raise MissingInputError(f"{path}.bai", "Alignment index")
            lengths = dict(zip(bam.references, bam.lengths, strict=True))
            contigs = [
                ContigStats(s.contig, lengths.get(s.contig, 0), s.mapped, s.unmapped)
                for s in bam.get_index_statistics()
            ]
            logger.debug("Read index statistics for %d contigs from %s", len(contigs), path)
            return cls(contigs, unplaced_unmapped=bam.nocoordinate)

    @property
    def references(self) -> tuple[str, ...]:
        return tuple(c.contig for c in self.contigs)

    @property
    def total_mapped(self) -> int:
        return sum(c.mapped for c in self.contigs)

    @property
    def total_unmapped(self) -> int:
        return sum(c.unmapped for c in self.contigs) + self.unplaced_unmapped

    @property
    def total_reads(self) -> int:
        return self.total_mapped + self.total_unmapped

    def mapped_to(self, contigs: Iterable[str]) -> int:
        """Sum of mapped reads over ``contigs``.

        Raises:
            MissingReferenceContigError: If any contig is absent.
        """
        contigs = list(contigs)
        missing = [c for c in contigs if c not in self._by_name]
        if missing:
            raise MissingReferenceContigError(missing)
        return sum(self._by_name[c].mapped for c in contigs)

    def __contains__(self, contig: object) -> bool:
        return contig in self._by_name


# =============================================================================
# Streaming reader
# =============================================================================


def _open_mode(path: Path) -> str:
    """pysam read mode from the file extension."""
    suffix = path.suffix.lower()
    if suffix == ".bam":
        return "rb"
    if suffix == ".cram":
        return "rc"
    return "r"


class AlignmentSource:
    """
    Restartable stream of :class:`AlignmentRecord` from a SAM/BAM/CRAM file.

    Example:
        >>> source = AlignmentSource(Path("sample.bam"))
        >>> tally = IssueTally()
        >>> for record in source.records(tally=tally):
        ...     if record.is_unmapped:
        ...         print(record.read_id)
    """

    def __init__(self, path: Path, reference_fasta: Path | None = None):
        self.path = path
        self.reference_fasta = reference_fasta
        if not path.exists():
            raise MissingInputError(str(path), "Alignment file")

    def open(self) -> pysam.AlignmentFile:
        kwargs: dict[str, object] = {"check_sq": False}
        if self.reference_fasta is not None:
            kwargs["reference_filename"] = str(self.reference_fasta)
        return pysam.AlignmentFile(str(self.path), _open_mode(self.path), **kwargs)

    @property
    def references(self) -> tuple[str, ...]:
        """Contig names declared in the header."""
        with self.open() as bam:
            return tuple(bam.references)

    def has_index(self) -> bool:
        with self.open() as bam:
            return bam.has_index()

    def require_contigs(self, contigs: Iterable[str], taxid: int | None = None) -> None:
        """Raise if any of ``contigs`` is missing from the header."""
        declared = set(self.references)
        missing = [c for c in contigs if c not in declared]
        if missing:
            raise MissingReferenceContigError(missing, taxid=taxid)

    def records(
        self,
        contigs: Iterable[str] | None = None,
        tally: IssueTally | None = None,
    ) -> Iterator[AlignmentRecord]:
        """Yield records one at a time.

        Args:
            contigs: Restrict to records placed on these contigs. Uses the
                index for random access when one exists, otherwise filters a
                full pass.
            tally: Receives corrupt records. Without a tally, corrupt records
                raise immediately.

        Raises:
            CorruptAlignmentRecordError: Always fatal when htslib itself
                cannot parse a record, since reading cannot resume past it.
        """
        tally = tally if tally is not None else IssueTally(strict=True)
        wanted = list(contigs) if contigs is not None else None

        with self.open() as bam:
            if wanted is not None and bam.has_index():
                segments: Iterable[pysam.AlignedSegment] = (
                    segment for contig in wanted for segment in bam.fetch(contig)
                )
            else:
                segments = bam.fetch(until_eof=True)
                if wanted is not None:
                    wanted_set = set(wanted)
                    segments = (s for s in segments if s.reference_name in wanted_set)

            last_read: str | None = None
            segments = iter(segments)
            while True:
                try:
                    segment = next(segments)
                except StopIteration:
                    break
                except (OSError, ValueError) as e:
                    where = f"after '{last_read}'" if last_read else "at the start of the file"
                    raise CorruptAlignmentRecordError(
                        None, f"unreadable record {where} in {self.path} ({e})"
                    ) from e
                last_read = segment.query_name
                try:
                    yield AlignmentRecord.from_segment(segment)
                except CorruptAlignmentRecordError as e:
                    tally.record(e)
