"""
Candidate read selection from host alignments.

Three policies, fastest first:

- superfast: read counts on each taxon's decoy contigs straight from index
  statistics, without touching individual reads
- quick: stream the records on those contigs and drop reads that fall in
  hard-to-map regions
- full: one pass over the whole file, writing every read that might be
  non-host (unmapped, partly unmapped, on a decoy contig, or in a region
  homologous to microbial genomes) to FASTQ/FASTA for an external classifier

All three are single streaming passes; nothing holds the alignment in memory.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable
from enum import Enum
from pathlib import Path
from typing import IO

from microsift.core.alignment import (
    AlignmentRecord,
    AlignmentSource,
    AlignmentStats,
    MateRole,
    is_good_quality_alignment,
    is_good_quality_sequence,
)
from microsift.core.contig_map import ContigTaxonMap
from microsift.core.exceptions import ConfigurationError, MissingReferenceContigError
from microsift.core.io_utils import format_record, open_output, sequence_suffix
from microsift.core.issues import IssueTally
from microsift.core.regions import IntervalIndex, RegionSets
from microsift.models.config import SelectionConfig
from microsift.models.results import AlignmentSummary, SelectionSummary, TaxonEvidence

logger = logging.getLogger(__name__)


class SelectionReason(str, Enum):
    """Why a read was selected as a candidate in the full policy."""

    UNMAPPED = "unmapped"
    MATE_UNMAPPED = "mate-unmapped"
    SOFT_CLIPPED = "soft-clipped"
    DECOY = "decoy"
    HOMOLOGY = "homology"


# =============================================================================
# Contig planning (superfast / quick)
# =============================================================================


def taxa_contigs(
    contig_map: ContigTaxonMap,
    references: Iterable[str],
    taxids: Iterable[int] | None = None,
) -> dict[int, list[str]]:
    """Contigs present in the alignment header for each taxon to screen.

    Without explicit ``taxids`` every mapped taxon with at least one contig
    in the header is screened. Alternative decoy names for the same taxon
    (chrEBV vs NC_007605) are summed; only the ones present are used.

    Raises:
        MissingReferenceContigError: If a requested taxon has none of its
            contigs in the header, or no mapped contig is present at all.
        ConfigurationError: If a requested taxon has no mapped contigs.
    """
    declared = set(references)

    if taxids is None:
        present = contig_map.present_in(declared)
        if len(present) == 0:
            raise MissingReferenceContigError(list(contig_map.contig_to_taxid))
        return {t: present.contigs_for(t) for t in present.taxids}

    plan: dict[int, list[str]] = {}
    for taxid in taxids:
        contigs = contig_map.contigs_for(taxid)
        if not contigs:
            raise ConfigurationError(
                f"No reference contigs are mapped to taxid {taxid}",
                suggestion="Add the taxon's contigs to the contig map TSV.",
            )
        present = [c for c in contigs if c in declared]
        if not present:
            raise MissingReferenceContigError(contigs, taxid=taxid)
        plan[taxid] = present
    return plan


def superfast_evidence(
    stats: AlignmentStats,
    contig_map: ContigTaxonMap,
    taxids: Iterable[int] | None = None,
) -> list[TaxonEvidence]:
    """Mapped-read counts per taxon from index statistics.

    Example:
        >>> stats = AlignmentStats.from_idxstats(Path("sample.idxstats.tsv"))
        >>> [e.proportion for e in superfast_evidence(stats, ContigTaxonMap.default())]
        [0.1]
    """
    plan = taxa_contigs(contig_map, stats.references, taxids)
    total = stats.total_mapped
    evidence = [
        TaxonEvidence(
            taxid=taxid,
            name=contig_map.name_for(taxid),
            count=stats.mapped_to(contigs),
            total=total,
        )
        for taxid, contigs in plan.items()
    ]
    logger.info("Superfast counts for %d taxa over %d mapped reads", len(evidence), total)
    return evidence


def quick_evidence(
    source: AlignmentSource,
    contig_map: ContigTaxonMap,
    regions: RegionSets,
    taxids: Iterable[int] | None = None,
    min_mapq: int = 0,
    tally: IssueTally | None = None,
) -> list[TaxonEvidence]:
    """Mapped-read counts per taxon, excluding hard-to-map regions.

    Only primary mapped records with MAPQ >= ``min_mapq`` whose aligned
    interval misses every hard-to-map interval are counted. The denominator
    is all mapped records, from the index when one exists and otherwise
    counted during the same pass.
    """
    tally = tally if tally is not None else IssueTally(source=str(source.path))
    references = source.references
    plan = taxa_contigs(contig_map, references, taxids)
    hard_to_map = regions.hard_to_map.with_contigs(references)
    owner = {contig: taxid for taxid, contigs in plan.items() for contig in contigs}
    counts = dict.fromkeys(plan, 0)

    indexed = source.has_index()
    total = AlignmentStats.from_alignment(source.path).total_mapped if indexed else 0
    excluded = 0

    for record in source.records(contigs=list(owner) if indexed else None, tally=tally):
        if not indexed and not record.is_unmapped:
            total += 1
        taxid = owner.get(record.contig) if record.contig is not None else None
        if taxid is None or record.is_unmapped or not record.is_primary:
            continue
        if record.mapq < min_mapq:
            continue
        if hard_to_map.overlaps(record.contig, record.position, record.end):  # type: ignore[arg-type]
            excluded += 1
            continue
        counts[taxid] += 1

    tally.log_summary()
    logger.info(
        "Quick counts for %d taxa (%d reads in hard-to-map regions ignored)",
        len(counts),
        excluded,
    )
    return [
        TaxonEvidence(taxid=t, name=contig_map.name_for(t), count=c, total=total)
        for t, c in counts.items()
    ]


# =============================================================================
# Full candidate selection
# =============================================================================


class CandidateRule:
    """
    Decides whether a record, or the template it belongs to, is a candidate.

    A paired template is a candidate when either mate is. Each record also
    carries some information about its mate (mapped state, contig, position,
    mate CIGAR) so candidacy can usually be decided from whichever mate is
    seen first. When it cannot, :meth:`mate_reasons` returns ``None`` and the
    decision waits for the mate itself.
    """

    def __init__(self, selection: SelectionConfig, homology: IntervalIndex):
        self.selection = selection
        self.homology = homology

    def own_reasons(self, record: AlignmentRecord) -> set[SelectionReason]:
        """Reasons that apply to the record itself."""
        if record.is_unmapped:
            return {SelectionReason.UNMAPPED}

        reasons: set[SelectionReason] = set()
        rule = self.selection.partial_mapping
        if rule in ("mate-unmapped", "either") and record.mate_unmapped:
            reasons.add(SelectionReason.MATE_UNMAPPED)
        if (
            rule in ("soft-clipped", "either")
            and record.soft_clip_fraction >= self.selection.min_soft_clip_fraction
        ):
            reasons.add(SelectionReason.SOFT_CLIPPED)
        if self.selection.is_decoy(record.contig):
            reasons.add(SelectionReason.DECOY)
        if record.contig is not None and self.homology.overlaps(
            record.contig, record.position, record.end
        ):
            reasons.add(SelectionReason.HOMOLOGY)
        return reasons

    def mate_reasons(self, record: AlignmentRecord) -> set[SelectionReason] | None:
        """Reasons inferred for the mate from this record's mate fields.

        Returns ``None`` when the mate's candidacy cannot be decided without
        seeing it: no MC tag under a soft-clip rule, or no MC tag for a mate
        placed on a contig with homology-decoy intervals.
        """
        if not record.is_paired:
            return set()
        if record.mate_unmapped:
            # The mate is itself an unmapped candidate
            return {SelectionReason.MATE_UNMAPPED}

        reasons: set[SelectionReason] = set()
        undecided = False
        if self.selection.is_decoy(record.mate_contig):
            reasons.add(SelectionReason.DECOY)
        if self.selection.partial_mapping in ("soft-clipped", "either"):
            if record.mate_soft_clip_fraction is None:
                undecided = True
            elif record.mate_soft_clip_fraction >= self.selection.min_soft_clip_fraction:
                reasons.add(SelectionReason.SOFT_CLIPPED)
        if record.mate_contig is not None and record.mate_position >= 0:
            if record.mate_end is not None:
                mate_end = max(record.mate_end, record.mate_position + 1)
                if self.homology.overlaps(record.mate_contig, record.mate_position, mate_end):
                    reasons.add(SelectionReason.HOMOLOGY)
            elif len(self.homology.starts.get(record.mate_contig, ())):
                undecided = True

        if undecided and not reasons:
            return None
        return reasons

    def reasons(self, record: AlignmentRecord) -> set[SelectionReason]:
        """Everything known now; an undecided mate contributes nothing."""
        return self.own_reasons(record) | (self.mate_reasons(record) or set())


class _CandidateWriter:
    """Lazily opened R1/R2/singleton outputs for candidate reads."""

    STREAMS = ("R1", "R2", "singletons")

    def __init__(self, output_dir: Path, prefix: str, selection: SelectionConfig):
        self.output_dir = output_dir
        self.prefix = prefix
        self.output_format = selection.output_format
        self.suffix = sequence_suffix(selection.output_format, selection.compress)
        self.compress = selection.compress
        self._handles: dict[str, IO[str]] = {}
        self.paths: dict[str, Path] = {}

    def path_for(self, stream: str) -> Path:
        return self.output_dir / f"{self.prefix}_candidates_{stream}{self.suffix}"

    def write(self, stream: str, record: AlignmentRecord) -> None:
        handle = self._handles.get(stream)
        if handle is None:
            path = self.path_for(stream)
            handle = open_output(path, compress=self.compress)
            self._handles[stream] = handle
            self.paths[stream] = path
        handle.write(
            format_record(record.read_id, record.sequence, record.qualities, self.output_format)
        )

    def close(self) -> None:
        for handle in self._handles.values():
            handle.close()

    @property
    def outputs(self) -> list[Path]:
        return [self.paths[s] for s in self.STREAMS if s in self.paths]


def select_candidates(
    source: AlignmentSource,
    regions: RegionSets,
    selection: SelectionConfig,
    output_dir: Path,
    prefix: str,
    contig_map: ContigTaxonMap | None = None,
    tally: IssueTally | None = None,
) -> SelectionSummary:
    """Write candidate non-host reads from one pass over an alignment file.

    Pairs are written together to ``{prefix}_candidates_R1``/``_R2``; reads
    without a mate go to ``{prefix}_candidates_singletons``. The first mate
    of a template is held until its partner arrives whenever the template
    is already a candidate or its candidacy depends on the unseen mate. A
    candidate whose mate never appears in the file is written to the
    singleton output with a warning. Secondary and supplementary records
    are ignored.

    Also writes ``{prefix}.bam_summary.txt`` with whole-file read counts and
    the number of good quality alignments on each microbial contig.

    Args:
        source: Alignment to scan.
        regions: Region sets; the homology-decoy set is used here.
        selection: Candidate rules, quality filter and output format.
        output_dir: Directory for candidate read files.
        prefix: Sample prefix for output file names.
        contig_map: Microbial contigs to report alignment quality for
            (default: built-in catalogue).
        tally: Receives corrupt records.
    """
    tally = tally if tally is not None else IssueTally(source=str(source.path))
    contig_map = contig_map if contig_map is not None else ContigTaxonMap.default()
    references = source.references
    rule = CandidateRule(selection, regions.homology_decoy.with_contigs(references))
    quality = selection.quality

    writer = _CandidateWriter(output_dir, prefix, selection)
    pending: dict[str, tuple[AlignmentRecord, set[SelectionReason]]] = {}
    reasons_seen: Counter[str] = Counter()
    good_alignments: Counter[str] = Counter(
        {c: 0 for c in contig_map.contig_to_taxid if c in set(references)}
    )
    n_records = n_mapped = n_candidates = n_pairs = n_singletons = n_low_quality = 0

    def _passes(*records: AlignmentRecord) -> bool:
        return not quality.enabled or all(is_good_quality_sequence(r, quality) for r in records)

    try:
        for record in source.records(tally=tally):
            if not record.is_primary:
                continue
            n_records += 1
            if not record.is_unmapped:
                n_mapped += 1
                if record.contig in good_alignments and is_good_quality_alignment(record, quality):
                    good_alignments[record.contig] += 1

            if not record.is_paired:
                reasons = rule.own_reasons(record)
                if not reasons:
                    continue
                if _passes(record):
                    writer.write("singletons", record)
                    n_singletons += 1
                    n_candidates += 1
                    reasons_seen.update(r.value for r in reasons)
                else:
                    n_low_quality += 1
                continue

            waiting = pending.pop(record.read_id, None)
            if waiting is not None:
                first, first_reasons = waiting
                reasons = first_reasons | rule.own_reasons(record)
                if not reasons:
                    # Undecided host pair
                    continue
                read1, read2 = (
                    (first, record) if first.mate is MateRole.READ1 else (record, first)
                )
                if _passes(read1, read2):
                    writer.write("R1", read1)
                    writer.write("R2", read2)
                    n_pairs += 1
                    n_candidates += 2
                    reasons_seen.update(r.value for r in reasons)
                else:
                    n_low_quality += 2
                continue

            mate_reasons = rule.mate_reasons(record)
            reasons = rule.own_reasons(record) | (mate_reasons or set())
            if reasons or mate_reasons is None:
                pending[record.read_id] = (record, reasons)

        # Mates that never arrived
        orphans = 0
        for record, reasons in pending.values():
            if not reasons:
                continue
            if _passes(record):
                writer.write("singletons", record)
                orphans += 1
                n_candidates += 1
                reasons_seen.update(r.value for r in reasons)
            else:
                n_low_quality += 1
    finally:
        writer.close()

    if orphans:
        logger.warning(
            "%d candidate read(s) had no mate in %s; written as singletons",
            orphans,
            source.path,
        )
    tally.log_summary()

    alignment = AlignmentSummary(
        total_reads=n_records,
        mapped_reads=n_mapped,
        unmapped_reads=n_records - n_mapped,
    )
    summary_path = output_dir / f"{prefix}.bam_summary.txt"
    write_alignment_summary(
        summary_path,
        alignment,
        candidates=n_candidates,
        low_quality=n_low_quality,
        good_alignments=good_alignments,
    )
    logger.info(
        "Selected %d candidate reads (%d pairs, %d singletons, %d orphans) from %d records",
        n_candidates,
        n_pairs,
        n_singletons,
        orphans,
        n_records,
    )

    return SelectionSummary(
        records=n_records,
        candidates=n_candidates,
        pairs=n_pairs,
        singletons=n_singletons,
        orphans=orphans,
        low_quality=n_low_quality,
        reasons=dict(sorted(reasons_seen.items())),
        alignment=alignment,
        outputs=[*writer.outputs, summary_path],
        skipped_records=tally.total,
    )


def write_alignment_summary(
    path: Path,
    alignment: AlignmentSummary,
    candidates: int,
    low_quality: int,
    good_alignments: dict[str, int],
) -> None:
    """Write the tab-separated label/value alignment summary."""
    lines = [
        ("total_reads", alignment.total_reads),
        ("mapped_reads", alignment.mapped_reads),
        ("unmapped_reads", alignment.unmapped_reads),
        ("candidate_reads", candidates),
        ("low_quality_reads", low_quality),
    ]
    lines.extend((f"good_alignments:{contig}", n) for contig, n in good_alignments.items())
    with open_output(path, compress=False) as f:
        for label, value in lines:
            f.write(f"{label}\t{value}\n")
