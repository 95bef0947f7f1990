"""
Extraction of the reads classified to a taxon (sift).

The classification stream is read once to collect the target read ids, then
each sequence source is read exactly once, writing matching records to its
own output. Outputs are written in a single pass in source order, so running
the same job twice on unchanged inputs gives byte-identical files.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Literal

from Bio.SeqIO.FastaIO import SimpleFastaParser
from Bio.SeqIO.QualityIO import FastqGeneralIterator

from microsift.core.alignment import AlignmentRecord, AlignmentSource, MateRole
from microsift.core.exceptions import (
    ConfigurationError,
    MissingInputError,
    SequenceSourceMismatchError,
    TaxidNotClassifiedError,
    UnknownTaxidError,
)
from microsift.core.io_utils import (
    format_record,
    open_output,
    open_text,
    sequence_format,
    sequence_suffix,
)
from microsift.core.issues import IssueTally
from microsift.core.parsers import (
    ClassificationRecord,
    KrakenOutputParser,
    normalize_read_id,
)
from microsift.core.taxonomy import ClassificationResolver
from microsift.models.config import ExtractConfig
from microsift.models.results import ExtractionSummary

logger = logging.getLogger(__name__)

SourceKind = Literal["fastq", "fasta", "alignment"]


@dataclass(frozen=True)
class ExtractionJob:
    """
    One sift invocation: which reads to pull, from where, to where.

    Attributes:
        taxid: Requested taxon.
        target_taxa: ``taxid`` plus its descendants (or just ``taxid``).
        classification: Kraken2 per-read output.
        sources: Sequence files (FASTQ/FASTA, optionally gzipped) or a
            single alignment file.
        output_dir: Directory for extracted reads.
        prefix: Sample prefix for output names.
    """

    taxid: int
    target_taxa: frozenset[int]
    classification: Path
    sources: tuple[Path, ...]
    output_dir: Path
    prefix: str
    require_pairs: bool = True
    compress: bool = False

    @classmethod
    def for_taxid(
        cls,
        resolver: ClassificationResolver,
        taxid: int,
        classification: Path,
        sources: Sequence[Path],
        output_dir: Path,
        prefix: str,
        config: ExtractConfig | None = None,
    ) -> ExtractionJob:
        """Build a job, expanding ``taxid`` to its descendants.

        A taxid missing from the taxonomy is searched for on its own, with a
        warning, since reads may still be assigned to it directly.

        Raises:
            ConfigurationError: If no source is given, or an alignment source
                is combined with other sources.
            MissingInputError: If a source does not exist.
        """
        config = config if config is not None else ExtractConfig()
        if not sources:
            raise ConfigurationError(
                "At least one sequence source is required",
                suggestion="Pass the FASTQ/FASTA files given to the classifier, or the alignment.",
            )
        for source in sources:
            if not source.exists():
                raise MissingInputError(str(source), "Sequence source")
        kinds = [_source_kind(s) for s in sources]
        if "alignment" in kinds and len(sources) > 1:
            raise ConfigurationError(
                "An alignment file must be the only sequence source",
                suggestion="Extract from the alignment or from the FASTQ files, not both.",
            )

        if config.include_children:
            try:
                target_taxa = resolver.expand(taxid)
            except UnknownTaxidError as e:
                logger.warning("%s; matching reads assigned to it directly", e.message)
                target_taxa = frozenset({taxid})
        else:
            target_taxa = frozenset({taxid})

        return cls(
            taxid=taxid,
            target_taxa=target_taxa,
            classification=classification,
            sources=tuple(sources),
            output_dir=output_dir,
            prefix=prefix,
            require_pairs=config.require_pairs,
            compress=config.compress,
        )

    @property
    def stem(self) -> str:
        return f"{self.prefix}_taxid{self.taxid}"


def _source_kind(path: Path) -> SourceKind:
    try:
        return sequence_format(path)
    except ValueError:
        raise ConfigurationError(
            f"Cannot tell the format of sequence source {path}",
            suggestion="Use .fastq/.fq, .fasta/.fa (optionally .gz), or .bam/.sam/.cram.",
        ) from None


def collect_target_ids(
    classification: Iterable[ClassificationRecord],
    target_taxa: frozenset[int],
) -> set[str]:
    """Read ids whose classification falls in ``target_taxa`` (one pass)."""
    return {
        record.read_id
        for record in classification
        if ClassificationResolver.resolve(record, target_taxa)
    }


def sift(job: ExtractionJob, tally: IssueTally | None = None) -> ExtractionSummary:
    """Extract the reads of ``job.taxid`` from every sequence source.

    Paired FASTQ/FASTA sources (R1, R2) are written to matching R1/R2
    outputs. A target read present in only one of them is still written and
    counted as an orphan mate. An alignment source is split into R1, R2 and
    singleton outputs by mate role; a mate that never appears is written to
    the singleton output. Reads classified to the taxon but absent from
    every source are reported as a sequence source mismatch.

    A taxon with no classified reads is not an error: the outputs are
    written empty and the summary reports zero reads.
    """
    tally = tally if tally is not None else IssueTally(source=str(job.classification))
    parser = KrakenOutputParser(job.classification, tally=tally)
    target_ids = collect_target_ids(parser, job.target_taxa)
    logger.info(
        "%d read(s) classified to taxid %d (%d taxa searched)",
        len(target_ids),
        job.taxid,
        len(job.target_taxa),
    )
    if not target_ids:
        logger.info("%s", TaxidNotClassifiedError(job.taxid).message)

    kinds = [_source_kind(s) for s in job.sources]
    written: dict[str, int] = {}
    outputs: list[Path] = []
    found: list[set[str]] = []
    orphan_mates = 0

    if kinds == ["alignment"]:
        found_ids, alignment_outputs, orphan_mates = _extract_alignment(
            job, target_ids, tally, written
        )
        found.append(found_ids)
        outputs.extend(alignment_outputs)
    else:
        for index, (source, kind) in enumerate(zip(job.sources, kinds, strict=True)):
            output = job.output_dir / (
                f"{job.stem}{_mate_label(index, len(job.sources))}"
                f"{sequence_suffix(kind, job.compress)}"  # type: ignore[arg-type]
            )
            found_ids, n = _extract_sequences(source, kind, target_ids, output, job.compress)
            found.append(found_ids)
            written[output.name] = n
            outputs.append(output)

    if job.require_pairs and len(found) == 2:
        orphan_mates = len(found[0] ^ found[1])
        if orphan_mates:
            logger.warning(
                "%d target read(s) were found in only one of the paired sources",
                orphan_mates,
            )

    missing_ids = target_ids.difference(*found) if found else set(target_ids)
    if missing_ids:
        tally.record(SequenceSourceMismatchError(len(missing_ids), sorted(missing_ids)[:3]))
    tally.log_summary()

    return ExtractionSummary(
        taxid=job.taxid,
        target_taxa=len(job.target_taxa),
        target_reads=len(target_ids),
        written=written,
        orphan_mates=orphan_mates,
        missing=len(missing_ids),
        outputs=outputs,
    )


def _mate_label(index: int, n_sources: int) -> str:
    if n_sources == 1:
        return ""
    if n_sources == 2:
        return f"_R{index + 1}"
    return f"_{index + 1}"


def _iter_sequences(
    path: Path, kind: SourceKind
) -> Iterator[tuple[str, str, str | None]]:
    """(title, sequence, qualities) from a FASTQ or FASTA file."""
    with open_text(path) as handle:
        if kind == "fastq":
            for title, seq, qual in FastqGeneralIterator(handle):
                yield title, seq, qual
        else:
            for title, seq in SimpleFastaParser(handle):
                yield title, seq, None


def _extract_sequences(
    source: Path,
    kind: SourceKind,
    target_ids: set[str],
    output: Path,
    compress: bool,
) -> tuple[set[str], int]:
    """Write matching records of one FASTQ/FASTA source; first copy of an id wins."""
    found: set[str] = set()
    duplicates = 0
    with open_output(output, compress=compress) as out:
        for title, seq, qual in _iter_sequences(source, kind):
            read_id = normalize_read_id(title)
            if read_id not in target_ids:
                continue
            if read_id in found:
                duplicates += 1
                continue
            found.add(read_id)
            out.write(format_record(title, seq, qual, kind))  # type: ignore[arg-type]

    if duplicates:
        logger.warning("Skipped %d duplicate record(s) in %s", duplicates, source)
    logger.debug("Wrote %d record(s) from %s to %s", len(found), source, output)
    return found, len(found)


def _extract_alignment(
    job: ExtractionJob,
    target_ids: set[str],
    tally: IssueTally,
    written: dict[str, int],
) -> tuple[set[str], list[Path], int]:
    """Write matching primary records of an alignment, keeping pairs together."""
    suffix = sequence_suffix("fastq", job.compress)
    paths = {
        stream: job.output_dir / f"{job.stem}_{stream}{suffix}"
        for stream in ("R1", "R2", "singletons")
    }
    counts = dict.fromkeys(paths, 0)
    found: set[str] = set()
    pending: dict[str, AlignmentRecord] = {}
    handles: dict[str, IO[str]] = {}

    def _write(stream: str, record: AlignmentRecord) -> None:
        handles[stream].write(
            format_record(record.read_id, record.sequence, record.qualities, "fastq")
        )
        counts[stream] += 1

    try:
        for stream, path in paths.items():
            handles[stream] = open_output(path, compress=job.compress)

        for record in AlignmentSource(job.sources[0]).records(tally=tally):
            if not record.is_primary or record.read_id not in target_ids:
                continue
            found.add(record.read_id)
            if not record.is_paired:
                _write("singletons", record)
                continue
            first = pending.pop(record.read_id, None)
            if first is None:
                pending[record.read_id] = record
                continue
            read1, read2 = (first, record) if first.mate is MateRole.READ1 else (record, first)
            _write("R1", read1)
            _write("R2", read2)

        for record in pending.values():
            _write("singletons", record)
    finally:
        for handle in handles.values():
            handle.close()

    if pending:
        logger.warning(
            "%d target read(s) had no mate in %s; written as singletons",
            len(pending),
            job.sources[0],
        )
    for stream, path in paths.items():
        written[path.name] = counts[stream]
    return found, list(paths.values()), len(pending)
