"""
Sift command: extract the reads classified to a taxon.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from microsift.cli.utils import (
    QuietConsole,
    exit_on_error,
    extract_sample_name,
    load_config,
    load_taxonomy,
    override,
    setup_logging,
    spinner_progress,
)
from microsift.core.exceptions import ConfigurationError
from microsift.core.extractor import ExtractionJob, sift
from microsift.core.issues import IssueTally
from microsift.core.taxonomy import ClassificationResolver

console = Console()


def sift_reads(
    kraken_output: Path = typer.Option(
        ...,
        "--kraken-output", "-k",
        help="Kraken2 per-read output",
        exists=True,
        dir_okay=False,
    ),
    taxid: int = typer.Option(
        ...,
        "--taxid", "-t",
        help="Taxon whose reads are extracted",
        min=1,
    ),
    reads_1: Path | None = typer.Option(
        None,
        "--reads-1", "-1",
        help="Forward (or single-end) reads given to the classifier (FASTQ/FASTA)",
        exists=True,
        dir_okay=False,
    ),
    reads_2: Path | None = typer.Option(
        None,
        "--reads-2", "-2",
        help="Reverse reads for paired-end data",
        exists=True,
        dir_okay=False,
    ),
    alignment: Path | None = typer.Option(
        None,
        "--alignment", "-a",
        help="Alignment holding the reads (instead of FASTQ/FASTA)",
        exists=True,
        dir_okay=False,
    ),
    kreport: Path | None = typer.Option(
        None,
        "--kreport", "-r",
        help="Kraken2 report (taxonomy source when --nodes is not given)",
        exists=True,
        dir_okay=False,
    ),
    nodes: Path | None = typer.Option(
        None, "--nodes", help="NCBI nodes.dmp", exists=True, dir_okay=False
    ),
    names: Path | None = typer.Option(
        None, "--names", help="NCBI names.dmp", exists=True, dir_okay=False
    ),
    output: Path = typer.Option(
        ...,
        "--output", "-o",
        help="Output directory for extracted reads",
    ),
    sample_name: str | None = typer.Option(
        None,
        "--sample-name", "-n",
        help="Sample name for output files (default: derived from kraken output)",
    ),
    include_children: bool | None = typer.Option(
        None,
        "--include-children/--exact-match",
        help="Include reads from child taxa (default) or exact match only",
    ),
    compress: bool | None = typer.Option(
        None,
        "--compress/--no-compress",
        help="Compress output files with gzip",
    ),
    config: Path | None = typer.Option(
        None,
        "--config", "-c",
        help="YAML configuration file",
        exists=True,
        dir_okay=False,
    ),
    strict: bool = typer.Option(
        False,
        "--strict",
        help="Stop on the first malformed record instead of skipping it",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress progress output"),
) -> None:
    """
    Extract reads classified to a taxon (and its descendants).

    Example:

        microsift sift -k sample.kraken -r sample.kreport -t 10376 \\
            -1 sample_R1.fastq.gz -2 sample_R2.fastq.gz -o extracted/

    Output files:
        - {sample}_taxid{taxid}_R1.fastq / _R2.fastq: Paired reads
        - {sample}_taxid{taxid}.fastq: Single-end reads
        - {sample}_taxid{taxid}_R1/_R2/_singletons.fastq: From an alignment
    """
    setup_logging(verbose, quiet)
    out = QuietConsole(console, quiet=quiet)

    with exit_on_error():
        if alignment is not None and (reads_1 is not None or reads_2 is not None):
            raise ConfigurationError("Give either --alignment or --reads-1/--reads-2, not both")
        if reads_2 is not None and reads_1 is None:
            raise ConfigurationError("--reads-2 requires --reads-1")
        sources = [p for p in (alignment, reads_1, reads_2) if p is not None]
        if not sources:
            raise ConfigurationError(
                "No sequence source given",
                suggestion="Pass --reads-1 (and --reads-2) or --alignment.",
            )

        sample = sample_name or extract_sample_name(kraken_output)
        cfg = load_config(config, strict=strict)
        extract = override(cfg.extract, include_children=include_children, compress=compress)
        taxonomy = load_taxonomy(kreport, nodes, names, strict=cfg.strict)
        resolver = ClassificationResolver(taxonomy)
        job = ExtractionJob.for_taxid(
            resolver, taxid, kraken_output, sources, output, sample, extract
        )

        with spinner_progress(f"Extracting reads for taxid {taxid}...", console, quiet):
            summary = sift(job, IssueTally(strict=cfg.strict, source=str(kraken_output)))

    out.print(f"\n[bold]Reads classified to taxid {taxid}:[/bold] {summary.target_reads:,}")
    if summary.orphan_mates:
        out.print(f"  [yellow]Reads without their mate: {summary.orphan_mates:,}[/yellow]")
    if summary.missing:
        out.print(f"  [yellow]Not found in the sequence sources: {summary.missing:,}[/yellow]")
    out.print("\n[bold]Output files:[/bold]")
    for path in summary.outputs:
        out.print(f"  {path} ({summary.written.get(path.name, 0):,} reads)")
