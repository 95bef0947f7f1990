"""
Screen commands.

Provides subcommands:
- superfast: Proportion of mapped reads on decoy contigs, from index statistics
- quick: Same proportion after dropping reads in hard-to-map regions
- full-select: Write candidate non-host reads for an external classifier
- full-decide: Call taxa from the classifier's per-read output
- hits: Call hits from a classifier report

plus the top-level ``aggregate`` command registered by ``main``.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

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
from microsift.core.alignment import AlignmentSource, AlignmentStats
from microsift.core.contig_map import ContigTaxonMap
from microsift.core.exceptions import ConfigurationError
from microsift.core.issues import IssueTally
from microsift.core.parsers import KrakenOutputParser, KrakenReport
from microsift.core.regions import RegionSets
from microsift.core.screen import (
    call_kraken_hits,
    classification_evidence,
    evaluate_all,
    policy_for,
    write_kraken_hits,
    write_results,
    write_taxon_counts,
)
from microsift.core.selector import quick_evidence, select_candidates, superfast_evidence
from microsift.core.taxonomy import ClassificationResolver
from microsift.models.config import TriageConfig
from microsift.models.results import ScreenMode, ScreenResult

app = typer.Typer(
    name="screen",
    help="Screen a sample for taxa of interest",
    no_args_is_help=True,
)

console = Console()

CONFIG_OPTION = typer.Option(
    None,
    "--config", "-c",
    help="YAML configuration file",
    exists=True,
    dir_okay=False,
)
OUTPUT_OPTION = typer.Option(
    ...,
    "--output", "-o",
    help="Output directory",
)
SAMPLE_OPTION = typer.Option(
    None,
    "--sample-name", "-n",
    help="Sample name for output files (default: derived from the input)",
)
TAXID_OPTION = typer.Option(
    None,
    "--taxid", "-t",
    help="Taxon to screen (repeatable; default: configured taxa)",
    min=1,
)
CONTIG_MAP_OPTION = typer.Option(
    None,
    "--contig-map",
    help="TSV mapping contigs to taxids (default: built-in catalogue)",
    exists=True,
    dir_okay=False,
)
STRICT_OPTION = typer.Option(
    False,
    "--strict",
    help="Stop on the first malformed record instead of skipping it",
)
VERBOSE_OPTION = typer.Option(False, "--verbose", "-v", help="Enable verbose output")
QUIET_OPTION = typer.Option(False, "--quiet", "-q", help="Suppress progress output")


def _contig_map(cfg: TriageConfig, contig_map: Path | None) -> ContigTaxonMap:
    path = contig_map or cfg.contig_map
    return ContigTaxonMap.from_tsv(path) if path is not None else ContigTaxonMap.default()


def _print_results(out: QuietConsole, results: list[ScreenResult]) -> None:
    table = Table(show_header=True, header_style="bold")
    table.add_column("Taxid", justify="right")
    table.add_column("Name")
    table.add_column("Metric", justify="right")
    table.add_column("Threshold", justify="right")
    table.add_column("Detected")
    for r in sorted(results, key=lambda r: r.taxid):
        metric = f"{r.metric:.4g}" if r.policy is not ScreenMode.FULL else f"{int(r.metric):,}"
        table.add_row(
            str(r.taxid),
            r.name or "",
            metric,
            f"{r.threshold:g}",
            "[green]yes[/green]" if r.decision else "no",
        )
    out.print(table)


@app.command(name="superfast")
def superfast(
    idxstats: Path | None = typer.Option(
        None,
        "--idxstats", "-i",
        help="samtools idxstats output (TSV)",
        exists=True,
        dir_okay=False,
    ),
    alignment: Path | None = typer.Option(
        None,
        "--alignment", "-a",
        help="Indexed BAM/CRAM to read index statistics from",
        exists=True,
        dir_okay=False,
    ),
    output: Path = OUTPUT_OPTION,
    sample_name: str | None = SAMPLE_OPTION,
    taxids: list[int] | None = TAXID_OPTION,
    contig_map: Path | None = CONTIG_MAP_OPTION,
    threshold: float | None = typer.Option(
        None,
        "--threshold",
        help="Detection threshold as a fraction of mapped reads",
        min=0.0,
        max=1.0,
    ),
    config: Path | None = CONFIG_OPTION,
    verbose: bool = VERBOSE_OPTION,
    quiet: bool = QUIET_OPTION,
) -> None:
    """
    Screen from per-contig read counts only.

    A taxon is detected when the share of mapped reads on its contigs is
    strictly greater than the threshold.

    Example:

        microsift screen superfast --idxstats sample.idxstats.tsv -o results/

    Output files:
        - {sample}.superfast.csv: One row per screened taxon
    """
    setup_logging(verbose, quiet)
    out = QuietConsole(console, quiet=quiet)

    with exit_on_error():
        if (idxstats is None) == (alignment is None):
            raise ConfigurationError(
                "Give exactly one of --idxstats or --alignment",
                suggestion="Run 'samtools idxstats' on the BAM, or pass the indexed BAM.",
            )
        source: Path = idxstats or alignment  # type: ignore[assignment]
        sample = sample_name or extract_sample_name(source)

        cfg = load_config(config)
        cfg = override(cfg, superfast=override(cfg.superfast, threshold=threshold))

        stats = (
            AlignmentStats.from_idxstats(idxstats)
            if idxstats is not None
            else AlignmentStats.from_alignment(source)
        )
        evidence = superfast_evidence(stats, _contig_map(cfg, contig_map), taxids or None)
        results = evaluate_all(policy_for(ScreenMode.SUPERFAST, cfg), evidence, sample)

        result_path = output / f"{sample}.superfast.csv"
        write_results(results, result_path)

    _print_results(out, results)
    out.print(f"\n[bold]Results:[/bold] {result_path}")


@app.command(name="quick")
def quick(
    alignment: Path = typer.Option(
        ...,
        "--alignment", "-a",
        help="Alignment file (SAM/BAM/CRAM)",
        exists=True,
        dir_okay=False,
    ),
    hard_to_map: Path | None = typer.Option(
        None,
        "--hard-to-map",
        help="BED of hard-to-map regions (overrides config)",
        exists=True,
        dir_okay=False,
    ),
    output: Path = OUTPUT_OPTION,
    sample_name: str | None = SAMPLE_OPTION,
    taxids: list[int] | None = TAXID_OPTION,
    contig_map: Path | None = CONTIG_MAP_OPTION,
    threshold: float | None = typer.Option(
        None,
        "--threshold",
        help="Detection threshold as a fraction of mapped reads",
        min=0.0,
        max=1.0,
    ),
    min_mapq: int | None = typer.Option(
        None,
        "--min-mapq",
        help="Minimum mapping quality for a read to count",
        min=0,
        max=255,
    ),
    reference: Path | None = typer.Option(
        None,
        "--reference",
        help="Reference FASTA (CRAM input only)",
        exists=True,
        dir_okay=False,
    ),
    config: Path | None = CONFIG_OPTION,
    strict: bool = STRICT_OPTION,
    verbose: bool = VERBOSE_OPTION,
    quiet: bool = QUIET_OPTION,
) -> None:
    """
    Screen from reads on decoy contigs, ignoring hard-to-map regions.

    Example:

        microsift screen quick -a sample.bam --hard-to-map hard.bed.gz -o results/

    Output files:
        - {sample}.quick.csv: One row per screened taxon
    """
    setup_logging(verbose, quiet)
    out = QuietConsole(console, quiet=quiet)

    with exit_on_error():
        sample = sample_name or extract_sample_name(alignment)
        cfg = load_config(config, strict=strict)
        cfg = override(
            cfg,
            quick=override(cfg.quick, threshold=threshold),
            selection=override(cfg.selection, quick_min_mapq=min_mapq),
        )
        regions = RegionSets.from_beds(hard_to_map=hard_to_map or cfg.regions.hard_to_map)

        with spinner_progress("Counting reads on decoy contigs...", console, quiet):
            evidence = quick_evidence(
                AlignmentSource(alignment, reference_fasta=reference),
                _contig_map(cfg, contig_map),
                regions,
                taxids or None,
                min_mapq=cfg.selection.quick_min_mapq,
                tally=IssueTally(strict=cfg.strict, source=str(alignment)),
            )
        results = evaluate_all(policy_for(ScreenMode.QUICK, cfg), evidence, sample)

        result_path = output / f"{sample}.quick.csv"
        write_results(results, result_path)

    _print_results(out, results)
    out.print(f"\n[bold]Results:[/bold] {result_path}")


@app.command(name="full-select")
def full_select(
    alignment: Path = typer.Option(
        ...,
        "--alignment", "-a",
        help="Alignment file (SAM/BAM/CRAM)",
        exists=True,
        dir_okay=False,
    ),
    homology: Path | None = typer.Option(
        None,
        "--homology",
        help="BED of host regions homologous to microbial genomes (overrides config)",
        exists=True,
        dir_okay=False,
    ),
    output: Path = OUTPUT_OPTION,
    sample_name: str | None = SAMPLE_OPTION,
    decoy_contigs: list[str] | None = typer.Option(
        None,
        "--decoy-contig",
        help="Contig whose reads are always candidates (repeatable; replaces config list)",
    ),
    partial_mapping: str | None = typer.Option(
        None,
        "--partial-mapping",
        help="Partly unmapped rule: mate-unmapped, soft-clipped, either or none",
    ),
    output_format: str | None = typer.Option(
        None,
        "--format",
        help="Candidate read format: fastq or fasta",
    ),
    quality_filter: bool | None = typer.Option(
        None,
        "--quality-filter/--no-quality-filter",
        help="Drop low quality candidate reads (default: from config, on)",
    ),
    compress: bool | None = typer.Option(
        None,
        "--compress/--no-compress",
        help="Compress candidate read files with gzip",
    ),
    contig_map: Path | None = CONTIG_MAP_OPTION,
    reference: Path | None = typer.Option(
        None,
        "--reference",
        help="Reference FASTA (CRAM input only)",
        exists=True,
        dir_okay=False,
    ),
    config: Path | None = CONFIG_OPTION,
    strict: bool = STRICT_OPTION,
    verbose: bool = VERBOSE_OPTION,
    quiet: bool = QUIET_OPTION,
) -> None:
    """
    Write candidate non-host reads from one pass over an alignment.

    A read is a candidate when it is unmapped, partly unmapped, aligned to
    a decoy contig, or aligned inside a homology region. Pairs are kept
    together.

    Example:

        microsift screen full-select -a sample.bam --homology homology.bed.gz -o candidates/

    Output files:
        - {sample}_candidates_R1.fastq / _R2.fastq: Candidate pairs
        - {sample}_candidates_singletons.fastq: Unpaired candidates and orphans
        - {sample}.bam_summary.txt: Read counts for the alignment
    """
    setup_logging(verbose, quiet)
    out = QuietConsole(console, quiet=quiet)

    with exit_on_error():
        sample = sample_name or extract_sample_name(alignment)
        cfg = load_config(config, strict=strict)
        selection = override(
            cfg.selection,
            decoy_contigs=decoy_contigs or None,
            partial_mapping=partial_mapping,
            output_format=output_format,
            compress=compress,
            quality=override(cfg.selection.quality, enabled=quality_filter),
        )
        regions = RegionSets.from_beds(homology_decoy=homology or cfg.regions.homology_decoy)

        with spinner_progress("Selecting candidate reads...", console, quiet):
            summary = select_candidates(
                AlignmentSource(alignment, reference_fasta=reference),
                regions,
                selection,
                output,
                sample,
                contig_map=_contig_map(cfg, contig_map),
                tally=IssueTally(strict=cfg.strict, source=str(alignment)),
            )

    out.print(f"\n[bold]Records scanned:[/bold] {summary.records:,}")
    out.print(f"  Candidates:  {summary.candidates:,} ({summary.pairs:,} pairs)")
    out.print(f"  Singletons:  {summary.singletons:,}")
    if summary.orphans:
        out.print(f"  [yellow]Orphans:     {summary.orphans:,}[/yellow]")
    out.print(f"  Low quality: {summary.low_quality:,}")
    for reason, count in summary.reasons.items():
        out.print(f"  [dim]{reason}: {count:,}[/dim]")
    out.print("\n[bold]Output files:[/bold]")
    for path in summary.outputs:
        out.print(f"  {path}")


@app.command(name="full-decide")
def full_decide(
    kraken_output: Path = typer.Option(
        ...,
        "--kraken-output", "-k",
        help="Kraken2 per-read output for the candidate reads",
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
    output: Path = OUTPUT_OPTION,
    sample_name: str | None = SAMPLE_OPTION,
    taxids: list[int] | None = TAXID_OPTION,
    minimum_reads: int | None = typer.Option(
        None,
        "--minimum-reads",
        help="Classified reads needed to call a taxon detected",
        min=1,
    ),
    config: Path | None = CONFIG_OPTION,
    strict: bool = STRICT_OPTION,
    verbose: bool = VERBOSE_OPTION,
    quiet: bool = QUIET_OPTION,
) -> None:
    """
    Call taxa from classified candidate reads.

    A taxon is detected when at least --minimum-reads reads were classified
    to it or to any of its descendants.

    Example:

        microsift screen full-decide -k sample.kraken -r sample.kreport -o results/

    Output files:
        - {sample}.full.csv: One row per requested taxon
    """
    setup_logging(verbose, quiet)
    out = QuietConsole(console, quiet=quiet)

    with exit_on_error():
        sample = sample_name or extract_sample_name(kraken_output)
        cfg = load_config(config, strict=strict)
        cfg = override(cfg, full=override(cfg.full, minimum_reads=minimum_reads))
        taxonomy = load_taxonomy(kreport, nodes, names, strict=cfg.strict)
        resolver = ClassificationResolver(taxonomy)
        requested = taxids or cfg.taxa_of_interest

        tally = IssueTally(strict=cfg.strict, source=str(kraken_output))
        with spinner_progress("Resolving classifications...", console, quiet):
            counts = resolver.aggregate(
                KrakenOutputParser(kraken_output, tally=tally),
                requested,
                report_zero_counts=cfg.full.report_zero_counts,
            )
        tally.log_summary()

        names_by_taxid = {t: n for t in counts if (n := taxonomy.name_of(t))}
        results = evaluate_all(
            policy_for(ScreenMode.FULL, cfg),
            classification_evidence(counts, names_by_taxid),
            sample,
        )
        result_path = output / f"{sample}.full.csv"
        write_results(results, result_path)

    _print_results(out, results)
    out.print(f"\n[bold]Results:[/bold] {result_path}")


@app.command(name="hits")
def hits(
    kreport: Path = typer.Option(
        ...,
        "--kreport", "-r",
        help="Kraken2 report",
        exists=True,
        dir_okay=False,
    ),
    output: Path = OUTPUT_OPTION,
    sample_name: str | None = SAMPLE_OPTION,
    min_reads: int | None = typer.Option(
        None,
        "--min-reads",
        help="Clade reads must be greater than this",
        min=0,
    ),
    min_percent: float | None = typer.Option(
        None,
        "--min-percent",
        help="Clade percentage must reach this",
        min=0.0,
        max=100.0,
    ),
    all_taxa: bool = typer.Option(
        False,
        "--all-taxa",
        help="Report hits outside the taxa-of-interest catalogue too",
    ),
    config: Path | None = CONFIG_OPTION,
    strict: bool = STRICT_OPTION,
    verbose: bool = VERBOSE_OPTION,
    quiet: bool = QUIET_OPTION,
) -> None:
    """
    Call hits from a classifier report.

    Output files:
        - {sample}.krakenhits.csv: taxid, rank, name, clade_percent, clade_reads, oncogenic
    """
    setup_logging(verbose, quiet)
    out = QuietConsole(console, quiet=quiet)

    with exit_on_error():
        sample = sample_name or extract_sample_name(kreport)
        cfg = load_config(config, strict=strict)
        thresholds = override(
            cfg.hits,
            min_number_reads=min_reads,
            min_percent=min_percent,
            oncogenic_only=False if all_taxa else None,
        )
        report = KrakenReport(kreport, tally=IssueTally(strict=cfg.strict, source=str(kreport)))
        found = call_kraken_hits(report, thresholds)
        hits_path = output / f"{sample}.krakenhits.csv"
        write_kraken_hits(found, hits_path)

    out.print(f"[bold]{len(found)}[/bold] hit(s) written to {hits_path}")


def aggregate(
    kraken_output: Path = typer.Option(
        ...,
        "--kraken-output", "-k",
        help="Kraken2 per-read output",
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
    output: Path = OUTPUT_OPTION,
    sample_name: str | None = SAMPLE_OPTION,
    taxids: list[int] | None = TAXID_OPTION,
    report_zero_counts: bool = typer.Option(
        True,
        "--report-zero-counts/--skip-zero-counts",
        help="List every requested taxon, including those without reads",
    ),
    config: Path | None = CONFIG_OPTION,
    strict: bool = STRICT_OPTION,
    verbose: bool = VERBOSE_OPTION,
    quiet: bool = QUIET_OPTION,
) -> None:
    """
    Count classified reads per taxon of interest, including descendants.

    Output files:
        - {sample}.counts.csv: taxid, name, reads
    """
    setup_logging(verbose, quiet)
    out = QuietConsole(console, quiet=quiet)

    with exit_on_error():
        sample = sample_name or extract_sample_name(kraken_output)
        cfg = load_config(config, strict=strict)
        taxonomy = load_taxonomy(kreport, nodes, names, strict=cfg.strict)
        tally = IssueTally(strict=cfg.strict, source=str(kraken_output))
        counts = ClassificationResolver(taxonomy).aggregate(
            KrakenOutputParser(kraken_output, tally=tally),
            taxids or cfg.taxa_of_interest,
            report_zero_counts=report_zero_counts,
        )
        tally.log_summary()

        counts_path = output / f"{sample}.counts.csv"
        names_by_taxid = {t: n for t in counts if (n := taxonomy.name_of(t))}
        write_taxon_counts(counts, counts_path, names_by_taxid)

    out.print(f"Counts for [bold]{len(counts)}[/bold] taxa written to {counts_path}")
