"""
Screen decisions.

Each policy turns :class:`TaxonEvidence` into an immutable
:class:`ScreenResult` through the same ``evaluate`` call:

- superfast / quick: detected when the proportion of mapped reads on the
  taxon's contigs is strictly greater than the threshold
- full: detected when at least ``minimum_reads`` reads were classified to
  the taxon or one of its descendants

Results for different taxa are independent, so policies can be evaluated in
any order or on separate workers.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

import polars as pl

from microsift.core.constants import TAXA_OF_INTEREST_IDS, taxon_name
from microsift.core.exceptions import InvalidThresholdError
from microsift.core.io_utils import OutputFormat, write_dataframe
from microsift.core.parsers import KrakenReport
from microsift.models.config import (
    FullThresholds,
    KrakenHitThresholds,
    ProportionThresholds,
    TriageConfig,
)
from microsift.models.results import KrakenHit, ScreenMode, ScreenResult, TaxonEvidence

logger = logging.getLogger(__name__)


class ScreenPolicy(Protocol):
    """Shared decision contract of all screen policies."""

    mode: ScreenMode
    report_zero_counts: bool

    def evaluate(self, evidence: TaxonEvidence, sample: str | None = None) -> ScreenResult: ...


def _check_fraction(name: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise InvalidThresholdError(name, value, 0.0, 1.0)


@dataclass(frozen=True)
class SuperfastScreen:
    """Proportion of all mapped reads that sit on the taxon's contigs."""

    threshold: float = 0.01
    report_zero_counts: bool = True
    mode: ScreenMode = field(default=ScreenMode.SUPERFAST, init=False)

    def __post_init__(self) -> None:
        _check_fraction("superfast threshold", self.threshold)

    def evaluate(self, evidence: TaxonEvidence, sample: str | None = None) -> ScreenResult:
        return _proportion_result(self.mode, self.threshold, evidence, sample)


@dataclass(frozen=True)
class QuickScreen:
    """Like superfast, counting only reads outside hard-to-map regions."""

    threshold: float = 0.01
    report_zero_counts: bool = True
    mode: ScreenMode = field(default=ScreenMode.QUICK, init=False)

    def __post_init__(self) -> None:
        _check_fraction("quick threshold", self.threshold)

    def evaluate(self, evidence: TaxonEvidence, sample: str | None = None) -> ScreenResult:
        return _proportion_result(self.mode, self.threshold, evidence, sample)


@dataclass(frozen=True)
class FullScreen:
    """Count of reads classified to the taxon or its descendants."""

    minimum_reads: int = 1
    report_zero_counts: bool = True
    mode: ScreenMode = field(default=ScreenMode.FULL, init=False)

    def __post_init__(self) -> None:
        if self.minimum_reads < 1:
            raise InvalidThresholdError("minimum_reads", self.minimum_reads, 1, float("inf"))

    def evaluate(self, evidence: TaxonEvidence, sample: str | None = None) -> ScreenResult:
        return ScreenResult(
            sample=sample,
            taxid=evidence.taxid,
            name=evidence.name or taxon_name(evidence.taxid),
            policy=self.mode,
            metric_name="classified_reads",
            metric=float(evidence.count),
            threshold=float(self.minimum_reads),
            decision=evidence.count >= self.minimum_reads,
            supporting_reads=evidence.count,
            total_reads=evidence.total,
        )


def _proportion_result(
    mode: ScreenMode,
    threshold: float,
    evidence: TaxonEvidence,
    sample: str | None,
) -> ScreenResult:
    proportion = evidence.proportion
    return ScreenResult(
        sample=sample,
        taxid=evidence.taxid,
        name=evidence.name or taxon_name(evidence.taxid),
        policy=mode,
        metric_name="proportion_mapped",
        metric=proportion,
        threshold=threshold,
        decision=proportion > threshold,
        supporting_reads=evidence.count,
        total_reads=evidence.total,
    )


def policy_for(mode: ScreenMode | str, config: TriageConfig | None = None) -> ScreenPolicy:
    """Build the policy for ``mode`` from the matching config section."""
    config = config if config is not None else TriageConfig()
    mode = ScreenMode(mode)
    if mode is ScreenMode.SUPERFAST:
        return _proportion_policy(SuperfastScreen, config.superfast)
    if mode is ScreenMode.QUICK:
        return _proportion_policy(QuickScreen, config.quick)
    return _full_policy(config.full)


def _proportion_policy(
    cls: type[SuperfastScreen] | type[QuickScreen], section: ProportionThresholds
) -> ScreenPolicy:
    return cls(threshold=section.threshold, report_zero_counts=section.report_zero_counts)


def _full_policy(section: FullThresholds) -> FullScreen:
    return FullScreen(
        minimum_reads=section.minimum_reads,
        report_zero_counts=section.report_zero_counts,
    )


def evaluate_all(
    policy: ScreenPolicy,
    evidence: Iterable[TaxonEvidence],
    sample: str | None = None,
) -> list[ScreenResult]:
    """Evaluate every taxon, dropping unsupported taxa unless zero counts are reported."""
    results = [
        policy.evaluate(e, sample)
        for e in evidence
        if policy.report_zero_counts or e.count > 0
    ]
    detected = sum(1 for r in results if r.decision)
    logger.info(
        "%s screen: %d of %d taxa detected", policy.mode.value, detected, len(results)
    )
    return results


def classification_evidence(
    counts: Mapping[int, int],
    names: Mapping[int, str] | None = None,
) -> list[TaxonEvidence]:
    """Evidence for the full policy from aggregated classification counts."""
    names = names or {}
    return [
        TaxonEvidence(taxid=taxid, name=names.get(taxid), count=count)
        for taxid, count in counts.items()
    ]


# =============================================================================
# Tables
# =============================================================================

RESULT_SCHEMA = {
    "sample": pl.Utf8,
    "taxid": pl.Int64,
    "name": pl.Utf8,
    "policy": pl.Utf8,
    "metric_name": pl.Utf8,
    "metric": pl.Float64,
    "threshold": pl.Float64,
    "decision": pl.Boolean,
    "supporting_reads": pl.Int64,
    "total_reads": pl.Int64,
}


def results_to_dataframe(results: Iterable[ScreenResult]) -> pl.DataFrame:
    """One row per result, sorted by taxid for stable output."""
    rows = [r.to_dict() for r in results]
    return pl.DataFrame(rows, schema=RESULT_SCHEMA).sort("taxid")


def write_results(
    results: Iterable[ScreenResult],
    path: Path,
    output_format: OutputFormat = "csv",
) -> pl.DataFrame:
    df = results_to_dataframe(results)
    write_dataframe(df, path, output_format)
    logger.info("Wrote %d screen results to %s", df.height, path)
    return df


def write_taxon_counts(
    counts: Mapping[int, int],
    path: Path,
    names: Mapping[int, str] | None = None,
    output_format: OutputFormat = "csv",
) -> pl.DataFrame:
    """Write the aggregated-count report (taxid, name, reads)."""
    names = names or {}
    df = pl.DataFrame(
        {
            "taxid": list(counts.keys()),
            "name": [names.get(t) or taxon_name(t) for t in counts],
            "reads": list(counts.values()),
        },
        schema={"taxid": pl.Int64, "name": pl.Utf8, "reads": pl.Int64},
    )
    write_dataframe(df, path, output_format)
    return df


# =============================================================================
# Report-level hit calling
# =============================================================================


def call_kraken_hits(
    report: KrakenReport,
    thresholds: KrakenHitThresholds | None = None,
) -> list[KrakenHit]:
    """Report rows whose clade passes the read and percentage thresholds.

    A row is a hit when ``clade_reads > min_number_reads`` and
    ``percent >= min_percent``. With ``oncogenic_only``, hits outside the
    taxa-of-interest catalogue are counted but not returned.

    Example:
        >>> hits = call_kraken_hits(KrakenReport(Path("sample.kreport")))
        >>> [h.taxid for h in hits]
        [10376]
    """
    thresholds = thresholds if thresholds is not None else KrakenHitThresholds()
    hits: list[KrakenHit] = []
    excluded = 0

    for row in report.parse():
        if row.taxid == 0:
            continue
        if row.clade_reads <= thresholds.min_number_reads:
            continue
        if row.percent < thresholds.min_percent:
            continue
        oncogenic = row.taxid in TAXA_OF_INTEREST_IDS
        if thresholds.oncogenic_only and not oncogenic:
            excluded += 1
            continue
        hits.append(
            KrakenHit(
                taxid=row.taxid,
                rank=row.rank,
                name=row.name,
                clade_percent=row.percent,
                clade_reads=row.clade_reads,
                oncogenic=oncogenic,
            )
        )

    report.tally.log_summary()
    logger.info(
        "Found %d hit(s) in %s (%d non-oncogenic excluded)",
        len(hits),
        report.report_path,
        excluded,
    )
    return hits


def write_kraken_hits(hits: Iterable[KrakenHit], path: Path) -> pl.DataFrame:
    """Write hits as CSV (taxid, rank, name, clade_percent, clade_reads, oncogenic)."""
    df = pl.DataFrame(
        [h.model_dump() for h in hits],
        schema={
            "taxid": pl.Int64,
            "rank": pl.Utf8,
            "name": pl.Utf8,
            "clade_percent": pl.Float64,
            "clade_reads": pl.Int64,
            "oncogenic": pl.Boolean,
        },
    )
    write_dataframe(df, path, "csv")
    return df
