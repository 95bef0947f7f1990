"""Unit tests for screen policies, result tables and report-level hits."""

from __future__ import annotations

from dataclasses import FrozenInstanceError
from pathlib import Path

import polars as pl
import pytest

from microsift.core.exceptions import InvalidThresholdError
from microsift.core.parsers import KrakenOutputParser, KrakenReport
from microsift.core.screen import (
    FullScreen,
    QuickScreen,
    SuperfastScreen,
    call_kraken_hits,
    classification_evidence,
    evaluate_all,
    policy_for,
    write_kraken_hits,
    write_results,
    write_taxon_counts,
)
from microsift.core.taxonomy import ClassificationResolver
from microsift.models.config import (
    FullThresholds,
    KrakenHitThresholds,
    ProportionThresholds,
    TriageConfig,
)
from microsift.models.results import ScreenMode, TaxonEvidence


def evidence(count: int, total: int | None = 10_000, taxid: int = 10376) -> TaxonEvidence:
    return TaxonEvidence(taxid=taxid, count=count, total=total)


class TestProportionPolicies:
    """Tests for superfast and quick decisions."""

    @pytest.mark.parametrize("policy_cls", [SuperfastScreen, QuickScreen])
    def test_threshold_is_strict(self, policy_cls):
        """A proportion equal to the threshold is not a detection."""
        policy = policy_cls(threshold=0.01)
        assert policy.evaluate(evidence(100)).decision is False
        assert policy.evaluate(evidence(101)).decision is True

    def test_superfast_scenario(self):
        """9000 host reads and 1000 on chrEBV is a 10% detection."""
        result = SuperfastScreen(threshold=0.01).evaluate(evidence(1_000), sample="s1")
        assert result.decision is True
        assert result.metric == pytest.approx(0.1)
        assert result.metric_name == "proportion_mapped"
        assert result.policy is ScreenMode.SUPERFAST
        assert result.sample == "s1"
        assert result.supporting_reads == 1_000
        assert result.total_reads == 10_000

    def test_zero_total(self):
        result = QuickScreen().evaluate(evidence(0, total=0))
        assert result.metric == 0.0
        assert result.decision is False

    def test_name_falls_back_to_catalogue(self):
        result = SuperfastScreen().evaluate(evidence(5))
        assert result.name == "Human gammaherpesvirus 4 (EBV)"

    @pytest.mark.parametrize("threshold", [-0.01, 1.01])
    def test_invalid_threshold(self, threshold):
        with pytest.raises(InvalidThresholdError):
            SuperfastScreen(threshold=threshold)

    def test_policies_are_frozen(self):
        policy = QuickScreen()
        with pytest.raises(FrozenInstanceError):
            policy.threshold = 0.5

    def test_mode_not_settable(self):
        with pytest.raises(TypeError):
            SuperfastScreen(mode=ScreenMode.FULL)


class TestFullPolicy:
    """Tests for classification-count decisions."""

    def test_minimum_reads_inclusive(self):
        policy = FullScreen(minimum_reads=3)
        assert policy.evaluate(evidence(2, total=None)).decision is False
        assert policy.evaluate(evidence(3, total=None)).decision is True

    def test_no_hit_scenario(self, resolver: ClassificationResolver, temp_dir: Path):
        """A taxon with no classified reads is reported with a zero count."""
        path = temp_dir / "hpv_only.kraken"
        path.write_text("C\tr1\t10566\t150\t10566:116\n")
        counts = resolver.aggregate(KrakenOutputParser(path), [10376])

        results = evaluate_all(FullScreen(), classification_evidence(counts))

        assert len(results) == 1
        assert results[0].taxid == 10376
        assert results[0].supporting_reads == 0
        assert results[0].decision is False
        assert results[0].metric_name == "classified_reads"

    def test_invalid_minimum(self):
        with pytest.raises(InvalidThresholdError):
            FullScreen(minimum_reads=0)


class TestPolicyFor:
    """Tests for building policies from configuration."""

    def test_uses_matching_section(self):
        config = TriageConfig(
            superfast=ProportionThresholds(threshold=0.05),
            quick=ProportionThresholds(threshold=0.2, report_zero_counts=False),
            full=FullThresholds(minimum_reads=7),
        )
        assert policy_for("superfast", config).threshold == 0.05
        assert policy_for(ScreenMode.QUICK, config).report_zero_counts is False
        assert policy_for("full", config).minimum_reads == 7

    def test_defaults(self):
        policy = policy_for("quick")
        assert isinstance(policy, QuickScreen)
        assert policy.mode is ScreenMode.QUICK

    def test_unknown_mode(self):
        with pytest.raises(ValueError):
            policy_for("ultrafast")


class TestEvaluateAll:
    """Tests for evaluating many taxa."""

    def test_zero_counts_reported(self):
        results = evaluate_all(SuperfastScreen(), [evidence(0), evidence(500, taxid=10566)])
        assert [r.taxid for r in results] == [10376, 10566]

    def test_zero_counts_dropped(self):
        policy = SuperfastScreen(report_zero_counts=False)
        results = evaluate_all(policy, [evidence(0), evidence(500, taxid=10566)])
        assert [r.taxid for r in results] == [10566]

    def test_results_are_independent_of_order(self):
        items = [evidence(0), evidence(500, taxid=10566), evidence(50, taxid=10407)]
        forward = evaluate_all(QuickScreen(), items, "s")
        backward = evaluate_all(QuickScreen(), list(reversed(items)), "s")
        assert sorted(forward, key=lambda r: r.taxid) == sorted(backward, key=lambda r: r.taxid)


class TestTables:
    """Tests for writing result tables."""

    def test_write_results_sorted(self, temp_dir: Path):
        results = evaluate_all(
            FullScreen(), [evidence(4, None, taxid=10566), evidence(0, None)], "s1"
        )
        path = temp_dir / "s1.full.csv"
        write_results(results, path)

        df = pl.read_csv(path)
        assert df["taxid"].to_list() == [10376, 10566]
        assert df["decision"].to_list() == [False, True]
        assert df["policy"].to_list() == ["full", "full"]
        assert set(df.columns) >= {"sample", "metric", "threshold", "supporting_reads"}

    def test_write_taxon_counts(self, temp_dir: Path):
        path = temp_dir / "counts.csv"
        df = write_taxon_counts({10376: 60, 424242: 0}, path, names={10376: "EBV"})
        assert df.columns == ["taxid", "name", "reads"]
        assert pl.read_csv(path)["reads"].to_list() == [60, 0]
        assert df["name"].to_list() == ["EBV", None]


class TestKrakenHits:
    """Tests for report-level hit calling."""

    def test_oncogenic_hits(self, kreport_file: Path):
        hits = call_kraken_hits(KrakenReport(kreport_file))
        assert [h.taxid for h in hits] == [10376, 10566]
        assert all(h.oncogenic for h in hits)

    def test_all_hits(self, kreport_file: Path):
        hits = call_kraken_hits(
            KrakenReport(kreport_file), KrakenHitThresholds(oncogenic_only=False)
        )
        assert 0 not in [h.taxid for h in hits]
        assert 12509 in [h.taxid for h in hits]
        assert next(h for h in hits if h.taxid == 12509).oncogenic is False

    def test_read_threshold_is_strict(self, kreport_file: Path):
        hits = call_kraken_hits(KrakenReport(kreport_file), KrakenHitThresholds(min_number_reads=35))
        assert [h.taxid for h in hits] == [10376]

    def test_percent_threshold_is_inclusive(self, kreport_file: Path):
        hits = call_kraken_hits(KrakenReport(kreport_file), KrakenHitThresholds(min_percent=60.0))
        assert [h.taxid for h in hits] == [10376]

    def test_write_hits(self, kreport_file: Path, temp_dir: Path):
        path = temp_dir / "hits.csv"
        write_kraken_hits(call_kraken_hits(KrakenReport(kreport_file)), path)
        df = pl.read_csv(path)
        assert df["name"].to_list() == ["Human gammaherpesvirus 4", "Human papillomavirus"]

    def test_write_no_hits(self, temp_dir: Path):
        path = temp_dir / "hits.csv"
        df = write_kraken_hits([], path)
        assert df.height == 0
        assert path.exists()
