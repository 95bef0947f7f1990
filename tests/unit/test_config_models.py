"""Unit tests for configuration models.

Tests for TriageConfig and its sections, and YAML loading.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from microsift.core.constants import TAXA_OF_INTEREST
from microsift.models.config import (
    ExtractConfig,
    FullThresholds,
    KrakenHitThresholds,
    ProportionThresholds,
    ReadQualityFilter,
    SelectionConfig,
    TriageConfig,
)


class TestThresholds:
    """Tests for screen threshold sections."""

    def test_proportion_defaults(self):
        """Should default to a 1% proportion and report zero counts."""
        section = ProportionThresholds()
        assert section.threshold == 0.01
        assert section.report_zero_counts is True

    @pytest.mark.parametrize("value", [-0.1, 1.5])
    def test_proportion_range(self, value):
        """Should validate threshold is 0-1."""
        with pytest.raises(ValidationError):
            ProportionThresholds(threshold=value)

    def test_full_minimum_reads_positive(self):
        assert FullThresholds().minimum_reads == 1
        with pytest.raises(ValidationError):
            FullThresholds(minimum_reads=0)

    def test_hit_defaults(self):
        section = KrakenHitThresholds()
        assert section.min_number_reads == 0
        assert section.min_percent == 0.0
        assert section.oncogenic_only is True

    def test_frozen(self):
        """Should be immutable."""
        section = ProportionThresholds()
        with pytest.raises(ValidationError):
            section.threshold = 0.5


class TestSelectionConfig:
    """Tests for candidate selection rules."""

    def test_default_partial_mapping(self):
        assert SelectionConfig().partial_mapping == "mate-unmapped"

    def test_invalid_partial_mapping(self):
        with pytest.raises(ValidationError):
            SelectionConfig(partial_mapping="sometimes")

    @pytest.mark.parametrize(
        ("contig", "expected"),
        [
            ("chrEBV", True),
            ("NC_007605", True),
            ("chrUn_JTFH01000001v1_decoy", True),
            ("chr1", False),
            (None, False),
        ],
    )
    def test_is_decoy(self, contig, expected):
        assert SelectionConfig().is_decoy(contig) is expected

    def test_decoy_suffix_disabled(self):
        selection = SelectionConfig(decoy_suffix=None)
        assert not selection.is_decoy("chrUn_JTFH01000001v1_decoy")
        assert selection.is_decoy("chrEBV")

    def test_quality_defaults(self):
        quality = ReadQualityFilter()
        assert quality.enabled
        assert quality.min_length == 50
        assert quality.min_mapq == 10


class TestTriageConfig:
    """Tests for the top-level configuration."""

    def test_defaults(self):
        config = TriageConfig()
        assert config.taxa_of_interest == [m.taxid for m in TAXA_OF_INTEREST]
        assert config.strict is False
        assert config.extract == ExtractConfig()

    def test_rejects_non_positive_taxids(self):
        with pytest.raises(ValidationError, match="positive"):
            TriageConfig(taxa_of_interest=[10376, 0])

    def test_rejects_duplicate_taxids(self):
        with pytest.raises(ValidationError, match="duplicate"):
            TriageConfig(taxa_of_interest=[10376, 10376])

    def test_from_yaml(self, temp_dir: Path):
        path = temp_dir / "config.yaml"
        path.write_text(
            "strict: true\n"
            "taxa_of_interest: [10376, 10566]\n"
            "selection:\n"
            "  partial_mapping: either\n"
            "  future_option: 3\n"
            "superfast:\n"
            "  threshold: 0.05\n"
            "full:\n"
            "  minimum_reads: 3\n"
            "unknown_section: {}\n"
        )

        config = TriageConfig.from_yaml(path)

        assert config.strict is True
        assert config.taxa_of_interest == [10376, 10566]
        assert config.selection.partial_mapping == "either"
        assert config.superfast.threshold == 0.05
        assert config.quick.threshold == 0.01
        assert config.full.minimum_reads == 3

    def test_empty_yaml_gives_defaults(self, temp_dir: Path):
        path = temp_dir / "config.yaml"
        path.write_text("")
        assert TriageConfig.from_yaml(path) == TriageConfig()

    def test_yaml_must_be_mapping(self, temp_dir: Path):
        path = temp_dir / "config.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ValueError, match="mapping"):
            TriageConfig.from_yaml(path)

    def test_yaml_round_trip(self, temp_dir: Path):
        config = TriageConfig(strict=True, full=FullThresholds(minimum_reads=5))
        path = temp_dir / "config.yaml"
        config.to_yaml(path)
        assert TriageConfig.from_yaml(path) == config
