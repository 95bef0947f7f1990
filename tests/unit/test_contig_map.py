"""Unit tests for the contig to taxid mapping."""

from pathlib import Path

import pytest

from microsift.core.contig_map import ContigTaxonMap
from microsift.core.exceptions import ConfigurationError, MissingInputError


class TestContigTaxonMap:
    """Tests for ContigTaxonMap."""

    def test_default_catalogue(self):
        mapping = ContigTaxonMap.default()
        assert mapping.taxid_for("chrEBV") == 10376
        assert mapping.taxid_for("chr1") is None
        assert mapping.contigs_for(10376) == ["chrEBV", "NC_009334", "NC_007605"]
        assert mapping.name_for(10376) == "EBV"

    def test_taxids_in_first_seen_order(self):
        assert ContigTaxonMap.default().taxids == [10376, 32604]

    def test_present_in_restricts_contigs(self):
        present = ContigTaxonMap.default().present_in(["chr1", "chrEBV"])
        assert len(present) == 1
        assert "chrEBV" in present
        assert present.name_for(32604) == "HHV6B"

    def test_from_tsv(self, temp_dir: Path):
        path = temp_dir / "contigs.tsv"
        path.write_text("contig\ttaxid\tname\nNC_001526.4\t333760\tHPV16\nNC_001357.1\t333761\t\n")

        mapping = ContigTaxonMap.from_tsv(path)

        assert mapping.taxid_for("NC_001526.4") == 333760
        assert mapping.name_for(333760) == "HPV16"
        assert mapping.name_for(333761) is None

    def test_from_tsv_without_names(self, temp_dir: Path):
        path = temp_dir / "contigs.tsv"
        path.write_text("contig\ttaxid\nchrEBV\t10376\n")
        assert ContigTaxonMap.from_tsv(path).contigs_for(10376) == ["chrEBV"]

    def test_from_tsv_missing_columns(self, temp_dir: Path):
        path = temp_dir / "contigs.tsv"
        path.write_text("name\ttaxid\nEBV\t10376\n")
        with pytest.raises(ConfigurationError, match="contig"):
            ContigTaxonMap.from_tsv(path)

    def test_from_tsv_missing_file(self, temp_dir: Path):
        with pytest.raises(MissingInputError):
            ContigTaxonMap.from_tsv(temp_dir / "nope.tsv")
