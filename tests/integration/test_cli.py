"""
Integration tests for the microsift CLI.

Tests the command-line interface using Typer's CliRunner for:
- Main entry point and version display
- screen superfast / quick / full-select / full-decide / hits
- aggregate and sift
- Error handling for invalid inputs
"""

from __future__ import annotations

from pathlib import Path

import polars as pl
import pytest
from typer.testing import CliRunner

from microsift.cli.main import app
from microsift.core.parsers import KrakenOutputParser
from tests.factories import make_sequence, write_fastq, write_idxstats, write_kraken_output

runner = CliRunner()


# =============================================================================
# CLI Test Fixtures
# =============================================================================


@pytest.fixture
def idxstats_file(temp_dir: Path) -> Path:
    """9000 host reads and 1000 reads on chrEBV."""
    return write_idxstats(
        temp_dir / "sample.idxstats.tsv",
        [
            ("chr1", 100_000, 6_000, 0),
            ("chr2", 50_000, 3_000, 0),
            ("chrEBV", 171_823, 1_000, 0),
            ("*", 0, 0, 120),
        ],
    )


@pytest.fixture
def paired_fastq(temp_dir: Path, kraken_output_file: Path) -> tuple[Path, Path]:
    ids = [r.read_id for r in KrakenOutputParser(kraken_output_file)]
    r1 = write_fastq(temp_dir / "sample_R1.fastq", [(f"{i}/1", make_sequence(n)) for n, i in enumerate(ids)])
    r2 = write_fastq(temp_dir / "sample_R2.fastq", [(f"{i}/2", make_sequence(-n)) for n, i in enumerate(ids)])
    return r1, r2


class TestMainCLI:
    """Tests for main CLI entry point."""

    def test_version_flag(self):
        """--version should display version and exit."""
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert "microsift version" in result.stdout
        assert "0.1.0" in result.stdout

    def test_version_short_flag(self):
        result = runner.invoke(app, ["-V"])

        assert result.exit_code == 0
        assert "0.1.0" in result.stdout

    def test_help_flag(self):
        """--help should list the subcommands."""
        result = runner.invoke(app, ["--help"])

        assert result.exit_code == 0
        assert "screen" in result.stdout
        assert "sift" in result.stdout
        assert "aggregate" in result.stdout

    def test_screen_subcommand_help(self):
        result = runner.invoke(app, ["screen", "--help"])

        assert result.exit_code == 0
        for command in ("superfast", "quick", "full-select", "full-decide", "hits"):
            assert command in result.stdout


# =============================================================================
# screen
# =============================================================================


class TestScreenSuperfast:
    """Tests for 'screen superfast'."""

    def test_detects_ebv(self, idxstats_file: Path, temp_dir: Path):
        out = temp_dir / "results"
        result = runner.invoke(
            app, ["screen", "superfast", "--idxstats", str(idxstats_file), "-o", str(out)]
        )

        assert result.exit_code == 0, result.output
        df = pl.read_csv(out / "sample.superfast.csv")
        assert df["taxid"].to_list() == [10376]
        assert df["decision"].to_list() == [True]
        assert df["metric"][0] == pytest.approx(0.1)

    def test_threshold_option(self, idxstats_file: Path, temp_dir: Path):
        out = temp_dir / "results"
        result = runner.invoke(
            app,
            [
                "screen", "superfast",
                "-i", str(idxstats_file),
                "-o", str(out),
                "-n", "s1",
                "--threshold", "0.1",
            ],
        )

        assert result.exit_code == 0, result.output
        assert pl.read_csv(out / "s1.superfast.csv")["decision"].to_list() == [False]

    def test_missing_decoy_contig_is_an_error(self, temp_dir: Path):
        """A reference without decoy contigs fails with a single error line."""
        stats = write_idxstats(temp_dir / "host.idxstats", [("chr1", 100, 50, 0)])
        result = runner.invoke(
            app, ["screen", "superfast", "-i", str(stats), "-o", str(temp_dir / "o")]
        )

        assert result.exit_code == 1
        assert "Error:" in result.output
        assert not (temp_dir / "o" / "host.superfast.csv").exists()

    def test_requires_one_input(self, temp_dir: Path):
        result = runner.invoke(app, ["screen", "superfast", "-o", str(temp_dir)])

        assert result.exit_code == 1
        assert "Error:" in result.output


class TestScreenQuick:
    def test_quick(self, candidate_sam: Path, hard_to_map_bed: Path, temp_dir: Path):
        out = temp_dir / "results"
        result = runner.invoke(
            app,
            [
                "screen", "quick",
                "-a", str(candidate_sam),
                "--hard-to-map", str(hard_to_map_bed),
                "-o", str(out),
                "-q",
            ],
        )

        assert result.exit_code == 0, result.output
        df = pl.read_csv(out / "candidates.quick.csv")
        assert df["supporting_reads"].to_list() == [2]
        assert df["total_reads"].to_list() == [8]


class TestScreenFull:
    """Tests for 'screen full-select' and 'screen full-decide'."""

    def test_full_select(self, candidate_sam: Path, homology_bed: Path, temp_dir: Path):
        out = temp_dir / "candidates"
        result = runner.invoke(
            app,
            [
                "screen", "full-select",
                "-a", str(candidate_sam),
                "--homology", str(homology_bed),
                "-o", str(out),
                "-n", "s1",
            ],
        )

        assert result.exit_code == 0, result.output
        assert (out / "s1_candidates_R1.fastq").exists()
        assert (out / "s1_candidates_R2.fastq").exists()
        assert (out / "s1_candidates_singletons.fastq").exists()
        summary = (out / "s1.bam_summary.txt").read_text()
        assert "candidate_reads\t9\n" in summary

    def test_full_select_fasta(self, candidate_sam: Path, temp_dir: Path):
        out = temp_dir / "candidates"
        result = runner.invoke(
            app,
            ["screen", "full-select", "-a", str(candidate_sam), "-o", str(out), "--format", "fasta", "--compress"],
        )

        assert result.exit_code == 0, result.output
        assert (out / "candidates_candidates_R1.fasta.gz").exists()

    def test_full_select_bad_rule(self, candidate_sam: Path, temp_dir: Path):
        result = runner.invoke(
            app,
            ["screen", "full-select", "-a", str(candidate_sam), "-o", str(temp_dir), "--partial-mapping", "sometimes"],
        )

        assert result.exit_code == 1
        assert "Error:" in result.output

    def test_full_decide(self, kraken_output_file: Path, kreport_file: Path, temp_dir: Path):
        out = temp_dir / "results"
        result = runner.invoke(
            app,
            [
                "screen", "full-decide",
                "-k", str(kraken_output_file),
                "-r", str(kreport_file),
                "-t", "10376",
                "-t", "10407",
                "-o", str(out),
            ],
        )

        assert result.exit_code == 0, result.output
        df = pl.read_csv(out / "sample.full.csv")
        rows = {r["taxid"]: r for r in df.iter_rows(named=True)}
        assert rows[10376]["supporting_reads"] == 60
        assert rows[10376]["decision"] is True
        assert rows[10407]["supporting_reads"] == 0
        assert rows[10407]["decision"] is False

    def test_full_decide_minimum_reads(self, kraken_output_file: Path, kreport_file: Path, temp_dir: Path):
        out = temp_dir / "results"
        result = runner.invoke(
            app,
            [
                "screen", "full-decide",
                "-k", str(kraken_output_file),
                "-r", str(kreport_file),
                "-t", "10566",
                "--minimum-reads", "36",
                "-o", str(out),
            ],
        )

        assert result.exit_code == 0, result.output
        assert pl.read_csv(out / "sample.full.csv")["decision"].to_list() == [False]

    def test_full_decide_needs_taxonomy(self, kraken_output_file: Path, temp_dir: Path):
        result = runner.invoke(
            app, ["screen", "full-decide", "-k", str(kraken_output_file), "-o", str(temp_dir)]
        )

        assert result.exit_code == 1
        assert "Error:" in result.output

    def test_full_decide_strict(self, kreport_file: Path, temp_dir: Path):
        """With --strict a malformed line aborts the run."""
        kraken = temp_dir / "bad.kraken"
        kraken.write_text("C\tr1\t10376\t150\t10376:116\nbroken\n")
        args = ["screen", "full-decide", "-k", str(kraken), "-r", str(kreport_file), "-o", str(temp_dir)]

        assert runner.invoke(app, args).exit_code == 0
        strict = runner.invoke(app, [*args, "--strict"])
        assert strict.exit_code == 1
        assert "Malformed line 2" in strict.output

    def test_full_decide_strict_report(
        self, kraken_output_file: Path, kreport_file: Path, temp_dir: Path
    ):
        """--strict also applies to the report the taxonomy is read from."""
        with kreport_file.open("a") as f:
            f.write("garbage line\n")
        args = [
            "screen", "full-decide",
            "-k", str(kraken_output_file),
            "-r", str(kreport_file),
            "-t", "10376",
            "-o", str(temp_dir),
        ]

        assert runner.invoke(app, args).exit_code == 0
        strict = runner.invoke(app, [*args, "--strict"])
        assert strict.exit_code == 1
        assert "Malformed line" in strict.output
        assert "Traceback" not in strict.output

    def test_full_select_unreadable_record(self, temp_dir: Path):
        sam = temp_dir / "broken.sam"
        sam.write_text(
            "@HD\tVN:1.6\n"
            "@SQ\tSN:chr1\tLN:100000\n"
            f"bad\t0\tchr1\tNOTANUMBER\t60\t60M\t*\t0\t0\t{make_sequence(1)}\t{'I' * 60}\n"
        )
        result = runner.invoke(app, ["screen", "full-select", "-a", str(sam), "-o", str(temp_dir)])

        assert result.exit_code == 1
        assert isinstance(result.exception, SystemExit)
        assert "Error:" in result.output
        assert "unreadable record" in result.output


class TestScreenHits:
    def test_hits(self, kreport_file: Path, temp_dir: Path):
        result = runner.invoke(app, ["screen", "hits", "-r", str(kreport_file), "-o", str(temp_dir)])

        assert result.exit_code == 0, result.output
        df = pl.read_csv(temp_dir / "sample.krakenhits.csv")
        assert df["taxid"].to_list() == [10376, 10566]

    def test_all_taxa(self, kreport_file: Path, temp_dir: Path):
        result = runner.invoke(
            app, ["screen", "hits", "-r", str(kreport_file), "-o", str(temp_dir), "--all-taxa"]
        )

        assert result.exit_code == 0, result.output
        assert 12509 in pl.read_csv(temp_dir / "sample.krakenhits.csv")["taxid"].to_list()

    def test_strict(self, kreport_file: Path, temp_dir: Path):
        with kreport_file.open("a") as f:
            f.write("garbage line\n")
        args = ["screen", "hits", "-r", str(kreport_file), "-o", str(temp_dir)]

        assert runner.invoke(app, args).exit_code == 0
        strict = runner.invoke(app, [*args, "--strict"])
        assert strict.exit_code == 1
        assert "Malformed line" in strict.output


# =============================================================================
# aggregate and sift
# =============================================================================


class TestAggregate:
    def test_counts(self, kraken_output_file: Path, kreport_file: Path, temp_dir: Path):
        result = runner.invoke(
            app,
            [
                "aggregate",
                "-k", str(kraken_output_file),
                "-r", str(kreport_file),
                "-t", "10376",
                "-t", "10566",
                "-t", "10407",
                "-o", str(temp_dir),
            ],
        )

        assert result.exit_code == 0, result.output
        df = pl.read_csv(temp_dir / "sample.counts.csv")
        assert df["taxid"].to_list() == [10376, 10566, 10407]
        assert df["reads"].to_list() == [60, 35, 0]

    def test_skip_zero_counts(self, kraken_output_file: Path, kreport_file: Path, temp_dir: Path):
        result = runner.invoke(
            app,
            [
                "aggregate",
                "-k", str(kraken_output_file),
                "-r", str(kreport_file),
                "-t", "10376",
                "-t", "10407",
                "--skip-zero-counts",
                "-o", str(temp_dir),
            ],
        )

        assert result.exit_code == 0, result.output
        assert pl.read_csv(temp_dir / "sample.counts.csv")["taxid"].to_list() == [10376]


class TestSift:
    """Tests for the sift command."""

    def test_paired_fastq(self, kraken_output_file, kreport_file, paired_fastq, temp_dir):
        out = temp_dir / "extracted"
        result = runner.invoke(
            app,
            [
                "sift",
                "-k", str(kraken_output_file),
                "-r", str(kreport_file),
                "-t", "10376",
                "-1", str(paired_fastq[0]),
                "-2", str(paired_fastq[1]),
                "-o", str(out),
            ],
        )

        assert result.exit_code == 0, result.output
        r1 = (out / "sample_taxid10376_R1.fastq").read_text().splitlines()
        r2 = (out / "sample_taxid10376_R2.fastq").read_text().splitlines()
        assert len(r1) == len(r2) == 60 * 4

    def test_exact_match_compressed(self, kraken_output_file, kreport_file, paired_fastq, temp_dir):
        out = temp_dir / "extracted"
        result = runner.invoke(
            app,
            [
                "sift",
                "-k", str(kraken_output_file),
                "-r", str(kreport_file),
                "-t", "10376",
                "--exact-match",
                "--compress",
                "-1", str(paired_fastq[0]),
                "-2", str(paired_fastq[1]),
                "-o", str(out),
            ],
        )

        assert result.exit_code == 0, result.output
        assert (out / "sample_taxid10376_R1.fastq.gz").exists()

    def test_alignment_source(self, kreport_file, candidate_sam, temp_dir):
        kraken = write_kraken_output(
            temp_dir / "cand.kraken", [("C", "ebv_pair", 10376), ("C", "lone_unmapped", 12509)]
        )
        out = temp_dir / "extracted"
        result = runner.invoke(
            app,
            ["sift", "-k", str(kraken), "-r", str(kreport_file), "-t", "10376", "-a", str(candidate_sam), "-o", str(out)],
        )

        assert result.exit_code == 0, result.output
        assert len((out / "cand_taxid10376_R1.fastq").read_text().splitlines()) == 4
        assert len((out / "cand_taxid10376_singletons.fastq").read_text().splitlines()) == 4

    def test_needs_a_source(self, kraken_output_file, kreport_file, temp_dir):
        result = runner.invoke(
            app, ["sift", "-k", str(kraken_output_file), "-r", str(kreport_file), "-t", "10376", "-o", str(temp_dir)]
        )

        assert result.exit_code == 1
        assert "Error:" in result.output

    def test_alignment_and_reads_conflict(self, kraken_output_file, kreport_file, candidate_sam, paired_fastq, temp_dir):
        result = runner.invoke(
            app,
            [
                "sift",
                "-k", str(kraken_output_file),
                "-r", str(kreport_file),
                "-t", "10376",
                "-a", str(candidate_sam),
                "-1", str(paired_fastq[0]),
                "-o", str(temp_dir),
            ],
        )

        assert result.exit_code == 1
        assert "Error:" in result.output


class TestPipeline:
    """Select candidates, classify them, then decide and extract."""

    def test_select_decide_sift(self, candidate_sam, homology_bed, kreport_file, temp_dir):
        candidates = temp_dir / "candidates"
        selected = runner.invoke(
            app,
            ["screen", "full-select", "-a", str(candidate_sam), "--homology", str(homology_bed), "-o", str(candidates), "-n", "s1"],
        )
        assert selected.exit_code == 0, selected.output

        # Stand-in classifier: every candidate pair template on EBV type 1
        titles = [
            line[1:]
            for line in (candidates / "s1_candidates_R1.fastq").read_text().splitlines()[::4]
        ]
        kraken = write_kraken_output(temp_dir / "s1.kraken", [("C", t, 12509) for t in titles])

        decided = runner.invoke(
            app,
            ["screen", "full-decide", "-k", str(kraken), "-r", str(kreport_file), "-t", "10376", "-o", str(temp_dir)],
        )
        assert decided.exit_code == 0, decided.output
        df = pl.read_csv(temp_dir / "s1.full.csv")
        assert df["supporting_reads"].to_list() == [len(titles)]
        assert df["decision"].to_list() == [True]

        sifted = runner.invoke(
            app,
            [
                "sift",
                "-k", str(kraken),
                "-r", str(kreport_file),
                "-t", "10376",
                "-1", str(candidates / "s1_candidates_R1.fastq"),
                "-2", str(candidates / "s1_candidates_R2.fastq"),
                "-o", str(temp_dir / "extracted"),
            ],
        )
        assert sifted.exit_code == 0, sifted.output
        assert (temp_dir / "extracted" / "s1_taxid10376_R1.fastq").read_text() == (
            candidates / "s1_candidates_R1.fastq"
        ).read_text()
