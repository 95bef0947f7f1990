"""
Shared pytest fixtures for microsift tests.

Provides temporary directories and small on-disk inputs (SAM, BED,
Kraken2 output and report) used by unit and integration tests.
"""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path

import pytest

from microsift.core.parsers import KrakenReport
from microsift.core.taxonomy import ClassificationResolver, Taxonomy
from tests.factories import (
    KREPORT_TEXT,
    mapped,
    mapped_pair,
    pair_with_unmapped_mate,
    unmapped,
    unmapped_pair,
    write_bed,
    write_kraken_output,
    write_sam,
)

REFERENCES = {"chr1": 100_000, "chr2": 50_000, "chrEBV": 171_823}


@pytest.fixture
def temp_dir() -> Path:
    """Temporary directory that is cleaned up after tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo CLI logging setup so caplog sees package records in every test."""
    yield
    package_logger = logging.getLogger("microsift")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
    package_logger.propagate = True
    package_logger.setLevel(logging.NOTSET)


# =============================================================================
# Taxonomy and classification fixtures
# =============================================================================


@pytest.fixture
def kreport_file(temp_dir: Path) -> Path:
    """Kraken2 report with root > Viruses > Herpesviridae > EBV > EBV type 1."""
    path = temp_dir / "sample.kreport"
    path.write_text(KREPORT_TEXT)
    return path


@pytest.fixture
def taxonomy(kreport_file: Path) -> Taxonomy:
    return Taxonomy.from_kraken_report(KrakenReport(kreport_file))


@pytest.fixture
def resolver(taxonomy: Taxonomy) -> ClassificationResolver:
    return ClassificationResolver(taxonomy)


@pytest.fixture
def kraken_output_file(temp_dir: Path) -> Path:
    """Per-read output: 50 reads on EBV type 1, 10 on EBV, 35 on HPV, 5 unclassified."""
    rows: list[tuple[str, str, int]] = []
    rows.extend(("C", f"ebv1_{i:03d}", 12509) for i in range(50))
    rows.extend(("C", f"ebv_{i:03d}", 10376) for i in range(10))
    rows.extend(("C", f"hpv_{i:03d}", 10566) for i in range(35))
    rows.extend(("U", f"unc_{i:03d}", 0) for i in range(5))
    return write_kraken_output(temp_dir / "sample.kraken", rows)


# =============================================================================
# Alignment and region fixtures
# =============================================================================


@pytest.fixture
def candidate_sam(temp_dir: Path) -> Path:
    """
    Alignment covering every candidate reason.

    - host_pair: ordinary host pair on chr1 (not a candidate)
    - host_single: ordinary unpaired host read on chr2 (not a candidate)
    - ebv_pair: both mates on the chrEBV decoy contig
    - half_pair: read 2 unmapped
    - lost_pair: both mates unmapped
    - homology_pair: read 1 inside the homology region on chr1
    - lone_unmapped: unpaired unmapped read
    """
    reads = [
        *mapped_pair("host_pair", "chr1", 1_001, mate_pos=1_201),
        mapped("host_single", "chr2", 2_001),
        *mapped_pair("ebv_pair", "chrEBV", 5_001, mate_pos=5_201),
        *pair_with_unmapped_mate("half_pair", "chr1", 3_001),
        *mapped_pair("homology_pair", "chr1", 20_001, mate_pos=40_001),
        *unmapped_pair("lost_pair"),
        unmapped("lone_unmapped"),
    ]
    return write_sam(temp_dir / "candidates.sam", REFERENCES, reads)


@pytest.fixture
def homology_bed(temp_dir: Path) -> Path:
    """Homology region covering chr1:20000-20100 (0-based half-open)."""
    return write_bed(temp_dir / "homology.bed", [("chr1", 20_000, 20_100)])


@pytest.fixture
def hard_to_map_bed(temp_dir: Path) -> Path:
    """Hard-to-map region on the first 1 kb of chrEBV."""
    return write_bed(temp_dir / "hard.bed", [("chrEBV", 0, 1_000)])
