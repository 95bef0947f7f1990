"""
Built-in catalogues and default thresholds.

The taxa-of-interest catalogue lists viruses with established oncogenic
associations; it is the default screening panel and drives the "oncogenic"
flag on report-level hits. The contig catalogue names microbial decoy contigs
shipped with common human references (GRCh38 analysis sets carry chrEBV).
"""

from __future__ import annotations

from typing import NamedTuple


class Microbe(NamedTuple):
    """Named taxon of interest."""

    name: str
    taxid: int


class MicrobialContig(NamedTuple):
    """Reference contig known to represent a microbial taxon."""

    contig: str
    taxid: int
    name: str


TAXA_OF_INTEREST: tuple[Microbe, ...] = (
    Microbe("Human gammaherpesvirus 8", 37296),
    Microbe("Human gammaherpesvirus 4 (EBV)", 10376),
    Microbe("Human betaherpesvirus 6A", 32603),
    Microbe("Human betaherpesvirus 6B", 32604),
    Microbe("Human betaherpesvirus 7", 10372),
    Microbe("Primate T-lymphotropic virus 1", 194440),
    Microbe("Primate T-lymphotropic virus 2", 194441),
    Microbe("Human papillomavirus", 10566),
    Microbe("Hepatitis B virus", 10407),
    Microbe("Hepacivirus C", 11103),
    Microbe("Merkel cell polyomavirus", 493803),
    Microbe("Betapolyomavirus macacae", 1891767),
    Microbe("Betapolyomavirus secuhominis", 1891763),
    Microbe("Betapolyomavirus hominis", 1891762),
    Microbe("Cytomegalovirus", 10358),
    Microbe("Alphatorquevirus", 687331),
)

TAXA_OF_INTEREST_IDS: frozenset[int] = frozenset(m.taxid for m in TAXA_OF_INTEREST)

MICROBIAL_CONTIGS: tuple[MicrobialContig, ...] = (
    MicrobialContig("chrEBV", 10376, "EBV"),
    MicrobialContig("NC_009334", 10376, "EBV"),
    MicrobialContig("NC_007605", 10376, "EBV"),
    MicrobialContig("NC_000898", 32604, "HHV6B"),
)


def taxon_name(taxid: int) -> str | None:
    """Catalogue name for a taxid, if it is a taxon of interest."""
    for microbe in TAXA_OF_INTEREST:
        if microbe.taxid == taxid:
            return microbe.name
    return None


# =============================================================================
# Read selection defaults
# =============================================================================

DEFAULT_DECOY_SUFFIX = "_decoy"

DEFAULT_MIN_READ_LENGTH = 50
DEFAULT_MIN_MEAN_QUALITY = 17.0
DEFAULT_MAX_N = 2
DEFAULT_MIN_MAPQ = 10
DEFAULT_MIN_ALIGNMENT_SCORE = 130
DEFAULT_MIN_SOFT_CLIP_FRACTION = 0.2

# =============================================================================
# Screening defaults
# =============================================================================

DEFAULT_PROPORTION_THRESHOLD = 0.01
DEFAULT_MINIMUM_READS = 1
DEFAULT_HIT_MIN_READS = 0
DEFAULT_HIT_MIN_PERCENT = 0.0

# Streaming I/O buffer for sequence writers (bytes)
WRITE_BUFFER_SIZE = 1 << 20
