"""
Microsift: taxonomic triage and extraction of microbial reads.

Screens host alignments for reads of microbial taxa of interest (superfast,
quick and full policies), resolves classifier output against a taxonomy,
and extracts the reads of a taxon for downstream confirmation.
"""

__version__ = "0.1.0"
__author__ = "Microsift Team"

from microsift.core.regions import IntervalIndex, RegionSets
from microsift.core.screen import FullScreen, QuickScreen, SuperfastScreen
from microsift.core.taxonomy import ClassificationResolver, Taxonomy
from microsift.models.results import ScreenResult

__all__ = [
    "ClassificationResolver",
    "FullScreen",
    "IntervalIndex",
    "QuickScreen",
    "RegionSets",
    "ScreenResult",
    "SuperfastScreen",
    "Taxonomy",
    "__version__",
]
