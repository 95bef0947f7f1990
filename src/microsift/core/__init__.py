"""
Core triage engine.

Region index, candidate read selection, taxonomy resolution, screen
decisions and read extraction.
"""

from microsift.core.extractor import ExtractionJob, sift
from microsift.core.regions import IntervalIndex, RegionSets
from microsift.core.screen import FullScreen, QuickScreen, SuperfastScreen, policy_for
from microsift.core.selector import quick_evidence, select_candidates, superfast_evidence
from microsift.core.taxonomy import ClassificationResolver, Taxonomy, TaxonTally

__all__ = [
    "ClassificationResolver",
    "ExtractionJob",
    "FullScreen",
    "IntervalIndex",
    "QuickScreen",
    "RegionSets",
    "SuperfastScreen",
    "TaxonTally",
    "Taxonomy",
    "policy_for",
    "quick_evidence",
    "select_candidates",
    "sift",
    "superfast_evidence",
]
