"""
Pydantic data models for microsift.

Provides configuration models and the immutable result records written by
screens, candidate selection and extraction.
"""

from microsift.models.config import (
    ExtractConfig,
    FullThresholds,
    KrakenHitThresholds,
    ProportionThresholds,
    ReadQualityFilter,
    RegionConfig,
    SelectionConfig,
    TriageConfig,
)
from microsift.models.results import (
    AlignmentSummary,
    ExtractionSummary,
    KrakenHit,
    ScreenMode,
    ScreenResult,
    SelectionSummary,
    TaxonEvidence,
)

__all__ = [
    "AlignmentSummary",
    "ExtractConfig",
    "ExtractionSummary",
    "FullThresholds",
    "KrakenHit",
    "KrakenHitThresholds",
    "ProportionThresholds",
    "ReadQualityFilter",
    "RegionConfig",
    "ScreenMode",
    "ScreenResult",
    "SelectionConfig",
    "SelectionSummary",
    "TaxonEvidence",
    "TriageConfig",
]
