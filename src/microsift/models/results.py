"""
Pydantic models for screening and extraction results.

All result models are frozen: a ScreenResult is written once per
(sample, taxon, policy) and never updated.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field, computed_field


class ScreenMode(str, Enum):
    """
    Screening policies, fastest first.

    Categories:
        SUPERFAST: Proportion of mapped reads on a taxon's decoy contigs,
            read straight from index statistics
        QUICK: Same proportion after discarding reads in hard-to-map regions
        FULL: Classifier read counts for candidate non-host reads
    """

    SUPERFAST = "superfast"
    QUICK = "quick"
    FULL = "full"


class TaxonEvidence(BaseModel):
    """
    Read support for one taxon, as consumed by every screen policy.

    ``count`` is the number of supporting reads. ``total`` is the
    denominator for proportion-based policies and is left unset when the
    evidence comes from classification counts.
    """

    taxid: int = Field(ge=0)
    name: str | None = None
    count: int = Field(ge=0)
    total: int | None = Field(default=None, ge=0)

    @property
    def proportion(self) -> float:
        if not self.total:
            return 0.0
        return self.count / self.total

    model_config = {"frozen": True}


class ScreenResult(BaseModel):
    """
    Detection call for one taxon under one policy.

    Attributes:
        taxid: Taxon of interest
        policy: Screening policy that produced the call
        metric: Proportion (superfast/quick) or read count (full)
        threshold: Threshold the metric was compared against
        decision: Whether the taxon is considered present
        supporting_reads: Reads counted towards the taxon
        total_reads: Denominator for proportion metrics
    """

    sample: str | None = Field(default=None, description="Sample identifier")
    taxid: int = Field(ge=0, description="Taxon of interest")
    name: str | None = Field(default=None, description="Display name of the taxon")
    policy: ScreenMode = Field(description="Screening policy")
    metric_name: str = Field(description="What the metric measures")
    metric: float = Field(ge=0, description="Metric value")
    threshold: float = Field(ge=0, description="Threshold applied")
    decision: bool = Field(description="Detected (True) or not detected (False)")
    supporting_reads: int = Field(ge=0, description="Reads supporting the taxon")
    total_reads: int | None = Field(
        default=None,
        ge=0,
        description="Reads in the denominator of a proportion metric",
    )

    def to_dict(self) -> dict[str, object]:
        """Flat dict for tabular output."""
        data = self.model_dump()
        data["policy"] = self.policy.value
        return data

    model_config = {"frozen": True}


class AlignmentSummary(BaseModel):
    """Read counts over a whole alignment file."""

    total_reads: int = Field(ge=0)
    mapped_reads: int = Field(ge=0)
    unmapped_reads: int = Field(ge=0)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def mapped_fraction(self) -> float:
        if self.total_reads == 0:
            return 0.0
        return self.mapped_reads / self.total_reads

    model_config = {"frozen": True}


class SelectionSummary(BaseModel):
    """Outcome of a full-screen candidate selection pass."""

    records: int = Field(ge=0, description="Primary records read")
    candidates: int = Field(ge=0, description="Candidate reads written")
    pairs: int = Field(ge=0, description="Complete pairs written")
    singletons: int = Field(ge=0, description="Unpaired candidate reads written")
    orphans: int = Field(
        ge=0,
        description="Paired candidates written without their mate (mate never seen)",
    )
    low_quality: int = Field(ge=0, description="Candidates dropped by the quality filter")
    reasons: dict[str, int] = Field(
        default_factory=dict,
        description="Candidate counts by selection reason",
    )
    alignment: AlignmentSummary
    outputs: list[Path] = Field(default_factory=list)
    skipped_records: int = Field(default=0, ge=0)

    model_config = {"frozen": True}


class ExtractionSummary(BaseModel):
    """Outcome of extracting the reads of one taxon."""

    taxid: int = Field(ge=0)
    target_taxa: int = Field(ge=0, description="Taxids searched (requested plus descendants)")
    target_reads: int = Field(ge=0, description="Read ids classified to the target taxa")
    written: dict[str, int] = Field(
        default_factory=dict,
        description="Records written per output file name",
    )
    orphan_mates: int = Field(
        default=0,
        ge=0,
        description="Target reads found in only one of two paired sources",
    )
    missing: int = Field(
        default=0,
        ge=0,
        description="Target reads absent from every sequence source",
    )
    outputs: list[Path] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def classified(self) -> bool:
        return self.target_reads > 0

    model_config = {"frozen": True}


class KrakenHit(BaseModel):
    """A report row that passed the hit thresholds."""

    taxid: int
    rank: str
    name: str
    clade_percent: float = Field(ge=0, le=100)
    clade_reads: int = Field(ge=0)
    oncogenic: bool

    model_config = {"frozen": True}
