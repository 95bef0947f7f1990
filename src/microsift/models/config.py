"""
Pydantic configuration models for microsift.

These models define the screening thresholds, read selection rules and
extraction options. Configuration can be loaded from YAML files or built from
CLI arguments; every model is frozen so one instance can be shared by all
screens in a run.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Literal, Self

from pydantic import BaseModel, Field, model_validator

from microsift.core.constants import (
    DEFAULT_DECOY_SUFFIX,
    DEFAULT_HIT_MIN_PERCENT,
    DEFAULT_HIT_MIN_READS,
    DEFAULT_MAX_N,
    DEFAULT_MIN_ALIGNMENT_SCORE,
    DEFAULT_MIN_MAPQ,
    DEFAULT_MIN_MEAN_QUALITY,
    DEFAULT_MIN_READ_LENGTH,
    DEFAULT_MIN_SOFT_CLIP_FRACTION,
    DEFAULT_MINIMUM_READS,
    DEFAULT_PROPORTION_THRESHOLD,
    MICROBIAL_CONTIGS,
    TAXA_OF_INTEREST,
)

logger = logging.getLogger(__name__)

PartialMappingRule = Literal["mate-unmapped", "soft-clipped", "either", "none"]
SequenceFormat = Literal["fastq", "fasta"]


class RegionConfig(BaseModel):
    """Paths to the two named region sets (BED, optionally gzipped)."""

    hard_to_map: Path | None = Field(
        default=None,
        description="BED of hard-to-map intervals; reads overlapping them are ignored by quick",
    )
    homology_decoy: Path | None = Field(
        default=None,
        description=(
            "BED of host regions with homology to microbial genomes; reads "
            "overlapping them are candidates in the full screen"
        ),
    )

    model_config = {"frozen": True}


class ReadQualityFilter(BaseModel):
    """
    Sequence and alignment quality criteria.

    A good quality *sequence* is likely to be a real biological read worth
    passing to a classifier: long enough, good mean Phred score, few Ns,
    not a duplicate and not QC-failed. A good quality *alignment* also needs
    a primary mapping with MAPQ > min_mapq and AS > min_alignment_score.
    """

    enabled: bool = Field(
        default=True,
        description="Drop low quality candidate reads before writing them out",
    )
    min_length: int = Field(default=DEFAULT_MIN_READ_LENGTH, ge=0)
    min_mean_quality: float = Field(default=DEFAULT_MIN_MEAN_QUALITY, ge=0)
    max_n: int = Field(default=DEFAULT_MAX_N, ge=0)
    min_mapq: int = Field(default=DEFAULT_MIN_MAPQ, ge=0, le=255)
    min_alignment_score: int = Field(default=DEFAULT_MIN_ALIGNMENT_SCORE)

    model_config = {"frozen": True}


class SelectionConfig(BaseModel):
    """Rules used by the candidate read selector."""

    decoy_contigs: list[str] = Field(
        default_factory=lambda: [c.contig for c in MICROBIAL_CONTIGS],
        description="Contigs whose aligned reads are always candidates",
    )
    decoy_suffix: str | None = Field(
        default=DEFAULT_DECOY_SUFFIX,
        description="Contigs ending with this suffix are treated as decoys",
    )
    partial_mapping: PartialMappingRule = Field(
        default="mate-unmapped",
        description=(
            "What makes a mapped read 'partly unmapped' in the full screen. "
            "'mate-unmapped' uses the mate flag, 'soft-clipped' uses the "
            "soft-clipped fraction of the read, 'either' accepts both."
        ),
    )
    min_soft_clip_fraction: float = Field(
        default=DEFAULT_MIN_SOFT_CLIP_FRACTION,
        gt=0.0,
        le=1.0,
        description="Soft-clipped fraction of the read that counts as partly unmapped",
    )
    quick_min_mapq: int = Field(
        default=0,
        ge=0,
        le=255,
        description="Minimum MAPQ for a read to count in the quick screen",
    )
    quality: ReadQualityFilter = Field(default_factory=ReadQualityFilter)
    output_format: SequenceFormat = Field(
        default="fastq",
        description="Format of the candidate read files written by the full screen",
    )
    compress: bool = Field(default=False, description="Gzip candidate read files")

    def is_decoy(self, contig: str | None) -> bool:
        if contig is None:
            return False
        if contig in self.decoy_contigs:
            return True
        return bool(self.decoy_suffix) and contig.endswith(self.decoy_suffix)

    model_config = {"frozen": True}


class ProportionThresholds(BaseModel):
    """Threshold for the proportion-based screens (superfast, quick).

    A taxon is detected when its share of mapped reads is strictly greater
    than ``threshold``.
    """

    threshold: float = Field(
        default=DEFAULT_PROPORTION_THRESHOLD,
        ge=0.0,
        le=1.0,
        description="Fraction of all mapped reads (0-1)",
    )
    report_zero_counts: bool = Field(
        default=True,
        description="Keep taxa with no supporting reads in the result table",
    )

    model_config = {"frozen": True}


class FullThresholds(BaseModel):
    """Threshold for the classification-based full screen."""

    minimum_reads: int = Field(
        default=DEFAULT_MINIMUM_READS,
        ge=1,
        description="Classified reads needed to call a taxon detected",
    )
    report_zero_counts: bool = Field(
        default=True,
        description="Report every requested taxid, including those with zero reads",
    )

    model_config = {"frozen": True}


class KrakenHitThresholds(BaseModel):
    """Report-level hit calling from a Kraken-style report."""

    min_number_reads: int = Field(
        default=DEFAULT_HIT_MIN_READS,
        ge=0,
        description="Clade read count must be greater than this",
    )
    min_percent: float = Field(
        default=DEFAULT_HIT_MIN_PERCENT,
        ge=0.0,
        le=100.0,
        description="Clade percentage of classified input reads must reach this",
    )
    oncogenic_only: bool = Field(
        default=True,
        description="Only report hits among the taxa of interest",
    )

    model_config = {"frozen": True}


class ExtractConfig(BaseModel):
    """Options for extracting reads of a taxon (sift)."""

    include_children: bool = Field(
        default=True,
        description="Also extract reads classified to descendants of the taxid",
    )
    require_pairs: bool = Field(
        default=True,
        description="Check that both mates of each extracted pair were found",
    )
    compress: bool = Field(default=False, description="Gzip extracted read files")

    model_config = {"frozen": True}


class TriageConfig(BaseModel):
    """
    Top-level configuration for a triage run.

    Example YAML:

        strict: false
        taxa_of_interest: [10376, 10566]
        regions:
          hard_to_map: refs/hard_to_map.bed.gz
          homology_decoy: refs/homology.bed.gz
        selection:
          partial_mapping: either
        superfast:
          threshold: 0.01
        full:
          minimum_reads: 3
    """

    regions: RegionConfig = Field(default_factory=RegionConfig)
    selection: SelectionConfig = Field(default_factory=SelectionConfig)
    superfast: ProportionThresholds = Field(default_factory=ProportionThresholds)
    quick: ProportionThresholds = Field(default_factory=ProportionThresholds)
    full: FullThresholds = Field(default_factory=FullThresholds)
    hits: KrakenHitThresholds = Field(default_factory=KrakenHitThresholds)
    extract: ExtractConfig = Field(default_factory=ExtractConfig)
    contig_map: Path | None = Field(
        default=None,
        description="TSV mapping contigs to taxids (default: built-in catalogue)",
    )
    taxa_of_interest: list[int] = Field(
        default_factory=lambda: [m.taxid for m in TAXA_OF_INTEREST],
        description="Taxids screened when none are given explicitly",
    )
    strict: bool = Field(
        default=False,
        description="Treat malformed records as fatal instead of skipping them",
    )

    @model_validator(mode="after")
    def validate_taxa(self) -> Self:
        """Taxids must be positive and listed once."""
        if any(t <= 0 for t in self.taxa_of_interest):
            msg = f"taxa_of_interest must be positive taxids, got {self.taxa_of_interest}"
            raise ValueError(msg)
        if len(set(self.taxa_of_interest)) != len(self.taxa_of_interest):
            msg = "taxa_of_interest contains duplicate taxids"
            raise ValueError(msg)
        return self

    @classmethod
    def from_yaml(cls, path: Path) -> TriageConfig:
        """
        Load configuration from a YAML file.

        Sections mirror the model fields; unknown keys are ignored so that
        older binaries can read newer files.

        Raises:
            FileNotFoundError: If the YAML file does not exist.
            ValueError: If the YAML is not a mapping or holds invalid values.
        """
        import yaml

        raw = yaml.safe_load(path.read_text())
        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            msg = f"YAML config must be a mapping, got {type(raw).__name__}"
            raise ValueError(msg)

        return cls(**_known_fields(cls, raw))

    def to_yaml(self, path: Path) -> None:
        """Write configuration to a YAML file."""
        path.write_text(self.to_yaml_str())

    def to_yaml_str(self) -> str:
        import yaml

        data = self.model_dump(mode="json")
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)

    model_config = {"frozen": True}


def _known_fields(model: type[BaseModel], raw: dict[str, Any]) -> dict[str, Any]:
    """Drop keys the model does not declare, recursing into nested sections."""
    kept: dict[str, Any] = {}
    for key, value in raw.items():
        info = model.model_fields.get(key)
        if info is None:
            logger.debug("Ignoring unknown config key: %s", key)
            continue
        annotation = info.annotation
        if (
            isinstance(value, dict)
            and isinstance(annotation, type)
            and issubclass(annotation, BaseModel)
        ):
            kept[key] = _known_fields(annotation, value)
        else:
            kept[key] = value
    return kept
