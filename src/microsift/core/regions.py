"""
Genomic interval index for classifying alignment positions.

Intervals are merged per contig at build time and stored as sorted numpy
arrays. Queries binary-search the merged ends, so each overlap test is
O(log n) regardless of how many intervals were loaded.

Coordinates are 0-based half-open, as in BED files and pysam.
"""

from __future__ import annotations

import gzip
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import NamedTuple

import numpy as np

from microsift.core.exceptions import InvalidRegionError, MissingInputError

logger = logging.getLogger(__name__)


class RegionCategory(str, Enum):
    """Named interval sets used by the read selector."""

    HARD_TO_MAP = "hard-to-map"
    HOMOLOGY_DECOY = "homology-decoy"


class Interval(NamedTuple):
    """Single genomic interval."""

    contig: str
    start: int
    end: int


@dataclass(frozen=True)
class IntervalIndex:
    """Read-only merged interval set supporting overlap queries.

    Build with :meth:`build` or :meth:`from_bed`. Instances are never mutated
    after construction and can be shared between threads.

    Example:
        >>> index = IntervalIndex.build([Interval("chr1", 100, 200)])
        >>> index.overlaps("chr1", 150, 160)
        True
        >>> index.overlaps("chr1", 200, 210)
        False
    """

    starts: Mapping[str, np.ndarray] = field(default_factory=dict)
    ends: Mapping[str, np.ndarray] = field(default_factory=dict)
    contigs: frozenset[str] = frozenset()
    name: str = "regions"

    @classmethod
    def build(
        cls,
        intervals: Iterable[Interval | tuple[str, int, int]],
        contigs: Iterable[str] | None = None,
        name: str = "regions",
    ) -> IntervalIndex:
        """Merge overlapping or adjacent intervals per contig.

        Args:
            intervals: (contig, start, end) triples.
            contigs: Reference contigs that may be queried. Contigs named by
                intervals are always known; queries on any other contig raise.
            name: Label used in log messages.

        Raises:
            InvalidRegionError: If an interval has start > end or a negative start.
        """
        by_contig: dict[str, list[tuple[int, int]]] = {}
        for contig, start, end in intervals:
            if start > end:
                raise InvalidRegionError(contig, start, end, "start is greater than end")
            if start < 0:
                raise InvalidRegionError(contig, start, end, "negative start")
            by_contig.setdefault(contig, []).append((start, end))

        starts: dict[str, np.ndarray] = {}
        ends: dict[str, np.ndarray] = {}
        n_input = 0
        for contig, spans in by_contig.items():
            n_input += len(spans)
            spans.sort()
            merged_starts: list[int] = []
            merged_ends: list[int] = []
            for start, end in spans:
                # Adjacent intervals (end == next start) merge as well
                if merged_ends and start <= merged_ends[-1]:
                    merged_ends[-1] = max(merged_ends[-1], end)
                else:
                    merged_starts.append(start)
                    merged_ends.append(end)
            starts[contig] = np.asarray(merged_starts, dtype=np.int64)
            ends[contig] = np.asarray(merged_ends, dtype=np.int64)

        known = frozenset(by_contig) | frozenset(contigs or ())
        logger.debug(
            "Built %s index: %d intervals merged to %d on %d contigs",
            name,
            n_input,
            sum(len(v) for v in starts.values()),
            len(starts),
        )
        return cls(starts=starts, ends=ends, contigs=known, name=name)

    @classmethod
    def from_bed(
        cls,
        path: Path,
        contigs: Iterable[str] | None = None,
        name: str | None = None,
    ) -> IntervalIndex:
        """Load intervals from a BED file (optionally gzipped).

        Only the first three columns are used. Header, track and comment
        lines are ignored.
        """
        if not path.exists():
            raise MissingInputError(str(path), "Region BED file")

        open_func = gzip.open if path.suffix == ".gz" else Path.open

        def _intervals() -> Iterable[Interval]:
            with open_func(path, "rt") as f:  # type: ignore[operator]
                for line in f:
                    if not line.strip() or line.startswith(("#", "track", "browser")):
                        continue
                    parts = line.rstrip("\n").split("\t")
                    if len(parts) < 3:
                        parts = line.split()
                    if len(parts) < 3 or not parts[1].lstrip("-").isdigit():
                        # Column header row
                        continue
                    yield Interval(parts[0], int(parts[1]), int(parts[2]))

        return cls.build(_intervals(), contigs=contigs, name=name or path.name)

    def with_contigs(self, contigs: Iterable[str]) -> IntervalIndex:
        """Return a copy that also accepts queries on ``contigs``.

        The interval arrays are shared, not copied.
        """
        return IntervalIndex(
            starts=self.starts,
            ends=self.ends,
            contigs=self.contigs | frozenset(contigs),
            name=self.name,
        )

    def overlaps(self, contig: str, start: int, end: int) -> bool:
        """Whether [start, end) overlaps any interval on ``contig``.

        A zero-length query (start == end) overlaps an interval that strictly
        contains its position.

        Raises:
            InvalidRegionError: If start > end or the contig is unknown.
        """
        if start > end:
            raise InvalidRegionError(contig, start, end, "start is greater than end")
        if contig not in self.contigs:
            raise InvalidRegionError(contig, start, end, "contig is not in the index")

        contig_ends = self.ends.get(contig)
        if contig_ends is None or len(contig_ends) == 0:
            return False

        # First merged interval ending after the query start
        i = int(np.searchsorted(contig_ends, start, side="right"))
        if i == len(contig_ends):
            return False
        interval_start = int(self.starts[contig][i])
        if start == end:
            return interval_start <= start
        return interval_start < end

    def __len__(self) -> int:
        return sum(len(v) for v in self.starts.values())

    def __contains__(self, contig: object) -> bool:
        return contig in self.contigs


@dataclass(frozen=True)
class RegionSets:
    """The two named interval sets consumed by the selector."""

    hard_to_map: IntervalIndex = field(
        default_factory=lambda: IntervalIndex(name=RegionCategory.HARD_TO_MAP.value)
    )
    homology_decoy: IntervalIndex = field(
        default_factory=lambda: IntervalIndex(name=RegionCategory.HOMOLOGY_DECOY.value)
    )

    @classmethod
    def from_beds(
        cls,
        hard_to_map: Path | None = None,
        homology_decoy: Path | None = None,
    ) -> RegionSets:
        """Load region sets from BED files; a missing path yields an empty set."""
        return cls(
            hard_to_map=(
                IntervalIndex.from_bed(hard_to_map, name=RegionCategory.HARD_TO_MAP.value)
                if hard_to_map is not None
                else IntervalIndex(name=RegionCategory.HARD_TO_MAP.value)
            ),
            homology_decoy=(
                IntervalIndex.from_bed(
                    homology_decoy, name=RegionCategory.HOMOLOGY_DECOY.value
                )
                if homology_decoy is not None
                else IntervalIndex(name=RegionCategory.HOMOLOGY_DECOY.value)
            ),
        )

    def with_contigs(self, contigs: Iterable[str]) -> RegionSets:
        """Register the alignment header contigs with both sets."""
        contigs = list(contigs)
        return RegionSets(
            hard_to_map=self.hard_to_map.with_contigs(contigs),
            homology_decoy=self.homology_decoy.with_contigs(contigs),
        )

    def get(self, category: RegionCategory) -> IntervalIndex:
        if category is RegionCategory.HARD_TO_MAP:
            return self.hard_to_map
        return self.homology_decoy
