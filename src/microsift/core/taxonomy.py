"""
Taxonomy tree and classification resolution.

:class:`Taxonomy` is an immutable parent/child tree built once from an NCBI
dump or a Kraken-style report. :class:`ClassificationResolver` answers
whether classified reads fall under a taxon of interest, caching descendant
sets for the lifetime of one resolver so repeated lookups of the same target
are free.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import NamedTuple

from microsift.core.exceptions import (
    ConfigurationError,
    MalformedReportLineError,
    MissingInputError,
    UnknownTaxidError,
)
from microsift.core.io_utils import open_text
from microsift.core.issues import IssueTally
from microsift.core.parsers import ClassificationRecord, KrakenReport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaxonNode:
    """A node of the taxonomy tree. ``parent`` is 0 for a root."""

    taxid: int
    parent: int
    rank: str
    name: str
    children: tuple[int, ...] = ()

    @property
    def is_root(self) -> bool:
        return self.parent == 0


class TaxonEntry(NamedTuple):
    """Raw hierarchy source row before tree assembly."""

    taxid: int
    parent: int
    rank: str = ""
    name: str = ""


class Taxonomy:
    """
    Rooted taxonomy tree keyed by taxid.

    Invariants checked at build time: taxids are unique, every non-root
    node's parent exists, and there are no cycles. A node whose parent is 0
    or itself (the NCBI root convention) is a root.

    Example:
        >>> tax = Taxonomy.build([
        ...     TaxonEntry(1, 0, "R", "root"),
        ...     TaxonEntry(10376, 1, "S", "EBV"),
        ...     TaxonEntry(12509, 10376, "S1", "EBV type 1"),
        ... ])
        >>> sorted(tax.descendants(10376))
        [10376, 12509]
    """

    def __init__(self, nodes: Mapping[int, TaxonNode]):
        self._nodes = MappingProxyType(dict(nodes))

    @classmethod
    def build(cls, entries: Iterable[TaxonEntry | tuple[int, int, str, str]]) -> Taxonomy:
        """Assemble and validate a tree from (taxid, parent, rank, name) rows.

        Child order follows source order, so the same source always yields
        the same tree.

        Raises:
            ConfigurationError: On duplicate taxids, dangling parents or cycles.
        """
        raw: dict[int, TaxonEntry] = {}
        children: dict[int, list[int]] = {}
        for entry in entries:
            entry = TaxonEntry(*entry)
            if entry.taxid in raw:
                raise ConfigurationError(
                    f"Taxonomy lists taxid {entry.taxid} more than once",
                    suggestion="Check that the hierarchy source is not concatenated twice.",
                )
            parent = 0 if entry.parent == entry.taxid else entry.parent
            raw[entry.taxid] = entry._replace(parent=parent)
            if parent != 0:
                children.setdefault(parent, []).append(entry.taxid)

        dangling = sorted({e.parent for e in raw.values() if e.parent and e.parent not in raw})
        if dangling:
            raise ConfigurationError(
                f"Taxonomy references {len(dangling)} unknown parent taxid(s): "
                f"{', '.join(str(t) for t in dangling[:5])}",
                suggestion="Use a complete nodes.dmp or a report generated with full lineages.",
            )

        nodes = {
            taxid: TaxonNode(
                taxid=taxid,
                parent=e.parent,
                rank=e.rank,
                name=e.name,
                children=tuple(children.get(taxid, ())),
            )
            for taxid, e in raw.items()
        }
        taxonomy = cls(nodes)

        # Every node has a parent, so anything unreachable from a root sits on a cycle
        reachable = sum(len(taxonomy.descendants(r.taxid)) for r in taxonomy.roots)
        if reachable != len(nodes):
            raise ConfigurationError(
                f"Taxonomy contains a cycle ({len(nodes) - reachable} node(s) unreachable from a root)",
                suggestion="Check the parent column of the hierarchy source.",
            )

        logger.debug("Built taxonomy with %d nodes and %d root(s)", len(nodes), len(taxonomy.roots))
        return taxonomy

    @classmethod
    def from_ncbi_dump(
        cls,
        nodes_path: Path,
        names_path: Path | None = None,
        tally: IssueTally | None = None,
    ) -> Taxonomy:
        """Build from NCBI ``nodes.dmp`` and optionally ``names.dmp``.

        Only scientific names are taken from ``names.dmp``.
        """
        if not nodes_path.exists():
            raise MissingInputError(str(nodes_path), "Taxonomy nodes file")
        tally = tally if tally is not None else IssueTally(source=str(nodes_path))

        names: dict[int, str] = {}
        if names_path is not None:
            if not names_path.exists():
                raise MissingInputError(str(names_path), "Taxonomy names file")
            for parts in _dmp_rows(names_path):
                if len(parts) >= 4 and parts[3] == "scientific name" and parts[0].isdigit():
                    names[int(parts[0])] = parts[1]

        def _entries() -> Iterator[TaxonEntry]:
            for line_num, parts in enumerate(_dmp_rows(nodes_path), start=1):
                try:
                    if len(parts) < 3:
                        raise ValueError(f"expected at least 3 fields, got {len(parts)}")
                    taxid = int(parts[0])
                    yield TaxonEntry(taxid, int(parts[1]), parts[2], names.get(taxid, ""))
                except ValueError as e:
                    tally.record(MalformedReportLineError(str(nodes_path), line_num, str(e)))

        taxonomy = cls.build(_entries())
        tally.log_summary()
        return taxonomy

    @classmethod
    def from_kraken_report(cls, report: KrakenReport | Path) -> Taxonomy:
        """Recover the hierarchy from a report's name indentation.

        Each row's parent is the closest preceding row one level shallower.
        The unclassified row (taxid 0) is not part of the tree.
        """
        if isinstance(report, Path):
            report = KrakenReport(report)

        def _entries() -> Iterator[TaxonEntry]:
            stack: list[tuple[int, int]] = []  # (depth, taxid)
            for row in report:
                if row.taxid == 0:
                    continue
                while stack and stack[-1][0] >= row.depth:
                    stack.pop()
                parent = stack[-1][1] if stack else 0
                stack.append((row.depth, row.taxid))
                yield TaxonEntry(row.taxid, parent, row.rank, row.name)

        taxonomy = cls.build(_entries())
        report.tally.log_summary()
        return taxonomy

    # -------------------------------------------------------------------------

    def __contains__(self, taxid: object) -> bool:
        return taxid in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[TaxonNode]:
        return iter(self._nodes.values())

    def get(self, taxid: int) -> TaxonNode | None:
        return self._nodes.get(taxid)

    def node(self, taxid: int) -> TaxonNode:
        """Node for ``taxid``.

        Raises:
            UnknownTaxidError: If the taxid is not in the tree.
        """
        try:
            return self._nodes[taxid]
        except KeyError:
            raise UnknownTaxidError(taxid) from None

    def name_of(self, taxid: int) -> str | None:
        node = self._nodes.get(taxid)
        return node.name if node is not None and node.name else None

    @property
    def roots(self) -> list[TaxonNode]:
        return [n for n in self._nodes.values() if n.is_root]

    def descendants(self, taxid: int) -> frozenset[int]:
        """``taxid`` plus every taxid below it (iterative depth-first walk).

        Raises:
            UnknownTaxidError: If the taxid is not in the tree.
        """
        self.node(taxid)
        found: set[int] = set()
        stack = [taxid]
        while stack:
            current = stack.pop()
            if current in found:
                continue
            found.add(current)
            stack.extend(self._nodes[current].children)
        return frozenset(found)

    def lineage(self, taxid: int) -> list[int]:
        """Taxids from ``taxid`` up to its root, inclusive."""
        path = [self.node(taxid).taxid]
        while (parent := self._nodes[path[-1]].parent) != 0:
            path.append(parent)
        return path


def _dmp_rows(path: Path) -> Iterator[list[str]]:
    """Split NCBI ``.dmp`` rows on the ``\\t|\\t`` separator."""
    with open_text(path) as f:
        for line in f:
            if not line.strip():
                continue
            yield [p.strip() for p in line.rstrip("\n").rstrip("|").split("|")]


# =============================================================================
# Resolution and aggregation
# =============================================================================


class TaxonTally(Mapping[int, int]):
    """
    Read counts per requested taxid.

    Tallies from shards of the same classification stream can be combined
    with ``+``; the combination is commutative and associative.
    """

    def __init__(self, counts: Mapping[int, int] | None = None):
        self._counts: dict[int, int] = dict(counts or {})

    def __getitem__(self, taxid: int) -> int:
        return self._counts[taxid]

    def __iter__(self) -> Iterator[int]:
        return iter(self._counts)

    def __len__(self) -> int:
        return len(self._counts)

    def __add__(self, other: TaxonTally) -> TaxonTally:
        merged = dict(self._counts)
        for taxid, count in other.items():
            merged[taxid] = merged.get(taxid, 0) + count
        return TaxonTally(merged)

    def __repr__(self) -> str:
        return f"TaxonTally({self._counts!r})"


def merge_tallies(tallies: Iterable[TaxonTally]) -> TaxonTally:
    """Sum partial tallies from sharded passes."""
    merged = TaxonTally()
    for tally in tallies:
        merged = merged + tally
    return merged


class ClassificationResolver:
    """
    Resolve classified reads against taxa of interest.

    One resolver corresponds to one invocation: descendant sets computed by
    :meth:`expand` are cached on the resolver, never on the shared taxonomy.

    Example:
        >>> resolver = ClassificationResolver(taxonomy)
        >>> counts = resolver.aggregate(KrakenOutputParser(path), [10376])
        >>> counts[10376]
        50
    """

    def __init__(self, taxonomy: Taxonomy):
        self.taxonomy = taxonomy
        self._expanded: dict[int, frozenset[int]] = {}

    def expand(self, taxid: int) -> frozenset[int]:
        """``taxid`` and all of its descendants.

        Raises:
            UnknownTaxidError: If the taxid is not in the taxonomy.
        """
        cached = self._expanded.get(taxid)
        if cached is None:
            cached = self.taxonomy.descendants(taxid)
            self._expanded[taxid] = cached
        return cached

    @staticmethod
    def resolve(record: ClassificationRecord, target_set: frozenset[int] | set[int]) -> bool:
        """Whether the record is classified into ``target_set``."""
        return record.classified and record.taxid in target_set

    def aggregate(
        self,
        classifications: Iterable[ClassificationRecord],
        taxids: Iterable[int],
        report_zero_counts: bool = True,
    ) -> TaxonTally:
        """Count reads per requested taxon in one pass.

        A read counts towards every requested taxon whose clade contains its
        assigned taxid, so nested requests (a species and its genus) both
        see it. Unknown taxids are warned about and counted as zero.

        Args:
            classifications: Classification records, consumed once.
            taxids: Requested taxa.
            report_zero_counts: Include every requested taxid even when no
                read was assigned to it.
        """
        requested = list(dict.fromkeys(taxids))

        # member taxid -> requested taxa whose clade contains it
        owners: dict[int, list[int]] = {}
        for taxid in requested:
            try:
                members = self.expand(taxid)
            except UnknownTaxidError as e:
                logger.warning("%s; reporting a zero count", e.message)
                continue
            for member in members:
                owners.setdefault(member, []).append(taxid)

        counts: Counter[int] = Counter()
        if report_zero_counts:
            counts.update({taxid: 0 for taxid in requested})

        for record in classifications:
            if not record.classified:
                continue
            for taxid in owners.get(record.taxid, ()):
                counts[taxid] += 1

        ordered = {t: counts[t] for t in requested if t in counts}
        logger.info(
            "Aggregated classified reads for %d requested taxa (%d with reads)",
            len(requested),
            sum(1 for c in ordered.values() if c > 0),
        )
        return TaxonTally(ordered)

    def target_read_ids(
        self,
        classifications: Iterable[ClassificationRecord],
        taxid: int,
        include_children: bool = True,
    ) -> set[str]:
        """Read ids classified to ``taxid`` (and its descendants by default)."""
        targets = self.expand(taxid) if include_children else frozenset({self.taxonomy.node(taxid).taxid})
        return {r.read_id for r in classifications if self.resolve(r, targets)}
