"""
Tally of recoverable per-record issues.

Streaming passes over files with millions of records cannot log every
malformed line. Issues are counted per kind, the first few examples are kept,
and a single summary line per kind is logged when the pass finishes.
"""

from __future__ import annotations

import logging
from collections import Counter

from microsift.core.exceptions import ErrorKind, MicrosiftError

logger = logging.getLogger(__name__)

MAX_EXAMPLES = 3


class IssueTally:
    """Counts recoverable issues, promoting them to fatal in strict mode.

    Example:
        >>> tally = IssueTally(strict=False)
        >>> tally.record(CorruptAlignmentRecordError("r1", "negative position"))
        >>> tally.counts[ErrorKind.CORRUPT_ALIGNMENT_RECORD]
        1
    """

    def __init__(self, strict: bool = False, source: str | None = None):
        self.strict = strict
        self.source = source
        self.counts: Counter[ErrorKind] = Counter()
        self.examples: dict[ErrorKind, list[str]] = {}

    def record(self, error: MicrosiftError) -> None:
        """Count a recoverable error, or raise it.

        Raises:
            MicrosiftError: The error itself when the tally is strict or the
                error is structural.
        """
        if self.strict or not error.recoverable or error.kind is None:
            raise error

        self.counts[error.kind] += 1
        examples = self.examples.setdefault(error.kind, [])
        if len(examples) < MAX_EXAMPLES:
            examples.append(error.message)
        logger.debug("%s", error.message)

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def __bool__(self) -> bool:
        return self.total > 0

    def as_dict(self) -> dict[str, int]:
        return {kind.value: count for kind, count in sorted(self.counts.items())}

    def log_summary(self) -> None:
        """Log one warning per issue kind."""
        where = f" in {self.source}" if self.source else ""
        for kind, count in sorted(self.counts.items()):
            first = self.examples.get(kind, [""])[0]
            logger.warning(
                "Skipped %d record(s) with %s%s (first: %s)",
                count,
                kind.value,
                where,
                first,
            )
