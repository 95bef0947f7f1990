"""
Custom exceptions with actionable guidance.

Every failure kind the triage engine can report has its own exception type.
Structural problems (bad regions, missing contigs, missing inputs) abort a run;
per-record problems are recoverable and are normally tallied by
:class:`microsift.core.issues.IssueTally` instead of being raised.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Failure kinds reported by the triage engine."""

    INVALID_REGION = "InvalidRegion"
    MISSING_REFERENCE_CONTIG = "MissingReferenceContig"
    CORRUPT_ALIGNMENT_RECORD = "CorruptAlignmentRecord"
    UNKNOWN_TAXID = "UnknownTaxid"
    MALFORMED_REPORT_LINE = "MalformedReportLine"
    TAXID_NOT_CLASSIFIED = "TaxidNotClassified"
    SEQUENCE_SOURCE_MISMATCH = "SequenceSourceMismatch"
    CONFIGURATION = "Configuration"
    MISSING_INPUT = "MissingInput"


class MicrosiftError(Exception):
    """Base exception for microsift errors."""

    kind: ErrorKind | None = None
    recoverable: bool = False

    def __init__(self, message: str, suggestion: str | None = None):
        self.message = message
        self.suggestion = suggestion
        super().__init__(self.full_message)

    @property
    def full_message(self) -> str:
        if self.suggestion:
            return f"{self.message}\n\nSuggestion: {self.suggestion}"
        return self.message


class InvalidRegionError(MicrosiftError):
    """Raised when an interval is inverted or names an unknown contig."""

    kind = ErrorKind.INVALID_REGION

    def __init__(self, contig: str, start: int, end: int, reason: str):
        super().__init__(
            message=f"Invalid region {contig}:{start}-{end}: {reason}",
            suggestion=(
                "Region coordinates are 0-based half-open (BED style) and start "
                "must not exceed end. Check that the region files were built "
                "against the same reference as the alignment."
            ),
        )
        self.contig = contig
        self.start = start
        self.end = end


class MissingReferenceContigError(MicrosiftError):
    """Raised when a screen needs a contig absent from the alignment header."""

    kind = ErrorKind.MISSING_REFERENCE_CONTIG

    def __init__(self, contigs: list[str], taxid: int | None = None):
        shown = ", ".join(contigs[:5])
        if len(contigs) > 5:
            shown += f"... and {len(contigs) - 5} more"
        target = f" for taxid {taxid}" if taxid is not None else ""
        super().__init__(
            message=f"Reference contig(s) not present in alignment header{target}: {shown}",
            suggestion=(
                "The superfast and quick screens only work on alignments made "
                "against a reference that includes the microbial decoy contigs. "
                "Use the full screen instead, or supply a contig map matching "
                "this reference."
            ),
        )
        self.contigs = contigs
        self.taxid = taxid


class CorruptAlignmentRecordError(MicrosiftError):
    """Raised when an alignment record has inconsistent fields."""

    kind = ErrorKind.CORRUPT_ALIGNMENT_RECORD
    recoverable = True

    def __init__(self, read_id: str | None, reason: str):
        super().__init__(
            message=f"Corrupt alignment record '{read_id or '<unnamed>'}': {reason}",
            suggestion=(
                "Validate the file with 'samtools quickcheck' and "
                "'samtools view' to locate the damaged record."
            ),
        )
        self.read_id = read_id


class UnknownTaxidError(MicrosiftError):
    """Raised when a requested taxid is absent from the taxonomy."""

    kind = ErrorKind.UNKNOWN_TAXID
    recoverable = True

    def __init__(self, taxid: int):
        super().__init__(
            message=f"Taxid {taxid} is not present in the taxonomy",
            suggestion=(
                "Check the taxid against the classifier database taxonomy. "
                "Unknown taxids are reported with a zero count."
            ),
        )
        self.taxid = taxid


class MalformedReportLineError(MicrosiftError):
    """Raised when a report, taxonomy or classification line cannot be parsed."""

    kind = ErrorKind.MALFORMED_REPORT_LINE
    recoverable = True

    def __init__(self, path: str, line_num: int, reason: str):
        super().__init__(
            message=f"Malformed line {line_num} in '{path}': {reason}",
            suggestion=(
                "Kraken2 per-read output has 5 tab-separated columns and "
                "reports have 6 (or 8 with --report-minimizer-data). Check "
                "that the file was not truncated or edited."
            ),
        )
        self.path = path
        self.line_num = line_num


class TaxidNotClassifiedError(MicrosiftError):
    """Signals that a requested taxon matched no classified read."""

    kind = ErrorKind.TAXID_NOT_CLASSIFIED
    recoverable = True

    def __init__(self, taxid: int):
        super().__init__(
            message=f"No reads were classified to taxid {taxid} or its descendants",
        )
        self.taxid = taxid


class SequenceSourceMismatchError(MicrosiftError):
    """Raised when classified read ids are missing from every sequence source."""

    kind = ErrorKind.SEQUENCE_SOURCE_MISMATCH
    recoverable = True

    def __init__(self, missing: int, examples: list[str]):
        shown = ", ".join(examples[:3])
        super().__init__(
            message=(
                f"{missing} classified read(s) were not found in any sequence "
                f"source (e.g. {shown})"
            ),
            suggestion=(
                "Supply the same reads that were given to the classifier. Read "
                "ids are compared without a trailing /1 or /2."
            ),
        )
        self.missing = missing
        self.examples = examples


class MissingInputError(MicrosiftError):
    """Raised when a required input file does not exist."""

    kind = ErrorKind.MISSING_INPUT

    def __init__(self, path: str, description: str):
        super().__init__(
            message=f"{description} not found: {path}",
            suggestion="Check the path and that upstream steps completed.",
        )
        self.path = path


class ConfigurationError(MicrosiftError):
    """Raised when configuration is invalid."""

    kind = ErrorKind.CONFIGURATION


class InvalidThresholdError(ConfigurationError):
    """Raised when a threshold parameter is out of valid range."""

    def __init__(self, param_name: str, value: float, min_val: float, max_val: float):
        super().__init__(
            message=f"{param_name} = {value} is out of valid range [{min_val}, {max_val}]",
            suggestion=f"Set {param_name} to a value between {min_val} and {max_val}.",
        )
