"""
I/O utilities for tables and sequence files.

Provides consistent handling of output formats (CSV/TSV/Parquet) and of
gzip-aware text streams across the codebase. Compressed output is written
with a fixed gzip header timestamp so that re-running a step on unchanged
inputs produces byte-identical files.
"""

from __future__ import annotations

import gzip
import io
from pathlib import Path
from typing import IO, Literal

import polars as pl

from microsift.core.constants import WRITE_BUFFER_SIZE

OutputFormat = Literal["csv", "tsv", "parquet"]

_FASTQ_SUFFIXES = (".fastq", ".fq")
_FASTA_SUFFIXES = (".fasta", ".fa", ".fna", ".fas")
_ALIGNMENT_SUFFIXES = (".bam", ".sam", ".cram")


def write_dataframe(
    df: pl.DataFrame,
    path: Path,
    output_format: OutputFormat = "csv",
) -> None:
    """
    Write DataFrame to file in specified format.

    Args:
        df: Polars DataFrame to write.
        path: Output file path.
        output_format: Output format - 'csv', 'tsv' or 'parquet'.

    Example:
        >>> df = pl.DataFrame({"taxid": [10376], "decision": [True]})
        >>> write_dataframe(df, Path("screen.csv"))
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    if output_format == "parquet":
        df.write_parquet(path, compression="zstd")
    elif output_format == "tsv":
        df.write_csv(path, separator="\t")
    else:
        df.write_csv(path)


def read_dataframe(path: Path) -> pl.DataFrame:
    """
    Read DataFrame from file, auto-detecting format from extension.

    Supports: .csv, .tsv, .parquet, .csv.gz, .tsv.gz

    Raises:
        ValueError: If file extension is not recognized.
    """
    suffix = path.suffix.lower()
    name = path.name.lower()

    if suffix == ".parquet":
        return pl.read_parquet(path)
    if suffix == ".csv" or name.endswith(".csv.gz"):
        return pl.read_csv(path)
    if suffix == ".tsv" or name.endswith(".tsv.gz"):
        return pl.read_csv(path, separator="\t")
    msg = f"Unrecognized file format: {path}"
    raise ValueError(msg)


def open_text(path: Path) -> IO[str]:
    """Open a text file for reading, decompressing ``.gz`` transparently."""
    if path.suffix == ".gz":
        return gzip.open(path, "rt")
    return path.open("r")


def open_output(path: Path, compress: bool | None = None) -> IO[str]:
    """Open a text file for writing in one pass.

    Gzip output carries no timestamp or source file name in its header, so
    the bytes depend only on the content written.

    Args:
        path: Output file path. Parent directories are created.
        compress: Gzip the stream; defaults to True for ``.gz`` paths.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    if compress is None:
        compress = path.suffix == ".gz"
    if not compress:
        return path.open("w", buffering=WRITE_BUFFER_SIZE, newline="\n")

    raw = path.open("wb")
    gz = gzip.GzipFile(filename="", mode="wb", fileobj=raw, mtime=0)
    return _ClosingTextWrapper(gz, raw)


class _ClosingTextWrapper(io.TextIOWrapper):
    """TextIOWrapper over a GzipFile that also closes the underlying file."""

    def __init__(self, gz: gzip.GzipFile, raw: IO[bytes]):
        super().__init__(
            gz,
            encoding="utf-8",
            newline="\n",
        )
        self._raw = raw

    def close(self) -> None:
        try:
            super().close()
        finally:
            self._raw.close()


def sequence_format(path: Path) -> Literal["fastq", "fasta", "alignment"]:
    """Guess the format of a sequence source from its extension.

    Raises:
        ValueError: If the extension is not a known sequence format.

    Example:
        >>> sequence_format(Path("sample_R1.fastq.gz"))
        'fastq'
    """
    name = path.name.lower()
    if name.endswith(".gz"):
        name = name[:-3]
    if name.endswith(_FASTQ_SUFFIXES):
        return "fastq"
    if name.endswith(_FASTA_SUFFIXES):
        return "fasta"
    if name.endswith(_ALIGNMENT_SUFFIXES):
        return "alignment"
    msg = f"Unrecognized sequence format: {path}"
    raise ValueError(msg)


def sequence_suffix(output_format: Literal["fastq", "fasta"], compress: bool) -> str:
    """File suffix for written sequence files."""
    return f".{output_format}" + (".gz" if compress else "")


def format_record(
    read_id: str,
    sequence: str,
    qualities: str | None,
    output_format: Literal["fastq", "fasta"],
) -> str:
    """Render one sequence record as FASTQ or FASTA text.

    FASTQ records without base qualities get a constant placeholder
    quality (``I``) so that downstream tools still accept them.
    """
    if output_format == "fasta":
        return f">{read_id}\n{sequence}\n"
    if qualities is None or len(qualities) != len(sequence):
        qualities = "I" * len(sequence)
    return f"@{read_id}\n{sequence}\n+\n{qualities}\n"
