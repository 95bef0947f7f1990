"""
Shared CLI utilities for microsift commands.

Provides common functionality used across CLI modules.
"""

from __future__ import annotations

import logging
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, TypeVar

import typer
from pydantic import BaseModel, ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import (
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)

from microsift.core.exceptions import ConfigurationError, MicrosiftError
from microsift.core.issues import IssueTally
from microsift.core.parsers import KrakenReport
from microsift.core.taxonomy import Taxonomy
from microsift.models.config import TriageConfig

ModelT = TypeVar("ModelT", bound=BaseModel)

err_console = Console(stderr=True)


@contextmanager
def spinner_progress(
    description: str,
    console: Console | None = None,
    quiet: bool = False,
) -> Generator[Progress, None, None]:
    """Context manager for spinner-style progress display.

    The spinner is suppressed when quiet mode is enabled.

    Example:
        >>> with spinner_progress("Scanning alignment...", console, quiet) as progress:
        ...     # Perform work
        ...     pass
    """
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        console=console if not quiet else None,
        disable=quiet,
    ) as progress:
        progress.add_task(description=description, total=None)
        yield progress


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Route microsift log records through a Rich handler on stderr.

    ``--verbose`` shows DEBUG records, ``--quiet`` only warnings and errors.
    """
    level = logging.DEBUG if verbose else logging.WARNING if quiet else logging.INFO
    logger = logging.getLogger("microsift")
    logger.setLevel(level)
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)
    handler = RichHandler(console=err_console, show_path=False, markup=False)
    handler.setLevel(level)
    logger.addHandler(handler)
    logger.propagate = False


@contextmanager
def exit_on_error() -> Generator[None, None, None]:
    """Turn microsift errors into a single ``Error:`` line and exit code 1."""
    try:
        yield
    except MicrosiftError as e:
        err_console.print(f"[red]Error:[/red] {e.message}", highlight=False, soft_wrap=True)
        raise typer.Exit(code=1) from None
    except ValidationError as e:
        first = e.errors()[0]
        where = ".".join(str(p) for p in first["loc"])
        err_console.print(f"[red]Error:[/red] invalid {where}: {first['msg']}", highlight=False)
        raise typer.Exit(code=1) from None


def load_config(config: Path | None, strict: bool | None = None) -> TriageConfig:
    """Load the YAML config (or defaults) and apply the ``--strict`` flag."""
    if config is None:
        loaded = TriageConfig()
    else:
        if not config.exists():
            raise ConfigurationError(f"Config file not found: {config}")
        try:
            loaded = TriageConfig.from_yaml(config)
        except ValueError as e:
            raise ConfigurationError(f"Invalid config file {config}: {e}") from None
    if strict:
        loaded = override(loaded, strict=True)
    return loaded


def override(model: ModelT, **changes: Any) -> ModelT:
    """Validated copy of a frozen model with the non-None ``changes`` applied."""
    updates = {k: v for k, v in changes.items() if v is not None}
    if not updates:
        return model
    return type(model).model_validate({**model.model_dump(), **updates})


def load_taxonomy(
    kreport: Path | None = None,
    nodes: Path | None = None,
    names: Path | None = None,
    strict: bool = False,
) -> Taxonomy:
    """Taxonomy from NCBI dumps when given, otherwise from a Kraken report.

    With ``strict``, a malformed line in either source is fatal.
    """
    if nodes is not None:
        tally = IssueTally(strict=strict, source=str(nodes))
        return Taxonomy.from_ncbi_dump(nodes, names, tally=tally)
    if kreport is not None:
        tally = IssueTally(strict=strict, source=str(kreport))
        return Taxonomy.from_kraken_report(KrakenReport(kreport, tally=tally))
    raise ConfigurationError(
        "A taxonomy source is required",
        suggestion="Pass --kreport with the classifier report, or --nodes/--names.",
    )


def extract_sample_name(path: Path, suffixes: tuple[str, ...] = ()) -> str:
    """Extract sample name from a file path.

    Removes common suffixes from the file stem to get a clean sample name.

    Example:
        >>> from pathlib import Path
        >>> extract_sample_name(Path("sample_001.kraken"))
        'sample_001'
        >>> extract_sample_name(Path("sample.idxstats.tsv.gz"))
        'sample'
        >>> extract_sample_name(Path("sample_R1.fastq.gz"))
        'sample'
    """
    name = path.name
    for ext in (".gz", ".bz2"):
        if name.endswith(ext):
            name = name[: -len(ext)]
    name = Path(name).stem

    default_suffixes = (
        ".idxstats",
        ".kraken",
        ".kreport",
        ".sorted",
        ".markdup",
        "_R1",
        "_R2",
    )
    for suffix in default_suffixes + suffixes:
        if name.endswith(suffix):
            name = name[: -len(suffix)]

    return name


class QuietConsole:
    """Console wrapper that suppresses output in quiet mode.

    Example:
        >>> console = Console()
        >>> qc = QuietConsole(console, quiet=True)
        >>> qc.print("This won't be shown")  # Suppressed
    """

    def __init__(self, console: Console, quiet: bool = False):
        self._console = console
        self._quiet = quiet

    @property
    def console(self) -> Console:
        """The wrapped Console, for output that must appear even when quiet."""
        return self._console

    def print(self, *args: Any, **kwargs: Any) -> None:
        if not self._quiet:
            self._console.print(*args, **kwargs)

    def __getattr__(self, name: str) -> Any:
        return getattr(self._console, name)
