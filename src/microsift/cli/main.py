"""
Main CLI entry point for microsift.

Provides subcommands:
- screen: superfast, quick and full screening of a sample
- aggregate: Classified read counts per taxon of interest
- sift: Extract the reads of a taxon
"""

from __future__ import annotations

import typer
from rich import print as rprint

from microsift import __version__

app = typer.Typer(
    name="microsift",
    help="Taxonomic triage and extraction of microbial reads from host sequencing data",
    add_completion=False,
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        rprint(f"microsift version {__version__}")
        raise typer.Exit


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """
    Microsift: taxonomic triage and extraction of microbial reads.

    Screens host alignments for reads of microbial taxa of interest, resolves
    classifier output against a taxonomy and extracts the reads of a taxon.
    """


# Import subcommands
from microsift.cli import screen, sift

# Register subcommands
app.add_typer(screen.app, name="screen")
app.command(name="aggregate")(screen.aggregate)
app.command(name="sift")(sift.sift_reads)


if __name__ == "__main__":
    app()
