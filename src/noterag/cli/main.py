"""noterag CLI entry point."""

from __future__ import annotations

import importlib.metadata
import logging
from typing import Annotated

import typer
from rich.logging import RichHandler

from noterag.cli.documents import add_cmd, move_cmd, remove_cmd
from noterag.cli.init import init_cmd
from noterag.cli.project import project_app
from noterag.cli.search import search_cmd, show_cmd, vectorize_cmd
from noterag.cli.status import status_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("noterag")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"noterag {_installed_version()}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=verbose)],
        force=True,
    )
    # LiteLLM is chatty at DEBUG; keep it at WARNING regardless of --verbose.
    logging.getLogger("LiteLLM").setLevel(logging.WARNING)


app = typer.Typer(
    name="noterag",
    help=(
        "noterag: retrieval-augmented generation for your notes.\n\n"
        "  noterag add       Import a document into a project.\n"
        "  noterag search    Find the most relevant passages in a project."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging."),
    ] = False,
) -> None:
    """noterag: retrieval-augmented generation for your notes."""
    _configure_logging(verbose)


app.command("init")(init_cmd)
app.command("add")(add_cmd)
app.command("move")(move_cmd)
app.command("remove")(remove_cmd)
app.command("vectorize")(vectorize_cmd)
app.command("search")(search_cmd)
app.command("show")(show_cmd)
app.command("status")(status_cmd)
app.add_typer(project_app, name="project")


@app.command("version")
def version_cmd() -> None:
    """Show the installed noterag version."""
    typer.echo(f"noterag {_installed_version()}")


if __name__ == "__main__":
    app()
