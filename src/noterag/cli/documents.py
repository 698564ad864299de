"""noterag add / move / remove: document lifecycle.

  noterag add --project 2 notes/meeting.md
  noterag move 14 3
  noterag remove 14 --yes

Content type is inferred from the file extension (.html/.htm → html,
.md/.markdown → markdown, anything else → text) unless --content-type is set.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from noterag.cli.common import open_service
from noterag.cli.errors import (
    err_document_not_found,
    err_file_unreadable,
    err_project_not_found,
)

console = Console()

_CONTENT_TYPES = {
    ".html": "html",
    ".htm": "html",
    ".md": "markdown",
    ".markdown": "markdown",
}

DbOption = Annotated[
    Path | None,
    typer.Option("--db", help="Path to the database (default: storage.db_path)."),
]


def add_cmd(
    file: Annotated[Path, typer.Argument(help="UTF-8 text, Markdown or HTML file.")],
    project: Annotated[int, typer.Option("--project", "-p", help="Target project id.")],
    name: Annotated[
        str | None,
        typer.Option("--name", help="Document name (default: file name)."),
    ] = None,
    content_type: Annotated[
        str | None,
        typer.Option("--content-type", help="text | html | markdown | transcript."),
    ] = None,
    db: DbOption = None,
) -> None:
    """Add a document to a project and vectorize it."""
    try:
        text = file.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        console.print(err_file_unreadable(str(file), str(exc)))
        raise typer.Exit(1) from exc

    kind = content_type or _CONTENT_TYPES.get(file.suffix.lower(), "text")

    with open_service(db) as service:
        if service.repository.get_project(project) is None:
            console.print(err_project_not_found(project))
            raise typer.Exit(1)

        document_id, future = service.add_document(
            project, name or file.name, text, content_type=kind
        )
        console.print(f"[green]✓[/] Added document {document_id}: {name or file.name}")

        if future is None:
            chunk_count = len(service.chunk_store.chunk_ids_for_document(document_id))
            console.print(
                f"[dim]Vectorization is disabled; {chunk_count} chunks stored, not indexed.[/]"
            )
            return
        result = future.result()

    if result.ok:
        console.print(
            f"  {result.chunk_count} chunks, {result.vectorized_count} vectorized"
        )
    else:
        console.print(
            f"  [yellow]⚠[/] Not vectorized ({result.status}). "
            "Retry later:  noterag vectorize"
        )


def move_cmd(
    document_id: Annotated[int, typer.Argument(help="Document id.")],
    project_id: Annotated[int, typer.Argument(help="Destination project id.")],
    db: DbOption = None,
) -> None:
    """Move a document (and its chunks) to another project."""
    with open_service(db) as service:
        document = service.repository.get_document(document_id)
        if document is None:
            console.print(err_document_not_found(document_id))
            raise typer.Exit(1)
        if service.repository.get_project(project_id) is None:
            console.print(err_project_not_found(project_id))
            raise typer.Exit(1)
        if document.project_id == project_id:
            console.print(f"[dim]Document {document_id} is already in project {project_id}.[/]")
            return

        service.reassign_document_project(document_id, project_id)
    console.print(
        f"[green]✓[/] Moved document {document_id} from project "
        f"{document.project_id} to {project_id}"
    )


def remove_cmd(
    document_id: Annotated[int, typer.Argument(help="Document id.")],
    db: DbOption = None,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Remove a document, its chunks and their index entries."""
    with open_service(db) as service:
        document = service.repository.get_document(document_id)
        if document is None:
            console.print(err_document_not_found(document_id))
            raise typer.Exit(0)

        chunk_count = len(service.chunk_store.chunk_ids_for_document(document_id))
        console.print(f"\nRemove document: [bold]{document.name}[/]")
        console.print(f"  Project: {document.project_id}  |  Chunks: {chunk_count}")

        if not yes and not typer.confirm("Confirm removal?", default=False):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)

        service.delete_document(document_id)
    console.print(f"\n[green]✓[/] Removed: {document.name}")
    console.print(f"  {chunk_count} chunks deleted")
