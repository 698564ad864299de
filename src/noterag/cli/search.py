"""noterag vectorize / search / show: index maintenance and retrieval.

  noterag vectorize --project 2
  noterag search --project 2 "what did we decide about pricing?"
  noterag show 118
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from noterag.cli.common import open_service, require_vectorization
from noterag.cli.errors import err_chunk_not_found, err_project_not_found, warn_embedding_failed

console = Console()

DbOption = Annotated[
    Path | None,
    typer.Option("--db", help="Path to the database (default: storage.db_path)."),
]


def vectorize_cmd(
    project: Annotated[
        int | None,
        typer.Option("--project", "-p", help="Only this project (default: all)."),
    ] = None,
    db: DbOption = None,
) -> None:
    """Chunk and embed every document with pending chunks, then wait."""
    with open_service(db) as service:
        require_vectorization(service)
        if project is not None and service.repository.get_project(project) is None:
            console.print(err_project_not_found(project))
            raise typer.Exit(1)

        futures = service.coordinator.vectorize_pending(project)
        if not futures:
            console.print("[green]✓[/] Nothing to vectorize.")
            return

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
            transient=True,
        ) as progress:
            progress.add_task(f"Vectorizing {len(futures)} document(s)…", total=None)
            results = [f.result() for f in futures]

    vectorized = [r for r in results if r.status == "vectorized"]
    failed = [r for r in results if not r.ok]
    chunks = sum(r.vectorized_count for r in vectorized)
    console.print(
        f"[green]✓[/] Vectorized {len(vectorized)} document(s), {chunks} chunks"
    )
    if failed:
        console.print(warn_embedding_failed(len(failed)))


def search_cmd(
    query: Annotated[str, typer.Argument(help="Natural-language query.")],
    project: Annotated[int, typer.Option("--project", "-p", help="Project to search.")],
    top_k: Annotated[
        int | None,
        typer.Option("--top-k", "-k", help="Nearest chunks to consider (clamped to 1–50)."),
    ] = None,
    db: DbOption = None,
) -> None:
    """Retrieve the most relevant passages of a project, one per document."""
    with open_service(db) as service:
        require_vectorization(service)
        if service.repository.get_project(project) is None:
            console.print(err_project_not_found(project))
            raise typer.Exit(1)
        sources = service.retrieve_sources(project, query, top_k)

    if not sources:
        console.print("[dim]No relevant passages found.[/]")
        return

    table = Table(title=f"Sources for: {query}")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Chunk", justify="right")
    table.add_column("Document", style="bold")
    table.add_column("Score", justify="right")
    table.add_column("Preview")
    for rank, source in enumerate(sources, start=1):
        score = f"{source.score:.3f}" if source.score is not None else ""
        table.add_row(
            str(rank),
            str(source.chunk_id),
            source.document_name,
            score,
            source.chunk_preview,
        )
    console.print(table)


def show_cmd(
    chunk_id: Annotated[int, typer.Argument(help="Chunk id from a search result.")],
    db: DbOption = None,
) -> None:
    """Print the full text of a cited chunk."""
    with open_service(db) as service:
        chunk = service.chunk_store.get_chunk(chunk_id)
        document = service.repository.get_document(chunk.document_id) if chunk else None

    if chunk is None:
        console.print(err_chunk_not_found(chunk_id))
        return

    title = f"[bold]{document.name if document else chunk.document_id}[/] [dim]chunk {chunk.chunk_index}[/]"
    console.print(Panel(chunk.text, title=title, expand=False))
