"""noterag status: per-project document, chunk and index overview."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from noterag.cli.common import load_cli_config, open_service, resolve_db

console = Console()


def status_cmd(
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the database (default: storage.db_path)."),
    ] = None,
) -> None:
    """Show database, configuration and per-project vectorization status."""
    cfg = load_cli_config()
    db_path = resolve_db(db, cfg)

    db_info = str(db_path)
    if db_path.exists():
        size_mb = db_path.stat().st_size / (1024 * 1024)
        db_info = f"{db_path} ({size_mb:.1f} MB)"
    enabled = "[green]enabled[/]" if cfg.vectorization.enabled else "[yellow]disabled[/]"
    lines = [
        f"Database:       {db_info}",
        f"Embedding:      {cfg.embedding.model} ({cfg.embedding.dimensions} dims)",
        f"Vectorization:  {enabled}",
        f"Top-K:          {cfg.retrieval.top_k} "
        f"[dim](clamped {cfg.retrieval.min_top_k}–{cfg.retrieval.max_top_k})[/]",
    ]
    console.print(Panel("\n".join(lines), title="[bold]noterag[/]", expand=False))

    if not db_path.exists():
        console.print(
            Panel(
                "[yellow]No database found.[/]\n"
                "  Run:  noterag init",
                title="[bold]Projects[/]",
                expand=False,
            )
        )
        return

    with open_service(db_path) as service:
        table = Table(title="Projects")
        table.add_column("ID", justify="right")
        table.add_column("Name", style="bold")
        table.add_column("Documents", justify="right")
        table.add_column("Chunks", justify="right")
        table.add_column("Vectorized", justify="right")
        table.add_column("Index", justify="center")

        for project in service.repository.list_projects():
            total = service.chunk_store.count_for_project(project.id)
            pending = service.chunk_store.count_unvectorized(project.id)
            has_index = service.indices.path_for(project.id).exists()
            table.add_row(
                str(project.id),
                project.name,
                str(len(service.repository.list_documents(project.id))),
                str(total),
                f"{total - pending}/{total}",
                "[green]✓[/]" if has_index else "[dim]–[/]",
            )
    console.print(table)
