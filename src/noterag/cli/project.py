"""noterag project: project lifecycle (add, list, remove).

Removing a project deletes its documents, chunks and vector index file.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from noterag.cli.common import open_service
from noterag.cli.errors import err_project_not_found

console = Console()

project_app = typer.Typer(help="Manage projects.", add_completion=False)

DbOption = Annotated[
    Path | None,
    typer.Option("--db", help="Path to the database (default: storage.db_path)."),
]


@project_app.command("add")
def project_add_cmd(
    name: Annotated[str, typer.Argument(help="Project name.")],
    db: DbOption = None,
) -> None:
    """Create a project."""
    with open_service(db) as service:
        project_id = service.repository.create_project(name)
    console.print(f"[green]✓[/] Created project {project_id}: {name}")


@project_app.command("list")
def project_list_cmd(db: DbOption = None) -> None:
    """List all projects."""
    with open_service(db) as service:
        projects = service.repository.list_projects()
        counts = {
            p.id: len(service.repository.list_documents(p.id)) for p in projects
        }

    if not projects:
        console.print("[dim]No projects yet.[/]  Run:  noterag project add <name>")
        return

    table = Table(title="Projects")
    table.add_column("ID", justify="right")
    table.add_column("Name", style="bold")
    table.add_column("Documents", justify="right")
    table.add_column("Created", style="dim")
    for p in projects:
        table.add_row(str(p.id), p.name, str(counts[p.id]), p.created_at or "")
    console.print(table)


@project_app.command("remove")
def project_remove_cmd(
    project_id: Annotated[int, typer.Argument(help="Project id.")],
    db: DbOption = None,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Remove a project with all its documents, chunks and vector index."""
    with open_service(db) as service:
        project = service.repository.get_project(project_id)
        if project is None:
            console.print(err_project_not_found(project_id))
            raise typer.Exit(1)

        documents = service.repository.list_documents(project_id)
        console.print(f"\nRemove project: [bold]{project.name}[/]")
        console.print(
            f"  Documents: {len(documents)}  |  "
            f"Chunks: {service.chunk_store.count_for_project(project_id)}"
        )
        if not yes and not typer.confirm("Confirm removal?", default=False):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)

        service.delete_project(project_id)
    console.print(f"\n[green]✓[/] Removed project {project_id}: {project.name}")
