"""noterag init: create the database, global config and the Unassigned project.

Creates:
  noterag.db               empty document/chunk store with schema
  ~/.noterag/config.yaml   global model config (created once, mode 0o600)
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from noterag.cli.common import open_service, resolve_db, load_cli_config
from noterag.config import ensure_global_config

console = Console()


def init_cmd(
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the database (default: storage.db_path)."),
    ] = None,
) -> None:
    """Initialize a noterag database in the current directory."""
    db_path = resolve_db(db, load_cli_config())
    if db_path.exists():
        console.print(f"[yellow]⚠[/]  {db_path} already exists. Existing data is preserved.")

    with open_service(db_path, must_exist=False) as service:
        unassigned = service.repository.ensure_unassigned_project()
    console.print(f"  [green]✓[/] {db_path} (database)")
    console.print(f"  [green]✓[/] Project {unassigned}: Unassigned")

    cfg_path = ensure_global_config()
    console.print(f"  [green]✓[/] {cfg_path} (global config)")

    console.print("\n[bold green]✓ noterag initialized.[/]")
    console.print("\nNext steps:")
    console.print("  1. noterag project add <name>                 (create a project)")
    console.print("  2. noterag add --project <id> <file>          (add documents)")
    console.print("  3. noterag vectorize                          (embed pending chunks)")
    console.print("  4. noterag search --project <id> <query>      (retrieve passages)")
