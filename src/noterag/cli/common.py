"""Shared CLI helpers: config loading, database resolution, service wiring."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from noterag.cli.errors import err_config, err_no_api_key, err_no_db, err_vectorization_disabled
from noterag.config import ConfigError, NoteragConfig, load_config
from noterag.errors import EmbeddingUnavailable
from noterag.service import RagService

console = Console()


def load_cli_config() -> NoteragConfig:
    """Load layered config, turning ConfigError into an actionable exit."""
    try:
        return load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc


def resolve_db(db: Path | None, cfg: NoteragConfig) -> Path:
    """--db flag wins over ``storage.db_path``."""
    return db if db is not None else Path(cfg.storage.db_path)


def open_service(db: Path | None, *, must_exist: bool = True) -> RagService:
    """Build a RagService for *db*; vector indices live next to the database."""
    cfg = load_cli_config()
    db_path = resolve_db(db, cfg)
    if must_exist and not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)
    db_path = db_path.resolve()
    cfg.storage.db_path = str(db_path)
    return RagService(cfg, base_dir=db_path.parent)


def require_vectorization(service: RagService) -> None:
    """Exit unless the pipeline is enabled in config and has credentials."""
    if not service.vectorization_enabled:
        console.print(err_vectorization_disabled())
        raise typer.Exit(1)
    try:
        service.enable_vectorization()
    except EmbeddingUnavailable as exc:
        console.print(err_no_api_key(exc.provider, exc.env_var))
        raise typer.Exit(1) from exc
