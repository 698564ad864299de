"""noterag rich error messages: actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from noterag.cli.errors import err_no_api_key, err_no_db
    console.print(err_no_api_key("openai", "OPENAI_API_KEY"))
    raise typer.Exit(1)
"""

from __future__ import annotations


def err_no_api_key(provider: str, env_var: str) -> str:
    """No API key for the embedding *provider*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    return (
        f"[red]Error:[/] No API key for embedding provider '{provider}'.\n"
        f"  Set:  export {env_var}=sk-..."
    )


def err_no_db(db_path: str = "noterag.db") -> str:
    """No database found at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  noterag init"
    )


def err_vectorization_disabled() -> str:
    """The vectorization pipeline is switched off in config."""
    return (
        "[red]Error:[/] Vectorization is disabled.\n"
        "  Enable it in noterag.yaml:\n"
        "    vectorization:\n"
        "      enabled: true\n"
        "  or set:  export NOTERAG_VECTORIZATION_ENABLED=1"
    )


def err_config(message: str) -> str:
    """Config file could not be loaded."""
    return (
        f"[red]Error:[/] Invalid configuration.\n"
        f"  {message}\n"
        "  Fix noterag.yaml or ~/.noterag/config.yaml and retry."
    )


def err_project_not_found(project_id: int) -> str:
    return (
        f"[red]Error:[/] Project {project_id} does not exist.\n"
        "  Run:  noterag project list  to see all projects."
    )


def err_document_not_found(document_id: int) -> str:
    return (
        f"[yellow]Document not found:[/] {document_id} is not in the database.\n"
        "  Run:  noterag status  to see all projects and documents."
    )


def err_chunk_not_found(chunk_id: int) -> str:
    """Stale citation: the chunk was re-chunked or deleted."""
    return (
        f"[yellow]Chunk not found:[/] {chunk_id} no longer exists.\n"
        "  The document was edited or removed since this citation was made.\n"
        "  Run the search again:  noterag search --project <id> <query>"
    )


def err_file_unreadable(path: str, reason: str) -> str:
    return (
        f"[red]Error:[/] Cannot read '{path}': {reason}\n"
        "  Only UTF-8 text, Markdown and HTML files can be added."
    )


def warn_embedding_failed(count: int) -> str:
    """Shown after vectorize when some documents could not be embedded."""
    return (
        f"[yellow]⚠[/] {count} document(s) could not be vectorized and stay unvectorized.\n"
        "  Check the embedding provider and retry:  noterag vectorize"
    )
