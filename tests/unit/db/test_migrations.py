"""Tests for the forward-only migration runner."""

from __future__ import annotations

import sqlite3

import pytest

from noterag.db.connection import Database
from noterag.db.migrations import MIGRATIONS, current_version, run_migrations
from noterag.db.schema import CURRENT_VERSION, initialize


def _fresh_conn(tmp_path):
    """Open a new connection without running migrations."""
    db = Database(tmp_path / "test.db")
    return db.connect()


def _table_exists(conn, name: str) -> bool:
    return conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (name,)
    ).fetchone() is not None


def _columns(conn, table: str) -> set[str]:
    return {r["name"] for r in conn.execute(f"PRAGMA table_info({table})").fetchall()}


# --- Bootstrap ---

def test_fresh_database_is_version_zero(tmp_path):
    conn = _fresh_conn(tmp_path)
    conn.execute(
        "CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL, applied_at DATETIME)"
    )
    assert current_version(conn) == 0
    conn.close()


def test_run_migrations_records_version(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    assert current_version(conn) == MIGRATIONS[-1][0] == CURRENT_VERSION
    conn.close()


# --- Idempotency ---

def test_run_migrations_idempotent(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    run_migrations(conn)
    count = conn.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
    assert count == len(MIGRATIONS)
    conn.close()


def test_run_migrations_applies_only_pending(tmp_path):
    conn = _fresh_conn(tmp_path)
    conn.execute(
        "CREATE TABLE schema_version (version INTEGER NOT NULL, "
        "applied_at DATETIME NOT NULL DEFAULT (datetime('now')))"
    )
    conn.executescript(MIGRATIONS[0][1])
    conn.execute("INSERT INTO schema_version (version) VALUES (1)")
    conn.commit()

    run_migrations(conn)

    versions = [r[0] for r in conn.execute("SELECT version FROM schema_version ORDER BY version")]
    assert versions == [v for v, _ in MIGRATIONS]
    assert _table_exists(conn, "document_chunks")
    conn.close()


# --- Tables created ---

@pytest.mark.parametrize("table", ["projects", "documents", "document_chunks"])
def test_run_migrations_creates_tables(tmp_path, table):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    assert _table_exists(conn, table)
    conn.close()


def test_document_chunks_columns(tmp_db):
    assert _columns(tmp_db, "document_chunks") >= {
        "id", "document_id", "project_id", "chunk_index", "chunk_text",
        "is_vectorized", "created_at",
    }


def test_documents_columns(tmp_db):
    assert _columns(tmp_db, "documents") >= {
        "id", "project_id", "name", "full_text", "plain_text", "content_type",
        "is_vectorized", "created_at", "updated_at",
    }


def test_no_vector_tables_in_main_database(tmp_db):
    rows = tmp_db.execute(
        "SELECT name FROM sqlite_master WHERE name LIKE 'vec_%'"
    ).fetchall()
    assert rows == []


def test_chunk_index_unique_per_document(tmp_db):
    tmp_db.execute("INSERT INTO projects (id, name) VALUES (1, 'p')")
    tmp_db.execute("INSERT INTO documents (id, project_id, name) VALUES (1, 1, 'd')")
    tmp_db.execute(
        "INSERT INTO document_chunks (document_id, project_id, chunk_index, chunk_text) "
        "VALUES (1, 1, 0, 'a')"
    )
    with pytest.raises(sqlite3.IntegrityError):
        tmp_db.execute(
            "INSERT INTO document_chunks (document_id, project_id, chunk_index, chunk_text) "
            "VALUES (1, 1, 0, 'b')"
        )


def test_project_delete_cascades(tmp_db):
    tmp_db.execute("INSERT INTO projects (id, name) VALUES (1, 'p')")
    tmp_db.execute("INSERT INTO documents (id, project_id, name) VALUES (1, 1, 'd')")
    tmp_db.execute(
        "INSERT INTO document_chunks (document_id, project_id, chunk_index, chunk_text) "
        "VALUES (1, 1, 0, 'a')"
    )
    tmp_db.execute("DELETE FROM projects WHERE id = 1")
    assert tmp_db.execute("SELECT COUNT(*) FROM documents").fetchone()[0] == 0
    assert tmp_db.execute("SELECT COUNT(*) FROM document_chunks").fetchone()[0] == 0


def test_initialize_delegates_to_run_migrations(tmp_path):
    conn = _fresh_conn(tmp_path)
    initialize(conn)
    initialize(conn)
    assert current_version(conn) == CURRENT_VERSION
    conn.close()
