"""Tests for sqlite-vec helpers: slugs, connections and vec0 tables."""

from __future__ import annotations

import json

import pytest

from noterag.db.vectors import ensure_vec_table, model_to_slug, open_vec_connection, vec_table_name


@pytest.fixture
def vec_conn():
    conn = open_vec_connection()
    yield conn
    conn.close()


# --- model_to_slug ---

@pytest.mark.parametrize("model,expected", [
    ("openai/text-embedding-3-small", "openai_text_embedding_3_small"),
    ("openai/text-embedding-3-large", "openai_text_embedding_3_large"),
    ("cohere/embed-english-v3.0", "cohere_embed_english_v3_0"),
    ("ollama/nomic-embed-text", "ollama_nomic_embed_text"),
])
def test_model_to_slug(model, expected):
    assert model_to_slug(model) == expected


def test_vec_table_name():
    slug = model_to_slug("openai/text-embedding-3-small")
    assert vec_table_name(slug) == "vec_chunks_openai_text_embedding_3_small"


# --- open_vec_connection ---

def test_sqlite_vec_loads(vec_conn):
    version = vec_conn.execute("SELECT vec_version()").fetchone()[0]
    assert version.startswith("v")


# --- ensure_vec_table ---

def test_ensure_vec_table_creates_table(vec_conn):
    slug = model_to_slug("openai/text-embedding-3-small")
    table = ensure_vec_table(vec_conn, slug, dimensions=1536)
    assert table == "vec_chunks_openai_text_embedding_3_small"
    row = vec_conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,)
    ).fetchone()
    assert row is not None


def test_ensure_vec_table_idempotent(vec_conn):
    slug = model_to_slug("openai/text-embedding-3-small")
    assert ensure_vec_table(vec_conn, slug, 4) == ensure_vec_table(vec_conn, slug, 4)


def test_ensure_vec_table_cosine_lookup(vec_conn):
    table = ensure_vec_table(vec_conn, "test_model", dimensions=4)
    vec_conn.execute(
        f"INSERT INTO {table}(rowid, embedding) VALUES (42, ?)", (json.dumps([1, 0, 0, 0]),)
    )
    vec_conn.execute(
        f"INSERT INTO {table}(rowid, embedding) VALUES (7, ?)", (json.dumps([0, 1, 0, 0]),)
    )

    rows = vec_conn.execute(
        f"SELECT rowid, distance FROM {table} WHERE embedding MATCH ? AND k = 2 ORDER BY distance",
        (json.dumps([2, 0, 0, 0]),),
    ).fetchall()

    assert [r["rowid"] for r in rows] == [42, 7]
    # Cosine distance ignores magnitude
    assert rows[0]["distance"] == pytest.approx(0.0, abs=1e-6)
    assert rows[1]["distance"] == pytest.approx(1.0, abs=1e-6)


def test_ensure_vec_table_invalid_slug(vec_conn):
    with pytest.raises(ValueError, match="model_slug"):
        ensure_vec_table(vec_conn, "invalid/slug!", dimensions=128)


def test_ensure_vec_table_invalid_dimensions(vec_conn):
    with pytest.raises(ValueError, match="dimensions"):
        ensure_vec_table(vec_conn, "valid_slug", dimensions=0)


def test_ensure_vec_table_invalid_metric(vec_conn):
    with pytest.raises(ValueError, match="distance_metric"):
        ensure_vec_table(vec_conn, "valid_slug", dimensions=4, distance_metric="dot")
