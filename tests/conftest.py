"""Shared pytest fixtures."""

from __future__ import annotations

import hashlib
import math
import re

import pytest

from noterag.config import NoteragConfig
from noterag.db.chunk_store import ChunkStore
from noterag.db.connection import Database
from noterag.db.repository import Repository
from noterag.db.schema import initialize
from noterag.errors import EmbeddingRequestFailed

MODEL = "openai/text-embedding-3-small"
DIMS = 32

_WORD_RE = re.compile(r"[a-z0-9]+")


class FakeEmbedder:
    """Deterministic bag-of-words embedder: hashed word counts, L2-normalized.

    Texts sharing words land close together under cosine similarity, which is
    enough to make retrieval order predictable without a network call.
    """

    def __init__(self, dimensions: int = DIMS, model: str = MODEL) -> None:
        self.model = model
        self.dimensions = dimensions
        self.fail = False
        self.calls: list[list[str]] = []

    def check_credentials(self) -> None:
        return None

    def embed(self, texts):
        self.calls.append(list(texts))
        if self.fail:
            raise EmbeddingRequestFailed("embedding service unavailable")
        return [self.vector(t) for t in texts]

    def embed_one(self, text: str) -> list[float]:
        return self.embed([text])[0]

    def vector(self, text: str) -> list[float]:
        values = [0.0] * self.dimensions
        for word in _WORD_RE.findall(text.lower()):
            bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % self.dimensions
            values[bucket] += 1.0
        values[0] += 0.01  # never the zero vector
        norm = math.sqrt(sum(v * v for v in values))
        return [v / norm for v in values]


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep tests away from ~/.noterag and NOTERAG_* variables of the host."""
    monkeypatch.setattr(
        "noterag.config._GLOBAL_CONFIG_PATH", tmp_path / "home" / ".noterag" / "config.yaml"
    )
    for var in ("NOTERAG_EMBEDDING_MODEL", "NOTERAG_VECTORIZATION_ENABLED", "NOTERAG_RAG_TOP_K"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def database(tmp_path):
    """File-based Database in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / "noterag.db")
    initialize(db.connection())
    yield db
    db.close()


@pytest.fixture
def tmp_db(database):
    """The calling thread's connection to the initialized test database."""
    return database.connection()


@pytest.fixture
def repo(database):
    return Repository(database)


@pytest.fixture
def chunk_store(database):
    return ChunkStore(database)


@pytest.fixture
def project_id(repo):
    return repo.create_project("Research")


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


@pytest.fixture
def config(tmp_path):
    """Small-dimension config with vectorization on and immediate persistence."""
    cfg = NoteragConfig()
    cfg.embedding.dimensions = DIMS
    cfg.vectorization.enabled = True
    cfg.index.persist_debounce_seconds = 0
    cfg.index.dir = str(tmp_path / "vectors")
    return cfg
