"""Project-scoped dense retriever over the per-project vector indices.

Flow: embed the query → search the project's index for the clamped top-K →
hydrate hits from the chunk store → drop stale hits → deduplicate by document.

Retrieval is best-effort. A disabled pipeline, a missing index, or any error
while searching means "no context", and the caller falls back to the full
document text.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field, replace

from noterag.config import NoteragConfig
from noterag.db.chunk_store import ChunkStore
from noterag.db.models import Chunk, Source
from noterag.db.vector_index import VectorIndexManager
from noterag.errors import EmbeddingError
from noterag.rag.embedding_client import EmbeddingClient

logger = logging.getLogger(__name__)

CONTEXT_PREAMBLE = (
    "The following document chunks were retrieved from the user's project and "
    "may help answer their question. Use them if relevant, otherwise ignore them:"
)


@dataclass
class RetrievedContext:
    """Result of :meth:`Retriever.retrieve_context`.

    Attributes:
        sources: Citations, one per document, best first.
        chunks: Every hydrated chunk in rank order (not deduplicated).
        context: Prompt-ready text; empty when nothing was retrieved.
    """

    sources: list[Source] = field(default_factory=list)
    chunks: list[Chunk] = field(default_factory=list)
    context: str = ""


def clamp_top_k(top_k: int | None, config: NoteragConfig) -> int:
    """Return *top_k* (default ``retrieval.top_k``) clamped to the configured bounds."""
    return config.clamp_top_k(top_k)


def dedupe_by_document(sources: list[Source]) -> list[Source]:
    """Keep the first (highest-ranked) source of each document."""
    seen: set[int] = set()
    unique: list[Source] = []
    for source in sources:
        if source.document_id in seen:
            continue
        seen.add(source.document_id)
        unique.append(source)
    return unique


def format_context(chunks: list[Chunk], document_names: dict[int, str]) -> str:
    """Render chunks as numbered, attributed blocks for prompt injection."""
    parts: list[str] = []
    for n, chunk in enumerate(chunks, start=1):
        name = document_names.get(chunk.document_id, f"document {chunk.document_id}")
        parts.append(f"Chunk {n} (from {name}):\n{chunk.text}\n\n")
    return "".join(parts)


def build_system_prompt(base_prompt: str, context: str) -> str:
    """Append retrieved context to *base_prompt*; unchanged if context is empty."""
    if not context.strip():
        return base_prompt
    prefix = f"{base_prompt.rstrip()}\n\n" if base_prompt.strip() else ""
    return f"{prefix}{CONTEXT_PREAMBLE}\n\n{context.rstrip()}\n"


class Retriever:
    """Answer "which passages of this project are most relevant to this query?".

    Args:
        embedder: Client used to embed the query text.
        indices: Per-project vector index manager.
        chunk_store: Used to hydrate chunk ids into citations.
        config: Shared configuration (``vectorization.enabled`` is read per call).
    """

    def __init__(
        self,
        embedder: EmbeddingClient,
        indices: VectorIndexManager,
        chunk_store: ChunkStore,
        config: NoteragConfig,
    ) -> None:
        self._embedder = embedder
        self._indices = indices
        self._chunks = chunk_store
        self._config = config

    def retrieve(
        self, project_id: int | None, query_text: str, top_k: int | None = None
    ) -> list[Source]:
        """Return up to ``top_k`` citations from *project_id*, one per document."""
        return dedupe_by_document(self._ranked_sources(project_id, query_text, top_k))

    def retrieve_context(
        self, project_id: int | None, query_text: str, top_k: int | None = None
    ) -> RetrievedContext:
        """Retrieve and render chunks for prompt assembly."""
        ranked = self._ranked_sources(project_id, query_text, top_k)
        if not ranked:
            return RetrievedContext()
        try:
            chunks = [
                c for c in self._chunks.get_chunks([s.chunk_id for s in ranked])
                if c.project_id == project_id
            ]
        except sqlite3.Error:
            logger.exception("Could not load retrieved chunks for project %s", project_id)
            return RetrievedContext()
        names = {s.document_id: s.document_name for s in ranked}
        return RetrievedContext(
            sources=dedupe_by_document(ranked),
            chunks=chunks,
            context=format_context(chunks, names),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _ranked_sources(
        self, project_id: int | None, query_text: str, top_k: int | None
    ) -> list[Source]:
        if not self._config.vectorization.enabled or project_id is None:
            return []
        if not query_text or not query_text.strip():
            return []
        if not self._indices.has_index(project_id):
            return []

        k = clamp_top_k(top_k, self._config)
        try:
            index = self._indices.get(project_id)
            if index.count() == 0:
                return []
            query_vector = self._embedder.embed_one(query_text)
            hits = index.search(query_vector, k)
            sources = self._chunks.get_sources(
                [chunk_id for chunk_id, _ in hits],
                preview_chars=self._config.retrieval.preview_chars,
                vectorized_only=True,
            )
        except EmbeddingError as exc:
            logger.warning("Retrieval unavailable for project %s: %s", project_id, exc)
            return []
        except Exception:
            logger.exception("Vector search failed for project %s", project_id)
            return []

        scores = dict(hits)
        # Hits whose chunk moved to another project are stale until re-indexed.
        return [
            replace(s, score=scores.get(s.chunk_id))
            for s in sources
            if s.project_id == project_id
        ]
