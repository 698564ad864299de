"""RagService: the single entry point host applications talk to.

Wires the database, chunk store, embedding client, vector indices, retriever
and background coordinator from one :class:`~noterag.config.NoteragConfig`.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future
from pathlib import Path

from noterag.config import NoteragConfig
from noterag.db.chunk_store import ChunkStore
from noterag.db.connection import Database
from noterag.db.models import Source
from noterag.db.repository import Repository
from noterag.db.schema import initialize
from noterag.db.vector_index import VectorIndexManager
from noterag.ingest.chunker import TextChunker
from noterag.ingest.coordinator import CompletionCallback, VectorizationCoordinator
from noterag.rag.embedding_client import EmbeddingClient
from noterag.rag.retriever import RetrievedContext, Retriever

logger = logging.getLogger(__name__)


class RagService:
    """Retrieval-augmented generation core for a note-taking application.

    Args:
        config: Settings; defaults to hardcoded defaults.
        base_dir: Directory relative paths in *config* resolve against.
        embedder: Override the embedding client (tests inject a fake).
        on_complete: Optional callback for background vectorization results.
    """

    def __init__(
        self,
        config: NoteragConfig | None = None,
        *,
        base_dir: Path | None = None,
        embedder: EmbeddingClient | None = None,
        on_complete: CompletionCallback | None = None,
    ) -> None:
        self.config = config or NoteragConfig()
        root = Path(base_dir) if base_dir is not None else Path.cwd()

        self.db = Database(_resolve(root, self.config.storage.db_path))
        initialize(self.db.connection())

        self.repository = Repository(self.db)
        self.chunk_store = ChunkStore(self.db)
        self.embedder = embedder or EmbeddingClient(self.config.embedding)
        self.indices = VectorIndexManager(
            _resolve(root, self.config.index.dir),
            model=self.config.embedding.model,
            dimensions=self.config.embedding.dimensions,
            persist_debounce_seconds=self.config.index.persist_debounce_seconds,
            on_rebuild_needed=self._on_rebuild_needed,
        )
        self.retriever = Retriever(self.embedder, self.indices, self.chunk_store, self.config)
        self.coordinator = VectorizationCoordinator(
            self.repository,
            self.chunk_store,
            self.embedder,
            self.indices,
            TextChunker(
                chunk_size=self.config.chunking.chunk_size,
                overlap=self.config.chunking.overlap,
                search_window=self.config.chunking.search_window,
            ),
            self.config,
            on_complete=on_complete,
        )

    @property
    def vectorization_enabled(self) -> bool:
        return self.config.vectorization.enabled

    # ------------------------------------------------------------------
    # Saving documents
    # ------------------------------------------------------------------

    def add_document(
        self, project_id: int, name: str, full_text: str, content_type: str = "text"
    ) -> tuple[int, Future | None]:
        """Store and chunk a new document, then schedule its embedding.

        Returns:
            The document id and the embedding future (None when the pipeline
            is off).
        """
        document_id = self.repository.add_document(
            project_id, name, full_text, content_type=content_type
        )
        return document_id, self._rechunk_and_schedule(document_id)

    def update_document(
        self, document_id: int, full_text: str, content_type: str | None = None
    ) -> Future | None:
        """Save an edit: the old passages are replaced before this returns.

        Returns:
            The embedding future, or None when the pipeline is off or the
            document does not exist.
        """
        if not self.repository.update_document_text(document_id, full_text, content_type):
            return None
        return self._rechunk_and_schedule(document_id)

    def _rechunk_and_schedule(self, document_id: int) -> Future | None:
        if self.coordinator.rechunk_document(document_id) is None:
            return None
        if not self.vectorization_enabled:
            return None
        return self.coordinator.vectorize_document(document_id, rechunk=False)

    # ------------------------------------------------------------------
    # Vectorization
    # ------------------------------------------------------------------

    def vectorize_document(self, document_id: int) -> Future | None:
        """Schedule background vectorization; None when the pipeline is off."""
        if not self.vectorization_enabled:
            return None
        return self.coordinator.vectorize_document(document_id)

    def enable_vectorization(self) -> None:
        """Turn the pipeline on.

        Raises:
            EmbeddingUnavailable: If no API key is configured for the
                embedding provider (the pipeline stays off).
        """
        self.embedder.check_credentials()
        self.config.vectorization.enabled = True
        logger.info("Vectorization enabled (%s)", self.config.embedding.model)

    def disable_vectorization(self) -> None:
        self.config.vectorization.enabled = False
        logger.info("Vectorization disabled")

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    def retrieve_sources(
        self, project_id: int | None, query_text: str, top_k: int | None = None
    ) -> list[Source]:
        return self.retriever.retrieve(project_id, query_text, top_k)

    def retrieve_context(
        self, project_id: int | None, query_text: str, top_k: int | None = None
    ) -> RetrievedContext:
        return self.retriever.retrieve_context(project_id, query_text, top_k)

    def get_chunk_text(self, chunk_id: int) -> str | None:
        """Full text of a cited chunk, or None if the citation is stale."""
        return self.chunk_store.get_text(chunk_id)

    # ------------------------------------------------------------------
    # Document and project lifecycle
    # ------------------------------------------------------------------

    def reassign_document_project(
        self, document_id: int, target_project_id: int
    ) -> Future | None:
        return self.coordinator.reassign_document_project(document_id, target_project_id)

    def delete_document(self, document_id: int) -> bool:
        return self.coordinator.delete_document(document_id)

    def delete_project(self, project_id: int) -> bool:
        return self.coordinator.delete_project(project_id)

    def rebuild_project(self, project_id: int) -> Future:
        return self.coordinator.rebuild_project(project_id)

    def _on_rebuild_needed(self, project_id: int) -> None:
        logger.warning("Vector index for project %s must be rebuilt", project_id)
        self.coordinator.rebuild_project(project_id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Finish background work, flush indices, close connections."""
        self.coordinator.shutdown(wait=True)
        self.db.close()

    def __enter__(self) -> RagService:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


def _resolve(root: Path, value: str) -> Path:
    path = Path(value).expanduser()
    return path if path.is_absolute() else root / path
