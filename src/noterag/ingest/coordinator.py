"""Background vectorization: chunk → embed → index → flag.

Document saves, moves and deletions return immediately; the work runs on a
bounded thread pool. Tasks for one document are serialized by a
per-document lock, and every stage re-checks that the document and its
chunks still exist in the expected project, so a deletion or move that races
an in-flight task never resurrects chunks or leaves them indexed in the wrong
project.

Failures never reach the caller. They are logged and reported through the
optional ``on_complete`` callback as a :class:`VectorizationResult`.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from noterag.config import NoteragConfig
from noterag.db.chunk_store import ChunkStore
from noterag.db.models import Document, Reassignment
from noterag.db.repository import Repository
from noterag.db.vector_index import VectorIndexManager
from noterag.errors import ChunkingError, EmbeddingError
from noterag.ingest.chunker import TextChunker
from noterag.rag.embedding_client import EmbeddingClient

logger = logging.getLogger(__name__)

# Result statuses
VECTORIZED = "vectorized"
CHUNKED = "chunked"        # chunks stored, embedding skipped (disabled or empty)
FAILED = "failed"          # embedding or indexing failed; chunks stay unvectorized
ABORTED = "aborted"        # document/chunks vanished or moved mid-task
MISSING = "missing"        # document did not exist when the task started


@dataclass
class VectorizationResult:
    """Outcome of one vectorization pass over a document."""

    document_id: int
    status: str
    project_id: int | None = None
    chunk_count: int = 0
    vectorized_count: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status in (VECTORIZED, CHUNKED)


CompletionCallback = Callable[[VectorizationResult], None]


class VectorizationCoordinator:
    """Keep chunks and per-project indices in step with document mutations.

    Args:
        repository: Document/project store.
        chunk_store: Chunk store (the coordinator subscribes to its moves).
        embedder: Embedding client for chunk texts.
        indices: Per-project vector index manager.
        chunker: Splits document plain text into passages.
        config: Shared configuration (``vectorization.enabled`` is read per task).
        on_complete: Optional callback receiving every task's result.
    """

    def __init__(
        self,
        repository: Repository,
        chunk_store: ChunkStore,
        embedder: EmbeddingClient,
        indices: VectorIndexManager,
        chunker: TextChunker,
        config: NoteragConfig,
        on_complete: CompletionCallback | None = None,
    ) -> None:
        self._repo = repository
        self._chunks = chunk_store
        self._embedder = embedder
        self._indices = indices
        self._chunker = chunker
        self._config = config
        self.on_complete = on_complete

        self._executor = ThreadPoolExecutor(
            max_workers=config.vectorization.max_workers,
            thread_name_prefix="noterag-vectorize",
        )
        self._futures: set[Future] = set()
        self._futures_lock = threading.Lock()
        self._doc_locks: dict[int, threading.Lock] = {}
        self._doc_locks_guard = threading.Lock()
        self._closed = False

        self._chunks.subscribe(self._on_reassigned)

    @property
    def enabled(self) -> bool:
        return self._config.vectorization.enabled

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def vectorize_document(self, document_id: int, rechunk: bool = True) -> Future:
        """Schedule the pipeline for *document_id* and return immediately.

        With ``rechunk=False`` the stored chunks are embedded as they are;
        use it after :meth:`rechunk_document` has already run for a save.
        """
        return self._submit(self._run, document_id, rechunk)

    def vectorize_pending(self, project_id: int | None = None) -> list[Future]:
        """Schedule every document with no chunks or any unvectorized chunk."""
        return [
            self.vectorize_document(document_id)
            for document_id in self._repo.documents_needing_vectorization(project_id)
        ]

    def rebuild_project(self, project_id: int) -> Future:
        """Clear a project's index and re-run the pipeline for all its documents.

        The future resolves to the list of per-document results.
        """
        return self._submit(self._rebuild, project_id)

    def wait(self, timeout: float | None = None) -> bool:
        """Block until all scheduled tasks (and tasks they spawn) finish.

        Returns:
            True if everything finished, False if *timeout* expired first.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._futures_lock:
                pending = [f for f in self._futures if not f.done()]
            if not pending:
                return True
            remaining = None if deadline is None else max(deadline - time.monotonic(), 0)
            _, not_done = wait_futures(pending, timeout=remaining)
            if not_done:
                return False

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work, optionally wait for running tasks, flush indices."""
        if self._closed:
            return
        self._closed = True
        self._executor.shutdown(wait=wait)
        self._indices.close()

    def _submit(self, fn: Callable, *args: object) -> Future:
        future = self._executor.submit(fn, *args)
        with self._futures_lock:
            self._futures.add(future)
        future.add_done_callback(self._discard_future)
        return future

    def _discard_future(self, future: Future) -> None:
        with self._futures_lock:
            self._futures.discard(future)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def reassign_document_project(
        self, document_id: int, target_project_id: int
    ) -> Future | None:
        """Move a document to another project and re-vectorize it there.

        Entries in the source project's index are removed synchronously; the
        chunks become searchable in the destination only after re-embedding.

        Returns:
            The re-vectorization future, or None if nothing moved.
        """
        reassignment = self._chunks.reassign_project(document_id, target_project_id)
        if reassignment is None:
            return None
        return self.vectorize_document(document_id)

    def delete_document(self, document_id: int) -> bool:
        """Delete a document, its chunks, and their index entries."""
        document = self._repo.get_document(document_id)
        if document is None:
            return False
        chunk_ids = self._chunks.chunk_ids_for_document(document_id)
        self._repo.delete_document(document_id)
        self._remove_from_index(document.project_id, chunk_ids)
        self._forget_document(document_id)
        logger.info("Deleted document %s (%d chunks)", document_id, len(chunk_ids))
        return True

    def delete_project(self, project_id: int) -> bool:
        """Delete a project with its documents, chunks and index file."""
        if self._repo.get_project(project_id) is None:
            return False
        document_ids = [d.id for d in self._repo.list_documents(project_id)]
        self._repo.delete_project(project_id)
        self._indices.delete(project_id)
        for document_id in document_ids:
            self._forget_document(document_id)
        logger.info("Deleted project %s", project_id)
        return True

    def _on_reassigned(self, reassignment: Reassignment) -> None:
        self._remove_from_index(reassignment.old_project_id, reassignment.chunk_ids)

    def _remove_from_index(self, project_id: int, chunk_ids: Iterable[int]) -> None:
        ids = list(chunk_ids)
        if not ids or not self._indices.has_index(project_id):
            return
        index = self._indices.get(project_id)
        index.remove_many(ids)
        index.schedule_persist()

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def rechunk_document(self, document_id: int) -> list[int] | None:
        """Re-chunk *document_id* now, in the calling thread.

        Old chunks and their index entries are replaced whether or not
        vectorization is enabled, so a saved edit never leaves passages of
        the previous text searchable. Embedding is left to
        :meth:`vectorize_document` with ``rechunk=False``.

        Returns:
            The new chunk ids, or None if the document does not exist.
        """
        with self._document_lock(document_id):
            document = self._repo.get_document(document_id)
            if document is None:
                return None
            try:
                chunk_ids, _ = self._rechunk(document)
            except sqlite3.IntegrityError:
                return None
            return chunk_ids

    def vectorize_document_sync(
        self, document_id: int, rechunk: bool = True
    ) -> VectorizationResult:
        """Run the full pipeline for *document_id* in the calling thread.

        Raises:
            sqlite3.Error: On unexpected database failures (the background
                task boundary catches these).
        """
        with self._document_lock(document_id):
            document = self._repo.get_document(document_id)
            if document is None:
                return VectorizationResult(document_id, MISSING)
            project_id = document.project_id

            if rechunk:
                try:
                    chunk_ids, texts = self._rechunk(document)
                except sqlite3.IntegrityError:
                    # Document or project deleted between load and write.
                    return VectorizationResult(document_id, ABORTED, project_id)
            else:
                stored = self._chunks.list_for_document(document_id)
                chunk_ids = [c.id for c in stored]
                texts = [c.text for c in stored]

            result = VectorizationResult(
                document_id, CHUNKED, project_id, chunk_count=len(chunk_ids)
            )
            if not self.enabled or not chunk_ids:
                return result

            try:
                vectors = self._embedder.embed(texts)
            except EmbeddingError as exc:
                logger.warning("Embedding failed for document %s: %s", document_id, exc)
                result.status = FAILED
                result.error = str(exc)
                return result

            if not self._still_current(document_id, project_id, chunk_ids):
                logger.info("Document %s changed during vectorization, skipping", document_id)
                result.status = ABORTED
                return result

            index = self._indices.get(project_id)
            try:
                index.upsert_many(zip(chunk_ids, vectors))
            except EmbeddingError as exc:
                logger.warning("Indexing failed for document %s: %s", document_id, exc)
                result.status = FAILED
                result.error = str(exc)
                return result

            vanished = set(chunk_ids) - self._chunks.existing_ids(chunk_ids, project_id)
            if vanished:
                index.remove_many(vanished)
                index.schedule_persist()
                if self._repo.get_project(project_id) is None:
                    self._indices.delete(project_id)
                result.status = ABORTED
                return result

            result.vectorized_count = self._chunks.mark_vectorized(chunk_ids)
            result.status = VECTORIZED
            index.schedule_persist()
            logger.debug(
                "Vectorized document %s: %d chunks in project %s",
                document_id, result.vectorized_count, project_id,
            )
            return result

    def _rechunk(self, document: Document) -> tuple[list[int], list[str]]:
        try:
            texts = self._chunker.chunk(document.text_for_chunking)
        except ChunkingError as exc:
            logger.warning("Could not chunk document %s: %s", document.id, exc)
            texts = []
        self._remove_from_index(
            document.project_id, self._chunks.chunk_ids_for_document(document.id)
        )
        chunk_ids = self._chunks.replace_chunks(document.id, document.project_id, texts)
        return chunk_ids, texts

    def _still_current(self, document_id: int, project_id: int, chunk_ids: list[int]) -> bool:
        if not self._repo.document_exists(document_id):
            return False
        return len(self._chunks.existing_ids(chunk_ids, project_id)) == len(chunk_ids)

    def _run(self, document_id: int, rechunk: bool = True) -> VectorizationResult:
        try:
            result = self.vectorize_document_sync(document_id, rechunk)
        except Exception as exc:
            logger.exception("Vectorization task for document %s crashed", document_id)
            result = VectorizationResult(document_id, FAILED, error=str(exc))
        self._notify(result)
        return result

    def _rebuild(self, project_id: int) -> list[VectorizationResult]:
        try:
            self._chunks.mark_unvectorized_for_project(project_id)
            if self._repo.get_project(project_id) is None:
                return []
            self._indices.get(project_id).clear()
            document_ids = [d.id for d in self._repo.list_documents(project_id)]
        except Exception:
            logger.exception("Rebuild of project %s failed", project_id)
            return []
        logger.info("Rebuilding vector index for project %s (%d documents)",
                    project_id, len(document_ids))
        return [self._run(document_id) for document_id in document_ids]

    def _notify(self, result: VectorizationResult) -> None:
        if self.on_complete is None:
            return
        try:
            self.on_complete(result)
        except Exception:
            logger.exception("on_complete callback failed for document %s", result.document_id)

    def _forget_document(self, document_id: int) -> None:
        with self._doc_locks_guard:
            self._doc_locks.pop(document_id, None)

    @contextmanager
    def _document_lock(self, document_id: int) -> Iterator[None]:
        with self._doc_locks_guard:
            lock = self._doc_locks.setdefault(document_id, threading.Lock())
        with lock:
            yield
