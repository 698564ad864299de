"""Per-project vector indices backed by sqlite-vec.

Each project gets its own index file at ``{index_dir}/project_{id}.vec.db``,
so search cost scales with the project rather than the whole corpus and
results are always scoped to one project. The index is held in an in-memory
sqlite-vec database while open and written back to its file with the SQLite
backup API (debounced, flushed on close).

The vec0 rowid *is* the chunk id: that is the index-id → chunk-id mapping.
Every file carries an ``index_meta`` table naming the embedding model and
dimension it was built with; a mismatch discards the file and asks for a
rebuild.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import tempfile
import threading
from collections.abc import Callable, Iterable, Sequence
from pathlib import Path

from noterag.db.vectors import ensure_vec_table, model_to_slug, open_vec_connection, vec_table_name
from noterag.errors import EmbeddingDimensionMismatch, IndexCorrupt

logger = logging.getLogger(__name__)

_CREATE_META = """
CREATE TABLE IF NOT EXISTS index_meta (
    key     TEXT PRIMARY KEY,
    value   TEXT NOT NULL
)
"""

RebuildCallback = Callable[[int], None]


def index_file_name(project_id: int) -> str:
    return f"project_{project_id}.vec.db"


class ProjectIndex:
    """Nearest-neighbour index for one project's chunk embeddings.

    All reads and writes hold a single re-entrant lock, so a search never
    sees a half-applied batch and concurrent writers are serialized.

    Args:
        project_id: Owning project.
        path: Index file location.
        model: Embedding model identifier the vectors come from.
        dimensions: Vector length.
        persist_debounce_seconds: Delay before a scheduled persist runs.
    """

    def __init__(
        self,
        project_id: int,
        path: Path,
        model: str,
        dimensions: int,
        persist_debounce_seconds: float = 2.0,
    ) -> None:
        self.project_id = project_id
        self.path = Path(path)
        self.model = model
        self.dimensions = dimensions
        self.persist_debounce_seconds = persist_debounce_seconds
        self.needs_rebuild = False
        self._table = vec_table_name(model_to_slug(model))
        self._lock = threading.RLock()
        self._conn: sqlite3.Connection | None = None
        self._dirty = False
        self._timer: threading.Timer | None = None

    # ------------------------------------------------------------------
    # Load / persist
    # ------------------------------------------------------------------

    def load(self) -> None:
        """Load the index file into memory.

        A missing file yields an empty index. A corrupt file, or one built
        for another embedding model or dimension, yields an empty index with
        ``needs_rebuild`` set.
        """
        with self._lock:
            if self._conn is not None:
                self._conn.close()
            conn = open_vec_connection()
            if self.path.exists():
                try:
                    self._restore_into(conn)
                except IndexCorrupt as exc:
                    logger.warning("Discarding vector index for project %s: %s", self.project_id, exc)
                    conn.close()
                    conn = open_vec_connection()
                    self.needs_rebuild = True
                    self._dirty = True
            self._conn = conn
            self._ensure_schema()

    def _restore_into(self, conn: sqlite3.Connection) -> None:
        try:
            src = sqlite3.connect(self.path)
        except sqlite3.Error as exc:
            raise IndexCorrupt(f"cannot open {self.path}: {exc}") from exc
        try:
            src.backup(conn)
        except sqlite3.DatabaseError as exc:
            raise IndexCorrupt(f"cannot read {self.path}: {exc}") from exc
        finally:
            src.close()

        try:
            meta = dict(conn.execute("SELECT key, value FROM index_meta").fetchall())
            conn.execute(f"SELECT COUNT(*) FROM {self._table}").fetchone()
        except sqlite3.DatabaseError as exc:
            raise IndexCorrupt(f"unreadable index {self.path}: {exc}") from exc

        if meta.get("model") != self.model or meta.get("dimensions") != str(self.dimensions):
            raise IndexCorrupt(
                f"index built for {meta.get('model')!r}/{meta.get('dimensions')}, "
                f"expected {self.model!r}/{self.dimensions}"
            )

    def _ensure_schema(self) -> None:
        conn = self._require_conn()
        conn.execute(_CREATE_META)
        conn.executemany(
            "INSERT OR REPLACE INTO index_meta (key, value) VALUES (?, ?)",
            [("model", self.model), ("dimensions", str(self.dimensions))],
        )
        conn.commit()
        ensure_vec_table(conn, model_to_slug(self.model), self.dimensions)

    def persist(self) -> None:
        """Atomically write the in-memory index to its file."""
        with self._lock:
            self._cancel_timer()
            if self._conn is None:
                return
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
            )
            os.close(fd)
            try:
                dest = sqlite3.connect(tmp_name)
                try:
                    self._conn.backup(dest)
                finally:
                    dest.close()
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
            self._dirty = False
        logger.debug("Persisted vector index for project %s to %s", self.project_id, self.path)

    def schedule_persist(self) -> None:
        """Persist after the debounce delay, coalescing repeated requests."""
        with self._lock:
            if self._timer is not None or self._conn is None:
                return
            if self.persist_debounce_seconds <= 0:
                self.persist()
                return
            self._timer = threading.Timer(self.persist_debounce_seconds, self._persist_from_timer)
            self._timer.daemon = True
            self._timer.start()

    def _persist_from_timer(self) -> None:
        with self._lock:
            self._timer = None
            if not self._dirty:
                return
            try:
                self.persist()
            except (sqlite3.Error, OSError):
                logger.exception("Failed to persist vector index for project %s", self.project_id)

    def close(self) -> None:
        """Flush pending changes and release the in-memory index."""
        with self._lock:
            self._cancel_timer()
            if self._conn is None:
                return
            if self._dirty:
                self.persist()
            self._conn.close()
            self._conn = None

    def discard(self) -> None:
        """Release the in-memory index without writing it back."""
        with self._lock:
            self._cancel_timer()
            if self._conn is not None:
                self._conn.close()
                self._conn = None
            self._dirty = False

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def upsert(self, chunk_id: int, vector: Sequence[float]) -> None:
        """Insert or replace the vector stored for *chunk_id*."""
        self.upsert_many([(chunk_id, vector)])

    def upsert_many(self, items: Iterable[tuple[int, Sequence[float]]]) -> int:
        """Insert or replace several entries in one transaction.

        Raises:
            EmbeddingDimensionMismatch: If any vector has the wrong length
                (nothing is written in that case).
        """
        batch = [(int(chunk_id), self._check_vector(vector)) for chunk_id, vector in items]
        if not batch:
            return 0
        with self._lock:
            conn = self._require_conn()
            with conn:
                for chunk_id, vector in batch:
                    conn.execute(f"DELETE FROM {self._table} WHERE rowid = ?", (chunk_id,))
                    conn.execute(
                        f"INSERT INTO {self._table}(rowid, embedding) VALUES (?, ?)",
                        (chunk_id, json.dumps(vector)),
                    )
            self._dirty = True
        return len(batch)

    def remove(self, chunk_id: int) -> None:
        """Remove the entry for *chunk_id*; a no-op if absent."""
        self.remove_many([chunk_id])

    def remove_many(self, chunk_ids: Iterable[int]) -> int:
        """Remove entries for *chunk_ids*. Returns the number actually removed."""
        ids = [int(i) for i in chunk_ids]
        if not ids:
            return 0
        placeholders = ",".join("?" * len(ids))
        with self._lock:
            conn = self._require_conn()
            with conn:
                cur = conn.execute(
                    f"DELETE FROM {self._table} WHERE rowid IN ({placeholders})", ids
                )
            self._dirty = True
        return max(cur.rowcount, 0)

    def clear(self) -> None:
        """Remove every entry."""
        with self._lock:
            conn = self._require_conn()
            with conn:
                conn.execute(f"DELETE FROM {self._table}")
            self._dirty = True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def search(self, query_vector: Sequence[float], k: int) -> list[tuple[int, float]]:
        """Return up to *k* ``(chunk_id, score)`` pairs, best first.

        Score is cosine similarity (``1 - cosine distance``).
        """
        if k < 1:
            return []
        vector = self._check_vector(query_vector)
        with self._lock:
            conn = self._require_conn()
            if self._count(conn) == 0:
                return []
            rows = conn.execute(
                f"""
                SELECT rowid, distance FROM {self._table}
                WHERE embedding MATCH ? AND k = ?
                ORDER BY distance
                """,
                (json.dumps(vector), k),
            ).fetchall()
        return [(row["rowid"], 1.0 - float(row["distance"])) for row in rows[:k]]

    def count(self) -> int:
        with self._lock:
            return self._count(self._require_conn())

    def contains(self, chunk_id: int) -> bool:
        with self._lock:
            row = self._require_conn().execute(
                f"SELECT rowid FROM {self._table} WHERE rowid = ?", (int(chunk_id),)
            ).fetchone()
        return row is not None

    def chunk_ids(self) -> set[int]:
        with self._lock:
            rows = self._require_conn().execute(f"SELECT rowid FROM {self._table}").fetchall()
        return {row["rowid"] for row in rows}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _count(self, conn: sqlite3.Connection) -> int:
        return conn.execute(f"SELECT COUNT(*) FROM {self._table}").fetchone()[0]

    def _check_vector(self, vector: Sequence[float]) -> list[float]:
        values = [float(v) for v in vector]
        if len(values) != self.dimensions:
            raise EmbeddingDimensionMismatch(self.dimensions, len(values))
        return values

    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self.load()
        return self._conn  # type: ignore[return-value]


class VectorIndexManager:
    """Lazily opened, cached :class:`ProjectIndex` per project.

    Args:
        index_dir: Directory holding one index file per project.
        model: Embedding model identifier (index files are versioned by it).
        dimensions: Embedding vector length.
        persist_debounce_seconds: Delay for :meth:`ProjectIndex.schedule_persist`.
        on_rebuild_needed: Called with a project id when its index file had to
            be discarded (corrupt, or built for another model).
    """

    def __init__(
        self,
        index_dir: Path | str,
        model: str,
        dimensions: int,
        persist_debounce_seconds: float = 2.0,
        on_rebuild_needed: RebuildCallback | None = None,
    ) -> None:
        if dimensions < 1:
            raise ValueError(f"dimensions must be >= 1, got {dimensions}")
        self.index_dir = Path(index_dir)
        self.model = model
        self.dimensions = dimensions
        self.persist_debounce_seconds = persist_debounce_seconds
        self.on_rebuild_needed = on_rebuild_needed
        self._indices: dict[int, ProjectIndex] = {}
        self._lock = threading.Lock()

    def path_for(self, project_id: int) -> Path:
        return self.index_dir / index_file_name(project_id)

    def has_index(self, project_id: int) -> bool:
        """True if the project's index is open or has a file on disk."""
        with self._lock:
            if project_id in self._indices:
                return True
        return self.path_for(project_id).exists()

    def get(self, project_id: int) -> ProjectIndex:
        """Return the project's index, loading or creating it on first use."""
        with self._lock:
            index = self._indices.get(project_id)
            if index is None:
                index = ProjectIndex(
                    project_id,
                    self.path_for(project_id),
                    self.model,
                    self.dimensions,
                    self.persist_debounce_seconds,
                )
                index.load()
                self._indices[project_id] = index
                logger.debug("Opened vector index for project %s", project_id)

        if index.needs_rebuild:
            index.needs_rebuild = False
            if self.on_rebuild_needed is not None:
                try:
                    self.on_rebuild_needed(project_id)
                except Exception:
                    logger.exception("Rebuild request for project %s failed", project_id)
        return index

    def open_projects(self) -> list[int]:
        with self._lock:
            return sorted(self._indices)

    def drop(self, project_id: int) -> None:
        """Flush and evict a project's index from memory."""
        with self._lock:
            index = self._indices.pop(project_id, None)
        if index is not None:
            index.close()
            logger.debug("Closed vector index for project %s", project_id)

    def delete(self, project_id: int) -> None:
        """Evict a project's index and remove its file."""
        with self._lock:
            index = self._indices.pop(project_id, None)
        if index is not None:
            index.discard()
        path = self.path_for(project_id)
        if path.exists():
            path.unlink()
            logger.info("Deleted vector index for project %s", project_id)

    def flush_all(self) -> None:
        with self._lock:
            indices = list(self._indices.values())
        for index in indices:
            index.persist()

    def close(self) -> None:
        """Flush and release every open index."""
        with self._lock:
            indices = list(self._indices.values())
            self._indices.clear()
        for index in indices:
            index.close()
