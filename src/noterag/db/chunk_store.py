"""Durable chunk store: passages per document/project with a vectorization flag.

The chunk store never talks to the embedding service or the vector index.
Embeddings live in noterag.db.vector_index, so an embedding outage can never
corrupt chunk text and re-embedding never rewrites chunk rows.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Callable, Iterable, Sequence

from noterag.db.connection import Database
from noterag.db.models import Chunk, Reassignment, Source

logger = logging.getLogger(__name__)

ReassignListener = Callable[[Reassignment], None]

_CHUNK_COLUMNS = "id, document_id, project_id, chunk_index, chunk_text, is_vectorized, created_at"


class ChunkStore:
    """Chunk lifecycle: create, invalidate, hydrate, delete, reassign.

    Args:
        db: Shared :class:`~noterag.db.connection.Database`.
    """

    def __init__(self, db: Database) -> None:
        self._db = db
        self._listeners: list[ReassignListener] = []
        self._listeners_lock = threading.Lock()

    @property
    def _conn(self) -> sqlite3.Connection:
        return self._db.connection()

    def subscribe(self, listener: ReassignListener) -> None:
        """Register a callback fired after every successful project reassignment."""
        with self._listeners_lock:
            self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def replace_chunks(
        self, document_id: int, project_id: int, chunk_texts: Sequence[str]
    ) -> list[int]:
        """Atomically swap a document's chunks for *chunk_texts*.

        All existing chunks of the document are deleted and the new ordered
        set is inserted with ``is_vectorized = 0`` in one transaction.
        Concurrent readers see either the old or the new set, never a mix.

        Returns:
            The new chunk ids, in ``chunk_index`` order.

        Raises:
            sqlite3.IntegrityError: If the document or project does not exist.
        """
        chunk_ids: list[int] = []
        with self._conn as conn:
            conn.execute("DELETE FROM document_chunks WHERE document_id = ?", (document_id,))
            for index, text in enumerate(chunk_texts):
                cur = conn.execute(
                    """
                    INSERT INTO document_chunks
                        (document_id, project_id, chunk_index, chunk_text, is_vectorized)
                    VALUES (?, ?, ?, ?, 0)
                    """,
                    (document_id, project_id, index, text),
                )
                chunk_ids.append(cur.lastrowid)
            conn.execute(
                "UPDATE documents SET is_vectorized = 0 WHERE id = ?", (document_id,)
            )
        logger.debug(
            "Stored %d chunks for document %s in project %s",
            len(chunk_ids), document_id, project_id,
        )
        return chunk_ids

    def mark_vectorized(self, chunk_ids: Iterable[int]) -> int:
        """Flag still-existing chunks as embedded. Returns the number updated.

        A document whose chunks are now all vectorized is flagged as well.
        """
        ids = list(chunk_ids)
        if not ids:
            return 0
        placeholders = ",".join("?" * len(ids))
        with self._conn as conn:
            cur = conn.execute(
                f"UPDATE document_chunks SET is_vectorized = 1 WHERE id IN ({placeholders})",
                ids,
            )
            conn.execute(
                f"""
                UPDATE documents SET is_vectorized = 1
                WHERE id IN (
                    SELECT DISTINCT document_id FROM document_chunks WHERE id IN ({placeholders})
                )
                AND NOT EXISTS (
                    SELECT 1 FROM document_chunks c
                    WHERE c.document_id = documents.id AND c.is_vectorized = 0
                )
                """,
                ids,
            )
        return cur.rowcount

    def mark_unvectorized_for_project(self, project_id: int) -> int:
        """Reset every chunk of a project to unvectorized (index rebuild)."""
        with self._conn as conn:
            cur = conn.execute(
                "UPDATE document_chunks SET is_vectorized = 0 WHERE project_id = ?",
                (project_id,),
            )
            conn.execute(
                "UPDATE documents SET is_vectorized = 0 WHERE project_id = ?", (project_id,)
            )
        return cur.rowcount

    def delete_for_document(self, document_id: int) -> list[int]:
        """Delete a document's chunks. Returns the deleted chunk ids."""
        with self._conn as conn:
            ids = [
                r["id"]
                for r in conn.execute(
                    "SELECT id FROM document_chunks WHERE document_id = ?", (document_id,)
                ).fetchall()
            ]
            conn.execute("DELETE FROM document_chunks WHERE document_id = ?", (document_id,))
            conn.execute(
                "UPDATE documents SET is_vectorized = 0 WHERE id = ?", (document_id,)
            )
        return ids

    def delete_for_project(self, project_id: int) -> list[int]:
        """Delete every chunk of a project. Returns the deleted chunk ids."""
        with self._conn as conn:
            ids = [
                r["id"]
                for r in conn.execute(
                    "SELECT id FROM document_chunks WHERE project_id = ?", (project_id,)
                ).fetchall()
            ]
            conn.execute("DELETE FROM document_chunks WHERE project_id = ?", (project_id,))
        return ids

    def reassign_project(
        self, document_id: int, new_project_id: int
    ) -> Reassignment | None:
        """Move a document and its chunks to *new_project_id*.

        The document row and the denormalized ``project_id`` of its chunks
        are updated in one transaction, and every chunk is reset to
        unvectorized. Subscribed listeners are then notified so stale index
        entries can be migrated.

        Returns:
            The :class:`Reassignment`, or None if the document does not exist
            or already belongs to *new_project_id*.

        Raises:
            sqlite3.IntegrityError: If *new_project_id* does not exist.
        """
        with self._conn as conn:
            row = conn.execute(
                "SELECT project_id FROM documents WHERE id = ?", (document_id,)
            ).fetchone()
            if row is None:
                return None
            old_project_id = row["project_id"]
            if old_project_id == new_project_id:
                return None
            conn.execute(
                """
                UPDATE documents
                SET project_id = ?, is_vectorized = 0, updated_at = datetime('now')
                WHERE id = ?
                """,
                (new_project_id, document_id),
            )
            conn.execute(
                "UPDATE document_chunks SET project_id = ?, is_vectorized = 0 WHERE document_id = ?",
                (new_project_id, document_id),
            )
            chunk_ids = [
                r["id"]
                for r in conn.execute(
                    "SELECT id FROM document_chunks WHERE document_id = ? ORDER BY chunk_index",
                    (document_id,),
                ).fetchall()
            ]

        reassignment = Reassignment(
            document_id=document_id,
            old_project_id=old_project_id,
            new_project_id=new_project_id,
            chunk_ids=chunk_ids,
        )
        logger.info(
            "Moved document %s from project %s to %s (%d chunks)",
            document_id, old_project_id, new_project_id, len(chunk_ids),
        )
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(reassignment)
            except Exception:
                logger.exception("Reassignment listener failed for document %s", document_id)
        return reassignment

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_text(self, chunk_id: int) -> str | None:
        """Return the full text of a chunk, or None for a stale id."""
        row = self._conn.execute(
            "SELECT chunk_text FROM document_chunks WHERE id = ?", (chunk_id,)
        ).fetchone()
        return row["chunk_text"] if row else None

    def get_chunk(self, chunk_id: int) -> Chunk | None:
        row = self._conn.execute(
            f"SELECT {_CHUNK_COLUMNS} FROM document_chunks WHERE id = ?", (chunk_id,)
        ).fetchone()
        return _row_to_chunk(row) if row else None

    def get_chunks(self, chunk_ids: Sequence[int]) -> list[Chunk]:
        """Return chunks for *chunk_ids* in the given order, skipping stale ids."""
        if not chunk_ids:
            return []
        placeholders = ",".join("?" * len(chunk_ids))
        rows = self._conn.execute(
            f"SELECT {_CHUNK_COLUMNS} FROM document_chunks WHERE id IN ({placeholders})",
            list(chunk_ids),
        ).fetchall()
        by_id = {r["id"]: _row_to_chunk(r) for r in rows}
        return [by_id[i] for i in chunk_ids if i in by_id]

    def list_for_document(self, document_id: int) -> list[Chunk]:
        """Return a document's chunks ordered by ``chunk_index``."""
        rows = self._conn.execute(
            f"SELECT {_CHUNK_COLUMNS} FROM document_chunks WHERE document_id = ? ORDER BY chunk_index",
            (document_id,),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def chunk_ids_for_document(self, document_id: int) -> list[int]:
        rows = self._conn.execute(
            "SELECT id FROM document_chunks WHERE document_id = ? ORDER BY chunk_index",
            (document_id,),
        ).fetchall()
        return [r["id"] for r in rows]

    def chunk_ids_for_project(self, project_id: int, vectorized_only: bool = False) -> list[int]:
        sql = "SELECT id FROM document_chunks WHERE project_id = ?"
        if vectorized_only:
            sql += " AND is_vectorized = 1"
        rows = self._conn.execute(sql + " ORDER BY id", (project_id,)).fetchall()
        return [r["id"] for r in rows]

    def existing_ids(
        self, chunk_ids: Sequence[int], project_id: int | None = None
    ) -> set[int]:
        """Subset of *chunk_ids* that still exist (optionally within a project)."""
        if not chunk_ids:
            return set()
        placeholders = ",".join("?" * len(chunk_ids))
        sql = f"SELECT id FROM document_chunks WHERE id IN ({placeholders})"
        params: list[int] = list(chunk_ids)
        if project_id is not None:
            sql += " AND project_id = ?"
            params.append(project_id)
        return {r["id"] for r in self._conn.execute(sql, params).fetchall()}

    def count_for_project(self, project_id: int) -> int:
        return self._conn.execute(
            "SELECT COUNT(*) FROM document_chunks WHERE project_id = ?", (project_id,)
        ).fetchone()[0]

    def count_unvectorized(self, project_id: int | None = None) -> int:
        if project_id is None:
            return self._conn.execute(
                "SELECT COUNT(*) FROM document_chunks WHERE is_vectorized = 0"
            ).fetchone()[0]
        return self._conn.execute(
            "SELECT COUNT(*) FROM document_chunks WHERE project_id = ? AND is_vectorized = 0",
            (project_id,),
        ).fetchone()[0]

    def get_sources(
        self,
        chunk_ids: Sequence[int],
        preview_chars: int = 150,
        vectorized_only: bool = False,
    ) -> list[Source]:
        """Resolve chunk ids to citations, preserving the input (rank) order.

        Ids that no longer exist are skipped: citations may be stale after a
        document was deleted. With *vectorized_only*, chunks whose document
        was edited since they were embedded are skipped too.
        """
        if not chunk_ids:
            return []
        placeholders = ",".join("?" * len(chunk_ids))
        flag_filter = "AND c.is_vectorized = 1" if vectorized_only else ""
        rows = self._conn.execute(
            f"""
            SELECT c.id, c.document_id, c.project_id, c.chunk_index,
                   SUBSTR(c.chunk_text, 1, ?) AS chunk_preview, d.name AS document_name
            FROM document_chunks c
            JOIN documents d ON c.document_id = d.id
            WHERE c.id IN ({placeholders})
            {flag_filter}
            """,
            [preview_chars, *chunk_ids],
        ).fetchall()
        by_id = {r["id"]: _row_to_source(r) for r in rows}
        return [by_id[i] for i in chunk_ids if i in by_id]


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------

def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        id=row["id"],
        document_id=row["document_id"],
        project_id=row["project_id"],
        chunk_index=row["chunk_index"],
        text=row["chunk_text"],
        is_vectorized=bool(row["is_vectorized"]),
        created_at=row["created_at"],
    )


def _row_to_source(row: sqlite3.Row) -> Source:
    return Source(
        chunk_id=row["id"],
        document_id=row["document_id"],
        project_id=row["project_id"],
        document_name=row["document_name"],
        chunk_index=row["chunk_index"],
        chunk_preview=row["chunk_preview"].strip() + "...",
    )
