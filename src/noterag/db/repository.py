"""Repository for projects and documents.

Documents are owned by the surrounding note-taking application; this layer
keeps just enough of them (name, raw text, plain-text projection, project
membership) for chunking and citation. Chunk rows live in
noterag.db.chunk_store.
"""

from __future__ import annotations

import sqlite3

from noterag.db.connection import Database
from noterag.db.models import Document, Project
from noterag.ingest.plaintext import to_plain_text

UNASSIGNED_PROJECT_NAME = "Unassigned"

_DOCUMENT_COLUMNS = (
    "id, project_id, name, full_text, plain_text, content_type, "
    "is_vectorized, created_at, updated_at"
)


class Repository:
    """Data access layer for projects and documents.

    Every call uses the calling thread's connection from *db*, so a single
    Repository can be shared between the foreground and worker threads.
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    @property
    def _conn(self) -> sqlite3.Connection:
        return self._db.connection()

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def create_project(self, name: str) -> int:
        """Insert a project and return its id."""
        with self._conn as conn:
            cur = conn.execute("INSERT INTO projects (name) VALUES (?)", (name,))
        return cur.lastrowid

    def get_project(self, project_id: int) -> Project | None:
        row = self._conn.execute(
            "SELECT id, name, created_at FROM projects WHERE id = ?", (project_id,)
        ).fetchone()
        return _row_to_project(row) if row else None

    def list_projects(self) -> list[Project]:
        """Return all projects ordered by id."""
        rows = self._conn.execute(
            "SELECT id, name, created_at FROM projects ORDER BY id"
        ).fetchall()
        return [_row_to_project(r) for r in rows]

    def rename_project(self, project_id: int, name: str) -> None:
        with self._conn as conn:
            conn.execute("UPDATE projects SET name = ? WHERE id = ?", (name, project_id))

    def delete_project(self, project_id: int) -> None:
        """Delete a project. Documents and chunks cascade."""
        with self._conn as conn:
            conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))

    def ensure_unassigned_project(self) -> int:
        """Return the id of the 'Unassigned' project, creating it if missing."""
        row = self._conn.execute(
            "SELECT id FROM projects WHERE name = ? ORDER BY id LIMIT 1",
            (UNASSIGNED_PROJECT_NAME,),
        ).fetchone()
        if row is not None:
            return row["id"]
        return self.create_project(UNASSIGNED_PROJECT_NAME)

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def add_document(
        self,
        project_id: int,
        name: str,
        full_text: str,
        content_type: str = "text",
    ) -> int:
        """Insert a document with its plain-text projection. Returns the new id.

        Raises:
            sqlite3.IntegrityError: If *project_id* does not exist.
        """
        plain = to_plain_text(full_text, content_type)
        with self._conn as conn:
            cur = conn.execute(
                """
                INSERT INTO documents (project_id, name, full_text, plain_text, content_type)
                VALUES (?, ?, ?, ?, ?)
                """,
                (project_id, name, full_text, plain, content_type),
            )
        return cur.lastrowid

    def get_document(self, document_id: int) -> Document | None:
        row = self._conn.execute(
            f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE id = ?", (document_id,)
        ).fetchone()
        return _row_to_document(row) if row else None

    def list_documents(self, project_id: int | None = None) -> list[Document]:
        """Return documents (optionally for one project) ordered by id."""
        if project_id is None:
            rows = self._conn.execute(
                f"SELECT {_DOCUMENT_COLUMNS} FROM documents ORDER BY id"
            ).fetchall()
        else:
            rows = self._conn.execute(
                f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE project_id = ? ORDER BY id",
                (project_id,),
            ).fetchall()
        return [_row_to_document(r) for r in rows]

    def update_document_text(
        self, document_id: int, full_text: str, content_type: str | None = None
    ) -> bool:
        """Replace a document's raw text and recompute its plain-text projection.

        The document and all of its chunks are reset to unvectorized in the
        same transaction. The chunk text itself is superseded by the next
        re-chunk. Returns False if the document does not exist.
        """
        doc = self.get_document(document_id)
        if doc is None:
            return False
        ctype = content_type or doc.content_type
        plain = to_plain_text(full_text, ctype)
        with self._conn as conn:
            conn.execute(
                """
                UPDATE documents
                SET full_text = ?, plain_text = ?, content_type = ?,
                    is_vectorized = 0, updated_at = datetime('now')
                WHERE id = ?
                """,
                (full_text, plain, ctype, document_id),
            )
            conn.execute(
                "UPDATE document_chunks SET is_vectorized = 0 WHERE document_id = ?",
                (document_id,),
            )
        return True

    def rename_document(self, document_id: int, name: str) -> None:
        with self._conn as conn:
            conn.execute(
                "UPDATE documents SET name = ?, updated_at = datetime('now') WHERE id = ?",
                (name, document_id),
            )

    def delete_document(self, document_id: int) -> None:
        """Delete a document. Its chunks cascade."""
        with self._conn as conn:
            conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))

    def document_exists(self, document_id: int) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM documents WHERE id = ?", (document_id,)
        ).fetchone()
        return row is not None

    def documents_needing_vectorization(self, project_id: int | None = None) -> list[int]:
        """Ids of documents that are unvectorized, unchunked, or have a pending chunk."""
        sql = """
            SELECT d.id FROM documents d
            WHERE (? IS NULL OR d.project_id = ?)
              AND (
                d.is_vectorized = 0
                OR NOT EXISTS (SELECT 1 FROM document_chunks c WHERE c.document_id = d.id)
                OR EXISTS (
                    SELECT 1 FROM document_chunks c
                    WHERE c.document_id = d.id AND c.is_vectorized = 0
                )
              )
            ORDER BY d.id
        """
        rows = self._conn.execute(sql, (project_id, project_id)).fetchall()
        return [r["id"] for r in rows]


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------

def _row_to_project(row: sqlite3.Row) -> Project:
    return Project(id=row["id"], name=row["name"], created_at=row["created_at"])


def _row_to_document(row: sqlite3.Row) -> Document:
    return Document(
        id=row["id"],
        project_id=row["project_id"],
        name=row["name"],
        full_text=row["full_text"],
        plain_text=row["plain_text"],
        content_type=row["content_type"],
        is_vectorized=bool(row["is_vectorized"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
