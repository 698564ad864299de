"""SQLite connection layer for the chunk and document store."""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path


class Database:
    """Application SQLite database shared by the foreground and worker threads.

    Each thread gets its own connection (sqlite3 connections must not be used
    concurrently). Connections run in WAL mode so readers keep seeing the last
    committed state while a writer replaces a document's chunks.
    """

    def __init__(self, db_path: Path | str) -> None:
        """Store the database path. Connections are opened lazily per thread.

        Args:
            db_path: Path to the SQLite database file (created if missing).
        """
        self.db_path = Path(db_path)
        self._local = threading.local()
        self._lock = threading.Lock()
        self._open: list[sqlite3.Connection] = []

    def connect(self) -> sqlite3.Connection:
        """Open a new connection with foreign keys enforced and WAL enabled."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path, timeout=30.0, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        return conn

    def connection(self) -> sqlite3.Connection:
        """Return the calling thread's connection, opening it on first use."""
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = self.connect()
            self._local.conn = conn
            with self._lock:
                self._open.append(conn)
        return conn

    def close(self) -> None:
        """Close every connection opened through :meth:`connection`."""
        with self._lock:
            conns, self._open = self._open, []
        for conn in conns:
            conn.close()
        self._local = threading.local()

    def __enter__(self) -> sqlite3.Connection:
        """Return the calling thread's connection (context manager support)."""
        return self.connection()

    def __exit__(self, *args: object) -> None:
        """Close all connections when leaving the context manager."""
        self.close()
