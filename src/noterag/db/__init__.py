"""noterag database layer."""

from noterag.db.chunk_store import ChunkStore
from noterag.db.connection import Database
from noterag.db.migrations import MIGRATIONS, run_migrations
from noterag.db.repository import Repository
from noterag.db.schema import initialize
from noterag.db.vector_index import ProjectIndex, VectorIndexManager
from noterag.db.vectors import ensure_vec_table, model_to_slug, vec_table_name

__all__ = [
    "ChunkStore",
    "Database",
    "Repository",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "ProjectIndex",
    "VectorIndexManager",
    "ensure_vec_table",
    "model_to_slug",
    "vec_table_name",
]
