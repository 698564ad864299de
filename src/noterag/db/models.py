"""Domain models for the noterag database layer."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class Project:
    id: int
    name: str
    created_at: str | None = None


@dataclass
class Document:
    id: int
    project_id: int
    name: str
    full_text: str = ""
    plain_text: str = ""
    content_type: str = "text"
    is_vectorized: bool = False
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def text_for_chunking(self) -> str:
        """Plain-text projection, falling back to the raw text when empty."""
        return self.plain_text if self.plain_text.strip() else self.full_text


@dataclass
class Chunk:
    document_id: int
    project_id: int
    chunk_index: int
    text: str
    is_vectorized: bool = False
    created_at: str | None = None
    id: int | None = None  # set after insert; None for unsaved chunks


@dataclass
class Source:
    """A retrieved chunk resolved to a human-readable citation."""

    chunk_id: int
    document_id: int
    document_name: str
    chunk_index: int
    chunk_preview: str
    project_id: int | None = None
    score: float | None = None


@dataclass
class Reassignment:
    """Outcome of moving a document (and its chunks) to another project."""

    document_id: int
    old_project_id: int
    new_project_id: int
    chunk_ids: list[int] = field(default_factory=list)
