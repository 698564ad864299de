"""Exception taxonomy for the noterag pipeline.

Only ``EmbeddingUnavailable`` is ever meant to reach the user, and only when
vectorization is being switched on. Everything else is caught at the
background-task or retrieval boundary and logged.
"""

from __future__ import annotations


class NoteragError(Exception):
    """Base class for all noterag errors."""


class ChunkingError(NoteragError):
    """Document text could not be chunked (callers treat it as zero chunks)."""


class EmbeddingError(NoteragError):
    """Base class for embedding failures. Affected chunks stay unvectorized."""


class EmbeddingUnavailable(EmbeddingError):
    """No API credential is configured for the embedding provider."""

    def __init__(self, provider: str, env_var: str) -> None:
        super().__init__(
            f"No API key found for embedding provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )
        self.provider = provider
        self.env_var = env_var


class EmbeddingRequestFailed(EmbeddingError):
    """The remote embedding call failed or returned a malformed response."""


class EmbeddingDimensionMismatch(EmbeddingError):
    """A returned vector does not match the configured index dimension."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(
            f"Embedding dimension mismatch: index expects {expected}, got {actual}"
        )
        self.expected = expected
        self.actual = actual


class IndexCorrupt(NoteragError):
    """A persisted vector index could not be read."""


class ChunkNotFound(NoteragError):
    """A chunk id no longer exists (stale citation)."""
