"""noterag ingest: plain-text projection, chunking, and background vectorization."""

from noterag.ingest.chunker import TextChunker
from noterag.ingest.plaintext import html_to_plain_text, normalize_text, to_plain_text

__all__ = [
    "TextChunker",
    "html_to_plain_text",
    "normalize_text",
    "to_plain_text",
]
