"""Document chunker: boundary-aware windows with overlap.

Windows are ``chunk_size`` characters long. Every window that does not reach
the end of the text is pulled back to the best break point inside its last
``search_window`` characters:

    paragraph break  >  sentence end  >  word break  >  hard cut

The next window starts ``overlap`` characters before that break so passages
keep some context across boundaries. Output is a pure function of the input
text and settings.
"""

from __future__ import annotations

from noterag.errors import ChunkingError

_PARAGRAPH_BREAK = "\n\n"
_SENTENCE_ENDS = (". ", "! ", "? ", ".\n", "!\n", "?\n")


class TextChunker:
    """Split plain document text into ordered, bounded-size passages.

    Defaults: 4000 characters (~700 words) with a 400 character overlap,
    searching the last 200 characters of each window for a break point.
    """

    def __init__(
        self, chunk_size: int = 4000, overlap: int = 400, search_window: int = 200
    ) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        if not 0 <= overlap < chunk_size:
            raise ValueError("overlap must be in [0, chunk_size)")
        if search_window < 0:
            raise ValueError("search_window must be >= 0")
        self.chunk_size = chunk_size
        self.overlap = overlap
        self.search_window = search_window

    def chunk(self, document_text: str) -> list[str]:
        """Split *document_text* into passages.

        Returns:
            Ordered list of stripped, non-empty chunk texts (empty for blank text).

        Raises:
            ChunkingError: If *document_text* is not a string.
        """
        if not isinstance(document_text, str):
            raise ChunkingError(
                f"Expected document text as str, got {type(document_text).__name__}"
            )

        text = document_text.strip()
        if not text:
            return []
        if len(text) <= self.chunk_size:
            return [text]

        chunks: list[str] = []
        start = 0
        length = len(text)

        while start < length:
            end = min(start + self.chunk_size, length)
            if end < length:
                end = self._find_break_point(text, start, end)

            segment = text[start:end].strip()
            if segment:
                chunks.append(segment)

            if end >= length:
                break
            next_start = end - self.overlap
            start = next_start if next_start > start else end

        return chunks

    def _find_break_point(self, text: str, start: int, target_end: int) -> int:
        """Return the best cut position in ``text[start:target_end]``."""
        search_range = min(self.search_window, target_end - start)
        search_start = target_end - search_range
        window = text[search_start:target_end]

        pos = window.rfind(_PARAGRAPH_BREAK)
        if pos != -1:
            return self._guard(start, search_start + pos + len(_PARAGRAPH_BREAK), target_end)

        for pattern in _SENTENCE_ENDS:
            pos = window.rfind(pattern)
            if pos != -1:
                return self._guard(start, search_start + pos + len(pattern), target_end)

        pos = window.rfind(" ")
        if pos != -1:
            return self._guard(start, search_start + pos + 1, target_end)

        return target_end

    @staticmethod
    def _guard(start: int, cut: int, target_end: int) -> int:
        # A cut at the very start would produce an empty window.
        return cut if cut > start else target_end
