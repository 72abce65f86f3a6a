"""Sentence-aligned, overlapping text chunker."""

import re

from shared.helper.HelperConfig import HelperConfig
from shared.models.chunk import Chunk

CHUNK_SIZE = 1000       # characters per chunk
CHUNK_OVERLAP = 200     # characters carried over into the next chunk

_WHITESPACE = re.compile(r"\s+")
_SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+")


class TextChunker:
    """Splits document text into overlapping chunks that never cut a sentence.

    Sentences are appended to a buffer until the next one would push it past
    chunk_size. The buffer is then emitted and the next buffer starts with the
    trailing chunk_overlap characters of the emitted one. A single sentence
    longer than chunk_size becomes an oversized chunk rather than being split.
    """

    def __init__(self, chunk_size: int = CHUNK_SIZE, chunk_overlap: int = CHUNK_OVERLAP) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive.")
        if not 0 <= chunk_overlap < chunk_size:
            raise ValueError("chunk_overlap must be >= 0 and smaller than chunk_size.")
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

    @classmethod
    def from_config(cls, helper_config: HelperConfig) -> "TextChunker":
        return cls(
            chunk_size=int(helper_config.get_number_val("CHUNK_SIZE", default=CHUNK_SIZE)),
            chunk_overlap=int(helper_config.get_number_val("CHUNK_OVERLAP", default=CHUNK_OVERLAP)),
        )

    @staticmethod
    def normalize(text: str) -> str:
        """Collapse all whitespace runs to a single space and trim."""
        return _WHITESPACE.sub(" ", text or "").strip()

    @staticmethod
    def split_sentences(text: str) -> list[str]:
        """Split normalised text after '.', '!' or '?' followed by whitespace."""
        return [s for s in _SENTENCE_BOUNDARY.split(text) if s.strip()]

    def chunk(self, text: str, document_id: str) -> list[Chunk]:
        """Chunk a document's text.

        Args:
            text (str): Raw extracted text.
            document_id (str): Id of the source document, used for chunk ids.

        Returns:
            list[Chunk]: Chunks in order with indices from 0; empty if the text is blank.
        """
        normalized = self.normalize(text)
        if not normalized:
            return []

        chunks: list[Chunk] = []
        buffer = ""
        # False while the buffer only holds the overlap seed of the previous chunk
        has_new_content = False

        for sentence in self.split_sentences(normalized):
            if has_new_content and len(buffer) + len(sentence) > self.chunk_size:
                closed = buffer.rstrip()
                chunks.append(Chunk(source_document_id=document_id, index=len(chunks), text=closed))
                # the seed is kept verbatim, so a chunk may start with the space before a sentence
                buffer = closed[-self.chunk_overlap:] + " " if self.chunk_overlap else ""
                has_new_content = False
            buffer += sentence + " "
            has_new_content = True

        if has_new_content and buffer.strip():
            chunks.append(Chunk(source_document_id=document_id, index=len(chunks), text=buffer.rstrip()))

        return chunks
