from pydantic import BaseModel


class Chunk(BaseModel):
    """A sentence-aligned text segment of a document, the unit of embedding.

    Chunks only live for the duration of an indexing run.
    """

    source_document_id: str
    index: int
    text: str

    @property
    def id(self) -> str:
        """Deterministic chunk id, reused as the vector id so re-indexing overwrites."""
        return make_chunk_id(self.source_document_id, self.index)


def make_chunk_id(document_id: str, index: int) -> str:
    return f"{document_id}-chunk-{index}"
