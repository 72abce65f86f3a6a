"""Pydantic models describing indexing progress and outcomes."""

from enum import Enum

from pydantic import BaseModel


class DocumentState(str, Enum):
    """Per-document indexing state.

    PENDING → CHUNKING → EMBEDDING → UPSERTING → INDEXED; FAILED is reachable
    from every non-terminal state.
    """

    PENDING = "pending"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    UPSERTING = "upserting"
    INDEXED = "indexed"
    FAILED = "failed"


class IndexingProgress(BaseModel):
    """One progress event, handed to the caller's progress sink.

    Advisory only; never persisted.
    """

    message: str
    document_id: str | None = None
    document_number: int = 0
    document_total: int = 0
    batch_number: int = 0
    batch_total: int = 0
    percent: float = 0.0


class DocumentOutcome(BaseModel):
    """Result of indexing a single document."""

    document_id: str
    filename: str
    state: DocumentState = DocumentState.PENDING
    chunk_count: int = 0
    error: str | None = None


class IndexingReport(BaseModel):
    """Result of an indexing run over one scope.

    Attributes:
        index_name: Vector index the run wrote to.
        knowledge_base_id: Knowledge base indexed, None for a document-scope run.
        skipped: Documents that were already indexed and not processed again.
        removed: Documents removed from the knowledge base while the run was indexing them.
        outcomes: One entry per processed document, in processing order.
        cancelled: True if the run stopped early on its cancellation signal.
    """

    index_name: str
    knowledge_base_id: int | None = None
    skipped: int = 0
    removed: int = 0
    outcomes: list[DocumentOutcome] = []
    cancelled: bool = False

    @property
    def indexed_count(self) -> int:
        return sum(1 for o in self.outcomes if o.state == DocumentState.INDEXED)

    @property
    def failed_count(self) -> int:
        return sum(1 for o in self.outcomes if o.state == DocumentState.FAILED)

    def get_summary(self) -> str:
        """Human-readable one-line summary of the run."""
        if self.cancelled:
            return f"Indexing cancelled after {self.indexed_count} document(s)."
        if self.failed_count:
            return f"Indexing completed with {self.failed_count} failure(s)."
        return "Indexing completed!"
