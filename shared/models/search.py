"""Pydantic models for retrieval and answer results."""

from enum import Enum

from pydantic import BaseModel, model_validator

NO_RELEVANT_INFORMATION = "I couldn't find any relevant information in the document to answer your question."


class ScopeKind(str, Enum):
    DOCUMENT = "document"
    KNOWLEDGE_BASE = "knowledge_base"


class QueryScope(BaseModel):
    """What a question is asked against, and on whose behalf.

    A document scope searches the tenant-wide index restricted to one document;
    a knowledge-base scope searches the knowledge base's own index.
    """

    kind: ScopeKind
    user_id: str
    tenant_id: int
    document_id: str | None = None
    knowledge_base_id: int | None = None

    @model_validator(mode="after")
    def _check_target(self) -> "QueryScope":
        if self.kind == ScopeKind.DOCUMENT and self.document_id is None:
            raise ValueError("A document scope requires document_id.")
        if self.kind == ScopeKind.KNOWLEDGE_BASE and self.knowledge_base_id is None:
            raise ValueError("A knowledge-base scope requires knowledge_base_id.")
        return self

    @classmethod
    def for_document(cls, document_id: str, user_id: str, tenant_id: int) -> "QueryScope":
        return cls(kind=ScopeKind.DOCUMENT, document_id=document_id, user_id=user_id, tenant_id=tenant_id)

    @classmethod
    def for_knowledge_base(cls, knowledge_base_id: int, user_id: str, tenant_id: int) -> "QueryScope":
        return cls(
            kind=ScopeKind.KNOWLEDGE_BASE,
            knowledge_base_id=knowledge_base_id,
            user_id=user_id,
            tenant_id=tenant_id,
        )


class RetrievedPassage(BaseModel):
    """A single retrieved chunk, in rank order."""

    vector_id: str
    document_id: str
    filename: str
    chunk_index: int
    score: float
    text: str


class RetrievalResult(BaseModel):
    """Passages retrieved for a question."""

    question: str
    index_name: str
    top_k: int
    passages: list[RetrievedPassage]

    def get_context(self) -> str:
        """Concatenate passage texts in rank order into one context block."""
        return "\n\n".join(p.text for p in self.passages)


class AnswerResult(BaseModel):
    """Final answer. found=False means nothing relevant was retrieved (not an error)."""

    question: str
    answer: str
    found: bool
    passages: list[RetrievedPassage] = []
