"""Pydantic models for documents and knowledge bases.

Hierarchy:
  Document: a stored upload owned by one (user, tenant) pair; read-only to the pipeline.
  KnowledgeBaseDocument: membership of a document in a knowledge base, with its indexed flag.
  KnowledgeBase: a named group of documents sharing one vector index and a top_k.
"""

from datetime import datetime

from pydantic import BaseModel


class Document(BaseModel):
    """A stored document, as handed to the pipeline by the document store."""

    id: str
    user_id: str
    tenant_id: int
    filename: str
    content_type: str
    content: bytes = b""
    extracted_text: str | None = None
    uploaded_at: datetime | None = None


class KnowledgeBaseDocument(BaseModel):
    """Membership of a document in a knowledge base.

    is_indexed stays False until the document's chunks were upserted into the
    knowledge base's index.
    """

    document_id: str
    filename: str
    is_indexed: bool = False
    added_at: datetime | None = None


class KnowledgeBase(BaseModel):
    """A knowledge base (RAG group).

    index_name is generated once on first indexing and persisted; it is never
    regenerated afterwards.
    """

    id: int
    name: str
    description: str | None = None
    owner_user_id: str
    tenant_id: int
    top_k: int = 5
    index_name: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    documents: list[KnowledgeBaseDocument] = []

    def get_pending_documents(self) -> list[KnowledgeBaseDocument]:
        """Return the memberships that still need indexing, in membership order."""
        return [doc for doc in self.documents if not doc.is_indexed]
