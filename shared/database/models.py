"""SQLAlchemy ORM entities for documents, knowledge bases and tenant credentials."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, LargeBinary, String, Text, UniqueConstraint
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentEntity(Base):
    __tablename__ = "documents"
    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    tenant_id = Column(Integer, nullable=False, index=True)
    filename = Column(String, nullable=False)
    content_type = Column(String, nullable=False, default="text/plain")
    content = Column(LargeBinary, nullable=False, default=b"")
    extracted_text = Column(Text, nullable=True)
    uploaded_at = Column(DateTime, default=_utcnow)


class KnowledgeBaseEntity(Base):
    __tablename__ = "knowledge_bases"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    owner_user_id = Column(String, nullable=False, index=True)
    tenant_id = Column(Integer, nullable=False, index=True)
    top_k = Column(Integer, nullable=False, default=5)
    # set once on first indexing, never regenerated
    index_name = Column(String, nullable=True, unique=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    documents = relationship(
        "KnowledgeBaseDocumentEntity",
        back_populates="knowledge_base",
        cascade="all, delete-orphan",
        order_by="KnowledgeBaseDocumentEntity.id",
        lazy="selectin",
    )


class KnowledgeBaseDocumentEntity(Base):
    __tablename__ = "knowledge_base_documents"
    __table_args__ = (UniqueConstraint("knowledge_base_id", "document_id", name="uq_kb_document"),)
    id = Column(Integer, primary_key=True, autoincrement=True)
    knowledge_base_id = Column(Integer, ForeignKey("knowledge_bases.id", ondelete="CASCADE"), nullable=False, index=True)
    document_id = Column(String, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    is_indexed = Column(Boolean, nullable=False, default=False)
    added_at = Column(DateTime, default=_utcnow)

    knowledge_base = relationship("KnowledgeBaseEntity", back_populates="documents")
    document = relationship("DocumentEntity", lazy="selectin")


class TenantApiKeyEntity(Base):
    __tablename__ = "tenant_api_keys"
    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(Integer, nullable=False, index=True)
    provider = Column(String, nullable=False, default="openai")
    encrypted_key = Column(Text, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=_utcnow)
