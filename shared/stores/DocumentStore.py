"""Read access to stored documents, always scoped to the owning user and tenant."""

from sqlalchemy import select

from shared.database.models import DocumentEntity
from shared.database.session import Database
from shared.errors import NotFound
from shared.helper.HelperConfig import HelperConfig
from shared.models.document import Document


class DocumentStore:
    def __init__(self, helper_config: HelperConfig, database: Database) -> None:
        self.logging = helper_config.get_logger()
        self._database = database

    @staticmethod
    def _to_model(entity: DocumentEntity) -> Document:
        return Document(
            id=entity.id,
            user_id=entity.user_id,
            tenant_id=entity.tenant_id,
            filename=entity.filename,
            content_type=entity.content_type,
            content=entity.content or b"",
            extracted_text=entity.extracted_text,
            uploaded_at=entity.uploaded_at,
        )

    async def get_document(self, document_id: str, user_id: str, tenant_id: int) -> Document:
        """Fetch one document owned by the caller.

        Raises:
            NotFound: If the document does not exist or belongs to someone else.
        """
        async with self._database.get_session() as session:
            result = await session.execute(
                select(DocumentEntity).where(
                    DocumentEntity.id == document_id,
                    DocumentEntity.user_id == user_id,
                    DocumentEntity.tenant_id == tenant_id,
                )
            )
            entity = result.scalar_one_or_none()
        if entity is None:
            raise NotFound(f"Document '{document_id}' not found.")
        return self._to_model(entity)

    async def save_document(self, document: Document) -> Document:
        """Insert or replace a document record."""
        async with self._database.get_session() as session:
            entity = DocumentEntity(
                id=document.id,
                user_id=document.user_id,
                tenant_id=document.tenant_id,
                filename=document.filename,
                content_type=document.content_type,
                content=document.content,
                extracted_text=document.extracted_text,
            )
            if document.uploaded_at is not None:
                entity.uploaded_at = document.uploaded_at
            entity = await session.merge(entity)
            await session.commit()
            self.logging.debug("Saved document '%s' for tenant %d.", document.id, document.tenant_id)
            return self._to_model(entity)
