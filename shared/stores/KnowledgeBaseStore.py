"""Persistence for knowledge bases and their document memberships.

Every read-modify-write operation runs under the concurrency guard keyed by
tenant and opens its own session.
"""

from datetime import datetime, timezone

from sqlalchemy import select

from shared.database.models import DocumentEntity, KnowledgeBaseDocumentEntity, KnowledgeBaseEntity
from shared.database.session import Database
from shared.errors import NotFound
from shared.helper.ConcurrencyGuard import ConcurrencyGuard, tenant_key
from shared.helper.HelperConfig import HelperConfig
from shared.helper.index_naming import make_knowledge_base_index_name
from shared.models.document import KnowledgeBase, KnowledgeBaseDocument


class KnowledgeBaseStore:
    def __init__(self, helper_config: HelperConfig, database: Database, guard: ConcurrencyGuard) -> None:
        self.logging = helper_config.get_logger()
        self._database = database
        self._guard = guard
        self.default_top_k = int(helper_config.get_number_val("RAG_DEFAULT_TOP_K", default=5))

    ##########################################
    ################ HELPERS #################
    ##########################################

    @staticmethod
    def _to_model(entity: KnowledgeBaseEntity) -> KnowledgeBase:
        return KnowledgeBase(
            id=entity.id,
            name=entity.name,
            description=entity.description,
            owner_user_id=entity.owner_user_id,
            tenant_id=entity.tenant_id,
            top_k=entity.top_k,
            index_name=entity.index_name,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
            documents=[
                KnowledgeBaseDocument(
                    document_id=membership.document_id,
                    filename=membership.document.filename if membership.document else "",
                    is_indexed=membership.is_indexed,
                    added_at=membership.added_at,
                )
                for membership in entity.documents
            ],
        )

    @staticmethod
    async def _get_entity(session, knowledge_base_id: int, user_id: str, tenant_id: int) -> KnowledgeBaseEntity:
        result = await session.execute(
            select(KnowledgeBaseEntity).where(
                KnowledgeBaseEntity.id == knowledge_base_id,
                KnowledgeBaseEntity.owner_user_id == user_id,
                KnowledgeBaseEntity.tenant_id == tenant_id,
            )
        )
        entity = result.scalar_one_or_none()
        if entity is None:
            raise NotFound(f"Knowledge base {knowledge_base_id} not found.")
        return entity

    ##########################################
    ################# READS ##################
    ##########################################

    async def get(self, knowledge_base_id: int, user_id: str, tenant_id: int) -> KnowledgeBase:
        """Fetch a knowledge base owned by the caller, with its memberships.

        Raises:
            NotFound: If it does not exist or belongs to someone else.
        """
        async with self._database.get_session() as session:
            entity = await self._get_entity(session, knowledge_base_id, user_id, tenant_id)
            return self._to_model(entity)

    async def list_for_owner(self, user_id: str, tenant_id: int) -> list[KnowledgeBase]:
        """List the caller's knowledge bases, newest first."""
        async with self._database.get_session() as session:
            result = await session.execute(
                select(KnowledgeBaseEntity)
                .where(KnowledgeBaseEntity.owner_user_id == user_id, KnowledgeBaseEntity.tenant_id == tenant_id)
                .order_by(KnowledgeBaseEntity.created_at.desc(), KnowledgeBaseEntity.id.desc())
            )
            return [self._to_model(entity) for entity in result.scalars().all()]

    ##########################################
    ################ WRITES ##################
    ##########################################

    async def create(
        self,
        name: str,
        owner_user_id: str,
        tenant_id: int,
        description: str | None = None,
        top_k: int | None = None,
    ) -> KnowledgeBase:
        async with self._guard.hold(tenant_key(tenant_id)):
            async with self._database.get_session() as session:
                entity = KnowledgeBaseEntity(
                    name=name,
                    description=description,
                    owner_user_id=owner_user_id,
                    tenant_id=tenant_id,
                    top_k=top_k or self.default_top_k,
                )
                session.add(entity)
                await session.commit()
                knowledge_base_id = entity.id
        self.logging.info("Created knowledge base %d '%s' for tenant %d.", knowledge_base_id, name, tenant_id)
        return await self.get(knowledge_base_id, owner_user_id, tenant_id)

    async def update(
        self,
        knowledge_base_id: int,
        user_id: str,
        tenant_id: int,
        name: str | None = None,
        description: str | None = None,
        top_k: int | None = None,
    ) -> KnowledgeBase:
        """Update name, description and/or top_k. Fields left as None are unchanged."""
        async with self._guard.hold(tenant_key(tenant_id)):
            async with self._database.get_session() as session:
                entity = await self._get_entity(session, knowledge_base_id, user_id, tenant_id)
                if name is not None:
                    entity.name = name
                if description is not None:
                    entity.description = description
                if top_k is not None:
                    entity.top_k = top_k
                entity.updated_at = datetime.now(timezone.utc)
                await session.commit()
        return await self.get(knowledge_base_id, user_id, tenant_id)

    async def delete(self, knowledge_base_id: int, user_id: str, tenant_id: int) -> None:
        """Delete the knowledge base record and its memberships.

        Raises:
            NotFound: If it does not exist or belongs to someone else.
        """
        async with self._guard.hold(tenant_key(tenant_id)):
            async with self._database.get_session() as session:
                entity = await self._get_entity(session, knowledge_base_id, user_id, tenant_id)
                await session.delete(entity)
                await session.commit()
        self.logging.info("Deleted knowledge base %d for tenant %d.", knowledge_base_id, tenant_id)

    async def add_documents(self, knowledge_base_id: int, user_id: str, tenant_id: int, document_ids: list[str]) -> KnowledgeBase:
        """Add memberships for documents the caller owns.

        Documents owned by someone else or unknown ids are ignored; existing
        memberships keep their indexed flag.
        """
        async with self._guard.hold(tenant_key(tenant_id)):
            async with self._database.get_session() as session:
                entity = await self._get_entity(session, knowledge_base_id, user_id, tenant_id)
                existing = {membership.document_id for membership in entity.documents}
                result = await session.execute(
                    select(DocumentEntity.id).where(
                        DocumentEntity.id.in_(document_ids),
                        DocumentEntity.user_id == user_id,
                        DocumentEntity.tenant_id == tenant_id,
                    )
                )
                owned = set(result.scalars().all())
                added = 0
                for document_id in dict.fromkeys(document_ids):
                    if document_id in owned and document_id not in existing:
                        session.add(KnowledgeBaseDocumentEntity(knowledge_base_id=knowledge_base_id, document_id=document_id))
                        added += 1
                skipped = len(set(document_ids) - owned)
                if skipped:
                    self.logging.warning("Ignored %d document(s) not owned by user '%s'.", skipped, user_id)
                entity.updated_at = datetime.now(timezone.utc)
                await session.commit()
        self.logging.info("Added %d document(s) to knowledge base %d.", added, knowledge_base_id)
        return await self.get(knowledge_base_id, user_id, tenant_id)

    async def remove_document(self, knowledge_base_id: int, user_id: str, tenant_id: int, document_id: str) -> bool:
        """Remove a membership.

        Returns:
            bool: True if a membership was removed.
        """
        async with self._guard.hold(tenant_key(tenant_id)):
            async with self._database.get_session() as session:
                await self._get_entity(session, knowledge_base_id, user_id, tenant_id)
                result = await session.execute(
                    select(KnowledgeBaseDocumentEntity).where(
                        KnowledgeBaseDocumentEntity.knowledge_base_id == knowledge_base_id,
                        KnowledgeBaseDocumentEntity.document_id == document_id,
                    )
                )
                membership = result.scalar_one_or_none()
                if membership is None:
                    return False
                await session.delete(membership)
                await session.commit()
        return True

    async def assign_index_name(self, knowledge_base_id: int, user_id: str, tenant_id: int) -> str:
        """Return the knowledge base's index name, generating and persisting it on first use.

        Runs under the guard, so two concurrent first-time indexing runs end
        up with the same name.
        """
        async with self._guard.hold(tenant_key(tenant_id)):
            async with self._database.get_session() as session:
                entity = await self._get_entity(session, knowledge_base_id, user_id, tenant_id)
                if entity.index_name:
                    return entity.index_name
                entity.index_name = make_knowledge_base_index_name(knowledge_base_id)
                await session.commit()
                self.logging.info("Assigned index '%s' to knowledge base %d.", entity.index_name, knowledge_base_id)
                return entity.index_name

    async def mark_indexed(self, knowledge_base_id: int, tenant_id: int, document_id: str) -> bool:
        """Flag a membership as indexed.

        Returns:
            bool: False if the membership was removed while the document was being indexed.
        """
        async with self._guard.hold(tenant_key(tenant_id)):
            async with self._database.get_session() as session:
                result = await session.execute(
                    select(KnowledgeBaseDocumentEntity).where(
                        KnowledgeBaseDocumentEntity.knowledge_base_id == knowledge_base_id,
                        KnowledgeBaseDocumentEntity.document_id == document_id,
                    )
                )
                membership = result.scalar_one_or_none()
                if membership is None:
                    self.logging.warning(
                        "Membership of document '%s' in knowledge base %d vanished before it could be flagged.",
                        document_id, knowledge_base_id,
                    )
                    return False
                membership.is_indexed = True
                await session.commit()
        return True
