"""Knowledge base management: CRUD, memberships and vector cleanup."""

from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.VectorFilter import VectorFilter
from shared.errors import InvalidInput, NotFound, VectorStoreError
from shared.helper.HelperConfig import HelperConfig
from shared.helper.index_naming import DEFAULT_INDEX_BASE_NAME, make_tenant_index_name
from shared.models.document import KnowledgeBase
from shared.stores.DocumentStore import DocumentStore
from shared.stores.KnowledgeBaseStore import KnowledgeBaseStore


class KnowledgeBaseService:
    def __init__(
        self,
        helper_config: HelperConfig,
        rag_client: RAGClientInterface,
        knowledge_base_store: KnowledgeBaseStore,
        document_store: DocumentStore,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._rag_client = rag_client
        self._knowledge_base_store = knowledge_base_store
        self._document_store = document_store
        self.index_base_name = helper_config.get_string_val("RAG_INDEX_BASE_NAME", default=DEFAULT_INDEX_BASE_NAME)

    ##########################################
    ################# CRUD ###################
    ##########################################

    async def create_knowledge_base(
        self, name: str, user_id: str, tenant_id: int, description: str | None = None, top_k: int | None = None
    ) -> KnowledgeBase:
        if not name or not name.strip():
            raise InvalidInput("Knowledge base name must not be empty.")
        if top_k is not None and top_k < 1:
            raise InvalidInput("top_k must be at least 1.")
        return await self._knowledge_base_store.create(
            name=name.strip(), owner_user_id=user_id, tenant_id=tenant_id, description=description, top_k=top_k
        )

    async def list_knowledge_bases(self, user_id: str, tenant_id: int) -> list[KnowledgeBase]:
        return await self._knowledge_base_store.list_for_owner(user_id, tenant_id)

    async def get_knowledge_base(self, knowledge_base_id: int, user_id: str, tenant_id: int) -> KnowledgeBase:
        return await self._knowledge_base_store.get(knowledge_base_id, user_id, tenant_id)

    async def update_knowledge_base(
        self,
        knowledge_base_id: int,
        user_id: str,
        tenant_id: int,
        name: str | None = None,
        description: str | None = None,
        top_k: int | None = None,
    ) -> KnowledgeBase:
        if name is not None and not name.strip():
            raise InvalidInput("Knowledge base name must not be empty.")
        if top_k is not None and top_k < 1:
            raise InvalidInput("top_k must be at least 1.")
        return await self._knowledge_base_store.update(
            knowledge_base_id, user_id, tenant_id,
            name=name.strip() if name is not None else None,
            description=description,
            top_k=top_k,
        )

    async def delete_knowledge_base(self, knowledge_base_id: int, user_id: str, tenant_id: int) -> None:
        """Delete the knowledge base's index (best effort), then its record.

        Raises:
            NotFound: If the knowledge base does not exist for the caller.
        """
        knowledge_base = await self._knowledge_base_store.get(knowledge_base_id, user_id, tenant_id)
        if knowledge_base.index_name:
            try:
                await self._rag_client.do_delete_index(knowledge_base.index_name)
            except VectorStoreError as e:
                self.logging.warning("Could not delete index '%s' of knowledge base %d: %s", knowledge_base.index_name, knowledge_base_id, e)
        await self._knowledge_base_store.delete(knowledge_base_id, user_id, tenant_id)

    ##########################################
    ############## MEMBERSHIPS ###############
    ##########################################

    async def add_documents(self, knowledge_base_id: int, user_id: str, tenant_id: int, document_ids: list[str]) -> KnowledgeBase:
        """Add the caller's documents; they are indexed on the next indexing run."""
        return await self._knowledge_base_store.add_documents(knowledge_base_id, user_id, tenant_id, document_ids)

    async def remove_document(self, knowledge_base_id: int, user_id: str, tenant_id: int, document_id: str) -> None:
        """Remove the membership, then delete the document's vectors from the knowledge base index (best effort).

        An indexing run that upserts the document after this point finds the
        membership gone and removes its own vectors.

        Raises:
            NotFound: If the knowledge base or the membership does not exist.
        """
        knowledge_base = await self._knowledge_base_store.get(knowledge_base_id, user_id, tenant_id)
        if not await self._knowledge_base_store.remove_document(knowledge_base_id, user_id, tenant_id, document_id):
            raise NotFound(f"Document '{document_id}' is not part of knowledge base {knowledge_base_id}.")
        if knowledge_base.index_name:
            try:
                await self._rag_client.do_delete_vectors(
                    knowledge_base.index_name,
                    filter=VectorFilter(
                        tenant_id=tenant_id,
                        user_id=user_id,
                        document_id=document_id,
                        knowledge_base_id=knowledge_base_id,
                    ),
                )
            except VectorStoreError as e:
                self.logging.warning("Could not delete vectors of document '%s' from '%s': %s", document_id, knowledge_base.index_name, e)
        self.logging.info("Removed document '%s' from knowledge base %d.", document_id, knowledge_base_id)

    async def delete_document_embeddings(self, document_id: str, user_id: str, tenant_id: int) -> None:
        """Delete a document's vectors from the tenant-wide index.

        Raises:
            NotFound: If the document does not exist for the caller.
            VectorStoreError: If the vector store rejects the delete.
        """
        document = await self._document_store.get_document(document_id, user_id, tenant_id)
        index_name = make_tenant_index_name(self.index_base_name, tenant_id)
        await self._rag_client.do_delete_vectors(
            index_name,
            filter=VectorFilter(tenant_id=tenant_id, user_id=user_id, document_id=document.id),
        )
        self.logging.info("Deleted embeddings of document '%s' from '%s'.", document.id, index_name)
