"""Builds and owns every pipeline component for one process."""

import httpx

from services.rag_pipeline.IndexingService import IndexingService
from services.rag_pipeline.KnowledgeBaseService import KnowledgeBaseService
from services.rag_pipeline.QueryService import QueryService
from shared.clients.ClientInterface import ClientInterface
from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.llm.LLMClientManager import LLMClientManager
from shared.clients.rag.RAGClientManager import RAGClientManager
from shared.database.session import Database
from shared.helper.ConcurrencyGuard import ConcurrencyGuard
from shared.helper.HelperConfig import HelperConfig
from shared.helper.TextChunker import TextChunker
from shared.stores.DocumentStore import DocumentStore
from shared.stores.KnowledgeBaseStore import KnowledgeBaseStore
from shared.stores.SecretsStore import SecretsStore


class RAGPipeline:
    """Wires clients, stores and services from configuration.

    One guard instance is shared by every store and service, so all metadata
    writes of the process are serialised per tenant.
    """

    def __init__(self, helper_config: HelperConfig, database_url: str | None = None) -> None:
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()

        # clients
        self.embed_client = EmbedClientManager(helper_config=helper_config).get_client()
        self.rag_client = RAGClientManager(helper_config=helper_config).get_client()
        self.llm_client = LLMClientManager(helper_config=helper_config).get_client()

        # persistence
        self.guard = ConcurrencyGuard(helper_config=helper_config)
        self.database = Database(helper_config=helper_config, database_url=database_url)
        self.document_store = DocumentStore(helper_config=helper_config, database=self.database)
        self.knowledge_base_store = KnowledgeBaseStore(helper_config=helper_config, database=self.database, guard=self.guard)
        self.secrets_store = SecretsStore(helper_config=helper_config, database=self.database, guard=self.guard)

        # services
        self.indexing_service = IndexingService(
            helper_config=helper_config,
            embed_client=self.embed_client,
            rag_client=self.rag_client,
            knowledge_base_store=self.knowledge_base_store,
            document_store=self.document_store,
            secrets_store=self.secrets_store,
            text_chunker=TextChunker.from_config(helper_config),
        )
        self.query_service = QueryService(
            helper_config=helper_config,
            embed_client=self.embed_client,
            rag_client=self.rag_client,
            llm_client=self.llm_client,
            knowledge_base_store=self.knowledge_base_store,
            document_store=self.document_store,
            secrets_store=self.secrets_store,
        )
        self.knowledge_base_service = KnowledgeBaseService(
            helper_config=helper_config,
            rag_client=self.rag_client,
            knowledge_base_store=self.knowledge_base_store,
            document_store=self.document_store,
        )

    def get_clients(self) -> list[ClientInterface]:
        return [self.embed_client, self.rag_client, self.llm_client]

    async def boot(self, transport: httpx.AsyncBaseTransport | None = None, healthcheck: bool = False) -> None:
        """Create tables and open the HTTP clients.

        Args:
            transport (httpx.AsyncBaseTransport | None): Custom transport for every client.
            healthcheck (bool): Probe every backend once and log unhealthy ones.
        """
        await self.database.init_database()
        for client in self.get_clients():
            await client.boot(transport=transport)

        if not healthcheck:
            return
        for client in self.get_clients():
            try:
                response = await client.do_healthcheck()
            except httpx.TransportError as e:
                self.logging.error("%s client '%s' is unreachable: %s", client.get_client_type().upper(), client.get_engine_name(), e)
                continue
            if response.status_code >= 300:
                self.logging.warning(
                    "%s client '%s' healthcheck returned status %d.",
                    client.get_client_type().upper(), client.get_engine_name(), response.status_code,
                )

    async def close(self) -> None:
        for client in self.get_clients():
            await client.close()
        await self.database.close()
