from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.VectorFilter import VectorFilter
from shared.errors import EmptyInput, NotFound
from shared.helper.HelperConfig import HelperConfig
from shared.helper.index_naming import DEFAULT_INDEX_BASE_NAME, make_tenant_index_name
from shared.models.search import (
    NO_RELEVANT_INFORMATION,
    AnswerResult,
    QueryScope,
    RetrievalResult,
    RetrievedPassage,
    ScopeKind,
)
from shared.stores.DocumentStore import DocumentStore
from shared.stores.KnowledgeBaseStore import KnowledgeBaseStore
from shared.stores.SecretsStore import SecretsStore

ANSWER_PROMPT = """You are a helpful assistant that answers questions based on the provided document context.

{source_label}: {source_name}

Context from the {source_kind}:
{context}

Question: {question}

Please answer the question based on the context provided above. If the context doesn't contain enough information to answer the question, say so. Be concise and accurate."""


class QueryService:
    """Handles questions against a scope: embed -> filtered vector search -> (answer)."""

    def __init__(
        self,
        helper_config: HelperConfig,
        embed_client: EmbedClientInterface,
        rag_client: RAGClientInterface,
        llm_client: LLMClientInterface,
        knowledge_base_store: KnowledgeBaseStore,
        document_store: DocumentStore,
        secrets_store: SecretsStore,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._embed_client = embed_client
        self._rag_client = rag_client
        self._llm_client = llm_client
        self._knowledge_base_store = knowledge_base_store
        self._document_store = document_store
        self._secrets_store = secrets_store
        self.default_top_k = int(helper_config.get_number_val("RAG_DEFAULT_TOP_K", default=5))
        self.index_base_name = helper_config.get_string_val("RAG_INDEX_BASE_NAME", default=DEFAULT_INDEX_BASE_NAME)

    ##########################################
    ############### SCOPE ####################
    ##########################################

    async def _resolve_scope(self, scope: QueryScope) -> tuple[str, VectorFilter, int, str]:
        """Return (index name, filter, default top_k, display name) for a scope.

        Raises:
            NotFound: If the target does not exist for the caller, or a knowledge
                base was never indexed.
        """
        if scope.kind == ScopeKind.DOCUMENT:
            document = await self._document_store.get_document(scope.document_id, scope.user_id, scope.tenant_id)
            return (
                make_tenant_index_name(self.index_base_name, scope.tenant_id),
                VectorFilter(tenant_id=scope.tenant_id, user_id=scope.user_id, document_id=document.id),
                self.default_top_k,
                document.filename,
            )

        knowledge_base = await self._knowledge_base_store.get(scope.knowledge_base_id, scope.user_id, scope.tenant_id)
        if not knowledge_base.index_name:
            raise NotFound(f"Knowledge base {knowledge_base.id} has not been indexed yet.")
        return (
            knowledge_base.index_name,
            VectorFilter(tenant_id=scope.tenant_id, user_id=scope.user_id, knowledge_base_id=knowledge_base.id),
            knowledge_base.top_k,
            knowledge_base.name,
        )

    ##########################################
    ############### CORE #####################
    ##########################################

    async def do_retrieve(self, question: str, scope: QueryScope, top_k: int | None = None) -> RetrievalResult:
        """Embed a question and return the most relevant passages in rank order.

        The tenant and user filter is always applied before ranking.

        Args:
            question (str): The question text.
            scope (QueryScope): Document or knowledge base to search.
            top_k (int | None): Number of passages; defaults to the scope's top_k.

        Returns:
            RetrievalResult: The retrieved passages.
        """
        api_key = await self._secrets_store.get_api_key(scope.tenant_id)
        retrieval, _ = await self._retrieve(question, scope, top_k, api_key)
        return retrieval

    async def _retrieve(self, question: str, scope: QueryScope, top_k: int | None, api_key: str) -> tuple[RetrievalResult, str]:
        if not question or not question.strip():
            raise EmptyInput("Question is empty.")
        index_name, vector_filter, default_top_k, source_name = await self._resolve_scope(scope)
        top_k = top_k or default_top_k

        self.logging.info(
            "Retrieving top %d passages from '%s' for tenant %d (scope=%s).",
            top_k, index_name, scope.tenant_id, scope.kind.value,
        )
        query_vector = await self._embed_client.do_embed_one(question, api_key=api_key)
        matches = await self._rag_client.do_query(index_name, query_vector, top_k, vector_filter, include_metadata=True)

        passages = [
            RetrievedPassage(
                vector_id=match.id,
                document_id=match.metadata.document_id,
                filename=match.metadata.filename,
                chunk_index=match.metadata.chunk_index,
                score=match.score,
                text=match.metadata.text,
            )
            for match in matches
            if match.metadata is not None
        ]
        self.logging.debug("Retrieved %d passage(s) from '%s'.", len(passages), index_name)
        return RetrievalResult(question=question, index_name=index_name, top_k=top_k, passages=passages), source_name

    async def do_answer(self, question: str, scope: QueryScope, top_k: int | None = None) -> AnswerResult:
        """Retrieve passages and ask the answer generator.

        If nothing relevant is retrieved, the generator is not called and a
        result with found=False is returned.

        Args:
            question (str): The question text.
            scope (QueryScope): Document or knowledge base to search.
            top_k (int | None): Number of passages; defaults to the scope's top_k.

        Returns:
            AnswerResult: The answer and the passages it was based on.
        """
        api_key = await self._secrets_store.get_api_key(scope.tenant_id)
        retrieval, source_name = await self._retrieve(question, scope, top_k, api_key)
        if not retrieval.passages:
            self.logging.info("No relevant passages found in '%s', skipping answer generation.", retrieval.index_name)
            return AnswerResult(question=question, answer=NO_RELEVANT_INFORMATION, found=False)

        is_document = scope.kind == ScopeKind.DOCUMENT
        prompt = ANSWER_PROMPT.format(
            source_label="Document" if is_document else "Knowledge base",
            source_name=source_name,
            source_kind="document" if is_document else "knowledge base",
            context=retrieval.get_context(),
            question=question,
        )
        answer = await self._llm_client.do_chat([{"role": "user", "content": prompt}], api_key=api_key)
        return AnswerResult(question=question, answer=answer, found=True, passages=retrieval.passages)

    async def do_is_document_indexed(self, document_id: str, user_id: str, tenant_id: int) -> bool:
        """Return True if the tenant-wide index holds vectors of the document.

        Raises:
            NotFound: If the document does not exist for the caller.
        """
        document = await self._document_store.get_document(document_id, user_id, tenant_id)
        count = await self._rag_client.do_count(
            make_tenant_index_name(self.index_base_name, tenant_id),
            VectorFilter(tenant_id=tenant_id, user_id=user_id, document_id=document.id),
        )
        return count > 0
