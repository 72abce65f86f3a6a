"""Indexing service.

Reads documents from the document store, splits their text into chunks,
generates embeddings via the EmbedClient in small batches, and upserts the
resulting vectors into the vector store with typed provenance metadata.

Two scopes share the same per-document pipeline:
  - a knowledge base: every pending membership, written to the knowledge base's index;
  - a single document: written to the tenant-wide index.
"""

import asyncio
import inspect
import math
from typing import Any, Callable

from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.VectorFilter import VectorFilter
from shared.clients.rag.models.VectorPoint import EmbeddingVector, VectorMetadata
from shared.errors import EmptyInput, IndexingCancelled, RAGPipelineError, VectorStoreError
from shared.helper.HelperConfig import HelperConfig
from shared.helper.TextChunker import TextChunker
from shared.helper.TextExtractor import TextExtractor
from shared.helper.index_naming import DEFAULT_INDEX_BASE_NAME, make_tenant_index_name
from shared.models.chunk import make_chunk_id
from shared.models.document import Document
from shared.models.progress import DocumentOutcome, DocumentState, IndexingProgress, IndexingReport
from shared.stores.DocumentStore import DocumentStore
from shared.stores.KnowledgeBaseStore import KnowledgeBaseStore
from shared.stores.SecretsStore import SecretsStore

EMBED_BATCH_DELAY = 0.2 # seconds between embedding sub-batches

ProgressSink = Callable[[IndexingProgress], Any]


class IndexingService:
    """Runs the chunk → embed → upsert pipeline for one scope at a time."""

    def __init__(
        self,
        helper_config: HelperConfig,
        embed_client: EmbedClientInterface,
        rag_client: RAGClientInterface,
        knowledge_base_store: KnowledgeBaseStore,
        document_store: DocumentStore,
        secrets_store: SecretsStore,
        text_chunker: TextChunker | None = None,
        text_extractor: TextExtractor | None = None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._embed_client = embed_client
        self._rag_client = rag_client
        self._knowledge_base_store = knowledge_base_store
        self._document_store = document_store
        self._secrets_store = secrets_store
        self._text_chunker = text_chunker or TextChunker.from_config(helper_config)
        self._text_extractor = text_extractor or TextExtractor()
        self.batch_delay = float(helper_config.get_number_val("EMBED_BATCH_DELAY", default=EMBED_BATCH_DELAY))
        self.index_base_name = helper_config.get_string_val("RAG_INDEX_BASE_NAME", default=DEFAULT_INDEX_BASE_NAME)

        # replaced in tests to skip real waiting
        self._sleep = asyncio.sleep

    def get_tenant_index_name(self, tenant_id: int) -> str:
        return make_tenant_index_name(self.index_base_name, tenant_id)

    ##########################################
    ########### KNOWLEDGE BASE RUN ###########
    ##########################################

    async def do_index_knowledge_base(
        self,
        knowledge_base_id: int,
        user_id: str,
        tenant_id: int,
        progress: ProgressSink | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> IndexingReport:
        """Index every pending document of a knowledge base.

        Documents already flagged as indexed are skipped. A failing document is
        recorded in the report and the run continues with the next one.

        Args:
            knowledge_base_id (int): The knowledge base to index.
            user_id (str): Caller; must own the knowledge base.
            tenant_id (int): Caller's tenant.
            progress (ProgressSink | None): Receives IndexingProgress events.
            cancel_event (asyncio.Event | None): Checked between documents and between batches.

        Returns:
            IndexingReport: Per-document outcomes.

        Raises:
            NotFound: If the knowledge base does not exist for the caller.
            ConfigurationError: If no API credential is available for the tenant.
            httpx.TransportError: If the vector store cannot be reached.
        """
        knowledge_base = await self._knowledge_base_store.get(knowledge_base_id, user_id, tenant_id)
        api_key = await self._secrets_store.get_api_key(tenant_id)
        index_name = await self._knowledge_base_store.assign_index_name(knowledge_base_id, user_id, tenant_id)

        pending = knowledge_base.get_pending_documents()
        report = IndexingReport(
            index_name=index_name,
            knowledge_base_id=knowledge_base_id,
            skipped=len(knowledge_base.documents) - len(pending),
        )
        self.logging.info(
            "Indexing knowledge base %d into '%s': %d pending, %d already indexed.",
            knowledge_base_id, index_name, len(pending), report.skipped,
        )
        if not pending:
            await self._emit(progress, IndexingProgress(message="All documents are already indexed.", percent=100.0))
            return report

        await self._emit(progress, IndexingProgress(message=f"Preparing index '{index_name}'...", document_total=len(pending)))
        await self._ensure_index(index_name)

        total = len(pending)
        for number, membership in enumerate(pending, start=1):
            if self._is_cancelled(cancel_event):
                report.cancelled = True
                break

            outcome = DocumentOutcome(document_id=membership.document_id, filename=membership.filename)
            await self._emit(progress, IndexingProgress(
                message=f"Processing document {number}/{total}: {membership.filename}",
                document_id=membership.document_id,
                document_number=number,
                document_total=total,
                percent=round((number - 1) / total * 100, 1),
            ))
            try:
                document = await self._document_store.get_document(membership.document_id, user_id, tenant_id)
                await self._process_document(
                    document=document,
                    index_name=index_name,
                    api_key=api_key,
                    outcome=outcome,
                    knowledge_base_id=knowledge_base_id,
                    progress=progress,
                    document_number=number,
                    document_total=total,
                    cancel_event=cancel_event,
                )
                if not await self._knowledge_base_store.mark_indexed(knowledge_base_id, tenant_id, membership.document_id):
                    await self._discard_removed_document(index_name, document, knowledge_base_id)
                    report.removed += 1
                    continue
                outcome.state = DocumentState.INDEXED
                self.logging.info(
                    "Indexed document '%s' ('%s'): %d chunks upserted.",
                    membership.document_id, membership.filename, outcome.chunk_count,
                )
            except IndexingCancelled:
                self.logging.warning("Indexing of knowledge base %d cancelled during document '%s'.", knowledge_base_id, membership.document_id)
                report.cancelled = True
                break
            except RAGPipelineError as e:
                outcome.state = DocumentState.FAILED
                outcome.error = str(e)
                self.logging.error("Failed to index document '%s' ('%s'): %s", membership.document_id, membership.filename, e)
                await self._emit(progress, IndexingProgress(
                    message=f"Error processing {membership.filename}: {e}",
                    document_id=membership.document_id,
                    document_number=number,
                    document_total=total,
                    percent=round(number / total * 100, 1),
                ))
            report.outcomes.append(outcome)

        summary = report.get_summary()
        self.logging.info(
            "Knowledge base %d: %s (%d indexed, %d failed, %d skipped)",
            knowledge_base_id, summary, report.indexed_count, report.failed_count, report.skipped,
            color="green" if not report.failed_count and not report.cancelled else "yellow",
        )
        await self._emit(progress, IndexingProgress(message=summary, document_total=total, percent=100.0))
        return report

    ##########################################
    ########### SINGLE DOCUMENT RUN ##########
    ##########################################

    async def do_index_document(
        self,
        document_id: str,
        user_id: str,
        tenant_id: int,
        progress: ProgressSink | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> IndexingReport:
        """Index one document into the tenant-wide index.

        Previously stored vectors of the document are replaced. Unlike the
        knowledge-base run, every failure is raised to the caller.

        Returns:
            IndexingReport: A report with the single document's outcome.

        Raises:
            NotFound: If the document does not exist for the caller.
            EmptyInput: If the document has no text.
            IndexingCancelled: If cancel_event is set between batches.
            RAGPipelineError: Any other pipeline failure.
        """
        document = await self._document_store.get_document(document_id, user_id, tenant_id)
        api_key = await self._secrets_store.get_api_key(tenant_id)
        index_name = self.get_tenant_index_name(tenant_id)

        await self._emit(progress, IndexingProgress(message=f"Preparing index '{index_name}'...", document_id=document_id, document_total=1))
        await self._ensure_index(index_name)

        outcome = DocumentOutcome(document_id=document.id, filename=document.filename)
        try:
            await self._process_document(
                document=document,
                index_name=index_name,
                api_key=api_key,
                outcome=outcome,
                knowledge_base_id=None,
                progress=progress,
                document_number=1,
                document_total=1,
                cancel_event=cancel_event,
                replace_existing=True,
            )
        except RAGPipelineError as e:
            if not isinstance(e, IndexingCancelled):
                self.logging.error("Failed to index document '%s' ('%s'): %s", document.id, document.filename, e)
            raise
        outcome.state = DocumentState.INDEXED
        self.logging.info("Indexed document '%s' ('%s') into '%s': %d chunks.", document.id, document.filename, index_name, outcome.chunk_count)

        report = IndexingReport(index_name=index_name, outcomes=[outcome])
        await self._emit(progress, IndexingProgress(message=report.get_summary(), document_id=document_id, document_number=1, document_total=1, percent=100.0))
        return report

    ##########################################
    ############ DOCUMENT PIPELINE ###########
    ##########################################

    async def _process_document(
        self,
        document: Document,
        index_name: str,
        api_key: str,
        outcome: DocumentOutcome,
        knowledge_base_id: int | None,
        progress: ProgressSink | None,
        document_number: int,
        document_total: int,
        cancel_event: asyncio.Event | None,
        replace_existing: bool = False,
    ) -> int:
        """Chunk, embed and upsert a single document.

        Updates outcome.state as the document moves through the pipeline.

        Returns:
            int: Number of chunks upserted.

        Raises:
            EmptyInput: If the text produced no chunks.
            IndexingCancelled: If cancel_event is set between batches.
        """
        outcome.state = DocumentState.CHUNKING
        text = self._text_extractor.get_text(document)
        chunks = self._text_chunker.chunk(text, document.id)
        if not chunks:
            raise EmptyInput("empty document")

        outcome.state = DocumentState.EMBEDDING
        batch_size = self._embed_client.batch_size
        batch_total = math.ceil(len(chunks) / batch_size)
        vectors: list[EmbeddingVector] = []
        for batch_number, batch_start in enumerate(range(0, len(chunks), batch_size), start=1):
            if batch_number > 1:
                if self._is_cancelled(cancel_event):
                    raise IndexingCancelled(f"Indexing cancelled while embedding document '{document.id}'.")
                await self._sleep(self.batch_delay)

            batch = chunks[batch_start: batch_start + batch_size]
            await self._emit(progress, IndexingProgress(
                message=f"Embedding batch {batch_number}/{batch_total} of {document.filename}",
                document_id=document.id,
                document_number=document_number,
                document_total=document_total,
                batch_number=batch_number,
                batch_total=batch_total,
                percent=round((document_number - 1 + (batch_number - 1) / batch_total) / document_total * 100, 1),
            ))
            embeddings = await self._embed_client.do_embed_batch([chunk.text for chunk in batch], api_key=api_key)
            vectors.extend(
                EmbeddingVector(
                    id=chunk.id,
                    values=values,
                    metadata=VectorMetadata(
                        document_id=document.id,
                        chunk_index=chunk.index,
                        text=chunk.text,
                        user_id=document.user_id,
                        tenant_id=document.tenant_id,
                        filename=document.filename,
                        knowledge_base_id=knowledge_base_id,
                    ),
                )
                for chunk, values in zip(batch, embeddings)
            )

        outcome.state = DocumentState.UPSERTING
        await self._rag_client.do_upsert(index_name, vectors)
        if replace_existing:
            await self._delete_stale_vectors(index_name, document, chunk_count=len(chunks))
        outcome.chunk_count = len(chunks)
        return len(chunks)

    async def _delete_stale_vectors(self, index_name: str, document: Document, chunk_count: int) -> None:
        """Remove vectors left over from a previous, longer version of the document.

        Runs after a successful upsert, which has overwritten chunks 0..chunk_count-1.
        Chunk ids are contiguous, so every stored vector beyond that range is stale.
        """
        try:
            stored = await self._rag_client.do_count(
                index_name,
                filter=VectorFilter(tenant_id=document.tenant_id, user_id=document.user_id, document_id=document.id),
            )
            stale_ids = [make_chunk_id(document.id, index) for index in range(chunk_count, stored)]
            if stale_ids:
                await self._rag_client.do_delete_vectors(index_name, ids=stale_ids)
                self.logging.info("Deleted %d stale vector(s) of document '%s'.", len(stale_ids), document.id)
        except VectorStoreError as e:
            self.logging.warning("Could not delete previous vectors of document '%s': %s", document.id, e)

    async def _discard_removed_document(self, index_name: str, document: Document, knowledge_base_id: int) -> None:
        """Delete the vectors of a document whose membership was removed while it was indexed."""
        try:
            await self._rag_client.do_delete_vectors(
                index_name,
                filter=VectorFilter(
                    tenant_id=document.tenant_id,
                    user_id=document.user_id,
                    document_id=document.id,
                    knowledge_base_id=knowledge_base_id,
                ),
            )
            self.logging.info("Discarded vectors of document '%s', removed from knowledge base %d during indexing.", document.id, knowledge_base_id)
        except VectorStoreError as e:
            self.logging.warning("Could not discard vectors of removed document '%s' from '%s': %s", document.id, index_name, e)

    ##########################################
    ################ HELPERS #################
    ##########################################

    async def _ensure_index(self, index_name: str) -> None:
        """Create the index if needed; a refused creation is logged and the run proceeds."""
        try:
            await self._rag_client.do_ensure_index(
                index_name,
                dimension=self._embed_client.embed_dimension,
                metric=self._embed_client.embed_distance,
            )
        except VectorStoreError as e:
            self.logging.warning("Could not ensure index '%s', proceeding anyway: %s", index_name, e)

    @staticmethod
    def _is_cancelled(cancel_event: asyncio.Event | None) -> bool:
        return cancel_event is not None and cancel_event.is_set()

    async def _emit(self, progress: ProgressSink | None, event: IndexingProgress) -> None:
        """Hand an event to the progress sink. Sink failures never affect the run."""
        if progress is None:
            return
        try:
            result = progress(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self.logging.warning("Progress sink raised an error, ignoring: %s", e)
