import asyncio
import re

import httpx
import pytest

from fakes import make_document, make_sentences
from shared.errors import ConfigurationError, EmptyInput, NotFound, VectorUpsertError
from shared.models.progress import DocumentState
from shared.models.search import QueryScope

USER = "alice"
TENANT = 7
TENANT_INDEX = "documents-tenant7"


async def create_knowledge_base(pipeline, documents, name="Research"):
    for document in documents:
        await pipeline.document_store.save_document(document)
    knowledge_base = await pipeline.knowledge_base_service.create_knowledge_base(name, USER, TENANT)
    return await pipeline.knowledge_base_service.add_documents(
        knowledge_base.id, USER, TENANT, [document.id for document in documents]
    )


class TestDocumentIndexing:
    async def test_document_is_chunked_embedded_and_retrievable(self, pipeline, backend):
        await pipeline.document_store.save_document(make_document("doc42", make_sentences(80, keyword_at=50)))

        report = await pipeline.indexing_service.do_index_document("doc42", USER, TENANT)

        assert report.index_name == TENANT_INDEX
        assert report.outcomes[0].state == DocumentState.INDEXED
        assert report.outcomes[0].chunk_count == 4
        assert backend.qdrant.get_vector_ids(TENANT_INDEX) == [f"doc42-chunk-{i}" for i in range(4)]

        retrieval = await pipeline.query_service.do_retrieve(
            "Which sentence mentions the zebra?", QueryScope.for_document("doc42", USER, TENANT), top_k=1
        )
        assert [p.vector_id for p in retrieval.passages] == ["doc42-chunk-2"]
        assert retrieval.passages[0].chunk_index == 2
        assert "sentence 050 about zebra" in retrieval.passages[0].text

    async def test_vectors_carry_owner_metadata(self, pipeline, backend):
        await pipeline.document_store.save_document(make_document("doc1", "The zebra is striped."))
        await pipeline.indexing_service.do_index_document("doc1", USER, TENANT)

        (point,) = backend.qdrant.get_points(TENANT_INDEX).values()
        assert point["payload"]["user_id"] == USER
        assert point["payload"]["tenant_id"] == TENANT
        assert point["payload"]["document_id"] == "doc1"
        assert point["payload"]["knowledge_base_id"] is None
        assert point["payload"]["text"] == "The zebra is striped."

    async def test_reindexing_replaces_stale_vectors(self, pipeline, backend):
        await pipeline.document_store.save_document(make_document("doc42", make_sentences(80)))
        await pipeline.indexing_service.do_index_document("doc42", USER, TENANT)

        await pipeline.document_store.save_document(make_document("doc42", "Now it is short."))
        await pipeline.indexing_service.do_index_document("doc42", USER, TENANT)

        assert backend.qdrant.get_vector_ids(TENANT_INDEX) == ["doc42-chunk-0"]

    async def test_failed_reindex_keeps_the_previous_vectors(self, pipeline, backend):
        await pipeline.document_store.save_document(make_document("doc42", make_sentences(80, keyword_at=50)))
        await pipeline.indexing_service.do_index_document("doc42", USER, TENANT)
        backend.qdrant.fail_upsert_calls = {backend.qdrant.upsert_calls + 1}

        await pipeline.document_store.save_document(make_document("doc42", "Now it is short."))
        with pytest.raises(VectorUpsertError):
            await pipeline.indexing_service.do_index_document("doc42", USER, TENANT)

        assert backend.qdrant.get_vector_ids(TENANT_INDEX) == [f"doc42-chunk-{i}" for i in range(4)]
        retrieval = await pipeline.query_service.do_retrieve(
            "zebra", QueryScope.for_document("doc42", USER, TENANT), top_k=1
        )
        assert [p.vector_id for p in retrieval.passages] == ["doc42-chunk-2"]

    async def test_reindexing_same_text_deletes_nothing(self, pipeline, backend):
        deletes = []
        backend.qdrant.observers.append(lambda request: deletes.append(request) if request.url.path.endswith("/points/delete") else None)
        await pipeline.document_store.save_document(make_document("doc42", make_sentences(80)))

        await pipeline.indexing_service.do_index_document("doc42", USER, TENANT)
        await pipeline.indexing_service.do_index_document("doc42", USER, TENANT)

        assert deletes == []
        assert backend.qdrant.get_vector_ids(TENANT_INDEX) == [f"doc42-chunk-{i}" for i in range(4)]

    async def test_empty_document_raises(self, pipeline):
        await pipeline.document_store.save_document(make_document("blank", "   "))
        with pytest.raises(EmptyInput):
            await pipeline.indexing_service.do_index_document("blank", USER, TENANT)

    async def test_foreign_document_is_not_found(self, pipeline):
        await pipeline.document_store.save_document(make_document("bobs", "Bob's text.", user_id="bob"))
        with pytest.raises(NotFound):
            await pipeline.indexing_service.do_index_document("bobs", USER, TENANT)

    async def test_tenant_key_is_used_for_embedding(self, pipeline, backend):
        await pipeline.secrets_store.set_api_key(TENANT, "sk-tenant-7")
        await pipeline.document_store.save_document(make_document("doc1", "The zebra is striped."))

        await pipeline.indexing_service.do_index_document("doc1", USER, TENANT)

        assert backend.openai.authorization_headers == ["Bearer sk-tenant-7"]


class TestKnowledgeBaseIndexing:
    async def test_indexes_pending_documents_and_flags_them(self, pipeline, backend):
        knowledge_base = await create_knowledge_base(pipeline, [
            make_document("doc1", "The giraffe budget is approved."),
            make_document("doc2", "The roadmap is ready."),
        ])

        report = await pipeline.indexing_service.do_index_knowledge_base(knowledge_base.id, USER, TENANT)

        assert [o.state for o in report.outcomes] == [DocumentState.INDEXED, DocumentState.INDEXED]
        assert report.get_summary() == "Indexing completed!"
        stored = await pipeline.knowledge_base_store.get(knowledge_base.id, USER, TENANT)
        assert all(doc.is_indexed for doc in stored.documents)
        assert backend.qdrant.get_vector_ids(report.index_name, knowledge_base_id=knowledge_base.id) == [
            "doc1-chunk-0", "doc2-chunk-0",
        ]

    async def test_rerun_only_processes_new_documents(self, pipeline, backend):
        knowledge_base = await create_knowledge_base(pipeline, [
            make_document("doc1", "The giraffe budget is approved."),
            make_document("doc2", "The roadmap is ready."),
        ])
        await pipeline.indexing_service.do_index_knowledge_base(knowledge_base.id, USER, TENANT)
        assert len(backend.openai.embedding_requests) == 2

        await pipeline.document_store.save_document(make_document("doc3", "An invoice arrived."))
        await pipeline.knowledge_base_service.add_documents(knowledge_base.id, USER, TENANT, ["doc3"])
        report = await pipeline.indexing_service.do_index_knowledge_base(knowledge_base.id, USER, TENANT)

        assert report.skipped == 2
        assert [o.document_id for o in report.outcomes] == ["doc3"]
        assert backend.openai.embedding_requests[2:] == [["An invoice arrived."]]

    async def test_nothing_pending_reports_already_indexed(self, pipeline, backend):
        knowledge_base = await create_knowledge_base(pipeline, [make_document("doc1", "The roadmap is ready.")])
        await pipeline.indexing_service.do_index_knowledge_base(knowledge_base.id, USER, TENANT)
        messages = []

        report = await pipeline.indexing_service.do_index_knowledge_base(
            knowledge_base.id, USER, TENANT, progress=lambda event: messages.append(event.message)
        )

        assert report.outcomes == []
        assert report.skipped == 1
        assert messages == ["All documents are already indexed."]

    async def test_index_name_is_generated_once(self, pipeline):
        knowledge_base = await create_knowledge_base(pipeline, [make_document("doc1", "The roadmap is ready.")])
        first = await pipeline.indexing_service.do_index_knowledge_base(knowledge_base.id, USER, TENANT)

        await pipeline.document_store.save_document(make_document("doc2", "The budget is fine."))
        await pipeline.knowledge_base_service.add_documents(knowledge_base.id, USER, TENANT, ["doc2"])
        second = await pipeline.indexing_service.do_index_knowledge_base(knowledge_base.id, USER, TENANT)

        assert re.fullmatch(rf"rag-group-{knowledge_base.id}-[0-9a-f]{{32}}", first.index_name)
        assert second.index_name == first.index_name
        stored = await pipeline.knowledge_base_store.get(knowledge_base.id, USER, TENANT)
        assert stored.index_name == first.index_name

    async def test_failing_document_does_not_stop_the_run(self, pipeline):
        knowledge_base = await create_knowledge_base(pipeline, [
            make_document("blank", "   "),
            make_document("doc2", "The roadmap is ready."),
        ])

        report = await pipeline.indexing_service.do_index_knowledge_base(knowledge_base.id, USER, TENANT)

        blank, good = report.outcomes
        assert blank.state == DocumentState.FAILED
        assert blank.error == "empty document"
        assert good.state == DocumentState.INDEXED
        assert report.get_summary() == "Indexing completed with 1 failure(s)."
        stored = await pipeline.knowledge_base_store.get(knowledge_base.id, USER, TENANT)
        assert {doc.document_id: doc.is_indexed for doc in stored.documents} == {"blank": False, "doc2": True}

    async def test_unsupported_content_type_fails_the_document(self, pipeline):
        knowledge_base = await create_knowledge_base(pipeline, [
            make_document("scan", None, content_type="application/pdf", content=b"%PDF-1.7"),
        ])

        report = await pipeline.indexing_service.do_index_knowledge_base(knowledge_base.id, USER, TENANT)

        assert report.outcomes[0].state == DocumentState.FAILED
        assert "application/pdf" in report.outcomes[0].error

    async def test_rate_limited_document_stays_pending(self, pipeline, backend, sleeps):
        knowledge_base = await create_knowledge_base(pipeline, [make_document("doc1", "The roadmap is ready.")])
        backend.openai.rate_limit_remaining = 100

        report = await pipeline.indexing_service.do_index_knowledge_base(knowledge_base.id, USER, TENANT)

        assert report.outcomes[0].state == DocumentState.FAILED
        assert len(backend.openai.embedding_requests) == 5
        stored = await pipeline.knowledge_base_store.get(knowledge_base.id, USER, TENANT)
        assert stored.documents[0].is_indexed is False

    async def test_failed_index_creation_is_logged_and_run_continues(self, pipeline, backend):
        knowledge_base = await create_knowledge_base(pipeline, [make_document("doc1", "The roadmap is ready.")])
        backend.qdrant.create_status = 500

        report = await pipeline.indexing_service.do_index_knowledge_base(knowledge_base.id, USER, TENANT)

        # the upsert then fails on the missing index and only this document fails
        assert report.outcomes[0].state == DocumentState.FAILED
        assert "404" in report.outcomes[0].error

    async def test_unreachable_vector_store_aborts_the_run(self, pipeline, backend):
        knowledge_base = await create_knowledge_base(pipeline, [make_document("doc1", "The roadmap is ready.")])
        backend.qdrant.unreachable = True

        with pytest.raises(httpx.ConnectError):
            await pipeline.indexing_service.do_index_knowledge_base(knowledge_base.id, USER, TENANT)

    async def test_missing_credentials_abort_before_any_request(self, monkeypatch, pipeline, backend):
        knowledge_base = await create_knowledge_base(pipeline, [make_document("doc1", "The roadmap is ready.")])
        monkeypatch.delenv("EMBED_OPENAI_API_KEY")

        with pytest.raises(ConfigurationError):
            await pipeline.indexing_service.do_index_knowledge_base(knowledge_base.id, USER, TENANT)
        assert backend.openai.embedding_requests == []
        assert backend.qdrant.collections == {}

    async def test_unknown_knowledge_base_is_not_found(self, pipeline):
        with pytest.raises(NotFound):
            await pipeline.indexing_service.do_index_knowledge_base(999, USER, TENANT)

    async def test_foreign_knowledge_base_is_not_found(self, pipeline):
        knowledge_base = await create_knowledge_base(pipeline, [make_document("doc1", "The roadmap is ready.")])
        with pytest.raises(NotFound):
            await pipeline.indexing_service.do_index_knowledge_base(knowledge_base.id, "bob", TENANT)

    async def test_document_removed_during_the_run_leaves_no_vectors(self, pipeline, backend):
        knowledge_base = await create_knowledge_base(pipeline, [
            make_document("doc1", "The zebra is striped."),
            make_document("doc2", "The giraffe is tall."),
        ])
        removals = []

        async def remove_while_embedding(event):
            if event.message == "Embedding batch 1/1 of doc1.txt":
                await pipeline.knowledge_base_service.remove_document(knowledge_base.id, USER, TENANT, "doc1")
                removals.append("doc1")

        report = await pipeline.indexing_service.do_index_knowledge_base(
            knowledge_base.id, USER, TENANT, progress=remove_while_embedding
        )

        assert removals == ["doc1"]
        assert report.removed == 1
        assert [o.document_id for o in report.outcomes] == ["doc2"]
        assert backend.qdrant.get_vector_ids(report.index_name) == ["doc2-chunk-0"]
        stored = await pipeline.knowledge_base_store.get(knowledge_base.id, USER, TENANT)
        assert [(doc.document_id, doc.is_indexed) for doc in stored.documents] == [("doc2", True)]

    async def test_progress_is_reported_through_async_sinks(self, pipeline):
        knowledge_base = await create_knowledge_base(pipeline, [make_document("doc1", "The roadmap is ready.")])
        events = []

        async def sink(event):
            events.append(event)

        await pipeline.indexing_service.do_index_knowledge_base(knowledge_base.id, USER, TENANT, progress=sink)

        messages = [event.message for event in events]
        assert "Processing document 1/1: doc1.txt" in messages
        assert "Embedding batch 1/1 of doc1.txt" in messages
        assert messages[-1] == "Indexing completed!"
        assert events[-1].percent == 100.0

    async def test_failing_progress_sink_is_ignored(self, pipeline):
        knowledge_base = await create_knowledge_base(pipeline, [make_document("doc1", "The roadmap is ready.")])

        def broken_sink(event):
            raise RuntimeError("client went away")

        report = await pipeline.indexing_service.do_index_knowledge_base(
            knowledge_base.id, USER, TENANT, progress=broken_sink
        )

        assert report.outcomes[0].state == DocumentState.INDEXED


class TestCancellation:
    async def test_cancel_between_documents(self, pipeline, backend):
        knowledge_base = await create_knowledge_base(pipeline, [
            make_document("doc1", "The giraffe budget is approved."),
            make_document("doc2", "The roadmap is ready."),
        ])
        cancel_event = asyncio.Event()

        def sink(event):
            if event.message.startswith("Processing document 1/"):
                cancel_event.set()

        report = await pipeline.indexing_service.do_index_knowledge_base(
            knowledge_base.id, USER, TENANT, progress=sink, cancel_event=cancel_event
        )

        assert report.cancelled is True
        assert [o.document_id for o in report.outcomes] == ["doc1"]
        assert report.get_summary() == "Indexing cancelled after 1 document(s)."
        stored = await pipeline.knowledge_base_store.get(knowledge_base.id, USER, TENANT)
        assert {doc.document_id: doc.is_indexed for doc in stored.documents} == {"doc1": True, "doc2": False}

    async def test_cancel_between_batches_leaves_document_pending(self, pipeline, backend):
        knowledge_base = await create_knowledge_base(pipeline, [make_document("doc42", make_sentences(80))])
        pipeline.embed_client.batch_size = 1
        cancel_event = asyncio.Event()

        def sink(event):
            if event.message.startswith("Embedding batch 1/4"):
                cancel_event.set()

        report = await pipeline.indexing_service.do_index_knowledge_base(
            knowledge_base.id, USER, TENANT, progress=sink, cancel_event=cancel_event
        )

        assert report.cancelled is True
        assert report.outcomes == []
        assert len(backend.openai.embedding_requests) == 1
        assert backend.qdrant.get_vector_ids(report.index_name) == []
        stored = await pipeline.knowledge_base_store.get(knowledge_base.id, USER, TENANT)
        assert stored.documents[0].is_indexed is False

    async def test_cancelled_run_resumes_where_it_stopped(self, pipeline, backend):
        knowledge_base = await create_knowledge_base(pipeline, [
            make_document("doc1", "The giraffe budget is approved."),
            make_document("doc2", "The roadmap is ready."),
        ])
        cancel_event = asyncio.Event()
        cancel_event.set()
        cancelled = await pipeline.indexing_service.do_index_knowledge_base(
            knowledge_base.id, USER, TENANT, cancel_event=cancel_event
        )
        assert cancelled.outcomes == []

        report = await pipeline.indexing_service.do_index_knowledge_base(knowledge_base.id, USER, TENANT)

        assert [o.document_id for o in report.outcomes] == ["doc1", "doc2"]
        assert report.cancelled is False
