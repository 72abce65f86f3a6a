import asyncio

import pytest

from fakes import make_document
from shared.errors import InvalidInput, NotFound
from shared.helper.ConcurrencyGuard import tenant_key

USER = "alice"
TENANT = 7


class TestKnowledgeBaseService:
    async def test_create_list_get_update(self, pipeline):
        service = pipeline.knowledge_base_service
        first = await service.create_knowledge_base("  Research  ", USER, TENANT, description="Papers")
        second = await service.create_knowledge_base("Contracts", USER, TENANT, top_k=3)
        await service.create_knowledge_base("Bob's", "bob", TENANT)

        assert first.name == "Research"
        assert first.top_k == 5
        assert first.index_name is None
        assert second.top_k == 3
        assert [kb.id for kb in await service.list_knowledge_bases(USER, TENANT)] == [second.id, first.id]

        updated = await service.update_knowledge_base(first.id, USER, TENANT, name="Papers", top_k=8)
        assert (updated.name, updated.description, updated.top_k) == ("Papers", "Papers", 8)
        assert (await service.get_knowledge_base(first.id, USER, TENANT)).name == "Papers"

    @pytest.mark.parametrize("name, top_k", [("", None), ("   ", None), ("Valid", 0)])
    async def test_invalid_input_is_rejected(self, pipeline, name, top_k):
        with pytest.raises(InvalidInput):
            await pipeline.knowledge_base_service.create_knowledge_base(name, USER, TENANT, top_k=top_k)

    async def test_other_owners_cannot_see_the_knowledge_base(self, pipeline):
        knowledge_base = await pipeline.knowledge_base_service.create_knowledge_base("Research", USER, TENANT)
        with pytest.raises(NotFound):
            await pipeline.knowledge_base_service.get_knowledge_base(knowledge_base.id, "bob", TENANT)
        with pytest.raises(NotFound):
            await pipeline.knowledge_base_service.get_knowledge_base(knowledge_base.id, USER, 8)

    async def test_add_documents_only_adds_owned_documents(self, pipeline):
        await pipeline.document_store.save_document(make_document("doc1", "The zebra is striped."))
        await pipeline.document_store.save_document(make_document("bobs", "Bob's text.", user_id="bob"))
        knowledge_base = await pipeline.knowledge_base_service.create_knowledge_base("Research", USER, TENANT)

        updated = await pipeline.knowledge_base_service.add_documents(
            knowledge_base.id, USER, TENANT, ["doc1", "bobs", "missing", "doc1"]
        )

        assert [(doc.document_id, doc.filename, doc.is_indexed) for doc in updated.documents] == [("doc1", "doc1.txt", False)]

    async def test_adding_again_keeps_the_indexed_flag(self, pipeline):
        await pipeline.document_store.save_document(make_document("doc1", "The zebra is striped."))
        knowledge_base = await pipeline.knowledge_base_service.create_knowledge_base("Research", USER, TENANT)
        await pipeline.knowledge_base_service.add_documents(knowledge_base.id, USER, TENANT, ["doc1"])
        await pipeline.indexing_service.do_index_knowledge_base(knowledge_base.id, USER, TENANT)

        updated = await pipeline.knowledge_base_service.add_documents(knowledge_base.id, USER, TENANT, ["doc1"])

        assert [doc.is_indexed for doc in updated.documents] == [True]

    async def test_remove_document_deletes_its_vectors(self, pipeline, backend):
        await pipeline.document_store.save_document(make_document("doc1", "The zebra is striped."))
        await pipeline.document_store.save_document(make_document("doc2", "The giraffe is tall."))
        knowledge_base = await pipeline.knowledge_base_service.create_knowledge_base("Zoo", USER, TENANT)
        await pipeline.knowledge_base_service.add_documents(knowledge_base.id, USER, TENANT, ["doc1", "doc2"])
        report = await pipeline.indexing_service.do_index_knowledge_base(knowledge_base.id, USER, TENANT)

        await asyncio.wait_for(
            pipeline.knowledge_base_service.remove_document(knowledge_base.id, USER, TENANT, "doc1"), timeout=5
        )

        assert backend.qdrant.get_vector_ids(report.index_name) == ["doc2-chunk-0"]
        stored = await pipeline.knowledge_base_service.get_knowledge_base(knowledge_base.id, USER, TENANT)
        assert [doc.document_id for doc in stored.documents] == ["doc2"]

    async def test_remove_unknown_membership_is_not_found(self, pipeline):
        knowledge_base = await pipeline.knowledge_base_service.create_knowledge_base("Zoo", USER, TENANT)
        with pytest.raises(NotFound):
            await pipeline.knowledge_base_service.remove_document(knowledge_base.id, USER, TENANT, "doc1")

    async def test_delete_removes_index_and_record(self, pipeline, backend):
        await pipeline.document_store.save_document(make_document("doc1", "The zebra is striped."))
        knowledge_base = await pipeline.knowledge_base_service.create_knowledge_base("Zoo", USER, TENANT)
        await pipeline.knowledge_base_service.add_documents(knowledge_base.id, USER, TENANT, ["doc1"])
        report = await pipeline.indexing_service.do_index_knowledge_base(knowledge_base.id, USER, TENANT)
        assert report.index_name in backend.qdrant.collections

        await asyncio.wait_for(pipeline.knowledge_base_service.delete_knowledge_base(knowledge_base.id, USER, TENANT), timeout=5)

        assert report.index_name not in backend.qdrant.collections
        with pytest.raises(NotFound):
            await pipeline.knowledge_base_service.get_knowledge_base(knowledge_base.id, USER, TENANT)
        # the document itself is untouched
        assert (await pipeline.document_store.get_document("doc1", USER, TENANT)).id == "doc1"

    async def test_delete_never_indexed_knowledge_base(self, pipeline, backend):
        knowledge_base = await pipeline.knowledge_base_service.create_knowledge_base("Zoo", USER, TENANT)
        await pipeline.knowledge_base_service.delete_knowledge_base(knowledge_base.id, USER, TENANT)
        assert await pipeline.knowledge_base_service.list_knowledge_bases(USER, TENANT) == []

    async def test_delete_document_embeddings(self, pipeline):
        await pipeline.document_store.save_document(make_document("doc1", "The zebra is striped."))
        await pipeline.indexing_service.do_index_document("doc1", USER, TENANT)

        await pipeline.knowledge_base_service.delete_document_embeddings("doc1", USER, TENANT)

        assert await pipeline.query_service.do_is_document_indexed("doc1", USER, TENANT) is False

    async def test_concurrent_first_runs_share_one_index_name(self, pipeline):
        await pipeline.document_store.save_document(make_document("doc1", "The zebra is striped."))
        knowledge_base = await pipeline.knowledge_base_service.create_knowledge_base("Zoo", USER, TENANT)

        names = await asyncio.gather(*(
            pipeline.knowledge_base_store.assign_index_name(knowledge_base.id, USER, TENANT) for _ in range(3)
        ))

        assert len(set(names)) == 1

    async def test_vector_cleanup_runs_outside_the_tenant_guard(self, pipeline, backend):
        await pipeline.document_store.save_document(make_document("doc1", "The zebra is striped."))
        knowledge_base = await pipeline.knowledge_base_service.create_knowledge_base("Zoo", USER, TENANT)
        await pipeline.knowledge_base_service.add_documents(knowledge_base.id, USER, TENANT, ["doc1"])
        await pipeline.indexing_service.do_index_knowledge_base(knowledge_base.id, USER, TENANT)
        held_during_deletes = []

        def record_guard(request):
            if request.method == "DELETE" or request.url.path.endswith("/points/delete"):
                held_during_deletes.append(pipeline.guard.is_held(tenant_key(TENANT)))

        backend.qdrant.observers.append(record_guard)
        await pipeline.knowledge_base_service.remove_document(knowledge_base.id, USER, TENANT, "doc1")
        await pipeline.knowledge_base_service.delete_knowledge_base(knowledge_base.id, USER, TENANT)

        assert held_during_deletes == [False, False]
