"""Knowledge base router: management, indexing and questions against a knowledge base."""

import asyncio
from typing import AsyncGenerator

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import StreamingResponse

from server.models.requests import (
    AddDocumentsRequest,
    KnowledgeBaseCreateRequest,
    KnowledgeBaseUpdateRequest,
    QuestionRequest,
)
from shared.dependencies.auth import get_caller, verify_api_key
from shared.models.caller import CallerIdentity
from shared.models.document import KnowledgeBase
from shared.models.search import AnswerResult, QueryScope, RetrievalResult

knowledge_base_router = APIRouter(
    prefix="/knowledge-bases",
    tags=["Knowledge Bases"],
    dependencies=[Depends(verify_api_key)],
)


@knowledge_base_router.get("", response_model=list[KnowledgeBase])
async def list_knowledge_bases(request: Request, caller: CallerIdentity = Depends(get_caller)) -> list[KnowledgeBase]:
    return await request.app.state.knowledge_base_service.list_knowledge_bases(caller.user_id, caller.tenant_id)


@knowledge_base_router.post("", response_model=KnowledgeBase, status_code=status.HTTP_201_CREATED)
async def create_knowledge_base(
    request: Request, body: KnowledgeBaseCreateRequest, caller: CallerIdentity = Depends(get_caller)
) -> KnowledgeBase:
    return await request.app.state.knowledge_base_service.create_knowledge_base(
        name=body.name,
        user_id=caller.user_id,
        tenant_id=caller.tenant_id,
        description=body.description,
        top_k=body.top_k,
    )


@knowledge_base_router.get("/{knowledge_base_id}", response_model=KnowledgeBase)
async def get_knowledge_base(
    request: Request, knowledge_base_id: int, caller: CallerIdentity = Depends(get_caller)
) -> KnowledgeBase:
    return await request.app.state.knowledge_base_service.get_knowledge_base(knowledge_base_id, caller.user_id, caller.tenant_id)


@knowledge_base_router.put("/{knowledge_base_id}", response_model=KnowledgeBase)
async def update_knowledge_base(
    request: Request,
    knowledge_base_id: int,
    body: KnowledgeBaseUpdateRequest,
    caller: CallerIdentity = Depends(get_caller),
) -> KnowledgeBase:
    return await request.app.state.knowledge_base_service.update_knowledge_base(
        knowledge_base_id,
        caller.user_id,
        caller.tenant_id,
        name=body.name,
        description=body.description,
        top_k=body.top_k,
    )


@knowledge_base_router.delete("/{knowledge_base_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_knowledge_base(
    request: Request, knowledge_base_id: int, caller: CallerIdentity = Depends(get_caller)
) -> Response:
    await request.app.state.knowledge_base_service.delete_knowledge_base(knowledge_base_id, caller.user_id, caller.tenant_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@knowledge_base_router.post("/{knowledge_base_id}/documents", response_model=KnowledgeBase)
async def add_documents(
    request: Request,
    knowledge_base_id: int,
    body: AddDocumentsRequest,
    caller: CallerIdentity = Depends(get_caller),
) -> KnowledgeBase:
    return await request.app.state.knowledge_base_service.add_documents(
        knowledge_base_id, caller.user_id, caller.tenant_id, body.document_ids
    )


@knowledge_base_router.delete("/{knowledge_base_id}/documents/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_document(
    request: Request,
    knowledge_base_id: int,
    document_id: str,
    caller: CallerIdentity = Depends(get_caller),
) -> Response:
    await request.app.state.knowledge_base_service.remove_document(
        knowledge_base_id, caller.user_id, caller.tenant_id, document_id
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@knowledge_base_router.post("/{knowledge_base_id}/index")
async def index_knowledge_base(
    request: Request, knowledge_base_id: int, caller: CallerIdentity = Depends(get_caller)
) -> StreamingResponse:
    """Index the pending documents and stream progress messages as text lines.

    A client that disconnects cancels the run after the current batch.
    """
    # resolve before streaming so a missing knowledge base or credential gets its own status code
    await request.app.state.knowledge_base_service.get_knowledge_base(knowledge_base_id, caller.user_id, caller.tenant_id)
    await request.app.state.pipeline.secrets_store.get_api_key(caller.tenant_id)
    return StreamingResponse(
        _stream_indexing(request, knowledge_base_id, caller),
        media_type="text/plain",
    )


async def _stream_indexing(request: Request, knowledge_base_id: int, caller: CallerIdentity) -> AsyncGenerator[str, None]:
    logging = request.app.state.logging
    indexing_service = request.app.state.indexing_service
    queue: asyncio.Queue[str | None] = asyncio.Queue()
    cancel_event = asyncio.Event()

    async def run() -> None:
        try:
            await indexing_service.do_index_knowledge_base(
                knowledge_base_id=knowledge_base_id,
                user_id=caller.user_id,
                tenant_id=caller.tenant_id,
                progress=lambda event: queue.put_nowait(event.message),
                cancel_event=cancel_event,
            )
        except Exception as e:
            logging.error("Indexing of knowledge base %d aborted: %s", knowledge_base_id, e)
            queue.put_nowait(f"Error: {e}")
        finally:
            queue.put_nowait(None)

    task = asyncio.create_task(run())
    try:
        while True:
            message = await queue.get()
            if message is None:
                break
            yield message + "\n"
    finally:
        if not task.done():
            cancel_event.set()
        await task


@knowledge_base_router.post("/{knowledge_base_id}/query", response_model=RetrievalResult)
async def query_knowledge_base(
    request: Request,
    knowledge_base_id: int,
    body: QuestionRequest,
    caller: CallerIdentity = Depends(get_caller),
) -> RetrievalResult:
    request.app.state.logging.info(
        "Query received: knowledge_base=%d tenant=%d question=%r", knowledge_base_id, caller.tenant_id, body.question[:80]
    )
    scope = QueryScope.for_knowledge_base(knowledge_base_id, caller.user_id, caller.tenant_id)
    return await request.app.state.query_service.do_retrieve(body.question, scope, top_k=body.top_k)


@knowledge_base_router.post("/{knowledge_base_id}/answer", response_model=AnswerResult)
async def answer_knowledge_base(
    request: Request,
    knowledge_base_id: int,
    body: QuestionRequest,
    caller: CallerIdentity = Depends(get_caller),
) -> AnswerResult:
    request.app.state.logging.info(
        "Question received: knowledge_base=%d tenant=%d question=%r", knowledge_base_id, caller.tenant_id, body.question[:80]
    )
    scope = QueryScope.for_knowledge_base(knowledge_base_id, caller.user_id, caller.tenant_id)
    return await request.app.state.query_service.do_answer(body.question, scope, top_k=body.top_k)
