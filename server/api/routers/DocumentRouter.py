"""Document router: single-document indexing and questions against one document."""

from fastapi import APIRouter, Depends, Request, Response, status

from server.models.requests import QuestionRequest
from server.models.responses import DocumentIndexedResponse
from shared.dependencies.auth import get_caller, verify_api_key
from shared.models.caller import CallerIdentity
from shared.models.progress import IndexingReport
from shared.models.search import AnswerResult, QueryScope

document_router = APIRouter(
    prefix="/documents",
    tags=["Documents"],
    dependencies=[Depends(verify_api_key)],
)


@document_router.post("/{document_id}/index", response_model=IndexingReport)
async def index_document(request: Request, document_id: str, caller: CallerIdentity = Depends(get_caller)) -> IndexingReport:
    """Chunk, embed and store one document in the tenant-wide index."""
    request.app.state.logging.info("Indexing document '%s' for tenant %d.", document_id, caller.tenant_id)
    return await request.app.state.indexing_service.do_index_document(document_id, caller.user_id, caller.tenant_id)


@document_router.post("/{document_id}/ask", response_model=AnswerResult)
async def ask_document(
    request: Request,
    document_id: str,
    body: QuestionRequest,
    caller: CallerIdentity = Depends(get_caller),
) -> AnswerResult:
    """Answer a question from the document's most relevant passages.

    found=False in the response means nothing relevant was retrieved.
    """
    request.app.state.logging.info(
        "Question received: document='%s' tenant=%d question=%r", document_id, caller.tenant_id, body.question[:80]
    )
    scope = QueryScope.for_document(document_id, caller.user_id, caller.tenant_id)
    return await request.app.state.query_service.do_answer(body.question, scope, top_k=body.top_k)


@document_router.get("/{document_id}/indexed", response_model=DocumentIndexedResponse)
async def is_document_indexed(request: Request, document_id: str, caller: CallerIdentity = Depends(get_caller)) -> DocumentIndexedResponse:
    is_indexed = await request.app.state.query_service.do_is_document_indexed(document_id, caller.user_id, caller.tenant_id)
    return DocumentIndexedResponse(document_id=document_id, is_indexed=is_indexed)


@document_router.delete("/{document_id}/embeddings", status_code=status.HTTP_204_NO_CONTENT)
async def delete_document_embeddings(request: Request, document_id: str, caller: CallerIdentity = Depends(get_caller)) -> Response:
    await request.app.state.knowledge_base_service.delete_document_embeddings(document_id, caller.user_id, caller.tenant_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
