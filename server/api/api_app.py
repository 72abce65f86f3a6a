"""FastAPI application entry point for the RAG pipeline API."""

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from server.api.routers.DocumentRouter import document_router
from server.api.routers.KnowledgeBaseRouter import knowledge_base_router
from server.models.responses import ErrorResponse
from services.rag_pipeline.RAGPipeline import RAGPipeline
from shared.errors import (
    ConfigurationError,
    EmptyInput,
    IndexingCancelled,
    InvalidInput,
    NotFound,
    ProviderError,
    RAGPipelineError,
    RateLimited,
    UnsupportedContentType,
    VectorStoreError,
)
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import setup_logging

app_version = os.getenv("APP_VERSION", "unknown")

# first match wins, so subclasses come before their bases
_ERROR_STATUS: list[tuple[type[RAGPipelineError], int]] = [
    (NotFound, 404),
    (IndexingCancelled, 409),
    (EmptyInput, 422),
    (InvalidInput, 422),
    (UnsupportedContentType, 422),
    (RateLimited, 429),
    (ProviderError, 502),
    (VectorStoreError, 502),
    (ConfigurationError, 503),
]


def get_status_code(exc: RAGPipelineError) -> int:
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 500


def create_app(transport: httpx.AsyncBaseTransport | None = None) -> FastAPI:
    """Build the API application.

    Args:
        transport (httpx.AsyncBaseTransport | None): Custom transport for the backend clients.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Manage application startup and shutdown."""
        app.state.logging = setup_logging()
        app.state.config = HelperConfig(logger=app.state.logging)

        # Initialise clients, stores and services
        pipeline = RAGPipeline(helper_config=app.state.config)
        await pipeline.boot(
            transport=transport,
            healthcheck=app.state.config.get_bool_val("APP_STARTUP_HEALTHCHECK", default=False),
        )

        # Wire up services
        app.state.pipeline = pipeline
        app.state.indexing_service = pipeline.indexing_service
        app.state.query_service = pipeline.query_service
        app.state.knowledge_base_service = pipeline.knowledge_base_service

        app.state.logging.info("RAG pipeline API ready.")
        yield

        # Shutdown
        await pipeline.close()
        app.state.logging.info("RAG pipeline API shut down.")

    app = FastAPI(
        title="RAG Pipeline",
        description="Document indexing and retrieval-augmented question answering.",
        version=app_version,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RAGPipelineError)
    async def handle_pipeline_error(request: Request, exc: RAGPipelineError) -> JSONResponse:
        status_code = get_status_code(exc)
        if status_code >= 500:
            request.app.state.logging.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc)
        headers = {}
        if isinstance(exc, RateLimited) and exc.retry_after is not None:
            headers["Retry-After"] = str(max(int(exc.retry_after), 1))
        return JSONResponse(
            status_code=status_code,
            content=ErrorResponse(detail=str(exc), error=type(exc).__name__).model_dump(),
            headers=headers or None,
        )

    @app.exception_handler(httpx.TransportError)
    async def handle_transport_error(request: Request, exc: httpx.TransportError) -> JSONResponse:
        request.app.state.logging.error("Backend unreachable on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=502, content=ErrorResponse(detail="A backend service is unreachable.", error=type(exc).__name__).model_dump())

    app.include_router(knowledge_base_router)
    app.include_router(document_router)
    return app


app = create_app()


# Server Start
if __name__ == "__main__":
    # start server
    import uvicorn
    logging = setup_logging()
    logging.info(f"Starting RAG pipeline API Server v{app_version} from root dir: {os.getenv('ROOT_DIR', os.getcwd())} on port 8000...")
    uvicorn.run(app, host="0.0.0.0", port=8000)
