"""Shared fixtures: environment, an in-memory database and fake HTTP backends."""

import logging

import pytest
import pytest_asyncio
from cryptography.fernet import Fernet

from fakes import API_KEY, OPENAI_URL, QDRANT_URL, FakeBackend, SleepRecorder
from services.rag_pipeline.RAGPipeline import RAGPipeline
from shared.helper.ConcurrencyGuard import ConcurrencyGuard
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import ColorLogger


@pytest.fixture(autouse=True)
def env(monkeypatch, tmp_path):
    """Point every client at the fake backends and the database at memory."""
    values = {
        "ROOT_DIR": str(tmp_path),
        "LOG_LEVEL": "debug",
        "DATABASE_URL": "sqlite+aiosqlite://",
        "SECRETS_ENCRYPTION_KEY": Fernet.generate_key().decode("ascii"),
        "APP_API_KEY": API_KEY,
        "EMBED_ENGINE": "openai",
        "EMBED_OPENAI_BASE_URL": OPENAI_URL,
        "EMBED_OPENAI_API_KEY": "sk-fallback",
        "EMBED_MODEL": "text-embedding-3-small",
        "EMBED_DIMENSION": "6",
        "EMBED_BACKOFF_BASE": "1.0",
        "EMBED_BATCH_DELAY": "0",
        "LLM_ENGINE": "openai",
        "LLM_OPENAI_BASE_URL": OPENAI_URL,
        "LLM_OPENAI_API_KEY": "sk-fallback",
        "RAG_ENGINE": "qdrant",
        "RAG_QDRANT_BASE_URL": QDRANT_URL,
        "RAG_INDEX_BASE_NAME": "documents",
        "RAG_DEFAULT_TOP_K": "5",
    }
    for key in (
        "EMBED_BATCH_SIZE", "EMBED_MAX_ATTEMPTS", "RAG_UPSERT_BATCH_SIZE",
        "CHUNK_SIZE", "CHUNK_OVERLAP", "APP_STARTUP_HEALTHCHECK", "RAG_QDRANT_API_KEY",
    ):
        monkeypatch.delenv(key, raising=False)
    for key, value in values.items():
        monkeypatch.setenv(key, value)
    return values


@pytest.fixture
def helper_config() -> HelperConfig:
    return HelperConfig(logger=ColorLogger(logging.getLogger("rag_pipeline.tests")))


@pytest.fixture
def guard(helper_config) -> ConcurrencyGuard:
    return ConcurrencyGuard(helper_config=helper_config)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest_asyncio.fixture
async def pipeline(helper_config, backend, sleeps):
    """A booted pipeline wired to the fake backends, with waiting disabled."""
    pipeline = RAGPipeline(helper_config=helper_config)
    await pipeline.boot(transport=backend.transport())
    pipeline.embed_client._sleep = sleeps
    pipeline.indexing_service._sleep = sleeps
    yield pipeline
    await pipeline.close()
