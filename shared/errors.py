"""Error taxonomy for the RAG indexing and query pipeline.

Hierarchy:
  RAGPipelineError: base class for every pipeline failure.
    ConfigurationError: missing credentials / settings; fatal before any network call.
    RateLimited: provider kept rate limiting after all retry attempts.
    ProviderError: non-retryable upstream failure (carries status and body).
      EmbeddingProviderError
      LLMProviderError
    VectorStoreError: vector store rejected an index-admin or write request.
      VectorUpsertError: a specific upsert sub-batch failed.
    EmptyInput: document text normalised to nothing.
    UnsupportedContentType: no text extractor for the document's content type.
    NotFound: document or knowledge base missing for the caller.
    IndexingCancelled: an indexing run observed its cancellation signal.
    InvalidInput: a caller-supplied value failed validation (also a ValueError).
"""


class RAGPipelineError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(RAGPipelineError):
    """Raised when a required setting or credential is not configured."""


class RateLimited(RAGPipelineError):
    """Raised when a provider still rate limits after the maximum number of attempts.

    Attributes:
        attempts (int): Number of requests that were sent before giving up.
        retry_after (float | None): Last retry hint the provider supplied, in seconds.
    """

    def __init__(self, message: str, attempts: int, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.retry_after = retry_after


class ProviderError(RAGPipelineError):
    """Raised on a non-retryable upstream failure.

    Attributes:
        status_code (int | None): HTTP status of the failed response, None for transport errors.
        body (str): Response body (or transport error text) for diagnostics.
    """

    def __init__(self, message: str, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class EmbeddingProviderError(ProviderError):
    """Raised when the embedding provider fails for a reason other than rate limiting."""


class LLMProviderError(ProviderError):
    """Raised when the answer generator fails."""


class VectorStoreError(RAGPipelineError):
    """Raised when the vector store rejects a request.

    Attributes:
        status_code (int | None): HTTP status of the failed response.
        body (str): Response body for diagnostics.
    """

    def __init__(self, message: str, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class VectorUpsertError(VectorStoreError):
    """Raised when one upsert sub-batch fails. Earlier sub-batches stay committed."""

    def __init__(self, message: str, batch_index: int, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message, status_code=status_code, body=body)
        self.batch_index = batch_index


class EmptyInput(RAGPipelineError):
    """Raised when a document produces no text to index."""


class UnsupportedContentType(RAGPipelineError):
    """Raised when text cannot be extracted from a document's content type."""


class NotFound(RAGPipelineError):
    """Raised when a document or knowledge base does not exist for the caller."""


class IndexingCancelled(RAGPipelineError):
    """Raised inside an indexing run once its cancellation signal is set."""


class InvalidInput(RAGPipelineError, ValueError):
    """Raised when a caller-supplied value fails service-level validation."""
