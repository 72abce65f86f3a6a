from abc import abstractmethod
import asyncio

import httpx
from shared.clients.ClientInterface import ClientInterface
from shared.errors import EmbeddingProviderError, RAGPipelineError, RateLimited

from shared.helper.HelperConfig import HelperConfig

EMBED_BATCH_SIZE = 50       # max texts per embedding request
EMBED_MAX_ATTEMPTS = 5      # total requests per batch while rate limited
EMBED_BACKOFF_BASE = 1.0    # seconds; doubled after every rate-limited attempt


class EmbedClientInterface(ClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

        # model and embedding config
        self.embed_model = helper_config.get_string_val(f"{self.get_client_type().upper()}_MODEL", default="text-embedding-3-small")
        self.embed_dimension = int(helper_config.get_number_val(f"{self.get_client_type().upper()}_DIMENSION", default=1536))
        self.embed_distance = helper_config.get_string_val(f"{self.get_client_type().upper()}_DISTANCE", default="Cosine")

        # batching and retry config
        self.batch_size = int(helper_config.get_number_val(f"{self.get_client_type().upper()}_BATCH_SIZE", default=EMBED_BATCH_SIZE))
        self.max_attempts = int(helper_config.get_number_val(f"{self.get_client_type().upper()}_MAX_ATTEMPTS", default=EMBED_MAX_ATTEMPTS))
        self.backoff_base = float(helper_config.get_number_val(f"{self.get_client_type().upper()}_BACKOFF_BASE", default=EMBED_BACKOFF_BASE))
        if self.batch_size < 1 or self.max_attempts < 1:
            raise ValueError("EMBED_BATCH_SIZE and EMBED_MAX_ATTEMPTS must be at least 1.")

        # replaced in tests to skip real waiting
        self._sleep = asyncio.sleep

    ##########################################
    ############### CHECKER ##################
    ##########################################

    @abstractmethod
    def is_rate_limited(self, response: httpx.Response) -> bool:
        """
        Returns True if the response signals that the caller is being rate limited.

        Raises:
            NotImplementedError: If the method is not implemented in a subclass.
        """
        pass

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "rag"
        """
        return "embed"

    def _get_error_class(self) -> type[RAGPipelineError]:
        return EmbeddingProviderError

    def get_backoff_delay(self, attempt: int) -> float:
        """
        Returns the computed wait before retrying after the given (1-based) attempt.

        Args:
            attempt (int): Number of the attempt that was rate limited.

        Returns:
            float: backoff_base * 2^(attempt - 1) seconds.
        """
        return self.backoff_base * (2 ** (attempt - 1))

    ################ ENDPOINTS ##################
    @abstractmethod
    def get_endpoint_embedding(self) -> str:
        """
        Returns the endpoint path for embedding requests.

        Returns:
            str: The endpoint path for embedding requests (e.g. "/embeddings")

        Raises:
            NotImplementedError: If the method is not implemented in a subclass.
        """
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_embed_payload(self, texts: list[str]) -> dict:
        """Build the backend-specific request body for an embedding request.

        Args:
            texts (list[str]): The texts to embed.

        Returns:
            dict: JSON-serialisable request body (e.g. {"model": "...", "input": [...]}).

        Raises:
            NotImplementedError: If the method is not implemented in a subclass.
        """
        pass

    ##########################################
    ################# OTHER ##################
    ##########################################

    @abstractmethod
    def extract_retry_after(self, response: httpx.Response) -> float | None:
        """Extract the provider's retry hint from a rate-limited response.

        Args:
            response (httpx.Response): The rate-limited response.

        Returns:
            float | None: Seconds to wait, or None if the provider gave no usable hint.

        Raises:
            NotImplementedError: If the method is not implemented in a subclass.
        """
        pass

    @abstractmethod
    def extract_embeddings_from_response(self, response_data: dict) -> list[list[float]]:
        """Extract embedding vectors from a raw embedding API response.

        Args:
            response_data (dict): The parsed JSON response body.

        Returns:
            list[list[float]]: Embedding vectors in the same order as the input texts.

        Raises:
            ValueError: If the response format is invalid or embeddings are empty.
            NotImplementedError: If the method is not implemented in a subclass.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_embed_one(self, text: str, api_key: str | None = None) -> list[float]:
        """Embed a single text (a batch of size 1).

        Args:
            text (str): The text to embed.
            api_key (str | None): Tenant credential; the configured key is used when None.

        Returns:
            list[float]: The embedding vector.
        """
        vectors = await self.do_embed_batch([text], api_key=api_key)
        return vectors[0]

    async def do_embed_batch(self, texts: list[str], api_key: str | None = None) -> list[list[float]]:
        """Embed texts, one provider request per batch of at most batch_size texts.

        Args:
            texts (list[str]): Texts to embed, in order.
            api_key (str | None): Tenant credential; the configured key is used when None.

        Returns:
            list[list[float]]: One vector per input text, in input order.

        Raises:
            RateLimited: If a batch is still rate limited after max_attempts requests.
            EmbeddingProviderError: On any other failed request or a malformed response.
        """
        vectors: list[list[float]] = []
        for batch_start in range(0, len(texts), self.batch_size):
            batch = texts[batch_start: batch_start + self.batch_size]
            vectors.extend(await self._do_embed_request(batch, api_key))
        return vectors

    async def _do_embed_request(self, texts: list[str], api_key: str | None) -> list[list[float]]:
        """Send one embedding request, retrying while rate limited."""
        body = self.get_embed_payload(texts)
        retry_after: float | None = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                response = await self.do_request(
                    method="POST",
                    endpoint=self.get_endpoint_embedding(),
                    json=body,
                    api_key_override=api_key,
                )
            except httpx.TransportError as e:
                self.logging.error("Embedding request could not be sent: %s", e)
                raise EmbeddingProviderError(f"Embedding request could not be sent: {e}", body=str(e)) from e

            if self.is_rate_limited(response):
                retry_after = self.extract_retry_after(response)
                if attempt == self.max_attempts:
                    break
                delay = retry_after if retry_after is not None else self.get_backoff_delay(attempt)
                self.logging.warning(
                    "Embedding request rate limited (attempt %d of %d), retrying in %.2fs.",
                    attempt, self.max_attempts, delay,
                )
                await self._sleep(delay)
                continue

            if response.status_code != 200:
                self.logging.error(
                    "Embedding request failed: status %d, body: %s",
                    response.status_code,
                    response.text[:200],
                )
                raise EmbeddingProviderError(
                    "Embedding request failed with status %d." % response.status_code,
                    status_code=response.status_code,
                    body=response.text,
                )

            try:
                embeddings = self.extract_embeddings_from_response(response.json())
            except ValueError as e:
                raise EmbeddingProviderError(str(e), status_code=response.status_code, body=response.text) from e
            if len(embeddings) != len(texts):
                raise EmbeddingProviderError(
                    f"Embedding response contains {len(embeddings)} vectors for {len(texts)} inputs.",
                    status_code=response.status_code,
                )
            return embeddings

        self.logging.error("Embedding request still rate limited after %d attempts.", self.max_attempts)
        raise RateLimited(
            f"Embedding provider rate limited the request {self.max_attempts} times.",
            attempts=self.max_attempts,
            retry_after=retry_after,
        )
