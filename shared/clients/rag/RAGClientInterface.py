from abc import abstractmethod
import math

from shared.clients.rag.models.VectorFilter import VectorFilter
from shared.clients.rag.models.VectorPoint import EmbeddingVector, VectorMatch
from shared.clients.ClientInterface import ClientInterface
from shared.errors import RAGPipelineError, VectorStoreError, VectorUpsertError
import json

from shared.helper.HelperConfig import HelperConfig

UPSERT_BATCH_SIZE = 100 # max vectors per upsert call


class RAGClientInterface(ClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self.upsert_batch_size = int(helper_config.get_number_val(f"{self.get_client_type().upper()}_UPSERT_BATCH_SIZE", default=UPSERT_BATCH_SIZE))
        if self.upsert_batch_size < 1:
            raise ValueError("RAG_UPSERT_BATCH_SIZE must be at least 1.")

    ##########################################
    ############### CHECKER ##################
    ##########################################

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "rag"
        """
        return "rag"

    def _get_error_class(self) -> type[RAGPipelineError]:
        return VectorStoreError

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_index(self, index_name: str) -> str:
        """
        Returns the endpoint path for creating, inspecting and deleting an index.

        Returns:
            str: The endpoint path (e.g. "/collections/my_index")

        Raises:
            NotImplementedError: If the method is not implemented in a subclass.
        """
        pass

    @abstractmethod
    def _get_endpoint_index_existence(self, index_name: str) -> str:
        """
        Returns the endpoint path for index existence check requests.

        Returns:
            str: The endpoint path (e.g. "/collections/my_index/exists")

        Raises:
            NotImplementedError: If the method is not implemented in a subclass.
        """
        pass

    @abstractmethod
    def _get_endpoint_points(self, index_name: str) -> str:
        """
        Returns the endpoint path for upsert requests.

        Returns:
            str: The endpoint path (e.g. "/collections/my_index/points")

        Raises:
            NotImplementedError: If the method is not implemented in a subclass.
        """
        pass

    @abstractmethod
    def _get_endpoint_search(self, index_name: str) -> str:
        """
        Returns the endpoint path for similarity search requests.

        Returns:
            str: The endpoint path (e.g. "/collections/my_index/points/search")

        Raises:
            NotImplementedError: If the method is not implemented in a subclass.
        """
        pass

    @abstractmethod
    def _get_endpoint_count(self, index_name: str) -> str:
        """Returns the endpoint path for counting vectors matching a filter.

        Returns:
            str: The endpoint path (e.g. "/collections/my_index/points/count")

        Raises:
            NotImplementedError: If the method is not implemented in a subclass.
        """
        pass

    @abstractmethod
    def _get_endpoint_delete_points(self, index_name: str) -> str:
        """
        Returns the endpoint path for deleting vectors by filter or id.

        Returns:
            str: The endpoint path (e.g. "/collections/my_index/points/delete")

        Raises:
            NotImplementedError: If the method is not implemented in a subclass.
        """
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_write_params(self) -> dict:
        """
        Returns query parameters sent with every write request (e.g. {"wait": "true"}).
        """
        pass

    @abstractmethod
    def get_create_index_payload(self, dimension: int, metric: str) -> dict:
        """
        Builds the backend-specific request payload for creating an index.

        Args:
            dimension (int): Vector dimension of the index.
            metric (str): Similarity metric, e.g. "cosine".

        Returns:
            dict: The payload for the create request.

        Raises:
            NotImplementedError: If the method is not implemented in a subclass.
        """
        pass

    @abstractmethod
    def get_upsert_payload(self, vectors: list[EmbeddingVector]) -> dict:
        """
        Builds the backend-specific request payload for one upsert batch.

        Args:
            vectors (list[EmbeddingVector]): The vectors of the batch.

        Returns:
            dict: The payload for the upsert request.

        Raises:
            NotImplementedError: If the method is not implemented in a subclass.
        """
        pass

    @abstractmethod
    def get_search_payload(self, vector: list[float], top_k: int, filter: VectorFilter, include_metadata: bool) -> dict:
        """
        Builds the backend-specific request payload for a similarity search.

        The filter must be applied by the backend before ranking.

        Args:
            vector (list[float]): The query vector.
            top_k (int): Maximum number of matches.
            filter (VectorFilter): Metadata equality filter.
            include_metadata (bool): Whether matches carry their metadata.

        Returns:
            dict: The payload for the search request.

        Raises:
            NotImplementedError: If the method is not implemented in a subclass.
        """
        pass

    @abstractmethod
    def get_count_payload(self, filter: VectorFilter) -> dict:
        """Builds the backend-specific request payload for a vector count.

        Args:
            filter (VectorFilter): Filter conditions to apply before counting.

        Returns:
            dict: The payload for the count request.

        Raises:
            NotImplementedError: If the method is not implemented in a subclass.
        """
        pass

    @abstractmethod
    def get_delete_payload(self, filter: VectorFilter | None = None, ids: list[str] | None = None) -> dict:
        """
        Builds the backend-specific request payload for deleting vectors.

        Args:
            filter (VectorFilter | None): Deletes every vector matching the filter.
            ids (list[str] | None): Deletes the vectors with these logical ids.

        Returns:
            dict: The payload for the delete request.

        Raises:
            NotImplementedError: If the method is not implemented in a subclass.
        """
        pass

    ################ RESPONSE PARSER ##################
    @abstractmethod
    def extract_index_exists(self, raw_response: dict) -> bool:
        """
        Extracts the existence flag from an index existence response.

        Raises:
            NotImplementedError: If the method is not implemented in a subclass.
        """
        pass

    @abstractmethod
    def extract_matches(self, raw_response: dict, include_metadata: bool) -> list[VectorMatch]:
        """
        Extracts ranked matches from a raw search response.

        Args:
            raw_response (dict): The raw JSON response from the search endpoint.
            include_metadata (bool): Whether metadata was requested.

        Returns:
            list[VectorMatch]: Matches ordered by descending score.

        Raises:
            NotImplementedError: If the method is not implemented in a subclass.
        """
        pass

    @abstractmethod
    def extract_count(self, raw_response: dict) -> int:
        """
        Extracts the number of matching vectors from a raw count response.

        Raises:
            NotImplementedError: If the method is not implemented in a subclass.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_index_exists(self, index_name: str) -> bool:
        """Check if an index exists in the rag backend.

        Returns:
            bool: True if the index exists, False otherwise.

        Raises:
            VectorStoreError: If the backend answers with an error status.
            httpx.TransportError: If the backend cannot be reached.
        """
        resp = await self.do_request(
            method="GET",
            endpoint=self._get_endpoint_index_existence(index_name),
            raise_on_error=True,
        )
        return self.extract_index_exists(resp.json())

    async def do_ensure_index(self, index_name: str, dimension: int, metric: str = "cosine") -> bool:
        """Create the index unless it already exists.

        Args:
            index_name (str): Name of the index.
            dimension (int): Vector dimension of the index.
            metric (str): Similarity metric.

        Returns:
            bool: True if this call created the index, False if it already existed.

        Raises:
            VectorStoreError: If the backend refused to create the index.
            httpx.TransportError: If the backend cannot be reached.
        """
        if await self.do_index_exists(index_name):
            return False

        resp = await self.do_request(
            method="PUT",
            json=self.get_create_index_payload(dimension, metric),
            endpoint=self._get_endpoint_index(index_name),
        )
        if resp.status_code in (200, 201):
            self.logging.info(
                "Created index '%s' (dimension=%d, metric=%s) on %s.",
                index_name, dimension, metric, self.get_engine_name(),
            )
            return True
        if resp.status_code == 409:
            # created concurrently by another request
            return False
        raise VectorStoreError(
            f"Failed to create index '{index_name}' (status {resp.status_code}).",
            status_code=resp.status_code,
            body=resp.text,
        )

    async def do_upsert(self, index_name: str, vectors: list[EmbeddingVector]) -> int:
        """Upsert vectors into an index in sequential network batches.
        Inserts new vectors or replaces existing ones with the same id.

        Batches committed before a failing batch stay committed; re-running the
        upsert overwrites them because ids are deterministic.

        Args:
            index_name (str): Name of the index.
            vectors (list[EmbeddingVector]): The vectors to upsert.

        Returns:
            int: Number of vectors upserted.

        Raises:
            VectorUpsertError: If a batch is rejected; carries the zero-based batch index.
        """
        total_batches = math.ceil(len(vectors) / self.upsert_batch_size)
        for batch_index, batch_start in enumerate(range(0, len(vectors), self.upsert_batch_size)):
            batch = vectors[batch_start: batch_start + self.upsert_batch_size]
            resp = await self.do_request(
                method="PUT",
                content=json.dumps(self.get_upsert_payload(batch)),
                params=self.get_write_params(),
                endpoint=self._get_endpoint_points(index_name),
                additional_headers={"Content-Type": "application/json"},
            )
            if resp.status_code >= 300:
                self.logging.error(
                    "Upsert batch %d of %d into '%s' failed with status %d: %s",
                    batch_index + 1, total_batches, index_name, resp.status_code, resp.text[:200],
                )
                raise VectorUpsertError(
                    f"Upsert batch {batch_index} into '{index_name}' failed with status {resp.status_code}.",
                    batch_index=batch_index,
                    status_code=resp.status_code,
                    body=resp.text,
                )
            self.logging.debug("Upserted batch %d of %d (%d vectors) into '%s'.", batch_index + 1, total_batches, len(batch), index_name)
        return len(vectors)

    async def do_query(
        self,
        index_name: str,
        vector: list[float],
        top_k: int,
        filter: VectorFilter,
        include_metadata: bool = True,
    ) -> list[VectorMatch]:
        """Return the top_k vectors closest to the query vector among those matching the filter.

        Args:
            index_name (str): Name of the index.
            vector (list[float]): The query vector.
            top_k (int): Maximum number of matches.
            filter (VectorFilter): Tenant/user (and optional document/knowledge base) filter.
            include_metadata (bool): Whether matches carry their metadata.

        Returns:
            list[VectorMatch]: Up to top_k matches in descending score order; empty if the
                index does not exist.

        Raises:
            VectorStoreError: If the backend rejects the search.
        """
        resp = await self.do_request(
            method="POST",
            content=json.dumps(self.get_search_payload(vector, top_k, filter, include_metadata)),
            endpoint=self._get_endpoint_search(index_name),
            additional_headers={"Content-Type": "application/json"},
        )
        if resp.status_code == 404:
            self.logging.warning("Index '%s' does not exist on %s, no matches.", index_name, self.get_engine_name())
            return []
        if resp.status_code >= 300:
            raise VectorStoreError(
                f"Search in '{index_name}' failed with status {resp.status_code}.",
                status_code=resp.status_code,
                body=resp.text,
            )
        return self.extract_matches(resp.json(), include_metadata)[:top_k]

    async def do_count(self, index_name: str, filter: VectorFilter) -> int:
        """Count the vectors matching the given filter.

        Args:
            index_name (str): Name of the index.
            filter (VectorFilter): Filter conditions for the count request.

        Returns:
            int: Number of matching vectors; 0 if the index does not exist.
        """
        resp = await self.do_request(
            method="POST",
            content=json.dumps(self.get_count_payload(filter)),
            endpoint=self._get_endpoint_count(index_name),
            additional_headers={"Content-Type": "application/json"},
        )
        if resp.status_code == 404:
            return 0
        if resp.status_code >= 300:
            raise VectorStoreError(
                f"Count in '{index_name}' failed with status {resp.status_code}.",
                status_code=resp.status_code,
                body=resp.text,
            )
        return self.extract_count(resp.json())

    async def do_delete_vectors(self, index_name: str, filter: VectorFilter | None = None, ids: list[str] | None = None) -> None:
        """Delete vectors matching a filter or with the given logical ids.

        Args:
            index_name (str): Name of the index.
            filter (VectorFilter | None): Deletes every vector matching the filter.
            ids (list[str] | None): Deletes the vectors with these ids.

        Raises:
            ValueError: If neither filter nor ids is given.
            VectorStoreError: If the backend rejects the delete.
        """
        if filter is None and not ids:
            raise ValueError("Either a filter or a list of ids is required to delete vectors.")
        resp = await self.do_request(
            method="POST",
            content=json.dumps(self.get_delete_payload(filter=filter, ids=ids)),
            params=self.get_write_params(),
            endpoint=self._get_endpoint_delete_points(index_name),
            additional_headers={"Content-Type": "application/json"},
        )
        if resp.status_code == 404:
            self.logging.debug("Index '%s' does not exist, nothing to delete.", index_name)
            return
        if resp.status_code >= 300:
            raise VectorStoreError(
                f"Delete in '{index_name}' failed with status {resp.status_code}.",
                status_code=resp.status_code,
                body=resp.text,
            )

    async def do_delete_index(self, index_name: str) -> bool:
        """Delete an index and all of its vectors.

        Returns:
            bool: True if the index was deleted, False if it did not exist.

        Raises:
            VectorStoreError: If the backend rejects the delete.
        """
        resp = await self.do_request(method="DELETE", endpoint=self._get_endpoint_index(index_name))
        if resp.status_code == 404:
            return False
        if resp.status_code >= 300:
            raise VectorStoreError(
                f"Deleting index '{index_name}' failed with status {resp.status_code}.",
                status_code=resp.status_code,
                body=resp.text,
            )
        self.logging.info("Deleted index '%s' on %s.", index_name, self.get_engine_name())
        return True

