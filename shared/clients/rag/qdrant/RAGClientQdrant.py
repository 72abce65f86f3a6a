import uuid

from shared.helper.HelperConfig import HelperConfig
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.VectorFilter import VectorFilter
from shared.clients.rag.models.VectorPoint import EmbeddingVector, VectorMatch, VectorMetadata
from shared.models.config import EnvConfig

# payload key carrying the logical vector id next to the metadata
VECTOR_ID_KEY = "vector_id"

_DISTANCES = {
    "cosine": "Cosine",
    "dot": "Dot",
    "dotproduct": "Dot",
    "euclid": "Euclid",
    "euclidean": "Euclid",
    "manhattan": "Manhattan",
}


def make_point_id(vector_id: str) -> str:
    """Map a logical vector id to the deterministic UUID5 point id Qdrant requires.

    Args:
        vector_id (str): Logical id, e.g. "doc42-chunk-0".

    Returns:
        str: UUID string usable as a Qdrant point ID.
    """
    return str(uuid.uuid5(uuid.NAMESPACE_OID, vector_id))


class RAGClientQdrant(RAGClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Qdrant"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default=None),
            EnvConfig(env_key="API_KEY", val_type="string", default=""),
        ]

    ################ AUTH ##################
    def _get_auth_header(self, api_key: str | None = None) -> dict:
        key = api_key or self._api_key
        if key:
            return {"api-key": f"{key}"}
        else:
            return {}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/healthz"

    def _get_endpoint_index(self, index_name: str) -> str:
        return f"/collections/{index_name}"

    def _get_endpoint_index_existence(self, index_name: str) -> str:
        return f"/collections/{index_name}/exists"

    def _get_endpoint_points(self, index_name: str) -> str:
        return f"/collections/{index_name}/points"

    def _get_endpoint_search(self, index_name: str) -> str:
        return f"/collections/{index_name}/points/search"

    def _get_endpoint_count(self, index_name: str) -> str:
        return f"/collections/{index_name}/points/count"

    def _get_endpoint_delete_points(self, index_name: str) -> str:
        return f"/collections/{index_name}/points/delete"

    ##########################################
    ########### PAYLOAD BUILDER ##############
    ##########################################

    def get_write_params(self) -> dict:
        # block until the write is applied so it is visible to the next query
        return {"wait": "true"}

    def get_create_index_payload(self, dimension: int, metric: str) -> dict:
        distance = _DISTANCES.get(metric.strip().lower().replace("_", ""), metric)
        return {"vectors": {"size": dimension, "distance": distance}}

    def get_upsert_payload(self, vectors: list[EmbeddingVector]) -> dict:
        return {
            "points": [
                {
                    "id": make_point_id(vector.id),
                    "vector": vector.values,
                    "payload": {**vector.metadata.model_dump(), VECTOR_ID_KEY: vector.id},
                }
                for vector in vectors
            ]
        }

    def get_filter_payload(self, filter: VectorFilter) -> dict:
        return {
            "must": [
                {"key": key, "match": {"value": value}}
                for key, value in filter.get_conditions().items()
            ]
        }

    def get_search_payload(self, vector: list[float], top_k: int, filter: VectorFilter, include_metadata: bool) -> dict:
        return {
            "vector": vector,
            "limit": top_k,
            "filter": self.get_filter_payload(filter),
            "with_payload": True if include_metadata else [VECTOR_ID_KEY],
            "with_vector": False,
        }

    def get_count_payload(self, filter: VectorFilter) -> dict:
        return {"filter": self.get_filter_payload(filter), "exact": True}

    def get_delete_payload(self, filter: VectorFilter | None = None, ids: list[str] | None = None) -> dict:
        if filter is not None:
            return {"filter": self.get_filter_payload(filter)}
        return {"points": [make_point_id(vector_id) for vector_id in ids or []]}

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def extract_index_exists(self, raw_response: dict) -> bool:
        return bool(raw_response.get("result", {}).get("exists"))

    def extract_matches(self, raw_response: dict, include_metadata: bool) -> list[VectorMatch]:
        matches: list[VectorMatch] = []
        for point in raw_response.get("result", []):
            payload = point.get("payload") or {}
            metadata = VectorMetadata.model_validate(payload) if include_metadata and payload else None
            matches.append(
                VectorMatch(
                    id=payload.get(VECTOR_ID_KEY, str(point.get("id"))),
                    score=point.get("score", 0.0),
                    metadata=metadata,
                )
            )
        return sorted(matches, key=lambda match: match.score, reverse=True)

    def extract_count(self, raw_response: dict) -> int:
        return raw_response.get("result", {}).get("count", 0)
