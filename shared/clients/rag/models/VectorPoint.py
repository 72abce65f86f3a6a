"""Vector models: the typed records exchanged with a vector store backend."""

from pydantic import BaseModel


class VectorMetadata(BaseModel):
    """Provenance stored alongside each vector.

    A fixed record rather than an open key-value map, so filter keys cannot
    drift from the stored field names.

    The user_id and tenant_id fields are mandatory; every query filters on them.

    Attributes:
        document_id:       Id of the source document.
        chunk_index:       Zero-based position of the chunk within the document.
        text:              Raw chunk text, returned as the retrieved passage.
        user_id:           Owning user id.
        tenant_id:         Owning tenant id.
        filename:          Source filename, for display.
        knowledge_base_id: Knowledge base the vector was indexed for, if any.
    """

    document_id: str
    chunk_index: int
    text: str
    user_id: str
    tenant_id: int
    filename: str
    knowledge_base_id: int | None = None


class EmbeddingVector(BaseModel):
    """A vector ready to be upserted.

    Attributes:
        id:       Logical, deterministic id ("{document_id}-chunk-{index}").
        values:   Embedding values; the length equals the index dimension.
        metadata: Provenance record.
    """

    id: str
    values: list[float]
    metadata: VectorMetadata


class VectorMatch(BaseModel):
    """One ranked query result.

    Attributes:
        id:       Logical vector id.
        score:    Similarity score under the index metric (higher is closer).
        metadata: Provenance record, None when the query did not request metadata.
    """

    id: str
    score: float
    metadata: VectorMetadata | None = None
