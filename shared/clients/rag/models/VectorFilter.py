"""VectorFilter: metadata-equality predicate applied by the store before ranking."""

from typing import Any

from pydantic import BaseModel


class VectorFilter(BaseModel):
    """Equality filter over VectorMetadata fields.

    tenant_id and user_id are required: a filter without the owning tenant and
    user cannot be constructed, which makes the isolation boundary impossible
    to forget at call sites.
    """

    tenant_id: int
    user_id: str
    document_id: str | None = None
    knowledge_base_id: int | None = None

    def get_conditions(self) -> dict[str, Any]:
        """Return the field → value pairs that must all match.

        Returns:
            dict[str, Any]: Conditions keyed by VectorMetadata field name, unset fields omitted.
        """
        return self.model_dump(exclude_none=True)
