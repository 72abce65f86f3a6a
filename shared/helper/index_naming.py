"""Vector index naming.

A tenant-wide index holds single-document vectors of one tenant; every
knowledge base gets its own index whose name is generated once and persisted.
"""

import uuid

DEFAULT_INDEX_BASE_NAME = "documents"


def make_tenant_index_name(base_name: str, tenant_id: int) -> str:
    return f"{base_name}-tenant{tenant_id}"


def make_knowledge_base_index_name(knowledge_base_id: int) -> str:
    return f"rag-group-{knowledge_base_id}-{uuid.uuid4().hex}"
