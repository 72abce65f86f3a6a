from pydantic import BaseModel


class CallerIdentity(BaseModel):
    """The authenticated user and tenant a request acts for."""

    user_id: str
    tenant_id: int
