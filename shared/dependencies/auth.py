"""FastAPI authentication dependencies."""

from fastapi import Header, HTTPException, Request

from shared.models.caller import CallerIdentity


async def verify_api_key(request: Request) -> None:
    """Verify the API key provided in the request header.

    Args:
        request (Request): The incoming FastAPI request.

    Raises:
        HTTPException: If the API key is missing or invalid (401).
        ConfigurationError: If APP_API_KEY is not configured.
    """
    config = request.app.state.config
    expected_key = config.get_string_val("APP_API_KEY")
    provided_key = request.headers.get("X-API-Key")
    if not provided_key or provided_key != expected_key:
        raise HTTPException(status_code=401, detail="Invalid or missing API key.")


async def get_caller(
    x_user_id: str = Header(..., min_length=1),
    x_tenant_id: int = Header(...),
) -> CallerIdentity:
    """Read the caller identity forwarded by the upstream gateway.

    Args:
        x_user_id (str): Value of the X-User-Id header.
        x_tenant_id (int): Value of the X-Tenant-Id header.

    Returns:
        CallerIdentity: The user and tenant every store and vector query is scoped to.
    """
    return CallerIdentity(user_id=x_user_id, tenant_id=x_tenant_id)
