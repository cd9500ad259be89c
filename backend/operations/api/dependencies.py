"""
Request dependencies for API endpoints: tenant and caller resolution.
"""

from typing import List

from fastapi import Depends, Request

from ..core.config import settings
from ..core.logging_config import set_operations_context

ANONYMOUS_USER = "anonymous"


async def get_current_tenant(request: Request) -> str:
    """
    Extract tenant ID from request.

    Tries the X-Tenant-Id header and falls back to the configured default tenant.
    """
    tenant_id = request.headers.get("X-Tenant-Id")
    if tenant_id:
        return tenant_id
    return settings.DEFAULT_TENANT_ID


async def get_current_user(request: Request) -> dict:
    """
    Get the caller from the X-User-Id and X-User-Roles headers.
    Token validation is done by the gateway in front of the service.
    """
    user_id = request.headers.get("X-User-Id") or ANONYMOUS_USER
    roles: List[str] = []
    if user_id != ANONYMOUS_USER:
        roles = [
            role.strip()
            for role in request.headers.get("X-User-Roles", "").split(",")
            if role.strip()
        ]
    return {"id": user_id, "roles": roles}


async def get_request_context(
    tenant_id: str = Depends(get_current_tenant),
    user: dict = Depends(get_current_user)
) -> dict:
    """Tenant and caller for the request, also attached to the log context"""
    set_operations_context(tenant=tenant_id, user=user["id"])
    return {"tenant_id": tenant_id, "user": user}
