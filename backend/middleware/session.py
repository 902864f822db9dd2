"""Session identity for the current request.

Identity is derived from the request's own bearer token and memoised on
request.state, so it lives exactly as long as the request does.
"""
from fastapi import Request, HTTPException, status
from typing import Optional
import logging
from auth import decode_access_token
from models import UserRole
from services.entitlement_cache import RequestScopedMemo
from services.tenant_config_store import tenant_config_store

logger = logging.getLogger(__name__)

_UNRESOLVED = object()


async def get_current_user(request: Request) -> Optional[dict]:
    """Extract and validate current user from JWT token."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None

    token = auth_header.split(" ")[1]
    payload = decode_access_token(token)

    if not payload:
        return None

    return payload

async def require_auth(request: Request) -> dict:
    """Require valid authentication."""
    user = await get_current_user(request)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )
    return user

async def require_admin(request: Request) -> dict:
    """Require the tenant admin role."""
    user = await require_auth(request)
    if user.get("role") != UserRole.ADMIN.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions"
        )
    return user

async def get_current_tenant_id(request: Request) -> Optional[str]:
    """
    Tenant id for this request's session, resolved at most once per request.
    Returns None when there is no session or no tenant can be determined.
    """
    cached = getattr(request.state, "tenant_id", _UNRESOLVED)
    if cached is not _UNRESOLVED:
        return cached

    user = await get_current_user(request)
    tenant_id = await tenant_config_store.resolve_tenant_id_for_session(user)
    if user and not tenant_id:
        logger.warning(
            "Tenant unresolved for user_id=%s path=%s",
            user.get("user_id") or user.get("sub"), request.url.path
        )
    request.state.tenant_id = tenant_id
    return tenant_id

def get_request_memo(request: Request) -> RequestScopedMemo:
    """Entitlement memo bound to this request only."""
    memo = getattr(request.state, "entitlement_memo", None)
    if memo is None:
        memo = RequestScopedMemo()
        request.state.entitlement_memo = memo
    return memo
