"""Admin Routes - plan changes, feature overrides and entitlement cache control.

Every write goes through tenant_config_store, which invalidates the tenant's
cached config, so the next request for that tenant sees the change.
Admins manage only the tenant their own session resolves to.
"""
from fastapi import APIRouter, HTTPException, Query, Request, status
from typing import Optional
from models import (
    AuditAction,
    CacheInvalidationRequest,
    FeatureKey,
    FeatureOverrideRequest,
    PlanChangeRequest,
    parse_feature_key,
)
from middleware.session import get_current_tenant_id, require_admin
from services.entitlement_errors import BackendUnavailable, ConfigNotFound
from services.feature_entitlement import entitlement_resolver
from services.tenant_config_store import tenant_config_store
from utils.audit import create_audit_log, get_audit_logs_for_tenant
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin", tags=["admin-entitlements"])


async def _admin_for_tenant(request: Request, tenant_id: str) -> dict:
    """Admin session whose own tenant is tenant_id."""
    user = await require_admin(request)
    own_tenant = await get_current_tenant_id(request)
    if not own_tenant or own_tenant != tenant_id:
        logger.warning(
            "Cross-tenant admin request blocked: user_id=%s own_tenant=%s target=%s",
            user.get("user_id") or user.get("sub"), own_tenant, tenant_id
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Cannot manage another tenant"
        )
    return user


def _feature_key_or_404(feature_key: str) -> FeatureKey:
    key = parse_feature_key(feature_key)
    if key is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown feature: {feature_key}"
        )
    return key


def _store_error(e: Exception, tenant_id: str) -> HTTPException:
    if isinstance(e, ConfigNotFound):
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Tenant config not found: {tenant_id}"
        )
    logger.error("Tenant config write failed tenant_id=%s: %s", tenant_id, e)
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Tenant configuration store unavailable"
    )


@router.get("/tenants/{tenant_id}/features")
async def get_tenant_features(tenant_id: str, request: Request):
    """Resolved entitlements for the admin's tenant."""
    await _admin_for_tenant(request, tenant_id)
    return {
        "tenant_id": tenant_id,
        **(await entitlement_resolver.get_server_features(tenant_id)),
    }


@router.get("/tenants/{tenant_id}/audit")
async def get_tenant_audit_log(
    tenant_id: str,
    request: Request,
    action: Optional[AuditAction] = None,
    limit: int = Query(50, ge=1, le=200)
):
    """Recent plan, override and denial entries for the admin's tenant."""
    await _admin_for_tenant(request, tenant_id)
    entries = await get_audit_logs_for_tenant(tenant_id, action=action, limit=limit)
    return {"tenant_id": tenant_id, "entries": entries, "count": len(entries)}


@router.put("/tenants/{tenant_id}/plan")
async def change_plan(tenant_id: str, body: PlanChangeRequest, request: Request):
    user = await _admin_for_tenant(request, tenant_id)

    try:
        previous_plan = await tenant_config_store.update_plan(tenant_id, body.plan)
    except (ConfigNotFound, BackendUnavailable) as e:
        raise _store_error(e, tenant_id)

    await create_audit_log(
        action=AuditAction.PLAN_CHANGED,
        actor_role=user.get("role"),
        actor_id=user.get("user_id") or user.get("sub"),
        tenant_id=tenant_id,
        resource_type="tenant_config",
        resource_id=tenant_id,
        before_state={"plan": previous_plan},
        after_state={"plan": body.plan.value},
        metadata={"reason": body.reason} if body.reason else None,
    )

    features = await entitlement_resolver.get_server_features(tenant_id)
    return {
        "tenant_id": tenant_id,
        "previous_plan": previous_plan,
        **features,
    }


@router.put("/tenants/{tenant_id}/features/{feature_key}")
async def set_feature_override(
    tenant_id: str,
    feature_key: str,
    body: FeatureOverrideRequest,
    request: Request
):
    """Force a feature on or off for the tenant, regardless of plan."""
    user = await _admin_for_tenant(request, tenant_id)
    key = _feature_key_or_404(feature_key)

    try:
        await tenant_config_store.set_feature_override(tenant_id, key, body.enabled)
    except (ConfigNotFound, BackendUnavailable) as e:
        raise _store_error(e, tenant_id)

    await create_audit_log(
        action=AuditAction.FEATURE_OVERRIDE_CHANGED,
        actor_role=user.get("role"),
        actor_id=user.get("user_id") or user.get("sub"),
        tenant_id=tenant_id,
        resource_type="feature_override",
        resource_id=key.value,
        after_state={"enabled": body.enabled},
        metadata={"reason": body.reason} if body.reason else None,
    )

    check = await entitlement_resolver.check_feature(tenant_id, key)
    return {"tenant_id": tenant_id, "override": body.enabled, **check.to_dict()}


@router.delete("/tenants/{tenant_id}/features/{feature_key}")
async def clear_feature_override(tenant_id: str, feature_key: str, request: Request):
    """Remove an override so the plan decides again."""
    user = await _admin_for_tenant(request, tenant_id)
    key = _feature_key_or_404(feature_key)

    try:
        await tenant_config_store.clear_feature_override(tenant_id, key)
    except (ConfigNotFound, BackendUnavailable) as e:
        raise _store_error(e, tenant_id)

    await create_audit_log(
        action=AuditAction.FEATURE_OVERRIDE_CHANGED,
        actor_role=user.get("role"),
        actor_id=user.get("user_id") or user.get("sub"),
        tenant_id=tenant_id,
        resource_type="feature_override",
        resource_id=key.value,
        metadata={"cleared": True},
    )

    check = await entitlement_resolver.check_feature(tenant_id, key)
    return {"tenant_id": tenant_id, "override": None, **check.to_dict()}


@router.post("/features/cache/invalidate")
async def invalidate_feature_cache(request: Request, body: Optional[CacheInvalidationRequest] = None):
    """
    Drop cached entitlements. With a tenant_id only that tenant is dropped;
    without one the whole cache is cleared.
    """
    user = await require_admin(request)
    tenant_id = body.tenant_id if body else None

    if tenant_id:
        await _admin_for_tenant(request, tenant_id)
        entitlement_resolver.invalidate(tenant_id)
        scope = "tenant"
    else:
        entitlement_resolver.invalidate_all()
        scope = "all"

    await create_audit_log(
        action=AuditAction.FEATURE_CACHE_INVALIDATED,
        actor_role=user.get("role"),
        actor_id=user.get("user_id") or user.get("sub"),
        tenant_id=tenant_id,
        metadata={"scope": scope},
    )
    return {"invalidated": scope, "tenant_id": tenant_id}
