"""
Feature Gating - server-side enforcement of plan-based feature access.

Three surfaces, all built on the entitlement resolver:
- Page guards (require_feature, require_any_feature): redirect to login when
  the tenant is unknown, to the upgrade page when the feature is missing.
- Operation guards (require_operation_feature, guard_operation,
  enforce_feature): deny mutating operations with a structured 403.
- UI checks go through services.feature_context.

Every check fails closed: no tenant identity is never treated as "allow".
"""
from dataclasses import dataclass
from typing import FrozenSet, Optional, Sequence
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from middleware.session import get_current_tenant_id, get_current_user, get_request_memo
from models import AuditAction, FeatureKey, PlanTier
from services.entitlement_errors import FeatureDenied, GuardRedirect, IdentityUnresolved
from services.feature_entitlement import (
    EntitlementResolver,
    EntitlementResult,
    FeatureCheck,
    entitlement_resolver,
)
from utils.audit import create_audit_log
import os
import logging

logger = logging.getLogger(__name__)

UPGRADE_ROUTE = os.getenv("UPGRADE_ROUTE", "/admin/upgrade")
LOGIN_ROUTE = os.getenv("LOGIN_ROUTE", "/auth/login")


@dataclass(frozen=True)
class GuardContext:
    tenant_id: str
    plan: PlanTier
    features: FrozenSet[FeatureKey]
    enabled_feature: Optional[FeatureKey] = None


@dataclass(frozen=True)
class OperationGuardResult:
    allowed: bool
    feature: FeatureKey
    plan: Optional[PlanTier] = None
    reason: Optional[str] = None
    denied_response: Optional[JSONResponse] = None


async def _resolve_for_request(request: Request, tenant_id: str) -> EntitlementResult:
    memo = get_request_memo(request)
    return await memo.get_or_compute(
        tenant_id,
        lambda: entitlement_resolver.resolve_with_config(tenant_id)
    )


def feature_denied_for(check: FeatureCheck) -> FeatureDenied:
    return FeatureDenied(
        feature=check.feature.value,
        current_plan=check.plan.value,
        required_plan=check.required_plan.value if check.required_plan else None,
        message=check.reason,
    )


def _authentication_required_response(feature_key: FeatureKey) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={
            "error": "Authentication required",
            "message": "Sign in to access this feature",
            "feature": feature_key.value,
        },
    )


async def record_denial(request: Request, tenant_id: str, check: FeatureCheck) -> None:
    user = await get_current_user(request) or {}
    await create_audit_log(
        action=AuditAction.PLAN_GATE_DENIED,
        actor_role=user.get("role"),
        actor_id=user.get("user_id") or user.get("sub"),
        tenant_id=tenant_id,
        metadata={
            "feature_key": check.feature.value,
            "plan": check.plan.value,
            "required_plan": check.required_plan.value if check.required_plan else None,
            "endpoint": str(request.url.path),
            "method": request.method,
        }
    )
    logger.warning(
        "Feature access denied: tenant_id=%s plan=%s requested_feature=%s endpoint=%s method=%s",
        tenant_id, check.plan.value, check.feature.value, request.url.path, request.method
    )


# ============================================================================
# Page guards
# ============================================================================

def require_feature(feature_key: FeatureKey, fallback_route: Optional[str] = None):
    """
    Page guard dependency. Redirects (terminal for this request) unless the
    current tenant has feature_key.

    Usage:
        @router.get("/admin/inventario")
        async def inventory_page(ctx: GuardContext = Depends(require_feature(FeatureKey.INVENTORY))):
            ...
    """
    redirect_to = fallback_route or UPGRADE_ROUTE

    async def dependency(request: Request) -> GuardContext:
        tenant_id = await get_current_tenant_id(request)
        if not tenant_id:
            logger.error("No tenant ID found for page %s", request.url.path)
            raise GuardRedirect(LOGIN_ROUTE, "identity_unresolved")

        result = await _resolve_for_request(request, tenant_id)
        if feature_key not in result.features:
            logger.warning(
                "Feature '%s' access denied: tenant_id=%s plan=%s path=%s",
                feature_key.value, tenant_id, result.plan.value, request.url.path
            )
            raise GuardRedirect(redirect_to, f"feature_disabled:{feature_key.value}")

        return GuardContext(
            tenant_id=tenant_id,
            plan=result.plan,
            features=result.features,
            enabled_feature=feature_key,
        )

    return dependency


def require_any_feature(feature_keys: Sequence[FeatureKey], fallback_route: Optional[str] = None):
    """Page guard that passes if at least one of feature_keys is enabled."""
    if not feature_keys:
        raise ValueError("require_any_feature needs at least one feature key")
    keys = tuple(feature_keys)
    redirect_to = fallback_route or UPGRADE_ROUTE

    async def dependency(request: Request) -> GuardContext:
        tenant_id = await get_current_tenant_id(request)
        if not tenant_id:
            raise GuardRedirect(LOGIN_ROUTE, "identity_unresolved")

        result = await _resolve_for_request(request, tenant_id)
        enabled = next((k for k in keys if k in result.features), None)
        if enabled is None:
            logger.warning(
                "None of the required features enabled: tenant_id=%s features=%s path=%s",
                tenant_id, [k.value for k in keys], request.url.path
            )
            raise GuardRedirect(redirect_to, "features_disabled")

        return GuardContext(
            tenant_id=tenant_id,
            plan=result.plan,
            features=result.features,
            enabled_feature=enabled,
        )

    return dependency


# ============================================================================
# Operation guards
# ============================================================================

async def guard_operation(
    tenant_id: Optional[str],
    feature_key: FeatureKey,
    resolver: EntitlementResolver = entitlement_resolver,
) -> OperationGuardResult:
    """
    Decide whether a mutating operation may run for tenant_id.

    On denial the result carries a ready-to-return JSONResponse; the caller
    must return it instead of running the operation.
    """
    if not tenant_id:
        return OperationGuardResult(
            allowed=False,
            feature=feature_key,
            reason="Authentication required",
            denied_response=_authentication_required_response(feature_key),
        )

    check = await resolver.check_feature(tenant_id, feature_key)
    if check.allowed:
        return OperationGuardResult(allowed=True, feature=feature_key, plan=check.plan)

    denied = feature_denied_for(check)
    return OperationGuardResult(
        allowed=False,
        feature=feature_key,
        plan=check.plan,
        reason=denied.message,
        denied_response=JSONResponse(status_code=denied.status_code, content=denied.to_dict()),
    )


async def enforce_feature(
    tenant_id: Optional[str],
    feature_key: FeatureKey,
    resolver: EntitlementResolver = entitlement_resolver,
) -> FeatureCheck:
    """
    Explicit guard for code paths outside request handlers.

    Raises:
        IdentityUnresolved: no tenant id
        FeatureDenied: feature not enabled
    """
    if not tenant_id:
        raise IdentityUnresolved()
    check = await resolver.check_feature(tenant_id, feature_key)
    if not check.allowed:
        raise feature_denied_for(check)
    return check


def require_operation_feature(feature_key: FeatureKey):
    """
    Dependency for mutating API handlers. The handler body runs only after
    this check has passed.

    Usage:
        @router.post("/api/sales")
        async def create_sale(ctx: GuardContext = Depends(require_operation_feature(FeatureKey.SALES))):
            ...
    """
    async def dependency(request: Request) -> GuardContext:
        tenant_id = await get_current_tenant_id(request)
        if not tenant_id:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Authentication required"
            )

        result = await _resolve_for_request(request, tenant_id)
        check = entitlement_resolver.check_resolved(result, feature_key)
        if not check.allowed:
            await record_denial(request, tenant_id, check)
            raise feature_denied_for(check)

        return GuardContext(
            tenant_id=tenant_id,
            plan=result.plan,
            features=result.features,
            enabled_feature=feature_key,
        )

    return dependency


def require_operation_any_feature(feature_keys: Sequence[FeatureKey]):
    """Operation guard that passes if any of feature_keys is enabled."""
    if not feature_keys:
        raise ValueError("require_operation_any_feature needs at least one feature key")
    keys = tuple(feature_keys)

    async def dependency(request: Request) -> GuardContext:
        tenant_id = await get_current_tenant_id(request)
        if not tenant_id:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Authentication required"
            )

        result = await _resolve_for_request(request, tenant_id)
        enabled = next((k for k in keys if k in result.features), None)
        if enabled is None:
            check = entitlement_resolver.check_resolved(result, keys[0])
            await record_denial(request, tenant_id, check)
            raise FeatureDenied(
                feature=",".join(k.value for k in keys),
                current_plan=result.plan.value,
                message=(
                    "None of the required features are available on your plan: "
                    + ", ".join(k.value for k in keys)
                ),
            )

        return GuardContext(
            tenant_id=tenant_id,
            plan=result.plan,
            features=result.features,
            enabled_feature=enabled,
        )

    return dependency
