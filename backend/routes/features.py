"""Feature Routes - entitlements of the current tenant, and the public registry."""
from fastapi import APIRouter, HTTPException, Request, status
from models import PlanTier, parse_feature_key
from middleware.session import get_current_tenant_id, get_request_memo, require_auth
from services import feature_registry
from services.feature_context import get_feature_context
from services.feature_entitlement import entitlement_resolver
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/features", tags=["features"])


async def _require_tenant(request: Request) -> str:
    await require_auth(request)
    tenant_id = await get_current_tenant_id(request)
    if not tenant_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No tenant configured for this session"
        )
    return tenant_id


@router.get("")
async def get_my_features(request: Request):
    """Feature context for the current tenant (what the UI may show)."""
    await _require_tenant(request)
    context = await get_feature_context(request)
    return context.to_dict()


@router.post("/refresh")
async def refresh_my_features(request: Request):
    """Drop the cached entitlements for the current tenant and resolve again."""
    tenant_id = await _require_tenant(request)
    context = await get_feature_context(request)
    await context.refresh()
    logger.info("Feature context refreshed tenant_id=%s", tenant_id)
    return context.to_dict()


@router.get("/check/{feature_key}")
async def check_my_feature(feature_key: str, request: Request):
    key = parse_feature_key(feature_key)
    if key is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown feature: {feature_key}"
        )

    tenant_id = await _require_tenant(request)
    memo = get_request_memo(request)
    result = await memo.get_or_compute(
        tenant_id,
        lambda: entitlement_resolver.resolve_with_config(tenant_id)
    )
    return entitlement_resolver.check_resolved(result, key).to_dict()


@router.get("/registry")
async def get_registry():
    """Registered features grouped by category, with plan metadata."""
    return {
        "categories": {
            category.value: [f.to_dict() for f in features]
            for category, features in feature_registry.by_category().items()
        },
        "plans": [feature_registry.get_plan_metadata(plan) for plan in PlanTier],
    }


@router.get("/matrix")
async def get_matrix():
    """Which plan enables which feature, before overrides."""
    return feature_registry.get_entitlement_matrix()
