"""
Route-level feature enforcement.

Maps request paths to the feature(s) they require and enforces the mapping
for every request before it reaches a handler. Handlers still declare their
own guards; this layer catches routes that forget to.
"""
from typing import Dict, Optional, Sequence, Tuple, Union
from fastapi import Request, status
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware
from models import FeatureKey
from middleware import feature_gating
from middleware.session import get_current_tenant_id, get_request_memo
from services.feature_entitlement import entitlement_resolver
import logging

logger = logging.getLogger(__name__)

RouteRequirement = Union[FeatureKey, Tuple[FeatureKey, ...]]

# Exact paths. A tuple means any one of the features is enough.
ROUTE_FEATURES: Dict[str, RouteRequirement] = {
    # Back-office pages
    "/admin/inventario": FeatureKey.INVENTORY,
    "/admin/ventas": FeatureKey.SALES,
    "/admin/ventas/registrar": FeatureKey.SALES,
    "/admin/gastos": FeatureKey.EXPENSES,
    "/admin/gastos/registrar": FeatureKey.EXPENSES,
    "/admin/clientes": FeatureKey.CUSTOMERS,
    "/admin/reportes": (FeatureKey.SALES_ANALYTICS, FeatureKey.ADVANCED_REPORTS),
    "/admin/configuracion": FeatureKey.MULTI_USER,

    # API operations
    "/api/sales": FeatureKey.SALES,
    "/api/expenses": FeatureKey.EXPENSES,
    "/api/reports": FeatureKey.ADVANCED_REPORTS,
}

# Checked in order when no exact entry matches
ROUTE_PREFIX_FEATURES: Sequence[Tuple[str, FeatureKey]] = (
    ("/admin/inventario", FeatureKey.INVENTORY),
    ("/admin/ventas", FeatureKey.SALES),
    ("/admin/gastos", FeatureKey.EXPENSES),
    ("/admin/clientes", FeatureKey.CUSTOMERS),
    ("/admin/reportes", FeatureKey.ADVANCED_REPORTS),
)


def _as_tuple(requirement: RouteRequirement) -> Tuple[FeatureKey, ...]:
    if isinstance(requirement, FeatureKey):
        return (requirement,)
    return tuple(requirement)


def validate_route_tables() -> None:
    """Every mapped key must be a registered FeatureKey."""
    requirements = list(ROUTE_FEATURES.values()) + [f for _, f in ROUTE_PREFIX_FEATURES]
    for requirement in requirements:
        keys = _as_tuple(requirement)
        if not keys:
            raise RuntimeError("Route feature mapping with no features")
        for key in keys:
            if not isinstance(key, FeatureKey):
                raise RuntimeError(f"Route feature mapping uses unregistered key: {key!r}")


def get_required_features(path: str) -> Optional[Tuple[FeatureKey, ...]]:
    """Features required for path (any-of), or None if the path is ungated."""
    normalized = path.rstrip("/") or "/"
    if normalized in ROUTE_FEATURES:
        return _as_tuple(ROUTE_FEATURES[normalized])

    for prefix, feature in ROUTE_PREFIX_FEATURES:
        if normalized == prefix or normalized.startswith(prefix + "/"):
            return (feature,)
    return None


def _is_api_path(path: str) -> bool:
    return path.startswith("/api/")


class FeatureRouteMiddleware(BaseHTTPMiddleware):
    """Deny gated paths before routing: JSON for /api, redirects for pages."""

    async def dispatch(self, request: Request, call_next):
        required = get_required_features(request.url.path)
        if required is None:
            return await call_next(request)

        is_api = _is_api_path(request.url.path)
        tenant_id = await get_current_tenant_id(request)
        if not tenant_id:
            if is_api:
                return JSONResponse(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    content={
                        "error": "Authentication required",
                        "message": "Sign in to access this feature",
                        "feature": required[0].value,
                    },
                )
            return RedirectResponse(feature_gating.LOGIN_ROUTE, status_code=status.HTTP_303_SEE_OTHER)

        memo = get_request_memo(request)
        result = await memo.get_or_compute(
            tenant_id,
            lambda: entitlement_resolver.resolve_with_config(tenant_id)
        )
        if any(key in result.features for key in required):
            return await call_next(request)

        logger.warning(
            "Route blocked: tenant_id=%s plan=%s path=%s required=%s",
            tenant_id, result.plan.value, request.url.path, [k.value for k in required]
        )
        if is_api:
            check = entitlement_resolver.check_resolved(result, required[0])
            await feature_gating.record_denial(request, tenant_id, check)
            denied = feature_gating.feature_denied_for(check)
            return JSONResponse(status_code=denied.status_code, content=denied.to_dict())
        return RedirectResponse(feature_gating.UPGRADE_ROUTE, status_code=status.HTTP_303_SEE_OTHER)


validate_route_tables()
