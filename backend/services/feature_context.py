"""Per-request feature context for the presentation layer.

A FeatureContext is created for one request (see get_feature_context) and
answers synchronous checks once load() has completed. It is never stored at
module level.
"""
from typing import Dict, FrozenSet, Iterable, Optional
from fastapi import Request
from models import FeatureKey, PlanTier
from services import feature_registry
from services.entitlement_cache import RequestScopedMemo
from services.entitlement_errors import IdentityUnresolved
from services.feature_entitlement import (
    EntitlementResolver,
    EntitlementResult,
    FeatureChecker,
    entitlement_resolver,
)
from middleware.session import get_current_tenant_id, get_request_memo
import logging

logger = logging.getLogger(__name__)


class FeatureContext:
    def __init__(
        self,
        tenant_id: Optional[str],
        resolver: EntitlementResolver = entitlement_resolver,
        memo: Optional[RequestScopedMemo] = None,
    ):
        self.tenant_id = tenant_id
        self.resolver = resolver
        self._memo = memo if memo is not None else RequestScopedMemo()
        self.plan: Optional[PlanTier] = None
        self.enabled_features: FrozenSet[FeatureKey] = frozenset()
        self.is_loading = True
        self.error: Optional[str] = None
        self.warning: Optional[str] = None
        self._checker = FeatureChecker(())

    async def load(self) -> "FeatureContext":
        self.is_loading = True
        self.error = None
        self.warning = None
        try:
            if not self.tenant_id:
                raise IdentityUnresolved("No tenant configured")

            tenant_id = self.tenant_id
            result: EntitlementResult = await self._memo.get_or_compute(
                tenant_id,
                lambda: self.resolver.resolve_with_config(tenant_id)
            )
            self.plan = result.plan
            self.enabled_features = result.features
            self.warning = result.warning
        except IdentityUnresolved as e:
            logger.warning("Feature context without tenant: %s", e.message)
            self.error = e.message
            self.plan = None
            self.enabled_features = frozenset()
        finally:
            self._checker = FeatureChecker(self.enabled_features)
            self.is_loading = False
        return self

    async def refresh(self) -> "FeatureContext":
        """Drop cached entitlements for this tenant and resolve again."""
        if self.tenant_id:
            self.resolver.invalidate(self.tenant_id)
            self._memo.forget(self.tenant_id)
        return await self.load()

    def is_enabled(self, key: FeatureKey) -> bool:
        if self.is_loading:
            return False
        return self._checker.is_enabled(key)

    def is_any_enabled(self, keys: Iterable[FeatureKey]) -> bool:
        if self.is_loading:
            return False
        return self._checker.is_any_enabled(keys)

    def is_all_enabled(self, keys: Iterable[FeatureKey]) -> bool:
        if self.is_loading:
            return False
        return self._checker.is_all_enabled(keys)

    def to_dict(self) -> Dict:
        enabled = [k.value for k in self._checker.get_enabled()]
        return {
            "tenant_id": self.tenant_id,
            "plan": self.plan.value if self.plan else None,
            "enabled": enabled,
            "disabled": [f.key.value for f in feature_registry.list_all() if f.key.value not in enabled],
            "is_loading": self.is_loading,
            "error": self.error,
            "warning": self.warning,
        }


async def get_feature_context(request: Request) -> FeatureContext:
    """FastAPI dependency: the loaded FeatureContext for this request."""
    context = getattr(request.state, "feature_context", None)
    if context is not None:
        return context

    tenant_id = await get_current_tenant_id(request)
    context = FeatureContext(tenant_id, memo=get_request_memo(request))
    await context.load()
    request.state.feature_context = context
    return context
