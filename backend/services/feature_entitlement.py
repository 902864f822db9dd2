"""Central Feature Entitlement Service - resolves the enabled feature set per tenant.

Resolution for one tenant:
1. Load TenantConfig (through the tenant-keyed cache)
2. If the load fails (not found / store unavailable), fall back to the
   lowest-tier feature set. Ambiguity never expands entitlements.
3. For every registered feature, an explicit override wins in both
   directions; otherwise the feature is enabled iff its minimum plan level is
   at or below the tenant's plan level.

The service object holds no per-tenant state; all caching is keyed by tenant id.
"""
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional
from models import FeatureKey, PlanTier, TenantConfig
from services import feature_registry
from services.entitlement_errors import (
    BackendUnavailable,
    ConfigNotFound,
    IdentityUnresolved,
    denial_message,
)
from services.plan_resolver import level, lowest_plan
from services.tenant_config_store import TenantConfigStore, tenant_config_store
import logging

logger = logging.getLogger(__name__)

EnabledFeatureSet = FrozenSet[FeatureKey]


@dataclass(frozen=True)
class EntitlementResult:
    tenant_id: str
    plan: PlanTier
    features: EnabledFeatureSet
    degraded: bool = False
    warning: Optional[str] = None


@dataclass(frozen=True)
class FeatureCheck:
    feature: FeatureKey
    allowed: bool
    plan: PlanTier
    reason: Optional[str] = None
    required_plan: Optional[PlanTier] = None

    def to_dict(self) -> Dict:
        return {
            "feature": self.feature.value,
            "allowed": self.allowed,
            "plan": self.plan.value,
            "reason": self.reason,
            "required_plan": self.required_plan.value if self.required_plan else None,
        }


def compute_enabled_features(config: TenantConfig) -> EnabledFeatureSet:
    """Enabled features for a tenant config: override first, then plan level."""
    plan_level = level(config.plan)
    enabled = set()
    for feature in feature_registry.list_all():
        override = config.features_override.get(feature.key)
        if override is not None:
            if override:
                enabled.add(feature.key)
            continue
        if level(feature.min_plan) <= plan_level:
            enabled.add(feature.key)
    return frozenset(enabled)


class FeatureChecker:
    """Synchronous checks over an already-resolved feature set."""

    def __init__(self, enabled: Iterable[FeatureKey]):
        self._enabled = frozenset(enabled)

    def is_enabled(self, key: FeatureKey) -> bool:
        return key in self._enabled

    def is_any_enabled(self, keys: Iterable[FeatureKey]) -> bool:
        return any(k in self._enabled for k in keys)

    def is_all_enabled(self, keys: Iterable[FeatureKey]) -> bool:
        return all(k in self._enabled for k in keys)

    def get_enabled(self) -> List[FeatureKey]:
        return [f.key for f in feature_registry.list_all() if f.key in self._enabled]


class EntitlementResolver:
    """Central service for all feature entitlement checks."""

    def __init__(self, store: TenantConfigStore = tenant_config_store):
        self.store = store

    async def resolve_with_config(self, tenant_id: str) -> EntitlementResult:
        """
        Resolve the enabled feature set for tenant_id, with the effective plan.

        Never raises for a missing config or an unavailable store; the result
        is the minimal set with degraded=True and a warning instead.
        """
        if not tenant_id or not tenant_id.strip():
            raise IdentityUnresolved("Tenant identity required for entitlement resolution")

        try:
            config = await self.store.get_config(tenant_id)
        except (ConfigNotFound, BackendUnavailable) as e:
            warning = f"Falling back to {lowest_plan().value} features: {e}"
            logger.warning("Entitlement resolution degraded tenant_id=%s: %s", tenant_id, e)
            return EntitlementResult(
                tenant_id=tenant_id,
                plan=lowest_plan(),
                features=feature_registry.minimal_feature_keys(),
                degraded=True,
                warning=warning,
            )

        return EntitlementResult(
            tenant_id=tenant_id,
            plan=config.plan,
            features=compute_enabled_features(config),
        )

    async def resolve(self, tenant_id: str) -> EnabledFeatureSet:
        result = await self.resolve_with_config(tenant_id)
        return result.features

    async def is_feature_enabled(self, tenant_id: str, feature_key: FeatureKey) -> bool:
        return feature_key in await self.resolve(tenant_id)

    async def check_feature(self, tenant_id: str, feature_key: FeatureKey) -> FeatureCheck:
        """Check one feature and explain a denial (plan and required plan)."""
        result = await self.resolve_with_config(tenant_id)
        return self.check_resolved(result, feature_key)

    def check_resolved(self, result: EntitlementResult, feature_key: FeatureKey) -> FeatureCheck:
        if feature_key in result.features:
            return FeatureCheck(feature=feature_key, allowed=True, plan=result.plan)

        min_plan = feature_registry.get_feature(feature_key).min_plan
        # An above-minimum plan without the feature means an override revoked it
        required_plan = min_plan if level(min_plan) > level(result.plan) else None
        return FeatureCheck(
            feature=feature_key,
            allowed=False,
            plan=result.plan,
            reason=denial_message(
                feature_key.value,
                result.plan.value,
                required_plan.value if required_plan else None,
            ),
            required_plan=required_plan,
        )

    async def get_server_features(self, tenant_id: str) -> Dict:
        """Enabled and disabled keys for a tenant, in registry order."""
        result = await self.resolve_with_config(tenant_id)
        checker = FeatureChecker(result.features)
        enabled = [k.value for k in checker.get_enabled()]
        disabled = [f.key.value for f in feature_registry.list_all() if f.key not in result.features]
        return {
            "enabled": enabled,
            "disabled": disabled,
            "plan": result.plan.value,
            "degraded": result.degraded,
        }

    def invalidate(self, tenant_id: str) -> None:
        self.store.cache.invalidate(tenant_id)

    def invalidate_all(self) -> None:
        self.store.cache.invalidate_all()


# Singleton instance (stateless; tenant state lives in the keyed cache)
entitlement_resolver = EntitlementResolver()
