"""Feature Registry - compiled-in catalogue of every gated capability.

This is the single source of truth for:
- Feature keys (the FeatureKey enum is the universe of valid keys)
- The minimum plan at which each feature is enabled by default
- Feature categories and display metadata
- Plan display metadata and pricing

RULES:
1. Every FeatureKey has exactly one registry entry (checked at import)
2. The registry is immutable at runtime
3. Route tables and UI navigation reference FeatureKey members, never raw strings
"""
from dataclasses import dataclass
from typing import Dict, FrozenSet, List
from models import FeatureKey, FeatureCategory, PlanTier
from services.plan_resolver import PLAN_LEVELS, level, lowest_plan


@dataclass(frozen=True)
class Feature:
    key: FeatureKey
    name: str
    description: str
    category: FeatureCategory
    default_enabled: bool
    min_plan: PlanTier
    requires_setup: bool

    def to_dict(self) -> Dict:
        return {
            "key": self.key.value,
            "name": self.name,
            "description": self.description,
            "category": self.category.value,
            "default_enabled": self.default_enabled,
            "min_plan": self.min_plan.value,
            "requires_setup": self.requires_setup,
        }


# ============================================================================
# CENTRAL FEATURE REGISTRY
# ============================================================================
_FEATURES = (
    # Core
    Feature(FeatureKey.PRODUCTS, "Product Management", "Basic product catalogue",
            FeatureCategory.CORE, True, PlanTier.BASIC, False),
    Feature(FeatureKey.PUBLIC_CATALOG, "Public Catalogue", "Catalogue page visible to the public",
            FeatureCategory.CORE, True, PlanTier.BASIC, False),
    Feature(FeatureKey.CATEGORIES, "Categories", "Organise products by category",
            FeatureCategory.CORE, True, PlanTier.BASIC, False),
    Feature(FeatureKey.IMAGES, "Product Images", "Upload and manage product images",
            FeatureCategory.CORE, True, PlanTier.BASIC, True),

    # Inventory
    Feature(FeatureKey.INVENTORY, "Inventory Control", "Stock tracking and variants",
            FeatureCategory.INVENTORY, False, PlanTier.PRO, True),
    Feature(FeatureKey.STOCK_ALERTS, "Low Stock Alerts", "Notifications when stock runs low",
            FeatureCategory.INVENTORY, False, PlanTier.PRO, False),
    Feature(FeatureKey.VARIANTS, "Variants (Size/Colour)", "Manage product variants",
            FeatureCategory.INVENTORY, False, PlanTier.PRO, False),
    Feature(FeatureKey.BARCODES, "Barcodes/SKU", "SKU and barcode system",
            FeatureCategory.INVENTORY, False, PlanTier.PRO, False),

    # Sales
    Feature(FeatureKey.SALES, "Sales Register", "Record business sales",
            FeatureCategory.SALES, False, PlanTier.PRO, False),
    Feature(FeatureKey.SALES_ANALYTICS, "Sales Analytics", "Sales reports and charts",
            FeatureCategory.SALES, False, PlanTier.PRO, False),
    Feature(FeatureKey.CUSTOMERS, "Customer Base", "Purchase history per customer",
            FeatureCategory.SALES, False, PlanTier.PRO, False),
    Feature(FeatureKey.DISCOUNTS, "Discounts and Coupons", "Discount system",
            FeatureCategory.SALES, False, PlanTier.PREMIUM, False),

    # Finance
    Feature(FeatureKey.EXPENSES, "Expense Register", "Track operating expenses",
            FeatureCategory.FINANCE, False, PlanTier.PREMIUM, False),
    Feature(FeatureKey.PROFIT_LOSS, "Profit and Loss", "Automatic P&L report",
            FeatureCategory.FINANCE, False, PlanTier.PREMIUM, False),
    Feature(FeatureKey.CASH_FLOW, "Cash Flow", "Cash flow projection",
            FeatureCategory.FINANCE, False, PlanTier.PREMIUM, False),

    # Analytics
    Feature(FeatureKey.ADVANCED_REPORTS, "Advanced Reports", "Export to Excel/PDF",
            FeatureCategory.ANALYTICS, False, PlanTier.PREMIUM, False),
    Feature(FeatureKey.DASHBOARD_WIDGETS, "Custom Widgets", "Configurable dashboard",
            FeatureCategory.ANALYTICS, False, PlanTier.PREMIUM, False),

    # Admin
    Feature(FeatureKey.MULTI_USER, "Multi-user", "Roles: admin, seller, accountant",
            FeatureCategory.ADMIN, False, PlanTier.PREMIUM, True),
    Feature(FeatureKey.API_ACCESS, "API Access", "Programmatic access to data",
            FeatureCategory.ADMIN, False, PlanTier.PREMIUM, False),
    Feature(FeatureKey.WEBHOOKS, "Webhooks", "External integrations",
            FeatureCategory.ADMIN, False, PlanTier.PREMIUM, True),
)

FEATURE_REGISTRY: Dict[FeatureKey, Feature] = {f.key: f for f in _FEATURES}

if len(FEATURE_REGISTRY) != len(_FEATURES) or set(FEATURE_REGISTRY) != set(FeatureKey):
    missing = set(FeatureKey) - set(FEATURE_REGISTRY)
    raise RuntimeError(
        f"Feature registry out of sync with FeatureKey (missing={sorted(k.value for k in missing)})"
    )


# ============================================================================
# PLAN METADATA
# ============================================================================
PLAN_METADATA = {
    PlanTier.BASIC: {
        "name": "Basic",
        "description": "Get your catalogue online",
        "monthly_price": 50,
        "setup_fee": 100,
    },
    PlanTier.PRO: {
        "name": "Pro",
        "description": "Full inventory and sales control",
        "monthly_price": 80,
        "setup_fee": 150,
    },
    PlanTier.PREMIUM: {
        "name": "Premium",
        "description": "Complete financial management and multi-user",
        "monthly_price": 120,
        "setup_fee": 200,
    },
    PlanTier.CUSTOM: {
        "name": "Custom",
        "description": "Tailored configuration",
        "monthly_price": 0,
        "setup_fee": 0,
    },
}


def list_all() -> List[Feature]:
    """All features in registry order."""
    return list(_FEATURES)


def all_keys() -> FrozenSet[FeatureKey]:
    return frozenset(FEATURE_REGISTRY)


def get_feature(key: FeatureKey) -> Feature:
    return FEATURE_REGISTRY[key]


def by_category() -> Dict[FeatureCategory, List[Feature]]:
    """Features grouped by category. Every category is present, even if empty."""
    grouped: Dict[FeatureCategory, List[Feature]] = {category: [] for category in FeatureCategory}
    for feature in _FEATURES:
        grouped[feature.category].append(feature)
    return grouped


def for_plan(plan: PlanTier) -> List[Feature]:
    """Features enabled by default at the given plan (no overrides applied)."""
    plan_level = level(plan)
    return [f for f in _FEATURES if level(f.min_plan) <= plan_level]


def minimal_feature_keys() -> FrozenSet[FeatureKey]:
    """Keys available on the lowest tier. This is the fail-closed default set."""
    floor = lowest_plan()
    return frozenset(f.key for f in _FEATURES if f.min_plan == floor)


def get_plan_metadata(plan: PlanTier) -> Dict:
    return {"code": plan.value, "level": PLAN_LEVELS[plan], **PLAN_METADATA[plan]}


def get_entitlement_matrix() -> Dict:
    """Feature x plan availability table for admin pages and documentation."""
    features = {}
    for feature in _FEATURES:
        features[feature.key.value] = {
            **feature.to_dict(),
            "plans": {
                plan.value: level(feature.min_plan) <= level(plan)
                for plan in PlanTier
            },
        }

    return {
        "features": features,
        "plans": {plan.value: get_plan_metadata(plan) for plan in PlanTier},
    }
