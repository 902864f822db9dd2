from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from enum import Enum
import logging
import uuid

logger = logging.getLogger(__name__)

# ============================================================================
# ENUMS (System Constants)
# ============================================================================

class FeatureKey(str, Enum):
    # Core (all plans)
    PRODUCTS = "products"
    PUBLIC_CATALOG = "public_catalog"
    CATEGORIES = "categories"
    IMAGES = "images"
    # Inventory (pro+)
    INVENTORY = "inventory"
    STOCK_ALERTS = "stock_alerts"
    VARIANTS = "variants"
    BARCODES = "barcodes"
    # Sales (pro+)
    SALES = "sales"
    SALES_ANALYTICS = "sales_analytics"
    CUSTOMERS = "customers"
    DISCOUNTS = "discounts"
    # Finance (premium)
    EXPENSES = "expenses"
    PROFIT_LOSS = "profit_loss"
    CASH_FLOW = "cash_flow"
    # Analytics (premium)
    ADVANCED_REPORTS = "advanced_reports"
    DASHBOARD_WIDGETS = "dashboard_widgets"
    # Admin (premium)
    MULTI_USER = "multi_user"
    API_ACCESS = "api_access"
    WEBHOOKS = "webhooks"

class FeatureCategory(str, Enum):
    CORE = "core"
    INVENTORY = "inventory"
    SALES = "sales"
    FINANCE = "finance"
    ANALYTICS = "analytics"
    ADMIN = "admin"

class PlanTier(str, Enum):
    BASIC = "basic"
    PRO = "pro"
    PREMIUM = "premium"
    CUSTOM = "custom"

class BusinessType(str, Enum):
    RETAIL = "retail"
    SERVICES = "services"
    RESTAURANT = "restaurant"

class UserRole(str, Enum):
    ADMIN = "admin"
    SELLER = "seller"
    ACCOUNTANT = "accountant"

class AuditAction(str, Enum):
    # Plan / entitlement changes
    PLAN_CHANGED = "PLAN_CHANGED"
    FEATURE_OVERRIDE_CHANGED = "FEATURE_OVERRIDE_CHANGED"
    FEATURE_CACHE_INVALIDATED = "FEATURE_CACHE_INVALIDATED"

    # Guards
    PLAN_GATE_DENIED = "PLAN_GATE_DENIED"

# ============================================================================
# MODELS
# ============================================================================

def parse_feature_key(value: Any) -> Optional[FeatureKey]:
    """Return the FeatureKey for a raw value, or None if it names no feature."""
    if isinstance(value, FeatureKey):
        return value
    try:
        return FeatureKey(str(value).strip().lower())
    except ValueError:
        return None


class TenantConfig(BaseModel):
    """One tenant's subscription record as read from tenant_config."""
    model_config = ConfigDict(extra="ignore")

    id: str
    business_name: str = ""
    business_type: BusinessType = BusinessType.RETAIL
    plan: PlanTier = PlanTier.BASIC
    plan_expires_at: Optional[str] = None
    currency: str = "CLP"
    timezone: str = "America/Santiago"
    features_override: Dict[FeatureKey, bool] = Field(default_factory=dict)
    settings: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "TenantConfig":
        """Build a TenantConfig from a stored row.

        Unknown plans degrade to basic. Override keys that name no registered
        feature, and override values that are not booleans, are dropped.
        """
        from services.plan_resolver import resolve_plan_tier

        raw_overrides = doc.get("features_override") or {}
        if not isinstance(raw_overrides, dict):
            logger.warning(
                "Ignoring malformed features_override tenant_id=%s type=%s",
                doc.get("id"), type(raw_overrides).__name__
            )
            raw_overrides = {}

        overrides: Dict[FeatureKey, bool] = {}
        for raw_key, enabled in raw_overrides.items():
            key = parse_feature_key(raw_key)
            if key is None:
                logger.warning(
                    "Ignoring unknown feature override tenant_id=%s key=%s",
                    doc.get("id"), raw_key
                )
                continue
            if not isinstance(enabled, bool):
                logger.warning(
                    "Ignoring non-boolean feature override tenant_id=%s key=%s value=%r",
                    doc.get("id"), raw_key, enabled
                )
                continue
            overrides[key] = enabled

        try:
            business_type = BusinessType(doc.get("business_type") or BusinessType.RETAIL.value)
        except ValueError:
            business_type = BusinessType.RETAIL

        plan_expires_at = doc.get("plan_expires_at")
        if isinstance(plan_expires_at, datetime):
            plan_expires_at = plan_expires_at.isoformat()

        return cls(
            id=str(doc["id"]),
            business_name=doc.get("business_name") or "",
            business_type=business_type,
            plan=resolve_plan_tier(doc.get("plan")),
            plan_expires_at=plan_expires_at,
            currency=doc.get("currency") or "CLP",
            timezone=doc.get("timezone") or "America/Santiago",
            features_override=overrides,
            settings=doc.get("settings") or {},
        )


class AuditLog(BaseModel):
    model_config = ConfigDict(extra="ignore")

    audit_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    action: AuditAction
    actor_role: Optional[str] = None
    actor_id: Optional[str] = None
    tenant_id: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    before_state: Optional[Dict[str, Any]] = None
    after_state: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    ip_address: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

# ============================================================================
# REQUEST MODELS
# ============================================================================

class PlanChangeRequest(BaseModel):
    plan: PlanTier
    reason: Optional[str] = None

class FeatureOverrideRequest(BaseModel):
    enabled: bool
    reason: Optional[str] = None

class CacheInvalidationRequest(BaseModel):
    tenant_id: Optional[str] = None

class SaleCreate(BaseModel):
    product_id: str
    quantity: int = Field(gt=0)
    unit_price: float = Field(ge=0)
    customer_id: Optional[str] = None
    notes: Optional[str] = None

class ExpenseCreate(BaseModel):
    description: str = Field(min_length=1)
    amount: float = Field(gt=0)
    category: Optional[str] = None
    incurred_on: Optional[str] = None
