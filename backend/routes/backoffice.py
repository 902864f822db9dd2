"""Back-office Routes - plan-gated pages and operations.

Pages answer JSON (rendering lives in the frontend) and redirect when the
tenant's plan lacks the feature. Operations refuse with a 403 before any
write happens.
"""
from fastapi import APIRouter, Depends, HTTPException, Request
from database import database
from models import ExpenseCreate, FeatureKey, PlanTier, SaleCreate
from middleware.feature_gating import (
    GuardContext,
    guard_operation,
    require_any_feature,
    require_feature,
    require_operation_feature,
)
from middleware.session import get_current_tenant_id, get_current_user
from services import feature_registry
from services.feature_context import FeatureContext, get_feature_context
from datetime import datetime, timezone
import logging
import uuid

logger = logging.getLogger(__name__)
router = APIRouter(tags=["backoffice"])


def _page(name: str, ctx: GuardContext) -> dict:
    return {
        "page": name,
        "tenant_id": ctx.tenant_id,
        "plan": ctx.plan.value,
        "feature": ctx.enabled_feature.value if ctx.enabled_feature else None,
    }


# ============================================================================
# Pages
# ============================================================================

@router.get("/admin/dashboard")
async def dashboard_page(context: FeatureContext = Depends(get_feature_context)):
    """Ungated; navigation is built from the feature context."""
    return {"page": "dashboard", "features": context.to_dict()}


@router.get("/admin/upgrade")
async def upgrade_page(context: FeatureContext = Depends(get_feature_context)):
    return {
        "page": "upgrade",
        "current_plan": context.plan.value if context.plan else None,
        "plans": [feature_registry.get_plan_metadata(plan) for plan in PlanTier],
    }


@router.get("/admin/inventario")
async def inventory_page(ctx: GuardContext = Depends(require_feature(FeatureKey.INVENTORY))):
    return _page("inventory", ctx)


@router.get("/admin/ventas")
async def sales_page(ctx: GuardContext = Depends(require_feature(FeatureKey.SALES))):
    return _page("sales", ctx)


@router.get("/admin/ventas/registrar")
async def register_sale_page(ctx: GuardContext = Depends(require_feature(FeatureKey.SALES))):
    return _page("register_sale", ctx)


@router.get("/admin/gastos")
async def expenses_page(ctx: GuardContext = Depends(require_feature(FeatureKey.EXPENSES))):
    return _page("expenses", ctx)


@router.get("/admin/gastos/registrar")
async def register_expense_page(ctx: GuardContext = Depends(require_feature(FeatureKey.EXPENSES))):
    return _page("register_expense", ctx)


@router.get("/admin/clientes")
async def customers_page(ctx: GuardContext = Depends(require_feature(FeatureKey.CUSTOMERS))):
    return _page("customers", ctx)


@router.get("/admin/reportes")
async def reports_page(
    ctx: GuardContext = Depends(
        require_any_feature([FeatureKey.SALES_ANALYTICS, FeatureKey.ADVANCED_REPORTS])
    )
):
    return _page("reports", ctx)


@router.get("/admin/configuracion")
async def settings_page(ctx: GuardContext = Depends(require_feature(FeatureKey.MULTI_USER))):
    return _page("settings", ctx)


# ============================================================================
# Operations
# ============================================================================

@router.post("/api/sales")
async def create_sale(
    body: SaleCreate,
    request: Request,
    ctx: GuardContext = Depends(require_operation_feature(FeatureKey.SALES))
):
    db = database.get_db()
    user = await get_current_user(request) or {}

    try:
        sale = {
            "id": str(uuid.uuid4()),
            "tenant_id": ctx.tenant_id,
            "product_id": body.product_id,
            "quantity": body.quantity,
            "unit_price": body.unit_price,
            "total": body.quantity * body.unit_price,
            "customer_id": body.customer_id,
            "notes": body.notes,
            "created_by": user.get("user_id") or user.get("sub"),
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        await db.sales.insert_one(sale)
        sale.pop("_id", None)

        logger.info("Sale recorded tenant_id=%s sale_id=%s total=%s", ctx.tenant_id, sale["id"], sale["total"])
        return sale

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Create sale error: {e}")
        raise HTTPException(status_code=500, detail="Failed to record sale")


@router.post("/api/expenses")
async def create_expense(body: ExpenseCreate, request: Request):
    tenant_id = await get_current_tenant_id(request)
    guard = await guard_operation(tenant_id, FeatureKey.EXPENSES)
    if not guard.allowed:
        return guard.denied_response

    db = database.get_db()
    user = await get_current_user(request) or {}

    try:
        expense = {
            "id": str(uuid.uuid4()),
            "tenant_id": tenant_id,
            "description": body.description,
            "amount": body.amount,
            "category": body.category,
            "incurred_on": body.incurred_on,
            "created_by": user.get("user_id") or user.get("sub"),
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        await db.expenses.insert_one(expense)
        expense.pop("_id", None)

        logger.info("Expense recorded tenant_id=%s expense_id=%s", tenant_id, expense["id"])
        return expense

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Create expense error: {e}")
        raise HTTPException(status_code=500, detail="Failed to record expense")


@router.get("/api/reports")
async def get_reports(ctx: GuardContext = Depends(require_operation_feature(FeatureKey.ADVANCED_REPORTS))):
    """Sales and expense totals for the tenant. P&L only when that feature is on."""
    db = database.get_db()

    try:
        sales = await db.sales.find(
            {"tenant_id": ctx.tenant_id},
            {"_id": 0, "total": 1}
        ).to_list(10000)
        expenses = await db.expenses.find(
            {"tenant_id": ctx.tenant_id},
            {"_id": 0, "amount": 1}
        ).to_list(10000)

        sales_total = sum(s.get("total", 0) for s in sales)
        expenses_total = sum(e.get("amount", 0) for e in expenses)

        report = {
            "tenant_id": ctx.tenant_id,
            "sales_count": len(sales),
            "sales_total": sales_total,
            "expenses_count": len(expenses),
            "expenses_total": expenses_total,
        }
        if FeatureKey.PROFIT_LOSS in ctx.features:
            report["profit"] = sales_total - expenses_total
        return report

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Reports error: {e}")
        raise HTTPException(status_code=500, detail="Failed to build report")
