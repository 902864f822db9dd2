"""
Feature context tests: loading state, missing tenant, refresh, per-request
isolation, and the /api/features endpoints built on it.
"""
import pytest
from conftest import auth_headers, tenant_row
from models import FeatureKey, PlanTier
from services.entitlement_cache import RequestScopedMemo, TenantCache
from services.feature_context import FeatureContext
from services.feature_entitlement import EntitlementResolver
from services.tenant_config_store import TenantConfigStore


@pytest.fixture
def configs():
    return {
        "t-basic": tenant_row("t-basic", "basic"),
        "t-pro": tenant_row("t-pro", "pro"),
    }


@pytest.fixture
def resolver(mock_db, configs):
    mock_db(configs=configs, profiles={"u-basic": "t-basic", "u-pro": "t-pro"})
    return EntitlementResolver(TenantConfigStore(cache=TenantCache(ttl_seconds=300)))


class TestFeatureContext:

    def test_checks_are_false_before_load(self, resolver):
        context = FeatureContext("t-pro", resolver=resolver)
        assert context.is_loading is True
        assert context.is_enabled(FeatureKey.PRODUCTS) is False
        assert context.is_any_enabled([FeatureKey.PRODUCTS]) is False
        assert context.is_all_enabled([]) is False

    @pytest.mark.asyncio
    async def test_load(self, resolver):
        context = await FeatureContext("t-pro", resolver=resolver).load()
        assert context.is_loading is False
        assert context.plan == PlanTier.PRO
        assert context.is_enabled(FeatureKey.INVENTORY) is True
        assert context.is_enabled(FeatureKey.EXPENSES) is False
        assert context.is_any_enabled([FeatureKey.SALES_ANALYTICS, FeatureKey.ADVANCED_REPORTS]) is True
        assert context.is_all_enabled([FeatureKey.SALES_ANALYTICS, FeatureKey.ADVANCED_REPORTS]) is False

    @pytest.mark.asyncio
    async def test_missing_tenant(self, resolver):
        context = await FeatureContext(None, resolver=resolver).load()
        assert context.error == "No tenant configured"
        assert context.enabled_features == frozenset()
        assert context.is_enabled(FeatureKey.PRODUCTS) is False

    @pytest.mark.asyncio
    async def test_unknown_tenant_gets_minimal_with_warning(self, resolver):
        context = await FeatureContext("t-ghost", resolver=resolver).load()
        assert context.error is None
        assert context.warning
        assert context.enabled_features == frozenset({
            FeatureKey.PRODUCTS, FeatureKey.PUBLIC_CATALOG, FeatureKey.CATEGORIES, FeatureKey.IMAGES,
        })

    @pytest.mark.asyncio
    async def test_refresh_sees_plan_change(self, resolver, configs):
        context = await FeatureContext("t-basic", resolver=resolver).load()
        assert context.is_enabled(FeatureKey.SALES) is False

        configs["t-basic"]["plan"] = "pro"
        await context.load()
        assert context.is_enabled(FeatureKey.SALES) is False

        await context.refresh()
        assert context.is_enabled(FeatureKey.SALES) is True

    @pytest.mark.asyncio
    async def test_contexts_do_not_share_state(self, resolver):
        basic = await FeatureContext("t-basic", resolver=resolver, memo=RequestScopedMemo()).load()
        pro = await FeatureContext("t-pro", resolver=resolver, memo=RequestScopedMemo()).load()
        assert basic.plan == PlanTier.BASIC
        assert pro.plan == PlanTier.PRO
        assert basic.is_enabled(FeatureKey.INVENTORY) is False

    @pytest.mark.asyncio
    async def test_to_dict(self, resolver):
        data = (await FeatureContext("t-basic", resolver=resolver).load()).to_dict()
        assert data["tenant_id"] == "t-basic"
        assert data["plan"] == "basic"
        assert data["enabled"] == ["products", "public_catalog", "categories", "images"]
        assert len(data["disabled"]) == 16
        assert data["is_loading"] is False
        assert data["error"] is None


class TestFeatureEndpoints:

    def test_requires_auth(self, client, resolver):
        assert client.get("/api/features").status_code == 401

    def test_features_for_each_tenant(self, client, resolver):
        basic = client.get("/api/features", headers=auth_headers("u-basic", role="seller")).json()
        pro = client.get("/api/features", headers=auth_headers("u-pro", role="seller")).json()
        again = client.get("/api/features", headers=auth_headers("u-basic", role="seller")).json()

        assert basic["tenant_id"] == "t-basic"
        assert "inventory" not in basic["enabled"]
        assert pro["tenant_id"] == "t-pro"
        assert "inventory" in pro["enabled"]
        assert again == basic

    def test_refresh(self, client, resolver, configs):
        headers = auth_headers("u-basic", role="seller")
        client.get("/api/features", headers=headers)
        configs["t-basic"]["plan"] = "premium"

        response = client.post("/api/features/refresh", headers=headers)
        assert response.status_code == 200
        assert response.json()["plan"] == "premium"

    def test_check_feature(self, client, resolver):
        response = client.get("/api/features/check/expenses", headers=auth_headers("u-pro", role="seller"))
        assert response.status_code == 200
        assert response.json() == {
            "feature": "expenses",
            "allowed": False,
            "plan": "pro",
            "reason": response.json()["reason"],
            "required_plan": "premium",
        }

    def test_check_unknown_feature(self, client, resolver):
        response = client.get("/api/features/check/teleport", headers=auth_headers("u-pro"))
        assert response.status_code == 404

    def test_registry_is_public(self, client):
        response = client.get("/api/features/registry")
        assert response.status_code == 200
        data = response.json()
        assert set(data["categories"]) == {"core", "inventory", "sales", "finance", "analytics", "admin"}
        assert [p["code"] for p in data["plans"]] == ["basic", "pro", "premium", "custom"]

    def test_matrix(self, client):
        data = client.get("/api/features/matrix").json()
        assert data["features"]["inventory"]["plans"]["basic"] is False
        assert data["features"]["inventory"]["plans"]["pro"] is True
