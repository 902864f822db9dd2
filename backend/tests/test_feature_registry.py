"""
Feature registry tests: completeness, plan defaults and the entitlement matrix.
"""
from models import FeatureCategory, FeatureKey, PlanTier
from services import feature_registry
from services.plan_resolver import level


class TestRegistryCompleteness:
    """Every FeatureKey is registered exactly once."""

    def test_twenty_features(self):
        assert len(feature_registry.list_all()) == 20

    def test_registry_matches_enum(self):
        assert feature_registry.all_keys() == frozenset(FeatureKey)

    def test_no_duplicate_keys(self):
        keys = [f.key for f in feature_registry.list_all()]
        assert len(keys) == len(set(keys))

    def test_every_category_present(self):
        grouped = feature_registry.by_category()
        assert set(grouped) == set(FeatureCategory)
        assert sum(len(v) for v in grouped.values()) == 20


class TestPlanDefaults:

    def test_basic_plan_features(self):
        keys = {f.key for f in feature_registry.for_plan(PlanTier.BASIC)}
        assert keys == {
            FeatureKey.PRODUCTS,
            FeatureKey.PUBLIC_CATALOG,
            FeatureKey.CATEGORIES,
            FeatureKey.IMAGES,
        }

    def test_minimal_set_equals_basic(self):
        basic = {f.key for f in feature_registry.for_plan(PlanTier.BASIC)}
        assert feature_registry.minimal_feature_keys() == frozenset(basic)

    def test_pro_adds_inventory_and_sales(self):
        keys = {f.key for f in feature_registry.for_plan(PlanTier.PRO)}
        assert FeatureKey.INVENTORY in keys
        assert FeatureKey.SALES in keys
        assert FeatureKey.SALES_ANALYTICS in keys
        assert FeatureKey.EXPENSES not in keys
        assert FeatureKey.DISCOUNTS not in keys

    def test_premium_has_everything(self):
        assert len(feature_registry.for_plan(PlanTier.PREMIUM)) == 20

    def test_custom_has_everything_by_default(self):
        assert len(feature_registry.for_plan(PlanTier.CUSTOM)) == 20

    def test_plan_inclusion_is_monotonic(self):
        """Anything a lower plan enables, every higher plan enables."""
        plans = sorted(PlanTier, key=level)
        for lower, higher in zip(plans, plans[1:]):
            lower_keys = {f.key for f in feature_registry.for_plan(lower)}
            higher_keys = {f.key for f in feature_registry.for_plan(higher)}
            assert lower_keys <= higher_keys


class TestMetadata:

    def test_plan_metadata_prices(self):
        pro = feature_registry.get_plan_metadata(PlanTier.PRO)
        assert pro["code"] == "pro"
        assert pro["level"] == 2
        assert pro["monthly_price"] == 80
        assert pro["setup_fee"] == 150

    def test_matrix_shape(self):
        matrix = feature_registry.get_entitlement_matrix()
        assert set(matrix["features"]) == {k.value for k in FeatureKey}
        expenses = matrix["features"]["expenses"]
        assert expenses["min_plan"] == "premium"
        assert expenses["plans"] == {"basic": False, "pro": False, "premium": True, "custom": True}
        assert set(matrix["plans"]) == {"basic", "pro", "premium", "custom"}

    def test_feature_to_dict(self):
        data = feature_registry.get_feature(FeatureKey.INVENTORY).to_dict()
        assert data["key"] == "inventory"
        assert data["category"] == "inventory"
        assert data["requires_setup"] is True
