"""
Back-office operations: sales, expenses and reports are written and read
only for tenants whose plan enables them, and always under the caller's tenant.
"""
import pytest
from conftest import auth_headers, tenant_row


@pytest.fixture
def db(mock_db):
    return mock_db(
        configs={
            "t-basic": tenant_row("t-basic", "basic"),
            "t-pro": tenant_row("t-pro", "pro"),
            "t-premium": tenant_row("t-premium", "premium"),
            "t-reports": tenant_row("t-reports", "pro", {"advanced_reports": True}),
        },
        profiles={"u-basic": "t-basic", "u-pro": "t-pro", "u-premium": "t-premium", "u-reports": "t-reports"},
        sales=[{"total": 100.0}, {"total": 50.0}],
        expenses=[{"amount": 30.0}],
    )


SALE = {"product_id": "p-1", "quantity": 3, "unit_price": 10.0}
EXPENSE = {"description": "Rent", "amount": 500.0, "category": "fixed"}


class TestSales:

    def test_pro_records_sale(self, client, db):
        response = client.post("/api/sales", json=SALE, headers=auth_headers("u-pro", role="seller"))
        assert response.status_code == 200
        body = response.json()
        assert body["tenant_id"] == "t-pro"
        assert body["total"] == 30.0
        assert body["created_by"] == "u-pro"
        db.sales.insert_one.assert_awaited_once()

    def test_basic_denied_without_write(self, client, db):
        response = client.post("/api/sales", json=SALE, headers=auth_headers("u-basic", role="seller"))
        assert response.status_code == 403
        assert response.json()["feature"] == "sales"
        db.sales.insert_one.assert_not_awaited()

    def test_invalid_quantity(self, client, db):
        response = client.post(
            "/api/sales",
            json={**SALE, "quantity": 0},
            headers=auth_headers("u-pro", role="seller")
        )
        assert response.status_code == 422
        db.sales.insert_one.assert_not_awaited()


class TestExpenses:

    def test_premium_records_expense(self, client, db):
        response = client.post("/api/expenses", json=EXPENSE, headers=auth_headers("u-premium", role="accountant"))
        assert response.status_code == 200
        assert response.json()["tenant_id"] == "t-premium"
        db.expenses.insert_one.assert_awaited_once()

    def test_pro_denied(self, client, db):
        response = client.post("/api/expenses", json=EXPENSE, headers=auth_headers("u-pro", role="accountant"))
        assert response.status_code == 403
        body = response.json()
        assert body["feature"] == "expenses"
        assert body["required_plan"] == "premium"
        db.expenses.insert_one.assert_not_awaited()


class TestReports:

    def test_premium_report_includes_profit(self, client, db):
        response = client.get("/api/reports", headers=auth_headers("u-premium"))
        assert response.status_code == 200
        body = response.json()
        assert body["sales_total"] == 150.0
        assert body["expenses_total"] == 30.0
        assert body["profit"] == 120.0
        db.sales.find.assert_called_with({"tenant_id": "t-premium"}, {"_id": 0, "total": 1})

    def test_override_report_without_profit_loss(self, client, db):
        response = client.get("/api/reports", headers=auth_headers("u-reports"))
        assert response.status_code == 200
        assert "profit" not in response.json()

    def test_pro_denied(self, client, db):
        response = client.get("/api/reports", headers=auth_headers("u-pro"))
        assert response.status_code == 403


class TestPages:

    def test_dashboard_is_ungated(self, client, db):
        response = client.get("/admin/dashboard", headers=auth_headers("u-basic"))
        assert response.status_code == 200
        assert response.json()["features"]["plan"] == "basic"

    def test_upgrade_page_lists_plans(self, client, db):
        response = client.get("/admin/upgrade", headers=auth_headers("u-basic"))
        assert response.status_code == 200
        assert response.json()["current_plan"] == "basic"
        assert len(response.json()["plans"]) == 4

    @pytest.mark.parametrize("path", ["/admin/ventas", "/admin/ventas/registrar", "/admin/clientes"])
    def test_sales_pages_need_pro(self, client, db, path):
        denied = client.get(path, headers=auth_headers("u-basic"), follow_redirects=False)
        assert denied.status_code == 303
        allowed = client.get(path, headers=auth_headers("u-pro"))
        assert allowed.status_code == 200

    @pytest.mark.parametrize("path", ["/admin/gastos", "/admin/gastos/registrar", "/admin/configuracion"])
    def test_premium_pages(self, client, db, path):
        assert client.get(path, headers=auth_headers("u-pro"), follow_redirects=False).status_code == 303
        assert client.get(path, headers=auth_headers("u-premium")).status_code == 200
