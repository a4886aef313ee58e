"""
Dashboard tests.

Verifies:
- Today's sales, profit (from the unit cost snapshot), order count, low stock
- Daily series over store-local days, zero-filled
- Top products by quantity with deterministic ties
- Live feed window and admin-only access
"""

from datetime import datetime, timedelta

import pytest

from storeledger.models import Order, OrderItem, Transaction
from storeledger.permissions import PermissionDeniedError
from storeledger.services.dashboard_service import (
    get_kpis,
    get_live_sales,
    get_sales_series,
    get_top_products,
)
from storeledger.validation import ValidationError

from conftest import make_product, principal_for


NOW = datetime(2026, 3, 10, 15, 0, 0)


def record_sale(db_session, user, lines, created_at, status="APPROVED", method="CASH"):
    """
    Order + items + payment as checkout leaves them.

    `lines` is a list of (product, quantity); price and cost come from the product.
    """
    count = db_session.query(Order).count()
    subtotal = sum(product.price_cents * quantity for product, quantity in lines)
    order = Order(
        order_number=f"ORD-D{count + 1:05d}",
        status=status,
        payment_status="PAID",
        subtotal_cents=subtotal,
        discount_cents=0,
        tax_cents=0,
        total_cents=subtotal,
        created_by_user_id=user.id,
        created_at=created_at,
    )
    db_session.add(order)
    db_session.flush()

    for product, quantity in lines:
        db_session.add(OrderItem(
            order_id=order.id,
            product_id=product.id,
            quantity=quantity,
            unit_price_cents=product.price_cents,
            unit_cost_cents=product.cost_cents,
            line_total_cents=product.price_cents * quantity,
        ))
    db_session.add(Transaction(
        order_id=order.id,
        payment_method=method,
        amount_cents=subtotal,
        status="COMPLETED",
        reference=order.order_number,
        processed_by_user_id=user.id,
        processed_at=created_at,
    ))
    db_session.commit()
    return order


@pytest.fixture
def catalog(db_session):
    coffee = make_product(db_session, "COF", "Coffee", price_cents=1000, cost_cents=600, min_stock_level=5, stock=[3])
    tea = make_product(db_session, "TEA", "Tea", price_cents=500, cost_cents=100, stock=[10])
    cake = make_product(db_session, "CAK", "Cake", price_cents=800, cost_cents=300, stock=[10])
    return coffee, tea, cake


class TestKpis:

    def test_today_figures(self, db_session, manager, operator, catalog):
        coffee, tea, cake = catalog
        record_sale(db_session, operator, [(coffee, 2)], datetime(2026, 3, 10, 9, 0))
        record_sale(db_session, operator, [(tea, 1)], datetime(2026, 3, 10, 14, 0), method="PIX")
        record_sale(db_session, operator, [(cake, 4)], datetime(2026, 3, 10, 10, 0), status="CANCELLED")
        record_sale(db_session, operator, [(cake, 1)], datetime(2026, 3, 9, 23, 59))

        kpis = get_kpis(principal_for(manager), now=NOW)

        assert kpis["today_sales_cents"] == 2500
        # (2000 - 2*600) + (500 - 100)
        assert kpis["today_profit_cents"] == 1200
        assert kpis["total_orders"] == 2
        assert kpis["low_stock_count"] == 1
        assert kpis["window_start"] == "2026-03-10T00:00:00Z"

    def test_profit_uses_cost_snapshot(self, db_session, admin, operator, catalog):
        coffee, _, _ = catalog
        record_sale(db_session, operator, [(coffee, 1)], datetime(2026, 3, 10, 9, 0))
        coffee.cost_cents = 950
        db_session.commit()

        assert get_kpis(principal_for(admin), now=NOW)["today_profit_cents"] == 400

    def test_empty_day(self, db_session, admin):
        kpis = get_kpis(principal_for(admin), now=NOW)

        assert (kpis["today_sales_cents"], kpis["today_profit_cents"], kpis["total_orders"]) == (0, 0, 0)

    def test_operator_denied(self, db_session, operator):
        with pytest.raises(PermissionDeniedError):
            get_kpis(principal_for(operator), now=NOW)


class TestSalesSeries:

    def test_zero_filled_oldest_first(self, db_session, manager, operator, catalog):
        coffee, tea, _ = catalog
        record_sale(db_session, operator, [(coffee, 1)], datetime(2026, 3, 8, 12, 0))
        record_sale(db_session, operator, [(coffee, 2)], datetime(2026, 3, 10, 9, 0))
        record_sale(db_session, operator, [(tea, 1)], datetime(2026, 3, 10, 14, 0))
        record_sale(db_session, operator, [(tea, 1)], datetime(2026, 3, 7, 12, 0))

        series = get_sales_series(principal_for(manager), days=3, now=NOW)

        assert series["labels"] == ["08/03", "09/03", "10/03"]
        assert series["dates"] == ["2026-03-08", "2026-03-09", "2026-03-10"]
        assert series["data"] == [1000, 0, 2500]

    def test_days_follow_store_timezone(self, app, db_session, admin, operator, catalog, monkeypatch):
        monkeypatch.setitem(app.config, "STORE_TIMEZONE", "America/Sao_Paulo")
        coffee, _, _ = catalog
        # 01:00 UTC on the 10th is 22:00 on the 9th in Sao Paulo
        record_sale(db_session, operator, [(coffee, 1)], datetime(2026, 3, 10, 1, 0))

        series = get_sales_series(principal_for(admin), days=2, now=NOW)

        assert series["labels"] == ["09/03", "10/03"]
        assert series["data"] == [1000, 0]

    @pytest.mark.parametrize("days", [0, 32, "week"])
    def test_invalid_days(self, db_session, admin, days):
        with pytest.raises(ValidationError):
            get_sales_series(principal_for(admin), days=days, now=NOW)


class TestTopProducts:

    def test_ranked_by_quantity_then_id(self, db_session, manager, operator, catalog):
        coffee, tea, cake = catalog
        record_sale(db_session, operator, [(coffee, 2), (cake, 1)], datetime(2026, 3, 10, 9, 0))
        record_sale(db_session, operator, [(coffee, 3), (tea, 5)], datetime(2026, 3, 9, 9, 0))
        record_sale(db_session, operator, [(cake, 100)], datetime(2026, 3, 9, 10, 0), status="CANCELLED")

        top = get_top_products(principal_for(manager))

        assert [(p["code"], p["quantity"]) for p in top] == [("COF", 5), ("TEA", 5), ("CAK", 1)]
        assert top[0]["revenue_cents"] == 5000
        assert top[1]["revenue_cents"] == 2500

    def test_limit(self, db_session, admin, operator, catalog):
        coffee, tea, cake = catalog
        record_sale(db_session, operator, [(coffee, 1), (tea, 2), (cake, 3)], datetime(2026, 3, 10, 9, 0))

        top = get_top_products(principal_for(admin), limit=2)

        assert [p["code"] for p in top] == ["CAK", "TEA"]

    def test_limit_is_capped(self, db_session, admin):
        with pytest.raises(ValidationError):
            get_top_products(principal_for(admin), limit=51)


class TestLiveSales:

    def test_recent_sales_newest_first(self, db_session, admin, operator, catalog):
        coffee, tea, _ = catalog
        record_sale(db_session, operator, [(coffee, 1)], NOW - timedelta(minutes=20))
        older = record_sale(db_session, operator, [(tea, 1)], NOW - timedelta(minutes=8), method="PIX")
        newer = record_sale(db_session, operator, [(coffee, 1), (tea, 2)], NOW - timedelta(minutes=1))
        older_id, newer_id = older.id, newer.id

        sales = get_live_sales(principal_for(admin), now=NOW)

        assert [s["id"] for s in sales] == [newer_id, older_id]
        assert sales[0]["items_count"] == 2
        assert sales[0]["total_cents"] == 2000
        assert sales[1]["payment_method"] == "PIX"

    def test_window_is_configurable(self, db_session, admin, operator, catalog):
        coffee, _, _ = catalog
        record_sale(db_session, operator, [(coffee, 1)], NOW - timedelta(minutes=20))

        assert get_live_sales(principal_for(admin), minutes=30, now=NOW)[0]["order_number"] == "ORD-D00001"
        assert get_live_sales(principal_for(admin), minutes=10, now=NOW) == []

    def test_manager_denied(self, db_session, manager):
        with pytest.raises(PermissionDeniedError):
            get_live_sales(principal_for(manager), now=NOW)


class TestDashboardRoutes:

    def test_manager_reads_dashboard(self, client, db_session, manager_headers):
        kpi = client.get("/api/dashboard/kpi", headers=manager_headers)
        series = client.get("/api/dashboard/sales?days=5", headers=manager_headers)
        top = client.get("/api/dashboard/top-products", headers=manager_headers)

        assert kpi.status_code == 200
        assert set(kpi.json["data"]) >= {"today_sales_cents", "today_profit_cents", "total_orders", "low_stock_count"}
        assert series.status_code == 200
        assert len(series.json["labels"]) == 5
        assert top.status_code == 200
        assert top.json["data"] == []

    def test_operator_denied(self, client, db_session, operator_headers):
        assert client.get("/api/dashboard/kpi", headers=operator_headers).status_code == 403
        assert client.get("/api/dashboard/sales", headers=operator_headers).status_code == 403

    def test_live_sales_admin_only(self, client, db_session, manager_headers, admin_headers):
        assert client.get("/api/dashboard/live-sales", headers=manager_headers).status_code == 403

        resp = client.get("/api/dashboard/live-sales", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["count"] == 0

    def test_bad_days(self, client, db_session, admin_headers):
        assert client.get("/api/dashboard/sales?days=0", headers=admin_headers).status_code == 400

    def test_requires_auth(self, client, db_session):
        assert client.get("/api/dashboard/kpi").status_code == 401
