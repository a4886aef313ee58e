# Overview: Service-layer read models for the sales dashboard; aggregates the order ledger.

"""
Dashboard Service

Read-only figures derived from the same Order / OrderItem / Transaction
rows that checkout writes:
- KPIs for the current store day (sales, profit, order count, low stock)
- Daily sales series for the last N store days
- Top products by quantity sold
- Live feed of sales committed in the last few minutes

Days are calendar days in STORE_TIMEZONE, like cash closing. Profit uses
the unit_cost_cents snapshot on each OrderItem, so later cost edits never
rewrite history.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Order, OrderItem, Product
from ..permissions import require_permission
from ..validation import parse_int
from storeledger.time_utils import utcnow, to_utc_z, local_date, local_date_bounds, local_day_window
from .inventory_service import low_stock_rows
from .session_service import Principal, require_principal


# Orders that never became sales
EXCLUDED_ORDER_STATUSES = ("CANCELLED", "DRAFT")

# Orders counted as sold for product rankings and the live feed
SOLD_ORDER_STATUSES = ("APPROVED", "PROCESSING", "SHIPPED", "DELIVERED", "COMPLETED")

MAX_SERIES_DAYS = 31
MAX_TOP_PRODUCTS = 50
MAX_LIVE_MINUTES = 24 * 60
LIVE_SALES_LIMIT = 20


def _store_timezone() -> str:
    return current_app.config.get("STORE_TIMEZONE", "UTC")


def _resolve_now(now: datetime | None) -> datetime:
    if now is None:
        return utcnow()
    if now.tzinfo is not None:
        return now.astimezone(timezone.utc).replace(tzinfo=None)
    return now


def _sales_in_window(window_start: datetime, window_end: datetime) -> tuple[int, int]:
    """(sum of total_cents, order count) for sales created in [start, end)."""
    total, count = (
        db.session.query(
            func.coalesce(func.sum(Order.total_cents), 0),
            func.count(Order.id),
        )
        .filter(
            Order.status.notin_(EXCLUDED_ORDER_STATUSES),
            Order.created_at >= window_start,
            Order.created_at < window_end,
        )
        .one()
    )
    return int(total or 0), int(count or 0)


def get_kpis(principal: Principal | None, now: datetime | None = None) -> dict:
    """
    Today's headline numbers.

    Requires: VIEW_DASHBOARD (admin, manager)

    profit = sum over today's lines of line_total - unit_cost * quantity
    (tax and order discounts excluded).
    """
    principal = require_principal(principal)
    require_permission(principal.role, "VIEW_DASHBOARD")

    now = _resolve_now(now)
    window_start, window_end = local_day_window(now, _store_timezone())

    sales_cents, order_count = _sales_in_window(window_start, window_end)

    profit_cents = (
        db.session.query(
            func.coalesce(
                func.sum(OrderItem.line_total_cents - OrderItem.unit_cost_cents * OrderItem.quantity),
                0,
            )
        )
        .join(Order, Order.id == OrderItem.order_id)
        .filter(
            Order.status.notin_(EXCLUDED_ORDER_STATUSES),
            Order.created_at >= window_start,
            Order.created_at < window_end,
        )
        .scalar()
    )

    return {
        "today_sales_cents": sales_cents,
        "today_profit_cents": int(profit_cents or 0),
        "total_orders": order_count,
        "low_stock_count": len(low_stock_rows()),
        "window_start": to_utc_z(window_start),
        "window_end": to_utc_z(window_end),
    }


def get_sales_series(principal: Principal | None, days=7, now: datetime | None = None) -> dict:
    """
    Sales per store day, oldest first, today included.

    Requires: VIEW_DASHBOARD (admin, manager)

    Days without sales are present with 0. Labels are "dd/MM".
    """
    principal = require_principal(principal)
    require_permission(principal.role, "VIEW_DASHBOARD")

    days = parse_int(days, "days", minimum=1, maximum=MAX_SERIES_DAYS)
    tz_name = _store_timezone()
    today = local_date(_resolve_now(now), tz_name)

    dates, labels, data = [], [], []
    for offset in range(days - 1, -1, -1):
        day = today - timedelta(days=offset)
        window_start, window_end = local_date_bounds(day, tz_name)
        sales_cents, _ = _sales_in_window(window_start, window_end)

        dates.append(day.isoformat())
        labels.append(day.strftime("%d/%m"))
        data.append(sales_cents)

    return {"dates": dates, "labels": labels, "data": data}


def get_top_products(principal: Principal | None, limit=5) -> list[dict]:
    """
    Best sellers by quantity over all sold orders.

    Requires: VIEW_DASHBOARD (admin, manager)

    Ties on quantity are broken by lowest product id.
    """
    principal = require_principal(principal)
    require_permission(principal.role, "VIEW_DASHBOARD")

    limit = parse_int(limit, "limit", minimum=1, maximum=MAX_TOP_PRODUCTS)

    quantity = func.sum(OrderItem.quantity).label("quantity")
    rows = (
        db.session.query(
            Product.id,
            Product.code,
            Product.name,
            quantity,
            func.sum(OrderItem.line_total_cents).label("revenue_cents"),
        )
        .select_from(OrderItem)
        .join(Order, Order.id == OrderItem.order_id)
        .join(Product, Product.id == OrderItem.product_id)
        .filter(Order.status.in_(SOLD_ORDER_STATUSES))
        .group_by(Product.id, Product.code, Product.name)
        .order_by(quantity.desc(), Product.id.asc())
        .limit(limit)
        .all()
    )

    return [
        {
            "product_id": product_id,
            "code": code,
            "name": name,
            "quantity": int(qty or 0),
            "revenue_cents": int(revenue or 0),
        }
        for product_id, code, name, qty, revenue in rows
    ]


def get_live_sales(principal: Principal | None, minutes=10, now: datetime | None = None) -> list[dict]:
    """
    Sales created in the last `minutes`, newest first (at most 20).

    Requires: VIEW_LIVE_SALES (admin only)
    """
    principal = require_principal(principal)
    require_permission(principal.role, "VIEW_LIVE_SALES")

    minutes = parse_int(minutes, "minutes", minimum=1, maximum=MAX_LIVE_MINUTES)
    since = _resolve_now(now) - timedelta(minutes=minutes)

    orders = (
        db.session.query(Order)
        .filter(
            Order.status.in_(SOLD_ORDER_STATUSES),
            Order.created_at >= since,
        )
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(LIVE_SALES_LIMIT)
        .all()
    )

    sales = []
    for order in orders:
        transactions = sorted(order.transactions, key=lambda t: t.id)
        sales.append({
            "id": order.id,
            "order_number": order.order_number,
            "total_cents": order.total_cents,
            "payment_method": transactions[0].payment_method if transactions else "UNKNOWN",
            "customer_id": order.customer_id,
            "items_count": len(order.items),
            "created_by_user_id": order.created_by_user_id,
            "created_at": to_utc_z(order.created_at),
        })
    return sales
