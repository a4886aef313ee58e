# Overview: Flask API routes for the sales dashboard; parses input and returns JSON responses.

# backend/storeledger/routes/dashboard.py
"""
Dashboard routes.

SECURITY: All routes require authentication.
- KPIs, sales series and top products require VIEW_DASHBOARD (admin, manager)
- Live sales require VIEW_LIVE_SALES (admin only)
"""
from flask import Blueprint, request, g

from ..validation import ValidationError
from ..permissions import PermissionDeniedError
from ..services.session_service import UnauthenticatedError
from ..services.dashboard_service import get_kpis, get_sales_series, get_top_products, get_live_sales
from ..decorators import require_auth, require_permission


dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/api/dashboard")


def _service_error(e: Exception):
    if isinstance(e, ValidationError):
        return {"error": str(e)}, 400
    if isinstance(e, UnauthenticatedError):
        return {"error": str(e)}, 401
    return {"error": "Permission denied", "message": str(e)}, 403


@dashboard_bp.get("/kpi")
@require_auth
@require_permission("VIEW_DASHBOARD")
def kpi_route():
    """Today's sales, profit, order count and low-stock count."""
    try:
        kpis = get_kpis(g.principal)
    except (UnauthenticatedError, PermissionDeniedError) as e:
        return _service_error(e)

    return {"data": kpis}, 200


@dashboard_bp.get("/sales")
@require_auth
@require_permission("VIEW_DASHBOARD")
def sales_route():
    """Daily sales for the last N store days. Query param: days (default 7, max 31)."""
    try:
        series = get_sales_series(g.principal, days=request.args.get("days", 7))
    except (ValidationError, UnauthenticatedError, PermissionDeniedError) as e:
        return _service_error(e)

    return series, 200


@dashboard_bp.get("/top-products")
@require_auth
@require_permission("VIEW_DASHBOARD")
def top_products_route():
    """Best sellers by quantity. Query param: limit (default 5, max 50)."""
    try:
        products = get_top_products(g.principal, limit=request.args.get("limit", 5))
    except (ValidationError, UnauthenticatedError, PermissionDeniedError) as e:
        return _service_error(e)

    return {"data": products}, 200


@dashboard_bp.get("/live-sales")
@require_auth
@require_permission("VIEW_LIVE_SALES")
def live_sales_route():
    """Sales of the last minutes, newest first. Query param: minutes (default 10)."""
    try:
        sales = get_live_sales(g.principal, minutes=request.args.get("minutes", 10))
    except (ValidationError, UnauthenticatedError, PermissionDeniedError) as e:
        return _service_error(e)

    return {"data": sales, "count": len(sales)}, 200
