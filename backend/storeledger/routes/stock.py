# Overview: Flask API routes for stock operations; parses input and returns JSON responses.

# backend/storeledger/routes/stock.py
"""
Stock ledger routes.

SECURITY: All routes require authentication.
- Adjust requires ADJUST_STOCK permission (admin, manager)
- Movements require VIEW_STOCK_MOVEMENTS; operators only see their own
- Alerts require VIEW_STOCK_ALERTS permission (admin, manager)
"""
from flask import Blueprint, request, current_app, g

from ..validation import ValidationError, NotFoundError, ConflictError
from ..permissions import PermissionDeniedError
from ..services.inventory_service import adjust_stock, list_movements, get_stock_alerts
from ..decorators import require_auth, require_permission


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


@stock_bp.post("/adjust")
@require_auth
@require_permission("ADJUST_STOCK")
def adjust_route():
    """
    Set a product's counted stock.

    Body: {"product_id": 1, "new_quantity": 12, "reason": "cycle count", "stock_id": null}
    """
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return {"error": "JSON body required"}, 400

    try:
        result = adjust_stock(
            g.principal,
            product_id=payload.get("product_id"),
            new_quantity=payload.get("new_quantity"),
            reason=payload.get("reason"),
            stock_id=payload.get("stock_id"),
        )
    except ValidationError as e:
        return {"error": str(e)}, 400
    except PermissionDeniedError as e:
        return {"error": "Permission denied", "message": str(e)}, 403
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ConflictError as e:
        return {"error": str(e), "details": e.details}, 409
    except Exception:
        current_app.logger.exception("Stock adjustment failed")
        return {"error": "Internal server error"}, 500

    return {"data": result, "message": "Stock adjusted"}, 200


@stock_bp.get("/movements")
@require_auth
@require_permission("VIEW_STOCK_MOVEMENTS")
def movements_route():
    """
    Stock movements of the last 30 days.

    Query params: product_id, user_id, type, page, limit
    """
    try:
        result = list_movements(
            g.principal,
            product_id=request.args.get("product_id"),
            user_id=request.args.get("user_id"),
            movement_type=request.args.get("type"),
            page=request.args.get("page", 1),
            limit=request.args.get("limit", 50),
        )
    except ValidationError as e:
        return {"error": str(e)}, 400
    except PermissionDeniedError as e:
        return {"error": "Permission denied", "message": str(e)}, 403

    return result, 200


@stock_bp.get("/alerts")
@require_auth
@require_permission("VIEW_STOCK_ALERTS")
def alerts_route():
    """Products at or below their reorder point, most severe first."""
    try:
        alerts = get_stock_alerts(g.principal)
    except PermissionDeniedError as e:
        return {"error": "Permission denied", "message": str(e)}, 403

    return {"data": alerts, "count": len(alerts)}, 200
