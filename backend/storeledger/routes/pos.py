# Overview: Flask API routes for point-of-sale operations; parses input and returns JSON responses.

# backend/storeledger/routes/pos.py
"""
Point-of-sale routes.

SECURITY: All routes require authentication.
- Product lookup requires SEARCH_PRODUCTS permission
- Checkout requires CHECKOUT permission

Acting user and role always come from the session (g.principal), never
from the request body.
"""
from flask import Blueprint, request, current_app, g

from ..validation import ValidationError, NotFoundError, ConflictError
from ..permissions import PermissionDeniedError
from ..services.session_service import UnauthenticatedError
from ..services.inventory_service import InsufficientStockError
from ..services.checkout_service import checkout
from ..services.products_service import search_products
from ..decorators import require_auth, require_permission


pos_bp = Blueprint("pos", __name__, url_prefix="/api/pos")


@pos_bp.get("/search")
@require_auth
@require_permission("SEARCH_PRODUCTS")
def search_route():
    """
    Find active products by code or name.

    Query params:
    - query: search text (empty returns an empty list)
    - limit: max results (default 10)
    """
    try:
        results = search_products(
            request.args.get("query"),
            limit=request.args.get("limit", 10),
        )
    except ValidationError as e:
        return {"error": str(e)}, 400

    return {"data": results}, 200


@pos_bp.post("/checkout")
@require_auth
@require_permission("CHECKOUT")
def checkout_route():
    """
    Complete a sale: order, payment and stock deduction in one transaction.

    Body:
    {
        "items": [{"product_id": 1, "quantity": 2, "unit_price_cents": 1500}],
        "payment_method": "CASH",
        "discount_cents": 0,
        "notes": null,
        "customer_id": null,
        "customer_phone": null,
        "customer_email": null
    }
    """
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return {"error": "JSON body required"}, 400

    try:
        result = checkout(
            g.principal,
            payload.get("items"),
            payload.get("payment_method"),
            discount_cents=payload.get("discount_cents", 0),
            notes=payload.get("notes"),
            customer_id=payload.get("customer_id"),
            customer_phone=payload.get("customer_phone"),
            customer_email=payload.get("customer_email"),
        )
    except ValidationError as e:
        return {"error": str(e)}, 400
    except UnauthenticatedError as e:
        return {"error": str(e)}, 401
    except PermissionDeniedError as e:
        return {"error": "Permission denied", "message": str(e)}, 403
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except InsufficientStockError as e:
        return {"error": str(e), "details": e.details}, 409
    except ConflictError as e:
        return {"error": str(e), "details": e.details}, 409
    except Exception:
        current_app.logger.exception("Checkout failed")
        return {"error": "Internal server error"}, 500

    return {"data": result.to_dict(), "message": "Sale completed"}, 201
