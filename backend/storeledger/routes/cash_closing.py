# Overview: Flask API routes for blind cash closing; parses input and returns JSON responses.

# backend/storeledger/routes/cash_closing.py
"""
Blind cash closing routes.

SECURITY: All routes require authentication.
- Closing requires CLOSE_CASH permission (all roles)
- History requires VIEW_CASH_CLOSINGS permission (admin only)
"""
from flask import Blueprint, request, current_app, g

from ..validation import ValidationError
from ..permissions import PermissionDeniedError
from ..services.session_service import UnauthenticatedError
from ..services.cash_closing_service import close_cash, list_closings
from ..decorators import require_auth, require_permission


cash_closing_bp = Blueprint("cash_closing", __name__, url_prefix="/api/cash-closing")


@cash_closing_bp.post("")
@require_auth
@require_permission("CLOSE_CASH")
def close_route():
    """
    Record the operator's blind count for today.

    Body: {"cash_counted_cents": 100000, "card_counted_cents": 50000,
           "pix_counted_cents": 30000, "notes": null}
    """
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return {"error": "JSON body required"}, 400

    try:
        result = close_cash(
            g.principal,
            payload.get("cash_counted_cents"),
            payload.get("card_counted_cents"),
            payload.get("pix_counted_cents"),
            notes=payload.get("notes"),
        )
    except ValidationError as e:
        return {"error": str(e)}, 400
    except UnauthenticatedError as e:
        return {"error": str(e)}, 401
    except PermissionDeniedError as e:
        return {"error": "Permission denied", "message": str(e)}, 403
    except Exception:
        current_app.logger.exception("Cash closing failed")
        return {"error": "Internal server error"}, 500

    return {"data": result}, 201


@cash_closing_bp.get("")
@require_auth
@require_permission("VIEW_CASH_CLOSINGS")
def list_route():
    """Latest closings, newest first. Query param: limit (default 30, max 100)."""
    try:
        closings = list_closings(g.principal, limit=request.args.get("limit", 30))
    except ValidationError as e:
        return {"error": str(e)}, 400
    except UnauthenticatedError as e:
        return {"error": str(e)}, 401
    except PermissionDeniedError as e:
        return {"error": "Permission denied", "message": str(e)}, 403

    return {"data": closings}, 200
