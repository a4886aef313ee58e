# Overview: Service-layer operations for stock; encapsulates business logic and database work.

# backend/storeledger/services/inventory_service.py

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import func

from ..extensions import db
from ..models import Product, Stock, StockMovement, MOVEMENT_TYPES
from ..permissions import require_permission, has_permission
from ..validation import ValidationError, NotFoundError, ConflictError, parse_int, parse_optional_text
from storeledger.time_utils import utcnow
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
from .session_service import Principal, require_principal
"""
Stock Ledger Invariants (authoritative)

Stock model:
- Stock rows hold on-hand `quantity` and `reserved` per product location.
- available = SUM(quantity) - SUM(reserved) across all rows of a product.
- available never goes negative after a committed sale.

Allocation order:
- Sales deduct from rows in ascending Stock.id order (oldest row first);
  a row gives min(its available, remaining) and allocation stops at zero.

Audit:
- Every quantity change appends exactly one StockMovement in the same DB
  transaction, with the magnitude of the change and its type.
- StockMovement is append-only (no updates/deletes).
"""


MOVEMENT_HISTORY_DAYS = 30
MAX_MOVEMENTS_PAGE_SIZE = 200


class InsufficientStockError(ConflictError):
    """Raised when a sale asks for more than the available stock."""

    def __init__(self, product_id: int, product_name: str, available: int, requested: int):
        super().__init__(
            f"Insufficient stock for {product_name}. Available: {available}, Requested: {requested}",
            details={
                "product_id": product_id,
                "product_name": product_name,
                "available": available,
                "requested": requested,
            },
        )
        self.product_id = product_id
        self.product_name = product_name
        self.available = available
        self.requested = requested


@dataclass(frozen=True)
class StockTotals:
    quantity: int
    reserved: int

    @property
    def available(self) -> int:
        return self.quantity - self.reserved


def get_stock_totals(product_id: int) -> StockTotals:
    row = db.session.query(
        func.coalesce(func.sum(Stock.quantity), 0).label("quantity"),
        func.coalesce(func.sum(Stock.reserved), 0).label("reserved"),
    ).filter(Stock.product_id == product_id).one()
    return StockTotals(quantity=int(row.quantity or 0), reserved=int(row.reserved or 0))


def get_available_stock(product_id: int) -> int:
    """SUM(quantity) - SUM(reserved) over every stock row of the product."""
    return get_stock_totals(product_id).available


def load_stock_rows(product_id: int, *, lock: bool = False) -> list[Stock]:
    """Stock rows of a product in allocation order (lowest id first)."""
    query = db.session.query(Stock).filter(Stock.product_id == product_id).order_by(Stock.id.asc())
    if lock:
        query = lock_for_update(query)
    return query.all()


def allocate_stock(rows: list[Stock], quantity: int) -> list[tuple[Stock, int]]:
    """
    Deduct `quantity` from `rows` in the order given.

    Each row with available > 0 gives min(available, remaining). Rows must
    already be validated to cover the quantity; a shortfall here means the
    caller skipped validation and is a hard error.

    Returns (row, deducted) pairs for rows that changed.
    """
    remaining = quantity
    allocations: list[tuple[Stock, int]] = []

    for row in rows:
        if remaining <= 0:
            break
        available = row.quantity - row.reserved
        if available <= 0:
            continue
        deduct = min(available, remaining)
        row.quantity = row.quantity - deduct
        remaining -= deduct
        allocations.append((row, deduct))

    if remaining > 0:
        raise ConflictError("stock allocation fell short of validated quantity")

    return allocations


def record_movement(
    *,
    product_id: int,
    movement_type: str,
    quantity: int,
    reason: str,
    user_id: int,
    reference: str | None = None,
) -> StockMovement:
    """
    Append a StockMovement inside the caller's transaction (flush, no commit).

    quantity is the magnitude of the change and must be positive.
    """
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"invalid movement type {movement_type}")
    if quantity <= 0:
        raise ValidationError("movement quantity must be > 0")

    movement = StockMovement(
        product_id=product_id,
        type=movement_type,
        quantity=quantity,
        reason=reason,
        reference=reference,
        user_id=user_id,
        created_at=utcnow(),
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def _get_product(product_id: int, *, lock: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def receive_stock(
    *,
    product_id: int,
    quantity: int,
    user_id: int,
    location: str = "MAIN",
    reason: str | None = None,
    reference: str | None = None,
) -> Stock:
    """
    Bring stock in at a location (creates the location row on first use).

    Records one IN movement.
    """
    quantity = parse_int(quantity, "quantity", minimum=1)
    location = parse_optional_text(location, "location", 64) or "MAIN"

    def _op():
        begin_write_transaction()
        _get_product(product_id, lock=True)

        row = lock_for_update(
            db.session.query(Stock).filter_by(product_id=product_id, location=location)
        ).first()
        if row is None:
            row = Stock(product_id=product_id, location=location, quantity=0, reserved=0)
            db.session.add(row)

        row.quantity = (row.quantity or 0) + quantity
        db.session.flush()

        record_movement(
            product_id=product_id,
            movement_type="IN",
            quantity=quantity,
            reason=reason or f"Stock received at {location}",
            reference=reference,
            user_id=user_id,
        )

        db.session.commit()
        return row

    return run_with_retry(_op)


def adjust_stock(
    principal: Principal | None,
    *,
    product_id,
    new_quantity,
    reason,
    stock_id=None,
) -> dict:
    """
    Set a stock row to an absolute counted quantity.

    Targets the product's only stock row, or the row named by stock_id
    when the product is stocked at several locations. Records one
    ADJUSTMENT movement with the magnitude of the change; an unchanged
    quantity writes nothing.

    Requires: ADJUST_STOCK (admin, manager)
    """
    principal = require_principal(principal)
    require_permission(principal.role, "ADJUST_STOCK")

    product_id = parse_int(product_id, "product_id", minimum=1)
    new_quantity = parse_int(new_quantity, "new_quantity", minimum=0)
    reason = parse_optional_text(reason, "reason", 200)
    if not reason:
        raise ValidationError("reason is required")
    if stock_id is not None:
        stock_id = parse_int(stock_id, "stock_id", minimum=1)

    def _op():
        begin_write_transaction()
        product = _get_product(product_id, lock=True)
        rows = load_stock_rows(product.id, lock=True)

        if not rows:
            raise ConflictError(f"Product {product.name} has no stock record")

        if stock_id is not None:
            target = next((row for row in rows if row.id == stock_id), None)
            if target is None:
                raise NotFoundError(f"Stock {stock_id} not found for product {product.id}")
        elif len(rows) == 1:
            target = rows[0]
        else:
            raise ValidationError("stock_id is required for products stocked at several locations")

        if new_quantity < target.reserved:
            raise ConflictError(
                f"Quantity cannot be below reserved stock ({target.reserved})",
                details={"reserved": target.reserved, "new_quantity": new_quantity},
            )

        previous_total = sum(row.quantity for row in rows)
        previous_quantity = target.quantity
        difference = new_quantity - previous_quantity

        movement = None
        if difference != 0:
            target.quantity = new_quantity
            db.session.flush()
            movement = record_movement(
                product_id=product.id,
                movement_type="ADJUSTMENT",
                quantity=abs(difference),
                reason=f"Stock adjustment: {reason}",
                reference=f"ADJ-{utcnow():%Y%m%d%H%M%S%f}",
                user_id=principal.user_id,
            )

        db.session.commit()

        return {
            "product_id": product.id,
            "product_name": product.name,
            "stock_id": target.id,
            "location": target.location,
            "previous_quantity": previous_quantity,
            "new_quantity": new_quantity,
            "difference": difference,
            "previous_stock": previous_total,
            "new_stock": previous_total + difference,
            "movement": movement.to_dict() if movement else None,
        }

    return run_with_retry(_op)


def list_movements(
    principal: Principal | None,
    *,
    product_id=None,
    user_id=None,
    movement_type: str | None = None,
    page=1,
    limit=50,
) -> dict:
    """
    Stock movements of the last 30 days, newest first.

    Users without VIEW_ALL_STOCK_MOVEMENTS (operators) only see their own
    movements; their user_id filter is ignored.
    """
    principal = require_principal(principal)
    require_permission(principal.role, "VIEW_STOCK_MOVEMENTS")

    page = parse_int(page, "page", minimum=1)
    limit = parse_int(limit, "limit", minimum=1, maximum=MAX_MOVEMENTS_PAGE_SIZE)

    since = utcnow() - timedelta(days=MOVEMENT_HISTORY_DAYS)
    q = db.session.query(StockMovement).filter(StockMovement.created_at >= since)

    if has_permission(principal.role, "VIEW_ALL_STOCK_MOVEMENTS"):
        if user_id is not None:
            q = q.filter(StockMovement.user_id == parse_int(user_id, "user_id", minimum=1))
    else:
        q = q.filter(StockMovement.user_id == principal.user_id)

    if product_id is not None:
        q = q.filter(StockMovement.product_id == parse_int(product_id, "product_id", minimum=1))

    if movement_type:
        movement_type = movement_type.strip().upper()
        if movement_type not in MOVEMENT_TYPES:
            raise ValidationError(f"type must be one of {', '.join(MOVEMENT_TYPES)}")
        q = q.filter(StockMovement.type == movement_type)

    total = q.count()
    movements = (
        q.order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    total_pages = math.ceil(total / limit) if total else 0

    data = []
    for movement in movements:
        row = movement.to_dict()
        row["product"] = {
            "id": movement.product.id,
            "code": movement.product.code,
            "name": movement.product.name,
        }
        row["user"] = {
            "id": movement.user.id,
            "name": movement.user.display_name,
            "email": movement.user.email,
            "role": movement.user.role,
        }
        data.append(row)

    return {
        "data": data,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": total_pages,
            "has_next_page": page < total_pages,
            "has_prev_page": page > 1,
        },
    }


def low_stock_rows() -> list[tuple]:
    """(product, on_hand, reserved) for active, tracked products with on_hand <= reorder point."""
    rows = (
        db.session.query(
            Product,
            func.coalesce(func.sum(Stock.quantity), 0).label("quantity"),
            func.coalesce(func.sum(Stock.reserved), 0).label("reserved"),
        )
        .outerjoin(Stock, Stock.product_id == Product.id)
        .filter(Product.is_active.is_(True), Product.track_inventory.is_(True))
        .group_by(Product.id)
        .all()
    )
    return [
        (product, int(quantity or 0), int(reserved or 0))
        for product, quantity, reserved in rows
        if int(quantity or 0) <= product.min_stock_level
    ]


def get_stock_alerts(principal: Principal | None) -> list[dict]:
    """
    Active, tracked products at or below their reorder point.

    severity = min_stock_level - on_hand; most severe first, then lowest
    on-hand.
    """
    principal = require_principal(principal)
    require_permission(principal.role, "VIEW_STOCK_ALERTS")

    alerts = []
    for product, quantity, reserved in low_stock_rows():
        alerts.append({
            "id": product.id,
            "code": product.code,
            "name": product.name,
            "quantity": quantity,
            "reserved": reserved,
            "available_stock": quantity - reserved,
            "reorder_point": product.min_stock_level,
            "severity": product.min_stock_level - quantity,
        })

    alerts.sort(key=lambda a: (-a["severity"], a["quantity"]))
    return alerts
