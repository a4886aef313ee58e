# Overview: Service-layer operations for POS checkout; encapsulates business logic and database work.

"""
POS Checkout Service

WHY: A sale touches the order, its lines, the stock rows, the stock ledger
and the payment record. Either all of it commits or none of it does, so a
cart can never leave money and inventory out of step.

Flow (one database transaction):
1. Lock the write path (BEGIN IMMEDIATE on SQLite, FOR UPDATE elsewhere)
2. Validate every product (exists, active, enough available stock)
3. Price lines in integer cents, tax per line rounded half-up
4. Allocate the order number from the ORDER sequence
5. Write Order, OrderItems, stock deductions, OUT movements, Transaction
6. Commit; then queue the receipt (never affects the sale)
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from ..extensions import db
from ..models import Order, OrderItem, Product, Transaction, PAYMENT_METHODS
from ..permissions import require_permission
from ..validation import (
    ValidationError,
    NotFoundError,
    ConflictError,
    MAX_AMOUNT_CENTS,
    parse_int,
    parse_cents,
    parse_optional_text,
)
from storeledger.time_utils import utcnow
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
from .inventory_service import InsufficientStockError, load_stock_rows, allocate_stock, record_movement
from .sequence_service import next_order_number
from .session_service import Principal, require_principal
from . import receipt_service


MAX_CART_LINES = 200
MAX_LINE_QUANTITY = 100_000


@dataclass(frozen=True)
class CheckoutItem:
    product_id: int
    quantity: int
    unit_price_cents: int | None = None


@dataclass
class CheckoutResult:
    order_id: int
    order_number: str
    subtotal_cents: int
    tax_cents: int
    discount_cents: int
    total_cents: int
    payment_method: str
    transaction_id: int
    items: list[dict] = field(default_factory=list)
    receipt_queued: bool = False

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "order_number": self.order_number,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "payment_method": self.payment_method,
            "transaction_id": self.transaction_id,
            "items": self.items,
            "receipt_queued": self.receipt_queued,
        }


def compute_line_tax(line_total_cents: int, tax_rate_bps: int) -> int:
    """Tax of one line in cents, rounded to the nearest cent (half-up)."""
    return (line_total_cents * tax_rate_bps + 5000) // 10000


def parse_items(items) -> list[CheckoutItem]:
    if not isinstance(items, list) or not items:
        raise ValidationError("empty cart")
    if len(items) > MAX_CART_LINES:
        raise ValidationError(f"cart cannot exceed {MAX_CART_LINES} lines")

    parsed = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"items[{index}] must be an object")
        unit_price = item.get("unit_price_cents")
        parsed.append(CheckoutItem(
            product_id=parse_int(item.get("product_id"), f"items[{index}].product_id", minimum=1),
            quantity=parse_int(item.get("quantity"), f"items[{index}].quantity", minimum=1, maximum=MAX_LINE_QUANTITY),
            unit_price_cents=parse_cents(unit_price, f"items[{index}].unit_price_cents") if unit_price is not None else None,
        ))
    return parsed


def parse_payment_method(payment_method) -> str:
    if not isinstance(payment_method, str) or payment_method.strip().upper() not in PAYMENT_METHODS:
        raise ValidationError("invalid payment method")
    return payment_method.strip().upper()


def _load_products(items: list[CheckoutItem]) -> dict[int, Product]:
    """Lock and validate every product in the cart, in product id order."""
    products: dict[int, Product] = {}
    for product_id in sorted({item.product_id for item in items}):
        product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
        if product is None:
            raise NotFoundError(f"Product {product_id} not found")
        if not product.is_active:
            raise ConflictError(f"Product {product.name} is inactive", details={"product_id": product.id})
        products[product_id] = product
    return products


def _validate_stock(items: list[CheckoutItem], products: dict[int, Product]) -> dict[int, list]:
    """
    Compare the cart's total quantity per product against available stock.

    Quantities of repeated lines for the same product are summed, so a cart
    cannot pass validation line by line and then oversell.
    """
    requested: dict[int, int] = {}
    for item in items:
        requested[item.product_id] = requested.get(item.product_id, 0) + item.quantity

    stock_rows = {}
    for product_id, quantity in requested.items():
        rows = load_stock_rows(product_id, lock=True)
        available = sum(row.quantity - row.reserved for row in rows)
        if available < quantity:
            product = products[product_id]
            raise InsufficientStockError(product.id, product.name, available, quantity)
        stock_rows[product_id] = rows
    return stock_rows


def checkout(
    principal: Principal | None,
    items,
    payment_method,
    discount_cents=0,
    notes=None,
    customer_id=None,
    customer_phone=None,
    customer_email=None,
) -> CheckoutResult:
    """
    Turn a cart into a committed, paid order and deduct its stock.

    Requires: CHECKOUT (all roles)

    Raises UnauthenticatedError, ValidationError, NotFoundError,
    ConflictError or InsufficientStockError; nothing is written on failure.
    """
    principal = require_principal(principal)
    require_permission(principal.role, "CHECKOUT")

    cart = parse_items(items)
    payment_method = parse_payment_method(payment_method)
    discount_cents = parse_cents(discount_cents if discount_cents is not None else 0, "discount_cents")
    notes = parse_optional_text(notes, "notes", 1000)
    if customer_id is not None:
        customer_id = parse_int(customer_id, "customer_id", minimum=1)
    customer_phone = parse_optional_text(customer_phone, "customer_phone", 32)
    customer_email = parse_optional_text(customer_email, "customer_email", 255)

    def _op():
        begin_write_transaction()

        products = _load_products(cart)
        stock_rows = _validate_stock(cart, products)

        priced = []
        subtotal_cents = 0
        tax_cents = 0
        for item in cart:
            product = products[item.product_id]
            unit_price = item.unit_price_cents if item.unit_price_cents is not None else product.price_cents
            line_total = unit_price * item.quantity
            line_tax = compute_line_tax(line_total, product.tax_rate_bps or 0)
            subtotal_cents += line_total
            tax_cents += line_tax
            priced.append((item, product, unit_price, line_total, line_tax))

        if discount_cents > subtotal_cents + tax_cents:
            raise ValidationError("discount cannot exceed order total")

        total_cents = subtotal_cents + tax_cents - discount_cents
        if total_cents > MAX_AMOUNT_CENTS:
            raise ValidationError("order total exceeds maximum amount")

        now = utcnow()
        order_number = next_order_number()

        order = Order(
            order_number=order_number,
            customer_id=customer_id,
            status="APPROVED",
            payment_status="PAID",
            subtotal_cents=subtotal_cents,
            discount_cents=discount_cents,
            tax_cents=tax_cents,
            total_cents=total_cents,
            notes=notes,
            created_by_user_id=principal.user_id,
            approved_by_user_id=principal.user_id,
            approved_at=now,
            created_at=now,
        )
        db.session.add(order)
        db.session.flush()

        lines = []
        for item, product, unit_price, line_total, line_tax in priced:
            db.session.add(OrderItem(
                order_id=order.id,
                product_id=product.id,
                quantity=item.quantity,
                unit_price_cents=unit_price,
                unit_cost_cents=product.cost_cents,
                tax_rate_bps=product.tax_rate_bps or 0,
                tax_cents=line_tax,
                line_total_cents=line_total,
            ))

            allocate_stock(stock_rows[product.id], item.quantity)
            db.session.flush()

            record_movement(
                product_id=product.id,
                movement_type="OUT",
                quantity=item.quantity,
                reason=f"POS sale #{order_number}",
                reference=order_number,
                user_id=principal.user_id,
            )

            lines.append({
                "product_id": product.id,
                "code": product.code,
                "name": product.name,
                "quantity": item.quantity,
                "unit_price_cents": unit_price,
                "tax_cents": line_tax,
                "line_total_cents": line_total,
            })

        transaction = Transaction(
            order_id=order.id,
            payment_method=payment_method,
            amount_cents=total_cents,
            status="COMPLETED",
            reference=order_number,
            processed_by_user_id=principal.user_id,
            processed_at=now,
            created_at=now,
        )
        db.session.add(transaction)
        db.session.flush()
        order_id, transaction_id = order.id, transaction.id

        db.session.commit()

        return CheckoutResult(
            order_id=order_id,
            order_number=order_number,
            subtotal_cents=subtotal_cents,
            tax_cents=tax_cents,
            discount_cents=discount_cents,
            total_cents=total_cents,
            payment_method=payment_method,
            transaction_id=transaction_id,
            items=lines,
        )

    result = run_with_retry(_op)

    current_app.logger.info(
        "Checkout %s committed: total_cents=%s method=%s user_id=%s",
        result.order_number, result.total_cents, result.payment_method, principal.user_id,
    )

    if customer_phone or customer_email:
        payload = receipt_service.build_receipt_payload(
            result, customer_phone=customer_phone, customer_email=customer_email,
        )
        try:
            result.receipt_queued = receipt_service.dispatch_receipt(payload)
        except Exception:
            # The sale is committed; a receipt problem never undoes it
            current_app.logger.exception("Failed to queue receipt for %s", result.order_number)
            result.receipt_queued = False

    return result
