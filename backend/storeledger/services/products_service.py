# backend/storeledger/services/products_service.py
"""
Products Service

POS product lookup by code or name, plus product creation for the
bootstrap CLI (catalog management is not exposed over HTTP).
"""

from __future__ import annotations

from sqlalchemy import func, or_

from ..extensions import db
from ..models import Product, Stock
from ..validation import ConflictError, ValidationError, parse_cents, parse_int, parse_optional_text


MAX_SEARCH_RESULTS = 50
# Candidates fetched before ranking
SEARCH_CANDIDATES = 20


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _rank(product: Product, term: str) -> tuple:
    code = product.code.lower()
    name = product.name.lower()
    return (
        code != term,
        not code.startswith(term),
        name != term,
        name,
    )


def search_products(query: str | None, limit=10) -> list[dict]:
    """
    Active products whose code or name contains `query` (case-insensitive).

    Ranked: exact code, code prefix, exact name, then name alphabetically.
    Each hit carries on-hand stock and available stock.
    """
    term = (query or "").strip().lower()
    if not term:
        return []

    limit = parse_int(limit, "limit", minimum=1, maximum=MAX_SEARCH_RESULTS)
    pattern = f"%{_escape_like(term)}%"

    candidates = (
        db.session.query(Product)
        .filter(
            Product.is_active.is_(True),
            or_(
                func.lower(Product.code).like(pattern, escape="\\"),
                func.lower(Product.name).like(pattern, escape="\\"),
            ),
        )
        .order_by(Product.id.asc())
        .limit(max(limit, SEARCH_CANDIDATES))
        .all()
    )
    if not candidates:
        return []

    totals = dict(
        (product_id, (int(quantity or 0), int(reserved or 0)))
        for product_id, quantity, reserved in (
            db.session.query(Stock.product_id, func.sum(Stock.quantity), func.sum(Stock.reserved))
            .filter(Stock.product_id.in_([p.id for p in candidates]))
            .group_by(Stock.product_id)
            .all()
        )
    )

    results = []
    for product in sorted(candidates, key=lambda p: _rank(p, term))[:limit]:
        quantity, reserved = totals.get(product.id, (0, 0))
        results.append({
            "id": product.id,
            "code": product.code,
            "name": product.name,
            "price_cents": product.price_cents,
            "tax_rate_bps": product.tax_rate_bps,
            "stock": quantity,
            "available_stock": quantity - reserved,
        })
    return results


def create_product(
    *,
    code: str,
    name: str,
    price_cents,
    cost_cents=0,
    tax_rate_bps=0,
    min_stock_level=0,
    track_inventory: bool = True,
) -> Product:
    """
    Create an active product.

    Raises:
        ValidationError: on bad input
        ConflictError: if the code is already used
    """
    code = parse_optional_text(code, "code", 64)
    name = parse_optional_text(name, "name", 255)
    if not code:
        raise ValidationError("code is required")
    if not name:
        raise ValidationError("name is required")

    existing = db.session.query(Product).filter(Product.code == code).first()
    if existing:
        raise ConflictError(f"Product code {code} already exists")

    product = Product(
        code=code,
        name=name,
        price_cents=parse_cents(price_cents, "price_cents"),
        cost_cents=parse_cents(cost_cents, "cost_cents"),
        tax_rate_bps=parse_int(tax_rate_bps, "tax_rate_bps", minimum=0, maximum=10000),
        min_stock_level=parse_int(min_stock_level, "min_stock_level", minimum=0),
        is_active=True,
        track_inventory=track_inventory,
    )
    db.session.add(product)
    db.session.commit()
    return product
