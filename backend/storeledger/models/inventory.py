from __future__ import annotations

from ..extensions import db
from storeledger.time_utils import to_utc_z


MOVEMENT_TYPES = ("IN", "OUT", "ADJUSTMENT", "TRANSFER")


class Product(db.Model):
    """
    Sellable unit.

    Prices and costs are authoritative in cents; tax rate in basis points
    (e.g., 825 = 8.25%). Referenced (never owned) by Stock, StockMovement
    and OrderItem rows.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_products_code"),
        db.Index("ix_products_name", "name"),
        db.Index("ix_products_active", "is_active"),
        db.CheckConstraint("price_cents >= 0", name="ck_products_price_nonneg"),
        db.CheckConstraint("cost_cents >= 0", name="ck_products_cost_nonneg"),
        db.CheckConstraint("tax_rate_bps >= 0", name="ck_products_tax_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    code = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    cost_cents = db.Column(db.Integer, nullable=False, default=0)
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)

    # Reorder point for stock alerts
    min_stock_level = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    track_inventory = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    stocks = db.relationship(
        "Stock",
        back_populates="product",
        lazy=True,
        order_by="Stock.id",
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} code={self.code!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "cost_cents": self.cost_cents,
            "price_cents": self.price_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "min_stock_level": self.min_stock_level,
            "is_active": self.is_active,
            "track_inventory": self.track_inventory,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Stock(db.Model):
    """
    On-hand quantity of a product at one location.

    A product may have several rows; availability is always aggregated:
    SUM(quantity) - SUM(reserved).

    Mutated only by checkout (decrement) and stock adjustment/receive.
    version_id makes concurrent writers to the same row fail loudly
    (StaleDataError) instead of silently overwriting each other.
    """
    __tablename__ = "stocks"
    __table_args__ = (
        db.UniqueConstraint("product_id", "location", name="uq_stocks_product_location"),
        db.CheckConstraint("quantity >= 0", name="ck_stocks_quantity_nonneg"),
        db.CheckConstraint("reserved >= 0", name="ck_stocks_reserved_nonneg"),
        db.CheckConstraint("reserved <= quantity", name="ck_stocks_reserved_le_quantity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    location = db.Column(db.String(64), nullable=False, default="MAIN")

    quantity = db.Column(db.Integer, nullable=False, default=0)
    reserved = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", back_populates="stocks")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def available(self) -> int:
        return self.quantity - self.reserved

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "location": self.location,
            "quantity": self.quantity,
            "reserved": self.reserved,
            "available": self.available,
            "version_id": self.version_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only stock audit trail.

    One row per stock-affecting operation; quantity is the magnitude,
    the direction is carried by `type`:
    - IN: stock received
    - OUT: stock sold
    - ADJUSTMENT: absolute correction (magnitude of the change)
    - TRANSFER: reserved for inter-location moves

    Rows are never updated or deleted.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_created", "product_id", "created_at"),
        db.Index("ix_stock_movements_user_created", "user_id", "created_at"),
        db.CheckConstraint("quantity > 0", name="ck_stock_movements_quantity_pos"),
        db.CheckConstraint(
            "type IN ('IN', 'OUT', 'ADJUSTMENT', 'TRANSFER')",
            name="ck_stock_movements_type",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(255), nullable=False)
    reference = db.Column(db.String(64), nullable=True, index=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    product = db.relationship("Product")
    user = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "type": self.type,
            "quantity": self.quantity,
            "reason": self.reason,
            "reference": self.reference,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }
