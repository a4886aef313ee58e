from __future__ import annotations

from ..extensions import db
from storeledger.time_utils import to_utc_z


class CashClosing(db.Model):
    """
    Blind cash closing (financial audit record).

    The operator counts each channel without seeing the system totals;
    expected values are computed from the day's COMPLETED transactions.

    DIFFERENCES: counted - expected, per channel and total
    (positive = over, negative = short).

    IMMUTABLE: created once in CLOSED state; never edited or deleted.
    """
    __tablename__ = "cash_closings"
    __table_args__ = (
        db.Index("ix_cash_closings_user_created", "user_id", "created_at"),
        db.CheckConstraint(
            "total_counted_cents = cash_counted_cents + card_counted_cents + pix_counted_cents",
            name="ck_cash_closings_total_counted",
        ),
        db.CheckConstraint(
            "total_expected_cents = cash_expected_cents + card_expected_cents + pix_expected_cents",
            name="ck_cash_closings_total_expected",
        ),
        db.CheckConstraint(
            "total_difference_cents = total_counted_cents - total_expected_cents",
            name="ck_cash_closings_total_difference",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # Counted by the operator (blind)
    cash_counted_cents = db.Column(db.Integer, nullable=False)
    card_counted_cents = db.Column(db.Integer, nullable=False)
    pix_counted_cents = db.Column(db.Integer, nullable=False)
    total_counted_cents = db.Column(db.Integer, nullable=False)

    # Derived from transactions
    cash_expected_cents = db.Column(db.Integer, nullable=False)
    card_expected_cents = db.Column(db.Integer, nullable=False)
    pix_expected_cents = db.Column(db.Integer, nullable=False)
    total_expected_cents = db.Column(db.Integer, nullable=False)

    # BANK_TRANSFER / OTHER: shown, but outside the three channels and the total
    other_expected_cents = db.Column(db.Integer, nullable=False, default=0)

    cash_difference_cents = db.Column(db.Integer, nullable=False)
    card_difference_cents = db.Column(db.Integer, nullable=False)
    pix_difference_cents = db.Column(db.Integer, nullable=False)
    total_difference_cents = db.Column(db.Integer, nullable=False)

    has_alert = db.Column(db.Boolean, nullable=False, default=False, index=True)

    notes = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(16), nullable=False, default="CLOSED")

    # Reconciliation window (UTC, inclusive start / exclusive end)
    window_start = db.Column(db.DateTime(timezone=True), nullable=False)
    window_end = db.Column(db.DateTime(timezone=True), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    user = db.relationship("User", backref=db.backref("cash_closings", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "closed_by": self.user.display_name if self.user else None,
            "cash_counted_cents": self.cash_counted_cents,
            "card_counted_cents": self.card_counted_cents,
            "pix_counted_cents": self.pix_counted_cents,
            "total_counted_cents": self.total_counted_cents,
            "cash_expected_cents": self.cash_expected_cents,
            "card_expected_cents": self.card_expected_cents,
            "pix_expected_cents": self.pix_expected_cents,
            "total_expected_cents": self.total_expected_cents,
            "other_expected_cents": self.other_expected_cents,
            "cash_difference_cents": self.cash_difference_cents,
            "card_difference_cents": self.card_difference_cents,
            "pix_difference_cents": self.pix_difference_cents,
            "total_difference_cents": self.total_difference_cents,
            "has_alert": self.has_alert,
            "notes": self.notes,
            "status": self.status,
            "window_start": to_utc_z(self.window_start),
            "window_end": to_utc_z(self.window_end),
            "closed_at": to_utc_z(self.created_at),
        }
