# Overview: Service-layer operations for blind cash closing; encapsulates business logic and database work.

"""
Blind Cash Closing Service

WHY: The operator counts the drawer and the card/PIX slips without seeing
what the system recorded. The closing compares the counts to the day's
COMPLETED transactions per channel and flags any shortage or overage
beyond ALERT_THRESHOLD_CENTS for an administrator.

Channels:
- cash: CASH
- card: CREDIT_CARD, DEBIT_CARD
- pix:  PIX, DIGITAL_WALLET

BANK_TRANSFER and OTHER belong to no channel; they are left out of the
expected total and reported on their own as other_expected_cents.

Closings are append-only audit records.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import CashClosing, Transaction
from ..permissions import require_permission
from ..validation import ValidationError, parse_cents, parse_int, parse_optional_text
from storeledger.time_utils import utcnow, local_day_window
from .concurrency import run_with_retry
from .session_service import Principal, require_principal


ALERT_THRESHOLD_CENTS = 500
MAX_CLOSINGS_LIMIT = 100

PAYMENT_BUCKETS = {
    "CASH": "cash",
    "CREDIT_CARD": "card",
    "DEBIT_CARD": "card",
    "PIX": "pix",
    "DIGITAL_WALLET": "pix",
}


@dataclass(frozen=True)
class ExpectedTotals:
    cash_cents: int = 0
    card_cents: int = 0
    pix_cents: int = 0
    other_cents: int = 0

    @property
    def total_cents(self) -> int:
        return self.cash_cents + self.card_cents + self.pix_cents


def compute_expected_totals(window_start: datetime, window_end: datetime) -> ExpectedTotals:
    """Sum COMPLETED transactions processed in [window_start, window_end) per channel."""
    rows = (
        db.session.query(
            Transaction.payment_method,
            func.coalesce(func.sum(Transaction.amount_cents), 0),
        )
        .filter(
            Transaction.status == "COMPLETED",
            Transaction.processed_at >= window_start,
            Transaction.processed_at < window_end,
        )
        .group_by(Transaction.payment_method)
        .all()
    )

    buckets = {"cash": 0, "card": 0, "pix": 0, "other": 0}
    for method, amount in rows:
        buckets[PAYMENT_BUCKETS.get(method, "other")] += int(amount or 0)

    return ExpectedTotals(
        cash_cents=buckets["cash"],
        card_cents=buckets["card"],
        pix_cents=buckets["pix"],
        other_cents=buckets["other"],
    )


def _require_counted(value, field: str) -> int:
    if value is None:
        raise ValidationError(f"{field} is required")
    return parse_cents(value, field)


def close_cash(
    principal: Principal | None,
    cash_counted_cents,
    card_counted_cents,
    pix_counted_cents,
    notes=None,
    now: datetime | None = None,
) -> dict:
    """
    Record a blind closing for the current store day.

    Requires: CLOSE_CASH (all roles)

    Returns the full breakdown (counted, expected, differences, alert);
    hiding expected values before counting is up to the client.
    """
    principal = require_principal(principal)
    require_permission(principal.role, "CLOSE_CASH")

    cash_counted = _require_counted(cash_counted_cents, "cash_counted_cents")
    card_counted = _require_counted(card_counted_cents, "card_counted_cents")
    pix_counted = _require_counted(pix_counted_cents, "pix_counted_cents")
    notes = parse_optional_text(notes, "notes", 1000)

    if now is None:
        now = utcnow()
    elif now.tzinfo is not None:
        now = now.astimezone(timezone.utc).replace(tzinfo=None)
    window_start, window_end = local_day_window(now, current_app.config.get("STORE_TIMEZONE", "UTC"))

    def _op():
        expected = compute_expected_totals(window_start, window_end)

        total_counted = cash_counted + card_counted + pix_counted
        total_difference = total_counted - expected.total_cents

        closing = CashClosing(
            user_id=principal.user_id,
            cash_counted_cents=cash_counted,
            card_counted_cents=card_counted,
            pix_counted_cents=pix_counted,
            total_counted_cents=total_counted,
            cash_expected_cents=expected.cash_cents,
            card_expected_cents=expected.card_cents,
            pix_expected_cents=expected.pix_cents,
            total_expected_cents=expected.total_cents,
            other_expected_cents=expected.other_cents,
            cash_difference_cents=cash_counted - expected.cash_cents,
            card_difference_cents=card_counted - expected.card_cents,
            pix_difference_cents=pix_counted - expected.pix_cents,
            total_difference_cents=total_difference,
            has_alert=abs(total_difference) > ALERT_THRESHOLD_CENTS,
            notes=notes,
            status="CLOSED",
            window_start=window_start,
            window_end=window_end,
            created_at=now,
        )
        db.session.add(closing)
        db.session.commit()
        return closing

    closing = run_with_retry(_op)
    result = closing.to_dict()

    log = current_app.logger.warning if closing.has_alert else current_app.logger.info
    log(
        "Cash closing %s by user %s: counted=%s expected=%s difference=%s other=%s alert=%s",
        closing.id,
        principal.user_id,
        closing.total_counted_cents,
        closing.total_expected_cents,
        closing.total_difference_cents,
        closing.other_expected_cents,
        closing.has_alert,
    )

    return result


def list_closings(principal: Principal | None, limit=30) -> list[dict]:
    """
    Most recent closings, newest first.

    Requires: VIEW_CASH_CLOSINGS (admin only)
    """
    principal = require_principal(principal)
    require_permission(principal.role, "VIEW_CASH_CLOSINGS")

    limit = parse_int(limit, "limit", minimum=1, maximum=MAX_CLOSINGS_LIMIT)

    closings = (
        db.session.query(CashClosing)
        .order_by(CashClosing.created_at.desc(), CashClosing.id.desc())
        .limit(limit)
        .all()
    )
    return [closing.to_dict() for closing in closings]
