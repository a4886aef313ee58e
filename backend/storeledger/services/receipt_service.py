# Overview: Outbound receipt delivery for committed sales.

"""
Receipt sender

Receipts are posted as JSON to RECEIPT_WEBHOOK_URL (a messaging gateway
that forwards to WhatsApp/SMS/email). Delivery runs on a daemon thread
after the sale commits; failures are logged and never reach the caller.
"""

from __future__ import annotations

import threading

import httpx
from flask import current_app

from storeledger.time_utils import utcnow, to_utc_z


def build_receipt_payload(result, *, customer_phone: str | None = None, customer_email: str | None = None) -> dict:
    """Receipt body for a CheckoutResult."""
    return {
        "order_id": result.order_id,
        "order_number": result.order_number,
        "items": [
            {
                "name": item["name"],
                "quantity": item["quantity"],
                "unit_price_cents": item["unit_price_cents"],
                "line_total_cents": item["line_total_cents"],
            }
            for item in result.items
        ],
        "subtotal_cents": result.subtotal_cents,
        "tax_cents": result.tax_cents,
        "discount_cents": result.discount_cents,
        "total_cents": result.total_cents,
        "payment_method": result.payment_method,
        "customer_phone": customer_phone,
        "customer_email": customer_email,
        "issued_at": to_utc_z(utcnow()),
    }


def send_receipt(logger, url: str, payload: dict, timeout: float) -> bool:
    """POST one receipt. Returns True on a 2xx answer."""
    try:
        response = httpx.post(url, json=payload, timeout=timeout)
        response.raise_for_status()
    except httpx.HTTPError as e:
        logger.warning("Receipt for %s not delivered: %s", payload.get("order_number"), e)
        return False

    logger.info("Receipt for %s delivered", payload.get("order_number"))
    return True


def dispatch_receipt(payload: dict) -> bool:
    """
    Queue a receipt for background delivery.

    Returns True when a delivery thread was started, False when no webhook
    is configured.
    """
    app = current_app._get_current_object()
    url = app.config.get("RECEIPT_WEBHOOK_URL")
    if not url:
        app.logger.info(
            "RECEIPT_WEBHOOK_URL not configured; receipt for %s not sent",
            payload.get("order_number"),
        )
        return False

    timeout = float(app.config.get("RECEIPT_TIMEOUT_SECONDS", 5.0))
    thread = threading.Thread(
        target=send_receipt,
        args=(app.logger, url, payload, timeout),
        name=f"receipt-{payload.get('order_number')}",
        daemon=True,
    )
    thread.start()
    return True
