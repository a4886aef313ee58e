"""
Checkout engine tests.

Verifies:
- A committed sale writes order, items, transaction, deductions and OUT movements
- Any failure leaves every table unchanged
- Stock conservation and deterministic lowest-id-first allocation
- Integer-cent totals with half-up tax rounding
"""

import random

import pytest
from sqlalchemy import func

from storeledger.extensions import db
from storeledger.models import Order, OrderItem, Stock, StockMovement, Transaction
from storeledger.services import checkout_service
from storeledger.services.checkout_service import checkout, compute_line_tax
from storeledger.services.inventory_service import InsufficientStockError, get_available_stock
from storeledger.services.session_service import UnauthenticatedError
from storeledger.validation import ValidationError, NotFoundError, ConflictError

from conftest import make_product, principal_for


def _counts():
    return (
        db.session.query(Order).count(),
        db.session.query(OrderItem).count(),
        db.session.query(Transaction).count(),
        db.session.query(StockMovement).count(),
    )


def _stock_total(product_id):
    return db.session.query(func.coalesce(func.sum(Stock.quantity), 0)).filter(Stock.product_id == product_id).scalar()


class TestCheckoutHappyPath:

    def test_single_item_cash_sale(self, db_session, operator):
        product = make_product(db_session, "P001", "Coffee", price_cents=100000, cost_cents=60000, stock=[10])

        result = checkout(
            principal_for(operator),
            [{"product_id": product.id, "quantity": 2}],
            "CASH",
        )

        assert result.order_number == "ORD-000001"
        assert result.subtotal_cents == 200000
        assert result.tax_cents == 0
        assert result.discount_cents == 0
        assert result.total_cents == 200000
        assert result.receipt_queued is False

        assert get_available_stock(product.id) == 8

        order = db_session.query(Order).filter_by(order_number="ORD-000001").one()
        assert order.status == "APPROVED"
        assert order.payment_status == "PAID"
        assert order.created_by_user_id == operator.id
        assert order.approved_by_user_id == operator.id

        items = db_session.query(OrderItem).filter_by(order_id=order.id).all()
        assert len(items) == 1
        assert items[0].unit_price_cents == 100000
        assert items[0].unit_cost_cents == 60000
        assert items[0].line_total_cents == 200000

        movement = db_session.query(StockMovement).filter_by(product_id=product.id).one()
        assert movement.type == "OUT"
        assert movement.quantity == 2
        assert movement.reason == "POS sale #ORD-000001"
        assert movement.reference == "ORD-000001"
        assert movement.user_id == operator.id

        transaction = db_session.query(Transaction).filter_by(order_id=order.id).one()
        assert transaction.payment_method == "CASH"
        assert transaction.amount_cents == 200000
        assert transaction.status == "COMPLETED"
        assert transaction.reference == "ORD-000001"

    def test_order_numbers_are_sequential(self, db_session, operator):
        product = make_product(db_session, "P001", "Coffee", price_cents=500, stock=[10])
        principal = principal_for(operator)

        first = checkout(principal, [{"product_id": product.id, "quantity": 1}], "CASH")
        second = checkout(principal, [{"product_id": product.id, "quantity": 1}], "PIX")

        assert first.order_number == "ORD-000001"
        assert second.order_number == "ORD-000002"

    def test_unit_price_override_and_cost_snapshot(self, db_session, operator):
        product = make_product(db_session, "P001", "Coffee", price_cents=1000, cost_cents=400, stock=[5])

        result = checkout(
            principal_for(operator),
            [{"product_id": product.id, "quantity": 3, "unit_price_cents": 900}],
            "DEBIT_CARD",
        )

        assert result.subtotal_cents == 2700
        item = db_session.query(OrderItem).filter_by(order_id=result.order_id).one()
        assert item.unit_price_cents == 900
        assert item.unit_cost_cents == 400

    def test_discount_is_subtracted(self, db_session, operator):
        product = make_product(db_session, "P001", "Coffee", price_cents=1000, tax_rate_bps=1000, stock=[5])

        result = checkout(
            principal_for(operator),
            [{"product_id": product.id, "quantity": 2}],
            "CASH",
            discount_cents=300,
        )

        assert result.subtotal_cents == 2000
        assert result.tax_cents == 200
        assert result.total_cents == 2000 + 200 - 300

    def test_payment_method_is_case_insensitive(self, db_session, operator):
        product = make_product(db_session, "P001", "Coffee", price_cents=1000, stock=[5])

        result = checkout(principal_for(operator), [{"product_id": product.id, "quantity": 1}], "credit_card")

        assert result.payment_method == "CREDIT_CARD"


class TestTaxRounding:

    @pytest.mark.parametrize(
        "line_total,bps,expected",
        [
            (1000, 825, 83),    # 82.5 -> 83 (half-up)
            (999, 825, 82),     # 82.4175 -> 82
            (200, 1250, 25),    # exact
            (1, 5000, 1),       # 0.5 -> 1
            (1, 4999, 0),       # 0.4999 -> 0
            (12345, 0, 0),
        ],
    )
    def test_compute_line_tax(self, line_total, bps, expected):
        assert compute_line_tax(line_total, bps) == expected

    def test_tax_is_rounded_per_line(self, db_session, operator):
        a = make_product(db_session, "A", "Item A", price_cents=1000, tax_rate_bps=825, stock=[5])
        b = make_product(db_session, "B", "Item B", price_cents=1000, tax_rate_bps=825, stock=[5])

        result = checkout(
            principal_for(operator),
            [{"product_id": a.id, "quantity": 1}, {"product_id": b.id, "quantity": 1}],
            "CASH",
        )

        # 82.5 per line rounds up on each line
        assert result.tax_cents == 166
        assert result.total_cents == result.subtotal_cents + result.tax_cents - result.discount_cents

        items = db_session.query(OrderItem).filter_by(order_id=result.order_id).all()
        assert sorted(item.tax_cents for item in items) == [83, 83]
        assert all(item.tax_rate_bps == 825 for item in items)

    @pytest.mark.parametrize("seed", range(8))
    def test_generated_carts_add_up(self, db_session, operator, seed):
        rng = random.Random(seed)
        products = [
            make_product(
                db_session, f"G{index}", f"Generated {index}",
                price_cents=rng.randint(1, 50000),
                tax_rate_bps=rng.choice([0, 1, 500, 825, 1250, 1800, 4999, 5000]),
                stock=[rng.randint(1, 40)],
            )
            for index in range(rng.randint(1, 6))
        ]

        cart = []
        expected_subtotal = 0
        expected_tax = 0
        for product in products:
            quantity = rng.randint(1, get_available_stock(product.id))
            unit_price = rng.choice([None, rng.randint(1, 50000)])
            line = {"product_id": product.id, "quantity": quantity}
            if unit_price is not None:
                line["unit_price_cents"] = unit_price
            cart.append(line)

            line_total = (unit_price if unit_price is not None else product.price_cents) * quantity
            expected_subtotal += line_total
            expected_tax += compute_line_tax(line_total, product.tax_rate_bps)

        discount = rng.randint(0, expected_subtotal + expected_tax)

        result = checkout(principal_for(operator), cart, "CASH", discount_cents=discount)

        assert result.subtotal_cents == expected_subtotal
        assert result.tax_cents == expected_tax
        assert result.total_cents == result.subtotal_cents + result.tax_cents - result.discount_cents
        assert result.tax_cents == sum(line["tax_cents"] for line in result.items)

        order = db_session.get(Order, result.order_id)
        payment = db_session.query(Transaction).filter_by(order_id=result.order_id).one()
        assert order.total_cents == result.total_cents
        assert payment.amount_cents == result.total_cents


class TestStockAllocation:

    def test_deducts_lowest_id_rows_first(self, db_session, operator):
        product = make_product(db_session, "P001", "Coffee", price_cents=500, stock=[3, 4, 5])
        rows = db_session.query(Stock).filter_by(product_id=product.id).order_by(Stock.id).all()
        row_ids = [row.id for row in rows]

        checkout(principal_for(operator), [{"product_id": product.id, "quantity": 5}], "CASH")

        db_session.expire_all()
        quantities = [db_session.get(Stock, row_id).quantity for row_id in row_ids]
        assert quantities == [0, 2, 5]

    def test_skips_rows_with_nothing_available(self, db_session, operator):
        product = make_product(
            db_session, "P001", "Coffee", price_cents=500,
            stock=[("FRONT", 2, 2), ("BACK", 6, 1)],
        )

        checkout(principal_for(operator), [{"product_id": product.id, "quantity": 4}], "CASH")

        db_session.expire_all()
        front = db_session.query(Stock).filter_by(product_id=product.id, location="FRONT").one()
        back = db_session.query(Stock).filter_by(product_id=product.id, location="BACK").one()
        assert (front.quantity, front.reserved) == (2, 2)
        assert (back.quantity, back.reserved) == (2, 1)

    def test_stock_conservation_matches_movements(self, db_session, operator):
        product = make_product(db_session, "P001", "Coffee", price_cents=500, stock=[4, 4])
        before = _stock_total(product.id)
        principal = principal_for(operator)

        checkout(principal, [{"product_id": product.id, "quantity": 3}], "CASH")
        checkout(principal, [{"product_id": product.id, "quantity": 2}], "PIX")

        sold = db_session.query(func.sum(StockMovement.quantity)).filter(
            StockMovement.product_id == product.id, StockMovement.type == "OUT",
        ).scalar()
        assert sold == 5
        assert _stock_total(product.id) == before - sold

    def test_repeated_lines_for_same_product_are_validated_together(self, db_session, operator):
        product = make_product(db_session, "P001", "Coffee", price_cents=500, stock=[5])

        with pytest.raises(InsufficientStockError) as exc:
            checkout(
                principal_for(operator),
                [{"product_id": product.id, "quantity": 3}, {"product_id": product.id, "quantity": 3}],
                "CASH",
            )

        assert exc.value.available == 5
        assert exc.value.requested == 6
        assert get_available_stock(product.id) == 5

    def test_one_out_movement_per_order_item(self, db_session, operator):
        product = make_product(db_session, "P001", "Coffee", price_cents=500, stock=[2, 2])

        result = checkout(
            principal_for(operator),
            [{"product_id": product.id, "quantity": 1}, {"product_id": product.id, "quantity": 3}],
            "CASH",
        )

        movements = db_session.query(StockMovement).filter_by(reference=result.order_number).all()
        assert sorted(m.quantity for m in movements) == [1, 3]
        assert get_available_stock(product.id) == 0


class TestCheckoutAtomicity:

    def test_insufficient_stock_writes_nothing(self, db_session, operator):
        a = make_product(db_session, "A", "Item A", price_cents=1000, stock=[10])
        b = make_product(db_session, "B", "Item B", price_cents=1000, stock=[1])

        with pytest.raises(InsufficientStockError) as exc:
            checkout(
                principal_for(operator),
                [{"product_id": a.id, "quantity": 1}, {"product_id": b.id, "quantity": 3}],
                "CASH",
            )

        assert exc.value.product_name == "Item B"
        assert exc.value.details == {
            "product_id": b.id, "product_name": "Item B", "available": 1, "requested": 3,
        }
        assert "Available: 1, Requested: 3" in str(exc.value)
        assert _counts() == (0, 0, 0, 0)
        assert get_available_stock(a.id) == 10
        assert get_available_stock(b.id) == 1

    def test_failed_checkout_does_not_consume_order_number(self, db_session, operator):
        product = make_product(db_session, "P001", "Coffee", price_cents=1000, stock=[1])
        principal = principal_for(operator)

        with pytest.raises(InsufficientStockError):
            checkout(principal, [{"product_id": product.id, "quantity": 2}], "CASH")

        result = checkout(principal, [{"product_id": product.id, "quantity": 1}], "CASH")
        assert result.order_number == "ORD-000001"

    def test_missing_product_is_not_found(self, db_session, operator):
        product = make_product(db_session, "P001", "Coffee", price_cents=1000, stock=[5])

        with pytest.raises(NotFoundError):
            checkout(
                principal_for(operator),
                [{"product_id": product.id, "quantity": 1}, {"product_id": product.id + 999, "quantity": 1}],
                "CASH",
            )

        assert _counts() == (0, 0, 0, 0)
        assert get_available_stock(product.id) == 5

    def test_inactive_product_is_rejected(self, db_session, operator):
        product = make_product(db_session, "P001", "Coffee", price_cents=1000, stock=[5], is_active=False)

        with pytest.raises(ConflictError, match="inactive"):
            checkout(principal_for(operator), [{"product_id": product.id, "quantity": 1}], "CASH")

        assert _counts() == (0, 0, 0, 0)

    def test_failure_after_partial_writes_rolls_everything_back(self, db_session, operator, monkeypatch):
        a = make_product(db_session, "A", "Item A", price_cents=1000, stock=[5])
        b = make_product(db_session, "B", "Item B", price_cents=2000, stock=[5])
        a_id, b_id = a.id, b.id
        real_record_movement = checkout_service.record_movement
        calls = []

        def fail_on_second_line(**kwargs):
            calls.append(kwargs["product_id"])
            if len(calls) == 2:
                # Order, first item, its deduction and movement are already flushed
                assert db.session.query(Order).count() == 1
                assert db.session.query(StockMovement).count() == 1
                raise RuntimeError("ledger write failed")
            return real_record_movement(**kwargs)

        monkeypatch.setattr(checkout_service, "record_movement", fail_on_second_line)

        with pytest.raises(RuntimeError, match="ledger write failed"):
            checkout(
                principal_for(operator),
                [{"product_id": a_id, "quantity": 2}, {"product_id": b_id, "quantity": 3}],
                "CASH",
            )

        assert calls == [a_id, b_id]
        db_session.expire_all()
        assert _counts() == (0, 0, 0, 0)
        assert _stock_total(a_id) == 5
        assert _stock_total(b_id) == 5

        monkeypatch.setattr(checkout_service, "record_movement", real_record_movement)
        result = checkout(principal_for(operator), [{"product_id": a_id, "quantity": 1}], "CASH")
        assert result.order_number == "ORD-000001"

    def test_failure_writing_payment_rolls_everything_back(self, db_session, operator, monkeypatch):
        product = make_product(db_session, "P001", "Coffee", price_cents=1000, stock=[5])
        product_id = product.id

        def broken_transaction(**kwargs):
            raise RuntimeError("payment record failed")

        monkeypatch.setattr(checkout_service, "Transaction", broken_transaction)

        with pytest.raises(RuntimeError):
            checkout(principal_for(operator), [{"product_id": product_id, "quantity": 4}], "PIX")

        db_session.expire_all()
        assert _counts() == (0, 0, 0, 0)
        assert _stock_total(product_id) == 5

    def test_discount_above_total_is_rejected(self, db_session, operator):
        product = make_product(db_session, "P001", "Coffee", price_cents=1000, stock=[5])

        with pytest.raises(ValidationError):
            checkout(
                principal_for(operator),
                [{"product_id": product.id, "quantity": 1}],
                "CASH",
                discount_cents=1001,
            )

        assert _counts() == (0, 0, 0, 0)
        assert get_available_stock(product.id) == 5


class TestCheckoutValidation:

    def test_requires_principal(self, db_session):
        with pytest.raises(UnauthenticatedError):
            checkout(None, [{"product_id": 1, "quantity": 1}], "CASH")

    @pytest.mark.parametrize("items", [None, [], "not-a-list"])
    def test_empty_cart(self, db_session, operator, items):
        with pytest.raises(ValidationError, match="empty cart"):
            checkout(principal_for(operator), items, "CASH")

    @pytest.mark.parametrize("method", [None, "", "CHEQUE", 7])
    def test_invalid_payment_method(self, db_session, operator, method):
        with pytest.raises(ValidationError, match="invalid payment method"):
            checkout(principal_for(operator), [{"product_id": 1, "quantity": 1}], method)

    @pytest.mark.parametrize("quantity", [0, -1, 1.5, "2.0", True, None])
    def test_invalid_quantity(self, db_session, operator, quantity):
        with pytest.raises(ValidationError):
            checkout(principal_for(operator), [{"product_id": 1, "quantity": quantity}], "CASH")

    def test_negative_discount(self, db_session, operator):
        with pytest.raises(ValidationError):
            checkout(principal_for(operator), [{"product_id": 1, "quantity": 1}], "CASH", discount_cents=-5)


class TestReceiptDispatch:

    def test_receipt_failure_does_not_affect_sale(self, db_session, operator, monkeypatch):
        product = make_product(db_session, "P001", "Coffee", price_cents=1000, stock=[5])

        def boom(payload):
            raise RuntimeError("gateway down")

        monkeypatch.setattr(checkout_service.receipt_service, "dispatch_receipt", boom)

        result = checkout(
            principal_for(operator),
            [{"product_id": product.id, "quantity": 1}],
            "CASH",
            customer_phone="+5511999990000",
        )

        assert result.receipt_queued is False
        assert result.order_number == "ORD-000001"
        assert db_session.query(Order).count() == 1
        assert get_available_stock(product.id) == 4

    def test_receipt_queued_when_contact_given(self, db_session, operator, monkeypatch):
        product = make_product(db_session, "P001", "Coffee", price_cents=1000, stock=[5])
        sent = []

        def fake_dispatch(payload):
            sent.append(payload)
            return True

        monkeypatch.setattr(checkout_service.receipt_service, "dispatch_receipt", fake_dispatch)

        result = checkout(
            principal_for(operator),
            [{"product_id": product.id, "quantity": 2}],
            "CASH",
            customer_email="client@example.com",
        )

        assert result.receipt_queued is True
        assert sent[0]["order_number"] == result.order_number
        assert sent[0]["customer_email"] == "client@example.com"
        assert sent[0]["items"][0]["quantity"] == 2
