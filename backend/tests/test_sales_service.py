"""
Sale orchestrator tests.

Verifies:
- Complete sales price, number, persist, accrue and receipt in one commit
- Rejected sales leave stock, sequences and loyalty untouched
- A storage failure after reservation rolls everything back
- Cancellation restores stock exactly once and respects ownership
"""

from datetime import datetime

import pytest
from sqlalchemy.exc import SQLAlchemyError

from conftest import SALE_TIME
from storepos.errors import (
    AlreadyCancelled,
    InsufficientStock,
    InvalidInput,
    NotFound,
    PersistenceFailure,
    Unauthorized,
)
from storepos.models import AuditLog, LoyaltyAccrual, Receipt, Sale, SaleLine, StockMovement, StockReservation
from storepos.services import catalog_service, sales_service


def ticket(laptop, cable):
    return [
        {"product_id": laptop.id, "quantity": 1},
        {"product_id": cable.id, "quantity": 2},
    ]


def ring_up(cashier, items, customer_ref=None, payment_method="cash", occurred_at=SALE_TIME):
    return sales_service.create_sale(
        cashier_id=cashier.id,
        items=items,
        payment_method=payment_method,
        customer_ref=customer_ref,
        occurred_at=occurred_at,
    )


class TestCreateSale:

    def test_guest_sale(self, db_session, cashier_user, laptop, cable):
        sale, receipt = ring_up(cashier_user, ticket(laptop, cable))

        assert sale.status == "completed"
        assert sale.sale_number == "TXN-20261018-00001"
        assert receipt.receipt_number == "RCP-20261018-00001"
        assert sale.customer_id is None
        assert sale.subtotal_cents == 205_997
        assert sale.discount_cents == 0
        assert sale.tax_cents == 20_600
        assert sale.total_cents == 226_597
        assert sale.tax_rate == "0.10"
        assert sale.completed_at == SALE_TIME

        assert catalog_service.get_quantity_on_hand(laptop.id) == 4
        assert catalog_service.get_quantity_on_hand(cable.id) == 48

        lines = db_session.query(SaleLine).filter_by(sale_id=sale.id).order_by(SaleLine.line_number).all()
        assert [(l.sku, l.quantity, l.unit_price_cents, l.line_total_cents) for l in lines] == [
            ("LAP-001", 1, 199_999, 199_999),
            ("CBL-001", 2, 2_999, 5_998),
        ]

        assert receipt.customer_data["customer_name"] == "Guest"
        assert receipt.customer_data["total"] == "2265.97"
        assert receipt.customer_data["payment_method"] == "cash"
        assert "cashier_id" not in receipt.customer_data
        assert receipt.merchant_data["cashier_id"] == cashier_user.id
        assert receipt.merchant_data["reservation_id"] == sale.reservation_id

        actions = [a.action for a in db_session.query(AuditLog).all()]
        assert actions == ["sale.created"]

    def test_loyal_customer_gets_discount(self, db_session, cashier_user, loyal_customer, laptop, cable):
        sale, receipt = ring_up(cashier_user, ticket(laptop, cable), customer_ref=loyal_customer.id)

        assert sale.discount_percentage == 5
        assert sale.discount_cents == 10_300
        assert sale.tax_cents == 19_570
        assert sale.total_cents == 215_267
        assert receipt.customer_data["customer_name"] == "Larry Loyal"
        assert receipt.customer_data["discount"] == "103.00"

        db_session.refresh(loyal_customer)
        assert loyal_customer.purchase_count == 11
        assert loyal_customer.total_spent_cents == 50_000 + 215_267
        assert loyal_customer.total_discount_given_cents == 10_300

    def test_customer_by_phone(self, db_session, cashier_user, regular_customer, cable):
        sale, receipt = ring_up(cashier_user, [{"product_id": cable.id, "quantity": 1}], customer_ref="555-0100")
        assert sale.customer_id == regular_customer.id
        assert receipt.customer_data["customer_name"] == "Rita Regular"

    def test_numbers_are_consecutive(self, db_session, cashier_user, cable):
        first, _ = ring_up(cashier_user, [{"product_id": cable.id, "quantity": 1}])
        second, second_receipt = ring_up(cashier_user, [{"product_id": cable.id, "quantity": 1}])
        next_day, _ = ring_up(
            cashier_user,
            [{"product_id": cable.id, "quantity": 1}],
            occurred_at=datetime(2026, 10, 19, 8, 0),
        )

        assert first.sale_number == "TXN-20261018-00001"
        assert second.sale_number == "TXN-20261018-00002"
        assert second_receipt.receipt_number == "RCP-20261018-00002"
        assert next_day.sale_number == "TXN-20261019-00001"

    def test_explicit_unit_price(self, db_session, cashier_user, laptop):
        sale, _ = ring_up(cashier_user, [{"product_id": laptop.id, "quantity": 1, "unit_price": "1899.99"}])
        assert sale.subtotal_cents == 189_999

    def test_price_is_snapshotted(self, db_session, cashier_user, cable):
        sale, _ = ring_up(cashier_user, [{"product_id": cable.id, "quantity": 1}])

        cable.price_cents = 3_499
        db_session.commit()

        line = db_session.query(SaleLine).filter_by(sale_id=sale.id).one()
        assert line.unit_price_cents == 2_999

    def test_price_change_applies_to_later_sales(self, db_session, cashier_user, cable):
        first, _ = ring_up(cashier_user, [{"product_id": cable.id, "quantity": 1}])
        catalog_service.update_product(cable.id, {"price": "34.99"})
        second, _ = ring_up(cashier_user, [{"product_id": cable.id, "quantity": 1}])

        assert [line.unit_price_cents for line in first.lines] == [2_999]
        assert [line.unit_price_cents for line in second.lines] == [3_499]
        assert first.subtotal_cents == 2_999


class TestRejectedSales:

    def _assert_untouched(self, db_session, laptop, cable):
        assert catalog_service.get_quantity_on_hand(laptop.id) == 5
        assert catalog_service.get_quantity_on_hand(cable.id) == 50
        assert db_session.query(Sale).count() == 0
        assert db_session.query(StockReservation).count() == 0
        assert db_session.query(StockMovement).count() == 0

    def test_insufficient_stock(self, db_session, cashier_user, laptop, cable):
        items = [{"product_id": cable.id, "quantity": 1}, {"product_id": laptop.id, "quantity": 6}]

        with pytest.raises(InsufficientStock) as exc_info:
            ring_up(cashier_user, items)

        assert exc_info.value.details["product_id"] == laptop.id
        assert exc_info.value.details["requested_quantity"] == 6
        self._assert_untouched(db_session, laptop, cable)

        # The failed attempt consumed no sequence number
        sale, _ = ring_up(cashier_user, [{"product_id": cable.id, "quantity": 1}])
        assert sale.sale_number == "TXN-20261018-00001"

    @pytest.mark.parametrize(
        "items",
        [
            [],
            None,
            [{"product_id": 1}],
            [{"quantity": 1}],
            ["not-an-object"],
            [{"product_id": 10**20, "quantity": 1}],
        ],
    )
    def test_malformed_items(self, db_session, cashier_user, laptop, cable, items):
        with pytest.raises(InvalidInput):
            ring_up(cashier_user, items)
        self._assert_untouched(db_session, laptop, cable)

    @pytest.mark.parametrize("quantity", [0, -2, 1.5, "3", True])
    def test_bad_quantity(self, db_session, cashier_user, laptop, cable, quantity):
        with pytest.raises(InvalidInput):
            ring_up(cashier_user, [{"product_id": laptop.id, "quantity": quantity}])
        self._assert_untouched(db_session, laptop, cable)

    @pytest.mark.parametrize("quantity", [catalog_service.MAX_QUANTITY + 1, 10**20])
    def test_oversized_quantity_is_insufficient_stock(self, db_session, cashier_user, laptop, cable, quantity):
        with pytest.raises(InsufficientStock) as exc_info:
            ring_up(cashier_user, [{"product_id": laptop.id, "quantity": quantity}])

        assert exc_info.value.details["requested_quantity"] == quantity
        assert exc_info.value.details["on_hand"] == 5
        self._assert_untouched(db_session, laptop, cable)

    def test_negative_unit_price(self, db_session, cashier_user, laptop, cable):
        with pytest.raises(InvalidInput):
            ring_up(cashier_user, [{"product_id": laptop.id, "quantity": 1, "unit_price": "-1.00"}])
        self._assert_untouched(db_session, laptop, cable)

    @pytest.mark.parametrize("method", ["bitcoin", "", None])
    def test_bad_payment_method(self, db_session, cashier_user, laptop, cable, method):
        with pytest.raises(InvalidInput):
            ring_up(cashier_user, ticket(laptop, cable), payment_method=method)
        self._assert_untouched(db_session, laptop, cable)

    def test_unknown_product(self, db_session, cashier_user, laptop, cable):
        with pytest.raises(InvalidInput):
            ring_up(cashier_user, [{"product_id": cable.id + 100, "quantity": 1}])
        self._assert_untouched(db_session, laptop, cable)

    def test_inactive_product(self, db_session, cashier_user, laptop, cable):
        catalog_service.deactivate_product(laptop.id)

        with pytest.raises(InvalidInput):
            ring_up(cashier_user, [{"product_id": laptop.id, "quantity": 1}])
        self._assert_untouched(db_session, laptop, cable)

    def test_unknown_customer(self, db_session, cashier_user, laptop, cable):
        with pytest.raises(InvalidInput):
            ring_up(cashier_user, ticket(laptop, cable), customer_ref="555-0000")
        self._assert_untouched(db_session, laptop, cable)

    def test_storage_failure_rolls_back_reservation(
        self, db_session, monkeypatch, cashier_user, regular_customer, laptop, cable
    ):
        def broken_receipt(**kwargs):
            raise SQLAlchemyError("disk I/O error")

        monkeypatch.setattr(sales_service, "_persist_receipt", broken_receipt)

        with pytest.raises(PersistenceFailure):
            ring_up(cashier_user, ticket(laptop, cable), customer_ref=regular_customer.id)

        self._assert_untouched(db_session, laptop, cable)
        assert db_session.query(Receipt).count() == 0
        assert db_session.query(LoyaltyAccrual).count() == 0

        db_session.refresh(regular_customer)
        assert regular_customer.purchase_count == 0


class TestCancelSale:

    def test_owner_cancels(self, db_session, cashier_user, loyal_customer, laptop, cable):
        sale, _ = ring_up(cashier_user, ticket(laptop, cable), customer_ref=loyal_customer.id)

        cancelled = sales_service.cancel_sale(sale.id, cashier_user, reason="Customer changed mind")

        assert cancelled.status == "cancelled"
        assert cancelled.cancelled_by_user_id == cashier_user.id
        assert cancelled.cancel_reason == "Customer changed mind"
        assert cancelled.cancelled_at is not None
        # Totals are kept as they were
        assert cancelled.total_cents == 215_267

        assert catalog_service.get_quantity_on_hand(laptop.id) == 5
        assert catalog_service.get_quantity_on_hand(cable.id) == 50

        db_session.refresh(loyal_customer)
        assert loyal_customer.purchase_count == 11

        reservation = db_session.get(StockReservation, sale.reservation_id)
        assert reservation.status == "RELEASED"

    def test_second_cancel_is_rejected(self, db_session, cashier_user, laptop, cable):
        sale, _ = ring_up(cashier_user, ticket(laptop, cable))
        sales_service.cancel_sale(sale.id, cashier_user)

        with pytest.raises(AlreadyCancelled):
            sales_service.cancel_sale(sale.id, cashier_user)

        assert catalog_service.get_quantity_on_hand(laptop.id) == 5
        assert catalog_service.get_quantity_on_hand(cable.id) == 50

    def test_other_cashier_cannot_cancel(self, db_session, cashier_user, other_cashier, laptop, cable):
        sale, _ = ring_up(cashier_user, ticket(laptop, cable))

        with pytest.raises(Unauthorized):
            sales_service.cancel_sale(sale.id, other_cashier)

        db_session.refresh(sale)
        assert sale.status == "completed"
        assert catalog_service.get_quantity_on_hand(laptop.id) == 4

    def test_manager_can_cancel_any_sale(self, db_session, cashier_user, manager_user, laptop, cable):
        sale, _ = ring_up(cashier_user, ticket(laptop, cable))

        cancelled = sales_service.cancel_sale(sale.id, manager_user)
        assert cancelled.cancelled_by_user_id == manager_user.id

    def test_unknown_sale(self, db_session, cashier_user):
        with pytest.raises(NotFound):
            sales_service.cancel_sale(999, cashier_user)

    def test_cancel_is_audited(self, db_session, cashier_user, laptop, cable):
        sale, _ = ring_up(cashier_user, ticket(laptop, cable))
        sales_service.cancel_sale(sale.id, cashier_user, reason="oops")

        events = db_session.query(AuditLog).filter_by(entity_type="sale", entity_id=str(sale.id)).all()
        assert sorted(e.action for e in events) == ["sale.cancelled", "sale.created"]


class TestImmutability:

    def test_sale_lines_cannot_be_updated(self, db_session, cashier_user, cable):
        sale, _ = ring_up(cashier_user, [{"product_id": cable.id, "quantity": 1}])

        line = db_session.query(SaleLine).filter_by(sale_id=sale.id).one()
        line.quantity = 99

        with pytest.raises(ValueError):
            db_session.commit()
        db_session.rollback()

    def test_receipt_cannot_be_updated(self, db_session, cashier_user, cable):
        _, receipt = ring_up(cashier_user, [{"product_id": cable.id, "quantity": 1}])

        receipt.customer_data = {"total": "0.00"}

        with pytest.raises(ValueError):
            db_session.commit()
        db_session.rollback()
