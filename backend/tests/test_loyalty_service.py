"""
Loyalty ledger tests.

Verifies:
- Eligibility thresholds (10 purchases OR 1000.00 spent)
- Accrual is exactly-once per sale
- The purchase that crosses a threshold is not discounted by it
- Reconciliation repairs a missing accrual
"""

import pytest

from conftest import SALE_TIME
from storepos.errors import InvalidInput
from storepos.models import LoyaltyAccrual
from storepos.services import loyalty_service, sales_service
from storepos.services.concurrency import begin_write


class TestEligibility:

    @pytest.mark.parametrize(
        "count,spent,eligible",
        [
            (0, 0, False),
            (9, 99_999, False),
            (10, 0, True),
            (0, 100_000, True),
            (25, 250_000, True),
        ],
    )
    def test_thresholds(self, count, spent, eligible):
        status = loyalty_service.derive_eligibility(count, spent)
        assert status.is_eligible is eligible
        assert status.discount_percentage == (5 if eligible else 0)

    def test_guest_is_never_eligible(self):
        assert loyalty_service.eligibility(None) == loyalty_service.NOT_ELIGIBLE


class TestCustomers:

    def test_phone_is_normalized(self, db_session, regular_customer):
        assert regular_customer.phone == "5550100"
        assert loyalty_service.find_by_phone("(555) 0100").id == regular_customer.id

    def test_resolve_by_id_and_phone(self, db_session, regular_customer):
        assert loyalty_service.resolve_customer(regular_customer.id).id == regular_customer.id
        assert loyalty_service.resolve_customer("555-0100").id == regular_customer.id

    @pytest.mark.parametrize("ref", [999_999, 10**20, 0, "555-9999", "", True, 1.5])
    def test_unknown_reference(self, db_session, regular_customer, ref):
        with pytest.raises(InvalidInput):
            loyalty_service.resolve_customer(ref)

    def test_duplicate_phone(self, db_session, regular_customer):
        with pytest.raises(InvalidInput):
            loyalty_service.create_customer(phone="555 0100", full_name="Someone Else")

    def test_list_by_lifetime_spend(self, db_session, regular_customer, loyal_customer):
        assert [c.id for c in loyalty_service.list_customers()] == [loyal_customer.id, regular_customer.id]
        assert [c.id for c in loyalty_service.list_customers(limit=1)] == [loyal_customer.id]


class TestAccrual:

    def _sell(self, cashier, customer, product, quantity=1):
        sale, _ = sales_service.create_sale(
            cashier_id=cashier.id,
            items=[{"product_id": product.id, "quantity": quantity}],
            payment_method="cash",
            customer_ref=customer.id,
            occurred_at=SALE_TIME,
        )
        return sale

    def test_sale_accrues_once(self, db_session, cashier_user, regular_customer, cable):
        sale = self._sell(cashier_user, regular_customer, cable)

        db_session.refresh(regular_customer)
        assert regular_customer.purchase_count == 1
        assert regular_customer.total_spent_cents == sale.total_cents
        assert regular_customer.last_purchase_at is not None

        # Replaying the accrual for the same sale is a no-op
        begin_write()
        loyalty_service.accrue(regular_customer.id, sale.id, sale.total_cents)
        db_session.commit()

        db_session.refresh(regular_customer)
        assert regular_customer.purchase_count == 1
        assert regular_customer.total_spent_cents == sale.total_cents
        assert db_session.query(LoyaltyAccrual).filter_by(sale_id=sale.id).count() == 1

    def test_crossing_purchase_is_not_discounted(self, db_session, cashier_user, regular_customer, cable):
        regular_customer.purchase_count = 9
        db_session.commit()

        crossing = self._sell(cashier_user, regular_customer, cable)
        assert crossing.discount_percentage == 0
        assert crossing.discount_cents == 0

        db_session.refresh(regular_customer)
        assert regular_customer.purchase_count == 10
        assert regular_customer.is_eligible_for_discount is True
        assert regular_customer.discount_percentage == 5

        next_sale = self._sell(cashier_user, regular_customer, cable)
        assert next_sale.discount_percentage == 5
        assert next_sale.discount_cents == 150

    def test_spend_threshold(self, db_session, cashier_user, regular_customer, laptop):
        self._sell(cashier_user, regular_customer, laptop)

        db_session.refresh(regular_customer)
        assert regular_customer.purchase_count == 1
        assert regular_customer.total_spent_cents >= 100_000
        assert loyalty_service.eligibility(regular_customer).is_eligible

    def test_guest_sale_does_not_accrue(self, db_session, cashier_user, cable):
        sales_service.create_sale(
            cashier_id=cashier_user.id,
            items=[{"product_id": cable.id, "quantity": 1}],
            payment_method="card",
        )
        assert db_session.query(LoyaltyAccrual).count() == 0


class TestReconcile:

    def test_repairs_missing_accrual(self, db_session, cashier_user, regular_customer, cable):
        sale, _ = sales_service.create_sale(
            cashier_id=cashier_user.id,
            items=[{"product_id": cable.id, "quantity": 2}],
            payment_method="cash",
            customer_ref=regular_customer.id,
        )

        # Simulate an accrual that never landed
        db_session.query(LoyaltyAccrual).filter_by(sale_id=sale.id).delete()
        regular_customer.purchase_count = 0
        regular_customer.total_spent_cents = 0
        db_session.commit()

        assert loyalty_service.reconcile_missing_accruals() == [sale.id]

        db_session.refresh(regular_customer)
        assert regular_customer.purchase_count == 1
        assert regular_customer.total_spent_cents == sale.total_cents

        assert loyalty_service.reconcile_missing_accruals() == []
