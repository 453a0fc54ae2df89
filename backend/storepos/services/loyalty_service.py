# Overview: Loyalty Ledger; per-customer purchase counters and discount eligibility.

"""
Loyalty Ledger

RULE:
    eligible  <=>  purchase_count >= 10  or  total_spent >= 1000.00
    discount_percentage = 5 if eligible else 0

Eligibility used to price a sale is read BEFORE that sale accrues: the
purchase that crosses a threshold is not discounted by it.

Accrual is exactly-once per sale: a LoyaltyAccrual row with a unique sale_id
is inserted first, and the counters move only if that insert succeeded.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import case, or_, update
from sqlalchemy.exc import IntegrityError

from ..errors import InvalidInput, NotFound
from ..extensions import db
from ..models import Customer, LoyaltyAccrual, Sale
from ..models.sales import SALE_STATUS_COMPLETED
from ..time_utils import utcnow
from .catalog_service import MAX_ROW_ID
from .concurrency import begin_write, run_with_retry


logger = logging.getLogger(__name__)

MIN_PURCHASE_COUNT = 10
MIN_TOTAL_SPENT_CENTS = 100_000
DISCOUNT_PERCENTAGE = 5


@dataclass(frozen=True)
class LoyaltyStatus:
    is_eligible: bool
    discount_percentage: int

    def to_dict(self) -> dict:
        return {
            "is_eligible": self.is_eligible,
            "discount_percentage": self.discount_percentage,
        }


NOT_ELIGIBLE = LoyaltyStatus(is_eligible=False, discount_percentage=0)


def derive_eligibility(purchase_count: int, total_spent_cents: int) -> LoyaltyStatus:
    if purchase_count >= MIN_PURCHASE_COUNT or total_spent_cents >= MIN_TOTAL_SPENT_CENTS:
        return LoyaltyStatus(is_eligible=True, discount_percentage=DISCOUNT_PERCENTAGE)
    return NOT_ELIGIBLE


def eligibility(customer: Customer | None) -> LoyaltyStatus:
    """Current eligibility from the customer's counters; no side effects."""
    if customer is None:
        return NOT_ELIGIBLE
    return derive_eligibility(customer.purchase_count, customer.total_spent_cents)


def normalize_phone(phone: str) -> str:
    return "".join(ch for ch in str(phone) if ch.isdigit() or ch == "+")


def list_customers(*, limit: int = 100) -> list[Customer]:
    """Customers by lifetime spend, biggest first."""
    return (
        db.session.query(Customer)
        .order_by(Customer.total_spent_cents.desc(), Customer.purchase_count.desc(), Customer.id.asc())
        .limit(limit)
        .all()
    )


def find_by_phone(phone: str) -> Customer | None:
    normalized = normalize_phone(phone)
    if not normalized:
        return None
    return db.session.query(Customer).filter_by(phone=normalized).first()


def resolve_customer(ref) -> Customer:
    """
    Look up a customer by id (int) or phone (str).

    Raises InvalidInput if no customer matches; a sale must not silently
    lose its customer.
    """
    if isinstance(ref, bool):
        raise InvalidInput("customer reference must be an id or a phone number")
    if isinstance(ref, int):
        customer = db.session.get(Customer, ref) if 0 < ref <= MAX_ROW_ID else None
    elif isinstance(ref, str) and ref.strip():
        customer = find_by_phone(ref)
    else:
        raise InvalidInput("customer reference must be an id or a phone number")

    if customer is None:
        raise InvalidInput("Customer not found", details={"customer": ref})
    return customer


def create_customer(
    *,
    phone: str,
    full_name: str,
    email: str | None = None,
    address: str | None = None,
) -> Customer:
    normalized = normalize_phone(phone or "")
    full_name = (full_name or "").strip()
    if not normalized:
        raise InvalidInput("phone is required")
    if not full_name:
        raise InvalidInput("full_name is required")

    customer = Customer(
        phone=normalized,
        full_name=full_name,
        email=(email or "").strip() or None,
        address=address,
    )
    db.session.add(customer)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise InvalidInput(f"A customer with phone {normalized} already exists", details={"phone": normalized})
    return customer


def accrue(
    customer_id: int,
    sale_id: int,
    amount_cents: int,
    *,
    discount_cents: int = 0,
) -> LoyaltyAccrual:
    """
    Add a finalized sale to the customer's counters, once.

    Runs inside the caller's transaction (no commit). A second call for the
    same sale returns the existing accrual and leaves the counters alone.
    """
    existing = db.session.query(LoyaltyAccrual).filter_by(sale_id=sale_id).first()
    if existing is not None:
        return existing

    accrual = LoyaltyAccrual(
        customer_id=customer_id,
        sale_id=sale_id,
        amount_cents=amount_cents,
        discount_cents=discount_cents,
        occurred_at=utcnow(),
    )
    try:
        with db.session.begin_nested():
            db.session.add(accrual)
    except IntegrityError:
        logger.info("Accrual for sale %s already recorded", sale_id)
        return db.session.query(LoyaltyAccrual).filter_by(sale_id=sale_id).one()

    new_count = Customer.purchase_count + 1
    new_spent = Customer.total_spent_cents + amount_cents
    now_eligible = or_(new_count >= MIN_PURCHASE_COUNT, new_spent >= MIN_TOTAL_SPENT_CENTS)

    result = db.session.execute(
        update(Customer)
        .where(Customer.id == customer_id)
        .values(
            purchase_count=new_count,
            total_spent_cents=new_spent,
            total_discount_given_cents=Customer.total_discount_given_cents + discount_cents,
            is_eligible_for_discount=case((now_eligible, True), else_=False),
            discount_percentage=case((now_eligible, DISCOUNT_PERCENTAGE), else_=0),
            last_purchase_at=accrual.occurred_at,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise NotFound(f"Customer {customer_id} not found", details={"customer_id": customer_id})

    cached = db.session.get(Customer, customer_id)
    if cached is not None:
        db.session.refresh(cached)
    return accrual


def reconcile_missing_accruals() -> list[int]:
    """
    Accrue every completed customer sale that has no accrual row.

    Returns the sale ids that were accrued. Safe to run repeatedly.
    """
    accrued: list[int] = []

    pending = (
        db.session.query(Sale.id)
        .outerjoin(LoyaltyAccrual, LoyaltyAccrual.sale_id == Sale.id)
        .filter(
            Sale.customer_id.isnot(None),
            Sale.status == SALE_STATUS_COMPLETED,
            LoyaltyAccrual.id.is_(None),
        )
        .order_by(Sale.id)
        .all()
    )
    db.session.commit()

    for (sale_id,) in pending:
        def _op(sale_id=sale_id):
            begin_write()
            try:
                sale = db.session.get(Sale, sale_id)
                accrue(sale.customer_id, sale.id, sale.total_cents, discount_cents=sale.discount_cents)
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise

        run_with_retry(_op)
        accrued.append(sale_id)
        logger.warning("Reconciled missing loyalty accrual for sale %s", sale_id)

    return accrued
