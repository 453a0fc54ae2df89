"""
Sales Service - the sale transaction orchestrator

WHY: A sale touches three shared counters (stock, customer loyalty, daily
sequences) plus the sale, line, receipt and audit rows. All of it is
written in ONE database transaction, so either everything is committed or
nothing is: a failure after stock was reserved rolls the reservation back
together with the partial sale.

STATE MACHINE:
    (request) --validate/reserve fails--> aborted, nothing persisted
    (request) --commit--> completed --cancel_sale--> cancelled (terminal)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..errors import AlreadyCancelled, InvalidInput, NotFound, PersistenceFailure, Unauthorized
from ..extensions import db
from ..models import Customer, Product, Receipt, Sale, SaleLine, User
from ..models.sales import PAYMENT_METHODS, SALE_STATUS_CANCELLED, SALE_STATUS_COMPLETED
from ..money import compute_totals, format_cents, parse_money, SaleTotals
from ..permissions import CANCEL_ANY_SALE, has_permission
from ..time_utils import to_utc_z, utcnow
from . import catalog_service, loyalty_service
from .audit_service import append_audit_event
from .concurrency import begin_write, lock_for_update, run_with_retry
from .sequence_service import SequenceError, SequenceKind, business_date, next_sequence


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LineRequest:
    """One requested line; unit_price_cents=None means 'use the catalog price now'."""
    product_id: int
    quantity: int
    unit_price_cents: int | None = None


@dataclass(frozen=True)
class PricedLine:
    product_id: int
    sku: str
    product_name: str
    quantity: int
    unit_price_cents: int

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.unit_price_cents


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def parse_line_items(raw_items) -> list[LineRequest]:
    """Turn a JSON items array into LineRequests; raises InvalidInput."""
    if not isinstance(raw_items, list) or not raw_items:
        raise InvalidInput("Sale must have at least one item")

    lines = []
    for index, raw in enumerate(raw_items, start=1):
        if isinstance(raw, LineRequest):
            lines.append(raw)
            continue
        if not isinstance(raw, dict):
            raise InvalidInput(f"Item {index} must be an object", details={"item": index})

        product_id = raw.get("product_id")
        quantity = raw.get("quantity")
        if not _is_int(product_id) or not 0 < product_id <= catalog_service.MAX_ROW_ID:
            raise InvalidInput(f"Item {index}: product_id must be a positive integer", details={"item": index})
        if not _is_int(quantity) or quantity <= 0:
            raise InvalidInput(f"Item {index}: quantity must be a positive integer", details={"item": index})

        unit_price_cents = None
        if raw.get("unit_price") is not None:
            unit_price_cents = parse_money(raw["unit_price"], f"Item {index}: unit_price")

        lines.append(LineRequest(product_id=product_id, quantity=quantity, unit_price_cents=unit_price_cents))
    return lines


def _price_lines(lines: list[LineRequest]) -> list[PricedLine]:
    """Check every product exists and is active; snapshot prices."""
    for line in lines:
        if not _is_int(line.product_id) or not 0 < line.product_id <= catalog_service.MAX_ROW_ID:
            raise InvalidInput("product_id must be a positive integer", details={"product_id": line.product_id})
        if not _is_int(line.quantity) or line.quantity <= 0:
            raise InvalidInput("quantity must be a positive integer", details={"product_id": line.product_id})
        if line.unit_price_cents is not None and (not _is_int(line.unit_price_cents) or line.unit_price_cents < 0):
            raise InvalidInput("unit price cannot be negative", details={"product_id": line.product_id})

    product_ids = {line.product_id for line in lines}
    products = {
        p.id: p
        for p in db.session.query(Product).filter(Product.id.in_(product_ids)).all()
    }

    priced = []
    for line in lines:
        product = products.get(line.product_id)
        if product is None:
            raise InvalidInput(f"Product {line.product_id} not found", details={"product_id": line.product_id})
        if not product.is_active:
            raise InvalidInput(f"Product {product.sku} is not active", details={"product_id": product.id})

        unit_price = line.unit_price_cents if line.unit_price_cents is not None else product.price_cents
        priced.append(PricedLine(
            product_id=product.id,
            sku=product.sku,
            product_name=product.name,
            quantity=line.quantity,
            unit_price_cents=unit_price,
        ))
    return priced


def _normalize_payment_method(payment_method) -> str:
    method = (payment_method or "").strip().lower() if isinstance(payment_method, str) else ""
    if method not in PAYMENT_METHODS:
        raise InvalidInput(
            f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}",
            details={"payment_method": payment_method},
        )
    return method


def _receipt_snapshots(
    *,
    sale: Sale,
    receipt_number: str,
    lines: list[PricedLine],
    customer: Customer | None,
    cashier: User,
) -> tuple[dict, dict]:
    customer_data = {
        "receipt_number": receipt_number,
        "sale_number": sale.sale_number,
        "transaction_date": to_utc_z(sale.completed_at),
        "business_date": sale.business_date.isoformat(),
        "customer_name": customer.full_name if customer else "Guest",
        "items": [
            {
                "sku": line.sku,
                "name": line.product_name,
                "quantity": line.quantity,
                "unit_price": format_cents(line.unit_price_cents),
                "line_total": format_cents(line.line_total_cents),
            }
            for line in lines
        ],
        "subtotal": format_cents(sale.subtotal_cents),
        "discount_percentage": sale.discount_percentage,
        "discount": format_cents(sale.discount_cents),
        "tax_rate": sale.tax_rate,
        "tax": format_cents(sale.tax_cents),
        "total": format_cents(sale.total_cents),
        "payment_method": sale.payment_method,
    }

    merchant_data = {
        **customer_data,
        "sale_id": sale.id,
        "cashier_id": cashier.id,
        "cashier_username": cashier.username,
        "customer_id": customer.id if customer else None,
        "reservation_id": sale.reservation_id,
        "items": [
            {
                "product_id": line.product_id,
                "sku": line.sku,
                "name": line.product_name,
                "quantity": line.quantity,
                "unit_price_cents": line.unit_price_cents,
                "line_total_cents": line.line_total_cents,
            }
            for line in lines
        ],
        "subtotal_cents": sale.subtotal_cents,
        "discount_cents": sale.discount_cents,
        "tax_cents": sale.tax_cents,
        "total_cents": sale.total_cents,
    }
    return customer_data, merchant_data


def _persist_receipt(
    *,
    sale: Sale,
    receipt_number: str,
    lines: list[PricedLine],
    customer: Customer | None,
    cashier: User,
) -> Receipt:
    customer_data, merchant_data = _receipt_snapshots(
        sale=sale,
        receipt_number=receipt_number,
        lines=lines,
        customer=customer,
        cashier=cashier,
    )
    receipt = Receipt(
        sale_id=sale.id,
        receipt_number=receipt_number,
        customer_data=customer_data,
        merchant_data=merchant_data,
    )
    db.session.add(receipt)
    db.session.flush()
    return receipt


def _execute_sale(
    *,
    cashier: User,
    lines: list[PricedLine],
    payment_method: str,
    customer_id: int | None,
    notes: str | None,
    occurred_at: datetime,
    tax_rate: Decimal,
) -> tuple[Sale, Receipt]:
    begin_write()

    reservation = catalog_service.reserve(
        [(line.product_id, line.quantity) for line in lines],
        actor_user_id=cashier.id,
        note="Sale reservation",
        commit=False,
    )

    # Eligibility is read before this sale accrues, under the customer row lock.
    customer = None
    status = loyalty_service.NOT_ELIGIBLE
    if customer_id is not None:
        customer = lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).one()
        db.session.refresh(customer)
        status = loyalty_service.eligibility(customer)

    totals: SaleTotals = compute_totals(
        [(line.quantity, line.unit_price_cents) for line in lines],
        discount_percentage=status.discount_percentage if status.is_eligible else 0,
        tax_rate=tax_rate,
    )

    day: date = business_date(occurred_at)
    sale_number = next_sequence(SequenceKind.SALE, day)
    receipt_number = next_sequence(SequenceKind.RECEIPT, day)

    sale = Sale(
        sale_number=sale_number,
        business_date=day,
        customer_id=customer.id if customer else None,
        cashier_id=cashier.id,
        reservation_id=reservation.id,
        subtotal_cents=totals.subtotal_cents,
        discount_percentage=totals.discount_percentage,
        discount_cents=totals.discount_cents,
        tax_rate=str(tax_rate),
        tax_cents=totals.tax_cents,
        total_cents=totals.total_cents,
        payment_method=payment_method,
        status=SALE_STATUS_COMPLETED,
        notes=notes,
        completed_at=occurred_at,
    )
    db.session.add(sale)
    db.session.flush()

    for number, line in enumerate(lines, start=1):
        db.session.add(SaleLine(
            sale_id=sale.id,
            line_number=number,
            product_id=line.product_id,
            sku=line.sku,
            product_name=line.product_name,
            quantity=line.quantity,
            unit_price_cents=line.unit_price_cents,
            line_total_cents=line.line_total_cents,
        ))
    db.session.flush()

    receipt = _persist_receipt(
        sale=sale,
        receipt_number=receipt_number,
        lines=lines,
        customer=customer,
        cashier=cashier,
    )

    if customer is not None:
        loyalty_service.accrue(
            customer.id,
            sale.id,
            sale.total_cents,
            discount_cents=sale.discount_cents,
        )

    append_audit_event(
        action="sale.created",
        entity_type="sale",
        entity_id=sale.id,
        actor_user_id=cashier.id,
        payload={
            "sale_number": sale.sale_number,
            "receipt_number": receipt.receipt_number,
            "total_cents": sale.total_cents,
            "reservation_id": reservation.id,
        },
    )

    db.session.commit()
    return sale, receipt


def create_sale(
    *,
    cashier_id: int,
    items,
    payment_method: str,
    customer_ref=None,
    notes: str | None = None,
    occurred_at: datetime | None = None,
) -> tuple[Sale, Receipt]:
    """
    Ring up a sale: validate, reserve stock, price, number, persist, accrue.

    Raises:
        InvalidInput: bad items / payment method / customer / product
        InsufficientStock: some product cannot cover its quantity
        PersistenceFailure: storage failed; the reservation was rolled back
    """
    cashier = db.session.get(User, cashier_id)
    if cashier is None or not cashier.is_active:
        raise InvalidInput("Cashier not found or inactive", details={"cashier_id": cashier_id})

    payment_method = _normalize_payment_method(payment_method)
    priced = _price_lines(parse_line_items(items))

    customer_id = None
    if customer_ref is not None and customer_ref != "":
        customer_id = loyalty_service.resolve_customer(customer_ref).id

    occurred_at = occurred_at or utcnow()
    tax_rate = Decimal(str(current_app.config.get("POS_TAX_RATE", "0.10")))
    db.session.commit()

    def _op():
        try:
            return _execute_sale(
                cashier=cashier,
                lines=priced,
                payment_method=payment_method,
                customer_id=customer_id,
                notes=notes,
                occurred_at=occurred_at,
                tax_rate=tax_rate,
            )
        except Exception:
            db.session.rollback()
            raise

    try:
        sale, receipt = run_with_retry(_op)
    except (SQLAlchemyError, SequenceError) as exc:
        db.session.rollback()
        logger.error("Sale persistence failed for cashier %s; stock reservation rolled back", cashier_id, exc_info=True)
        raise PersistenceFailure(
            "The sale could not be recorded; no stock was reserved",
            details={"reason": type(exc).__name__},
        ) from exc

    logger.info("Sale %s completed: total=%s items=%d", sale.sale_number, format_cents(sale.total_cents), len(priced))
    return sale, receipt


def cancel_sale(sale_id: int, requester: User, *, reason: str | None = None) -> Sale:
    """
    Cancel a completed sale and return its stock.

    Only the operator who rang the sale, or a role holding CANCEL_ANY_SALE,
    may cancel it. Totals, discount and loyalty accrual are left as they were.
    """
    if not 0 < sale_id <= catalog_service.MAX_ROW_ID:
        raise NotFound("Sale not found", details={"sale_id": sale_id})

    def _op():
        begin_write()
        try:
            sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
            if not sale:
                raise NotFound("Sale not found", details={"sale_id": sale_id})

            if sale.status != SALE_STATUS_COMPLETED:
                raise AlreadyCancelled(
                    f"Sale {sale.sale_number} is already cancelled",
                    details={"sale_id": sale.id, "status": sale.status},
                )

            if requester.id != sale.cashier_id and not has_permission(requester.role_enum, CANCEL_ANY_SALE):
                logger.warning("User %s denied cancelling sale %s owned by %s", requester.id, sale.id, sale.cashier_id)
                raise Unauthorized(
                    "Only the original cashier or a manager can cancel this sale",
                    details={"sale_id": sale.id},
                )

            catalog_service.release(
                sale.reservation_id,
                actor_user_id=requester.id,
                note=f"Cancel {sale.sale_number}",
                commit=False,
            )

            sale.status = SALE_STATUS_CANCELLED
            sale.cancelled_at = utcnow()
            sale.cancelled_by_user_id = requester.id
            sale.cancel_reason = (reason or "").strip() or None

            append_audit_event(
                action="sale.cancelled",
                entity_type="sale",
                entity_id=sale.id,
                actor_user_id=requester.id,
                payload={
                    "sale_number": sale.sale_number,
                    "reservation_id": sale.reservation_id,
                    "reason": sale.cancel_reason,
                },
            )

            db.session.commit()
            return sale
        except Exception:
            db.session.rollback()
            raise

    try:
        sale = run_with_retry(_op)
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Cancelling sale %s failed", sale_id, exc_info=True)
        raise PersistenceFailure("The sale could not be cancelled", details={"reason": type(exc).__name__}) from exc

    logger.info("Sale %s cancelled by user %s", sale.sale_number, requester.id)
    return sale


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id) if 0 < sale_id <= catalog_service.MAX_ROW_ID else None
    if sale is None:
        raise NotFound("Sale not found", details={"sale_id": sale_id})
    return sale


def get_receipt_for_sale(sale_id: int) -> Receipt | None:
    return db.session.query(Receipt).filter_by(sale_id=sale_id).first()


def list_sales(
    *,
    business_day: date | None = None,
    status: str | None = None,
    cashier_id: int | None = None,
    limit: int = 100,
) -> list[Sale]:
    q = db.session.query(Sale)
    if business_day is not None:
        q = q.filter(Sale.business_date == business_day)
    if status:
        q = q.filter(Sale.status == status)
    if cashier_id is not None:
        q = q.filter(Sale.cashier_id == cashier_id)
    return q.order_by(Sale.id.desc()).limit(limit).all()
