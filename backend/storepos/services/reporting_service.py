# Overview: Daily Aggregator; folds one calendar day of completed sales into a stored report.

"""
Daily report generation.

WHY: Reports are regenerated on demand (end of day, after a late cancellation,
by a cron job). Regeneration must therefore be an overwrite, never an append:
the row for a date is upserted, and the report content is a pure function of
the completed sales in that date's window. content_hash lets two generations
be compared without diffing every field.

WINDOW: [date 00:00, next day 00:00) in POS_REPORT_TIMEZONE, evaluated on
Sale.completed_at. Cancelled sales are excluded.
"""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import date, datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import InvalidInput
from ..extensions import db
from ..models import Customer, DailyReport, Sale, SaleLine
from ..models.sales import PAYMENT_METHODS, SALE_STATUS_COMPLETED
from ..money import round_cents
from ..time_utils import day_bounds_utc, utcnow
from . import catalog_service, loyalty_service
from .audit_service import append_audit_event
from .concurrency import begin_write, run_with_retry
from .sequence_service import business_date, report_timezone


logger = logging.getLogger(__name__)


def parse_report_date(value) -> date:
    """Accept a date or 'YYYY-MM-DD'; anything else is InvalidInput."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        raise InvalidInput("date is required (YYYY-MM-DD)")
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        raise InvalidInput("Invalid date format. Use YYYY-MM-DD", details={"date": value})


def _rank_products(sales: list[Sale], top_n: int) -> list[dict]:
    """Top products by units sold; ties by revenue, then name, then id."""
    if not sales:
        return []

    rows = (
        db.session.query(SaleLine)
        .filter(SaleLine.sale_id.in_([s.id for s in sales]))
        .order_by(SaleLine.id)
        .all()
    )

    # The earliest line sold supplies each product's sku and name.
    stats: dict[int, dict] = {}
    for line in rows:
        entry = stats.setdefault(line.product_id, {
            "product_id": line.product_id,
            "sku": line.sku,
            "name": line.product_name,
            "units_sold": 0,
            "revenue_cents": 0,
        })
        entry["units_sold"] += line.quantity
        entry["revenue_cents"] += line.line_total_cents

    ranked = sorted(
        stats.values(),
        key=lambda e: (-e["units_sold"], -e["revenue_cents"], e["name"], e["product_id"]),
    )
    return ranked[:top_n]


def _count_customers(sales: list[Sale], window_start: datetime, window_end: datetime) -> tuple[int, int]:
    """(new, returning): new means the customer record was created inside the window."""
    customer_ids = {s.customer_id for s in sales if s.customer_id is not None}
    if not customer_ids:
        return 0, 0

    new = (
        db.session.query(Customer.id)
        .filter(
            Customer.id.in_(customer_ids),
            Customer.created_at >= window_start,
            Customer.created_at < window_end,
        )
        .count()
    )
    return new, len(customer_ids) - new


def compute_daily_report(report_date: date, *, top_n: int | None = None) -> dict:
    """
    Aggregate the day's completed sales into a plain dict (no writes).

    The returned payload is exactly what gets stored and hashed.
    """
    if top_n is None:
        top_n = int(current_app.config.get("POS_REPORT_TOP_PRODUCTS", 5))
    if top_n < 0:
        raise InvalidInput("top_n cannot be negative")

    window_start, window_end = day_bounds_utc(report_date, report_timezone())

    sales = (
        db.session.query(Sale)
        .filter(
            Sale.status == SALE_STATUS_COMPLETED,
            Sale.completed_at >= window_start,
            Sale.completed_at < window_end,
        )
        .order_by(Sale.id)
        .all()
    )

    total_sales = sum(s.total_cents for s in sales)
    transactions = len(sales)

    breakdown = {method: {"transactions": 0, "total_cents": 0} for method in PAYMENT_METHODS}
    for sale in sales:
        bucket = breakdown[sale.payment_method]
        bucket["transactions"] += 1
        bucket["total_cents"] += sale.total_cents

    items_sold = 0
    if sales:
        items_sold = (
            db.session.query(db.func.coalesce(db.func.sum(SaleLine.quantity), 0))
            .filter(SaleLine.sale_id.in_([s.id for s in sales]))
            .scalar()
        )

    average = round_cents(Decimal(total_sales) / Decimal(transactions)) if transactions else 0
    new_customers, returning_customers = _count_customers(sales, window_start, window_end)

    return {
        "report_date": report_date.isoformat(),
        "total_sales_cents": total_sales,
        "total_transactions": transactions,
        "total_discount_cents": sum(s.discount_cents for s in sales),
        "total_tax_cents": sum(s.tax_cents for s in sales),
        "items_sold": int(items_sold),
        "average_transaction_cents": average,
        "cash_sales_cents": breakdown["cash"]["total_cents"],
        "card_sales_cents": breakdown["card"]["total_cents"],
        "check_sales_cents": breakdown["check"]["total_cents"],
        "payment_breakdown": breakdown,
        "top_products": _rank_products(sales, top_n),
        "new_customers": new_customers,
        "returning_customers": returning_customers,
    }


def content_hash(payload: dict) -> str:
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _apply(report: DailyReport, payload: dict, digest: str, generated_by_user_id: int | None) -> None:
    for field, value in payload.items():
        if field == "report_date":
            continue
        setattr(report, field, value)
    report.content_hash = digest
    report.generated_by_user_id = generated_by_user_id
    report.generated_at = utcnow()


def generate_daily_report(
    report_date,
    *,
    generated_by_user_id: int | None = None,
    top_n: int | None = None,
) -> DailyReport:
    """
    Compute and upsert the report for report_date.

    Regenerating over unchanged sales yields the same content and hash;
    only generated_at / generated_by_user_id move.
    """
    report_date = parse_report_date(report_date)

    def _op() -> DailyReport:
        begin_write()
        try:
            payload = compute_daily_report(report_date, top_n=top_n)
            digest = content_hash(payload)

            report = db.session.query(DailyReport).filter_by(report_date=report_date).first()
            regenerated = report is not None
            if report is None:
                report = DailyReport(report_date=report_date)
                _apply(report, payload, digest, generated_by_user_id)
                try:
                    with db.session.begin_nested():
                        db.session.add(report)
                except IntegrityError:
                    # Another generator inserted this date first; overwrite its row.
                    regenerated = True
                    report = db.session.query(DailyReport).filter_by(report_date=report_date).one()
                    _apply(report, payload, digest, generated_by_user_id)
            else:
                _apply(report, payload, digest, generated_by_user_id)

            db.session.flush()
            append_audit_event(
                action="report.generated",
                entity_type="daily_report",
                entity_id=report.id,
                actor_user_id=generated_by_user_id,
                payload={
                    "report_date": report_date.isoformat(),
                    "content_hash": digest,
                    "regenerated": regenerated,
                },
            )
            db.session.commit()

            if regenerated:
                logger.info("Daily report %s regenerated (hash %s)", report_date, digest[:12])
            else:
                logger.info("Daily report %s generated (hash %s)", report_date, digest[:12])
            return report
        except Exception:
            db.session.rollback()
            raise

    return run_with_retry(_op)


def get_daily_report(report_date) -> DailyReport | None:
    report_date = parse_report_date(report_date)
    return db.session.query(DailyReport).filter_by(report_date=report_date).first()


def dashboard_summary(*, top_n: int | None = None, top_customers: int = 10) -> dict:
    """
    Live store overview for the manager dashboard.

    Today's figures are computed on the fly from committed sales (nothing is
    stored); top_customers ranks by lifetime spend across all days.
    """
    today = business_date(utcnow())
    day = compute_daily_report(today, top_n=top_n)

    return {
        "date": today.isoformat(),
        "today_sales": {
            field: day[field]
            for field in (
                "total_sales_cents",
                "total_transactions",
                "total_discount_cents",
                "total_tax_cents",
                "items_sold",
                "average_transaction_cents",
            )
        },
        "top_products": day["top_products"],
        "top_customers": [
            {
                "customer_id": c.id,
                "full_name": c.full_name,
                "phone": c.phone,
                "purchase_count": c.purchase_count,
                "total_spent_cents": c.total_spent_cents,
            }
            for c in loyalty_service.list_customers(limit=top_customers)
        ],
        "low_stock_items": len(catalog_service.low_stock_products()),
    }
