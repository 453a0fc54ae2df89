from __future__ import annotations

from ..extensions import db
from ..money import format_cents


class DailyReport(db.Model):
    """
    One aggregated report per calendar date.

    Regenerating a date overwrites this row (upsert keyed by report_date).
    content_hash covers the stored aggregate payload (every column below
    except id, content_hash and the generation bookkeeping), so two
    generations over unchanged sales can be compared byte for byte.
    generated_at / generated_by_user_id are bookkeeping, not report content.
    """
    __tablename__ = "daily_reports"
    __table_args__ = (
        db.UniqueConstraint("report_date", name="uq_daily_reports_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    report_date = db.Column(db.Date, nullable=False, index=True)

    total_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    total_transactions = db.Column(db.Integer, nullable=False, default=0)
    total_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_tax_cents = db.Column(db.Integer, nullable=False, default=0)
    items_sold = db.Column(db.Integer, nullable=False, default=0)
    average_transaction_cents = db.Column(db.Integer, nullable=False, default=0)

    cash_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    card_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    check_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_breakdown = db.Column(db.JSON, nullable=False, default=dict)

    top_products = db.Column(db.JSON, nullable=False, default=list)

    new_customers = db.Column(db.Integer, nullable=False, default=0)
    returning_customers = db.Column(db.Integer, nullable=False, default=0)

    content_hash = db.Column(db.String(64), nullable=False)

    generated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    generated_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "report_date": self.report_date.isoformat(),
            "total_sales_cents": self.total_sales_cents,
            "total_sales": format_cents(self.total_sales_cents),
            "total_transactions": self.total_transactions,
            "total_discount_cents": self.total_discount_cents,
            "total_tax_cents": self.total_tax_cents,
            "items_sold": self.items_sold,
            "average_transaction_cents": self.average_transaction_cents,
            "cash_sales_cents": self.cash_sales_cents,
            "card_sales_cents": self.card_sales_cents,
            "check_sales_cents": self.check_sales_cents,
            "payment_breakdown": self.payment_breakdown,
            "top_products": self.top_products,
            "new_customers": self.new_customers,
            "returning_customers": self.returning_customers,
            "content_hash": self.content_hash,
        }
