from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..money import format_cents
from ..time_utils import to_utc_z


SALE_STATUS_COMPLETED = "completed"
SALE_STATUS_CANCELLED = "cancelled"

PAYMENT_METHODS = ("cash", "card", "check")


class Sale(db.Model):
    """
    Completed sale document.

    WHY: A sale is written once, fully priced, in the same transaction that
    reserves its stock. Afterwards the only permitted change is the
    completed -> cancelled transition (plus its audit columns).
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.CheckConstraint("status IN ('completed', 'cancelled')", name="ck_sales_status"),
        db.CheckConstraint("payment_method IN ('cash', 'card', 'check')", name="ck_sales_payment_method"),
        db.Index("ix_sales_status_completed", "status", "completed_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number, e.g. "TXN-20261018-00001"
    sale_number = db.Column(db.String(32), nullable=False, unique=True, index=True)
    business_date = db.Column(db.Date, nullable=False, index=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    cashier_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    reservation_id = db.Column(db.Integer, db.ForeignKey("stock_reservations.id"), nullable=False, unique=True)

    # Totals (all amounts in cents)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_percentage = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate = db.Column(db.String(16), nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    payment_method = db.Column(db.String(16), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=SALE_STATUS_COMPLETED, index=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=False)

    # Cancel audit trail
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    cashier = db.relationship("User", foreign_keys=[cashier_id])
    reservation = db.relationship("StockReservation")
    lines = db.relationship(
        "SaleLine",
        backref="sale",
        lazy=True,
        order_by="SaleLine.line_number",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_number": self.sale_number,
            "business_date": self.business_date.isoformat(),
            "customer_id": self.customer_id,
            "cashier_id": self.cashier_id,
            "reservation_id": self.reservation_id,
            "status": self.status,
            "payment_method": self.payment_method,
            "subtotal_cents": self.subtotal_cents,
            "discount_percentage": self.discount_percentage,
            "discount_cents": self.discount_cents,
            "tax_rate": self.tax_rate,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "subtotal": format_cents(self.subtotal_cents),
            "discount": format_cents(self.discount_cents),
            "tax": format_cents(self.tax_cents),
            "total": format_cents(self.total_cents),
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at),
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "cancel_reason": self.cancel_reason,
            "version_id": self.version_id,
            "lines": [line.to_dict() for line in self.lines],
        }


class SaleLine(db.Model):
    """
    Line item with the unit price captured at request time.

    IMMUTABLE: rows are never updated after insert.
    """
    __tablename__ = "sale_lines"
    __table_args__ = (
        db.UniqueConstraint("sale_id", "line_number", name="uq_sale_lines_number"),
        db.CheckConstraint("quantity > 0", name="ck_sale_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    sku = db.Column(db.String(64), nullable=False)
    product_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "line_number": self.line_number,
            "product_id": self.product_id,
            "sku": self.sku,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }


class Receipt(db.Model):
    """
    Reprintable receipt, generated 1:1 with a sale.

    customer_data is what the customer sees; merchant_data adds internal
    identifiers (operator, sale id, reservation id). Immutable once created.
    """
    __tablename__ = "receipts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, unique=True)

    # e.g. "RCP-20261018-00001"
    receipt_number = db.Column(db.String(32), nullable=False, unique=True, index=True)

    customer_data = db.Column(db.JSON, nullable=False)
    merchant_data = db.Column(db.JSON, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", backref=db.backref("receipt", uselist=False, lazy=True))

    def to_dict(self, include_merchant: bool = False) -> dict:
        data = {
            "id": self.id,
            "sale_id": self.sale_id,
            "receipt_number": self.receipt_number,
            "customer_data": self.customer_data,
            "created_at": to_utc_z(self.created_at),
        }
        if include_merchant:
            data["merchant_data"] = self.merchant_data
        return data


@event.listens_for(SaleLine, "before_update")
@event.listens_for(Receipt, "before_update")
def _reject_update(mapper, connection, target):
    raise ValueError(f"{type(target).__name__} rows are immutable once written")
