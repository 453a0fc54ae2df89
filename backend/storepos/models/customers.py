from __future__ import annotations

from ..extensions import db
from ..money import format_cents
from ..time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer master data keyed by phone, with denormalized loyalty counters.

    DERIVED FIELDS:
    is_eligible_for_discount and discount_percentage are recomputed by
    loyalty_service in the same statement that moves the counters. No
    caller sets them directly.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.CheckConstraint("purchase_count >= 0", name="ck_customers_purchase_count"),
        db.CheckConstraint("total_spent_cents >= 0", name="ck_customers_total_spent"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    phone = db.Column(db.String(32), nullable=False, unique=True, index=True)
    full_name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True, index=True)
    address = db.Column(db.Text, nullable=True)

    # Loyalty counters (moved only by loyalty_service.accrue)
    total_spent_cents = db.Column(db.Integer, nullable=False, default=0)
    purchase_count = db.Column(db.Integer, nullable=False, default=0)
    total_discount_given_cents = db.Column(db.Integer, nullable=False, default=0)
    last_purchase_at = db.Column(db.DateTime(timezone=True), nullable=True)

    is_eligible_for_discount = db.Column(db.Boolean, nullable=False, default=False)
    discount_percentage = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def __repr__(self) -> str:
        return f"<Customer id={self.id} phone={self.phone!r} purchases={self.purchase_count}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "phone": self.phone,
            "full_name": self.full_name,
            "email": self.email,
            "address": self.address,
            "total_spent_cents": self.total_spent_cents,
            "total_spent": format_cents(self.total_spent_cents),
            "purchase_count": self.purchase_count,
            "total_discount_given_cents": self.total_discount_given_cents,
            "is_eligible_for_discount": self.is_eligible_for_discount,
            "discount_percentage": self.discount_percentage,
            "last_purchase_at": to_utc_z(self.last_purchase_at) if self.last_purchase_at else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class LoyaltyAccrual(db.Model):
    """
    One row per accrued sale.

    IMMUTABLE: The unique sale_id is what makes accrual exactly-once; a
    retried accrual for the same sale hits the constraint and is a no-op.
    """
    __tablename__ = "loyalty_accruals"
    __table_args__ = (
        db.UniqueConstraint("sale_id", name="uq_loyalty_accruals_sale"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False)

    amount_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("accruals", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "sale_id": self.sale_id,
            "amount_cents": self.amount_cents,
            "discount_cents": self.discount_cents,
            "occurred_at": to_utc_z(self.occurred_at),
        }
