from __future__ import annotations

from ..extensions import db
from ..money import format_cents
from ..time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data plus its stock-on-hand counter.

    STOCK DESIGN DECISION:
    quantity_on_hand is a single guarded counter owned by catalog_service.
    It is only ever changed by one conditional UPDATE per product
    (reserve, release, adjust), never by read-modify-write in Python.
    The CHECK constraint is the last line against negative stock.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("quantity_on_hand >= 0", name="ck_products_quantity_non_negative"),
        db.CheckConstraint("price_cents >= 0", name="ck_products_price_non_negative"),
        db.Index("ix_products_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False, unique=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Authoritative storage in cents (frontend may only format for display)
    price_cents = db.Column(db.Integer, nullable=False)

    quantity_on_hand = db.Column(db.Integer, nullable=False, default=0)
    reorder_level = db.Column(db.Integer, nullable=False, default=10)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r} on_hand={self.quantity_on_hand}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "price_cents": self.price_cents,
            "price": format_cents(self.price_cents),
            "quantity_on_hand": self.quantity_on_hand,
            "reorder_level": self.reorder_level,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockReservation(db.Model):
    """
    A provisional hold against stock-on-hand tied to one sale attempt.

    Lifecycle: HELD -> RELEASED. The transition is a single conditional
    UPDATE so a reservation can be released at most once.
    """
    __tablename__ = "stock_reservations"
    __table_args__ = (
        db.CheckConstraint("status IN ('HELD', 'RELEASED')", name="ck_stock_reservations_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    status = db.Column(db.String(16), nullable=False, default="HELD", index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    released_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    released_at = db.Column(db.DateTime(timezone=True), nullable=True)

    lines = db.relationship(
        "StockReservationLine",
        backref="reservation",
        lazy=True,
        order_by="StockReservationLine.product_id",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "released_by_user_id": self.released_by_user_id,
            "released_at": to_utc_z(self.released_at) if self.released_at else None,
            "lines": [line.to_dict() for line in self.lines],
        }


class StockReservationLine(db.Model):
    """Quantity held for one product (duplicates in a sale are aggregated)."""
    __tablename__ = "stock_reservation_lines"
    __table_args__ = (
        db.UniqueConstraint("reservation_id", "product_id", name="uq_reservation_lines_product"),
        db.CheckConstraint("quantity > 0", name="ck_reservation_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    reservation_id = db.Column(db.Integer, db.ForeignKey("stock_reservations.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "quantity": self.quantity,
        }


class StockMovement(db.Model):
    """
    Append-only log of every stock counter mutation.

    ACTIONS:
    - sale: stock reserved by a sale
    - cancel: stock returned by a cancelled sale
    - adjustment: manager correction (shrink, count fix)
    - restock: manager-entered delivery
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_occurred", "product_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    action = db.Column(db.String(16), nullable=False, index=True)
    quantity_change = db.Column(db.Integer, nullable=False)
    previous_quantity = db.Column(db.Integer, nullable=False)
    new_quantity = db.Column(db.Integer, nullable=False)
    note = db.Column(db.String(255), nullable=True)

    reservation_id = db.Column(db.Integer, db.ForeignKey("stock_reservations.id"), nullable=True, index=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "action": self.action,
            "quantity_change": self.quantity_change,
            "previous_quantity": self.previous_quantity,
            "new_quantity": self.new_quantity,
            "note": self.note,
            "reservation_id": self.reservation_id,
            "created_by_user_id": self.created_by_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
