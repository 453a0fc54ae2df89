# Overview: Catalog Ledger; owns product stock counters and their reserve/release/adjust operations.

"""
Catalog Ledger

INVARIANTS:
- quantity_on_hand never goes negative.
- Every counter change is one conditional UPDATE
  (SET quantity_on_hand = quantity_on_hand + :delta
   WHERE quantity_on_hand + :delta >= 0), never read-compute-write.
- A reservation is all-or-nothing across its products and can be released
  at most once; release returns exactly the quantities that were held.
- Every counter change writes a StockMovement row in the same transaction.

Products are always touched in ascending id order so two reservations
sharing products lock them in the same order.
"""

from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.util import identity_key

from ..errors import AlreadyReleased, InsufficientStock, InvalidInput, NotFound
from ..extensions import db
from ..models import Product, StockMovement, StockReservation, StockReservationLine
from ..money import parse_money
from ..time_utils import utcnow
from .audit_service import append_audit_event
from .concurrency import begin_write, run_with_retry


logger = logging.getLogger(__name__)

ADJUSTMENT_ACTIONS = ("adjustment", "restock")

# Ceiling for a single requested quantity and for a stock counter.
MAX_QUANTITY = 1_000_000

# Largest id a 64-bit INTEGER column can hold.
MAX_ROW_ID = 2**63 - 1

UPDATABLE_FIELDS = ("name", "description", "price", "reorder_level", "is_active")


def _require_quantity(value, field: str = "quantity") -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInput(f"{field} must be an integer")
    if value <= 0:
        raise InvalidInput(f"{field} must be greater than zero")
    return value


def _require_count(value, field: str) -> int:
    """Non-negative integer no larger than MAX_QUANTITY (stock levels, reorder points)."""
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidInput(f"{field} must be a non-negative integer")
    if value > MAX_QUANTITY:
        raise InvalidInput(f"{field} cannot exceed {MAX_QUANTITY}", details={field: value})
    return value


def aggregate_quantities(items: Iterable[tuple[int, int]]) -> dict[int, int]:
    """Sum quantities per product, ordered by product id."""
    totals: dict[int, int] = {}
    for product_id, quantity in items:
        if isinstance(product_id, bool) or not isinstance(product_id, int) or not 0 < product_id <= MAX_ROW_ID:
            raise InvalidInput(f"Product {product_id} not found", details={"product_id": product_id})
        _require_quantity(quantity)
        totals[product_id] = totals.get(product_id, 0) + quantity
    return dict(sorted(totals.items()))


def _expire_cached_product(product_id: int) -> None:
    # Core-style UPDATEs bypass the identity map; drop any stale copy.
    cached = db.session.identity_map.get(identity_key(Product, product_id))
    if cached is not None:
        db.session.expire(cached)


def _apply_delta(product_id: int, delta: int, *, ceiling: int | None = None) -> int | None:
    """
    Move one stock counter by delta in a single guarded statement.

    Returns the new quantity, or None when the guard rejected the change
    (unknown product, the result would be negative, or above ceiling).
    """
    conditions = [
        Product.id == product_id,
        Product.quantity_on_hand + delta >= 0,
    ]
    if ceiling is not None:
        conditions.append(Product.quantity_on_hand + delta <= ceiling)

    stmt = (
        update(Product)
        .where(*conditions)
        .values(quantity_on_hand=Product.quantity_on_hand + delta)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        return None

    _expire_cached_product(product_id)
    return db.session.query(Product.quantity_on_hand).filter(Product.id == product_id).scalar()


def _record_movement(
    *,
    product_id: int,
    action: str,
    delta: int,
    new_quantity: int,
    note: str | None,
    reservation_id: int | None = None,
    actor_user_id: int | None = None,
) -> StockMovement:
    movement = StockMovement(
        product_id=product_id,
        action=action,
        quantity_change=delta,
        previous_quantity=new_quantity - delta,
        new_quantity=new_quantity,
        note=note,
        reservation_id=reservation_id,
        created_by_user_id=actor_user_id,
        occurred_at=utcnow(),
    )
    db.session.add(movement)
    return movement


def get_quantity_on_hand(product_id: int) -> int:
    qty = db.session.query(Product.quantity_on_hand).filter(Product.id == product_id).scalar()
    if qty is None:
        raise NotFound(f"Product {product_id} not found", details={"product_id": product_id})
    return qty


def reserve(
    items: Iterable[tuple[int, int]],
    *,
    actor_user_id: int | None = None,
    note: str | None = None,
    commit: bool = True,
) -> StockReservation:
    """
    Atomically hold stock for every (product_id, quantity) pair.

    Raises InsufficientStock for the first product that cannot cover its
    requested quantity; no stock is held in that case. With commit=False the
    caller owns the transaction and must roll back on any error.
    """
    requested = aggregate_quantities(items)
    if not requested:
        raise InvalidInput("At least one item is required to reserve stock")

    if commit:
        begin_write()

    try:
        reservation = StockReservation(status="HELD", created_by_user_id=actor_user_id)
        db.session.add(reservation)
        db.session.flush()

        for product_id, quantity in requested.items():
            # Stock is capped at MAX_QUANTITY; anything larger is short and
            # never reaches the database driver.
            new_quantity = _apply_delta(product_id, -quantity) if quantity <= MAX_QUANTITY else None
            if new_quantity is None:
                on_hand = db.session.query(Product.quantity_on_hand).filter(Product.id == product_id).scalar()
                if on_hand is None:
                    raise InvalidInput(f"Product {product_id} not found", details={"product_id": product_id})
                raise InsufficientStock(
                    f"Insufficient stock for product {product_id}",
                    details={
                        "product_id": product_id,
                        "requested_quantity": quantity,
                        "on_hand": on_hand,
                    },
                )

            db.session.add(StockReservationLine(
                reservation_id=reservation.id,
                product_id=product_id,
                quantity=quantity,
            ))
            _record_movement(
                product_id=product_id,
                action="sale",
                delta=-quantity,
                new_quantity=new_quantity,
                note=note,
                reservation_id=reservation.id,
                actor_user_id=actor_user_id,
            )

        if commit:
            db.session.commit()
    except Exception:
        if commit:
            db.session.rollback()
        raise

    return reservation


def release(
    reservation_id: int,
    *,
    actor_user_id: int | None = None,
    note: str | None = None,
    commit: bool = True,
) -> StockReservation:
    """
    Return every held quantity of a reservation to stock, exactly once.

    Raises AlreadyReleased when the reservation was released before, so a
    double cancellation can never push stock above its pre-sale level.
    """
    if commit:
        begin_write()

    try:
        now = utcnow()
        claimed = db.session.execute(
            update(StockReservation)
            .where(
                StockReservation.id == reservation_id,
                StockReservation.status == "HELD",
            )
            .values(status="RELEASED", released_at=now, released_by_user_id=actor_user_id)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            exists = db.session.query(StockReservation.id).filter_by(id=reservation_id).scalar()
            if exists is None:
                raise NotFound(f"Reservation {reservation_id} not found")
            raise AlreadyReleased(
                f"Reservation {reservation_id} was already released",
                details={"reservation_id": reservation_id},
            )

        lines = (
            db.session.query(StockReservationLine)
            .filter_by(reservation_id=reservation_id)
            .order_by(StockReservationLine.product_id)
            .all()
        )
        for line in lines:
            new_quantity = _apply_delta(line.product_id, line.quantity)
            if new_quantity is None:
                raise NotFound(f"Product {line.product_id} not found", details={"product_id": line.product_id})
            _record_movement(
                product_id=line.product_id,
                action="cancel",
                delta=line.quantity,
                new_quantity=new_quantity,
                note=note,
                reservation_id=reservation_id,
                actor_user_id=actor_user_id,
            )

        reservation = db.session.get(StockReservation, reservation_id)
        db.session.refresh(reservation)

        if commit:
            db.session.commit()
    except Exception:
        if commit:
            db.session.rollback()
        raise

    return reservation


def adjust(
    product_id: int,
    delta: int,
    reason: str,
    *,
    actor_user_id: int | None = None,
    action: str = "adjustment",
) -> StockMovement:
    """
    Manager stock correction through the same guarded counter.

    Positive delta adds stock, negative removes it. Driving stock below zero
    is rejected with InsufficientStock.
    """
    if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
        raise InvalidInput("quantity_change must be a non-zero integer")
    if abs(delta) > MAX_QUANTITY:
        raise InvalidInput(
            f"quantity_change cannot exceed {MAX_QUANTITY} in either direction",
            details={"quantity_change": delta},
        )
    if not reason or not str(reason).strip():
        raise InvalidInput("reason is required")
    if action not in ADJUSTMENT_ACTIONS:
        raise InvalidInput(f"action must be one of: {', '.join(ADJUSTMENT_ACTIONS)}")
    if action == "restock" and delta < 0:
        raise InvalidInput("restock quantity_change must be positive")

    def _op() -> StockMovement:
        begin_write()
        try:
            on_hand = db.session.query(Product.quantity_on_hand).filter(Product.id == product_id).scalar()
            if on_hand is None:
                raise NotFound(f"Product {product_id} not found", details={"product_id": product_id})

            new_quantity = _apply_delta(product_id, delta, ceiling=MAX_QUANTITY if delta > 0 else None)
            if new_quantity is None and delta > 0:
                raise InvalidInput(
                    f"Stock for product {product_id} cannot exceed {MAX_QUANTITY}",
                    details={"product_id": product_id, "quantity_change": delta, "on_hand": on_hand},
                )
            if new_quantity is None:
                raise InsufficientStock(
                    f"Adjustment would make stock negative for product {product_id}",
                    details={"product_id": product_id, "quantity_change": delta, "on_hand": on_hand},
                )

            movement = _record_movement(
                product_id=product_id,
                action=action,
                delta=delta,
                new_quantity=new_quantity,
                note=reason.strip(),
                actor_user_id=actor_user_id,
            )
            db.session.flush()
            append_audit_event(
                action="stock.adjusted",
                entity_type="product",
                entity_id=product_id,
                actor_user_id=actor_user_id,
                payload={
                    "movement_id": movement.id,
                    "action": action,
                    "quantity_change": delta,
                    "previous_quantity": movement.previous_quantity,
                    "new_quantity": new_quantity,
                    "reason": movement.note,
                },
            )
            db.session.commit()
            return movement
        except Exception:
            db.session.rollback()
            raise

    movement = run_with_retry(_op)
    logger.info("Stock adjusted: product=%s delta=%+d new=%s", product_id, delta, movement.new_quantity)
    return movement


def low_stock_products() -> list[Product]:
    """Active products at or below their reorder level, emptiest first."""
    return (
        db.session.query(Product)
        .filter(
            Product.is_active.is_(True),
            Product.quantity_on_hand <= Product.reorder_level,
        )
        .order_by(Product.quantity_on_hand.asc(), Product.name.asc())
        .all()
    )


def list_movements(product_id: int | None = None, limit: int = 100) -> list[StockMovement]:
    q = db.session.query(StockMovement)
    if product_id is not None:
        q = q.filter(StockMovement.product_id == product_id)
    return q.order_by(StockMovement.id.desc()).limit(limit).all()


def create_product(
    *,
    sku: str,
    name: str,
    price,
    quantity_on_hand: int = 0,
    reorder_level: int = 10,
    description: str | None = None,
) -> Product:
    """
    Register a product row (the thin catalog CRUD path).

    Opening stock is set here; later changes go through reserve/release/adjust.
    """
    sku = (sku or "").strip().upper()
    name = (name or "").strip()
    if not sku:
        raise InvalidInput("sku is required")
    if not name:
        raise InvalidInput("name is required")
    _require_count(quantity_on_hand, "quantity_on_hand")
    _require_count(reorder_level, "reorder_level")

    product = Product(
        sku=sku,
        name=name,
        description=description,
        price_cents=parse_money(price, "price"),
        quantity_on_hand=quantity_on_hand,
        reorder_level=reorder_level,
        is_active=True,
    )
    db.session.add(product)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise InvalidInput(f"SKU '{sku}' already exists", details={"sku": sku})
    return product


def get_product(product_id: int) -> Product:
    product = None
    if 0 < product_id <= MAX_ROW_ID:
        product = db.session.get(Product, product_id)
    if product is None:
        raise NotFound("Product not found", details={"product_id": product_id})
    return product


def _validated_changes(changes: dict) -> dict:
    """Map request fields onto Product columns, validating all before any is applied."""
    if not isinstance(changes, dict) or not changes:
        raise InvalidInput("No changes supplied")
    if "quantity_on_hand" in changes:
        raise InvalidInput(
            "quantity_on_hand cannot be edited here; record an inventory adjustment",
            details={"field": "quantity_on_hand"},
        )
    unknown = sorted(set(changes) - set(UPDATABLE_FIELDS))
    if unknown:
        raise InvalidInput(f"Unknown fields: {', '.join(unknown)}", details={"fields": unknown})

    columns = {}
    if "name" in changes:
        name = changes["name"].strip() if isinstance(changes["name"], str) else ""
        if not name:
            raise InvalidInput("name cannot be blank")
        columns["name"] = name
    if "description" in changes:
        description = changes["description"]
        if description is not None and not isinstance(description, str):
            raise InvalidInput("description must be text")
        columns["description"] = description
    if "price" in changes:
        columns["price_cents"] = parse_money(changes["price"], "price")
    if "reorder_level" in changes:
        columns["reorder_level"] = _require_count(changes["reorder_level"], "reorder_level")
    if "is_active" in changes:
        if not isinstance(changes["is_active"], bool):
            raise InvalidInput("is_active must be true or false")
        columns["is_active"] = changes["is_active"]
    return columns


def update_product(product_id: int, changes: dict, *, actor_user_id: int | None = None) -> Product:
    """
    Edit the catalog fields of a product.

    Stock never moves here. A new price applies to sales validated after the
    commit; lines already sold keep the price captured when they were rung up.
    """
    columns = _validated_changes(changes)
    product = get_product(product_id)

    try:
        previous = {field: getattr(product, field) for field in columns}
        for field, value in columns.items():
            setattr(product, field, value)
        append_audit_event(
            action="product.updated",
            entity_type="product",
            entity_id=product.id,
            actor_user_id=actor_user_id,
            payload={"before": previous, "after": columns},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Product %s updated: %s", product.sku, ", ".join(sorted(columns)))
    return product


def deactivate_product(product_id: int, *, actor_user_id: int | None = None) -> Product:
    """
    Soft-delete a product: it stays for history and reports but can no longer be sold.

    Deactivating an inactive product is a no-op.
    """
    product = get_product(product_id)
    if not product.is_active:
        return product

    try:
        product.is_active = False
        append_audit_event(
            action="product.deactivated",
            entity_type="product",
            entity_id=product.id,
            actor_user_id=actor_user_id,
            payload={"sku": product.sku},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Product %s deactivated", product.sku)
    return product
