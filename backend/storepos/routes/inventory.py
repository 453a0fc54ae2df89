# Overview: Flask API routes for inventory operations; parses input and returns JSON responses.

# backend/storepos/routes/inventory.py
"""
Inventory routes backed by the catalog ledger.

Every change here goes through catalog_service.adjust(), the same guarded
counter that sales use, and leaves a stock movement row behind.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import PosError
from ..services import catalog_service
from ..decorators import require_auth, require_permission


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.post("/adjust")
@require_auth
@require_permission("ADJUST_INVENTORY")
def adjust_inventory_route():
    """
    Apply a manual stock correction.

    Body: {product_id, quantity_change, reason, action?: "adjustment"|"restock"}
    """
    data = request.get_json(silent=True) or {}

    try:
        movement = catalog_service.adjust(
            data.get("product_id"),
            data.get("quantity_change"),
            data.get("reason"),
            actor_user_id=g.current_user.id,
            action=data.get("action") or "adjustment",
        )
        return jsonify({"movement": movement.to_dict()}), 201

    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to adjust inventory")
        return jsonify({"error": "PersistenceFailure", "message": "Internal server error"}), 500


@inventory_bp.get("/low-stock")
@require_auth
@require_permission("VIEW_INVENTORY")
def low_stock_route():
    """Active products at or below their reorder level."""
    products = catalog_service.low_stock_products()
    return jsonify({"items": [p.to_dict() for p in products], "count": len(products)}), 200


@inventory_bp.get("/movements")
@require_auth
@require_permission("VIEW_INVENTORY")
def list_movements_route():
    """
    Stock movement history, newest first.

    Query params:
    - product_id: int (optional)
    - limit: int (optional, default 100, max 500)
    """
    product_id = request.args.get("product_id", type=int)
    limit = min(request.args.get("limit", default=100, type=int) or 100, 500)

    movements = catalog_service.list_movements(product_id=product_id, limit=limit)
    return jsonify({"items": [m.to_dict() for m in movements]}), 200
