# Overview: Flask API routes for products operations; parses input and returns JSON responses.

# backend/storepos/routes/products.py
"""
Product catalog routes.

SECURITY: All routes require authentication.
- Read operations require VIEW_PRODUCTS permission
- Write operations require MANAGE_PRODUCTS permission

Stock levels are never written here after creation; they move through the
inventory routes and sales. DELETE is a soft delete (is_active = false) so
sold products keep their history.
"""
from flask import Blueprint, request, g, current_app

from ..errors import PosError
from ..extensions import db
from ..models import Product
from ..services import catalog_service
from ..decorators import require_auth, require_permission

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
@require_permission("VIEW_PRODUCTS")
def list_products():
    """
    List products.

    Query params:
    - q: str (optional) - substring match on sku or name
    - include_inactive: bool (optional, default false)
    """
    search = (request.args.get("q") or "").strip()
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"

    q = db.session.query(Product)
    if not include_inactive:
        q = q.filter(Product.is_active.is_(True))
    if search:
        like = f"%{search}%"
        q = q.filter(db.or_(Product.sku.ilike(like), Product.name.ilike(like)))

    products = q.order_by(Product.name.asc(), Product.id.asc()).all()
    return {"items": [p.to_dict() for p in products], "count": len(products)}


@products_bp.get("/<int:product_id>")
@require_auth
@require_permission("VIEW_PRODUCTS")
def get_product(product_id: int):
    try:
        product = catalog_service.get_product(product_id)
    except PosError as e:
        return e.to_dict(), e.status_code
    return {"product": product.to_dict()}


@products_bp.post("")
@require_auth
@require_permission("MANAGE_PRODUCTS")
def create_product_route():
    """
    Create a new product with its opening stock.

    Body: {sku, name, price, quantity_on_hand?, reorder_level?, description?}
    """
    payload = request.get_json(silent=True) or {}

    try:
        product = catalog_service.create_product(
            sku=payload.get("sku"),
            name=payload.get("name"),
            price=payload.get("price"),
            quantity_on_hand=payload.get("quantity_on_hand", 0),
            reorder_level=payload.get("reorder_level", 10),
            description=payload.get("description"),
        )
    except PosError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create product")
        db.session.rollback()
        return {"error": "PersistenceFailure", "message": "Internal server error"}, 500

    current_app.logger.info("Product %s created by user %s", product.sku, g.current_user.id)
    return {"product": product.to_dict()}, 201


@products_bp.put("/<int:product_id>")
@require_auth
@require_permission("MANAGE_PRODUCTS")
def update_product_route(product_id: int):
    """
    Edit catalog fields.

    Body: any of {name, description, price, reorder_level, is_active}
    """
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return {"error": "InvalidInput", "message": "JSON body required"}, 400

    try:
        product = catalog_service.update_product(product_id, payload, actor_user_id=g.current_user.id)
    except PosError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update product")
        db.session.rollback()
        return {"error": "PersistenceFailure", "message": "Internal server error"}, 500

    return {"product": product.to_dict()}


@products_bp.delete("/<int:product_id>")
@require_auth
@require_permission("MANAGE_PRODUCTS")
def deactivate_product_route(product_id: int):
    try:
        product = catalog_service.deactivate_product(product_id, actor_user_id=g.current_user.id)
    except PosError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to deactivate product")
        db.session.rollback()
        return {"error": "PersistenceFailure", "message": "Internal server error"}, 500

    current_app.logger.info("Product %s deactivated by user %s", product.sku, g.current_user.id)
    return {"product": product.to_dict()}
