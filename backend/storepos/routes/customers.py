# Overview: Flask API routes for customer operations; parses input and returns JSON responses.

# backend/storepos/routes/customers.py
"""Customer registration, listing, lookup by phone, and loyalty status."""

from flask import Blueprint, request, jsonify, current_app

from ..errors import PosError
from ..extensions import db
from ..models import Customer
from ..services import loyalty_service
from ..decorators import require_auth, require_permission


customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.post("")
@require_auth
@require_permission("MANAGE_CUSTOMERS")
def create_customer_route():
    """Body: {phone, full_name, email?, address?}"""
    data = request.get_json(silent=True) or {}

    try:
        customer = loyalty_service.create_customer(
            phone=data.get("phone"),
            full_name=data.get("full_name"),
            email=data.get("email"),
            address=data.get("address"),
        )
        return jsonify({"customer": customer.to_dict()}), 201

    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create customer")
        return jsonify({"error": "PersistenceFailure", "message": "Internal server error"}), 500


@customers_bp.get("")
@require_auth
@require_permission("MANAGE_CUSTOMERS")
def list_customers_route():
    """
    Customers by lifetime spend, biggest first.

    Query params:
    - limit: int (optional, default 100, max 500)
    """
    limit = request.args.get("limit", 100, type=int)
    if limit is None or not 0 < limit <= 500:
        return jsonify({"error": "InvalidInput", "message": "limit must be between 1 and 500"}), 400

    customers = loyalty_service.list_customers(limit=limit)
    return jsonify({"items": [c.to_dict() for c in customers], "count": len(customers)}), 200


@customers_bp.get("/search/<phone>")
@require_auth
@require_permission("MANAGE_CUSTOMERS")
def search_by_phone_route(phone: str):
    customer = loyalty_service.find_by_phone(phone)
    if not customer:
        return jsonify({"error": "NotFound", "message": "Customer not found"}), 404
    return jsonify({"customer": customer.to_dict()}), 200


@customers_bp.get("/<int:customer_id>/loyalty")
@require_auth
@require_permission("MANAGE_CUSTOMERS")
def loyalty_status_route(customer_id: int):
    """Counters plus the eligibility the next sale would be priced with."""
    customer = db.session.get(Customer, customer_id)
    if not customer:
        return jsonify({"error": "NotFound", "message": "Customer not found"}), 404

    return jsonify({
        "customer_id": customer.id,
        "purchase_count": customer.purchase_count,
        "total_spent_cents": customer.total_spent_cents,
        "total_discount_given_cents": customer.total_discount_given_cents,
        **loyalty_service.eligibility(customer).to_dict(),
    }), 200
