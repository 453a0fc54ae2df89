# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/storepos/routes/sales.py
"""Sales API routes with permission enforcement"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import NotFound, PosError
from ..permissions import CANCEL_ANY_SALE, has_permission
from ..services import sales_service
from ..decorators import require_auth, require_permission


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _customer_ref(data: dict):
    if data.get("customer_id") is not None:
        return data["customer_id"]
    return data.get("customer_phone")


@sales_bp.post("")
@require_auth
@require_permission("CREATE_SALE")
def create_sale_route():
    """
    Ring up a complete sale in one call.

    Body:
        customer_id | customer_phone (optional)
        items: [{product_id, quantity, unit_price?}]
        payment_method: cash | card | check
        notes (optional)

    Requires: CREATE_SALE permission
    Available to: admin, cashier
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "InvalidInput", "message": "JSON body required"}), 400

    try:
        sale, receipt = sales_service.create_sale(
            cashier_id=g.current_user.id,
            items=data.get("items"),
            payment_method=data.get("payment_method"),
            customer_ref=_customer_ref(data),
            notes=data.get("notes"),
        )
        return jsonify({"sale": sale.to_dict(), "receipt": receipt.to_dict()}), 201

    except PosError as e:
        if e.status_code >= 500:
            current_app.logger.error("Sale failed: %s", e)
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "PersistenceFailure", "message": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
@require_auth
@require_permission("VIEW_SALES")
def get_sale_route(sale_id: int):
    """
    Get sale with lines and its receipt.

    Requires: VIEW_SALES permission; the receipt's merchant_data is only
    included for holders of CANCEL_ANY_SALE
    """
    try:
        sale = sales_service.get_sale(sale_id)
    except NotFound as e:
        return jsonify(e.to_dict()), 404

    # The merchant copy (operator, reservation) is for roles that oversee other cashiers.
    include_merchant = has_permission(g.current_user.role_enum, CANCEL_ANY_SALE)
    receipt = sales_service.get_receipt_for_sale(sale_id)
    return jsonify({
        "sale": sale.to_dict(),
        "receipt": receipt.to_dict(include_merchant=include_merchant) if receipt else None,
    }), 200


@sales_bp.put("/<int:sale_id>/cancel")
@require_auth
@require_permission("CANCEL_SALE")
def cancel_sale_route(sale_id: int):
    """
    Cancel a completed sale and restore its stock.

    Body: {reason?}

    Requires: CANCEL_SALE permission; cashiers may only cancel their own sales
    """
    data = request.get_json(silent=True) or {}

    try:
        sale = sales_service.cancel_sale(sale_id, g.current_user, reason=data.get("reason"))
        return jsonify({"sale": sale.to_dict()}), 200

    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel sale")
        return jsonify({"error": "PersistenceFailure", "message": "Internal server error"}), 500
