# Overview: Flask API routes for the manager dashboard summary; returns JSON responses.

"""
Analytics Routes

Live figures for the dashboard: today's sales, top products, top customers
and how many products need reordering. Nothing here is stored; daily
reports remain the record of a day.
"""

from flask import jsonify, Blueprint, current_app

from ..decorators import require_auth, require_permission
from ..errors import PosError
from ..services import reporting_service


analytics_bp = Blueprint("analytics", __name__, url_prefix="/api/analytics")


@analytics_bp.get("/summary")
@require_auth
@require_permission("VIEW_ANALYTICS")
def summary_route():
    try:
        return jsonify(reporting_service.dashboard_summary()), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to build analytics summary")
        return jsonify({"error": "PersistenceFailure", "message": "Internal server error"}), 500
