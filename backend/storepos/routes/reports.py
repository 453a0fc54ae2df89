# Overview: Flask API routes for reports operations; parses input and returns JSON responses.

# backend/storepos/routes/reports.py
"""
Daily report routes.

POST regenerates (upserts) the report for a date; GET returns the stored row.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import PosError
from ..services import reporting_service
from ..time_utils import to_utc_z
from ..decorators import require_auth, require_permission


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.post("/daily")
@require_auth
@require_permission("GENERATE_REPORTS")
def generate_daily_report_route():
    """
    Generate or regenerate the report for one date.

    Body: {date: "YYYY-MM-DD"}
    """
    data = request.get_json(silent=True) or {}

    try:
        report = reporting_service.generate_daily_report(
            data.get("date"),
            generated_by_user_id=g.current_user.id,
        )
        return jsonify({
            "report": report.to_dict(),
            "generated_at": to_utc_z(report.generated_at),
        }), 200

    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to generate daily report")
        return jsonify({"error": "PersistenceFailure", "message": "Internal server error"}), 500


@reports_bp.get("/daily/<report_date>")
@require_auth
@require_permission("VIEW_REPORTS")
def get_daily_report_route(report_date: str):
    try:
        report = reporting_service.get_daily_report(report_date)
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code

    if report is None:
        return jsonify({"error": "NotFound", "message": "No report for this date"}), 404
    return jsonify({"report": report.to_dict()}), 200
