# Overview: Flask API routes for the commission rate register; admin-only.

"""
Commission API Routes

SECURITY: Admin only. Rate changes require a reason and are recorded in
both the rate history and the audit trail.
"""

from flask import Blueprint, Response, request, jsonify, g, current_app

from ..decorators import require_auth, require_role, client_context
from ..errors import LedgerError, ValidationError, error_response
from ..extensions import db
from ..services import commission_service
from ..states import Role
from ..time_utils import utcnow
from ..validation import json_body, parse_date_range


commission_bp = Blueprint("commission", __name__, url_prefix="/api/commission")


@commission_bp.get("/rate")
@require_auth
@require_role(Role.ADMIN)
def get_rate_route():
    try:
        return jsonify(commission_service.get_current().to_dict()), 200
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to load commission rate")
        return jsonify({"error": "Internal server error"}), 500


@commission_bp.put("/rate")
@require_auth
@require_role(Role.ADMIN)
def update_rate_route():
    """
    Change the platform commission rate.

    Request body:
    {
        "commission_rate": 0.05,
        "reason": "Promotional period"
    }

    Returns:
        200: New current rate
        400: Rate outside [0, 1] or missing reason
    """
    try:
        data = json_body(request)
        if "commission_rate" not in data:
            raise ValidationError("commission_rate is required")

        current = commission_service.update_rate(
            data.get("commission_rate"),
            actor_id=g.current_user.id,
            reason=data.get("reason"),
            context=client_context(),
        )
        return jsonify({"message": "Commission rate updated", "settings": current.to_dict()}), 200

    except LedgerError as e:
        return error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update commission rate")
        return jsonify({"error": "Internal server error"}), 500


@commission_bp.get("/history")
@require_auth
@require_role(Role.ADMIN)
def history_route():
    try:
        start, end = parse_date_range(request.args)
        history = commission_service.get_history(start, end)
        return jsonify({"history": [h.to_dict() for h in history], "count": len(history)}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load commission history")
        return jsonify({"error": "Internal server error"}), 500


@commission_bp.get("/stats")
@require_auth
@require_role(Role.ADMIN)
def stats_route():
    try:
        start, end = parse_date_range(request.args)
        return jsonify(commission_service.commission_stats(start, end)), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load commission stats")
        return jsonify({"error": "Internal server error"}), 500


@commission_bp.get("/report")
@require_auth
@require_role(Role.ADMIN)
def report_route():
    """
    Commission report, one row per commissioned payment.

    Query params:
        start_date, end_date (ISO-8601, inclusive)
        format: json (default) | csv
    """
    try:
        start, end = parse_date_range(request.args)
        fmt = (request.args.get("format") or "json").lower()
        if fmt not in ("json", "csv"):
            raise ValidationError("format must be json or csv")

        report = commission_service.commission_report(start, end)

        if fmt == "csv":
            filename = f"commission-report-{utcnow().strftime('%Y%m%d%H%M%S')}.csv"
            return Response(
                commission_service.report_to_csv(report),
                mimetype="text/csv",
                headers={"Content-Disposition": f"attachment; filename={filename}"},
            )

        return jsonify({
            "report": report,
            "summary": {
                "total_payments": len(report),
                "total_gross": sum(r["gross_amount"] for r in report),
                "total_commission": sum(r["commission_amount"] for r in report),
                "total_net": sum(r["net_amount"] for r in report),
            },
        }), 200

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to build commission report")
        return jsonify({"error": "Internal server error"}), 500
