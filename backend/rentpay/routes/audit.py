# Overview: Flask API route for the audit trail; admin read-only.

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_auth, require_role
from ..errors import LedgerError, error_response
from ..pagination import paginate_query
from ..services import audit_service
from ..states import Role
from ..validation import parse_date_range


audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit")


@audit_bp.get("/events")
@require_auth
@require_role(Role.ADMIN)
def list_events_route():
    """
    Query params: action, entity_type, entity_id, actor_user_id,
    start_date, end_date, page, per_page
    """
    try:
        start, end = parse_date_range(request.args)
        query = audit_service.list_events(
            action=request.args.get("action"),
            entity_type=request.args.get("entity_type"),
            entity_id=request.args.get("entity_id"),
            actor_user_id=request.args.get("actor_user_id", type=int),
            start=start,
            end=end,
        )
        result = paginate_query(
            query,
            page=request.args.get("page", 1, type=int),
            per_page=request.args.get("per_page", 100, type=int),
        )
        return jsonify(result), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list audit events")
        return jsonify({"error": "Internal server error"}), 500
