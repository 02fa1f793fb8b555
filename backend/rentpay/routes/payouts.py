# Overview: Flask API routes for payout requests; landlord requests and admin review/execution.

"""
Payout API Routes

LANDLORD:
- POST /request                 create (claims oldest eligible payments)
- GET  /requests                own requests
- GET  /requests/<id>           own request (admins may view any)
- POST /requests/<id>/cancel    pending only

ADMIN:
- GET /admin/pending, GET /admin/history (paginated)
- PUT /admin/<id>/approve | reject | process
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role, client_context
from ..errors import LedgerError, error_response
from ..extensions import db
from ..pagination import paginate_query
from ..services import payout_service
from ..states import Role
from ..validation import json_body, parse_date_range, parse_minor_amount


payouts_bp = Blueprint("payouts", __name__, url_prefix="/api/payouts")


def _internal_error(message: str):
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# LANDLORD
# =============================================================================

@payouts_bp.post("/request")
@require_auth
@require_role(Role.LANDLORD)
def create_request_route():
    """
    Request a payout.

    Request body:
    {
        "amount": 100000,
        "payment_method": "bank_transfer" | "stripe_connect",
        "bank_details": {"bank_name": "...", "account_name": "...", "account_number": "..."},
        "stripe_account_id": "acct_..."
    }

    Whole payments are claimed, oldest first, so payout_request.amount
    (the sum of their net amounts) may exceed requested_amount. The
    available balance drops by amount, not by what was requested.

    Returns:
        201: Pending request with the claimed payment ids
        400: Invalid amount/method/details or insufficient balance
        409: Balance was claimed concurrently; retry
    """
    try:
        data = json_body(request)
        payout = payout_service.create_request(
            landlord_id=g.current_user.id,
            amount=parse_minor_amount(data.get("amount")),
            method=data.get("payment_method"),
            bank_details=data.get("bank_details"),
            stripe_account_id=data.get("stripe_account_id"),
            context=client_context(),
        )
        return jsonify({"message": "Payout request created", "payout_request": payout.to_dict()}), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to create payout request")


@payouts_bp.get("/requests")
@require_auth
@require_role(Role.LANDLORD)
def list_requests_route():
    try:
        requests = payout_service.list_requests(g.current_user.id, status=request.args.get("status"))
        return jsonify({"payout_requests": [p.to_dict() for p in requests], "count": len(requests)}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to list payout requests")


@payouts_bp.get("/requests/<int:request_id>")
@require_auth
def get_request_route(request_id: int):
    try:
        payout = payout_service.get_request_for(g.current_user, request_id)
        return jsonify({"payout_request": payout.to_dict()}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to load payout request")


@payouts_bp.post("/requests/<int:request_id>/cancel")
@require_auth
@require_role(Role.LANDLORD)
def cancel_request_route(request_id: int):
    try:
        payout = payout_service.cancel(request_id, g.current_user.id, context=client_context())
        return jsonify({"message": "Payout request cancelled", "payout_request": payout.to_dict()}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to cancel payout request")


# =============================================================================
# ADMIN
# =============================================================================

@payouts_bp.get("/admin/pending")
@require_auth
@require_role(Role.ADMIN)
def pending_route():
    try:
        pending = payout_service.list_pending()
        return jsonify({"payout_requests": [p.to_dict() for p in pending], "count": len(pending)}), 200
    except Exception:
        return _internal_error("Failed to list pending payouts")


@payouts_bp.get("/admin/history")
@require_auth
@require_role(Role.ADMIN)
def history_route():
    """Query params: status, landlord_id, start_date, end_date, page, per_page"""
    try:
        start, end = parse_date_range(request.args)
        query = payout_service.history_query(
            status=request.args.get("status"),
            landlord_id=request.args.get("landlord_id", type=int),
            start=start,
            end=end,
        )
        result = paginate_query(
            query,
            page=request.args.get("page", 1, type=int),
            per_page=request.args.get("per_page", 50, type=int),
        )
        return jsonify(result), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to load payout history")


@payouts_bp.put("/admin/<int:request_id>/approve")
@require_auth
@require_role(Role.ADMIN)
def approve_route(request_id: int):
    try:
        data = json_body(request)
        payout = payout_service.approve(
            request_id, g.current_user.id, notes=data.get("notes"), context=client_context()
        )
        return jsonify({"message": "Payout request approved", "payout_request": payout.to_dict()}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to approve payout request")


@payouts_bp.put("/admin/<int:request_id>/reject")
@require_auth
@require_role(Role.ADMIN)
def reject_route(request_id: int):
    """Request body: {"reason": "...", "notes": "..."}; reason is required."""
    try:
        data = json_body(request)
        payout = payout_service.reject(
            request_id,
            g.current_user.id,
            reason=data.get("reason"),
            notes=data.get("notes"),
            context=client_context(),
        )
        return jsonify({"message": "Payout request rejected", "payout_request": payout.to_dict()}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to reject payout request")


@payouts_bp.put("/admin/<int:request_id>/process")
@require_auth
@require_role(Role.ADMIN)
def process_route(request_id: int):
    """
    Execute an approved payout.

    Request body (bank transfers only): {"transfer_id": "<bank reference>"}

    Returns:
        200: Processed
        409: Not approved, already processed, or execution in flight
        502: Transfer failed; request remains approved and can be retried
    """
    try:
        data = json_body(request)
        payout = payout_service.process(
            request_id,
            g.current_user.id,
            transfer_id=data.get("transfer_id"),
            context=client_context(),
        )
        return jsonify({"message": "Payout processed", "payout_request": payout.to_dict()}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to process payout request")
