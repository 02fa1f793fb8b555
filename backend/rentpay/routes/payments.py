# Overview: Flask API routes for payments and escrow; parses input and returns JSON responses.

"""
Payment Ledger API Routes

DESIGN:
- Clients start a checkout; the gateway webhook (or the client, from the
  success page) confirms it later
- Any user can page through the payments they made
- Admins list payments, release escrow, and record refunds
- Payers (or admins) set the informational escrow flags

SECURITY:
- Payment detail is visible to the payer, the landlord, and admins only
- Every mutation is written to the audit trail with IP and user agent
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role, client_context
from ..errors import AuthorizationError, LedgerError, ValidationError, error_response
from ..extensions import db
from ..pagination import paginate_query
from ..services import checkout_service, escrow_service, ledger_service
from ..states import PaymentKind, Role
from ..validation import json_body, parse_date_range, parse_minor_amount, parse_optional_bool


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


def _internal_error(message: str):
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# CHECKOUT
# =============================================================================

@payments_bp.post("/checkout")
@require_auth
@require_role(Role.CLIENT)
def checkout_route():
    """
    Start a gateway checkout for an application.

    Request body:
    {
        "application_id": 12,
        "kind": "application_fee" | "rent",
        "amount": 500000   (optional for application_fee; minor units)
    }

    Returns:
        201: Pending payment plus the gateway checkout URL
        403: Caller is not the application's client
        502: Gateway unavailable
    """
    try:
        data = json_body(request)
        application_id = data.get("application_id")
        if not isinstance(application_id, int) or isinstance(application_id, bool):
            raise ValidationError("application_id is required")

        amount = data.get("amount")
        if amount is not None:
            amount = parse_minor_amount(amount)

        entry, checkout_url = checkout_service.start_checkout(
            application_id=application_id,
            payer_user_id=g.current_user.id,
            kind=data.get("kind") or PaymentKind.APPLICATION_FEE.value,
            amount=amount,
            context=client_context(),
        )
        return jsonify({"payment": entry.to_dict(), "checkout_url": checkout_url}), 201

    except LedgerError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to start checkout")


@payments_bp.post("/checkout/confirm")
@require_auth
def confirm_checkout_route():
    """
    Confirm a paid checkout from the client's success page.

    Covers a delayed or lost webhook; confirming twice, or after the
    webhook, returns the same completed payment.

    Request body:
    {
        "session_id": "cs_..."
    }

    Returns:
        200: Completed payment
        403: Session belongs to another payer
        404: Unknown session
        409: Session not paid yet
        502: Gateway unavailable
    """
    try:
        data = json_body(request)
        entry = checkout_service.confirm_checkout(
            data.get("session_id"),
            g.current_user,
            context=client_context(),
        )
        return jsonify({"success": True, "payment": entry.to_dict()}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to confirm checkout")


# =============================================================================
# QUERIES
# =============================================================================

@payments_bp.get("")
@require_auth
@require_role(Role.ADMIN)
def list_payments_route():
    """
    Admin payment listing.

    Query params: status, kind, landlord_id, payer_user_id, start_date,
    end_date, page, per_page
    """
    try:
        start, end = parse_date_range(request.args)
        query = ledger_service.list_payments(
            status=request.args.get("status"),
            kind=request.args.get("kind"),
            landlord_id=request.args.get("landlord_id", type=int),
            payer_user_id=request.args.get("payer_user_id", type=int),
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
        return _internal_error("Failed to list payments")


@payments_bp.get("/history")
@require_auth
def payment_history_route():
    """
    The caller's own payments as payer, newest first.

    Query params: status, kind, start_date, end_date, page, per_page
    """
    try:
        start, end = parse_date_range(request.args)
        query = ledger_service.list_payments(
            status=request.args.get("status"),
            kind=request.args.get("kind"),
            payer_user_id=g.current_user.id,
            start=start,
            end=end,
        )
        result = paginate_query(
            query,
            page=request.args.get("page", 1, type=int),
            per_page=request.args.get("per_page", 20, type=int),
        )
        return jsonify(result), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to load payment history")


@payments_bp.get("/<int:payment_id>")
@require_auth
def get_payment_route(payment_id: int):
    try:
        entry = ledger_service.get_payment(payment_id)
        user = g.current_user
        if user.role != Role.ADMIN.value and user.id not in (entry.payer_user_id, entry.landlord_id):
            raise AuthorizationError("Not authorized to view this payment")
        return jsonify({"payment": entry.to_dict()}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to load payment")


@payments_bp.get("/escrow/overdue")
@require_auth
@require_role(Role.ADMIN)
def overdue_escrow_route():
    try:
        entries = escrow_service.list_overdue_escrow()
        return jsonify({"items": [e.to_dict() for e in entries], "count": len(entries)}), 200
    except Exception:
        return _internal_error("Failed to list overdue escrow")


# =============================================================================
# ESCROW
# =============================================================================

@payments_bp.put("/<int:payment_id>/escrow/release")
@require_auth
@require_role(Role.ADMIN)
def release_escrow_route(payment_id: int):
    """
    Release held rent to the landlord.

    Late releases (beyond the hold window) deduct daily interest from the
    landlord's net amount.

    Returns:
        200: Released payment
        409: Not escrowed, not completed, or already released
    """
    try:
        entry = escrow_service.release_escrow(payment_id, g.current_user.id, context=client_context())
        return jsonify({"message": "Escrow released", "payment": entry.to_dict()}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to release escrow")


@payments_bp.put("/<int:payment_id>/escrow/flags")
@require_auth
def escrow_flags_route(payment_id: int):
    """
    Request body:
    {
        "property_visited": true,     (optional)
        "documents_received": false   (optional)
    }
    """
    try:
        data = json_body(request)
        entry = escrow_service.update_escrow_flags(
            payment_id,
            g.current_user,
            property_visited=parse_optional_bool(data.get("property_visited"), "property_visited"),
            documents_received=parse_optional_bool(data.get("documents_received"), "documents_received"),
            context=client_context(),
        )
        return jsonify({"payment": entry.to_dict()}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to update escrow flags")


# =============================================================================
# REFUNDS
# =============================================================================

@payments_bp.post("/<int:payment_id>/refund")
@require_auth
@require_role(Role.ADMIN)
def refund_route(payment_id: int):
    """
    Record a refund issued through the gateway.

    Request body:
    {
        "refund_amount": 50000,   (optional, defaults to the full amount)
        "reason": "Duplicate charge"
    }
    """
    try:
        data = json_body(request)
        refund_amount = data.get("refund_amount")
        if refund_amount is None:
            refund_amount = ledger_service.get_payment(payment_id).amount
        else:
            refund_amount = parse_minor_amount(refund_amount, "refund_amount")

        entry = ledger_service.mark_refunded(
            payment_id,
            refund_amount,
            data.get("reason"),
            g.current_user.id,
            context=client_context(),
        )
        return jsonify({"message": "Payment refunded", "payment": entry.to_dict()}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to refund payment")
