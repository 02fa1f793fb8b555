# Overview: Flask API routes for landlord accounts; balances, earnings and statements.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..errors import LedgerError, error_response
from ..pagination import paginate_query
from ..services import account_service, ledger_service
from ..states import PaymentStatus, Role
from ..time_utils import to_utc_z
from ..validation import parse_date_range


landlord_accounts_bp = Blueprint("landlord_accounts", __name__, url_prefix="/api/landlord-accounts")


@landlord_accounts_bp.get("/balance")
@require_auth
@require_role(Role.LANDLORD)
def balance_route():
    try:
        balance = account_service.get_balance(g.current_user.id)
        return jsonify(balance.to_dict()), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load landlord balance")
        return jsonify({"error": "Internal server error"}), 500


@landlord_accounts_bp.get("/earnings")
@require_auth
@require_role(Role.LANDLORD)
def earnings_route():
    """
    Paginated earnings (completed payments by default) plus period totals.

    Query params: status, kind, start_date, end_date, page, per_page
    """
    try:
        start, end = parse_date_range(request.args)
        status = request.args.get("status") or PaymentStatus.COMPLETED.value
        query = ledger_service.landlord_payments_query(
            g.current_user.id,
            status=status,
            start=start,
            end=end,
            kind=request.args.get("kind"),
        )
        result = paginate_query(
            query,
            page=request.args.get("page", 1, type=int),
            per_page=request.args.get("per_page", 20, type=int),
            serializer=account_service.line_item,
        )
        breakdown = account_service.get_earnings_breakdown(g.current_user.id, start, end)
        result["summary"] = {
            "total_gross_earnings": breakdown["total_gross_earnings"],
            "total_commission_paid": breakdown["total_commission_paid"],
            "total_escrow_interest": breakdown["total_escrow_interest"],
            "total_net_earnings": breakdown["total_net_earnings"],
            "payment_count": breakdown["payment_count"],
        }
        return jsonify(result), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load landlord earnings")
        return jsonify({"error": "Internal server error"}), 500


@landlord_accounts_bp.get("/statement")
@require_auth
@require_role(Role.LANDLORD)
def statement_route():
    """Account statement for a period: summary plus every transaction."""
    try:
        start, end = parse_date_range(request.args)
        breakdown = account_service.get_earnings_breakdown(g.current_user.id, start, end)
        return jsonify({
            "period": {"start": to_utc_z(start), "end": to_utc_z(end)},
            "summary": {
                "total_gross_earnings": breakdown["total_gross_earnings"],
                "total_commission_paid": breakdown["total_commission_paid"],
                "total_escrow_interest": breakdown["total_escrow_interest"],
                "total_net_earnings": breakdown["total_net_earnings"],
                "payment_count": breakdown["payment_count"],
            },
            "transactions": breakdown["payments"],
        }), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to build landlord statement")
        return jsonify({"error": "Internal server error"}), 500
