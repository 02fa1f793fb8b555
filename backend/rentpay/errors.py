"""
Ledger exception taxonomy.

Every error raised by the service layer is a LedgerError carrying the HTTP
status the API surfaces for it. Routes translate with error_response().
"""

from __future__ import annotations

from flask import jsonify


class LedgerError(Exception):
    """Base class for payment ledger errors."""
    status_code = 400


class ValidationError(LedgerError):
    """Bad amount, rate, or missing fields. Never retried automatically."""
    status_code = 400


class AuthorizationError(LedgerError):
    """Principal is not allowed to act on this entity."""
    status_code = 403


class NotFoundError(LedgerError):
    """Unknown entity id."""
    status_code = 404


class ConflictError(LedgerError):
    """
    Wrong-state transition, double release, double allocation.

    Terminal for the call; the intended operation may be retried once state
    has been re-read.
    """
    status_code = 409


class ExternalServiceError(LedgerError):
    """Gateway or transfer call failed; ledger state is left retryable."""
    status_code = 502


def error_response(exc: LedgerError):
    return jsonify({"error": str(exc)}), exc.status_code
