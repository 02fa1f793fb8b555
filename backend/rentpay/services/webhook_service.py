# Overview: Service-layer operations for gateway webhooks; verifies, de-duplicates and dispatches events.

"""
Webhook Ingestion

WHY: The gateway delivers events at-least-once, possibly in parallel and out
of order. Each external event id must change the ledger at most once.

FLOW:
1. verify_and_parse(): signature check on the raw body, then JSON parse.
   Nothing is written for an event that fails here.
2. handle_event(): skip ids already in the WebhookEvent register, dispatch
   to an idempotent ledger operation, then record the id. Two deliveries
   racing past step 2's check both reach idempotent handlers; the loser of
   the register insert is ignored.
3. Events that can never be applied (no application metadata, unknown
   application) are recorded as skipped and acknowledged so the gateway
   stops retrying. Unexpected errors propagate so the gateway retries.
"""

from __future__ import annotations

import json
from dataclasses import dataclass

import stripe
from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Application, PaymentEntry, WebhookEvent
from ..states import PaymentKind
from ..time_utils import utcnow
from . import ledger_service


OUTCOME_PROCESSED = "processed"
OUTCOME_IGNORED = "ignored"
OUTCOME_SKIPPED = "skipped"
OUTCOME_DUPLICATE = "duplicate"

CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_INTENT_FAILED = "payment_intent.payment_failed"


class SignatureError(Exception):
    """Signature missing/invalid or body not parseable."""
    pass


class MalformedEvent(Exception):
    """Event can never be applied; acknowledge and record as skipped."""
    pass


@dataclass
class WebhookResult:
    event_id: str
    event_type: str
    outcome: str
    detail: str | None = None

    def to_dict(self) -> dict:
        return {
            "received": True,
            "event_id": self.event_id,
            "event_type": self.event_type,
            "outcome": self.outcome,
            "detail": self.detail,
        }


def verify_and_parse(payload: bytes | str, signature: str | None, secret: str, tolerance: int = 300) -> dict:
    """Verify the Stripe-Signature header and return the parsed envelope."""
    if not signature:
        raise SignatureError("Missing Stripe-Signature header")
    if isinstance(payload, bytes):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError:
            raise SignatureError("Payload is not valid UTF-8")

    try:
        stripe.WebhookSignature.verify_header(payload, signature, secret, tolerance)
    except stripe.SignatureVerificationError as e:
        raise SignatureError(f"Invalid signature: {e}")

    try:
        envelope = json.loads(payload)
    except ValueError:
        raise SignatureError("Payload is not valid JSON")
    if not isinstance(envelope, dict) or not envelope.get("id") or not envelope.get("type"):
        raise SignatureError("Payload is not a gateway event")
    return envelope


def _event_object(envelope: dict) -> dict:
    obj = (envelope.get("data") or {}).get("object")
    if not isinstance(obj, dict):
        raise MalformedEvent("Event has no data.object")
    return obj


# =============================================================================
# HANDLERS
# =============================================================================

def checkout_payer(session: dict) -> tuple[Application, int]:
    """Application and payer a completed checkout session belongs to."""
    metadata = session.get("metadata") or {}
    try:
        application_id = int(metadata.get("applicationId"))
    except (TypeError, ValueError):
        raise MalformedEvent("Checkout session has no applicationId metadata")

    application = db.session.get(Application, application_id)
    if application is None:
        raise MalformedEvent(f"Application {application_id} not found")

    try:
        payer_user_id = int(metadata.get("userId") or application.client_id)
    except (TypeError, ValueError):
        raise MalformedEvent("Checkout session has an invalid userId metadata")
    return application, payer_user_id


def apply_checkout_session(session: dict) -> PaymentEntry:
    """
    Record a paid checkout session as a completed entry.

    Shared by the checkout.session.completed webhook and client-driven
    confirmation; whichever arrives first creates or completes the entry,
    the other finds it already completed.
    """
    session_id = session.get("id")
    if not session_id:
        raise MalformedEvent("Checkout session has no id")

    application, payer_user_id = checkout_payer(session)
    kind = (session.get("metadata") or {}).get("type") or PaymentKind.APPLICATION_FEE.value
    try:
        return ledger_service.record_confirmed_payment(
            external_reference=session_id,
            application_id=application.id,
            payer_user_id=payer_user_id,
            amount=session.get("amount_total"),
            currency=session.get("currency"),
            kind=kind,
            payment_intent_id=session.get("payment_intent"),
        )
    except (ValidationError, NotFoundError) as e:
        raise MalformedEvent(str(e))


def _on_checkout_completed(session: dict) -> str:
    entry = apply_checkout_session(session)
    return f"payment {entry.id} {entry.status}"


def _on_intent_succeeded(intent: dict) -> str:
    entry = ledger_service.confirm_payment_intent(intent.get("id"))
    if entry is None:
        return "no matching payment"
    return f"payment {entry.id} {entry.status}"


def _on_intent_failed(intent: dict) -> str:
    error = intent.get("last_payment_error") or {}
    try:
        entry = ledger_service.mark_failed(
            intent.get("id"),
            error.get("message") or "Payment failed",
            error.get("code"),
        )
    except ConflictError as e:
        current_app.logger.warning("Ignoring failure event for intent %s: %s", intent.get("id"), e)
        return str(e)
    if entry is None:
        return "no matching payment"
    return f"payment {entry.id} {entry.status}"


HANDLERS = {
    CHECKOUT_SESSION_COMPLETED: _on_checkout_completed,
    PAYMENT_INTENT_SUCCEEDED: _on_intent_succeeded,
    PAYMENT_INTENT_FAILED: _on_intent_failed,
}


# =============================================================================
# DISPATCH
# =============================================================================

def _record(event_id: str, event_type: str, outcome: str, detail: str | None) -> None:
    db.session.add(WebhookEvent(
        event_id=event_id,
        event_type=event_type,
        outcome=outcome,
        detail=(detail or None) and detail[:500],
        received_at=utcnow(),
    ))
    try:
        db.session.commit()
    except IntegrityError:
        # A parallel delivery recorded it first
        db.session.rollback()


def already_processed(event_id: str) -> bool:
    return db.session.query(WebhookEvent.id).filter_by(event_id=event_id).first() is not None


def handle_event(envelope: dict) -> WebhookResult:
    """Apply one gateway event at most once."""
    event_id = envelope["id"]
    event_type = envelope["type"]

    if already_processed(event_id):
        current_app.logger.info("Webhook %s (%s) already processed; skipping", event_id, event_type)
        return WebhookResult(event_id, event_type, OUTCOME_DUPLICATE)

    handler = HANDLERS.get(event_type)
    if handler is None:
        _record(event_id, event_type, OUTCOME_IGNORED, None)
        return WebhookResult(event_id, event_type, OUTCOME_IGNORED)

    current_app.logger.info("Processing webhook %s (%s)", event_id, event_type)
    try:
        detail = handler(_event_object(envelope))
        outcome = OUTCOME_PROCESSED
    except MalformedEvent as e:
        db.session.rollback()
        current_app.logger.warning("Skipping webhook %s (%s): %s", event_id, event_type, e)
        detail = str(e)
        outcome = OUTCOME_SKIPPED

    _record(event_id, event_type, outcome, detail)
    return WebhookResult(event_id, event_type, outcome, detail)

