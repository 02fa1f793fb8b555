# Overview: Service-layer operations for checkout; opens gateway checkouts and confirms paid sessions.

from __future__ import annotations

from flask import current_app

from ..errors import AuthorizationError, ConflictError, ExternalServiceError, NotFoundError, ValidationError
from ..models import PaymentEntry
from ..money import is_minor_amount
from ..states import PaymentKind
from . import audit_service, ledger_service, webhook_service
from .gateways import CheckoutSessionNotFound, GatewayError, get_checkout_gateway


def start_checkout(
    application_id: int,
    payer_user_id: int,
    kind,
    amount: int | None = None,
    context: audit_service.RequestContext | None = None,
) -> tuple[PaymentEntry, str | None]:
    """
    Open a gateway checkout for an application and record a pending entry.

    The checkout session id becomes the entry's external_reference, so the
    later checkout.session.completed webhook confirms this same entry.

    Returns (entry, checkout_url).
    """
    try:
        kind = PaymentKind(kind)
    except ValueError:
        raise ValidationError(f"Invalid payment kind: {kind}. Must be one of {[k.value for k in PaymentKind]}")

    application = ledger_service.load_application(application_id)
    if application.client_id != payer_user_id:
        raise AuthorizationError("Not authorized to pay for this application")

    if amount is None:
        if kind != PaymentKind.APPLICATION_FEE:
            raise ValidationError("amount is required for rent payments")
        amount = application.application_fee_amount
    if not is_minor_amount(amount) or amount <= 0:
        raise ValidationError("Amount must be a positive integer in minor units")

    currency = (application.currency or current_app.config.get("DEFAULT_CURRENCY", "NGN")).upper()
    label = "Rent" if kind == PaymentKind.RENT else "Application fee"
    title = application.property_title or "Property"
    payer = application.client

    try:
        session = get_checkout_gateway().create_session(
            amount=amount,
            currency=currency,
            product_name=f"{label}: {title}",
            metadata={
                "applicationId": application.id,
                "userId": payer_user_id,
                "type": kind.value,
            },
            customer_email=payer.email if payer else None,
            success_url=current_app.config["CHECKOUT_SUCCESS_URL"],
            cancel_url=current_app.config["CHECKOUT_CANCEL_URL"],
        )
    except GatewayError as e:
        current_app.logger.warning("Checkout creation failed for application %s: %s", application.id, e)
        raise ExternalServiceError(f"Could not start checkout: {e}")

    entry = ledger_service.record_pending_payment(
        external_reference=session.session_id,
        application_id=application.id,
        payer_user_id=payer_user_id,
        amount=amount,
        currency=currency,
        kind=kind,
        description=f"{label} for property: {title}",
    )

    audit_service.emit(
        action=audit_service.CHECKOUT_STARTED,
        entity_type="payment",
        entity_id=entry.id,
        actor_user_id=payer_user_id,
        after=entry.to_dict(),
        context=context,
    )
    return entry, session.url


def confirm_checkout(
    session_id: str,
    user,
    context: audit_service.RequestContext | None = None,
) -> PaymentEntry:
    """
    Reconcile a paid checkout session without waiting for its webhook.

    Retrieves the session from the gateway and, once it is paid, runs the
    same idempotent handler as checkout.session.completed. Safe to call
    before, after, or instead of the webhook.

    Raises:
        ValidationError: missing session id, or a session that cannot be applied
        NotFoundError: gateway does not know the session
        ConflictError: session not paid yet
        AuthorizationError: session belongs to another payer
        ExternalServiceError: gateway unavailable
    """
    if not isinstance(session_id, str) or not session_id.strip():
        raise ValidationError("session_id is required")
    session_id = session_id.strip()

    try:
        session = get_checkout_gateway().retrieve_session(session_id)
    except CheckoutSessionNotFound:
        raise NotFoundError(f"Checkout session {session_id} not found")
    except GatewayError as e:
        current_app.logger.warning("Checkout retrieval failed for %s: %s", session_id, e)
        raise ExternalServiceError(f"Could not retrieve checkout: {e}")

    if session.get("payment_status") != "paid":
        raise ConflictError("Payment not completed")

    try:
        _, payer_user_id = webhook_service.checkout_payer(session)
    except webhook_service.MalformedEvent as e:
        raise ValidationError(f"Checkout session cannot be applied: {e}")
    if payer_user_id != user.id:
        raise AuthorizationError("Not authorized to confirm this payment")

    existing = ledger_service.get_by_reference(session_id)
    before = existing.to_dict() if existing is not None else None

    try:
        entry = webhook_service.apply_checkout_session(session)
    except webhook_service.MalformedEvent as e:
        raise ValidationError(f"Checkout session cannot be applied: {e}")

    if before is None or before["status"] != entry.status:
        audit_service.emit(
            action=audit_service.CHECKOUT_CONFIRMED,
            entity_type="payment",
            entity_id=entry.id,
            actor_user_id=user.id,
            before=before,
            after=entry.to_dict(),
            context=context,
        )
    return entry
