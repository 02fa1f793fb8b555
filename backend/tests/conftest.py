"""
Pytest fixtures for the payment ledger tests.

Provides a fresh in-memory database per test, the three principal roles,
an application between them, fake payment gateways, and entry factories.
"""

import hashlib
import hmac
import json
import time
from datetime import timedelta

import pytest

from rentpay import create_app
from rentpay.config import Config
from rentpay.extensions import db
from rentpay.models import Application, PaymentEntry, User
from rentpay.services import ledger_service, session_service
from rentpay.services.gateways import CheckoutSession, CheckoutSessionNotFound, GatewayError
from rentpay.states import EscrowStatus, PaymentKind, Role
from rentpay.time_utils import utcnow


WEBHOOK_SECRET = "whsec_test"


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    STRIPE_SECRET_KEY = None
    STRIPE_WEBHOOK_SECRET = WEBHOOK_SECRET
    DEFAULT_CURRENCY = "NGN"
    DEFAULT_COMMISSION_RATE = "0.10"
    ESCROW_HOLD_DAYS = 10
    ESCROW_DAILY_INTEREST_RATE = "0.02"
    PAYOUT_MINIMUM_AMOUNT = 0
    PAYOUT_REQUIRE_KYC = False


class FakeTransferGateway:
    """Records transfers; set fail_with to make the next calls raise."""

    def __init__(self):
        self.calls = []
        self.fail_with = None

    def transfer(self, *, payout_request_id, amount, currency, destination):
        self.calls.append({
            "payout_request_id": payout_request_id,
            "amount": amount,
            "currency": currency,
            "destination": destination,
        })
        if self.fail_with:
            raise GatewayError(self.fail_with)
        return f"tr_test_{payout_request_id}_{len(self.calls)}"


class FakeCheckoutGateway:
    """Stores created sessions; mark_paid flips one to paid for retrieval."""

    def __init__(self):
        self.sessions = []
        self.paid = set()
        self.fail_with = None

    def create_session(self, **kwargs):
        if self.fail_with:
            raise GatewayError(self.fail_with)
        self.sessions.append(kwargs)
        session_id = f"cs_test_{len(self.sessions)}"
        return CheckoutSession(session_id=session_id, url=f"https://checkout.test/{session_id}")

    def mark_paid(self, session_id):
        self.paid.add(session_id)

    def retrieve_session(self, session_id):
        if self.fail_with:
            raise GatewayError(self.fail_with)
        try:
            index = int(session_id.rsplit("_", 1)[1]) - 1
            if index < 0:
                raise IndexError(index)
            created = self.sessions[index]
        except (IndexError, ValueError):
            raise CheckoutSessionNotFound(f"No such checkout.session: {session_id}")
        return {
            "id": session_id,
            "payment_status": "paid" if session_id in self.paid else "unpaid",
            "amount_total": created["amount"],
            "currency": created["currency"].lower(),
            "payment_intent": f"pi_{session_id}",
            "metadata": {k: str(v) for k, v in created["metadata"].items()},
        }


@pytest.fixture(scope='function')
def app():
    """Application with its own in-memory database."""
    app = create_app(TestingConfig)
    app.config["TRANSFER_GATEWAY"] = FakeTransferGateway()
    app.config["CHECKOUT_GATEWAY"] = FakeCheckoutGateway()

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def file_app(tmp_path):
    """
    Application on a SQLite file, for tests that run threads.

    No app context is pushed; each thread pushes its own and so gets its
    own session and connection.
    """
    class FileConfig(TestingConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'ledger.db'}"
        SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"timeout": 30}}

    app = create_app(FileConfig)
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture(scope='function')
def client(app):
    return app.test_client()


@pytest.fixture(scope='function')
def transfer_gateway(app):
    return app.config["TRANSFER_GATEWAY"]


@pytest.fixture(scope='function')
def checkout_gateway(app):
    return app.config["CHECKOUT_GATEWAY"]


def _make_user(email, role, kyc=False):
    user = User(email=email, full_name=email.split("@")[0].title(), role=role.value, is_active=True, kyc_verified=kyc)
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture(scope='function')
def admin(app):
    return _make_user("admin@rentpay.test", Role.ADMIN)


@pytest.fixture(scope='function')
def landlord(app):
    return _make_user("landlord@rentpay.test", Role.LANDLORD, kyc=True)


@pytest.fixture(scope='function')
def other_landlord(app):
    return _make_user("other.landlord@rentpay.test", Role.LANDLORD)


@pytest.fixture(scope='function')
def tenant(app):
    return _make_user("tenant@rentpay.test", Role.CLIENT)


@pytest.fixture(scope='function')
def application(app, landlord, tenant):
    application = Application(
        client_id=tenant.id,
        landlord_id=landlord.id,
        property_id=7,
        property_title="2-bed flat, Lekki",
        application_fee_amount=500000,
        currency="NGN",
    )
    db.session.add(application)
    db.session.commit()
    return application


@pytest.fixture(scope='function')
def record_payment(application, tenant):
    """Factory for gateway-confirmed payments against the default application."""
    counter = {"n": 0}

    def _record(amount=100000, kind=PaymentKind.APPLICATION_FEE, reference=None, application_id=None):
        counter["n"] += 1
        return ledger_service.record_confirmed_payment(
            external_reference=reference or f"cs_fixture_{counter['n']}",
            application_id=application_id or application.id,
            payer_user_id=tenant.id,
            amount=amount,
            currency="NGN",
            kind=kind,
        )

    return _record


def backdate_escrow(entry: PaymentEntry, days: int) -> PaymentEntry:
    """Move an escrow hold into the past."""
    held_at = utcnow() - timedelta(days=days)
    entry.escrow_held_at = held_at
    entry.escrow_expires_at = held_at + timedelta(days=TestingConfig.ESCROW_HOLD_DAYS)
    db.session.commit()
    return entry


def release_in_db(entry: PaymentEntry) -> PaymentEntry:
    """Mark a held entry released without going through the service."""
    entry.escrow_status = EscrowStatus.RELEASED.value
    entry.escrow_released_at = utcnow()
    db.session.commit()
    return entry


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


def token_for(user: User) -> str:
    _, token = session_service.create_session(user.id)
    return token


def sign_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Stripe-Signature header for payload."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def make_event(event_id: str, event_type: str, obj: dict) -> str:
    return json.dumps({
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    })
