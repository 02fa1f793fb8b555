"""
Payment ledger tests.

Verifies:
- Recording is idempotent on external_reference
- Commission and net are stamped at creation and always balance
- Rent is escrowed; application fees are not
- Pending -> completed / failed transitions and their guards
- Refunds: full or partial, completed-only, never on allocated entries
- Landlord listings filter by status, kind and an inclusive date range
"""

from datetime import datetime
from decimal import Decimal

import pytest

from rentpay.errors import ConflictError, NotFoundError, ValidationError
from rentpay.extensions import db
from rentpay.models import PaymentEntry
from rentpay.services import ledger_service, payout_service
from rentpay.states import EscrowStatus, PaymentKind, PaymentStatus

from conftest import release_in_db


def _balanced(entry):
    return entry.landlord_net_amount + entry.commission_amount + entry.escrow_interest == entry.amount


# =============================================================================
# RECORDING
# =============================================================================


class TestRecordConfirmedPayment:
    def test_application_fee_is_not_escrowed(self, app, landlord, record_payment):
        entry = record_payment(amount=500000)

        assert entry.status == PaymentStatus.COMPLETED.value
        assert entry.landlord_id == landlord.id
        assert entry.is_escrow is False
        assert entry.escrow_status is None
        assert Decimal(entry.commission_rate) == Decimal("0.10")
        assert entry.commission_amount == 50000
        assert entry.landlord_net_amount == 450000
        assert entry.completed_at is not None
        assert _balanced(entry)

    def test_rent_starts_held_with_expiry(self, app, record_payment):
        entry = record_payment(amount=1000000, kind=PaymentKind.RENT)

        assert entry.is_escrow is True
        assert entry.escrow_status == EscrowStatus.HELD.value
        assert (entry.escrow_expires_at - entry.escrow_held_at).days == 10
        assert entry.escrow_interest == 0

    def test_same_reference_records_once(self, app, application, tenant):
        kwargs = dict(
            external_reference="cs_dup",
            application_id=application.id,
            payer_user_id=tenant.id,
            amount=500000,
            currency="NGN",
            kind="application_fee",
        )
        first = ledger_service.record_confirmed_payment(**kwargs)
        second = ledger_service.record_confirmed_payment(**kwargs)

        assert first.id == second.id
        assert db.session.query(PaymentEntry).count() == 1

    def test_unknown_application(self, app, tenant):
        with pytest.raises(NotFoundError):
            ledger_service.record_confirmed_payment("cs_x", 999, tenant.id, 1000, "NGN", "rent")

    @pytest.mark.parametrize("amount", [0, -5, 10.5, "100", True])
    def test_rejects_non_positive_or_non_integer_amount(self, app, application, tenant, amount):
        with pytest.raises(ValidationError):
            ledger_service.record_confirmed_payment("cs_x", application.id, tenant.id, amount, "NGN", "rent")
        assert db.session.query(PaymentEntry).count() == 0

    def test_rejects_unknown_kind(self, app, application, tenant):
        with pytest.raises(ValidationError):
            ledger_service.record_confirmed_payment("cs_x", application.id, tenant.id, 1000, "NGN", "deposit")

    def test_currency_defaults_and_normalizes(self, app, application, tenant):
        entry = ledger_service.record_confirmed_payment("cs_x", application.id, tenant.id, 1000, None, "rent")
        assert entry.currency == "NGN"
        other = ledger_service.record_confirmed_payment("cs_y", application.id, tenant.id, 1000, "ngn", "rent")
        assert other.currency == "NGN"


class TestPendingPayments:
    def test_pending_then_confirmed_in_place(self, app, application, tenant):
        pending = ledger_service.record_pending_payment(
            "cs_pending", application.id, tenant.id, 700000, "NGN", PaymentKind.RENT
        )
        assert pending.status == PaymentStatus.PENDING.value
        assert pending.escrow_status == EscrowStatus.HELD.value
        assert pending.escrow_held_at is None

        confirmed = ledger_service.record_confirmed_payment(
            "cs_pending", application.id, tenant.id, 700000, "NGN", PaymentKind.RENT, payment_intent_id="pi_1"
        )
        assert confirmed.id == pending.id
        assert confirmed.status == PaymentStatus.COMPLETED.value
        assert confirmed.payment_intent_id == "pi_1"
        assert confirmed.escrow_held_at is not None
        assert confirmed.escrow_expires_at is not None

    def test_confirm_by_intent(self, app, application, tenant):
        pending = ledger_service.record_pending_payment("cs_p", application.id, tenant.id, 1000, "NGN", "application_fee")
        pending.payment_intent_id = "pi_2"
        db.session.commit()

        entry = ledger_service.confirm_payment_intent("pi_2")
        assert entry.status == PaymentStatus.COMPLETED.value

    def test_confirm_unknown_intent_is_noop(self, app):
        assert ledger_service.confirm_payment_intent("pi_missing") is None


class TestMarkFailed:
    def test_pending_to_failed(self, app, application, tenant):
        ledger_service.record_pending_payment("cs_f", application.id, tenant.id, 1000, "NGN", "application_fee")
        entry = ledger_service.mark_failed("cs_f", "Card declined", "card_declined")

        assert entry.status == PaymentStatus.FAILED.value
        assert entry.failure_reason == "Card declined"
        assert entry.failure_code == "card_declined"

    def test_repeat_failure_is_noop(self, app, application, tenant):
        ledger_service.record_pending_payment("cs_f", application.id, tenant.id, 1000, "NGN", "application_fee")
        ledger_service.mark_failed("cs_f", "Card declined")
        entry = ledger_service.mark_failed("cs_f", "Something else")
        assert entry.failure_reason == "Card declined"

    def test_completed_cannot_fail(self, app, record_payment):
        entry = record_payment(reference="cs_done")
        with pytest.raises(ConflictError):
            ledger_service.mark_failed("cs_done", "late failure")
        db.session.refresh(entry)
        assert entry.status == PaymentStatus.COMPLETED.value

    def test_unknown_reference(self, app):
        assert ledger_service.mark_failed("cs_nope", "x") is None


# =============================================================================
# REFUNDS
# =============================================================================


class TestRefunds:
    def test_full_refund(self, app, admin, record_payment):
        entry = record_payment(amount=500000)
        refunded = ledger_service.mark_refunded(entry.id, 500000, "Duplicate charge", admin.id)

        assert refunded.status == PaymentStatus.REFUNDED.value
        assert refunded.refund_amount == 500000
        assert refunded.refunded_by_user_id == admin.id
        assert refunded.refunded_at is not None

    def test_partial_refund_records_amount(self, app, admin, record_payment):
        entry = record_payment(amount=500000)
        refunded = ledger_service.mark_refunded(entry.id, 200000, "Partial", admin.id)
        assert refunded.refund_amount == 200000
        assert refunded.status == PaymentStatus.REFUNDED.value

    @pytest.mark.parametrize("amount", [0, 500001])
    def test_refund_amount_bounds(self, app, admin, record_payment, amount):
        entry = record_payment(amount=500000)
        with pytest.raises(ValidationError):
            ledger_service.mark_refunded(entry.id, amount, "x", admin.id)

    def test_refund_requires_reason(self, app, admin, record_payment):
        entry = record_payment(amount=500000)
        with pytest.raises(ValidationError):
            ledger_service.mark_refunded(entry.id, 500000, "", admin.id)

    def test_refund_twice_conflicts(self, app, admin, record_payment):
        entry = record_payment(amount=500000)
        ledger_service.mark_refunded(entry.id, 500000, "once", admin.id)
        with pytest.raises(ConflictError):
            ledger_service.mark_refunded(entry.id, 500000, "twice", admin.id)

    def test_pending_cannot_be_refunded(self, app, admin, application, tenant):
        pending = ledger_service.record_pending_payment("cs_p", application.id, tenant.id, 1000, "NGN", "application_fee")
        with pytest.raises(ConflictError):
            ledger_service.mark_refunded(pending.id, 1000, "x", admin.id)

    def test_allocated_entry_cannot_be_refunded(self, app, admin, landlord, record_payment):
        entry = record_payment(amount=100000)
        payout_service.create_request(
            landlord.id, 90000, "bank_transfer",
            bank_details={"bank_name": "GTB", "account_name": "L", "account_number": "0123456789"},
        )
        with pytest.raises(ConflictError):
            ledger_service.mark_refunded(entry.id, 100000, "x", admin.id)

    def test_released_rent_refund_removes_it_from_balance(self, app, admin, landlord, record_payment):
        from rentpay.services import account_service

        entry = release_in_db(record_payment(amount=100000, kind=PaymentKind.RENT))
        assert account_service.available_balance(landlord.id) == 90000
        ledger_service.mark_refunded(entry.id, 100000, "Tenancy cancelled", admin.id)
        assert account_service.available_balance(landlord.id) == 0


# =============================================================================
# LANDLORD LISTING
# =============================================================================


class TestListForLandlord:
    @pytest.fixture
    def dated_entries(self, app, tenant, other_landlord, record_payment):
        from rentpay.models import Application

        fee = record_payment(amount=100000)
        rent = record_payment(amount=200000, kind=PaymentKind.RENT)
        pending = ledger_service.record_pending_payment(
            "cs_pending", fee.application_id, tenant.id, 300000, "NGN", "rent",
        )

        elsewhere = Application(client_id=tenant.id, landlord_id=other_landlord.id, application_fee_amount=0)
        db.session.add(elsewhere)
        db.session.commit()
        foreign = record_payment(amount=400000, application_id=elsewhere.id)

        fee.created_at = datetime(2026, 3, 1, 9, 0)
        rent.created_at = datetime(2026, 3, 15, 12, 0)
        pending.created_at = datetime(2026, 3, 31, 23, 59)
        foreign.created_at = datetime(2026, 3, 15, 12, 0)
        db.session.commit()
        return {"fee": fee, "rent": rent, "pending": pending, "foreign": foreign}

    def test_newest_first_and_own_entries_only(self, app, landlord, dated_entries):
        entries = ledger_service.list_for_landlord(landlord.id)
        assert [e.id for e in entries] == [
            dated_entries["pending"].id, dated_entries["rent"].id, dated_entries["fee"].id,
        ]
        assert dated_entries["foreign"].id not in {e.id for e in entries}

    def test_status_filter(self, app, landlord, dated_entries):
        entries = ledger_service.list_for_landlord(landlord.id, status="pending")
        assert [e.id for e in entries] == [dated_entries["pending"].id]

        completed = ledger_service.list_for_landlord(landlord.id, status="completed")
        assert {e.id for e in completed} == {dated_entries["fee"].id, dated_entries["rent"].id}

    def test_kind_filter(self, app, landlord, dated_entries):
        entries = ledger_service.list_for_landlord(landlord.id, kind="rent")
        assert {e.id for e in entries} == {dated_entries["rent"].id, dated_entries["pending"].id}

        fees = ledger_service.list_for_landlord(landlord.id, kind=PaymentKind.APPLICATION_FEE)
        assert [e.id for e in fees] == [dated_entries["fee"].id]

    def test_date_bounds_are_inclusive(self, app, landlord, dated_entries):
        entries = ledger_service.list_for_landlord(
            landlord.id,
            start=datetime(2026, 3, 1, 9, 0),
            end=datetime(2026, 3, 15, 12, 0),
        )
        assert {e.id for e in entries} == {dated_entries["fee"].id, dated_entries["rent"].id}

        entries = ledger_service.list_for_landlord(landlord.id, start=datetime(2026, 3, 15, 12, 0, 1))
        assert [e.id for e in entries] == [dated_entries["pending"].id]

    def test_filters_combine(self, app, landlord, dated_entries):
        entries = ledger_service.list_for_landlord(
            landlord.id,
            status="completed",
            kind="rent",
            end=datetime(2026, 3, 31),
        )
        assert [e.id for e in entries] == [dated_entries["rent"].id]

    @pytest.mark.parametrize("filters", [{"status": "settled"}, {"kind": "deposit"}])
    def test_rejects_unknown_filter_values(self, app, landlord, filters):
        with pytest.raises(ValidationError):
            ledger_service.list_for_landlord(landlord.id, **filters)
