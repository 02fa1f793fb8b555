"""Transition tables and the WHERE-guard values derived from them."""

import pytest

from rentpay.states import (
    ESCROW_TRANSITIONS, PAYMENT_TRANSITIONS, PAYOUT_TRANSITIONS,
    EscrowStatus, PaymentStatus, PayoutStatus, sources_for,
)


@pytest.mark.parametrize(
    "table,target,expected",
    [
        (PAYMENT_TRANSITIONS, PaymentStatus.COMPLETED, ["pending"]),
        (PAYMENT_TRANSITIONS, PaymentStatus.FAILED, ["pending"]),
        (PAYMENT_TRANSITIONS, PaymentStatus.REFUNDED, ["completed"]),
        (PAYMENT_TRANSITIONS, PaymentStatus.PENDING, []),
        (ESCROW_TRANSITIONS, EscrowStatus.RELEASED, ["held"]),
        (PAYOUT_TRANSITIONS, PayoutStatus.APPROVED, ["pending"]),
        (PAYOUT_TRANSITIONS, PayoutStatus.REJECTED, ["pending", "approved"]),
        (PAYOUT_TRANSITIONS, PayoutStatus.PROCESSED, ["approved"]),
    ],
)
def test_sources_for(table, target, expected):
    assert sources_for(table, target) == expected


def test_terminal_states_have_no_exits():
    assert PAYMENT_TRANSITIONS[PaymentStatus.REFUNDED] == frozenset()
    assert PAYOUT_TRANSITIONS[PayoutStatus.PROCESSED] == frozenset()
    assert ESCROW_TRANSITIONS[EscrowStatus.RELEASED] == frozenset()
