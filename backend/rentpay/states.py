"""
Closed status types and their transition tables.

Every status column in the ledger stores the .value of one of these enums.
Transition tables list, for each state, the states it may move to. Services
express transitions as conditional updates whose WHERE clause is
sources_for(table, target), so a guard and its table can never drift apart.
"""

from __future__ import annotations

import enum


class Role(str, enum.Enum):
    ADMIN = "admin"
    LANDLORD = "landlord"
    CLIENT = "client"


class PaymentKind(str, enum.Enum):
    APPLICATION_FEE = "application_fee"
    RENT = "rent"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class EscrowStatus(str, enum.Enum):
    HELD = "held"
    RELEASED = "released"


class PayoutStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PROCESSED = "processed"


class PayoutMethod(str, enum.Enum):
    BANK_TRANSFER = "bank_transfer"
    STRIPE_CONNECT = "stripe_connect"


PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.COMPLETED, PaymentStatus.FAILED}),
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}

ESCROW_TRANSITIONS: dict[EscrowStatus, frozenset[EscrowStatus]] = {
    EscrowStatus.HELD: frozenset({EscrowStatus.RELEASED}),
    EscrowStatus.RELEASED: frozenset(),
}

PAYOUT_TRANSITIONS: dict[PayoutStatus, frozenset[PayoutStatus]] = {
    PayoutStatus.PENDING: frozenset({PayoutStatus.APPROVED, PayoutStatus.REJECTED}),
    PayoutStatus.APPROVED: frozenset({PayoutStatus.PROCESSED, PayoutStatus.REJECTED}),
    PayoutStatus.REJECTED: frozenset(),
    PayoutStatus.PROCESSED: frozenset(),
}


def _check_exhaustive(table: dict, states: type[enum.Enum]) -> None:
    missing = set(states) - set(table)
    if missing:
        raise RuntimeError(f"Transition table for {states.__name__} missing states: {sorted(s.value for s in missing)}")


_check_exhaustive(PAYMENT_TRANSITIONS, PaymentStatus)
_check_exhaustive(ESCROW_TRANSITIONS, EscrowStatus)
_check_exhaustive(PAYOUT_TRANSITIONS, PayoutStatus)


def sources_for(table: dict, target) -> list[str]:
    """Stored values of every state allowed to move into target."""
    return [state.value for state, targets in table.items() if target in targets]
