"""Payment state machine.

    INITIATED -> COMPLETED -> REFUNDED
    INITIATED -> FAILED

Every payment status change goes through apply_transition().
"""
from sqlalchemy.orm import Session

from payflow.core.errors import InvalidTransition
from payflow.models.payment import Payment, PaymentStatus
from payflow.services import payment_store

TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.INITIATED: frozenset({PaymentStatus.COMPLETED, PaymentStatus.FAILED}),
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}

TERMINAL_FOR_CALLBACKS = frozenset({PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.REFUNDED})

# Columns a transition may touch. amount/currency/session_id are never among them.
_MUTABLE = frozenset({
    "external_transaction_id", "payment_method", "error_code", "error_message", "meta",
})


def can_transition(current: PaymentStatus | str, target: PaymentStatus | str) -> bool:
    return PaymentStatus(target) in TRANSITIONS[PaymentStatus(current)]


def check_transition(current: PaymentStatus | str, target: PaymentStatus | str) -> None:
    if not can_transition(current, target):
        raise InvalidTransition(
            f"Payment cannot move from {PaymentStatus(current).value} to {PaymentStatus(target).value}",
            current=PaymentStatus(current).value,
            target=PaymentStatus(target).value,
        )


def apply_transition(db: Session, payment: Payment, target: PaymentStatus, **changes) -> bool:
    """Move ``payment`` to ``target`` with a conditional write.

    Raises InvalidTransition for an edge outside TRANSITIONS. Returns False if
    another writer changed the row's status first; ``payment`` is refreshed
    either way.
    """
    current = PaymentStatus(payment.status)
    check_transition(current, target)
    unknown = set(changes) - _MUTABLE
    if unknown:
        raise ValueError(f"apply_transition cannot write {sorted(unknown)}")

    written = payment_store.compare_and_set_payment(
        db, payment.id, current.value, {"status": PaymentStatus(target).value, **changes}
    )
    db.refresh(payment)
    return written
