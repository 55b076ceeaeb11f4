"""Row access for payments and orders.

Every status write is a conditional UPDATE (compare the stored status, then
write) so concurrent requests settle on the database rather than in process
memory. Callers own the transaction: nothing here commits.
"""
from datetime import datetime, timedelta, timezone

from sqlalchemy import select, update, or_, and_
from sqlalchemy.orm import Session

from payflow.models.order import Order
from payflow.models.payment import Payment
from payflow.models.user import User


def _now() -> datetime:
    return datetime.now(timezone.utc)


def get_payment(db: Session, payment_id: str, *, for_update: bool = False) -> Payment | None:
    stmt = select(Payment).where(Payment.id == payment_id)
    if for_update:
        stmt = stmt.with_for_update()
    return db.execute(stmt).scalar_one_or_none()


def get_payment_by_session(db: Session, session_id: str) -> Payment | None:
    return db.execute(select(Payment).where(Payment.session_id == session_id)).scalar_one_or_none()


def find_payment_for_order(db: Session, order_id: str, statuses: tuple[str, ...] | None = None,
                           *, for_update: bool = False) -> Payment | None:
    """Newest payment of an order, optionally restricted to ``statuses``."""
    stmt = select(Payment).where(Payment.order_id == order_id)
    if statuses:
        stmt = stmt.where(Payment.status.in_(statuses))
    stmt = stmt.order_by(Payment.created_at.desc()).limit(1)
    if for_update:
        stmt = stmt.with_for_update()
    return db.execute(stmt).scalar_one_or_none()


def list_payments(db: Session, search: str = "", status: str = "") -> list[tuple[Payment, Order | None, User | None]]:
    stmt = (
        select(Payment, Order, User)
        .outerjoin(Order, Order.id == Payment.order_id)
        .outerjoin(User, User.id == Order.user_id)
    )
    if search:
        like = f"%{search.lower()}%"
        stmt = stmt.where(or_(
            User.email.ilike(like),
            Order.id.ilike(like),
            Payment.session_id.ilike(like),
        ))
    if status and status.upper() != "ALL":
        stmt = stmt.where(Payment.status == status.upper())
    stmt = stmt.order_by(Payment.created_at.desc())
    return [tuple(row) for row in db.execute(stmt).all()]


def add_payment(db: Session, payment: Payment) -> Payment:
    db.add(payment)
    db.flush()
    return payment


def compare_and_set_payment(db: Session, payment_id: str, expected_status: str, values: dict) -> bool:
    """Write ``values`` only if the row still has ``expected_status``."""
    values = {**values, "updated_at": _now()}
    res = db.execute(
        update(Payment)
        .where(Payment.id == payment_id, Payment.status == expected_status)
        .values(**values)
        .execution_options(synchronize_session="fetch")
    )
    return res.rowcount == 1


def get_order(db: Session, order_id: str) -> Order | None:
    return db.get(Order, order_id)


def claim_order(db: Session, order_id: str, claim: str, blocked_statuses: tuple[str, ...], ttl_seconds: int) -> bool:
    """Mark an order as having a payment initiation in flight.

    Succeeds only when the order is not in ``blocked_statuses`` and carries no
    live claim. Claims older than ``ttl_seconds`` count as abandoned.
    """
    now = _now()
    stale_before = now - timedelta(seconds=ttl_seconds)
    res = db.execute(
        update(Order)
        .where(
            Order.id == order_id,
            Order.status.not_in(blocked_statuses),
            or_(
                Order.payment_claim.is_(None),
                and_(Order.payment_claimed_at.is_not(None), Order.payment_claimed_at < stale_before),
            ),
        )
        .values(payment_claim=claim, payment_claimed_at=now, updated_at=now)
        .execution_options(synchronize_session="fetch")
    )
    return res.rowcount == 1


def release_order_claim(db: Session, order_id: str, claim: str, new_status: str | None = None) -> bool:
    values: dict = {"payment_claim": None, "payment_claimed_at": None, "updated_at": _now()}
    if new_status is not None:
        values["status"] = new_status
    res = db.execute(
        update(Order)
        .where(Order.id == order_id, Order.payment_claim == claim)
        .values(**values)
        .execution_options(synchronize_session="fetch")
    )
    return res.rowcount == 1


def compare_and_set_order_status(db: Session, order_id: str, expected: tuple[str, ...], new_status: str) -> bool:
    res = db.execute(
        update(Order)
        .where(Order.id == order_id, Order.status.in_(expected))
        .values(status=new_status, updated_at=_now())
        .execution_options(synchronize_session="fetch")
    )
    return res.rowcount == 1
