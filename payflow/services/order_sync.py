"""Keeps orders in step with their payments."""
import structlog
from sqlalchemy.orm import Session

from payflow.models.order import OrderStatus
from payflow.models.payment import PaymentStatus
from payflow.services import payment_store

logger = structlog.get_logger(__name__)

# payment status reached -> (order statuses we may move from, order status to set)
ORDER_TRANSITIONS: dict[PaymentStatus, tuple[tuple[OrderStatus, ...], OrderStatus] | None] = {
    PaymentStatus.INITIATED: None,  # handled by the initiation claim, see on_payment_registered()
    PaymentStatus.COMPLETED: ((OrderStatus.NEW, OrderStatus.WAITING_FOR_PAYMENT), OrderStatus.PROCESSING),
    PaymentStatus.FAILED: None,
    PaymentStatus.REFUNDED: (
        tuple(s for s in OrderStatus if s is not OrderStatus.REFUND),
        OrderStatus.REFUND,
    ),
}


def sync_order(db: Session, order_id: str, payment_status: PaymentStatus) -> OrderStatus | None:
    """Apply the order side of a payment transition.

    Returns the new order status, or None when the order was left alone (no
    mapping, or the order is already past the point this transition covers).
    """
    mapping = ORDER_TRANSITIONS[PaymentStatus(payment_status)]
    if mapping is None:
        return None
    allowed_from, target = mapping
    written = payment_store.compare_and_set_order_status(
        db, order_id, tuple(s.value for s in allowed_from), target.value
    )
    if not written:
        order = payment_store.get_order(db, order_id)
        logger.info(
            "order_status_not_changed",
            order_id=order_id,
            payment_status=PaymentStatus(payment_status).value,
            order_status=order.status if order else None,
        )
        return None
    logger.info("order_status_changed", order_id=order_id, order_status=target.value)
    return target


def on_payment_registered(db: Session, order_id: str, claim: str) -> bool:
    """Order -> WAITING_FOR_PAYMENT and drop the initiation claim held as ``claim``."""
    return payment_store.release_order_claim(db, order_id, claim, new_status=OrderStatus.WAITING_FOR_PAYMENT.value)
