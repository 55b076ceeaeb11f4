import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

import structlog
from sqlalchemy.orm import Session

from payflow.core.errors import Conflict, Forbidden, NotFound, UpstreamError, ValidationError
from payflow.models.order import OrderStatus
from payflow.models.payment import Payment, PaymentStatus
from payflow.models.user import User
from payflow.services import lifecycle, order_sync, payment_store
from payflow.services.audit_service import log_audit
from payflow.services.p24_client import GatewayError, P24Client

logger = structlog.get_logger(__name__)


@dataclass
class RefundOutcome:
    payment_id: str
    status: PaymentStatus
    order_status: OrderStatus | None


def _locate_payment(db: Session, payment_id: str | None, order_id: str | None) -> Payment | None:
    if payment_id:
        return payment_store.get_payment(db, payment_id, for_update=True)
    # An order can have several attempts; the paid one is the one to refund.
    settled = (PaymentStatus.COMPLETED.value, PaymentStatus.REFUNDED.value)
    return (payment_store.find_payment_for_order(db, order_id, settled, for_update=True)
            or payment_store.find_payment_for_order(db, order_id, for_update=True))


def refund_payment(db: Session, client: P24Client, actor: User, *, payment_id: str | None = None,
                   order_id: str | None = None, reason: str | None = None) -> RefundOutcome:
    """Full refund of a COMPLETED payment.

    Nothing is written to the payment or order unless P24 accepts the refund.
    The payment row stays locked (SELECT ... FOR UPDATE) for the duration of the
    gateway call so two operators cannot refund the same payment twice.
    """
    if not actor.is_staff:
        raise Forbidden("Only staff can refund payments", user_id=actor.id)
    if not payment_id and not order_id:
        raise ValidationError("Either paymentId or orderId is required")

    payment = _locate_payment(db, payment_id, order_id)
    if not payment:
        raise NotFound("Payment not found", payment_id=payment_id, order_id=order_id)

    status = PaymentStatus(payment.status)
    if status is PaymentStatus.REFUNDED:
        raise Conflict("Payment has already been refunded", payment_id=payment.id)
    if status is not PaymentStatus.COMPLETED:
        raise ValidationError("Only completed payments can be refunded", payment_id=payment.id, status=status.value)
    if not (payment.external_transaction_id or "").isdigit():
        raise ValidationError("Payment has no gateway transaction id", payment_id=payment.id)

    order = payment_store.get_order(db, payment.order_id)
    if not order:
        raise NotFound("Order not found", order_id=payment.order_id)

    request_id = str(uuid.uuid4())
    description = reason or f"Refund for order {order.id}"
    logger.info("p24_refund_started", payment_id=payment.id, session_id=payment.session_id,
                amount=payment.amount, request_id=request_id, sandbox=client.cfg.sandbox)
    try:
        result = client.refund(
            request_id=request_id,
            session_id=payment.session_id,
            order_id=int(payment.external_transaction_id),
            amount=payment.amount,
            description=description,
        )
    except GatewayError as e:
        _record_refund_failure(db, actor, payment, request_id, e.status_code, e.raw_body)
        raise UpstreamError("Payment gateway refund failed", gateway_status=e.status_code,
                            raw_body=e.raw_body, payment_id=payment.id) from e
    if not result.accepted:
        _record_refund_failure(db, actor, payment, request_id, 200, result.raw)
        raise UpstreamError("Payment gateway rejected the refund", raw_body=result.raw, payment_id=payment.id)

    refund_request = {k: v for k, v in result.request.items() if k != "sign"}
    written = lifecycle.apply_transition(
        db, payment, PaymentStatus.REFUNDED,
        meta={
            **(payment.meta or {}),
            "refundRequest": refund_request,
            "refundResponse": result.raw,
            "refundReason": reason,
            "refundedAt": datetime.now(timezone.utc).isoformat(),
        },
    )
    if not written:
        db.rollback()
        logger.error("payment_refund_raced", payment_id=payment.id, request_id=request_id)
        raise Conflict("Payment changed while the refund was in progress", payment_id=payment.id)

    order_status = order_sync.sync_order(db, payment.order_id, PaymentStatus.REFUNDED)
    log_audit(db, actor_user_id=actor.id, action="payment.refunded", entity_type="payment", entity_id=payment.id,
              details={"orderId": payment.order_id, "amount": payment.amount, "requestId": request_id, "reason": reason})
    db.commit()

    logger.info("payment_refunded", payment_id=payment.id, order_id=payment.order_id, request_id=request_id)
    return RefundOutcome(payment_id=payment.id, status=PaymentStatus.REFUNDED, order_status=order_status)


def _record_refund_failure(db: Session, actor: User, payment: Payment, request_id: str,
                           gateway_status: int | None, raw) -> None:
    payment_pk = payment.id
    db.rollback()  # drops the row lock
    log_audit(db, actor_user_id=actor.id, action="payment.refund_failed", entity_type="payment", entity_id=payment_pk,
              details={"requestId": request_id, "gatewayStatus": gateway_status, "response": raw})
    db.commit()
    logger.error("p24_refund_failed", payment_id=payment_pk, request_id=request_id, gateway_status=gateway_status)
