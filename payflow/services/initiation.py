import time
import uuid
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

import structlog
from sqlalchemy.orm import Session

from payflow.core.config import settings
from payflow.core.errors import Conflict, Forbidden, NotFound, UpstreamError, ValidationError
from payflow.models.order import OrderStatus
from payflow.models.payment import Payment, PaymentStatus
from payflow.models.user import User
from payflow.services import order_sync, payment_store
from payflow.services.audit_service import log_audit
from payflow.services.p24_client import GatewayError, P24Client

logger = structlog.get_logger(__name__)

# Orders in these states cannot start a new payment.
BLOCKED_ORDER_STATUSES = (OrderStatus.COMPLETED.value, OrderStatus.PROCESSING.value)


@dataclass
class InitiationResult:
    payment_id: str
    session_id: str
    token: str
    payment_url: str
    amount: int
    currency: str


def to_minor_units(amount, exponent: int = 2) -> int:
    """129.99 -> 12999. Rounds half up; floats go through str() first."""
    value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    return int((value * (Decimal(10) ** exponent)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def new_session_id(order_id: str) -> str:
    return f"{order_id}_{time.time_ns()}"


def _without_sign(payload: dict) -> dict:
    return {k: v for k, v in payload.items() if k != "sign"}


def initiate_payment(db: Session, client: P24Client, order_id: str, user: User) -> InitiationResult:
    order = payment_store.get_order(db, order_id)
    if not order:
        raise NotFound("Order not found", order_id=order_id)
    if order.user_id != user.id:
        raise Forbidden("Order does not belong to the user", order_id=order_id)
    if order.status in BLOCKED_ORDER_STATUSES:
        raise Conflict("Order is already being processed or completed", order_id=order_id, order_status=order.status)
    if payment_store.find_payment_for_order(db, order.id, (PaymentStatus.COMPLETED.value,)):
        raise Conflict("Order already has a completed payment", order_id=order_id)

    amount = to_minor_units(order.total_amount)
    if amount <= 0:
        raise ValidationError("Order total must be positive", order_id=order_id)
    currency = (order.currency or settings.P24_CURRENCY).upper()
    session_id = new_session_id(order.id)

    if not payment_store.claim_order(db, order.id, session_id, BLOCKED_ORDER_STATUSES, settings.PAYMENT_CLAIM_TTL_SECONDS):
        db.rollback()
        raise Conflict("A payment for this order is already being initiated", order_id=order_id)
    # The claim has to be visible to other workers before we talk to the gateway.
    db.commit()

    base_url = settings.APP_PUBLIC_URL.rstrip("/")
    return_url = f"{base_url}/payment/return?orderId={order.id}"
    status_url = f"{base_url}/api/v1/payments/callback"
    description = f"Order #{order.id}"

    order_pk = order.id
    logger.info("p24_register_started", order_id=order_pk, session_id=session_id, amount=amount,
                sandbox=client.cfg.sandbox)
    try:
        return _register_and_record(db, client, order, user, session_id, amount, currency,
                                    description, return_url, status_url)
    except UpstreamError:
        raise
    except Exception:
        # any other failure drops the claim now instead of at TTL expiry
        db.rollback()
        payment_store.release_order_claim(db, order_pk, session_id)
        db.commit()
        logger.exception("payment_initiation_aborted", order_id=order_pk, session_id=session_id)
        raise


def _register_and_record(db: Session, client: P24Client, order, user: User, session_id: str, amount: int,
                         currency: str, description: str, return_url: str, status_url: str) -> InitiationResult:
    try:
        reg = client.register(
            session_id=session_id,
            amount=amount,
            currency=currency,
            description=description,
            email=user.email,
            client=user.full_name or user.email,
            url_return=return_url,
            url_status=status_url,
            country=settings.P24_COUNTRY,
            language=settings.P24_LANGUAGE,
        )
    except GatewayError as e:
        payment_store.release_order_claim(db, order.id, session_id)
        log_audit(db, actor_user_id=user.id, action="payment.register_failed", entity_type="order", entity_id=order.id,
                  details={"sessionId": session_id, "gatewayStatus": e.status_code,
                           "outcomeUnknown": e.status_code is None, "response": e.raw_body})
        db.commit()
        logger.error("p24_register_failed", order_id=order.id, session_id=session_id, gateway_status=e.status_code)
        raise UpstreamError("Payment gateway registration failed", gateway_status=e.status_code,
                            raw_body=e.raw_body, order_id=order.id) from e

    payment = payment_store.add_payment(db, Payment(
        id=str(uuid.uuid4()),
        order_id=order.id,
        session_id=session_id,
        merchant_id=str(client.cfg.merchant_id),
        pos_id=str(client.cfg.pos_id),
        amount=amount,
        currency=currency,
        status=PaymentStatus.INITIATED.value,
        description=description,
        email=user.email,
        return_url=return_url,
        status_url=status_url,
        meta={"token": reg.token, "registerRequest": _without_sign(reg.request), "registerResponse": reg.raw},
    ))

    # Older INITIATED attempts are left for the callback path to settle.
    if not order_sync.on_payment_registered(db, order.id, session_id):
        logger.warning("order_claim_lost", order_id=order.id, session_id=session_id)
    log_audit(db, actor_user_id=user.id, action="payment.initiated", entity_type="payment", entity_id=payment.id,
              details={"orderId": order.id, "sessionId": session_id, "amount": amount, "currency": currency})
    db.commit()

    logger.info("payment_initiated", payment_id=payment.id, order_id=order.id, session_id=session_id)
    return InitiationResult(
        payment_id=payment.id,
        session_id=session_id,
        token=reg.token,
        payment_url=client.payment_url(reg.token),
        amount=amount,
        currency=currency,
    )
