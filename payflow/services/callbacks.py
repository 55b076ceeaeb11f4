"""Przelewy24 status notifications (urlStatus webhook).

Order of checks: field validation, signature, lookup by session id,
idempotency guard, then a verify call to P24, which is the only thing trusted
to say a payment happened. Notifications arrive at least once; a repeat for a
payment that already left INITIATED is acknowledged without side effects.
"""
from dataclasses import dataclass
from typing import Any

import pydantic
import structlog
from sqlalchemy.orm import Session

from payflow.core.errors import NotFound, SignatureMismatch, UpstreamError, ValidationError
from payflow.models.payment import Payment, PaymentStatus
from payflow.schemas.payments import P24Notification
from payflow.services import lifecycle, order_sync, payment_store
from payflow.services.audit_service import log_audit
from payflow.services.p24_client import GatewayError, P24Client

logger = structlog.get_logger(__name__)

GATEWAY_ACTOR = "p24"


@dataclass
class CallbackOutcome:
    payment_id: str
    status: PaymentStatus
    duplicate: bool = False


def _without_sign(payload: dict) -> dict:
    return {k: v for k, v in payload.items() if k != "sign"}


def _gateway_error_fields(raw: Any, status_code: int | None) -> tuple[str, str]:
    if isinstance(raw, dict):
        code = raw.get("code") or raw.get("responseCode") or status_code
        message = raw.get("error") or "Transaction verification failed"
    else:
        code, message = status_code, "Transaction verification failed"
    return str(code or "VERIFY_FAILED")[:40], str(message)


def parse_notification(payload: Any, client: P24Client) -> P24Notification:
    if not isinstance(payload, dict):
        raise ValidationError("Callback body must be a JSON object")
    try:
        note = P24Notification.model_validate(payload)
    except pydantic.ValidationError as e:
        bad = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
        logger.warning("p24_notification_invalid", fields=bad)
        raise ValidationError("Missing or malformed fields in callback", fields=bad) from e
    if note.merchantId != client.cfg.merchant_id or note.posId != client.cfg.pos_id:
        logger.warning("p24_notification_wrong_merchant", merchant_id=note.merchantId, pos_id=note.posId)
        raise ValidationError("Callback is addressed to a different merchant")
    return note


def process_notification(db: Session, client: P24Client, payload: Any) -> CallbackOutcome:
    note = parse_notification(payload, client)
    fields = note.model_dump()

    if not client.verify_notification(fields):
        # No payment/order write here: only the audit trail records the attempt.
        logger.error("p24_notification_signature_mismatch", session_id=note.sessionId, p24_order_id=note.orderId)
        log_audit(db, actor_user_id=GATEWAY_ACTOR, action="payment.signature_mismatch",
                  entity_type="payment_session", entity_id=note.sessionId,
                  details={"p24OrderId": note.orderId, "amount": note.amount, "currency": note.currency})
        db.commit()
        raise SignatureMismatch("Invalid signature", session_id=note.sessionId)

    payment = payment_store.get_payment_by_session(db, note.sessionId)
    if not payment:
        logger.warning("p24_notification_unknown_session", session_id=note.sessionId)
        raise NotFound("Payment not found", session_id=note.sessionId)

    if PaymentStatus(payment.status) in lifecycle.TERMINAL_FOR_CALLBACKS:
        logger.info("p24_notification_duplicate", payment_id=payment.id, status=payment.status)
        return CallbackOutcome(payment.id, PaymentStatus(payment.status), duplicate=True)

    if note.amount != payment.amount or note.currency.upper() != payment.currency:
        logger.warning("p24_notification_amount_mismatch", payment_id=payment.id,
                       expected=payment.amount, received=note.amount, currency=note.currency)

    callback_data = _without_sign(fields)
    try:
        # stored amount/currency, never the notification's
        result = client.verify(
            session_id=payment.session_id,
            order_id=note.orderId,
            amount=payment.amount,
            currency=payment.currency,
        )
    except GatewayError as e:
        if e.status_code is None:
            # Gateway state unknown: leave INITIATED and let P24 redeliver.
            logger.error("p24_verify_unreachable", payment_id=payment.id, session_id=payment.session_id)
            raise UpstreamError("Payment gateway verification unavailable", payment_id=payment.id) from e
        code, message = _gateway_error_fields(e.raw_body, e.status_code)
        return _fail(db, payment, callback_data, code, message, verify_response=e.raw_body)

    if not result.verified:
        message = str(result.raw.get("error") or "Transaction not verified")
        return _fail(db, payment, callback_data, "NOT_VERIFIED", message, verify_response=result.raw)

    written = lifecycle.apply_transition(
        db, payment, PaymentStatus.COMPLETED,
        external_transaction_id=str(note.orderId),
        payment_method=note.statement,
        meta={
            **(payment.meta or {}),
            "methodId": note.methodId,
            "callbackData": callback_data,
            "verifyRequest": _without_sign(result.request),
            "verifyResponse": result.raw,
        },
    )
    if not written:
        db.rollback()
        logger.info("p24_notification_raced", payment_id=payment.id, status=payment.status)
        return CallbackOutcome(payment.id, PaymentStatus(payment.status), duplicate=True)

    order_sync.sync_order(db, payment.order_id, PaymentStatus.COMPLETED)
    log_audit(db, actor_user_id=GATEWAY_ACTOR, action="payment.completed", entity_type="payment", entity_id=payment.id,
              details={"orderId": payment.order_id, "p24OrderId": note.orderId, "methodId": note.methodId})
    db.commit()

    logger.info("payment_completed", payment_id=payment.id, order_id=payment.order_id, p24_order_id=note.orderId)
    return CallbackOutcome(payment.id, PaymentStatus.COMPLETED)


def _fail(db: Session, payment: Payment, callback_data: dict, code: str, message: str, verify_response: Any) -> CallbackOutcome:
    written = lifecycle.apply_transition(
        db, payment, PaymentStatus.FAILED,
        error_code=code,
        error_message=message,
        meta={**(payment.meta or {}), "callbackData": callback_data, "verifyResponse": verify_response},
    )
    if not written:
        db.rollback()
        return CallbackOutcome(payment.id, PaymentStatus(payment.status), duplicate=True)

    log_audit(db, actor_user_id=GATEWAY_ACTOR, action="payment.verify_failed", entity_type="payment", entity_id=payment.id,
              details={"errorCode": code, "errorMessage": message})
    db.commit()
    logger.error("p24_verify_failed", payment_id=payment.id, session_id=payment.session_id, error_code=code)
    return CallbackOutcome(payment.id, PaymentStatus.FAILED)
