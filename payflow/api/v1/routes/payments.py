from __future__ import annotations
import json

import structlog
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from payflow.db.session import get_db
from payflow.api.deps import get_current_user, get_p24_client, require_roles
from payflow.core.errors import ValidationError
from payflow.models.user import STAFF_ROLES, User
from payflow.schemas.payments import (
    InitiatePaymentRequest, InitiatePaymentResponse, PaymentListOut, PaymentOut, PaymentReturnOut,
    RefundRequest, RefundResponse, RefundPaymentOut, OrderRef, UserRef,
)
from payflow.services import payment_store
from payflow.services.callbacks import process_notification
from payflow.services.initiation import initiate_payment
from payflow.services.p24_client import P24Client
from payflow.services.refunds import refund_payment

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["payments"])


@router.post("/payments/initiate", response_model=InitiatePaymentResponse)
def p24_initiate(body: InitiatePaymentRequest, db: Session = Depends(get_db),
                 user: User = Depends(get_current_user), client: P24Client = Depends(get_p24_client)):
    result = initiate_payment(db, client, body.orderId, user)
    return InitiatePaymentResponse(
        paymentId=result.payment_id,
        sessionId=result.session_id,
        paymentUrl=result.payment_url,
        token=result.token,
    )


@router.post("/payments/callback", response_class=PlainTextResponse)
async def p24_callback(req: Request, db: Session = Depends(get_db), client: P24Client = Depends(get_p24_client)):
    """P24 urlStatus. Answers a plain "OK" once the notification is applied or was already applied."""
    raw = await req.body()
    try:
        payload = json.loads(raw.decode("utf-8") or "{}")
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise ValidationError("Callback body is not valid JSON")
    outcome = await run_in_threadpool(process_notification, db, client, payload)
    logger.info("p24_callback_acknowledged", payment_id=outcome.payment_id,
                status=outcome.status.value, duplicate=outcome.duplicate)
    return PlainTextResponse("OK")


@router.get("/payments/return", response_model=PaymentReturnOut)
def p24_return(orderId: str = Query(min_length=1), db: Session = Depends(get_db)):
    """Customer lands here from P24. Read-only: the webhook is what settles the payment."""
    order = payment_store.get_order(db, orderId)
    payment = payment_store.find_payment_for_order(db, orderId)
    logger.info("p24_customer_returned", order_id=orderId, payment_status=payment.status if payment else None)
    return PaymentReturnOut(
        orderId=orderId,
        orderStatus=order.status if order else None,
        paymentStatus=payment.status if payment else None,
    )


@router.get("/admin/payments", response_model=PaymentListOut)
def admin_list_payments(search: str = "", status: str = "", db: Session = Depends(get_db),
                        user: User = Depends(require_roles(*STAFF_ROLES))):
    rows = payment_store.list_payments(db, search=search.strip(), status=status.strip())
    payments = []
    for p, o, u in rows:
        payments.append(PaymentOut(
            id=p.id,
            sessionId=p.session_id,
            amount=p.amount,
            currency=p.currency,
            status=p.status,
            paymentMethod=p.payment_method,
            transactionId=p.external_transaction_id,
            errorCode=p.error_code,
            createdAt=p.created_at.isoformat() if p.created_at else None,
            updatedAt=p.updated_at.isoformat() if p.updated_at else None,
            order=OrderRef(id=o.id, status=o.status, totalPrice=float(o.total_amount)) if o else None,
            user=UserRef(id=u.id, name=u.full_name or "", email=u.email) if u else None,
        ))
    logger.info("payments_listed", count=len(payments), role=user.role, search=search, status=status)
    return PaymentListOut(payments=payments, viewerRole=user.role)


@router.post("/admin/payments/refund", response_model=RefundResponse)
def admin_refund(body: RefundRequest, db: Session = Depends(get_db),
                 user: User = Depends(require_roles(*STAFF_ROLES)), client: P24Client = Depends(get_p24_client)):
    outcome = refund_payment(db, client, user, payment_id=body.paymentId, order_id=body.orderId, reason=body.reason)
    return RefundResponse(payment=RefundPaymentOut(id=outcome.payment_id, status=outcome.status.value))
