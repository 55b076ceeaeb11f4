from pydantic import BaseModel, Field, model_validator
from typing import Optional, List


class InitiatePaymentRequest(BaseModel):
    orderId: str = Field(min_length=1)


class InitiatePaymentResponse(BaseModel):
    success: bool = True
    paymentId: str
    sessionId: str
    paymentUrl: str
    token: str


class P24Notification(BaseModel):
    """Body P24 POSTs to urlStatus once a transaction is paid."""
    merchantId: int
    posId: int
    sessionId: str = Field(min_length=1, max_length=100)
    amount: int = Field(gt=0)
    originAmount: int = Field(gt=0)
    currency: str = Field(min_length=3, max_length=3)
    orderId: int = Field(gt=0)  # P24's transaction id
    methodId: int
    statement: str
    sign: str = Field(min_length=1)


class RefundRequest(BaseModel):
    paymentId: Optional[str] = None
    orderId: Optional[str] = None
    reason: Optional[str] = Field(default=None, max_length=200)

    @model_validator(mode="after")
    def _one_reference(self):
        if not self.paymentId and not self.orderId:
            raise ValueError("Either paymentId or orderId is required")
        return self


class RefundPaymentOut(BaseModel):
    id: str
    status: str


class RefundResponse(BaseModel):
    success: bool = True
    message: str = "Refund initiated successfully"
    payment: RefundPaymentOut


class PaymentReturnOut(BaseModel):
    success: bool = True
    orderId: str
    orderStatus: Optional[str] = None
    paymentStatus: Optional[str] = None


class OrderRef(BaseModel):
    id: str
    status: str
    totalPrice: float


class UserRef(BaseModel):
    id: str
    name: str
    email: str


class PaymentOut(BaseModel):
    id: str
    sessionId: str
    amount: int
    currency: str
    status: str
    paymentMethod: Optional[str] = None
    transactionId: Optional[str] = None
    errorCode: Optional[str] = None
    createdAt: Optional[str] = None
    updatedAt: Optional[str] = None
    order: Optional[OrderRef] = None
    user: Optional[UserRef] = None


class PaymentListOut(BaseModel):
    payments: List[PaymentOut]
    viewerRole: str
