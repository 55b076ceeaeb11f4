import enum
from sqlalchemy import String, Integer, DateTime, Text, JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from payflow.db.session import Base


class PaymentStatus(str, enum.Enum):
    INITIATED = "INITIATED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    order_id: Mapped[str] = mapped_column(String(36), index=True)
    session_id: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    merchant_id: Mapped[str] = mapped_column(String(20))
    pos_id: Mapped[str] = mapped_column(String(20))

    # amount/currency are written once, at insert
    amount: Mapped[int] = mapped_column(Integer)  # minor units (grosze)
    currency: Mapped[str] = mapped_column(String(3), default="PLN")

    status: Mapped[str] = mapped_column(String(20), default=PaymentStatus.INITIATED.value, index=True)
    external_transaction_id: Mapped[str] = mapped_column(String(40), nullable=True, index=True)  # P24 orderId
    payment_method: Mapped[str] = mapped_column(String(120), nullable=True)
    error_code: Mapped[str] = mapped_column(String(40), nullable=True)
    error_message: Mapped[str] = mapped_column(Text, nullable=True)

    description: Mapped[str] = mapped_column(String(200), default="")
    email: Mapped[str] = mapped_column(String(320), default="")
    return_url: Mapped[str] = mapped_column(String(500), default="")
    status_url: Mapped[str] = mapped_column(String(500), default="")

    # Raw gateway exchanges, kept verbatim. "metadata" is reserved on declarative classes.
    meta: Mapped[dict] = mapped_column("metadata", JSON().with_variant(JSONB(), "postgresql"), default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
