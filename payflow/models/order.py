import enum
from decimal import Decimal
from sqlalchemy import String, DateTime, Numeric
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from payflow.db.session import Base


class OrderStatus(str, enum.Enum):
    NEW = "NEW"
    WAITING_FOR_PAYMENT = "WAITING_FOR_PAYMENT"
    PROCESSING = "PROCESSING"
    DELIVERY = "DELIVERY"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REFUND = "REFUND"


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), index=True)
    delivery_id: Mapped[str] = mapped_column(String(36), nullable=True)

    status: Mapped[str] = mapped_column(String(30), default=OrderStatus.NEW.value, index=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))  # major units, e.g. 129.99
    currency: Mapped[str] = mapped_column(String(3), default="PLN")

    # Set while a payment initiation is talking to the gateway (holds the new session id).
    payment_claim: Mapped[str] = mapped_column(String(100), nullable=True)
    payment_claimed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
