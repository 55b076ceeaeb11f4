from sqlalchemy import String, DateTime, Boolean
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from payflow.db.session import Base

# Roles allowed into /admin/payments (listing and refunds)
STAFF_ROLES = ("admin", "employee")


class User(Base):
    """Shop account. Rows are owned by the auth service; payflow only reads them."""
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    email: Mapped[str] = mapped_column(String(320), unique=True, index=True)  # P24 "email" on register
    full_name: Mapped[str] = mapped_column(String(200), default="")  # P24 "client" on register
    role: Mapped[str] = mapped_column(String(30), index=True)  # customer, employee, admin
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES
