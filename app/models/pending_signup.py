"""Pending signup data: the account is created only after the checkout session is paid."""
import enum
import uuid

from sqlalchemy import Column, String, DateTime
from sqlalchemy.sql import func

from app.database import Base


class CheckoutStatus(str, enum.Enum):
    pending = "pending"
    completed = "completed"
    failed = "failed"


class PendingSignup(Base):
    __tablename__ = "pending_signups"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    stripe_session_id = Column(String(255), unique=True, nullable=False, index=True)

    email = Column(String(255), nullable=False, index=True)
    partner1_name = Column(String(255), nullable=False)
    partner2_name = Column(String(255), nullable=False)
    wedding_date = Column(String(10), nullable=True)  # ISO date as entered in the wizard
    slug = Column(String(50), nullable=False, index=True)
    theme_id = Column(String(50), nullable=False)

    checkout_status = Column(String(20), nullable=False, default=CheckoutStatus.pending.value)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Idempotency key: written once, by the account transaction only
    completed_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def couple_names(self) -> str:
        return f"{self.partner1_name} & {self.partner2_name}"
