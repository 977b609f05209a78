"""Processed Stripe webhook events: one row per event id, so redeliveries are not handled twice."""
import enum
import uuid

from sqlalchemy import Column, String, Text, DateTime
from sqlalchemy.sql import func

from app.database import Base


class StripeEventStatus(str, enum.Enum):
    processing = "processing"
    completed = "completed"
    failed = "failed"


class StripeEvent(Base):
    __tablename__ = "stripe_events"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    stripe_event_id = Column(String(255), unique=True, nullable=False, index=True)  # evt_...
    type = Column(String(100), nullable=False, index=True)

    # processing -> completed | failed; failed events may be claimed again on redelivery
    status = Column(String(20), nullable=False, default=StripeEventStatus.processing.value, index=True)
    error_message = Column(Text, nullable=True)

    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
