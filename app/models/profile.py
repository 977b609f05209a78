"""Tenant profile: one row per auth identity, created by the account transaction."""
import enum

from sqlalchemy import Column, String, DateTime
from sqlalchemy.sql import func

from app.database import Base


class SubscriptionStatus(str, enum.Enum):
    trial = "trial"
    active = "active"
    expired = "expired"
    cancelled = "cancelled"


class Profile(Base):
    __tablename__ = "profiles"

    # Same id as the auth provider's user
    id = Column(String(36), primary_key=True)
    email = Column(String(255), nullable=False, index=True)
    full_name = Column(String(255), nullable=True)

    subscription_status = Column(String(20), nullable=False, default=SubscriptionStatus.trial.value)
    subscription_end_date = Column(DateTime(timezone=True), nullable=True)
    stripe_customer_id = Column(String(255), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
