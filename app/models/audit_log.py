"""Append-only audit log for signup and provisioning events.
No updates or deletes - every record is permanent."""
from sqlalchemy import Column, Integer, String, Text, DateTime
from sqlalchemy.sql import func
from app.database import Base, JSONType


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)

    # category: account_created | provisioning_failed | orphaned_identity | signup_cleanup
    category = Column(String(32), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)

    # Optional structured data (e.g. pending_signup_id, slug, error kind)
    meta = Column(JSONType, nullable=True)

    # Who it concerns (auth identity id / email), no FK: identity may have been rolled back
    actor_user_id = Column(String(36), nullable=True, index=True)
    actor_email = Column(String(255), nullable=True)

    ip_address = Column(String(64), nullable=True)

    # UTC only - server_default
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
