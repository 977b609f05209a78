"""
All SQLAlchemy models. Schema is the source of truth for new DBs.
Base.metadata.create_all() creates every table; no migration scripts needed for fresh installs.
"""
from app.models.pending_signup import PendingSignup
from app.models.profile import Profile
from app.models.wedding import Wedding
from app.models.audit_log import AuditLog
from app.models.stripe_event import StripeEvent

__all__ = [
    "PendingSignup",
    "Profile",
    "Wedding",
    "AuditLog",
    "StripeEvent",
]
