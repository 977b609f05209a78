"""Pending signup records, keyed by Stripe checkout session id."""
import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from app.database import SessionLocal
from app.models.pending_signup import PendingSignup, CheckoutStatus
from app.models.wedding import Wedding
from app.services.audit_log import create_log, CATEGORY_SIGNUP_CLEANUP

log = logging.getLogger("uvicorn.error")

PENDING_SIGNUP_TTL_HOURS = 24


class SignupStore:
    def __init__(self, db: Session):
        self.db = db

    def find_by_session_id(self, session_id: str) -> PendingSignup | None:
        # Fresh read: a concurrent request may have completed the signup since our last look
        self.db.expire_all()
        return self.db.query(PendingSignup).filter(PendingSignup.stripe_session_id == session_id).first()

    def slug_taken(self, slug: str, now: datetime | None = None) -> bool:
        """Taken by a wedding, or reserved by a checkout that is still open (not completed, not expired)."""
        if self.db.query(Wedding.id).filter(Wedding.slug == slug).first() is not None:
            return True
        now = now or datetime.now(timezone.utc)
        reserved = self.db.query(PendingSignup.id).filter(
            PendingSignup.slug == slug,
            PendingSignup.completed_at.is_(None),
            PendingSignup.expires_at > now,
        ).first()
        return reserved is not None

    def create(
        self,
        *,
        stripe_session_id: str,
        email: str,
        partner1_name: str,
        partner2_name: str,
        slug: str,
        theme_id: str,
        wedding_date: str | None = None,
        ttl_hours: int = PENDING_SIGNUP_TTL_HOURS,
    ) -> PendingSignup:
        pending = PendingSignup(
            stripe_session_id=stripe_session_id,
            email=email,
            partner1_name=partner1_name,
            partner2_name=partner2_name,
            slug=slug,
            theme_id=theme_id,
            wedding_date=wedding_date or None,
            checkout_status=CheckoutStatus.pending.value,
            expires_at=datetime.now(timezone.utc) + timedelta(hours=ttl_hours),
        )
        self.db.add(pending)
        self.db.commit()
        self.db.refresh(pending)
        return pending

    def delete_expired(self, now: datetime | None = None) -> int:
        """Delete signups past expires_at that never completed. Completed records are kept."""
        now = now or datetime.now(timezone.utc)
        deleted = self.db.query(PendingSignup).filter(
            PendingSignup.expires_at < now,
            PendingSignup.completed_at.is_(None),
        ).delete(synchronize_session=False)
        if deleted:
            create_log(
                self.db,
                CATEGORY_SIGNUP_CLEANUP,
                "Expired pending signups deleted",
                f"Deleted {deleted} pending signup(s) that expired without payment.",
                meta={"deleted": deleted},
            )
        self.db.commit()
        return deleted


def run_pending_signup_cleanup_job() -> None:
    """Delete all expired, never-completed pending signups."""
    db: Session = SessionLocal()
    try:
        deleted = SignupStore(db).delete_expired()
        if deleted:
            log.info("Pending signup cleanup: deleted %d expired signup(s).", deleted)
    finally:
        db.close()
