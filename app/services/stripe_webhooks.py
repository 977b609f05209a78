"""Stripe webhook handling.

Every event id is claimed in the stripe_events ledger before it is handled, so a
redelivered event is acknowledged without side effects. checkout.session.completed
for a new signup goes through the same idempotent provisioning as verify-payment;
subscription and invoice events update the owning profile.
"""
import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.errors import ApiError
from app.models.profile import Profile, SubscriptionStatus
from app.models.stripe_event import StripeEvent, StripeEventStatus

log = logging.getLogger("uvicorn.error")

PROCESSED = "processed"
IGNORED = "ignored"
DUPLICATE = "duplicate"
FAILED = "failed"

NEW_SIGNUP = "new_signup"
RENEWAL_YEARS = 1
_ERROR_LEN = 2000


class WebhookProcessingError(Exception):
    """Handling failed in a way Stripe should retry (answered with a 500)."""


def map_subscription_status(stripe_status: str | None) -> str:
    if stripe_status in ("active", "trialing"):
        return SubscriptionStatus.active.value
    if stripe_status == "canceled":
        return SubscriptionStatus.cancelled.value
    return SubscriptionStatus.expired.value


class StripeEventLedger:
    def __init__(self, db: Session):
        self.db = db

    def claim(self, event_id: str, event_type: str) -> bool:
        """True if this caller should handle the event: first delivery, or a retry of a failed one."""
        self.db.add(StripeEvent(
            stripe_event_id=event_id,
            type=event_type,
            status=StripeEventStatus.processing.value,
        ))
        try:
            self.db.commit()
            return True
        except IntegrityError:
            self.db.rollback()
        reclaimed = (
            self.db.query(StripeEvent)
            .filter(
                StripeEvent.stripe_event_id == event_id,
                StripeEvent.status == StripeEventStatus.failed.value,
            )
            .update(
                {StripeEvent.status: StripeEventStatus.processing.value, StripeEvent.error_message: None},
                synchronize_session=False,
            )
        )
        self.db.commit()
        return reclaimed == 1

    def mark_completed(self, event_id: str) -> None:
        self._finish(event_id, StripeEventStatus.completed, None)

    def mark_failed(self, event_id: str, error: str) -> None:
        self._finish(event_id, StripeEventStatus.failed, (error or "")[:_ERROR_LEN])

    def _finish(self, event_id: str, status: StripeEventStatus, error: str | None) -> None:
        self.db.rollback()  # drop anything a failed handler left pending
        self.db.query(StripeEvent).filter(StripeEvent.stripe_event_id == event_id).update(
            {
                StripeEvent.status: status.value,
                StripeEvent.error_message: error,
                StripeEvent.processed_at: datetime.now(timezone.utc),
            },
            synchronize_session=False,
        )
        self.db.commit()


class WebhookProcessor:
    """Claims, dispatches and records one verified event.

    provisioner - AccountProvisioner (provision(session_id)); only used for new signups
    """

    def __init__(self, db: Session, ledger: StripeEventLedger, provisioner):
        self.db = db
        self.ledger = ledger
        self.provisioner = provisioner
        self._handlers = {
            "checkout.session.completed": self._checkout_completed,
            "customer.subscription.updated": self._subscription_updated,
            "customer.subscription.deleted": self._subscription_deleted,
            "invoice.payment_succeeded": self._invoice_paid,
            "invoice.payment_failed": self._invoice_failed,
        }

    def process(self, event: dict) -> str:
        event_id = event.get("id")
        event_type = event.get("type") or ""
        if not event_id:
            raise ValueError("event has no id")
        handler = self._handlers.get(event_type)
        if handler is None:
            log.info("[Webhook] Unhandled event type: %s (%s)", event_type, event_id)
            return IGNORED
        if not self.ledger.claim(event_id, event_type):
            log.info("[Webhook] Duplicate event %s (%s) skipped", event_id, event_type)
            return DUPLICATE

        obj = (event.get("data") or {}).get("object") or {}
        try:
            handler(obj)
        except ApiError as e:
            self.ledger.mark_failed(event_id, f"{e.error}: {e.message or ''}")
            if e.status_code >= 500:
                raise WebhookProcessingError(f"{event_type} {event_id}: {e.error}") from e
            # Client-side failures (unpaid, unknown signup, email taken) will not fix themselves on retry
            log.warning("[Webhook] %s %s not applied: %s", event_type, event_id, e.error)
            return FAILED
        except Exception as e:
            log.exception("[Webhook] Handler error for %s %s", event_type, event_id)
            self.ledger.mark_failed(event_id, f"{type(e).__name__}: {e}")
            raise WebhookProcessingError(f"{event_type} {event_id}") from e
        self.ledger.mark_completed(event_id)
        return PROCESSED

    def _checkout_completed(self, session: dict) -> None:
        metadata = session.get("metadata") or {}
        if metadata.get("type") != NEW_SIGNUP:
            log.info("[Webhook] checkout session %s is not a signup; nothing to do", session.get("id"))
            return
        if session.get("payment_status") != "paid":
            log.info("[Webhook] checkout session %s not paid yet", session.get("id"))
            return
        outcome = self.provisioner.provision(session.get("id"))
        log.info(
            "[Webhook] checkout session %s provisioned slug=%s already_completed=%s",
            session.get("id"), outcome.slug, outcome.already_completed,
        )

    def _profile_for_customer(self, customer_id: str | None) -> Profile | None:
        if not customer_id:
            return None
        profile = self.db.query(Profile).filter(Profile.stripe_customer_id == customer_id).first()
        if profile is None:
            log.info("[Webhook] No profile for customer %s", customer_id)
        return profile

    def _subscription_updated(self, subscription: dict) -> None:
        profile = self._profile_for_customer(subscription.get("customer"))
        if profile is None:
            return
        profile.subscription_status = map_subscription_status(subscription.get("status"))
        period_end = subscription.get("current_period_end")
        profile.subscription_end_date = (
            datetime.fromtimestamp(period_end, tz=timezone.utc) if period_end else datetime.now(timezone.utc)
        )
        self.db.commit()
        log.info("[Webhook] Subscription updated for profile %s: %s", profile.id, profile.subscription_status)

    def _subscription_deleted(self, subscription: dict) -> None:
        profile = self._profile_for_customer(subscription.get("customer"))
        if profile is None:
            return
        profile.subscription_status = SubscriptionStatus.cancelled.value
        self.db.commit()
        log.info("[Webhook] Subscription cancelled for profile %s", profile.id)

    def _invoice_paid(self, invoice: dict) -> None:
        # The first payment is handled by checkout; only renewals extend the subscription
        if invoice.get("billing_reason") != "subscription_cycle":
            return
        profile = self._profile_for_customer(invoice.get("customer"))
        if profile is None:
            return
        profile.subscription_status = SubscriptionStatus.active.value
        profile.subscription_end_date = datetime.now(timezone.utc) + timedelta(days=365 * RENEWAL_YEARS)
        self.db.commit()
        log.info("[Webhook] Subscription renewed for profile %s", profile.id)

    def _invoice_failed(self, invoice: dict) -> None:
        profile = self._profile_for_customer(invoice.get("customer"))
        if profile is None:
            return
        profile.subscription_status = SubscriptionStatus.expired.value
        self.db.commit()
        log.info("[Webhook] Payment failed for profile %s", profile.id)
