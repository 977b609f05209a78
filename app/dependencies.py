"""Shared dependencies: configuration checks, rate limiting, provisioning collaborators."""
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from app.config import (
    Settings,
    get_settings,
    database_configured,
    stripe_configured,
    stripe_webhook_configured,
    auth_provider_configured,
)
from app.database import SessionLocal, get_db
from app.errors import ConfigurationError, RateLimitedError
from app.services import notifications
from app.services.accounts import AccountTransaction
from app.services.audit_log import AuditTrail
from app.services.identity import IdentityProvisioner
from app.services.payments import PaymentVerifier
from app.services.provisioning import AccountProvisioner
from app.services.rate_limit import RATE_LIMITS, RateLimiter, get_client_ip, rate_limiter
from app.services.signups import SignupStore
from app.services.stripe_webhooks import StripeEventLedger, WebhookProcessor


def get_rate_limiter() -> RateLimiter:
    return rate_limiter


def rate_limit(operation: str):
    """Dependency factory: 429 once the client IP exceeds the operation's window."""
    rule = RATE_LIMITS[operation]

    def check(
        request: Request,
        limiter: RateLimiter = Depends(get_rate_limiter),
        settings: Settings = Depends(get_settings),
    ) -> None:
        if not settings.rate_limit_enabled:
            return
        result = limiter.check(get_client_ip(request), rule)
        if not result.allowed:
            raise RateLimitedError(
                "Too many requests",
                "Rate limit exceeded. Please try again later.",
                headers={
                    "Retry-After": str(result.retry_after_seconds or 60),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": result.reset_at_iso,
                },
                extra={"retryAfter": result.retry_after_seconds},
            )

    return check


def require_database(settings: Settings = Depends(get_settings)) -> None:
    if not database_configured(settings):
        raise ConfigurationError("Database not configured", "DATABASE_URL is not set.")


def require_stripe(settings: Settings = Depends(get_settings)) -> None:
    if not stripe_configured(settings):
        raise ConfigurationError("Payment system not configured", "Stripe is not configured.")


def require_stripe_webhook(settings: Settings = Depends(get_settings)) -> None:
    if not stripe_webhook_configured(settings):
        raise ConfigurationError("Webhook not configured", "Set STRIPE_SECRET_KEY and STRIPE_WEBHOOK_SECRET in .env.")


def require_auth_provider(settings: Settings = Depends(get_settings)) -> None:
    if not auth_provider_configured(settings):
        raise ConfigurationError(
            "Authentication service not configured",
            "Set SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY in .env.",
        )


def get_payment_verifier(
    settings: Settings = Depends(get_settings),
    _stripe: None = Depends(require_stripe),
) -> PaymentVerifier:
    return PaymentVerifier(settings.stripe_secret_key)


def get_signup_store(
    db: Session = Depends(get_db),
    _db_ready: None = Depends(require_database),
) -> SignupStore:
    return SignupStore(db)


def get_identity_provisioner(
    settings: Settings = Depends(get_settings),
    _auth: None = Depends(require_auth_provider),
):
    identities = IdentityProvisioner(
        settings.supabase_url,
        settings.supabase_service_role_key,
        timeout=settings.auth_request_timeout_seconds,
    )
    try:
        yield identities
    finally:
        identities.close()


def get_provisioner(
    settings: Settings = Depends(get_settings),
    signups: SignupStore = Depends(get_signup_store),
    payments: PaymentVerifier = Depends(get_payment_verifier),
    identities: IdentityProvisioner = Depends(get_identity_provisioner),
) -> AccountProvisioner:
    return AccountProvisioner(
        payments=payments,
        signups=signups,
        identities=identities,
        accounts=AccountTransaction(SessionLocal, subscription_years=settings.subscription_years),
        notifier=notifications,
        audit=AuditTrail(SessionLocal),
        site_url=settings.site_url,
        price_cents=settings.checkout_price_cents,
        currency=settings.checkout_currency,
    )


def get_webhook_processor(
    db: Session = Depends(get_db),
    _db_ready: None = Depends(require_database),
    provisioner: AccountProvisioner = Depends(get_provisioner),
) -> WebhookProcessor:
    return WebhookProcessor(db, StripeEventLedger(db), provisioner)
