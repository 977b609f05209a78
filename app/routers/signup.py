"""Paid signup: checkout creation, slug availability, payment verification & account provisioning."""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError

from app.config import Settings, get_settings
from app.dependencies import get_payment_verifier, get_provisioner, get_signup_store, rate_limit
from app.errors import ApiError, UpstreamServiceError, ValidationError
from app.schemas.signup import (
    CreateCheckoutRequest,
    CreateCheckoutResponse,
    SlugAvailabilityResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)
from app.services.payments import PaymentProcessorError, PaymentVerifier
from app.services.provisioning import AccountProvisioner
from app.services.signups import SignupStore
from app.services.slugs import THEME_IDS, is_reserved, is_valid_slug_format, normalize_slug, slug_suggestions

log = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/signup", tags=["signup"])

INVALID_SLUG_MESSAGE = "URL must be 3-50 characters, lowercase letters, numbers, and hyphens only."


def _validate_slug(slug: str) -> None:
    if not is_valid_slug_format(slug):
        raise ValidationError("Invalid slug format", INVALID_SLUG_MESSAGE, field="slug")
    if is_reserved(slug):
        raise ValidationError("Slug reserved", "This URL is reserved and cannot be used.", field="slug")


@router.get("/check-slug", response_model=SlugAvailabilityResponse, response_model_exclude_none=True)
def check_slug(
    slug: str,
    _limited: None = Depends(rate_limit("check_slug")),
    store: SignupStore = Depends(get_signup_store),
):
    normalized = normalize_slug(slug)
    if not is_valid_slug_format(normalized):
        return SlugAvailabilityResponse(slug=normalized, available=False, reason="invalid_format")
    if is_reserved(normalized):
        return SlugAvailabilityResponse(slug=normalized, available=False, reason="reserved")
    if store.slug_taken(normalized):
        suggestions = [s for s in slug_suggestions(normalized) if not store.slug_taken(s)]
        return SlugAvailabilityResponse(slug=normalized, available=False, reason="taken", suggestions=suggestions)
    return SlugAvailabilityResponse(slug=normalized, available=True)


@router.post("/create-checkout", response_model=CreateCheckoutResponse, response_model_by_alias=True)
def create_checkout(
    data: CreateCheckoutRequest,
    _limited: None = Depends(rate_limit("create_checkout")),
    settings: Settings = Depends(get_settings),
    store: SignupStore = Depends(get_signup_store),
    payments: PaymentVerifier = Depends(get_payment_verifier),
):
    """Validate the wizard data, open a Stripe Checkout session and park the signup until it is paid."""
    partner1 = (data.partner1_name or "").strip()
    partner2 = (data.partner2_name or "").strip()
    if not partner1 or not partner2:
        raise ValidationError("Missing required fields", "Both partner names are required.")
    if data.theme_id not in THEME_IDS:
        raise ValidationError("Invalid theme", "Please select a valid theme.", field="theme_id")
    slug = normalize_slug(data.slug)
    _validate_slug(slug)
    if store.slug_taken(slug):
        raise ValidationError("Slug taken", "This URL is already in use. Please choose another.", field="slug")

    site_url = settings.site_url.rstrip("/")
    try:
        session = payments.create_checkout_session(
            email=str(data.email),
            slug=slug,
            product_name=settings.checkout_product_name,
            product_description=settings.checkout_product_description,
            unit_amount=settings.checkout_price_cents,
            currency=settings.checkout_currency,
            success_url=f"{site_url}/signup/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{site_url}/signup/cancel",
        )
    except PaymentProcessorError:
        raise UpstreamServiceError()

    try:
        store.create(
            stripe_session_id=session.id,
            email=str(data.email),
            partner1_name=partner1,
            partner2_name=partner2,
            slug=slug,
            theme_id=data.theme_id,
            wedding_date=data.wedding_date,
            ttl_hours=settings.pending_signup_ttl_hours,
        )
    except SQLAlchemyError:
        log.exception("[Signup] Failed to store pending signup for session_id=%s", session.id)
        raise ApiError("Failed to prepare checkout", "Unable to prepare your account. Please try again.")
    log.info("[Signup] Checkout session created: session_id=%s slug=%s", session.id, slug)
    return CreateCheckoutResponse(session_id=session.id, url=session.url)


@router.post("/verify-payment", response_model=VerifyPaymentResponse, response_model_exclude_none=True)
def verify_payment(
    data: VerifyPaymentRequest | None = None,
    _limited: None = Depends(rate_limit("verify_payment")),
    provisioner: AccountProvisioner = Depends(get_provisioner),
):
    """Create the paid account for a checkout session. Safe to call repeatedly for the same session."""
    session_id = data.session_id if data else None
    try:
        outcome = provisioner.provision(session_id)
    except ApiError:
        raise
    except Exception:
        log.exception("[Signup] verify-payment failed session_id=%s", session_id)
        raise UpstreamServiceError()
    return VerifyPaymentResponse.from_outcome(outcome)
