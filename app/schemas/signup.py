"""Signup & payment verification schemas."""
from urllib.parse import urlencode

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from app.services.provisioning import ProvisioningOutcome

ACCOUNT_CREATED_EMAIL_FAILED = "account_created_email_failed"


class CreateCheckoutRequest(BaseModel):
    email: EmailStr
    partner1_name: str
    partner2_name: str
    slug: str
    theme_id: str
    wedding_date: str | None = None


class CreateCheckoutResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(serialization_alias="sessionId")
    url: str | None = None


class SlugAvailabilityResponse(BaseModel):
    slug: str
    available: bool
    reason: str | None = None
    suggestions: list[str] = []


class VerifyPaymentRequest(BaseModel):
    session_id: str | None = None


class VerifyPaymentResponse(BaseModel):
    """Never carries credentials or session tokens: the user signs in via the emailed link."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    redirect: str
    message: str
    slug: str | None = None
    already_completed: bool | None = Field(default=None, serialization_alias="alreadyCompleted")
    needs_password_reset: bool | None = Field(default=None, serialization_alias="needsPasswordReset")

    @classmethod
    def from_outcome(cls, outcome: ProvisioningOutcome) -> "VerifyPaymentResponse":
        if outcome.already_completed:
            return cls(
                slug=outcome.slug,
                redirect=f"/{outcome.slug}/admin",
                already_completed=True,
                message="Your account has already been created. Please check your email for your sign-in link or log in.",
            )
        if outcome.access_link_sent:
            return cls(
                redirect=f"/{outcome.slug}/signup/check-email",
                message="Account created! Please check your email for a sign-in link to your wedding dashboard.",
            )
        query = urlencode({"email": outcome.email, "message": ACCOUNT_CREATED_EMAIL_FAILED})
        return cls(
            redirect=f"/connexion?{query}",
            needs_password_reset=True,
            message=(
                "Account created! We could not send your sign-in link. Please check your email later, "
                "or use password reset on the login page to choose a password."
            ),
        )
