from app.schemas.signup import (
    CreateCheckoutRequest,
    CreateCheckoutResponse,
    SlugAvailabilityResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)
