"""Stripe webhook endpoint. Signature-verified; each event id is handled at most once."""
import logging

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse

from app.config import Settings, get_settings
from app.dependencies import get_webhook_processor, require_stripe_webhook
from app.errors import ValidationError
from app.services.payments import WebhookSignatureError, parse_webhook_event
from app.services.stripe_webhooks import WebhookProcessingError, WebhookProcessor

log = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/stripe", tags=["stripe"])


async def raw_body(request: Request) -> bytes:
    # Signature is computed over the exact bytes Stripe sent
    return await request.body()


@router.post("/webhook")
def stripe_webhook(
    payload: bytes = Depends(raw_body),
    stripe_signature: str | None = Header(default=None),
    _configured: None = Depends(require_stripe_webhook),
    settings: Settings = Depends(get_settings),
    processor: WebhookProcessor = Depends(get_webhook_processor),
):
    if not stripe_signature:
        log.error("[Webhook] Missing stripe-signature header")
        raise ValidationError("Missing signature", "Stripe-Signature header is required.")
    try:
        event = parse_webhook_event(payload, stripe_signature, settings.stripe_webhook_secret)
    except WebhookSignatureError as e:
        raise ValidationError("Webhook Error", str(e))

    try:
        status = processor.process(event)
    except (WebhookProcessingError, ValueError):
        return JSONResponse(status_code=500, content={"error": "Webhook handler failed"})
    return {"received": True, "status": status}
