"""Transactional email (Mailgun preferred, SendGrid fallback)."""
import logging
from html import escape

import httpx

from app.config import get_settings

log = logging.getLogger("uvicorn.error")

MAILGUN_US_BASE = "https://api.mailgun.net"
MAILGUN_EU_BASE = "https://api.eu.mailgun.net"


def email_configured() -> bool:
    s = get_settings()
    return bool((s.mailgun_api_key and s.mailgun_domain) or s.sendgrid_api_key)


def send_email(to_email: str, subject: str, html_content: str, text_content: str | None = None) -> bool:
    """Send email via Mailgun (preferred) or SendGrid. Returns True only if the provider accepted it."""
    settings = get_settings()
    if settings.mailgun_api_key and settings.mailgun_domain:
        log.info("[Email] Calling Mailgun API: to=%s subject=%s domain=%s", to_email, subject, settings.mailgun_domain)
        return _send_email_mailgun(to_email, subject, html_content, text_content=text_content, settings=settings)
    if settings.sendgrid_api_key:
        return _send_email_sendgrid(to_email, subject, html_content, text_content=text_content, settings=settings)
    log.warning(
        "[Email] NOT SENT: to=%s subject=%s. Set MAILGUN_API_KEY and MAILGUN_DOMAIN (or SENDGRID_API_KEY) in .env.",
        to_email, subject,
    )
    return False


def _send_email_mailgun(to_email: str, subject: str, html_content: str, text_content: str | None = None, settings=None) -> bool:
    if settings is None:
        settings = get_settings()
    base = (settings.mailgun_base_url or MAILGUN_US_BASE).strip().rstrip("/")
    domain = (settings.mailgun_domain or "").strip().lower()
    from_addr = (settings.mailgun_from_email or "").strip()
    from_domain = from_addr.split("@")[-1].lower() if "@" in from_addr else ""
    if domain and from_domain != domain:
        # Mailgun drops mail whose sender domain differs from the sending domain
        from_addr = f"noreply@{domain}"
    data = {
        "from": f"{settings.mailgun_from_name} <{from_addr}>",
        "to": to_email,
        "subject": subject,
        "text": text_content or "",
        "html": html_content or "",
    }
    try:
        with httpx.Client(timeout=10.0) as client:
            r = client.post(f"{base}/v3/{domain}/messages", auth=("api", settings.mailgun_api_key), data=data)
            if 200 <= r.status_code < 300:
                log.info("[Mailgun] API success: to=%s status=%s", to_email, r.status_code)
                return True
            if r.status_code == 401 and base == MAILGUN_US_BASE:
                log.info("[Mailgun] 401 with US endpoint. Retrying with EU endpoint...")
                r2 = client.post(f"{MAILGUN_EU_BASE}/v3/{domain}/messages", auth=("api", settings.mailgun_api_key), data=data)
                if 200 <= r2.status_code < 300:
                    log.info("[Mailgun] API success (EU): to=%s", to_email)
                    return True
                log.error("[Mailgun] EU request failed: status=%s body=%s", r2.status_code, r2.text[:500])
                return False
            log.error("[Mailgun] API failed: status=%s to=%s body=%s", r.status_code, to_email, r.text[:500])
            return False
    except httpx.HTTPError as e:
        log.error("[Mailgun] Exception: to=%s error=%s: %s", to_email, type(e).__name__, e)
        return False


def _send_email_sendgrid(to_email: str, subject: str, html_content: str, text_content: str | None = None, settings=None) -> bool:
    if settings is None:
        settings = get_settings()
    from sendgrid import SendGridAPIClient
    from sendgrid.helpers.mail import Mail

    message = Mail(
        from_email=(settings.sendgrid_from_email, settings.sendgrid_from_name),
        to_emails=to_email,
        subject=subject,
        html_content=html_content,
        plain_text_content=text_content or "",
    )
    try:
        SendGridAPIClient(settings.sendgrid_api_key).send(message)
        return True
    except Exception as e:  # python-http-client raises per-status HTTPError subclasses
        log.error("[SendGrid] Exception: to=%s error=%s: %s", to_email, type(e).__name__, e)
        return False


def send_welcome_email(to_email: str, couple_names: str, slug: str, magic_link: str) -> bool:
    """Welcome email carrying the one-time sign-in link to the new wedding dashboard."""
    names = escape(couple_names or "")
    site = escape(slug)
    link = escape(magic_link, quote=True)
    subject = "[Reflets de Bonheur] Welcome - your wedding site is ready"
    text = (
        f"Hi {couple_names}, your wedding site /{slug} is ready. "
        f"Sign in with this link to open your dashboard: {magic_link}"
    )
    html = f"""
    <p>Hi {names},</p>
    <p>Your wedding site <strong>/{site}</strong> is ready.</p>
    <p><a href="{link}">Sign in to your dashboard</a>. This link can be used once.</p>
    <p>If the link has expired, use "Forgot password" on the login page.</p>
    <p>- Reflets de Bonheur</p>
    """
    return send_email(to_email, subject, html, text_content=text)


def send_payment_confirmation_email(to_email: str, couple_names: str, slug: str, amount_cents: int, currency: str) -> bool:
    """Receipt-style confirmation sent after the account is created."""
    amount = f"{amount_cents / 100:.2f} {currency.upper()}"
    subject = "[Reflets de Bonheur] Payment confirmed"
    text = f"Hi {couple_names}, we received your payment of {amount} for /{slug}. Thank you!"
    html = f"""
    <p>Hi {escape(couple_names or "")},</p>
    <p>We received your payment of <strong>{amount}</strong> for <strong>/{escape(slug)}</strong>.</p>
    <p>Thank you!</p>
    <p>- Reflets de Bonheur</p>
    """
    return send_email(to_email, subject, html, text_content=text)
