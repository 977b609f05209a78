"""Reflets de Bonheur signup API – FastAPI application."""
# Load .env before any app code that might read config
from dotenv import load_dotenv
from pathlib import Path
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

import logging

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from app.config import get_settings, database_configured, stripe_configured, stripe_webhook_configured, auth_provider_configured
from app.database import Base, engine
# Import models so Base.metadata has all tables before create_all (schema source of truth)
from app.models import PendingSignup, Profile, Wedding, AuditLog, StripeEvent  # noqa: F401
from app.errors import ApiError, api_error_handler, request_validation_handler
from app.routers import signup, stripe_webhook
from app.services.notifications import email_configured

log = logging.getLogger("uvicorn.error")

settings = get_settings()
app = FastAPI(title=settings.app_name, debug=settings.debug)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(ApiError, api_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)

app.include_router(signup.router)
app.include_router(stripe_webhook.router)


@app.on_event("startup")
def startup():
    if not stripe_configured(settings):
        log.warning("[Stripe] Not configured - checkout and payment verification return 503; set STRIPE_SECRET_KEY in .env")
    if stripe_configured(settings) and not stripe_webhook_configured(settings):
        log.warning("[Stripe] Webhook secret not set - POST /stripe/webhook returns 503; set STRIPE_WEBHOOK_SECRET in .env")
    if not auth_provider_configured(settings):
        log.warning("[Auth] Not configured - payment verification returns 503; set SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY in .env")
    if not email_configured():
        log.warning("[Email] Not configured - new accounts are told to use password reset instead of the sign-in link")
    if not database_configured(settings):
        log.warning("[Database] DATABASE_URL not set - signup endpoints return 503")
    else:
        try:
            Base.metadata.create_all(bind=engine)
        except Exception as e:
            log.warning("Database startup failed (tables skipped). Check DATABASE_URL and network. Error: %s", e)

    try:
        from apscheduler.schedulers.background import BackgroundScheduler
        from app.services.rate_limit import rate_limiter
        scheduler = BackgroundScheduler()
        if settings.pending_signup_cleanup_enabled and database_configured(settings):
            from app.services.signups import run_pending_signup_cleanup_job
            scheduler.add_job(run_pending_signup_cleanup_job, "interval", hours=1)
        scheduler.add_job(rate_limiter.purge_expired, "interval", minutes=5)
        scheduler.start()
    except Exception as e:
        log.warning("Scheduler not started: %s", e)


@app.get("/")
def root():
    return {"app": settings.app_name, "status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}
