import os
import sys
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if repo_root not in sys.path:
    sys.path.insert(0, repo_root)

# Before any app import: settings are cached on first use
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_dummy")
os.environ.setdefault("SUPABASE_URL", "https://auth.example.test")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "service-role-dummy")
os.environ.setdefault("SITE_URL", "https://reflets.example.test")

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from app.database import Base  # noqa: E402
from app.models import PendingSignup  # noqa: E402
from app.services.accounts import AccountResult  # noqa: E402
from app.services.payments import PaymentVerification  # noqa: E402
from app.services.provisioning import AccountProvisioner  # noqa: E402

SITE_URL = "https://reflets.example.test"


def make_signup(**overrides) -> PendingSignup:
    values = {
        "id": "pending-1",
        "stripe_session_id": "cs_test_123",
        "email": "test@example.com",
        "partner1_name": "Alice",
        "partner2_name": "Bob",
        "slug": "alice-bob",
        "theme_id": "classic",
        "wedding_date": "2026-06-15",
        "checkout_status": "pending",
        "expires_at": datetime.now(timezone.utc) + timedelta(hours=24),
        "completed_at": None,
    }
    values.update(overrides)
    return PendingSignup(**values)


def make_account(**overrides) -> AccountResult:
    values = {
        "user_id": "user-123",
        "wedding_id": "wedding-123",
        "email": "test@example.com",
        "slug": "alice-bob",
        "couple_names": "Alice & Bob",
        "guest_code": "ABC234",
    }
    values.update(overrides)
    return AccountResult(**values)


@pytest.fixture
def collaborators():
    """Mocks for every provisioning collaborator, wired for the happy path."""
    payments = Mock(name="payments")
    payments.verify.return_value = PaymentVerification(paid=True, status="paid", customer_id="cus_test_123")
    signups = Mock(name="signups")
    signups.find_by_session_id.return_value = make_signup()
    identities = Mock(name="identities")
    identities.create.return_value = "user-123"
    identities.generate_magic_link.return_value = "https://auth.example.test/verify?token=magic"
    accounts = Mock(name="accounts")
    accounts.run.return_value = make_account()
    notifier = Mock(name="notifier")
    notifier.send_welcome_email.return_value = True
    notifier.send_payment_confirmation_email.return_value = True
    audit = Mock(name="audit")
    return {
        "payments": payments,
        "signups": signups,
        "identities": identities,
        "accounts": accounts,
        "notifier": notifier,
        "audit": audit,
    }


@pytest.fixture
def provisioner(collaborators):
    return AccountProvisioner(**collaborators, site_url=SITE_URL, price_cents=19900, currency="eur")


@pytest.fixture
def session_factory(tmp_path):
    """File-backed SQLite so separate sessions get separate connections."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()
