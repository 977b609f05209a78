"""Atomic account creation from a paid pending signup.

Profile, Wedding, pending_signups.completed_at and the audit entry are written in a
single database transaction: either all of them are committed or none are. The caller
creates the auth identity first and must delete it if this raises.
"""
import enum
import logging
import secrets
from dataclasses import dataclass
from datetime import date, datetime, timezone

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from app.models.pending_signup import PendingSignup, CheckoutStatus
from app.models.profile import Profile, SubscriptionStatus
from app.models.wedding import Wedding, default_wedding_config
from app.services.audit_log import create_log, CATEGORY_ACCOUNT_CREATED

log = logging.getLogger("uvicorn.error")

GUEST_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
GUEST_CODE_LENGTH = 6
UNIQUE_VIOLATION = "23505"


class AccountFailure(str, enum.Enum):
    signup_not_found = "signup_not_found"
    already_completed = "already_completed"
    slug_conflict = "slug_conflict"
    integrity_violation = "integrity_violation"
    database_error = "database_error"


class AccountTransactionError(Exception):
    def __init__(self, kind: AccountFailure, detail: str, code: str | None = None):
        super().__init__(f"{kind.value}: {detail}")
        self.kind = kind
        self.detail = detail
        self.code = code


@dataclass(frozen=True)
class AccountResult:
    user_id: str
    wedding_id: str
    email: str
    slug: str
    couple_names: str
    guest_code: str


def generate_guest_code(length: int = GUEST_CODE_LENGTH) -> str:
    return "".join(secrets.choice(GUEST_CODE_ALPHABET) for _ in range(length))


def _add_years(d: datetime, years: int) -> datetime:
    try:
        return d.replace(year=d.year + years)
    except ValueError:  # Feb 29
        return d.replace(year=d.year + years, day=28)


def _parse_wedding_date(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def _classify_integrity_error(e: IntegrityError) -> tuple[AccountFailure, str | None]:
    orig = getattr(e, "orig", None)
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    text = str(orig or e).lower()
    if "slug" in text and (code in (None, UNIQUE_VIOLATION)):
        return AccountFailure.slug_conflict, code or UNIQUE_VIOLATION
    return AccountFailure.integrity_violation, code


class AccountTransaction:
    def __init__(self, session_factory: sessionmaker, subscription_years: int = 2):
        self.session_factory = session_factory
        self.subscription_years = subscription_years

    def run(self, user_id: str, pending_signup_id: str, customer_id: str | None = None) -> AccountResult:
        db = self.session_factory()
        try:
            signup = (
                db.query(PendingSignup)
                .filter(PendingSignup.id == pending_signup_id)
                .with_for_update()
                .first()
            )
            if not signup:
                raise AccountTransactionError(AccountFailure.signup_not_found, f"pending signup {pending_signup_id} not found")
            if signup.completed_at is not None:
                raise AccountTransactionError(AccountFailure.already_completed, f"completed_at={signup.completed_at}")
            if db.query(Wedding.id).filter(Wedding.slug == signup.slug).first():
                raise AccountTransactionError(AccountFailure.slug_conflict, f"slug already taken: {signup.slug}", UNIQUE_VIOLATION)

            now = datetime.now(timezone.utc)
            # Serialization point for concurrent duplicates: only one caller flips completed_at
            claimed = (
                db.query(PendingSignup)
                .filter(PendingSignup.id == pending_signup_id, PendingSignup.completed_at.is_(None))
                .update(
                    {
                        PendingSignup.completed_at: now,
                        PendingSignup.checkout_status: CheckoutStatus.completed.value,
                    },
                    synchronize_session=False,
                )
            )
            if claimed != 1:
                raise AccountTransactionError(AccountFailure.already_completed, "completed by a concurrent request")

            couple_names = signup.couple_names
            guest_code = generate_guest_code()
            db.add(Profile(
                id=user_id,
                email=signup.email,
                full_name=couple_names,
                subscription_status=SubscriptionStatus.active.value,
                subscription_end_date=_add_years(now, self.subscription_years),
                stripe_customer_id=customer_id or None,
            ))
            db.flush()
            wedding = Wedding(
                owner_id=user_id,
                slug=signup.slug,
                pin_code=guest_code,
                name=f"{couple_names}'s Wedding",
                bride_name=signup.partner1_name,
                groom_name=signup.partner2_name,
                wedding_date=_parse_wedding_date(signup.wedding_date),
                config=default_wedding_config(signup.theme_id),
                is_published=True,
            )
            db.add(wedding)
            db.flush()
            create_log(
                db,
                CATEGORY_ACCOUNT_CREATED,
                "Account created from payment",
                f"Wedding '{signup.slug}' created for {signup.email}.",
                actor_user_id=user_id,
                actor_email=signup.email,
                meta={"pending_signup_id": pending_signup_id, "wedding_id": wedding.id, "slug": signup.slug},
            )
            result = AccountResult(
                user_id=user_id,
                wedding_id=wedding.id,
                email=signup.email,
                slug=signup.slug,
                couple_names=couple_names,
                guest_code=guest_code,
            )
            db.commit()
            return result
        except AccountTransactionError:
            db.rollback()
            raise
        except IntegrityError as e:
            db.rollback()
            kind, code = _classify_integrity_error(e)
            raise AccountTransactionError(kind, str(getattr(e, "orig", e)), code) from e
        except SQLAlchemyError as e:
            db.rollback()
            raise AccountTransactionError(AccountFailure.database_error, f"{type(e).__name__}: {e}") from e
        finally:
            db.close()
