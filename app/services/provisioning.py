"""Payment-to-account provisioning.

A small state machine sequences the collaborators:

    verifying_payment -> checking_idempotency -> already_completed
                                              -> creating_identity -> running_transaction
                                                     -> sending_access_link -> succeeded
                                                     -> rolling_back -> failed | already_completed

Only creating_identity produces something that must be compensated: every exit from
running_transaction other than success goes through rolling_back, which deletes the
identity exactly once.
"""
import enum
import logging
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError

from app.errors import ApiError, ConflictError, NotFoundError, UpstreamServiceError, ValidationError
from app.services.accounts import AccountFailure, AccountResult, AccountTransactionError
from app.services.audit_log import CATEGORY_ORPHANED_IDENTITY, CATEGORY_PROVISIONING_FAILED
from app.services.identity import IdentityExistsError, IdentityServiceError
from app.services.payments import PaymentProcessorError, PaymentVerification

log = logging.getLogger("uvicorn.error")

ACCOUNT_EXISTS_CODE = "ACCOUNT_EXISTS_OR_ERROR"


class ProvisioningState(str, enum.Enum):
    verifying_payment = "verifying_payment"
    checking_idempotency = "checking_idempotency"
    creating_identity = "creating_identity"
    running_transaction = "running_transaction"
    sending_access_link = "sending_access_link"
    rolling_back = "rolling_back"
    already_completed = "already_completed"
    succeeded = "succeeded"
    failed = "failed"


TERMINAL_STATES = frozenset({
    ProvisioningState.already_completed,
    ProvisioningState.succeeded,
    ProvisioningState.failed,
})


@dataclass
class ProvisioningRun:
    session_id: str | None
    state: ProvisioningState = ProvisioningState.verifying_payment
    history: list[ProvisioningState] = field(default_factory=list)

    payment: PaymentVerification | None = None
    pending_signup_id: str | None = None
    email: str | None = None
    slug: str | None = None
    couple_names: str | None = None

    identity_id: str | None = None
    account: AccountResult | None = None
    failure_kind: str | None = None
    error: ApiError | None = None
    after_rollback: ProvisioningState = ProvisioningState.failed
    rollback_succeeded: bool | None = None
    access_link_sent: bool = False


@dataclass(frozen=True)
class ProvisioningOutcome:
    slug: str
    email: str
    already_completed: bool = False
    access_link_sent: bool = False


class AccountProvisioner:
    """Orchestrates one provisioning attempt. Collaborators are injected; nothing is shared between runs.

    payments   - PaymentVerifier-like: verify(session_id)
    signups    - SignupStore-like: find_by_session_id(session_id)
    identities - IdentityProvisioner-like: create / delete / generate_magic_link
    accounts   - AccountTransaction-like: run(user_id, pending_signup_id, customer_id)
    notifier   - send_welcome_email / send_payment_confirmation_email (app.services.notifications)
    audit      - optional AuditTrail
    """

    def __init__(
        self,
        payments,
        signups,
        identities,
        accounts,
        notifier,
        audit=None,
        *,
        site_url: str,
        price_cents: int = 0,
        currency: str = "eur",
    ):
        self.payments = payments
        self.signups = signups
        self.identities = identities
        self.accounts = accounts
        self.notifier = notifier
        self.audit = audit
        self.site_url = site_url.rstrip("/")
        self.price_cents = price_cents
        self.currency = currency
        self._handlers = {
            ProvisioningState.verifying_payment: self._verify_payment,
            ProvisioningState.checking_idempotency: self._check_idempotency,
            ProvisioningState.creating_identity: self._create_identity,
            ProvisioningState.running_transaction: self._run_transaction,
            ProvisioningState.sending_access_link: self._send_access_link,
            ProvisioningState.rolling_back: self._roll_back,
        }

    def run(self, session_id: str | None) -> ProvisioningRun:
        """Drive the state machine to a terminal state. Never raises for expected failures."""
        run = ProvisioningRun(session_id=(session_id or "").strip() or None)
        while run.state not in TERMINAL_STATES:
            run.history.append(run.state)
            run.state = self._handlers[run.state](run)
        run.history.append(run.state)
        return run

    def provision(self, session_id: str | None) -> ProvisioningOutcome:
        """Run provisioning; raises the ApiError of a failed run."""
        run = self.run(session_id)
        if run.state is ProvisioningState.failed:
            raise run.error or UpstreamServiceError()
        return ProvisioningOutcome(
            slug=run.slug,
            email=run.email,
            already_completed=run.state is ProvisioningState.already_completed,
            access_link_sent=run.access_link_sent,
        )

    def _verify_payment(self, run: ProvisioningRun) -> ProvisioningState:
        if not run.session_id:
            run.error = ValidationError("Missing session ID", "Stripe session ID is required.", field="session_id")
            return ProvisioningState.failed
        try:
            run.payment = self.payments.verify(run.session_id)
        except PaymentProcessorError:
            run.error = UpstreamServiceError()
            return ProvisioningState.failed
        if not run.payment.paid:
            run.error = ValidationError("Payment not completed", "Payment has not been completed yet.")
            return ProvisioningState.failed
        return ProvisioningState.checking_idempotency

    def _check_idempotency(self, run: ProvisioningRun) -> ProvisioningState:
        try:
            signup = self.signups.find_by_session_id(run.session_id)
        except SQLAlchemyError:
            log.exception("[Provisioning] pending signup lookup failed session_id=%s", run.session_id)
            run.error = UpstreamServiceError()
            return ProvisioningState.failed
        if signup is None:
            log.warning("[Provisioning] pending signup not found session_id=%s", run.session_id)
            run.error = NotFoundError(
                "Pending signup not found",
                "Unable to find your signup information. Please contact support.",
            )
            return ProvisioningState.failed
        run.pending_signup_id = signup.id
        run.email = signup.email
        run.slug = signup.slug
        run.couple_names = signup.couple_names
        if signup.completed_at is not None:
            log.info("[Provisioning] session_id=%s already completed (slug=%s)", run.session_id, run.slug)
            return ProvisioningState.already_completed
        return ProvisioningState.creating_identity

    def _create_identity(self, run: ProvisioningRun) -> ProvisioningState:
        try:
            run.identity_id = self.identities.create(run.email, full_name=run.couple_names)
        except IdentityExistsError:
            # A concurrent duplicate may have won the race and created the account meanwhile
            try:
                latest = self.signups.find_by_session_id(run.session_id)
            except SQLAlchemyError:
                log.exception("[Provisioning] pending signup re-read failed session_id=%s", run.session_id)
                run.error = UpstreamServiceError()
                return ProvisioningState.failed
            if latest is not None and latest.completed_at is not None:
                log.info("[Provisioning] session_id=%s completed concurrently", run.session_id)
                return ProvisioningState.already_completed
            run.error = ConflictError(
                "Account error",
                "An account with this email already exists. Please log in instead or contact support.",
                code=ACCOUNT_EXISTS_CODE,
                field="email",
            )
            return ProvisioningState.failed
        except IdentityServiceError:
            log.error("[Provisioning] identity creation failed session_id=%s", run.session_id)
            run.error = UpstreamServiceError()
            return ProvisioningState.failed
        return ProvisioningState.running_transaction

    def _run_transaction(self, run: ProvisioningRun) -> ProvisioningState:
        customer_id = run.payment.customer_id if run.payment else None
        try:
            run.account = self.accounts.run(run.identity_id, run.pending_signup_id, customer_id)
        except AccountTransactionError as e:
            run.failure_kind = e.kind.value
            if e.kind is AccountFailure.already_completed:
                log.info(
                    "[Provisioning] session_id=%s completed by a concurrent request; discarding identity %s",
                    run.session_id, run.identity_id,
                )
                run.after_rollback = ProvisioningState.already_completed
                return ProvisioningState.rolling_back
            log.error(
                "[Provisioning] account transaction failed kind=%s code=%s session_id=%s pending_signup_id=%s identity_id=%s detail=%s",
                e.kind.value, e.code, run.session_id, run.pending_signup_id, run.identity_id, e.detail,
            )
            run.error = UpstreamServiceError()
            return ProvisioningState.rolling_back
        except Exception:
            # Whatever went wrong, the identity must not outlive the failed attempt
            log.exception(
                "[Provisioning] unexpected error in account transaction session_id=%s identity_id=%s",
                run.session_id, run.identity_id,
            )
            run.failure_kind = "unexpected"
            run.error = UpstreamServiceError()
            return ProvisioningState.rolling_back
        log.info(
            "[Provisioning] account created session_id=%s user_id=%s wedding_id=%s slug=%s",
            run.session_id, run.account.user_id, run.account.wedding_id, run.account.slug,
        )
        run.slug = run.account.slug
        return ProvisioningState.sending_access_link

    def _roll_back(self, run: ProvisioningRun) -> ProvisioningState:
        try:
            self.identities.delete(run.identity_id)
            run.rollback_succeeded = True
            log.warning("[Provisioning] rolled back identity %s for session_id=%s", run.identity_id, run.session_id)
        except Exception as e:
            run.rollback_succeeded = False
            log.critical(
                "[Provisioning] ORPHANED IDENTITY identity_id=%s email=%s pending_signup_id=%s: rollback failed (%s: %s). "
                "Remove it with scripts/delete_orphaned_identity.py",
                run.identity_id, run.email, run.pending_signup_id, type(e).__name__, e,
            )
            self._record(
                CATEGORY_ORPHANED_IDENTITY,
                "Orphaned auth identity",
                f"Identity {run.identity_id} could not be deleted after a failed provisioning attempt.",
                run,
            )
        if run.after_rollback is ProvisioningState.failed:
            self._record(
                CATEGORY_PROVISIONING_FAILED,
                "Provisioning failed after payment",
                f"Account creation failed ({run.failure_kind}) for slug '{run.slug}'.",
                run,
            )
        return run.after_rollback

    def _send_access_link(self, run: ProvisioningRun) -> ProvisioningState:
        redirect_to = f"{self.site_url}/{run.slug}/admin"
        try:
            link = self.identities.generate_magic_link(run.email, redirect_to)
            run.access_link_sent = bool(self.notifier.send_welcome_email(run.email, run.couple_names, run.slug, link))
        except Exception as e:
            log.error("[Provisioning] magic link email failed for %s: %s: %s", run.email, type(e).__name__, e)
            run.access_link_sent = False
        if not run.access_link_sent:
            log.warning("[Provisioning] no sign-in email for slug=%s; user must reset password at login", run.slug)
        try:
            self.notifier.send_payment_confirmation_email(
                run.email, run.couple_names, run.slug, self.price_cents, self.currency,
            )
        except Exception as e:
            log.error("[Provisioning] payment confirmation email failed for %s: %s: %s", run.email, type(e).__name__, e)
        return ProvisioningState.succeeded

    def _record(self, category: str, title: str, message: str, run: ProvisioningRun) -> None:
        if self.audit is None:
            return
        self.audit.record(
            category,
            title,
            message,
            actor_user_id=run.identity_id,
            actor_email=run.email,
            meta={
                "session_id": run.session_id,
                "pending_signup_id": run.pending_signup_id,
                "failure_kind": run.failure_kind,
                "rollback_succeeded": run.rollback_succeeded,
            },
        )
