"""Provisioning state machine: idempotency, rollback and error mapping."""
import logging
from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import OperationalError

from app.errors import ApiError, ConflictError, NotFoundError, UpstreamServiceError, ValidationError, GENERIC_MESSAGE
from app.services.accounts import AccountFailure, AccountTransactionError
from app.services.identity import IdentityExistsError, IdentityServiceError
from app.services.payments import PaymentProcessorError, PaymentVerification
from app.services.provisioning import ProvisioningState

from tests.conftest import make_signup

S = ProvisioningState


def test_happy_path_provisions_once_and_sends_magic_link(provisioner, collaborators):
    run = provisioner.run("cs_test_123")

    assert run.state is S.succeeded
    assert run.history == [
        S.verifying_payment, S.checking_idempotency, S.creating_identity,
        S.running_transaction, S.sending_access_link, S.succeeded,
    ]
    collaborators["identities"].create.assert_called_once_with("test@example.com", full_name="Alice & Bob")
    collaborators["accounts"].run.assert_called_once_with("user-123", "pending-1", "cus_test_123")
    collaborators["identities"].delete.assert_not_called()
    collaborators["identities"].generate_magic_link.assert_called_once_with(
        "test@example.com", "https://reflets.example.test/alice-bob/admin",
    )
    collaborators["notifier"].send_welcome_email.assert_called_once_with(
        "test@example.com", "Alice & Bob", "alice-bob", "https://auth.example.test/verify?token=magic",
    )
    assert run.access_link_sent is True


def test_provision_returns_outcome(provisioner):
    outcome = provisioner.provision("cs_test_123")
    assert outcome.slug == "alice-bob"
    assert outcome.email == "test@example.com"
    assert outcome.already_completed is False
    assert outcome.access_link_sent is True


@pytest.mark.parametrize("session_id", [None, "", "   "])
def test_missing_session_id_fails_without_side_effects(provisioner, collaborators, session_id):
    with pytest.raises(ValidationError) as exc:
        provisioner.provision(session_id)
    assert exc.value.status_code == 400
    assert "session id" in exc.value.error.lower()
    collaborators["payments"].verify.assert_not_called()
    collaborators["signups"].find_by_session_id.assert_not_called()


def test_unpaid_session_never_reaches_identity_or_transaction(provisioner, collaborators):
    collaborators["payments"].verify.return_value = PaymentVerification(paid=False, status="unpaid")

    with pytest.raises(ValidationError) as exc:
        provisioner.provision("cs_test_123")

    assert exc.value.error == "Payment not completed"
    assert collaborators["identities"].create.call_count == 0
    assert collaborators["accounts"].run.call_count == 0


def test_processor_error_is_generic_500(provisioner, collaborators):
    collaborators["payments"].verify.side_effect = PaymentProcessorError("Stripe API error: invalid key sk_live_xxx")

    with pytest.raises(UpstreamServiceError) as exc:
        provisioner.provision("cs_test_123")

    body = exc.value.to_body()
    assert exc.value.status_code == 500
    assert body == {"error": "Internal server error", "message": GENERIC_MESSAGE}
    collaborators["signups"].find_by_session_id.assert_not_called()


def test_signup_not_found_is_404(provisioner, collaborators):
    collaborators["signups"].find_by_session_id.return_value = None

    with pytest.raises(NotFoundError) as exc:
        provisioner.provision("cs_test_123")

    assert exc.value.status_code == 404
    collaborators["identities"].create.assert_not_called()


def test_already_completed_signup_short_circuits(provisioner, collaborators):
    collaborators["signups"].find_by_session_id.return_value = make_signup(
        completed_at=datetime(2026, 1, 10, 12, 0, tzinfo=timezone.utc),
    )

    run = provisioner.run("cs_test_123")

    assert run.state is S.already_completed
    assert run.slug == "alice-bob"
    assert run.history == [S.verifying_payment, S.checking_idempotency, S.already_completed]
    assert collaborators["identities"].create.call_count == 0
    assert collaborators["accounts"].run.call_count == 0
    collaborators["notifier"].send_welcome_email.assert_not_called()


def test_duplicate_email_is_400_with_account_exists_code(provisioner, collaborators):
    collaborators["identities"].create.side_effect = IdentityExistsError("User has already been registered")

    with pytest.raises(ConflictError) as exc:
        provisioner.provision("cs_test_123")

    assert exc.value.status_code == 400
    assert exc.value.code == "ACCOUNT_EXISTS_OR_ERROR"
    assert "already exists" in exc.value.message
    collaborators["accounts"].run.assert_not_called()
    collaborators["identities"].delete.assert_not_called()


def test_duplicate_email_after_concurrent_completion_is_already_completed(provisioner, collaborators):
    collaborators["identities"].create.side_effect = IdentityExistsError("User has already been registered")
    collaborators["signups"].find_by_session_id.side_effect = [
        make_signup(),
        make_signup(completed_at=datetime.now(timezone.utc)),
    ]

    outcome = provisioner.provision("cs_test_123")

    assert outcome.already_completed is True
    assert outcome.slug == "alice-bob"
    collaborators["accounts"].run.assert_not_called()


def test_identity_service_error_is_generic_500_without_rollback(provisioner, collaborators):
    collaborators["identities"].create.side_effect = IdentityServiceError("connect timeout")

    with pytest.raises(UpstreamServiceError):
        provisioner.provision("cs_test_123")

    collaborators["identities"].delete.assert_not_called()


def test_transaction_failure_rolls_back_identity_exactly_once(provisioner, collaborators):
    collaborators["accounts"].run.side_effect = AccountTransactionError(
        AccountFailure.slug_conflict, 'duplicate key value violates unique constraint "weddings_slug_key"', "23505",
    )

    run = provisioner.run("cs_test_123")

    assert run.state is S.failed
    assert run.history[-3:] == [S.running_transaction, S.rolling_back, S.failed]
    collaborators["identities"].delete.assert_called_once_with("user-123")
    assert run.rollback_succeeded is True
    assert run.error.status_code == 500
    assert run.error.to_body()["message"] == GENERIC_MESSAGE
    assert "weddings_slug_key" not in str(run.error.to_body())
    collaborators["notifier"].send_welcome_email.assert_not_called()


@pytest.mark.parametrize("kind", [
    AccountFailure.signup_not_found,
    AccountFailure.integrity_violation,
    AccountFailure.database_error,
])
def test_every_transaction_failure_kind_rolls_back(provisioner, collaborators, kind):
    collaborators["accounts"].run.side_effect = AccountTransactionError(kind, "boom")

    with pytest.raises(UpstreamServiceError):
        provisioner.provision("cs_test_123")

    assert collaborators["identities"].delete.call_count == 1


def test_unexpected_transaction_exception_still_rolls_back(provisioner, collaborators):
    collaborators["accounts"].run.side_effect = RuntimeError("connection reset")

    with pytest.raises(UpstreamServiceError):
        provisioner.provision("cs_test_123")

    collaborators["identities"].delete.assert_called_once_with("user-123")


def test_rollback_failure_logs_critical_and_keeps_original_error(provisioner, collaborators, caplog):
    caplog.set_level(logging.INFO, logger="uvicorn.error")
    collaborators["accounts"].run.side_effect = AccountTransactionError(AccountFailure.database_error, "Transaction failed")
    collaborators["identities"].delete.side_effect = IdentityServiceError("User not found")

    run = provisioner.run("cs_test_123")

    assert run.state is S.failed
    assert isinstance(run.error, UpstreamServiceError)
    assert run.rollback_succeeded is False
    critical = [r for r in caplog.records if r.levelno == logging.CRITICAL]
    assert len(critical) == 1
    assert "user-123" in critical[0].getMessage()
    categories = [c.args[0] for c in collaborators["audit"].record.call_args_list]
    assert categories == ["orphaned_identity", "provisioning_failed"]


def test_concurrent_completion_inside_transaction_is_idempotent_success(provisioner, collaborators):
    collaborators["accounts"].run.side_effect = AccountTransactionError(
        AccountFailure.already_completed, "completed by a concurrent request",
    )

    run = provisioner.run("cs_test_123")

    assert run.state is S.already_completed
    assert run.history[-3:] == [S.running_transaction, S.rolling_back, S.already_completed]
    collaborators["identities"].delete.assert_called_once_with("user-123")
    collaborators["audit"].record.assert_not_called()
    outcome = provisioner.provision("cs_test_123")
    assert outcome.already_completed is True


def test_magic_link_failure_downgrades_to_password_reset(provisioner, collaborators):
    collaborators["identities"].generate_magic_link.side_effect = IdentityServiceError("Email service unavailable")

    outcome = provisioner.provision("cs_test_123")

    assert outcome.access_link_sent is False
    assert outcome.already_completed is False
    collaborators["identities"].delete.assert_not_called()
    collaborators["notifier"].send_welcome_email.assert_not_called()


def test_welcome_email_not_delivered_downgrades_to_password_reset(provisioner, collaborators):
    collaborators["notifier"].send_welcome_email.return_value = False

    outcome = provisioner.provision("cs_test_123")

    assert outcome.access_link_sent is False


def test_payment_confirmation_failure_does_not_change_outcome(provisioner, collaborators):
    collaborators["notifier"].send_payment_confirmation_email.side_effect = RuntimeError("smtp down")

    outcome = provisioner.provision("cs_test_123")

    assert outcome.access_link_sent is True
    collaborators["notifier"].send_payment_confirmation_email.assert_called_once_with(
        "test@example.com", "Alice & Bob", "alice-bob", 19900, "eur",
    )


def test_api_errors_always_have_error_field(provisioner, collaborators):
    collaborators["payments"].verify.return_value = PaymentVerification(paid=False, status="unpaid")
    with pytest.raises(ApiError) as exc:
        provisioner.provision("cs_test_123")
    assert "error" in exc.value.to_body()


def test_duplicate_email_recheck_database_error_is_failed_run(provisioner, collaborators):
    collaborators["identities"].create.side_effect = IdentityExistsError("User has already been registered")
    collaborators["signups"].find_by_session_id.side_effect = [make_signup(), OperationalError("SELECT", {}, Exception("gone"))]

    run = provisioner.run("cs_test_123")

    assert run.state is S.failed
    assert isinstance(run.error, UpstreamServiceError)
    assert run.history[-2:] == [S.creating_identity, S.failed]
    collaborators["accounts"].run.assert_not_called()
    collaborators["identities"].delete.assert_not_called()
