"""
Tests for exception classes.

Covers exception attributes, messages and the HTTP status mapping.
"""

from uuid import uuid4

import pytest
from fastapi import HTTPException

from app.api.errors import to_http_exception
from app.exceptions import (
    ConcurrencyError,
    DataIntegrityError,
    EmailAlreadyRegisteredError,
    IdempotencyConflictError,
    InsufficientBalanceError,
    InsufficientCreditsError,
    InsufficientFundsError,
    InvalidDependencyError,
    InvalidTransitionError,
    PaymentProviderError,
    PayoutBelowMinimumError,
    PlanLimitReachedError,
    PortalError,
    ProjectPausedError,
    ReferralCodeTakenError,
    ResourceNotFoundError,
    RunLimitReachedError,
    SubscriptionExpiredError,
    TaskBlockedError,
    TemplateNotAllowedError,
    UnknownReferralCodeError,
    WebhookUnreachableError,
    WebhookVerificationError,
)


class TestPortalError:
    """Tests for base PortalError."""

    def test_portal_error_is_exception(self):
        """PortalError is a subclass of Exception."""
        assert issubclass(PortalError, Exception)

    @pytest.mark.parametrize(
        "error_type",
        [
            InsufficientFundsError,
            InsufficientCreditsError,
            TaskBlockedError,
            InvalidTransitionError,
            WebhookUnreachableError,
            ResourceNotFoundError,
        ],
    )
    def test_domain_errors_are_portal_errors(self, error_type):
        """Every engine error can be caught as PortalError."""
        assert issubclass(error_type, PortalError)


class TestInsufficientFundsError:
    """Tests for InsufficientFundsError."""

    def test_attributes(self):
        """Exception carries balance and required amounts."""
        exc = InsufficientFundsError(balance_minor=850_000, required_minor=1_000_000)
        assert exc.balance_minor == 850_000
        assert exc.required_minor == 1_000_000

    def test_shortfall(self):
        """Shortfall is what the customer must top up."""
        exc = InsufficientFundsError(balance_minor=850_000, required_minor=1_000_000)
        assert exc.shortfall_minor == 150_000

    def test_shortfall_never_negative(self):
        """A covered amount has no shortfall."""
        assert InsufficientFundsError(500, 100).shortfall_minor == 0


class TestProjectErrors:
    """Tests for project and run errors."""

    def test_run_limit_message(self):
        """Message shows usage against the limit."""
        exc = RunLimitReachedError(uuid4(), 100, 100)
        assert "(100/100)" in str(exc)

    def test_plan_limit_attributes(self):
        """Exception has plan and limit attributes."""
        exc = PlanLimitReachedError("starter", 1)
        assert exc.plan_id == "starter"
        assert exc.max_projects == 1

    def test_webhook_unreachable_without_status(self):
        """Transport failures have no status code."""
        exc = WebhookUnreachableError("https://hooks.example.com/wh", "ConnectError")
        assert exc.status_code is None
        assert "ConnectError" in str(exc)


class TestTaskErrors:
    """Tests for task gate errors."""

    def test_blocked_lists_titles(self):
        """Message names every blocking task."""
        exc = TaskBlockedError(uuid4(), ["Collect GST", "Verify PAN"])
        assert "Collect GST, Verify PAN" in str(exc)

    def test_invalid_dependency_on_new_task(self):
        """New tasks have no id yet."""
        dep = uuid4()
        exc = InvalidDependencyError(None, dep)
        assert exc.task_id is None
        assert str(dep) in str(exc)


class TestCommissionErrors:
    """Tests for commission errors."""

    def test_invalid_transition_message(self):
        """Message names action, entity and status."""
        exc = InvalidTransitionError("commission", "Paid", "void")
        assert str(exc) == "Cannot void commission in status Paid"

    def test_unknown_referral_code(self):
        """Exception keeps the code."""
        assert UnknownReferralCodeError("NOPE").code == "NOPE"


class TestHttpMapping:
    """Tests for engine error to HTTP status mapping."""

    @pytest.mark.parametrize(
        ("exc", "status_code"),
        [
            (ResourceNotFoundError("Project", uuid4()), 404),
            (InsufficientFundsError(0, 100), 402),
            (InsufficientCreditsError(5, 10), 402),
            (SubscriptionExpiredError(uuid4()), 403),
            (ProjectPausedError(uuid4()), 403),
            (PlanLimitReachedError("pro", 3), 409),
            (RunLimitReachedError(uuid4(), 1, 1), 409),
            (TemplateNotAllowedError("invoice-gen", "starter"), 409),
            (TaskBlockedError(uuid4(), ["A"]), 409),
            (InvalidTransitionError("payout", "Processed", "reject"), 409),
            (PayoutBelowMinimumError(50_000, 100_000), 409),
            (InsufficientBalanceError(0, 100_000), 409),
            (ConcurrencyError("site document"), 409),
            (ReferralCodeTakenError("RAHUL20"), 409),
            (EmailAlreadyRegisteredError("asha@example.com"), 409),
            (InvalidDependencyError(None, uuid4()), 422),
            (WebhookVerificationError("bad signature"), 400),
            (PaymentProviderError("down"), 503),
            (ValueError("Task title cannot be empty"), 422),
        ],
    )
    def test_status_codes(self, exc, status_code):
        """Each engine error maps to its HTTP status."""
        http_exc = to_http_exception(exc)
        assert isinstance(http_exc, HTTPException)
        assert http_exc.status_code == status_code

    def test_shortfall_header(self):
        """Insufficient funds tells the client how much to top up."""
        http_exc = to_http_exception(InsufficientFundsError(850_000, 1_000_000))
        assert http_exc.headers == {"X-Shortfall-Minor": "150000"}

    def test_existing_id_header(self):
        """Replays point at the original transaction."""
        existing = uuid4()
        http_exc = to_http_exception(IdempotencyConflictError(existing))
        assert http_exc.headers == {"X-Existing-ID": str(existing)}

    def test_integrity_details_hidden(self):
        """Integrity errors return a generic detail."""
        http_exc = to_http_exception(DataIntegrityError("wallet=-5 for customer x"))
        assert http_exc.status_code == 500
        assert http_exc.detail == "Database integrity error"

    def test_unmapped_error_is_internal(self):
        """Unknown engine errors are 500s."""
        assert to_http_exception(PortalError("boom")).status_code == 500
