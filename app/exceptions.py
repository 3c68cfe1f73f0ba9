"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""

from uuid import UUID


class PortalError(Exception):
    """Base exception for all portal errors."""

    pass


# ============================================================================
# Ledger Errors
# ============================================================================


class InsufficientFundsError(PortalError):
    """Raised when a customer wallet cannot cover a debit."""

    def __init__(self, balance_minor: int, required_minor: int) -> None:
        self.balance_minor = balance_minor
        self.required_minor = required_minor
        super().__init__(
            f"Insufficient wallet balance. Balance: {balance_minor}, Required: {required_minor}"
        )

    @property
    def shortfall_minor(self) -> int:
        """Amount the customer must top up before retrying."""
        return max(0, self.required_minor - self.balance_minor)


class InsufficientCreditsError(PortalError):
    """Raised when a customer has fewer AI credits than an operation costs."""

    def __init__(self, available: int, required: int) -> None:
        self.available = available
        self.required = required
        super().__init__(f"Insufficient AI credits. Available: {available}, Required: {required}")


# ============================================================================
# Project & Run Errors
# ============================================================================


class PlanLimitReachedError(PortalError):
    """Raised when a customer already has as many projects as the plan allows."""

    def __init__(self, plan_id: str, max_projects: int) -> None:
        self.plan_id = plan_id
        self.max_projects = max_projects
        super().__init__(f"Plan {plan_id} allows at most {max_projects} projects")


class TemplateNotAllowedError(PortalError):
    """Raised when a template is restricted to plans the customer is not on."""

    def __init__(self, template_id: str, plan_id: str) -> None:
        self.template_id = template_id
        self.plan_id = plan_id
        super().__init__(f"Template {template_id} is not available on plan {plan_id}")


class RunLimitReachedError(PortalError):
    """Raised when a project has used its whole workflow run allotment."""

    def __init__(self, project_id: UUID, run_count: int, limit: int) -> None:
        self.project_id = project_id
        self.run_count = run_count
        self.limit = limit
        super().__init__(f"Project {project_id} reached its run limit ({run_count}/{limit})")


class SubscriptionExpiredError(PortalError):
    """Raised when a customer subscription is not active."""

    def __init__(self, customer_id: UUID) -> None:
        self.customer_id = customer_id
        super().__init__(f"Subscription for customer {customer_id} has expired")


class ProjectPausedError(PortalError):
    """Raised when running a workflow on a paused project."""

    def __init__(self, project_id: UUID) -> None:
        self.project_id = project_id
        super().__init__(f"Project {project_id} is paused")


class WebhookUnreachableError(PortalError):
    """Raised when a workflow webhook cannot be reached or answers non-2xx."""

    def __init__(self, url: str, reason: str, status_code: int | None = None) -> None:
        self.url = url
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"Webhook unreachable ({url}): {reason}")


# ============================================================================
# Task Errors
# ============================================================================


class TaskBlockedError(PortalError):
    """Raised when a task has unfinished dependencies."""

    def __init__(self, task_id: UUID, blocking_titles: list[str]) -> None:
        self.task_id = task_id
        self.blocking_titles = blocking_titles
        super().__init__(
            f"Task {task_id} is blocked by unfinished tasks: {', '.join(blocking_titles)}"
        )


class InvalidDependencyError(PortalError):
    """Raised when a task dependency does not reference a sibling task."""

    def __init__(self, task_id: UUID | None, dependency_id: UUID) -> None:
        self.task_id = task_id
        self.dependency_id = dependency_id
        super().__init__(f"Invalid dependency {dependency_id} for task {task_id}")


# ============================================================================
# Commission Errors
# ============================================================================


class InsufficientBalanceError(PortalError):
    """Raised when a payout exceeds the partner's withdrawable balance."""

    def __init__(self, balance_minor: int, requested_minor: int) -> None:
        self.balance_minor = balance_minor
        self.requested_minor = requested_minor
        super().__init__(
            f"Insufficient partner balance. Balance: {balance_minor}, Requested: {requested_minor}"
        )


class PayoutBelowMinimumError(PortalError):
    """Raised when a payout request is under the minimum withdrawal amount."""

    def __init__(self, requested_minor: int, minimum_minor: int) -> None:
        self.requested_minor = requested_minor
        self.minimum_minor = minimum_minor
        super().__init__(f"Payout {requested_minor} is below the minimum of {minimum_minor}")


class UnknownReferralCodeError(PortalError):
    """Raised when a referral code does not resolve to a partner."""

    def __init__(self, code: str) -> None:
        self.code = code
        super().__init__(f"Unknown referral code: {code}")


class InvalidTransitionError(PortalError):
    """Raised when a state machine transition is not allowed from the current state."""

    def __init__(self, entity: str, current: str, action: str) -> None:
        self.entity = entity
        self.current = current
        self.action = action
        super().__init__(f"Cannot {action} {entity} in status {current}")


# ============================================================================
# Infrastructure Errors
# ============================================================================


class ResourceNotFoundError(PortalError):
    """Raised when a referenced row doesn't exist or belongs to someone else."""

    def __init__(self, resource: str, resource_id: object) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} not found: {resource_id}")


class DataIntegrityError(PortalError):
    """Raised when data integrity constraint violated."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Data integrity error: {message}")


class IdempotencyConflictError(PortalError):
    """Raised when a payment reference was already applied."""

    def __init__(self, existing_id: UUID) -> None:
        self.existing_id = existing_id
        super().__init__(f"Idempotency conflict: existing ID {existing_id}")


class ConcurrencyError(PortalError):
    """Raised when concurrent modification detected."""

    def __init__(self, resource: str) -> None:
        self.resource = resource
        super().__init__(f"Concurrent modification detected for {resource}")


class PaymentProviderError(PortalError):
    """Raised when payment provider operation fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Payment provider error: {message}")


class WebhookVerificationError(PortalError):
    """Raised when webhook verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Webhook verification error: {message}")


class ReferralCodeTakenError(PortalError):
    """Raised when a partner referral code is already in use."""

    def __init__(self, code: str) -> None:
        self.code = code
        super().__init__(f"Referral code already in use: {code}")


class EmailAlreadyRegisteredError(PortalError):
    """Raised when checkout would create a second customer for an email."""

    def __init__(self, email: str) -> None:
        self.email = email
        super().__init__(f"A customer with email {email} already exists")
