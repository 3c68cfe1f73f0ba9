"""
Engine exception to HTTP status translation.
"""

from fastapi import HTTPException, status
from structlog import get_logger

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
    WebhookVerificationError,
)
from app.observability.metrics import metrics

logger = get_logger(__name__)

_STATUS_BY_ERROR: tuple[tuple[type[PortalError], int], ...] = (
    (ResourceNotFoundError, status.HTTP_404_NOT_FOUND),
    (InsufficientFundsError, status.HTTP_402_PAYMENT_REQUIRED),
    (InsufficientCreditsError, status.HTTP_402_PAYMENT_REQUIRED),
    (SubscriptionExpiredError, status.HTTP_403_FORBIDDEN),
    (ProjectPausedError, status.HTTP_403_FORBIDDEN),
    (PlanLimitReachedError, status.HTTP_409_CONFLICT),
    (RunLimitReachedError, status.HTTP_409_CONFLICT),
    (TemplateNotAllowedError, status.HTTP_409_CONFLICT),
    (TaskBlockedError, status.HTTP_409_CONFLICT),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (PayoutBelowMinimumError, status.HTTP_409_CONFLICT),
    (InsufficientBalanceError, status.HTTP_409_CONFLICT),
    (IdempotencyConflictError, status.HTTP_409_CONFLICT),
    (ConcurrencyError, status.HTTP_409_CONFLICT),
    (ReferralCodeTakenError, status.HTTP_409_CONFLICT),
    (EmailAlreadyRegisteredError, status.HTTP_409_CONFLICT),
    (InvalidDependencyError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (WebhookVerificationError, status.HTTP_400_BAD_REQUEST),
    (PaymentProviderError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (DataIntegrityError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def to_http_exception(exc: PortalError | ValueError) -> HTTPException:
    """Map an engine exception to the HTTP error returned to the client."""
    if isinstance(exc, ValueError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))

    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            break
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    metrics.record_error(type(exc).__name__, "api")

    if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error("request_failed_internal", error=str(exc), error_type=type(exc).__name__)
        # Integrity details stay in the logs
        detail = (
            "Database integrity error" if isinstance(exc, DataIntegrityError) else str(exc)
        )
        return HTTPException(status_code=status_code, detail=detail)

    headers: dict[str, str] | None = None
    if isinstance(exc, IdempotencyConflictError):
        headers = {"X-Existing-ID": str(exc.existing_id)}
    elif isinstance(exc, InsufficientFundsError):
        headers = {"X-Shortfall-Minor": str(exc.shortfall_minor)}

    return HTTPException(status_code=status_code, detail=str(exc), headers=headers)
