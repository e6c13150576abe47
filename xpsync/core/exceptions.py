"""
Exception-to-result mapping for the synchronizer boundary.

Maps domain exceptions to uniform failure results so no gateway, store or
bus error escapes a public coordinator operation. Use failure_result(exc).
"""

import logging

from xpsync.models.gamification import (
    AuthenticationError,
    GatewayError,
    NoStreakFreezesError,
    OperationResult,
    TransientNetworkError,
    ValidationRejection,
)

logger = logging.getLogger(__name__)

# Most specific first; subclasses must precede GatewayError
_ERROR_CODES: list[tuple[type, str]] = [
    (ValidationRejection, "VALIDATION_REJECTED"),
    (NoStreakFreezesError, "NO_STREAK_FREEZES"),
    (AuthenticationError, "AUTHENTICATION_FAILED"),
    (TransientNetworkError, "NETWORK_ERROR"),
    (GatewayError, "GATEWAY_ERROR"),
]


def error_code_for(exc: BaseException) -> str:
    """Stable error code for an exception; INTERNAL_ERROR when unmapped."""
    if isinstance(exc, ValidationRejection):
        return exc.code
    for exc_type, code in _ERROR_CODES:
        if isinstance(exc, exc_type):
            return code
    return "INTERNAL_ERROR"


def failure_result(exc: BaseException, **kwargs) -> OperationResult:
    """Build a standardized failure result from an exception."""
    code = error_code_for(exc)
    if code == "INTERNAL_ERROR":
        logger.error("Unhandled synchronizer error", exc_info=exc)
        message = str(exc) or "Internal error."
    else:
        message = str(exc) or code
    return OperationResult.fail(message, code, **kwargs)
