"""
JSON error responses for the ledger API.

Every failure leaves the API in one shape:
{
    "error": {
        "message": "Insufficient balance: account 12 has 1000, needs 1500",
        "code": "INSUFFICIENT_BALANCE",
        "retryable": true          # only present for ConcurrencyConflict
    }
}

Views normally raise a LedgerError and let the app-level handler call
ledger_error_response(); the helpers below cover auth failures raised
before a service is involved.
"""
import logging
from enum import Enum
from flask import jsonify
from typing import Optional

from .exceptions import LedgerError

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Error codes returned in error.code."""

    # 401 / 403
    AUTH_REQUIRED = "AUTH_REQUIRED"
    PERMISSION_DENIED = "PERMISSION_DENIED"

    # 400
    INVALID_REQUEST = "INVALID_REQUEST"
    MISSING_FIELD = "MISSING_FIELD"
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # 404
    NOT_FOUND = "NOT_FOUND"
    ACCOUNT_NOT_FOUND = "ACCOUNT_NOT_FOUND"

    # 409
    INVALID_STATE = "INVALID_STATE"
    CONCURRENCY_CONFLICT = "CONCURRENCY_CONFLICT"
    IDEMPOTENCY_KEY_REUSED = "IDEMPOTENCY_KEY_REUSED"

    # 422
    INVALID_HIERARCHY = "INVALID_HIERARCHY"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"

    # 500
    INTERNAL_ERROR = "INTERNAL_ERROR"
    PERSISTENCE_FAILURE = "PERSISTENCE_FAILURE"


def error_response(
    message: str,
    code: ErrorCode = ErrorCode.INTERNAL_ERROR,
    status_code: int = 500,
    log_error: bool = True,
    details: Optional[dict] = None,
    retryable: bool = False
) -> tuple:
    """
    Build a (response, status) tuple in the standard error shape.

    `code` may be an ErrorCode or the plain string carried by a LedgerError
    (e.g. INVALID_POINTS). `details` goes to the log only.
    """
    if log_error and status_code >= 500:
        logger.error(f"API Error [{code}]: {message}", extra={"details": details})
    elif log_error and status_code >= 400:
        logger.warning(f"API Error [{code}]: {message}", extra={"details": details})

    error = {
        "message": message,
        "code": code.value if isinstance(code, ErrorCode) else code
    }
    if retryable:
        error["retryable"] = True

    return jsonify({"error": error}), status_code


def ledger_error_response(error: LedgerError) -> tuple:
    """Translate a LedgerError into the standard error response."""
    return error_response(
        error.message,
        error.code,
        error.status_code,
        log_error=True,
        retryable=error.retryable
    )


def bad_request(message: str, code: ErrorCode = ErrorCode.INVALID_REQUEST) -> tuple:
    return error_response(message, code, 400, log_error=False)


def unauthorized(message: str = "Authentication required", code: ErrorCode = ErrorCode.AUTH_REQUIRED) -> tuple:
    return error_response(message, code, 401, log_error=False)


def forbidden(message: str = "Permission denied", code: ErrorCode = ErrorCode.PERMISSION_DENIED) -> tuple:
    return error_response(message, code, 403, log_error=False)


def not_found(message: str, code: ErrorCode = ErrorCode.NOT_FOUND) -> tuple:
    return error_response(message, code, 404, log_error=False)


def internal_error(message: str = "Internal server error", details: Optional[dict] = None) -> tuple:
    return error_response(message, ErrorCode.INTERNAL_ERROR, 500, log_error=True, details=details)
