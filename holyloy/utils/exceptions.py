"""
Custom exceptions for the points ledger.

Every rejection raised before a mutation carries a stable code so the API
layer can return a clear reason (hierarchy, balance, state).
"""


class LedgerError(Exception):
    """Base exception for all ledger business logic errors."""

    status_code = 400
    retryable = False

    def __init__(self, message: str, code: str = "LEDGER_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class ValidationError(LedgerError):
    """Invalid input data."""

    def __init__(self, message: str, field: str = None):
        self.field = field
        code = f"INVALID_{field.upper()}" if field else "VALIDATION_ERROR"
        super().__init__(message, code)


class AccountNotFound(LedgerError):
    """Account does not exist."""

    status_code = 404

    def __init__(self, account_id=None, resource: str = "Account"):
        message = f"{resource} not found"
        if account_id is not None:
            message = f"{resource} with ID {account_id} not found"
        super().__init__(message, f"{resource.upper().replace(' ', '_')}_NOT_FOUND")


class InvalidHierarchy(LedgerError):
    """Sender/receiver role pair or country not permitted for this distribution type."""

    status_code = 422

    def __init__(self, message: str):
        super().__init__(message, "INVALID_HIERARCHY")


class InsufficientBalance(LedgerError):
    """Not enough points at the source account."""

    status_code = 422

    def __init__(self, account_id: int, current: int, required: int):
        self.account_id = account_id
        self.current = current
        self.required = required
        message = f"Insufficient points. Current: {current}, Required: {required}"
        super().__init__(message, "INSUFFICIENT_BALANCE")


class InvalidState(LedgerError):
    """Invalid status transition for a resource."""

    status_code = 409

    def __init__(self, resource: str, current_status: str, target_status: str):
        self.current_status = current_status
        self.target_status = target_status
        message = f"Cannot change {resource} status from '{current_status}' to '{target_status}'"
        super().__init__(message, "INVALID_STATE")


class ConcurrencyConflict(LedgerError):
    """Lock contention or stale read. Safe to retry; nothing was applied."""

    status_code = 409
    retryable = True

    def __init__(self, message: str = "Account is busy, please retry"):
        super().__init__(message, "CONCURRENCY_CONFLICT")


class PersistenceFailure(LedgerError):
    """The database rejected the write. No ledger entry exists."""

    status_code = 500

    def __init__(self, message: str, original_error: Exception = None):
        self.original_error = original_error
        super().__init__(message, "PERSISTENCE_FAILURE")


class CascadeStepFailure(LedgerError):
    """A reward cascade step failed. Logged and isolated, never escalated."""

    status_code = 500

    def __init__(self, step: str, distribution_id: int, original_error: Exception = None):
        self.step = step
        self.distribution_id = distribution_id
        self.original_error = original_error
        message = f"Cascade step '{step}' failed for distribution {distribution_id}: {original_error}"
        super().__init__(message, "CASCADE_STEP_FAILURE")


class AuthorizationError(LedgerError):
    """Principal not allowed to perform this operation."""

    status_code = 403

    def __init__(self, message: str = "Not authorized for this operation"):
        super().__init__(message, "AUTHORIZATION_ERROR")


class IdempotencyKeyReused(LedgerError):
    """Idempotency key already recorded for a different distribution."""

    status_code = 409

    def __init__(self, key: str, distribution_id: int):
        self.key = key
        self.distribution_id = distribution_id
        message = f"Idempotency key '{key}' was already used for a different distribution"
        super().__init__(message, "IDEMPOTENCY_KEY_REUSED")
