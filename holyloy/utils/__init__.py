"""
Utility modules for the HolyLoy ledger.
"""
from .logging_config import setup_logging
from .errors import (
    ErrorCode,
    error_response,
    ledger_error_response,
    bad_request,
    unauthorized,
    forbidden,
    not_found,
    internal_error
)
from .exceptions import (
    LedgerError,
    ValidationError,
    AccountNotFound,
    InvalidHierarchy,
    InsufficientBalance,
    InvalidState,
    ConcurrencyConflict,
    PersistenceFailure,
    CascadeStepFailure,
    AuthorizationError,
    IdempotencyKeyReused,
)
