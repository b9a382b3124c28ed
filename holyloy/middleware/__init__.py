"""
Middleware package for the HolyLoy ledger API.
"""
from .principal import Principal, require_principal, require_role, get_principal_from_request

__all__ = [
    'Principal',
    'require_principal',
    'require_role',
    'get_principal_from_request',
]
