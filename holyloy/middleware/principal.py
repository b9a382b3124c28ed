"""
Principal resolution.

The upstream auth layer authenticates the caller and forwards the account id
in the X-Account-ID header. This module trusts that header, loads the
account and exposes it as g.principal. Credentials are not re-validated here.
"""
from dataclasses import dataclass
from functools import wraps
from typing import Optional
from flask import request, g

from ..extensions import db
from ..models.account import Account, ADMIN_ROLES
from ..utils.errors import unauthorized, forbidden, ErrorCode

PRINCIPAL_HEADER = 'X-Account-ID'


@dataclass(frozen=True)
class Principal:
    account_id: int
    role: str
    country: Optional[str]

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    def can_view(self, account_id: int) -> bool:
        """Accounts may read their own data; admins may read anyone's."""
        return self.is_admin or self.account_id == account_id


def get_principal_from_request() -> Optional[Principal]:
    raw = request.headers.get(PRINCIPAL_HEADER)
    if not raw:
        return None
    try:
        account_id = int(raw)
    except (TypeError, ValueError):
        return None

    account = db.session.get(Account, account_id)
    if not account or not account.is_active:
        return None
    return Principal(account_id=account.id, role=account.role, country=account.country)


def require_principal(f):
    """
    Decorator requiring an authenticated account. Sets g.principal.

    Usage:
        @require_principal
        def my_endpoint():
            principal = g.principal
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        principal = get_principal_from_request()
        if principal is None:
            return unauthorized('Missing or unknown account', ErrorCode.AUTH_REQUIRED)
        g.principal = principal
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """
    Decorator restricting an endpoint to the given account roles.

    Usage:
        @require_role('global_admin')
        def approve(request_id):
            ...
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            principal = get_principal_from_request()
            if principal is None:
                return unauthorized('Missing or unknown account', ErrorCode.AUTH_REQUIRED)
            if principal.role not in roles:
                return forbidden(f"Requires role: {', '.join(roles)}")
            g.principal = principal
            return f(*args, **kwargs)

        return decorated_function

    return decorator
