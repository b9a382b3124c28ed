"""
Request parsing helpers shared by the ledger blueprints.
"""
from typing import Any, Dict, Optional
from flask import request, g

from ..utils.exceptions import ValidationError

IDEMPOTENCY_HEADER = 'Idempotency-Key'

# Header keys are stored as client:<caller id>:<key>. Engine reward keys
# (cashback:..., stepup:..., generation-request:...) never use this prefix.
CLIENT_KEY_PREFIX = 'client'


def json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def parse_positive_int(data: Dict[str, Any], field: str) -> int:
    """Read a required positive whole number. Accepts numeric strings."""
    value = data.get(field)
    if value is None or isinstance(value, bool):
        raise ValidationError(f'{field} is required', field=field)
    if isinstance(value, float):
        if not value.is_integer():
            raise ValidationError(f'{field} must be a whole number', field=field)
        value = int(value)
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field} must be a whole number', field=field)
    if value <= 0:
        raise ValidationError(f'{field} must be positive', field=field)
    return value


def idempotency_key() -> Optional[str]:
    """The Idempotency-Key header, scoped to the calling account."""
    key = request.headers.get(IDEMPOTENCY_HEADER)
    if key is None:
        return None
    key = key.strip()
    if len(key) > 128:
        raise ValidationError('Idempotency-Key must be at most 128 characters', field='idempotency_key')
    if not key:
        return None
    return f'{CLIENT_KEY_PREFIX}:{g.principal.account_id}:{key}'
