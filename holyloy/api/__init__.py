"""
HTTP blueprints for the HolyLoy ledger.
"""
from .admin import admin_bp
from .merchant import merchant_bp
from .accounts import accounts_bp

__all__ = ['admin_bp', 'merchant_bp', 'accounts_bp']
