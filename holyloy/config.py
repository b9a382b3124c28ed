"""
Configuration management for the HolyLoy points ledger.
"""
import os
from dotenv import load_dotenv

load_dotenv()


class BaseConfig:
    """Base configuration."""
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # ==================== Global Number ====================

    # Accumulated customer points needed for one Global Number
    GLOBAL_NUMBER_THRESHOLD = int(os.getenv('GLOBAL_NUMBER_THRESHOLD', '1500'))

    # What happens to the accumulated counter after an assignment:
    #   'carry' - subtract the threshold, keep the remainder (may assign several at once)
    #   'reset' - assign one number and set the counter to 0
    GLOBAL_NUMBER_OVERFLOW_POLICY = os.getenv('GLOBAL_NUMBER_OVERFLOW_POLICY', 'carry')

    # (multiplier, reward_points) seeded into stepup_config
    DEFAULT_STEPUP_LEVELS = [
        (5, 500),
        (25, 1500),
        (125, 3000),
        (500, 30000),
        (2500, 160000),
    ]

    # ==================== Merchant income ====================

    INSTANT_CASHBACK_RATE = 0.10        # 10% of every merchant -> customer transfer
    AFFILIATE_COMMISSION_RATE = 0.02    # 2% to the referring merchant
    AFFILIATE_COMMISSION_MIN_VOLUME = 1000  # referred merchant's cumulative transfer volume
    AFFILIATE_MAX_COMMISSIONS_PER_HOUR = 10
    AFFILIATE_MAX_COMMISSION_POINTS_PER_DAY = 1000

    # ==================== Customer upline rewards ====================

    # (min_stepup_points, max_stepup_points, ripple_points); None = no upper bound
    RIPPLE_REWARD_TIERS = [
        (500, 1499, 50),
        (1500, 2999, 100),
        (3000, 29999, 150),
        (30000, 159999, 700),
        (160000, None, 1500),
    ]

    INFINITY_THRESHOLD = 30000          # lifetime StepUp points per cycle
    INFINITY_INITIAL_REWARD_COUNT = 4
    INFINITY_CYCLE_MULTIPLIER = 4       # cycle n gets 4 * 4^(n-1) reward numbers
    INFINITY_POINTS_PER_REWARD = 195000
    INFINITY_NUMBER_START = 1000000

    SHOPPING_VOUCHER_THRESHOLD = 30000
    SHOPPING_VOUCHER_AMOUNT = 6000
    SHOPPING_VOUCHER_EXPIRY_DAYS = 365

    # Merchant customer list tiers: (tier, min points received from the merchant), highest first
    MERCHANT_CUSTOMER_TIERS = [
        ('platinum', 50000),
        ('gold', 20000),
        ('silver', 5000),
        ('bronze', 0),
    ]

    # ==================== Distribution engine ====================

    TRANSFER_LOCK_TIMEOUT = float(os.getenv('TRANSFER_LOCK_TIMEOUT', '5'))  # seconds
    TRANSFER_MAX_RETRIES = int(os.getenv('TRANSFER_MAX_RETRIES', '3'))
    TRANSFER_RETRY_BACKOFF = 0.05  # seconds, doubled per attempt

    # Background jobs (nightly reconciliation)
    ENABLE_SCHEDULER = os.getenv('ENABLE_SCHEDULER') == 'true'

    # Dashboard origins allowed by CORS
    CORS_ORIGINS = [
        origin.strip()
        for origin in os.getenv('CORS_ORIGINS', 'http://localhost:5173,http://127.0.0.1:5173').split(',')
        if origin.strip()
    ]


class DevelopmentConfig(BaseConfig):
    """Development configuration."""
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.getenv(
        'DATABASE_URL',
        'sqlite:///holyloy_dev.db'  # SQLite fallback for local dev
    )


class ProductionConfig(BaseConfig):
    """Production configuration."""
    DEBUG = False

    _db_url = os.getenv('DATABASE_URL', '')
    if _db_url.startswith('postgres://'):
        # SQLAlchemy requires postgresql:// not postgres://
        _db_url = _db_url.replace('postgres://', 'postgresql://', 1)

    SQLALCHEMY_DATABASE_URI = _db_url

    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_size': 5,
        'pool_recycle': 300,
        'pool_pre_ping': True,  # Verify connections before using
    }

    _secret_key = os.getenv('SECRET_KEY', '')

    @classmethod
    def validate_secret_key(cls) -> str:
        """
        Validate SECRET_KEY in production environment.

        Raises:
            RuntimeError: If SECRET_KEY is missing or too short
        """
        if not cls._secret_key:
            raise RuntimeError(
                "CRITICAL: SECRET_KEY environment variable is not set!\n"
                "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
            )

        if len(cls._secret_key) < 32:
            raise RuntimeError(
                "CRITICAL: SECRET_KEY is too short (minimum 32 characters required)!"
            )

        return cls._secret_key

    SECRET_KEY = _secret_key  # Validated at app startup


class TestingConfig(BaseConfig):
    """Testing configuration."""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    TRANSFER_LOCK_TIMEOUT = 0.5
    TRANSFER_RETRY_BACKOFF = 0.0
    ENABLE_SCHEDULER = False


config_map = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig
}


def get_config(config_name: str = 'development'):
    """Get configuration class by name."""
    return config_map.get(config_name, DevelopmentConfig)


def validate_config(config_name: str = 'development') -> None:
    """
    Validate configuration before app startup.

    Raises:
        RuntimeError: If validation fails in production
    """
    if config_name == 'production':
        ProductionConfig.validate_secret_key()
    policy = get_config(config_name).GLOBAL_NUMBER_OVERFLOW_POLICY
    if policy not in ('carry', 'reset'):
        raise RuntimeError(
            f"GLOBAL_NUMBER_OVERFLOW_POLICY must be 'carry' or 'reset', got '{policy}'"
        )
