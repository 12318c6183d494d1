"""Configuration module for Flask application."""
import os
from decimal import Decimal
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ('1', 'true', 'yes')


class Config:
    """Base configuration class."""

    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = os.getenv('FLASK_DEBUG', '1') == '1'
    ENV = os.getenv('FLASK_ENV', 'development')
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

    # Session Configuration (Production-safe defaults)
    SESSION_COOKIE_SECURE = _env_bool('SESSION_COOKIE_SECURE', 'false')
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = os.getenv('SESSION_COOKIE_SAMESITE', 'Lax')

    # Database - Priority: DATABASE_URL > DB_* > POSTGRES_*
    DATABASE_URL = os.getenv('DATABASE_URL')

    if not DATABASE_URL:
        DB_HOST = os.getenv('DB_HOST') or os.getenv('POSTGRES_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT') or os.getenv('POSTGRES_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME') or os.getenv('POSTGRES_DB', 'pdv')
        DB_USER = os.getenv('DB_USER') or os.getenv('POSTGRES_USER', 'pdv')
        DB_PASSWORD = os.getenv('DB_PASSWORD') or os.getenv('POSTGRES_PASSWORD', 'pdv')

        DATABASE_URL = (
            f"postgresql+psycopg://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_ECHO = _env_bool('SQLALCHEMY_ECHO', 'false')

    # Discount policy (both flows). Stacking = coupon + manual discount summed.
    DISCOUNT_CLAMP_PERCENTAGE = _env_bool('DISCOUNT_CLAMP_PERCENTAGE', 'true')
    DISCOUNT_ALLOW_STACKING = _env_bool('DISCOUNT_ALLOW_STACKING', 'true')

    # Stock: when true, settlement may drive current_stock below zero (backorder)
    STOCK_ALLOW_NEGATIVE = _env_bool('STOCK_ALLOW_NEGATIVE', 'false')

    # Loyalty coupon policy (shared by comanda close and direct sale)
    LOYALTY_ENABLED = _env_bool('LOYALTY_ENABLED', 'true')
    LOYALTY_AUTO_ISSUE = _env_bool('LOYALTY_AUTO_ISSUE', 'true')
    LOYALTY_THRESHOLD = Decimal(os.getenv('LOYALTY_THRESHOLD', '50.00'))
    LOYALTY_REWARD_KIND = os.getenv('LOYALTY_REWARD_KIND', 'percentage')
    LOYALTY_LOW_VALUE = Decimal(os.getenv('LOYALTY_LOW_VALUE', '10'))
    LOYALTY_HIGH_VALUE = Decimal(os.getenv('LOYALTY_HIGH_VALUE', '15'))
    LOYALTY_HIGH_TIER_AMOUNT = Decimal(os.getenv('LOYALTY_HIGH_TIER_AMOUNT', '100.00'))
    LOYALTY_EXPIRY_DAYS = int(os.getenv('LOYALTY_EXPIRY_DAYS', '30'))
    LOYALTY_CODE_PREFIX = os.getenv('LOYALTY_CODE_PREFIX', 'FIDELIDADE')
    LOYALTY_MIN_PURCHASE = Decimal(os.getenv('LOYALTY_MIN_PURCHASE', '30.00'))
    LOYALTY_HIGH_MIN_PURCHASE = Decimal(os.getenv('LOYALTY_HIGH_MIN_PURCHASE', '50.00'))

    # Coupon message generator (optional; canned template used when unset or failing)
    COUPON_MESSAGE_API_URL = os.getenv('COUPON_MESSAGE_API_URL')
    COUPON_MESSAGE_API_KEY = os.getenv('COUPON_MESSAGE_API_KEY')
    COUPON_MESSAGE_TIMEOUT = int(os.getenv('COUPON_MESSAGE_TIMEOUT', '10'))
    STORE_NAME = os.getenv('STORE_NAME', 'Churrosteria')

    # Redis Cache Configuration
    REDIS_URL = os.getenv('REDIS_URL', 'redis://redis:6379/0')
    CACHE_ENABLED = _env_bool('CACHE_ENABLED', 'true')
    CACHE_DEFAULT_TTL = int(os.getenv('CACHE_DEFAULT_TTL', '60'))  # seconds
    CACHE_SUMMARY_TTL = int(os.getenv('CACHE_SUMMARY_TTL', '120'))
    CACHE_KEY_PREFIX = os.getenv('CACHE_KEY_PREFIX', 'pdv')


class TestConfig(Config):
    """Configuration used by the test suite (in-memory SQLite, no Redis)."""

    TESTING = True
    DEBUG = False
    ENV = 'testing'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ECHO = False
    WTF_CSRF_ENABLED = False
    CACHE_ENABLED = False
    COUPON_MESSAGE_API_URL = None
    LOYALTY_AUTO_ISSUE = True
