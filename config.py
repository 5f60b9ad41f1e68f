"""Configuration management for the mobile-money payment service"""

import os
import logging
from decimal import Decimal
from typing import List

logger = logging.getLogger(__name__)


def _env_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class Config:
    """Application configuration"""

    # Environment detection
    ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower().strip()
    IS_PRODUCTION = ENVIRONMENT in ("production", "prod")

    # Database (Postgres in production, SQLite in tests)
    DATABASE_URL = os.getenv("DATABASE_URL")
    DATABASE_ECHO = os.getenv("DATABASE_ECHO", "false").lower() == "true"

    # PayHero mobile-money provider
    PAYHERO_API_USERNAME = os.getenv("PAYHERO_API_USERNAME")
    PAYHERO_API_PASSWORD = os.getenv("PAYHERO_API_PASSWORD")
    PAYHERO_BASE_URL = os.getenv(
        "PAYHERO_BASE_URL", "https://backend.payhero.co.ke/api/v2"
    ).rstrip("/")
    PAYHERO_DEPOSIT_CHANNEL_ID = int(os.getenv("PAYHERO_DEPOSIT_CHANNEL_ID", "1487"))
    PAYHERO_WITHDRAWAL_CHANNEL_ID = int(os.getenv("PAYHERO_WITHDRAWAL_CHANNEL_ID", "1564"))
    PAYHERO_NETWORK_CODE = os.getenv("PAYHERO_NETWORK_CODE", "63902")  # Safaricom M-Pesa
    PAYHERO_PROVIDER = os.getenv("PAYHERO_PROVIDER", "m-pesa")
    PAYHERO_CUSTOMER_NAME = os.getenv("PAYHERO_CUSTOMER_NAME", "Customer")

    # Outbound HTTP retry policy
    PAYHERO_TIMEOUT_SECONDS = int(os.getenv("PAYHERO_TIMEOUT_SECONDS", "30"))
    PAYHERO_MAX_RETRIES = int(os.getenv("PAYHERO_MAX_RETRIES", "2"))
    PAYHERO_BACKOFF_BASE_SECONDS = float(os.getenv("PAYHERO_BACKOFF_BASE_SECONDS", "0.5"))
    PAYHERO_BACKOFF_MAX_SECONDS = float(os.getenv("PAYHERO_BACKOFF_MAX_SECONDS", "8.0"))

    # Basic-Auth token reuse window (wall clock, not sliding)
    AUTH_TOKEN_TTL_SECONDS = int(os.getenv("AUTH_TOKEN_TTL_SECONDS", "3600"))

    # Public URLs used to build provider callback URLs
    API_URL = os.getenv("API_URL", "").rstrip("/")
    PAYMENT_ENDPOINT_PATH = os.getenv("PAYMENT_ENDPOINT_PATH", "/functions/v1/hyper-task")

    # CORS allow-list; anything else is answered with a wildcard origin
    ALLOWED_ORIGINS = _env_list(
        "ALLOWED_ORIGINS",
        "https://www.fortunesly.shop,https://fortunesly.shop,http://localhost:3000",
    )

    # Status poller cache windows
    STATUS_CACHE_TTL_SECONDS = float(os.getenv("STATUS_CACHE_TTL_SECONDS", "5"))
    STATUS_CACHE_ERROR_TTL_SECONDS = float(os.getenv("STATUS_CACHE_ERROR_TTL_SECONDS", "2"))

    # Wallet
    PHONE_COUNTRY_PREFIX = os.getenv("PHONE_COUNTRY_PREFIX", "254")
    FIAT_CURRENCY = os.getenv("FIAT_CURRENCY", "KES")
    MIN_PAYMENT_AMOUNT = Decimal(os.getenv("MIN_PAYMENT_AMOUNT", "0.01"))

    # Per-request debug log returned in API responses
    DEBUG_LOG_CAPACITY = int(os.getenv("DEBUG_LOG_CAPACITY", "100"))

    # Server
    SERVER_HOST = os.getenv("SERVER_HOST", "0.0.0.0")
    SERVER_PORT = int(os.getenv("SERVER_PORT", "5000"))

    @classmethod
    def payhero_configured(cls) -> bool:
        """Both PayHero credentials are present"""
        return bool(cls.PAYHERO_API_USERNAME and cls.PAYHERO_API_PASSWORD)

    @classmethod
    def payment_callback_url(cls, reference: str) -> str:
        """URL the provider posts asynchronous results to for one payment"""
        return f"{cls.API_URL}{cls.PAYMENT_ENDPOINT_PATH}?action=callback&reference={reference}"

    @staticmethod
    def log_configuration():
        """Log current configuration without exposing secrets"""
        logger.info("🔧 Payment Service Configuration:")
        logger.info(f"   Environment: {Config.ENVIRONMENT.upper()}")
        logger.info(f"   Database: {'✅ Configured' if Config.DATABASE_URL else '❌ DATABASE_URL missing'}")
        logger.info(f"   PayHero base URL: {Config.PAYHERO_BASE_URL}")

        if Config.payhero_configured():
            logger.info("   PAYHERO credentials: ✅ Configured")
        elif Config.IS_PRODUCTION:
            logger.critical("🚨 PRODUCTION: PAYHERO_API_USERNAME / PAYHERO_API_PASSWORD not configured!")
        else:
            logger.warning("⚠️ PAYHERO credentials not configured - payment requests will be rejected")

        if not Config.API_URL:
            logger.warning("⚠️ API_URL not configured - provider callbacks will use a relative URL")
