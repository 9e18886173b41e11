"""Configuration management for the civic issue reporting backend"""

import os
import logging
from typing import List

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"⚠️ CONFIG: {name}={raw!r} is not an integer, using default {default}")
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Application configuration"""

    # Environment detection
    ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower().strip()
    IS_PRODUCTION = ENVIRONMENT == "production"

    # Storage
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./civic_issues.db")
    DATABASE_ECHO = _env_bool("DATABASE_ECHO")

    # Payment processor (Stripe)
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
    PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "usd").lower()

    # Prices are sent to the processor when a checkout session is created.
    # Confirmation never compares paid amounts against these values.
    BOOST_PRICE_CENTS = _env_int("BOOST_PRICE_CENTS", 10000)
    SUBSCRIPTION_PRICE_CENTS = _env_int("SUBSCRIPTION_PRICE_CENTS", 100000)

    # Identity provider (Firebase Auth): base64-encoded service account JSON
    FB_SERVICE_KEY = os.getenv("FB_SERVICE_KEY", "")

    # Frontend used to build checkout success/cancel URLs and allowed as CORS origin
    CLIENT_DOMAIN = os.getenv("CLIENT_DOMAIN", "http://localhost:5173").rstrip("/")

    # Duplicate report detection: "exact" or "case_insensitive"
    TITLE_MATCH_POLICY = os.getenv("TITLE_MATCH_POLICY", "exact").lower().strip()

    # Server
    PORT = _env_int("PORT", 3000)
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    @classmethod
    def validate(cls) -> List[str]:
        """Return a list of configuration problems (empty when usable)"""
        problems = []
        if not cls.DATABASE_URL:
            problems.append("DATABASE_URL is required")
        if not cls.STRIPE_SECRET_KEY:
            if cls.IS_PRODUCTION:
                problems.append("STRIPE_SECRET_KEY is required in production")
            else:
                logger.warning("⚠️ STRIPE_SECRET_KEY not set - checkout and confirmation will fail")
        if not cls.FB_SERVICE_KEY:
            logger.warning("⚠️ FB_SERVICE_KEY not set - admin routes will reject every request")
        if cls.TITLE_MATCH_POLICY not in ("exact", "case_insensitive"):
            problems.append(f"TITLE_MATCH_POLICY must be 'exact' or 'case_insensitive', got {cls.TITLE_MATCH_POLICY!r}")
        if cls.BOOST_PRICE_CENTS <= 0 or cls.SUBSCRIPTION_PRICE_CENTS <= 0:
            problems.append("Prices must be positive amounts in cents")
        return problems

    @staticmethod
    def log_environment_config():
        """Log current environment configuration for debugging"""
        logger.info("🔧 Environment Configuration:")
        logger.info(f"   Environment: {Config.ENVIRONMENT.upper()}")
        logger.info(f"   Database: {Config.DATABASE_URL.split('@')[-1]}")
        logger.info(f"   Stripe key: {'configured' if Config.STRIPE_SECRET_KEY else 'missing'}")
        logger.info(f"   Firebase key: {'configured' if Config.FB_SERVICE_KEY else 'missing'}")
        logger.info(f"   Client domain: {Config.CLIENT_DOMAIN}")
        logger.info(f"   Title match policy: {Config.TITLE_MATCH_POLICY}")
