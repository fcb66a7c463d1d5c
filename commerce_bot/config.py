"""Environment-backed configuration and logging setup."""

import logging
import os

from dotenv import load_dotenv

# Load environment variables (for local development)
load_dotenv()


# ============================================================
# LOGGING CONFIGURATION
# ============================================================
def setup_logging(level: str = None) -> None:
    """Configure root logging once for the whole app."""
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


logger = logging.getLogger("commerce_bot")


# ============================================================
# CONFIGURATION
# ============================================================
class Config:
    # WhatsApp API
    WHATSAPP_ACCESS_TOKEN: str = os.getenv("WHATSAPP_ACCESS_TOKEN", "")
    WHATSAPP_PHONE_NUMBER_ID: str = os.getenv("WHATSAPP_PHONE_NUMBER_ID", "")
    WHATSAPP_VERIFY_TOKEN: str = os.getenv("WHATSAPP_VERIFY_TOKEN", "")
    WHATSAPP_API_URL: str = os.getenv("WHATSAPP_API_URL", "https://graph.facebook.com/v21.0")
    WHATSAPP_CATALOG_ID: str = os.getenv("WHATSAPP_CATALOG_ID", "")
    WHATSAPP_FLOW_ID: str = os.getenv("WHATSAPP_FLOW_ID", "")
    META_APP_SECRET: str = os.getenv("META_APP_SECRET", "")

    # WhatsApp Flow private key (first source that resolves wins)
    META_FLOW_PRIVATE_KEY_BASE64: str = os.getenv("META_FLOW_PRIVATE_KEY_BASE64", "")
    META_FLOW_PRIVATE_KEY_PEM: str = os.getenv("META_FLOW_PRIVATE_KEY_PEM", "")
    META_FLOW_PRIVATE_KEY_PATH: str = os.getenv("META_FLOW_PRIVATE_KEY_PATH", "")
    META_FLOW_PRIVATE_KEY_PASSPHRASE: str = os.getenv("META_FLOW_PRIVATE_KEY_PASSPHRASE", "")
    DEFAULT_FLOW_PRIVATE_KEY_FILE: str = "whatsapp_flow_private_key.pem"

    # Supabase
    SUPABASE_URL: str = os.getenv("SUPABASE_URL", "")
    SUPABASE_SERVICE_KEY: str = os.getenv("SUPABASE_SERVICE_KEY", "")

    # Paystack
    PAYSTACK_SECRET_KEY: str = os.getenv("PAYSTACK_SECRET_KEY", "")
    PAYSTACK_BASE_URL: str = os.getenv("PAYSTACK_BASE_URL", "https://api.paystack.co")
    APP_BASE_URL: str = os.getenv("APP_BASE_URL", "")

    # Conversation & checkout
    HTTP_TIMEOUT_SECONDS: float = float(os.getenv("HTTP_TIMEOUT_SECONDS", "10"))
    SESSION_TTL_MINUTES: int = int(os.getenv("SESSION_TTL_MINUTES", "30"))
    HOUSEKEEPING_INTERVAL_SECONDS: int = int(os.getenv("HOUSEKEEPING_INTERVAL_SECONDS", "300"))
    MIN_ADDRESS_LENGTH: int = int(os.getenv("MIN_ADDRESS_LENGTH", "10"))
    CURRENCY_SYMBOL: str = os.getenv("CURRENCY_SYMBOL", "₦")
    BRAND_NAME: str = os.getenv("BRAND_NAME", "HappyWoman Commerce")

    # App Settings
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "production")
    PORT: int = int(os.getenv("PORT", "8000"))

    @classmethod
    def validate(cls) -> list[str]:
        """Validate required configuration."""
        missing = []
        if not cls.WHATSAPP_ACCESS_TOKEN:
            missing.append("WHATSAPP_ACCESS_TOKEN")
        if not cls.WHATSAPP_PHONE_NUMBER_ID:
            missing.append("WHATSAPP_PHONE_NUMBER_ID")
        if not cls.WHATSAPP_VERIFY_TOKEN:
            missing.append("WHATSAPP_VERIFY_TOKEN")
        if not cls.SUPABASE_URL:
            missing.append("SUPABASE_URL")
        if not cls.SUPABASE_SERVICE_KEY:
            missing.append("SUPABASE_SERVICE_KEY")
        if not (
            cls.META_FLOW_PRIVATE_KEY_BASE64
            or cls.META_FLOW_PRIVATE_KEY_PEM
            or cls.META_FLOW_PRIVATE_KEY_PATH
        ):
            missing.append("META_FLOW_PRIVATE_KEY_BASE64|PEM|PATH")

        if not missing:
            logger.info("✅ All credentials validated (values masked)")

        return missing


config = Config()
