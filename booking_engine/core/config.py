"""
Application configuration and settings
"""
import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


# Database
DATABASE_URL = os.getenv("DATABASE_URL", "")
DB_CONNECT_MAX_RETRIES = int(os.getenv("DB_CONNECT_MAX_RETRIES", "30"))
DB_CONNECT_RETRY_DELAY = float(os.getenv("DB_CONNECT_RETRY_DELAY", "1.5"))

# Razorpay
RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID", "")
RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET", "")
RAZORPAY_WEBHOOK_SECRET = os.getenv("RAZORPAY_WEBHOOK_SECRET", "")
PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "INR")
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://127.0.0.1:8000")

# Booking policy
BOOKING_HOLD_TIMEOUT_SECONDS = int(os.getenv("BOOKING_HOLD_TIMEOUT_SECONDS", "900"))
LOYALTY_POINTS_PER_BOOKING = int(os.getenv("LOYALTY_POINTS_PER_BOOKING", "1"))
ALLOW_UNBOUNDED_CAPACITY = _env_bool("ALLOW_UNBOUNDED_CAPACITY", False)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


class Settings:
    PROJECT_NAME: str = "Booking Reconciliation Engine"
    DATABASE_URL = DATABASE_URL
    DB_CONNECT_MAX_RETRIES = DB_CONNECT_MAX_RETRIES
    DB_CONNECT_RETRY_DELAY = DB_CONNECT_RETRY_DELAY
    RAZORPAY_KEY_ID = RAZORPAY_KEY_ID
    RAZORPAY_KEY_SECRET = RAZORPAY_KEY_SECRET
    RAZORPAY_WEBHOOK_SECRET = RAZORPAY_WEBHOOK_SECRET
    PAYMENT_CURRENCY = PAYMENT_CURRENCY
    PUBLIC_BASE_URL = PUBLIC_BASE_URL
    BOOKING_HOLD_TIMEOUT_SECONDS = BOOKING_HOLD_TIMEOUT_SECONDS
    LOYALTY_POINTS_PER_BOOKING = LOYALTY_POINTS_PER_BOOKING
    ALLOW_UNBOUNDED_CAPACITY = ALLOW_UNBOUNDED_CAPACITY
    LOG_LEVEL = LOG_LEVEL


settings = Settings()
