import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to the app as hotelbooking.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "hotelbooking.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Booking rules
    MAX_BOOKING_NIGHTS = int(os.getenv("MAX_BOOKING_NIGHTS", "30"))
    MAX_ADVANCE_DAYS = int(os.getenv("MAX_ADVANCE_DAYS", "365"))

    # Unpaid bookings older than this are expired by the sweeper
    BOOKING_GRACE_MINUTES = int(os.getenv("BOOKING_GRACE_MINUTES", "15"))
    SWEEPER_ENABLED = _env_bool("SWEEPER_ENABLED", "true")
    SWEEPER_INTERVAL_SECONDS = int(os.getenv("SWEEPER_INTERVAL_SECONDS", "60"))

    # Payments
    PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "ETB")
    PAYMENT_CALLBACK_URL = os.getenv("PAYMENT_CALLBACK_URL", "http://localhost:5002/payments/callback")
    PAYMENT_RETURN_URL = os.getenv("PAYMENT_RETURN_URL")
    PAYMENT_HTTP_TIMEOUT_SECONDS = float(os.getenv("PAYMENT_HTTP_TIMEOUT_SECONDS", "30"))
    PAYMENT_EXPIRY_MINUTES = int(os.getenv("PAYMENT_EXPIRY_MINUTES", "30"))
    # Reject provider callbacks whose signature does not verify
    PAYMENT_CALLBACK_REQUIRE_SIGNATURE = _env_bool("PAYMENT_CALLBACK_REQUIRE_SIGNATURE", "true")

    # Chapa
    CHAPA_SECRET_KEY = os.getenv("CHAPA_SECRET_KEY")
    CHAPA_API_URL = os.getenv("CHAPA_API_URL", "https://api.chapa.co/v1")

    # TeleBirr
    TELEBIRR_APP_ID = os.getenv("TELEBIRR_APP_ID")
    TELEBIRR_APP_KEY = os.getenv("TELEBIRR_APP_KEY")
    TELEBIRR_API_URL = os.getenv("TELEBIRR_API_URL", "https://app.ethiotelecom.et:9443/ammapi")

    # CBE Birr (eBirr)
    EBIRR_MERCHANT_ID = os.getenv("EBIRR_MERCHANT_ID")
    EBIRR_API_KEY = os.getenv("EBIRR_API_KEY")
    EBIRR_API_URL = os.getenv("EBIRR_API_URL", "https://api.cbe.com.et/ebirr")

    # Kaafi
    KAAFI_MERCHANT_CODE = os.getenv("KAAFI_MERCHANT_CODE")
    KAAFI_API_KEY = os.getenv("KAAFI_API_KEY")
    KAAFI_SECRET_KEY = os.getenv("KAAFI_SECRET_KEY")
    KAAFI_API_URL = os.getenv("KAAFI_API_URL", "https://api.kaafi.com/v1")

    # Booking notifications (push/analytics webhook + e-mail), fire-and-forget
    NOTIFY_WEBHOOK_URL = os.getenv("NOTIFY_WEBHOOK_URL")
    NOTIFY_TIMEOUT_SECONDS = float(os.getenv("NOTIFY_TIMEOUT_SECONDS", "5"))

    # Email (SMTP)
    SMTP_HOST = os.getenv("SMTP_HOST")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USERNAME = os.getenv("SMTP_USERNAME")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
    SMTP_FROM_EMAIL = os.getenv("SMTP_FROM_EMAIL")
    SMTP_USE_TLS = os.getenv("SMTP_USE_TLS", "true").lower() == "true"

    # Basic app settings
    DEBUG = False


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SWEEPER_ENABLED = False
    NOTIFY_WEBHOOK_URL = None
    SMTP_HOST = None

    CHAPA_SECRET_KEY = "chapa-test-secret"
    TELEBIRR_APP_ID = "telebirr-app"
    TELEBIRR_APP_KEY = "telebirr-key"
    EBIRR_MERCHANT_ID = "ebirr-merchant"
    EBIRR_API_KEY = "ebirr-key"
    KAAFI_MERCHANT_CODE = "kaafi-merchant"
    KAAFI_API_KEY = "kaafi-api"
    KAAFI_SECRET_KEY = "kaafi-secret"
