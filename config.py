import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"

class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to the app as parkslot.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "parkslot.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Create missing tables at startup (local dev); deployments use migrations
    AUTO_CREATE_TABLES = _flag("AUTO_CREATE_TABLES", "false")

    # Session cookie issued by the identity service
    AUTH_COOKIE_NAME = "parkslot_session"
    SESSION_LIFETIME_SECONDS = 8 * 60 * 60
    IDLE_TIMEOUT_SECONDS = 20 * 60

    # Access policy: may owners update their reservations directly,
    # or must confirmations go through the backend route
    OWNER_DIRECT_UPDATES = _flag("OWNER_DIRECT_UPDATES", "true")
    DIRECT_NOTIFICATION_INSERTS = _flag("DIRECT_NOTIFICATION_INSERTS", "true")

    # Privileged backend route (empty URL = run it in-process)
    BACKEND_BASE_URL = os.getenv("BACKEND_BASE_URL", "")
    BACKEND_SERVICE_KEY = os.getenv("BACKEND_SERVICE_KEY")
    BACKEND_TIMEOUT_SECONDS = int(os.getenv("BACKEND_TIMEOUT_SECONDS", "10"))

    # External relay (LINE Messaging API)
    LINE_ACCESS_TOKEN = os.getenv("LINE_ACCESS_TOKEN")
    LINE_PUSH_URL = os.getenv("LINE_PUSH_URL", "https://api.line.me/v2/bot/message/push")
    RELAY_TIMEOUT_SECONDS = int(os.getenv("RELAY_TIMEOUT_SECONDS", "10"))

    # Links in notifications
    PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "https://dogparkjp.com")

    # Cancellation policy (customers)
    CANCEL_CUTOFF_MINUTES = int(os.getenv("CANCEL_CUTOFF_MINUTES", "60"))

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Basic app settings
    DEBUG = False


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    AUTO_CREATE_TABLES = True
    BACKEND_BASE_URL = ""
    BACKEND_SERVICE_KEY = "test-service-key"
    LINE_ACCESS_TOKEN = "test-line-token"
    PUBLIC_BASE_URL = "https://example.test"
    LOG_LEVEL = "DEBUG"
