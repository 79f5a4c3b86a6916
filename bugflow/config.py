import os


def _flag(name, default=""):
    return os.environ.get(name, default).lower() in ("1", "true", "yes")


def _csv(name, default):
    raw = os.environ.get(name)
    if not raw:
        return list(default)
    return [v.strip() for v in raw.split(",") if v.strip()]


class Config:
    """Base configuration. Shared across all environments."""

    # --- Required ---
    SECRET_KEY = os.environ.get("SECRET_KEY")

    # Handle DATABASE_URL: some PaaS providers (Railway, Heroku) use
    # "postgres://" which SQLAlchemy 1.4+ doesn't accept.
    _db_url = os.environ.get("DATABASE_URL", "")
    if _db_url.startswith("postgres://"):
        _db_url = _db_url.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = _db_url or None

    APP_BASE_URL = os.environ.get("APP_BASE_URL", "http://localhost:5000")

    # --- Email (SMTP defaults; AppSettings can override at runtime) ---
    MAIL_SMTP_HOST = os.environ.get("MAIL_SMTP_HOST", "smtp.gmail.com")
    MAIL_SMTP_PORT = int(os.environ.get("MAIL_SMTP_PORT", 587))
    MAIL_USE_TLS = _flag("MAIL_USE_TLS", "true")
    MAIL_USERNAME = os.environ.get("MAIL_USERNAME")
    MAIL_PASSWORD = os.environ.get("MAIL_PASSWORD")
    MAIL_FROM_NAME = os.environ.get("MAIL_FROM_NAME", "BugFlow")
    MAIL_FROM_ADDRESS = os.environ.get("MAIL_FROM_ADDRESS")  # defaults to MAIL_USERNAME
    # Send from a background thread so requests don't wait on SMTP.
    MAIL_SEND_ASYNC = _flag("MAIL_SEND_ASYNC", "true")

    # --- Tickets ---
    TICKET_APPS = _csv(
        "TICKET_APPS",
        ["dispatch", "driver_app", "passenger_app", "admin_panel", "other"],
    )

    # --- Attachments ---
    ATTACHMENT_ALLOWED_TYPES = _csv(
        "ATTACHMENT_ALLOWED_TYPES", ["image/png", "image/jpeg", "image/webp"]
    )
    ATTACHMENT_MAX_BYTES = int(os.environ.get("ATTACHMENT_MAX_BYTES", 10 * 1024 * 1024))
    ATTACHMENT_MAX_PER_TICKET = int(os.environ.get("ATTACHMENT_MAX_PER_TICKET", 10))
    # Hard cap on request bodies: a full batch plus form overhead.
    MAX_CONTENT_LENGTH = ATTACHMENT_MAX_BYTES * ATTACHMENT_MAX_PER_TICKET + 1024 * 1024
    UPLOAD_FOLDER = os.environ.get("UPLOAD_FOLDER")  # defaults to instance/uploads

    # --- Supabase Storage (optional blob backend) ---
    SUPABASE_URL = os.environ.get("SUPABASE_URL")                # e.g. https://xyz.supabase.co
    SUPABASE_SERVICE_KEY = os.environ.get("SUPABASE_SERVICE_KEY") # service_role key for storage
    SUPABASE_STORAGE_BUCKET = os.environ.get("SUPABASE_STORAGE_BUCKET", "ticket-attachments")

    # --- SQLAlchemy ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    # --- Session / cookies ---
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    REMEMBER_COOKIE_HTTPONLY = True
    REMEMBER_COOKIE_SAMESITE = "Lax"

    # --- WTF / CSRF ---
    # JSON clients send the token from /api/auth/csrf-token as X-CSRFToken.
    WTF_CSRF_ENABLED = True
    WTF_CSRF_TIME_LIMIT = None

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing."""
        required = [
            "SECRET_KEY",
            "DATABASE_URL",
        ]
        missing = [v for v in required if not os.environ.get(v)]
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


class DevConfig(Config):
    """Local development."""

    DEBUG = True
    SQLALCHEMY_DATABASE_URI = Config.SQLALCHEMY_DATABASE_URI or "sqlite:///bugflow.db"
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False


class TestConfig(Config):
    """Testing: in-memory SQLite, CSRF disabled, mail sent inline."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    APP_BASE_URL = "http://localhost:5000"
    MAIL_SMTP_HOST = "smtp.test.local"
    MAIL_SMTP_PORT = 587
    MAIL_USERNAME = "bugflow@test.local"
    MAIL_PASSWORD = "test-password"
    MAIL_FROM_ADDRESS = "bugflow@test.local"
    MAIL_SEND_ASYNC = False  # deterministic EmailLog state in tests
    SUPABASE_URL = None
    SUPABASE_SERVICE_KEY = None
    WTF_CSRF_ENABLED = False  # disable CSRF for test requests
    RATELIMIT_ENABLED = False  # disable rate limiting in tests
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False
    SERVER_NAME = "localhost"

    @staticmethod
    def validate():
        """Skip validation in test mode: everything is hardcoded."""
        pass


class ProdConfig(Config):
    """Production."""

    DEBUG = False
    SESSION_COOKIE_SECURE = True
    REMEMBER_COOKIE_SECURE = True


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
