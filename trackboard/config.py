import os


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

    # --- Identity ---
    # The identity provider in front of us forwards the authenticated
    # user id in this header. Never expose the app without that proxy.
    AUTH_USER_HEADER = os.environ.get("AUTH_USER_HEADER", "X-User-Id")

    # --- Hierarchy walks ---
    # Upper bound on parent-pointer walks (board ancestors, ticket parents).
    BOARD_HIERARCHY_MAX_DEPTH = int(os.environ.get("BOARD_HIERARCHY_MAX_DEPTH", 32))
    TICKET_HIERARCHY_MAX_DEPTH = int(os.environ.get("TICKET_HIERARCHY_MAX_DEPTH", 32))

    # --- Rate limits (Flask-Limiter syntax) ---
    RATELIMIT_DEFAULT_WRITE = os.environ.get("RATELIMIT_DEFAULT_WRITE", "120 per minute")

    # --- SQLAlchemy ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

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
    SQLALCHEMY_DATABASE_URI = Config.SQLALCHEMY_DATABASE_URI or "sqlite:///trackboard.db"


class TestConfig(Config):
    """Testing: in-memory SQLite, rate limiting off."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    AUTH_USER_HEADER = "X-User-Id"
    BOARD_HIERARCHY_MAX_DEPTH = 32
    TICKET_HIERARCHY_MAX_DEPTH = 32
    RATELIMIT_ENABLED = False  # disable rate limiting in tests

    @staticmethod
    def validate():
        """Skip validation in test mode: everything is hardcoded."""
        pass


class ProdConfig(Config):
    """Production."""

    DEBUG = False


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
