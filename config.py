import os
import secrets
import warnings

from dotenv import load_dotenv

basedir = os.path.abspath(os.path.dirname(__file__))
load_dotenv(os.path.join(basedir, ".env"))


def _env_flag(name, default):
    return os.environ.get(name, str(default)).lower() in ["true", "on", "1"]


def _env_list(name, default):
    value = os.environ.get(name)
    if not value:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


class Config:
    _secret_key = os.environ.get("SECRET_KEY")

    if not _secret_key:
        _secret_key = secrets.token_urlsafe(32)
        warnings.warn(
            "🔐 SECRET_KEY not set! Using auto-generated key. "
            "Run 'python3 generate_secrets.py' to generate secure keys.",
            UserWarning,
        )

    SECRET_KEY = _secret_key

    # Bearer token for /admin endpoints; admin endpoints are disabled without it
    ADMIN_TOKEN = os.environ.get("ADMIN_TOKEN") or os.environ.get("CRON_SECRET")

    def __init__(self):
        """Initialize configuration with dynamic database URI"""
        self.SQLALCHEMY_DATABASE_URI = self._build_database_uri()

    def _build_database_uri(self):
        """Build database URI from environment variables"""
        database_url = os.environ.get("DATABASE_URL")

        if database_url:
            return database_url

        db_type = os.environ.get("DB_TYPE", "sqlite")

        if db_type.lower() == "postgresql":
            db_host = os.environ.get("DB_HOST") or "localhost"
            db_port = os.environ.get("DB_PORT") or "5432"
            db_name = os.environ.get("DB_NAME") or "cfb_pickem_db"
            db_user = os.environ.get("DB_USER") or "cfb_user"
            db_password = os.environ.get("DB_PASSWORD") or "cfb_password"

            return f"postgresql+psycopg://{db_user}:{db_password}@{db_host}:{db_port}/{db_name}"

        return "sqlite:///" + os.path.join(basedir, "cfb_pickem.db")

    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Email configuration
    MAIL_SERVER = os.environ.get("MAIL_SERVER")
    MAIL_PORT = int(os.environ.get("MAIL_PORT") or 587)
    MAIL_USE_TLS = _env_flag("MAIL_USE_TLS", True)
    MAIL_USERNAME = os.environ.get("MAIL_USERNAME")
    MAIL_PASSWORD = os.environ.get("MAIL_PASSWORD")
    FROM_EMAIL = os.environ.get("FROM_EMAIL") or os.environ.get("MAIL_USERNAME")
    FROM_NAME = os.environ.get("FROM_NAME", "CFB Pick'em")

    # CollegeFootballData API
    CFB_API_BASE_URL = (
        os.environ.get("CFB_API_BASE_URL") or "https://api.collegefootballdata.com"
    )
    CFB_API_KEY = os.environ.get("CFB_API_KEY")
    PREFERRED_LINE_PROVIDERS = _env_list(
        "PREFERRED_LINE_PROVIDERS", ["DraftKings", "ESPN Bet", "Bovada"]
    )

    # Season calendar
    POSTSEASON_START_WEEK = int(os.environ.get("POSTSEASON_START_WEEK") or 15)
    POSTSEASON_WEEK = int(os.environ.get("POSTSEASON_WEEK") or 16)
    TIMEZONE = os.environ.get("TIMEZONE", "US/Eastern")

    # Caching configuration
    CACHE_TYPE = os.environ.get("CACHE_TYPE", "RedisCache")
    CACHE_DEFAULT_TIMEOUT = int(os.environ.get("CACHE_DEFAULT_TIMEOUT", 300))
    CACHE_REDIS_URL = os.environ.get("CACHE_REDIS_URL", "redis://localhost:6379/0")
    CACHE_KEY_PREFIX = "cfb_pickem:"

    # Scheduler configuration
    SCHEDULER_ENABLED = _env_flag("SCHEDULER_ENABLED", True)

    # Logging configuration
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_TO_CONSOLE = _env_flag("LOG_TO_CONSOLE", True)
    LOG_TO_FILE = _env_flag("LOG_TO_FILE", True)
    LOG_DIR = os.environ.get("LOG_DIR", "logs")

    # Environment detection
    FLASK_ENV = os.environ.get("FLASK_ENV", "development")
    DEBUG = FLASK_ENV == "development"
    TESTING = False


class DevelopmentConfig(Config):
    """Development configuration with helpful defaults"""

    DEBUG = True
    SQLALCHEMY_ECHO = _env_flag("SQLALCHEMY_ECHO", False)

    def __init__(self):
        super().__init__()
        # Fallback to SimpleCache if Redis isn't available in development
        try:
            import redis

            redis_client = redis.Redis.from_url(self.CACHE_REDIS_URL)
            redis_client.ping()
        except (ImportError, redis.exceptions.ConnectionError):
            self.CACHE_TYPE = "SimpleCache"
            warnings.warn(
                "🔶 Redis not available, falling back to SimpleCache for development.",
                UserWarning,
            )


class ProductionConfig(Config):
    """Production configuration with security focus"""

    DEBUG = False

    def __init__(self):
        super().__init__()

        if not os.environ.get("SECRET_KEY"):
            warnings.warn(
                "🚨 PRODUCTION WARNING: SECRET_KEY not explicitly set! "
                "Using auto-generated key is not recommended for production.",
                UserWarning,
            )
        if not self.ADMIN_TOKEN:
            warnings.warn(
                "🚨 PRODUCTION WARNING: ADMIN_TOKEN not set! Admin endpoints are disabled.",
                UserWarning,
            )
        if not self.CFB_API_KEY:
            warnings.warn(
                "🚨 PRODUCTION WARNING: CFB_API_KEY not set! Game sync will fail.",
                UserWarning,
            )


class TestingConfig(Config):
    """Testing configuration"""

    TESTING = True
    DEBUG = False
    CACHE_TYPE = "SimpleCache"
    SCHEDULER_ENABLED = False
    LOG_TO_FILE = False
    ADMIN_TOKEN = "test-admin-token"
    CFB_API_KEY = "test-api-key"
    MAIL_USERNAME = None
    MAIL_PASSWORD = None

    def __init__(self):
        self.SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"


# Configuration mapping
config = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
    "default": DevelopmentConfig,
}
