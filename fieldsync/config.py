"""
Field Sync Service
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when PostgreSQL is not running
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'fieldsync_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Generate a random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)


def _db_url():
    # Railway/Heroku use postgres:// but SQLAlchemy 2.0 requires postgresql://
    raw = os.getenv("DATABASE_URL", "")
    return raw.replace("postgres://", "postgresql://", 1) if raw else ""


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")
    JWT_ACCESS_EXPIRES = int(os.getenv("JWT_ACCESS_EXPIRES", "3600"))
    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,   # recycle connections every 5 min
    }

    # Rate limiter storage (memory:// for a single worker)
    RATELIMIT_STORAGE_URI = os.getenv("REDIS_URL", "memory://")

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # ── Media uploads ────────────────────────────────────────────────────
    UPLOAD_FOLDER = os.getenv("UPLOAD_FOLDER", os.path.join(basedir, "uploads"))
    PHOTO_MAX_BYTES = 10 * 1024 * 1024
    AUDIO_MAX_BYTES = 50 * 1024 * 1024
    # Global request cap sits above the largest per-kind limit (multipart overhead)
    MAX_CONTENT_LENGTH = 52 * 1024 * 1024

    # ── Field app behaviour ──────────────────────────────────────────────
    FIELD_APP_ACTIVE_STATUSES = ("Planning", "Ready", "In Progress")
    FIELD_NODE_SIGNOFF_TEMPLATE_ID = os.getenv(
        "FIELD_NODE_SIGNOFF_TEMPLATE_ID", "fiber-node-signoff-v1"
    )
    FIELD_NODE_SIGNOFF_TEAM_ID = (
        int(os.environ["FIELD_NODE_SIGNOFF_TEAM_ID"])
        if os.getenv("FIELD_NODE_SIGNOFF_TEAM_ID") else None
    )
    FIELD_NODE_SIGNOFF_DAYS = 7

    # ── Audio processing (transcription + splice extraction) ─────────────
    TRANSCRIPTION_API_URL = os.getenv("TRANSCRIPTION_API_URL", "https://api.openai.com/v1")
    TRANSCRIPTION_API_KEY = os.getenv("TRANSCRIPTION_API_KEY")
    TRANSCRIPTION_MODEL = os.getenv("TRANSCRIPTION_MODEL", "whisper-1")
    EXTRACTION_MODEL = os.getenv("EXTRACTION_MODEL", "gpt-4o-mini")
    MEDIA_PROCESSING_MAX_ATTEMPTS = int(os.getenv("MEDIA_PROCESSING_MAX_ATTEMPTS", "3"))
    MEDIA_PROCESSING_RETRY_SECONDS = float(os.getenv("MEDIA_PROCESSING_RETRY_SECONDS", "2"))
    MEDIA_PROCESSING_INLINE = False


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _db_url() or _SQLITE_DEV


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    # Background jobs run on the request thread so tests can observe them
    MEDIA_PROCESSING_INLINE = True
    MEDIA_PROCESSING_MAX_ATTEMPTS = 2
    MEDIA_PROCESSING_RETRY_SECONDS = 0


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    SQLALCHEMY_DATABASE_URI = _db_url() or None
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # Must be set explicitly in production

    # Override engine options with PostgreSQL statement timeout
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        "connect_args": {
            "options": "-c statement_timeout=30000",  # 30s query timeout
        },
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")
        if not os.getenv("JWT_SECRET_KEY"):
            raise RuntimeError("JWT_SECRET_KEY environment variable must be set in production")


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
