"""
Environment-aware configuration.
Values are read once here; create_app freezes the auth-related ones into
services.settings.AuthSettings so components never look at os.environ.
"""
import os
from dotenv import load_dotenv

load_dotenv()  # Read .env if present


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class BaseConfig:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")  # Set a strong key in production
    DEBUG = False
    TESTING = False
    # CORS: in dev we usually allow '*', in prod supply a comma-separated list in env
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")
    APP_ENV = os.getenv("APP_ENV", "dev")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # jwt configurations
    JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
    JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
    ACCESS_TOKEN_EXPIRATION_MS = os.getenv("ACCESS_TOKEN_EXPIRATION_MS", str(15 * 60 * 1000))
    REFRESH_TOKEN_EXPIRATION_MS = os.getenv("REFRESH_TOKEN_EXPIRATION_MS", str(7 * 24 * 60 * 60 * 1000))
    # refresh tokens need a live session row to be honoured
    SESSION_BACKED = _env_bool("SESSION_BACKED", "true")
    COOKIE_SECURE = False

    EMAIL_VERIFICATION_REQUIRED = _env_bool("EMAIL_VERIFICATION_REQUIRED")
    USERNAME_MAX_ATTEMPTS = int(os.getenv("USERNAME_MAX_ATTEMPTS", "10"))

    # mail
    SMTP_HOST = os.getenv("SMTP_HOST")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USER = os.getenv("SMTP_USER")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
    SMTP_USE_TLS = _env_bool("SMTP_USE_TLS", "true")
    MAIL_FROM = os.getenv("MAIL_FROM")
    MAIL_ASYNC = _env_bool("MAIL_ASYNC", "true")

    # social sign-in
    FIREBASE_PROJECT_ID = os.getenv("FIREBASE_PROJECT_ID")
    DISCORD_ENABLED = _env_bool("DISCORD_ENABLED")
    DISCORD_CLIENT_ID = os.getenv("DISCORD_CLIENT_ID")
    DISCORD_CLIENT_SECRET = os.getenv("DISCORD_CLIENT_SECRET")
    DISCORD_CALLBACK_URL = os.getenv("DISCORD_CALLBACK_URL", "http://localhost:8000/api/v1/auth/discord/callback")
    # where the Discord callback sends the browser back to
    FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    # In dev, propagate exceptions so our error handler has full context
    PROPAGATE_EXCEPTIONS = True


class TestingConfig(BaseConfig):
    TESTING = True
    JWT_SECRET = "test-secret-key-for-testing-only"
    EMAIL_VERIFICATION_REQUIRED = False
    SESSION_BACKED = True
    MAIL_ASYNC = False
    LOG_LEVEL = "WARNING"


class ProductionConfig(BaseConfig):
    DEBUG = False
    COOKIE_SECURE = True


def get_config(name: str | None):
    """
    Select config class.
    - If name is provided, choose by name.
    - Else choose based on APP_ENV (dev/test/prod).
    """
    env = (name or os.getenv("APP_ENV", "dev")).lower()
    if env in ["prod", "production"]:
        return ProductionConfig
    if env in ["test", "testing"]:
        return TestingConfig
    return DevelopmentConfig
