import logging
import os
import secrets

import structlog

logger = structlog.get_logger(__name__)

# Environment
APP_ENV = os.getenv("APP_ENV", "development")
PORT = int(os.getenv("PORT", 5000))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# Auth
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24))
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD")
ADMIN_NAME = os.getenv("ADMIN_NAME", "Store Admin")

# Checkout
FREE_SHIPPING_THRESHOLD = float(os.getenv("FREE_SHIPPING_THRESHOLD", 500))
SHIPPING_FEE = float(os.getenv("SHIPPING_FEE", 50))

# Files
UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploaded_images")
ASSETS_DIR = os.getenv("ASSETS_DIR", "attached_assets")
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", 10 * 1024 * 1024))

# Raw exception text is only returned to clients outside production
EXPOSE_ERROR_DETAILS = APP_ENV != "production"


def load_jwt_secret():
    secret = os.getenv("JWT_SECRET")
    if secret:
        return secret
    if APP_ENV == "production":
        raise RuntimeError("JWT_SECRET must be set in production")
    logger.warning("jwt_secret_generated", note="JWT_SECRET not set, tokens will not survive a restart")
    return secrets.token_urlsafe(48)


JWT_SECRET = load_jwt_secret()


def configure_logging(level=None):
    """Console output in development, one JSON object per line in production."""
    level_name = (level or LOG_LEVEL).upper()
    renderer = structlog.processors.JSONRenderer() if APP_ENV == "production" else structlog.dev.ConsoleRenderer()
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if APP_ENV == "production":
        processors.append(structlog.processors.format_exc_info)
    structlog.configure(
        processors=processors + [renderer],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level_name, logging.INFO)),
    )
