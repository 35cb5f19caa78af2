"""
Configuration module for HiveChat application.
Stores all application settings and sensitive information.
"""

import os


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


class Config:
    """Application configuration class."""

    # JWT Configuration
    JWT_SECRET = os.environ.get("JWT_SECRET", "default-secret-key-change-in-production")
    JWT_ALGORITHM = "HS256"
    JWT_EXPIRE_MINUTES = _env_int("HIVECHAT_JWT_EXPIRE_MINUTES", 60 * 24 * 7)
    GUEST_TOKEN_HOURS = 24
    # Guests that never connect are removed once their token has expired
    GUEST_SWEEP_INTERVAL = _env_float("HIVECHAT_GUEST_SWEEP_INTERVAL", 300.0)

    # Server Configuration
    DEFAULT_HOST = os.environ.get("HIVECHAT_HOST", "localhost")
    DEFAULT_SERVER_PORT = _env_int("HIVECHAT_PORT", 8765)
    DEFAULT_API_PORT = DEFAULT_SERVER_PORT + 1

    # Seconds a connection may wait before presenting a token
    CONNECT_TIMEOUT = _env_float("HIVECHAT_CONNECT_TIMEOUT", 10.0)

    # Storage: "memory" or "sqlite"
    STORAGE_BACKEND = os.environ.get("HIVECHAT_STORAGE", "memory")
    SQLITE_DB_FILE = os.environ.get("HIVECHAT_DB", "hivechat.db")

    # Channels and messages
    GENERAL_CHANNEL = "general"
    CHANNEL_RETENTION = _env_int("HIVECHAT_CHANNEL_RETENTION", 50)
    RECENT_MESSAGES_LIMIT = 50
    MAX_MESSAGE_LENGTH = 4000
    MAX_CHANNEL_NAME_LENGTH = 80

    # Assistant (OpenAI-compatible chat completions endpoint)
    ASSISTANT_PREFIX = os.environ.get("HIVECHAT_ASSISTANT_PREFIX", "/askAI")
    ASSISTANT_URL = os.environ.get("HIVECHAT_ASSISTANT_URL", "")
    ASSISTANT_API_KEY = os.environ.get("HIVECHAT_ASSISTANT_API_KEY", "")
    ASSISTANT_MODEL = os.environ.get("HIVECHAT_ASSISTANT_MODEL", "gpt-4o-mini")
    ASSISTANT_TIMEOUT = _env_float("HIVECHAT_ASSISTANT_TIMEOUT", 60.0)

    # Uploads
    UPLOAD_DIR = os.environ.get("HIVECHAT_UPLOAD_DIR", os.path.join("public", "uploads"))
    UPLOAD_URL_PREFIX = "/uploads"
    UPLOAD_MAX_BYTES = 5 * 1024 * 1024
    UPLOAD_ALLOWED_TYPES = (
        "image/jpeg",
        "image/png",
        "image/gif",
        "application/pdf",
        "text/plain",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    )


# Create config instance
config = Config()
