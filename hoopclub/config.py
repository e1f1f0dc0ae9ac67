"""Application configuration, read from the environment (and a ``.env`` file)."""
from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _env_bool(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).lower() in ("1", "true", "on", "yes")


class Config:
    """Default configuration."""

    SECRET_KEY = os.environ.get("SECRET_KEY") or "hoopclub-dev"

    # Record store
    DATA_FILE = os.environ.get("HOOPCLUB_DATA_FILE") or "data/hoopclub.json"

    # Blob store
    UPLOAD_FOLDER = os.environ.get("HOOPCLUB_UPLOAD_FOLDER") or "data/uploads"
    UPLOAD_URL = os.environ.get("HOOPCLUB_UPLOAD_URL") or "/uploads"
    MAX_CONTENT_LENGTH = 5 * 1024 * 1024
    ALLOWED_IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg"}
    BLOB_RETRY_ATTEMPTS = int(os.environ.get("BLOB_RETRY_ATTEMPTS") or 3)
    BLOB_RETRY_DELAY = float(os.environ.get("BLOB_RETRY_DELAY") or 1.0)

    # Presentation defaults
    DEFAULT_LANGUAGE = os.environ.get("DEFAULT_LANGUAGE") or "en"
    DEFAULT_THEME = os.environ.get("DEFAULT_THEME") or "light"

    # Server
    HOST = os.environ.get("HOST") or "0.0.0.0"
    PORT = int(os.environ.get("PORT") or 5000)
    DEBUG = _env_bool("DEBUG")

    # Logging
    LOG_LEVEL = os.environ.get("LOG_LEVEL") or "INFO"

    TESTING = False


class TestingConfig(Config):
    """In-memory store, no retry delay."""

    TESTING = True
    SECRET_KEY = "hoopclub-test"
    DATA_FILE = None
    BLOB_RETRY_DELAY = 0.0


config = {
    "default": Config,
    "testing": TestingConfig,
}


def configure_logging(level: str = Config.LOG_LEVEL) -> None:
    """Install the root handler once; later calls only adjust the level."""
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(format=LOG_FORMAT)
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))
