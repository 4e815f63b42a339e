"""
Application configuration.
This module defines the configuration settings for the Flask application, including database connection, secret key,
object storage, the Google Drive document host and the IP geolocation lookup used by the audit logger.
Everything is read from environment variables with development defaults. In production, make sure to set the
appropriate environment variables and secure the secret key.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent


class Config:
    """Base configuration shared by all environments."""

    # IMPORTANT: change this in production
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-change-me-please")

    # Database: SQLite for development (simple file in project folder)
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        f"sqlite:///{BASE_DIR / 'lrsync.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # CSRF protection (JSON clients send X-CSRFToken, see /auth/csrf-token)
    WTF_CSRF_ENABLED = True

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # S3-compatible object storage
    S3_REGION = os.environ.get("S3_REGION")
    S3_ACCESS_KEY_ID = os.environ.get("S3_ACCESS_KEY_ID")
    S3_SECRET_ACCESS_KEY = os.environ.get("S3_SECRET_ACCESS_KEY")
    S3_BUCKET_NAME = os.environ.get("S3_BUCKET_NAME", "")
    S3_PUBLIC_URL = os.environ.get("S3_PUBLIC_URL", "")
    # Only needed for non-AWS providers (e.g. DigitalOcean Spaces, MinIO)
    S3_ENDPOINT_URL = os.environ.get("S3_ENDPOINT_URL") or None
    S3_KEY_PREFIX = "lrsync"

    # Google Drive (service account)
    GOOGLE_SERVICE_ACCOUNT_EMAIL = os.environ.get("GOOGLE_SERVICE_ACCOUNT_EMAIL", "")
    GOOGLE_PRIVATE_KEY = os.environ.get("GOOGLE_PRIVATE_KEY", "")
    GOOGLE_DRIVE_FOLDER_ID = os.environ.get("GOOGLE_DRIVE_FOLDER_ID", "")

    # IP geolocation for audit entries. Empty URL disables the lookup.
    IP_GEOLOCATION_URL = os.environ.get("IP_GEOLOCATION_URL", "https://ipapi.co")
    IP_GEOLOCATION_TIMEOUT = float(os.environ.get("IP_GEOLOCATION_TIMEOUT", "3"))

    # Listing defaults
    DEFAULT_PAGE_SIZE = 10
    MAX_PAGE_SIZE = 100


class TestConfig(Config):
    """Configuration used by the test-suite."""

    TESTING = True
    SECRET_KEY = "test-secret"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    WTF_CSRF_ENABLED = False
    IP_GEOLOCATION_URL = ""
    S3_BUCKET_NAME = "test-bucket"
    S3_PUBLIC_URL = "https://test-bucket.s3.ap-southeast-1.amazonaws.com"
    GOOGLE_DRIVE_FOLDER_ID = "test-folder"
