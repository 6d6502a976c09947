# backend/portal/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///portal.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Commerce platform app credentials
    SHOPIFY_CLIENT_ID = os.environ.get("SHOPIFY_CLIENT_ID", "")
    SHOPIFY_CLIENT_SECRET = os.environ.get("SHOPIFY_CLIENT_SECRET", "")
    SHOPIFY_API_VERSION = os.environ.get("SHOPIFY_API_VERSION", "2024-10")
    SHOPIFY_SCOPES = os.environ.get(
        "SHOPIFY_SCOPES",
        "read_products,read_inventory,write_inventory,read_orders,read_returns,write_returns,read_locations",
    )
    SHOPIFY_HTTP_TIMEOUT_SECONDS = float(os.environ.get("SHOPIFY_HTTP_TIMEOUT_SECONDS", "10"))
    SHOPIFY_OAUTH_REDIRECT_URL = os.environ.get(
        "SHOPIFY_OAUTH_REDIRECT_URL",
        "http://localhost:5000/api/shopify/oauth/callback",
    )

    # Browser landing page after the OAuth callback
    DASHBOARD_URL = os.environ.get("DASHBOARD_URL", "http://localhost:5173/client-dashboard")

    QC_PHOTO_STORAGE_DIR = os.environ.get("QC_PHOTO_STORAGE_DIR", "instance/qc-images")
    QC_PHOTO_RETENTION_DAYS = int(os.environ.get("QC_PHOTO_RETENTION_DAYS", "30"))
    QC_PHOTO_WARNING_DAYS = int(os.environ.get("QC_PHOTO_WARNING_DAYS", "25"))

    WEBHOOK_RETENTION_DAYS = int(os.environ.get("WEBHOOK_RETENTION_DAYS", "30"))
    OAUTH_STATE_TTL_MINUTES = int(os.environ.get("OAUTH_STATE_TTL_MINUTES", "10"))

    SYNC_PUSH_MAX_ATTEMPTS = int(os.environ.get("SYNC_PUSH_MAX_ATTEMPTS", "5"))
    SYNC_PUSH_BACKOFF_SECONDS = int(os.environ.get("SYNC_PUSH_BACKOFF_SECONDS", "30"))
    SYNC_PUSH_LEASE_SECONDS = int(os.environ.get("SYNC_PUSH_LEASE_SECONDS", "300"))

    LOGIN_RATE_LIMIT_MAX = int(os.environ.get("LOGIN_RATE_LIMIT_MAX", "5"))
    LOGIN_RATE_LIMIT_WINDOW_MINUTES = int(os.environ.get("LOGIN_RATE_LIMIT_WINDOW_MINUTES", "15"))


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SHOPIFY_CLIENT_ID = "test-client-id"
    SHOPIFY_CLIENT_SECRET = "test-webhook-secret"
    SYNC_PUSH_BACKOFF_SECONDS = 0
