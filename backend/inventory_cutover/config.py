# backend/inventory_cutover/config.py
from __future__ import annotations
import os


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/cutover.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///cutover.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # External POS platform (inventory counts + catalog metadata)
    POS_API_BASE_URL = os.environ.get("POS_API_BASE_URL", "https://connect.squareup.com")
    POS_ACCESS_TOKEN = os.environ.get("POS_ACCESS_TOKEN", "")
    POS_API_VERSION = os.environ.get("POS_API_VERSION", "2024-01-18")
    POS_TIMEOUT_SECONDS = float(os.environ.get("POS_TIMEOUT_SECONDS", "30"))

    # Catalog metadata is cached for the lifetime of the client (one per app)
    CATALOG_CACHE_TTL_SECONDS = _int_env("CATALOG_CACHE_TTL_SECONDS", 900)
    CATALOG_FETCH_CHUNK_SIZE = _int_env("CATALOG_FETCH_CHUNK_SIZE", 20)
    CATALOG_FETCH_MAX_WORKERS = _int_env("CATALOG_FETCH_MAX_WORKERS", 4)

    # Cached product metadata older than this is refreshed during extraction
    METADATA_STALE_AFTER_HOURS = _int_env("METADATA_STALE_AFTER_HOURS", 24)

    # Upper bound on fully-resolved windows skipped in one extraction call
    EXTRACTION_AUTO_ADVANCE_LIMIT = _int_env("EXTRACTION_AUTO_ADVANCE_LIMIT", 100)

    # Browser origins allowed to call the API (comma-separated)
    CORS_ALLOWED_ORIGINS = tuple(
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ).split(",")
        if origin.strip()
    )
