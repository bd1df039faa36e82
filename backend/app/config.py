# backend/app/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/atelier.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///atelier.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Custody and return photos never live under a public static folder
    PRIVATE_STORAGE_PATH = os.environ.get("PRIVATE_STORAGE_PATH")

    # Lifetime of a signed photo URL, in seconds
    PHOTO_URL_MAX_AGE = int(os.environ.get("PHOTO_URL_MAX_AGE", "1800"))

    # Days blocked before delivery and after return around every rental
    RENT_BUFFER_DAYS = int(os.environ.get("RENT_BUFFER_DAYS", "2"))

    DEFAULT_PER_PAGE = 15
    MAX_PER_PAGE = 100

    # Browser origins allowed by the CORS after_request hook
    CORS_ALLOWED_ORIGINS = {
        o.strip()
        for o in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173,http://localhost:4173,http://127.0.0.1:4173",
        ).split(",")
        if o.strip()
    }

    # Staff session lifetimes
    SESSION_ABSOLUTE_HOURS = int(os.environ.get("SESSION_ABSOLUTE_HOURS", "24"))
    SESSION_IDLE_HOURS = int(os.environ.get("SESSION_IDLE_HOURS", "2"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
