# backend/storepos/config.py
from __future__ import annotations
import os
from decimal import Decimal


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored next to the instance folder by default
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///storepos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Flat sales tax applied after discount
    POS_TAX_RATE = Decimal(os.environ.get("POS_TAX_RATE", "0.10"))

    # Calendar days (sale numbers and daily reports) are cut in this zone
    POS_REPORT_TIMEZONE = os.environ.get("POS_REPORT_TIMEZONE", "UTC")
    POS_REPORT_TOP_PRODUCTS = int(os.environ.get("POS_REPORT_TOP_PRODUCTS", "5"))

    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    CORS_ALLOWED_ORIGINS = [
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ).split(",")
        if origin.strip()
    ]
