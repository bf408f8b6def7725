# backend/bms_pos/config.py
from __future__ import annotations
import os


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/bms_pos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///bms_pos.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # IVA in basis points (1600 = 16%)
    TAX_RATE_BPS = int(os.environ.get("TAX_RATE_BPS", "1600"))

    # Credit sales
    DEFAULT_CREDIT_DAYS = int(os.environ.get("DEFAULT_CREDIT_DAYS", "15"))
    PAYMENT_TOLERANCE_CENTS = int(os.environ.get("PAYMENT_TOLERANCE_CENTS", "5"))

    # Exchange rate (Bs per USD)
    FALLBACK_EXCHANGE_RATE = os.environ.get("FALLBACK_EXCHANGE_RATE", "40.00")
    EXCHANGE_RATE_SOURCE_URL = os.environ.get("EXCHANGE_RATE_SOURCE_URL", "https://www.bcv.org.ve/")
    EXCHANGE_RATE_REFRESH_SECONDS = int(os.environ.get("EXCHANGE_RATE_REFRESH_SECONDS", "3600"))
    EXCHANGE_RATE_REFRESH_ENABLED = os.environ.get("EXCHANGE_RATE_REFRESH_ENABLED", "true").lower() == "true"

    LOW_STOCK_THRESHOLD = int(os.environ.get("LOW_STOCK_THRESHOLD", "10"))
