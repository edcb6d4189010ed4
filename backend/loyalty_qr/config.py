# backend/loyalty_qr/config.py
from __future__ import annotations
import os


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return int(value)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/loyalty_qr.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///loyalty_qr.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # QR token lifetimes (minutes)
    QR_CUSTOMER_TTL_MINUTES = _int_env("QR_CUSTOMER_TTL_MINUTES", 5)
    QR_REDEMPTION_TTL_MINUTES = _int_env("QR_REDEMPTION_TTL_MINUTES", 10)

    # Staff scanner defaults
    SCANNER_FPS = _int_env("SCANNER_FPS", 10)
    SCANNER_QRBOX = _int_env("SCANNER_QRBOX", 280)
    SCANNER_SUCCESS_DELAY_MS = _int_env("SCANNER_SUCCESS_DELAY_MS", 750)

    CORS_ALLOWED_ORIGINS = tuple(
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173,http://localhost:4173,http://127.0.0.1:4173",
        ).split(",")
        if origin.strip()
    )
