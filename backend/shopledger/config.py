# backend/shopledger/config.py
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

    # SQLite DB stored in backend/instance/shopledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///shopledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Store-level retry for lock timeouts and lost compare-and-swap races
    DB_RETRY_ATTEMPTS = _int_env("DB_RETRY_ATTEMPTS", 3)
    DB_RETRY_BACKOFF = float(os.environ.get("DB_RETRY_BACKOFF", "0.1"))

    # Human-readable document numbers: PREFIX-YYYYMMDD-NNNN
    ORDER_NUMBER_PREFIX = os.environ.get("ORDER_NUMBER_PREFIX", "MLA")
    RMA_NUMBER_PREFIX = os.environ.get("RMA_NUMBER_PREFIX", "RMA")

    # Delivery pricing (cents)
    DELIVERY_FREE_THRESHOLD_CENTS = _int_env("DELIVERY_FREE_THRESHOLD_CENTS", 10_000)
    DELIVERY_DEFAULT_FEE_CENTS = _int_env("DELIVERY_DEFAULT_FEE_CENTS", 1_000)
    # Keys are normalized commune names (lowercase, accents and separators dropped)
    DELIVERY_ZONE_FEES_CENTS = {
        "gombe": 500,
        "kinshasa": 700,
        "kalamu": 600,
        "kasavubu": 600,
        "limete": 600,
        "lingwala": 600,
        "barumbu": 600,
        "lemba": 800,
        "matete": 800,
        "ngiringiri": 800,
        "bumbu": 800,
        "makala": 800,
        "selembao": 800,
        "kimbanseke": 900,
        "masina": 900,
        "ndjili": 900,
        "montngafula": 900,
        "ngaliema": 900,
    }

    # External payment provider (opaque create/verify capability)
    PAYMENT_PROVIDER_BASE_URL = os.environ.get("PAYMENT_PROVIDER_BASE_URL", "http://localhost:8900/v1")
    PAYMENT_PROVIDER_SECRET = os.environ.get("PAYMENT_PROVIDER_SECRET", "")
    PAYMENT_PROVIDER_TIMEOUT = float(os.environ.get("PAYMENT_PROVIDER_TIMEOUT", "15"))
    PAYMENT_VERIFY_ATTEMPTS = _int_env("PAYMENT_VERIFY_ATTEMPTS", 3)
    PAYMENT_VERIFY_BACKOFF = float(os.environ.get("PAYMENT_VERIFY_BACKOFF", "0.5"))

    # HMAC-SHA256 key for webhook bodies; empty disables signature checks
    PAYMENT_WEBHOOK_SECRET = os.environ.get("PAYMENT_WEBHOOK_SECRET", "")
