# backend/warranty/config.py
from __future__ import annotations
import os


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/warranty.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///warranty.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Host used in the QR deep link: https://warranty.<host>/claim/<barcode>
    WARRANTY_QR_HOST = os.environ.get("WARRANTY_QR_HOST", "example.com")

    # Secure barcode generator
    BARCODE_MAX_RETRIES = int(os.environ.get("BARCODE_MAX_RETRIES", "3"))
    BARCODE_COLLISION_WARN_PCT = float(os.environ.get("BARCODE_COLLISION_WARN_PCT", "0.01"))
    BARCODE_COLLISION_CRITICAL_PCT = float(os.environ.get("BARCODE_COLLISION_CRITICAL_PCT", "0.1"))
    BATCH_MAX_QUANTITY = 10000

    # Bounded retries for callers hitting an optimistic-lock conflict on a claim
    CLAIM_TRANSITION_RETRIES = int(os.environ.get("CLAIM_TRANSITION_RETRIES", "3"))
