# backend/warranty/routes/system.py
"""
System health endpoint.

Reports database reachability and basic warranty table counts for
deployment checks.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import BarcodeGenerationBatch, WarrantyBarcode, WarrantyClaim
from warranty.time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    start_time = time.time()
    try:
        barcode_count = db.session.query(WarrantyBarcode).count()
        batch_count = db.session.query(BarcodeGenerationBatch).count()
        claim_count = db.session.query(WarrantyClaim).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "barcodes": barcode_count,
                "batches": batch_count,
                "claims": claim_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        db.session.rollback()
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: database reachable
    - 503: database unhealthy
    """
    database_health = check_database_health()
    http_status = 503 if database_health["status"] == "unhealthy" else 200

    return {
        "status": database_health["status"],
        "timestamp": to_utc_z(utcnow()),
        "checks": {"database": database_health},
    }, http_status
