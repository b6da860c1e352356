# Overview: Read-only aggregate reports over barcodes, collisions and claims.

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import func

from ..extensions import db
from ..models import BarcodeCollision, BarcodeGenerationBatch, WarrantyBarcode, WarrantyClaim
from .barcode_generator import GeneratorConfig, current_config
from .batch_service import security_assessment
from warranty.errors import ValidationError


def _check_window(start: datetime | None, end: datetime | None) -> None:
    if start is not None and end is not None and start > end:
        raise ValidationError("start must not be after end", start=start, end=end)


def _window(q, column, start, end):
    if start is not None:
        q = q.filter(column >= start)
    if end is not None:
        q = q.filter(column <= end)
    return q


def _money(value) -> str:
    return str(Decimal(str(value or 0)).quantize(Decimal("0.01")))


def generation_stats(
    *,
    storefront_id: int | None = None,
    product_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    config: GeneratorConfig | None = None,
) -> dict:
    """
    Generation health for a scope and time window.

    Collisions from single-barcode generation carry no tenant, so with a
    storefront or product filter only batch collisions are counted.
    """
    _check_window(start, end)
    config = config or current_config()

    barcodes = db.session.query(WarrantyBarcode)
    if storefront_id is not None:
        barcodes = barcodes.filter(WarrantyBarcode.storefront_id == storefront_id)
    if product_id is not None:
        barcodes = barcodes.filter(WarrantyBarcode.product_id == product_id)
    barcodes = _window(barcodes, WarrantyBarcode.generated_at, start, end)

    total_generated = barcodes.count()
    by_status = dict(
        barcodes.with_entities(WarrantyBarcode.status, func.count(WarrantyBarcode.id))
        .group_by(WarrantyBarcode.status)
        .all()
    )
    retried = barcodes.filter(WarrantyBarcode.generation_attempt > 1).count()

    collisions = db.session.query(func.count(BarcodeCollision.id))
    if storefront_id is not None or product_id is not None:
        collisions = collisions.join(
            BarcodeGenerationBatch, BarcodeGenerationBatch.id == BarcodeCollision.batch_id
        )
        if storefront_id is not None:
            collisions = collisions.filter(BarcodeGenerationBatch.storefront_id == storefront_id)
        if product_id is not None:
            collisions = collisions.filter(BarcodeGenerationBatch.product_id == product_id)
    collision_count = _window(collisions, BarcodeCollision.detected_at, start, end).scalar() or 0

    attempts = total_generated + collision_count
    collision_rate = collision_count / attempts * 100 if attempts else 0.0
    entropy_utilization = total_generated / config.total_combinations * 100
    security_status, action = security_assessment(collision_rate, config)

    return {
        "total_generated": total_generated,
        "by_status": by_status,
        "retried_barcodes": retried,
        "collision_count": collision_count,
        "collision_rate": collision_rate,
        "utilized_combinations": total_generated,
        "total_possible_combinations": str(config.total_combinations),
        "entropy_utilization": entropy_utilization,
        "security_status": security_status,
        "recommended_action": action,
    }


def collision_stats(*, start: datetime | None = None, end: datetime | None = None) -> dict:
    _check_window(start, end)
    q = _window(db.session.query(BarcodeCollision), BarcodeCollision.detected_at, start, end)

    total = q.count()
    in_batches = q.filter(BarcodeCollision.batch_id.isnot(None)).count()
    max_attempt = q.with_entities(func.max(BarcodeCollision.collision_attempt)).scalar()
    by_attempt = dict(
        q.with_entities(BarcodeCollision.collision_attempt, func.count(BarcodeCollision.id))
        .group_by(BarcodeCollision.collision_attempt)
        .all()
    )
    by_day = {
        str(day): count
        for day, count in q.with_entities(
            func.date(BarcodeCollision.detected_at), func.count(BarcodeCollision.id)
        )
        .group_by(func.date(BarcodeCollision.detected_at))
        .order_by(func.date(BarcodeCollision.detected_at))
        .all()
    }

    return {
        "total_collisions": total,
        "batch_collisions": in_batches,
        "single_collisions": total - in_batches,
        "max_attempt": max_attempt or 0,
        "by_attempt": by_attempt,
        "by_day": by_day,
    }


def claim_statistics(
    storefront_id: int,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict:
    _check_window(start, end)
    q = _window(
        db.session.query(WarrantyClaim).filter(WarrantyClaim.storefront_id == storefront_id),
        WarrantyClaim.claim_date,
        start,
        end,
    )

    def grouped(column) -> dict:
        return dict(q.with_entities(column, func.count(WarrantyClaim.id)).group_by(column).all())

    by_status = grouped(WarrantyClaim.status)
    totals = q.with_entities(
        func.sum(WarrantyClaim.repair_cost),
        func.sum(WarrantyClaim.shipping_cost),
        func.sum(WarrantyClaim.replacement_cost),
        func.sum(WarrantyClaim.total_cost),
        func.avg(WarrantyClaim.customer_satisfaction_rating),
    ).one()

    completed = q.with_entities(WarrantyClaim.claim_date, WarrantyClaim.completed_at).filter(
        WarrantyClaim.completed_at.isnot(None)
    ).all()
    avg_processing_hours = None
    if completed:
        hours = [(done - opened).total_seconds() / 3600 for opened, done in completed]
        avg_processing_hours = sum(hours) / len(hours)

    return {
        "total_claims": sum(by_status.values()),
        "by_status": by_status,
        "by_category": grouped(WarrantyClaim.issue_category),
        "by_severity": grouped(WarrantyClaim.severity),
        "by_resolution_type": {k: v for k, v in grouped(WarrantyClaim.resolution_type).items() if k is not None},
        "average_processing_time_hours": avg_processing_hours,
        "average_satisfaction": float(totals[4]) if totals[4] is not None else None,
        "total_repair_cost": _money(totals[0]),
        "total_shipping_cost": _money(totals[1]),
        "total_replacement_cost": _money(totals[2]),
        "total_cost": _money(totals[3]),
    }
