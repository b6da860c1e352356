# Overview: Persistence for warranty barcodes, generation batches and the collision log.

"""
Barcode Store

UNIQUENESS: barcode_number is protected by a unique constraint. That
constraint is the only linearizable uniqueness guarantee; is_unique() is an
optimistic pre-check, and a constraint violation on insert is treated as a
collision observed after the fact (DuplicateKey).

ATOMICITY: insert_many() either makes every row visible or none of them.

The collision log is committed as soon as a collision is observed so it
survives a later rollback of the barcode insert.
"""

from __future__ import annotations

from typing import Iterable

from sqlalchemy.exc import IntegrityError, OperationalError

from ..extensions import db
from ..models import BarcodeCollision, BarcodeGenerationBatch, WarrantyBarcode
from warranty.errors import DuplicateKey, NotFound, StoreUnavailable
from warranty.time_utils import utcnow


def _unavailable(exc: OperationalError) -> StoreUnavailable:
    db.session.rollback()
    return StoreUnavailable("Barcode store unavailable", cause=str(exc.orig))


def _commit() -> None:
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise
    except OperationalError as exc:
        raise _unavailable(exc) from exc


def insert(barcode: WarrantyBarcode) -> WarrantyBarcode:
    """Persist one barcode. DuplicateKey if the number already exists."""
    db.session.add(barcode)
    try:
        _commit()
    except IntegrityError as exc:
        raise DuplicateKey(
            f"Barcode {barcode.barcode_number} already exists",
            key=barcode.barcode_number,
        ) from exc
    return barcode


def insert_many(barcodes: list[WarrantyBarcode]) -> list[WarrantyBarcode]:
    """Persist all barcodes in one transaction (all or nothing)."""
    if not barcodes:
        return barcodes
    db.session.add_all(barcodes)
    try:
        _commit()
    except IntegrityError as exc:
        raise DuplicateKey(
            f"Bulk insert of {len(barcodes)} barcodes hit the uniqueness constraint",
            count=len(barcodes),
        ) from exc
    return barcodes


def save(barcode: WarrantyBarcode) -> WarrantyBarcode:
    """Persist a state transition on an existing barcode."""
    _commit()
    return barcode


def lookup_by_number(barcode_number: str) -> WarrantyBarcode | None:
    try:
        return db.session.query(WarrantyBarcode).filter_by(barcode_number=barcode_number).first()
    except OperationalError as exc:
        raise _unavailable(exc) from exc


def get_barcode(barcode_id: int) -> WarrantyBarcode:
    barcode = db.session.get(WarrantyBarcode, barcode_id)
    if barcode is None:
        raise NotFound("WarrantyBarcode", barcode_id)
    return barcode


def get_by_number_or_404(barcode_number: str) -> WarrantyBarcode:
    barcode = lookup_by_number(barcode_number)
    if barcode is None:
        raise NotFound("WarrantyBarcode", barcode_number)
    return barcode


def is_unique(barcode_number: str) -> bool:
    try:
        row = (
            db.session.query(WarrantyBarcode.id)
            .filter_by(barcode_number=barcode_number)
            .first()
        )
    except OperationalError as exc:
        raise _unavailable(exc) from exc
    return row is None


def existing_numbers(candidates: Iterable[str]) -> set[str]:
    """Subset of candidates already persisted (used after a bulk-insert conflict)."""
    candidates = list(candidates)
    if not candidates:
        return set()
    try:
        rows = (
            db.session.query(WarrantyBarcode.barcode_number)
            .filter(WarrantyBarcode.barcode_number.in_(candidates))
            .all()
        )
    except OperationalError as exc:
        raise _unavailable(exc) from exc
    return {row.barcode_number for row in rows}


def log_collision(
    attempted_barcode: str,
    attempt: int,
    batch_id: int | None = None,
    *,
    now=None,
) -> BarcodeCollision:
    """Append a collision event. Never mutated afterwards."""
    collision = BarcodeCollision(
        attempted_barcode=attempted_barcode,
        collision_attempt=attempt,
        batch_id=batch_id,
        detected_at=now or utcnow(),
    )
    db.session.add(collision)
    _commit()
    return collision


def list_barcodes(
    *,
    storefront_id: int,
    product_id: int | None = None,
    status: str | None = None,
    batch_id: int | None = None,
    customer_id: int | None = None,
    limit: int = 200,
    offset: int = 0,
) -> list[WarrantyBarcode]:
    q = db.session.query(WarrantyBarcode).filter(WarrantyBarcode.storefront_id == storefront_id)
    if product_id is not None:
        q = q.filter(WarrantyBarcode.product_id == product_id)
    if status is not None:
        q = q.filter(WarrantyBarcode.status == status)
    if batch_id is not None:
        q = q.filter(WarrantyBarcode.batch_id == batch_id)
    if customer_id is not None:
        q = q.filter(WarrantyBarcode.customer_id == customer_id)
    q = q.order_by(WarrantyBarcode.generated_at.desc(), WarrantyBarcode.id.desc())
    return q.offset(offset).limit(limit).all()


# =============================================================================
# Batch records
# =============================================================================

def create_batch(batch: BarcodeGenerationBatch) -> BarcodeGenerationBatch:
    db.session.add(batch)
    try:
        _commit()
    except IntegrityError as exc:
        raise DuplicateKey(
            f"Batch number {batch.batch_number} already exists",
            key=batch.batch_number,
        ) from exc
    return batch


def update_batch(batch: BarcodeGenerationBatch) -> BarcodeGenerationBatch:
    _commit()
    return batch


def get_batch(batch_id: int) -> BarcodeGenerationBatch:
    batch = db.session.get(BarcodeGenerationBatch, batch_id)
    if batch is None:
        raise NotFound("BarcodeGenerationBatch", batch_id)
    return batch


def get_batch_by_number(batch_number: str) -> BarcodeGenerationBatch | None:
    return db.session.query(BarcodeGenerationBatch).filter_by(batch_number=batch_number).first()
