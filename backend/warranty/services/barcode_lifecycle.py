# Overview: Service-layer operations for the barcode lifecycle; enforces transitions and warranty expiry.

"""
Barcode Lifecycle Service

STATE MACHINE:
    generated   -> distributed | activated | expired
    distributed -> activated | expired
    activated   -> used | expired
    used        -> expired
    expired     (terminal)

EXPIRY:
- expiry_date = purchase_date + warranty_period_months (calendar months,
  day clamped to the end of the target month)
- check_expiry() moves generated/distributed/activated barcodes whose
  expiry_date has passed to expired. `used` never auto-expires: the claim
  that consumed the barcode owns further state.
- expiry checks are best-effort: a store failure is logged, never raised

Every other transition attempt raises InvalidTransition and leaves the
barcode untouched.
"""

from __future__ import annotations

from datetime import date

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import WarrantyBarcode
from . import barcode_store, notification_service
from warranty.errors import InvalidTransition, StoreUnavailable, ValidationError
from warranty.time_utils import add_months, utcnow


VALID_STATUSES = {"generated", "distributed", "activated", "used", "expired"}

ALLOWED_TRANSITIONS = {
    "generated": {"distributed", "activated", "expired"},
    "distributed": {"activated", "expired"},
    "activated": {"used", "expired"},
    "used": {"expired"},
    "expired": set(),
}

EXPIRABLE_STATUSES = ("generated", "distributed", "activated")


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


def _require_transition(barcode: WarrantyBarcode, target: str, reason: str | None = None) -> None:
    if target not in VALID_STATUSES:
        raise ValidationError(f"Invalid barcode status '{target}'", field="status", value=target)
    if not can_transition(barcode.status, target):
        raise InvalidTransition("WarrantyBarcode", barcode.status, target, reason)


def update_status(barcode: WarrantyBarcode, new_status: str, *, now=None) -> WarrantyBarcode:
    """Generic guarded transition (no side fields)."""
    _require_transition(barcode, new_status)
    barcode.status = new_status
    return barcode_store.save(barcode)


def mark_distributed(
    barcode: WarrantyBarcode,
    recipient: str,
    *,
    batch_id: int | None = None,
    notes: str | None = None,
    now=None,
) -> WarrantyBarcode:
    if barcode.status != "generated":
        raise InvalidTransition(
            "WarrantyBarcode", barcode.status, "distributed", "only generated barcodes can be distributed"
        )
    if not recipient or not recipient.strip():
        raise ValidationError("recipient is required", field="recipient")

    barcode.distributed_at = now or utcnow()
    barcode.distributed_to = recipient.strip()
    if batch_id is not None:
        barcode.batch_id = batch_id
    if notes:
        barcode.distribution_notes = notes
    barcode.status = "distributed"
    return barcode_store.save(barcode)


def compute_expiry_date(purchase_date: date, warranty_period_months: int) -> date:
    return add_months(purchase_date, warranty_period_months)


def activate(
    barcode: WarrantyBarcode,
    customer_id: int,
    purchase_date: date,
    *,
    purchase_location: str | None = None,
    purchase_invoice: str | None = None,
    now=None,
) -> WarrantyBarcode:
    """
    Bind a barcode to a customer purchase and start the warranty clock.

    Legal from generated or distributed. A purchase far in the past is
    accepted; the barcode then expires on the next check_expiry().
    """
    if barcode.status not in ("generated", "distributed"):
        raise InvalidTransition(
            "WarrantyBarcode", barcode.status, "activated", "only generated or distributed barcodes can be activated"
        )
    if not customer_id:
        raise ValidationError("customer_id is required", field="customer_id")
    if not isinstance(purchase_date, date):
        raise ValidationError("purchase_date must be a date", field="purchase_date")

    now = now or utcnow()
    barcode.activated_at = now
    barcode.customer_id = customer_id
    barcode.purchase_date = purchase_date
    if purchase_location:
        barcode.purchase_location = purchase_location
    if purchase_invoice:
        barcode.purchase_invoice = purchase_invoice
    barcode.expiry_date = compute_expiry_date(purchase_date, barcode.warranty_period_months)
    barcode.status = "activated"
    barcode_store.save(barcode)

    notification_service.publish(
        "BarcodeActivated",
        storefront_id=barcode.storefront_id,
        now=now,
        barcode_number=barcode.barcode_number,
        customer_id=customer_id,
        expiry_date=barcode.expiry_date.isoformat(),
    )
    return barcode


def mark_used(barcode: WarrantyBarcode, *, commit: bool = True) -> WarrantyBarcode:
    if barcode.status != "activated":
        raise InvalidTransition(
            "WarrantyBarcode", barcode.status, "used", "only activated barcodes can be used"
        )
    barcode.status = "used"
    if commit:
        barcode_store.save(barcode)
    return barcode


def is_past_expiry(barcode: WarrantyBarcode, now=None) -> bool:
    today = (now or utcnow()).date()
    return barcode.expiry_date is not None and barcode.expiry_date < today


def check_expiry(barcode: WarrantyBarcode, now=None) -> bool:
    """
    Expire the barcode if its warranty has lapsed. Idempotent.

    Returns True when this call changed the status. Store failures are
    rolled back and logged; the caller is never blocked.
    """
    if barcode.status not in EXPIRABLE_STATUSES or not is_past_expiry(barcode, now):
        return False

    barcode.status = "expired"
    try:
        barcode_store.save(barcode)
    except (StoreUnavailable, SQLAlchemyError):
        db.session.rollback()
        current_app.logger.warning(
            "Expiry check could not persist barcode %s", barcode.barcode_number, exc_info=True
        )
        return False
    return True


def is_claimable(barcode: WarrantyBarcode, now=None) -> bool:
    today = (now or utcnow()).date()
    return (
        barcode.status == "activated"
        and barcode.expiry_date is not None
        and barcode.expiry_date >= today
    )


def warranty_info(barcode: WarrantyBarcode, now=None) -> dict:
    """Customer-facing warranty summary (computed, never persisted)."""
    now = now or utcnow()
    check_expiry(barcode, now)

    is_expired = is_past_expiry(barcode, now)
    days_remaining = None
    if barcode.expiry_date is not None and not is_expired:
        days_remaining = (barcode.expiry_date - now.date()).days

    return {
        "barcode_number": barcode.barcode_number,
        "status": barcode.status,
        "purchase_date": barcode.purchase_date.isoformat() if barcode.purchase_date else None,
        "expiry_date": barcode.expiry_date.isoformat() if barcode.expiry_date else None,
        "warranty_period_months": barcode.warranty_period_months,
        "is_expired": is_expired,
        "is_active": barcode.status == "activated" and not is_expired,
        "days_remaining": days_remaining,
        "can_claim": is_claimable(barcode, now),
    }


def expire_due_barcodes(*, now=None, storefront_id: int | None = None) -> int:
    """Sweep: expire every lapsed generated/distributed/activated barcode."""
    today = (now or utcnow()).date()
    stmt = (
        update(WarrantyBarcode)
        .where(
            WarrantyBarcode.status.in_(EXPIRABLE_STATUSES),
            WarrantyBarcode.expiry_date.is_not(None),
            WarrantyBarcode.expiry_date < today,
        )
        .values(status="expired")
        .execution_options(synchronize_session=False)
    )
    if storefront_id is not None:
        stmt = stmt.where(WarrantyBarcode.storefront_id == storefront_id)

    result = db.session.execute(stmt)
    db.session.commit()
    expired = result.rowcount or 0
    if expired:
        db.session.expire_all()
        current_app.logger.info("Expired %d warranty barcodes (as of %s)", expired, today.isoformat())
    return expired
