# Overview: Service-layer operations for the claim timeline; builds, validates and appends audit entries.

"""
Claim Timeline Service

APPEND-ONLY: entries are built by the constructors below, validated, and
added to the session of the claim mutation that produced them. There is no
update or delete path (the model rejects both at flush time).

ORDERING: created_at never goes backwards within a claim. An entry stamped
earlier than the claim's latest entry is clamped to that entry's time.

RULES:
- status_change entries carry both from_status and to_status
- entries from a non-system actor carry actor_id
- description is required
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func

from ..extensions import db
from ..models import ClaimTimelineEntry, WarrantyClaim
from warranty.errors import ValidationError
from warranty.time_utils import to_iso_date, to_utc_z, utcnow


EVENT_TYPES = {
    "status_change",
    "note_added",
    "attachment_uploaded",
    "assignment_changed",
    "repair_started",
    "repair_completed",
    "shipment_created",
    "delivery_update",
    "customer_contact",
    "system_update",
}
ACTOR_TYPES = {"customer", "admin", "technician", "system"}

IMPORTANT_STATUSES = {"validated", "completed", "rejected", "shipped"}
IMPORTANT_EVENTS = {"repair_completed", "shipment_created"}

CUSTOMER_STATUS_TEXT = {
    "validated": "Your warranty claim has been approved and is being processed",
    "rejected": "Your warranty claim has been rejected",
    "in_repair": "Your product is now being repaired",
    "repaired": "Repair has been completed successfully",
    "shipped": "Your item has been shipped back to you",
    "delivered": "Your item has been delivered",
    "completed": "Your warranty claim has been completed",
}

EVENT_ICONS = {
    "status_change": ("status", "blue"),
    "assignment_changed": ("user", "purple"),
    "note_added": ("note", "gray"),
    "attachment_uploaded": ("attachment", "blue"),
    "repair_started": ("tool", "orange"),
    "repair_completed": ("check", "green"),
    "shipment_created": ("truck", "blue"),
    "delivery_update": ("package", "green"),
    "customer_contact": ("phone", "indigo"),
    "system_update": ("system", "gray"),
}
STATUS_COLORS = {
    "completed": "green",
    "rejected": "red",
    "cancelled": "red",
    "in_repair": "orange",
}


def resolve_actor_type(actor_id: int | None, actor_type: str | None) -> str:
    if actor_id is None:
        return "system"
    return actor_type or "admin"


def _entry(
    claim: WarrantyClaim,
    event_type: str,
    description: str,
    *,
    actor_id: int | None,
    actor_type: str | None,
    metadata: dict | None = None,
    visible: bool = True,
    now=None,
    from_status: str | None = None,
    to_status: str | None = None,
) -> ClaimTimelineEntry:
    return ClaimTimelineEntry(
        claim_id=claim.id,
        event_type=event_type,
        from_status=from_status,
        to_status=to_status,
        actor_id=actor_id,
        actor_type=resolve_actor_type(actor_id, actor_type),
        description=description,
        event_metadata={k: v for k, v in (metadata or {}).items() if v is not None},
        is_customer_visible=visible,
        created_at=now or utcnow(),
    )


# =============================================================================
# Semantic constructors
# =============================================================================

def status_change(claim, from_status, to_status, *, actor_id=None, actor_type=None, now=None,
                  visible=True, reason=None):
    return _entry(
        claim,
        "status_change",
        f"Claim status changed from {from_status} to {to_status}",
        actor_id=actor_id,
        actor_type=actor_type,
        metadata={
            "field_name": "status",
            "old_value": from_status,
            "new_value": to_status,
            "reason": reason,
        },
        visible=visible,
        now=now,
        from_status=from_status,
        to_status=to_status,
    )


def note_added(claim, note, *, actor_id=None, actor_type=None, visible=False, now=None):
    actor_type = resolve_actor_type(actor_id, actor_type)
    description = "Customer added a note" if actor_type == "customer" else "Note added to claim"
    return _entry(
        claim,
        "note_added",
        description,
        actor_id=actor_id,
        actor_type=actor_type,
        metadata={"note_content": note},
        visible=visible,
        now=now,
    )


def attachment_uploaded(claim, attachment_id, filename, *, actor_id=None, actor_type=None, now=None):
    return _entry(
        claim,
        "attachment_uploaded",
        f"File uploaded: {filename}",
        actor_id=actor_id,
        actor_type=actor_type,
        metadata={"attachment_id": attachment_id, "filename": filename},
        now=now,
    )


def assignment_changed(claim, technician_id, *, previous_technician_id=None, technician_name=None,
                       actor_id=None, actor_type=None, now=None):
    label = technician_name or f"#{technician_id}"
    return _entry(
        claim,
        "assignment_changed",
        f"Claim assigned to technician {label}",
        actor_id=actor_id,
        actor_type=actor_type,
        metadata={
            "technician_id": technician_id,
            "old_value": previous_technician_id,
            "new_value": technician_id,
        },
        visible=False,
        now=now,
    )


def repair_started(claim, ticket_id, technician_id, *, actor_id=None, actor_type=None, now=None):
    return _entry(
        claim,
        "repair_started",
        "Repair work started",
        actor_id=actor_id,
        actor_type=actor_type,
        metadata={"repair_ticket_id": ticket_id, "technician_id": technician_id},
        now=now,
    )


def repair_completed(claim, ticket_id, total_cost, *, actor_id=None, actor_type=None, now=None):
    return _entry(
        claim,
        "repair_completed",
        "Repair work completed",
        actor_id=actor_id,
        actor_type=actor_type,
        metadata={"repair_ticket_id": ticket_id, "total_cost": str(total_cost)},
        now=now,
    )


def shipment_created(claim, provider, tracking_number, estimated_date=None, *,
                     actor_id=None, actor_type=None, now=None):
    return _entry(
        claim,
        "shipment_created",
        f"Item shipped via {provider} (Tracking: {tracking_number})",
        actor_id=actor_id,
        actor_type=actor_type,
        metadata={
            "shipping_provider": provider,
            "tracking_number": tracking_number,
            "estimated_date": to_iso_date(estimated_date),
        },
        now=now,
    )


def delivery_update(claim, delivery_status, actual_date=None, *, actor_id=None, actor_type=None, now=None):
    return _entry(
        claim,
        "delivery_update",
        f"Delivery status updated: {delivery_status}",
        actor_id=actor_id,
        actor_type=actor_type,
        metadata={"new_value": delivery_status, "actual_date": to_utc_z(actual_date)},
        now=now,
    )


def customer_contact(claim, method, reason, *, actor_id=None, actor_type=None, now=None):
    return _entry(
        claim,
        "customer_contact",
        f"Customer contacted via {method}",
        actor_id=actor_id,
        actor_type=actor_type,
        metadata={"contact_method": method, "contact_reason": reason},
        visible=False,
        now=now,
    )


def system_update(claim, description, additional=None, *, now=None):
    return _entry(
        claim,
        "system_update",
        description,
        actor_id=None,
        actor_type="system",
        metadata={"additional": dict(additional)} if additional else None,
        visible=False,
        now=now,
    )


# =============================================================================
# Append / read
# =============================================================================

def validate_entry(entry: ClaimTimelineEntry) -> None:
    if entry.event_type not in EVENT_TYPES:
        raise ValidationError(f"Invalid timeline event type '{entry.event_type}'", field="event_type")
    if entry.actor_type not in ACTOR_TYPES:
        raise ValidationError(f"Invalid actor type '{entry.actor_type}'", field="actor_type")
    if not entry.description:
        raise ValidationError("Timeline description is required", field="description")
    if entry.event_type == "status_change" and (not entry.from_status or not entry.to_status):
        raise ValidationError("status_change entries require from_status and to_status")
    if entry.actor_type != "system" and entry.actor_id is None:
        raise ValidationError("Non-system timeline entries require actor_id", field="actor_id")


def _latest_created_at(claim_id: int) -> datetime | None:
    return (
        db.session.query(func.max(ClaimTimelineEntry.created_at))
        .filter(ClaimTimelineEntry.claim_id == claim_id)
        .scalar()
    )


def append(entry: ClaimTimelineEntry) -> ClaimTimelineEntry:
    """Validate and stage an entry in the current transaction (no commit)."""
    validate_entry(entry)
    latest = _latest_created_at(entry.claim_id)
    if latest is not None and entry.created_at < latest:
        entry.created_at = latest
    db.session.add(entry)
    return entry


def list_entries(
    claim_id: int,
    *,
    customer_view: bool = False,
    event_type: str | None = None,
) -> list[ClaimTimelineEntry]:
    q = db.session.query(ClaimTimelineEntry).filter(ClaimTimelineEntry.claim_id == claim_id)
    if customer_view:
        q = q.filter(ClaimTimelineEntry.is_customer_visible.is_(True))
    if event_type is not None:
        q = q.filter(ClaimTimelineEntry.event_type == event_type)
    return q.order_by(ClaimTimelineEntry.created_at.asc(), ClaimTimelineEntry.id.asc()).all()


# =============================================================================
# Display helpers (never persisted)
# =============================================================================

def relative_time(created_at: datetime, now=None) -> str:
    now = now or utcnow()
    seconds = (now - created_at).total_seconds()
    if seconds < 60:
        return "just now"
    if seconds < 3600:
        minutes = int(seconds // 60)
        return "1 minute ago" if minutes == 1 else f"{minutes} minutes ago"
    if seconds < 86400:
        hours = int(seconds // 3600)
        return "1 hour ago" if hours == 1 else f"{hours} hours ago"
    if seconds < 7 * 86400:
        days = int(seconds // 86400)
        return "1 day ago" if days == 1 else f"{days} days ago"
    return f"{created_at:%B} {created_at.day}, {created_at.year}"


def icon_and_color(entry: ClaimTimelineEntry) -> tuple[str, str]:
    icon, color = EVENT_ICONS.get(entry.event_type, ("info", "gray"))
    if entry.event_type == "status_change":
        color = STATUS_COLORS.get(entry.to_status, color)
    return icon, color


def is_important(entry: ClaimTimelineEntry) -> bool:
    if entry.event_type == "status_change":
        return entry.to_status in IMPORTANT_STATUSES
    return entry.event_type in IMPORTANT_EVENTS


def display_description(entry: ClaimTimelineEntry) -> str:
    """Customer-friendly text; falls back to the stored description."""
    if entry.event_type == "status_change" and entry.to_status in CUSTOMER_STATUS_TEXT:
        return CUSTOMER_STATUS_TEXT[entry.to_status]
    if entry.event_type == "shipment_created":
        tracking = (entry.event_metadata or {}).get("tracking_number")
        if tracking:
            return f"Your item is on its way! Track it with: {tracking}"
    return entry.description


def entry_view(entry: ClaimTimelineEntry, now=None) -> dict:
    icon, color = icon_and_color(entry)
    data = entry.to_dict()
    data.update({
        "relative_time": relative_time(entry.created_at, now),
        "icon": icon,
        "color": color,
        "is_important": is_important(entry),
        "display_description": display_description(entry),
    })
    return data
