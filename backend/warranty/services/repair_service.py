# Overview: Service-layer operations for repair tickets; technician workflow, parts, labor and cost rollup.

"""
Repair Ticket Service

STATE MACHINE:
    assigned      -> in_progress | cancelled
    in_progress   -> waiting_parts | completed | failed | cancelled
    waiting_parts -> in_progress | cancelled
    completed, failed, cancelled are terminal

COSTS (recomputed on every parts/labor change):
    part.total_cost = quantity * unit_cost
    parts_cost      = sum(part.total_cost)
    labor_cost      = labor_hours * hourly_rate  (0 when no rate)
    total_cost      = parts_cost + labor_cost

JSON list columns are reassigned, never mutated in place, so SQLAlchemy
sees the change.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

from ..extensions import db
from ..models import RepairTicket, WarrantyClaim
from . import timeline_service
from .concurrency import commit_session
from warranty.errors import InvalidTransition, NotFound, ValidationError
from warranty.time_utils import format_duration, to_utc_z, utcnow


CENTS = Decimal("0.01")

ALLOWED_TRANSITIONS = {
    "assigned": {"in_progress", "cancelled"},
    "in_progress": {"waiting_parts", "completed", "failed", "cancelled"},
    "waiting_parts": {"in_progress", "cancelled"},
    "completed": set(),
    "failed": set(),
    "cancelled": set(),
}
TERMINAL_STATUSES = {"completed", "failed", "cancelled"}
PHOTO_CATEGORIES = {"before": "before_photos", "after": "after_photos", "process": "process_photos"}
TEST_RESULTS = {"pass", "fail", "warning"}


def to_decimal(value, field: str, *, allow_none: bool = False) -> Decimal | None:
    if value is None:
        if allow_none:
            return None
        raise ValidationError(f"{field} is required", field=field)
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"{field} must be a number", field=field, value=value) from exc
    if not amount.is_finite() or amount < 0:
        raise ValidationError(f"{field} cannot be negative", field=field, value=value)
    return amount.quantize(CENTS)


def _require(ticket: RepairTicket, target: str) -> None:
    if target not in ALLOWED_TRANSITIONS.get(ticket.status, set()):
        raise InvalidTransition("RepairTicket", ticket.status, target)


def _require_open(ticket: RepairTicket) -> None:
    if ticket.status in TERMINAL_STATUSES:
        raise ValidationError(
            f"Repair ticket {ticket.id} is {ticket.status} and can no longer be changed",
            ticket_id=ticket.id,
            status=ticket.status,
        )


def _commit_with_entry(entry) -> None:
    try:
        timeline_service.append(entry)
    except Exception:
        db.session.rollback()
        raise
    commit_session()


def recalculate_costs(ticket: RepairTicket) -> None:
    parts_cost = sum((Decimal(str(p["total_cost"])) for p in ticket.parts_used or []), Decimal("0"))
    labor_cost = Decimal("0")
    if ticket.hourly_rate is not None:
        labor_cost = Decimal(str(ticket.labor_hours or 0)) * Decimal(str(ticket.hourly_rate))
    ticket.parts_cost = parts_cost.quantize(CENTS)
    ticket.labor_cost = labor_cost.quantize(CENTS)
    ticket.total_cost = (ticket.parts_cost + ticket.labor_cost).quantize(CENTS)


# =============================================================================
# Lookup
# =============================================================================

def get_ticket(ticket_id: int, *, claim_id: int | None = None) -> RepairTicket:
    ticket = db.session.get(RepairTicket, ticket_id)
    if ticket is None or (claim_id is not None and ticket.claim_id != claim_id):
        raise NotFound("RepairTicket", ticket_id)
    return ticket


def active_ticket(claim: WarrantyClaim, technician_id: int | None = None) -> RepairTicket | None:
    q = db.session.query(RepairTicket).filter(
        RepairTicket.claim_id == claim.id,
        RepairTicket.status.notin_(TERMINAL_STATUSES),
    )
    if technician_id is not None:
        q = q.filter(RepairTicket.technician_id == technician_id)
    return q.order_by(RepairTicket.id.desc()).first()


def latest_completed_ticket(claim: WarrantyClaim) -> RepairTicket | None:
    return (
        db.session.query(RepairTicket)
        .filter(RepairTicket.claim_id == claim.id, RepairTicket.status == "completed")
        .order_by(RepairTicket.id.desc())
        .first()
    )


def list_tickets(*, claim_id: int | None = None, technician_id: int | None = None,
                 status: str | None = None) -> list[RepairTicket]:
    q = db.session.query(RepairTicket)
    if claim_id is not None:
        q = q.filter(RepairTicket.claim_id == claim_id)
    if technician_id is not None:
        q = q.filter(RepairTicket.technician_id == technician_id)
    if status is not None:
        q = q.filter(RepairTicket.status == status)
    return q.order_by(RepairTicket.id.asc()).all()


# =============================================================================
# Lifecycle
# =============================================================================

def open_ticket(
    claim: WarrantyClaim,
    technician_id: int,
    *,
    target_completion_date=None,
    now=None,
    commit: bool = True,
) -> RepairTicket:
    """Create an assigned ticket for the claim's technician."""
    if not technician_id:
        raise ValidationError("technician_id is required", field="technician_id")
    ticket = RepairTicket(
        claim_id=claim.id,
        technician_id=technician_id,
        assigned_at=now or utcnow(),
        target_completion_date=target_completion_date,
        status="assigned",
        repair_steps=[],
        parts_used=[],
        labor_hours=Decimal("0"),
        parts_cost=Decimal("0"),
        labor_cost=Decimal("0"),
        total_cost=Decimal("0"),
        test_results=[],
        before_photos=[],
        after_photos=[],
        process_photos=[],
    )
    db.session.add(ticket)
    if commit:
        commit_session()
    return ticket


def start(ticket: RepairTicket, diagnosis: str, *, actor_id=None, actor_type="technician", now=None) -> RepairTicket:
    """assigned -> in_progress. Diagnosis is mandatory from here on."""
    _require(ticket, "in_progress")
    if ticket.status != "assigned":
        raise InvalidTransition("RepairTicket", ticket.status, "in_progress", "use resume() after waiting_parts")
    if not diagnosis or not diagnosis.strip():
        raise ValidationError("diagnosis is required to start a repair", field="diagnosis")

    now = now or utcnow()
    ticket.start_date = now
    ticket.diagnosis = diagnosis.strip()
    ticket.status = "in_progress"
    _commit_with_entry(timeline_service.repair_started(
        ticket.claim, ticket.id, ticket.technician_id,
        actor_id=actor_id, actor_type=actor_type, now=now,
    ))
    return ticket


def add_repair_step(ticket: RepairTicket, step: str) -> RepairTicket:
    _require_open(ticket)
    if not step or not step.strip():
        raise ValidationError("step is required", field="step")
    ticket.repair_steps = list(ticket.repair_steps or []) + [step.strip()]
    commit_session()
    return ticket


def add_part(
    ticket: RepairTicket,
    *,
    part_number: str,
    part_name: str,
    quantity: int,
    unit_cost,
    description: str | None = None,
    supplier: str | None = None,
) -> RepairTicket:
    _require_open(ticket)
    if not part_number or not part_name:
        raise ValidationError("part_number and part_name are required")
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValidationError("quantity must be a positive integer", field="quantity", value=quantity)
    unit = to_decimal(unit_cost, "unit_cost")

    part = {
        "part_number": part_number,
        "part_name": part_name,
        "quantity": quantity,
        "unit_cost": str(unit),
        "total_cost": str((unit * quantity).quantize(CENTS)),
    }
    if description:
        part["description"] = description
    if supplier:
        part["supplier"] = supplier

    ticket.parts_used = list(ticket.parts_used or []) + [part]
    recalculate_costs(ticket)
    commit_session()
    return ticket


def set_labor(ticket: RepairTicket, *, hours, hourly_rate=None) -> RepairTicket:
    _require_open(ticket)
    ticket.labor_hours = to_decimal(hours, "labor_hours")
    if hourly_rate is not None:
        ticket.hourly_rate = to_decimal(hourly_rate, "hourly_rate")
    recalculate_costs(ticket)
    commit_session()
    return ticket


def add_test_result(
    ticket: RepairTicket,
    *,
    test_name: str,
    result: str,
    description: str | None = None,
    tested_by: int | None = None,
    now=None,
) -> RepairTicket:
    _require_open(ticket)
    if not test_name:
        raise ValidationError("test_name is required", field="test_name")
    if result not in TEST_RESULTS:
        raise ValidationError(
            f"result must be one of: {', '.join(sorted(TEST_RESULTS))}", field="result", value=result
        )
    entry = {
        "test_name": test_name,
        "result": result,
        "tested_at": to_utc_z(now or utcnow()),
    }
    if description:
        entry["description"] = description
    if tested_by is not None:
        entry["tested_by"] = tested_by
    ticket.test_results = list(ticket.test_results or []) + [entry]
    commit_session()
    return ticket


def add_photo(ticket: RepairTicket, photo_url: str, category: str) -> RepairTicket:
    column = PHOTO_CATEGORIES.get(category)
    if column is None:
        raise ValidationError(f"Invalid photo category: {category}", field="category", value=category)
    if not photo_url:
        raise ValidationError("photo_url is required", field="photo_url")
    setattr(ticket, column, list(getattr(ticket, column) or []) + [photo_url])
    commit_session()
    return ticket


def wait_for_parts(ticket: RepairTicket, notes: str | None = None) -> RepairTicket:
    _require(ticket, "waiting_parts")
    ticket.status = "waiting_parts"
    if notes:
        ticket.technician_notes = notes
    commit_session()
    return ticket


def resume(ticket: RepairTicket) -> RepairTicket:
    if ticket.status != "waiting_parts":
        raise InvalidTransition("RepairTicket", ticket.status, "in_progress", "only waiting_parts tickets resume")
    ticket.status = "in_progress"
    commit_session()
    return ticket


def complete(
    ticket: RepairTicket,
    *,
    quality_check_passed: bool,
    quality_notes: str | None = None,
    actor_id=None,
    actor_type="technician",
    now=None,
) -> RepairTicket:
    _require(ticket, "completed")
    if not ticket.diagnosis:
        raise ValidationError("diagnosis is required before completing a repair", field="diagnosis")

    now = now or utcnow()
    ticket.actual_completion_date = now
    ticket.quality_check_passed = bool(quality_check_passed)
    if quality_notes:
        ticket.quality_notes = quality_notes
    ticket.status = "completed"
    recalculate_costs(ticket)
    _commit_with_entry(timeline_service.repair_completed(
        ticket.claim, ticket.id, ticket.total_cost,
        actor_id=actor_id, actor_type=actor_type, now=now,
    ))
    return ticket


def fail(ticket: RepairTicket, reason: str) -> RepairTicket:
    _require(ticket, "failed")
    if not reason:
        raise ValidationError("reason is required", field="reason")
    ticket.status = "failed"
    ticket.technician_notes = reason
    commit_session()
    return ticket


def cancel(ticket: RepairTicket, reason: str) -> RepairTicket:
    _require(ticket, "cancelled")
    ticket.status = "cancelled"
    if reason:
        ticket.supervisor_notes = reason
    commit_session()
    return ticket


# =============================================================================
# Views (computed, never persisted)
# =============================================================================

def duration(ticket: RepairTicket, now=None) -> str | None:
    if ticket.start_date is None:
        return None
    end = ticket.actual_completion_date or now or utcnow()
    return format_duration((end - ticket.start_date).total_seconds())


def is_overdue(ticket: RepairTicket, now=None) -> bool:
    if ticket.target_completion_date is None or ticket.status in ("completed", "cancelled"):
        return False
    return (now or utcnow()) > ticket.target_completion_date


def completion_rate(ticket: RepairTicket) -> float:
    steps = len(ticket.repair_steps or [])
    return min(steps / 10.0 * 100, 100.0)


def efficiency_score(ticket: RepairTicket) -> float | None:
    """target/actual duration from assignment, as a percentage capped at 200."""
    if ticket.status != "completed" or not ticket.target_completion_date or not ticket.actual_completion_date:
        return None
    target_hours = (ticket.target_completion_date - ticket.assigned_at).total_seconds() / 3600
    actual_hours = (ticket.actual_completion_date - ticket.assigned_at).total_seconds() / 3600
    if actual_hours <= 0:
        return None
    return min(target_hours / actual_hours * 100, 200.0)


def ticket_view(ticket: RepairTicket, now=None) -> dict:
    data = ticket.to_dict()
    data.update({
        "duration": duration(ticket, now),
        "is_overdue": is_overdue(ticket, now),
        "completion_rate": completion_rate(ticket),
        "efficiency_score": efficiency_score(ticket),
        "is_completed": ticket.status == "completed",
    })
    return data
