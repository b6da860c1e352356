# Overview: Service-layer operations for warranty claims; state machine, costs, timeline and queries.

"""
Warranty Claim Service

================================================================================
STATE MACHINE
================================================================================

    pending    -> validated | rejected | cancelled
    validated  -> assigned | cancelled
    assigned   -> in_repair | cancelled
    in_repair  -> repaired | replaced | disputed
    repaired   -> shipped
    replaced   -> shipped
    shipped    -> delivered
    delivered  -> completed | disputed
    disputed   -> validated | rejected
    completed, cancelled, rejected are terminal

RULES:
1. Legality is checked before any field is touched. A refused transition
   raises InvalidTransition and leaves the claim and its timeline as they were.
2. Every status change appends exactly one status_change timeline entry in
   the same transaction.
3. total_cost = repair_cost + shipping_cost + replacement_cost (unset as 0),
   recomputed whenever a cost component changes.
4. completed_at and actual_completion_date are stamped once, on entering
   completed, with the transition's own timestamp.
5. version_id is the optimistic lock: a concurrent writer makes the loser
   fail with ConflictingTransition and nothing is persisted.
6. Disputes keep cost and resolution fields unchanged.

Notifications (ClaimValidated, ShipmentCreated, ClaimCompleted) are
published after commit and never affect the outcome of the transition.
================================================================================
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from flask import current_app, has_app_context
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import WarrantyBarcode, WarrantyClaim
from . import barcode_codec, barcode_lifecycle, barcode_store, notification_service, repair_service
from . import sequence_service, timeline_service
from .repair_service import to_decimal
from warranty.errors import (
    ConflictingTransition,
    InvalidTransition,
    NotFound,
    StoreUnavailable,
    ValidationError,
)
from warranty.time_utils import utcnow


VALID_STATUSES = {
    "pending",
    "validated",
    "rejected",
    "assigned",
    "in_repair",
    "repaired",
    "replaced",
    "shipped",
    "delivered",
    "completed",
    "cancelled",
    "disputed",
}
ALLOWED_TRANSITIONS = {
    "pending": {"validated", "rejected", "cancelled"},
    "validated": {"assigned", "cancelled"},
    "assigned": {"in_repair", "cancelled"},
    "in_repair": {"repaired", "replaced", "disputed"},
    "repaired": {"shipped"},
    "replaced": {"shipped"},
    "shipped": {"delivered"},
    "delivered": {"completed", "disputed"},
    "disputed": {"validated", "rejected"},
    "completed": set(),
    "cancelled": set(),
    "rejected": set(),
}
TERMINAL_STATUSES = {"completed", "cancelled", "rejected"}
CANCELLABLE_STATUSES = {"pending", "validated", "assigned"}

SEVERITIES = {"low", "medium", "high", "critical"}
PRIORITIES = {"low", "normal", "high", "urgent"}
DELIVERY_STATUSES = {
    "not_shipped",
    "preparing",
    "picked_up",
    "in_transit",
    "out_for_delivery",
    "delivered",
    "failed_delivery",
    "returned",
}
# delivered is reached through mark_delivered(), the others precede shipping
TRACKING_UPDATES = DELIVERY_STATUSES - {"not_shipped", "preparing", "delivered"}

MAX_ISSUE_DESCRIPTION = 5000

DISPLAY_STATUS = {
    "pending": "Pending Review",
    "validated": "Approved",
    "rejected": "Rejected",
    "assigned": "Assigned to Technician",
    "in_repair": "Being Repaired",
    "repaired": "Repair Complete",
    "replaced": "Product Replaced",
    "shipped": "Shipped",
    "delivered": "Delivered",
    "completed": "Completed",
    "cancelled": "Cancelled",
    "disputed": "Under Review",
}
NEXT_ACTIONS = {
    "pending": ["validate", "reject", "cancel"],
    "validated": ["assign_technician", "cancel"],
    "assigned": ["start_repair", "reassign", "cancel"],
    "in_repair": ["complete_repair", "mark_replaced", "dispute"],
    "repaired": ["ship"],
    "replaced": ["ship"],
    "shipped": ["update_delivery_status", "mark_delivered"],
    "delivered": ["complete", "dispute"],
    "disputed": ["resolve_dispute"],
}

CENTS = Decimal("0.01")


# =============================================================================
# Rules
# =============================================================================

def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def _require_transition(claim: WarrantyClaim, target: str, reason: str | None = None) -> None:
    if target not in VALID_STATUSES:
        raise ValidationError(f"Invalid claim status '{target}'", field="status", value=target)
    if not can_transition(claim.status, target):
        raise InvalidTransition("WarrantyClaim", claim.status, target, reason)


def _check_version(claim: WarrantyClaim, expected_version: int | None) -> None:
    if expected_version is not None and claim.version_id != expected_version:
        raise ConflictingTransition(
            f"Claim {claim.claim_number} was modified concurrently",
            claim_id=claim.id,
            expected_version=expected_version,
            current_version=claim.version_id,
        )


def _require_text(value: str | None, field: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required", field=field)
    return str(value).strip()


def recalculate_total_cost(claim: WarrantyClaim) -> Decimal:
    total = sum(
        (Decimal(str(c)) for c in (claim.repair_cost, claim.shipping_cost, claim.replacement_cost) if c is not None),
        Decimal("0"),
    )
    claim.total_cost = total.quantize(CENTS)
    return claim.total_cost


# =============================================================================
# Transaction plumbing
# =============================================================================

def _persist(entries) -> None:
    """
    Append timeline entries and commit the claim mutation as one unit.

    Any failure rolls the whole unit back, so the claim reverts to its
    persisted state.
    """
    try:
        for entry in entries:
            timeline_service.append(entry)
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        raise ConflictingTransition("Claim was modified concurrently") from exc
    except OperationalError as exc:
        db.session.rollback()
        raise StoreUnavailable("Database unavailable", cause=str(exc.orig)) from exc
    except Exception:
        db.session.rollback()
        raise


def _apply_status(claim: WarrantyClaim, new_status: str, actor_id: int | None, now) -> str:
    previous = claim.status
    claim.previous_status = previous
    claim.status = new_status
    claim.status_updated_at = now
    claim.status_updated_by = actor_id
    if new_status == "completed":
        if claim.completed_at is None:
            claim.completed_at = now
        if claim.actual_completion_date is None:
            claim.actual_completion_date = now
    return previous


def _transition(
    claim: WarrantyClaim,
    new_status: str,
    *,
    actor_id: int | None,
    actor_type: str | None,
    now,
    mutate=None,
    extra_entries=None,
    reason: str | None = None,
    visible: bool = True,
) -> WarrantyClaim:
    """
    Core of every status change. Caller has already checked legality and
    validated its inputs; `mutate` only assigns fields.
    """
    try:
        if mutate is not None:
            mutate()
        recalculate_total_cost(claim)
        previous = _apply_status(claim, new_status, actor_id, now)
        entries = [timeline_service.status_change(
            claim, previous, new_status,
            actor_id=actor_id, actor_type=actor_type, now=now, visible=visible, reason=reason,
        )]
        if extra_entries is not None:
            entries.extend(extra_entries())
    except Exception:
        db.session.rollback()
        raise
    _persist(entries)
    return claim


def run_transition(claim_id: int, operation, *, storefront_id: int | None = None,
                   expected_version: int | None = None, attempts: int | None = None):
    """
    Load a claim and apply `operation(claim)`, retrying on ConflictingTransition
    with a fresh read. With expected_version the caller's view is
    authoritative and a conflict is surfaced immediately.
    """
    if attempts is None:
        attempts = int(current_app.config.get("CLAIM_TRANSITION_RETRIES", 3)) if has_app_context() else 3
    if expected_version is not None:
        attempts = 1

    for attempt in range(1, attempts + 1):
        claim = get_claim(claim_id, storefront_id=storefront_id)
        _check_version(claim, expected_version)
        try:
            return operation(claim)
        except ConflictingTransition:
            if attempt >= attempts:
                raise
            db.session.expire_all()
            current_app.logger.info("Retrying claim %s transition after conflict (attempt %d)", claim_id, attempt)
    raise ValueError("attempts must be >= 1")


# =============================================================================
# Submission
# =============================================================================

def submit_claim(
    *,
    barcode_number: str,
    customer_id: int,
    issue_description: str,
    issue_category: str,
    issue_date: date,
    customer_name: str,
    customer_email: str,
    pickup_address: dict,
    customer_phone: str | None = None,
    severity: str = "medium",
    priority: str = "normal",
    tags: list | None = None,
    customer_notes: str | None = None,
    storefront_id: int | None = None,
    now=None,
) -> WarrantyClaim:
    """
    Open a claim against an activated, unexpired barcode.

    Snapshots customer contact and pickup address, allocates a claim number,
    marks the barcode used and writes the initial timeline entries.
    """
    now = now or utcnow()

    issue_description = _require_text(issue_description, "issue_description")
    if len(issue_description) > MAX_ISSUE_DESCRIPTION:
        raise ValidationError(
            f"issue_description cannot exceed {MAX_ISSUE_DESCRIPTION} characters",
            field="issue_description",
        )
    issue_category = _require_text(issue_category, "issue_category")
    customer_name = _require_text(customer_name, "customer_name")
    customer_email = _require_text(customer_email, "customer_email")
    if not customer_id:
        raise ValidationError("customer_id is required", field="customer_id")
    if isinstance(issue_date, datetime):
        issue_date = issue_date.date()
    if not isinstance(issue_date, date):
        raise ValidationError("issue_date must be a date", field="issue_date")
    if issue_date > now.date():
        raise ValidationError("issue_date cannot be in the future", field="issue_date")
    if severity not in SEVERITIES:
        raise ValidationError(f"Invalid severity '{severity}'", field="severity", value=severity)
    if priority not in PRIORITIES:
        raise ValidationError(f"Invalid priority '{priority}'", field="priority", value=priority)
    if not isinstance(pickup_address, dict) or not pickup_address:
        raise ValidationError("pickup_address is required", field="pickup_address")

    number = barcode_codec.normalize_barcode(barcode_number or "")
    barcode_codec.validate_barcode(number)
    barcode = barcode_store.get_by_number_or_404(number)
    if storefront_id is not None and barcode.storefront_id != storefront_id:
        raise NotFound("WarrantyBarcode", number)

    open_claim = (
        db.session.query(WarrantyClaim.id)
        .filter(
            WarrantyClaim.barcode_id == barcode.id,
            WarrantyClaim.status.notin_(TERMINAL_STATUSES),
        )
        .first()
    )
    if open_claim is not None:
        raise ValidationError("Barcode already has an open claim", barcode_number=number, claim_id=open_claim.id)

    barcode_lifecycle.check_expiry(barcode, now)
    if not barcode_lifecycle.is_claimable(barcode, now):
        raise ValidationError(
            "Barcode is not eligible for a warranty claim",
            barcode_number=number,
            status=barcode.status,
            expiry_date=barcode.expiry_date,
        )
    if barcode.customer_id != customer_id:
        raise ValidationError(
            "Barcode is not registered to this customer",
            barcode_number=number,
            customer_id=customer_id,
        )

    try:
        claim_number = sequence_service.next_claim_number(storefront_id=barcode.storefront_id, now=now)
        claim = WarrantyClaim(
            claim_number=claim_number,
            storefront_id=barcode.storefront_id,
            customer_id=customer_id,
            product_id=barcode.product_id,
            barcode_id=barcode.id,
            issue_description=issue_description,
            issue_category=issue_category,
            issue_date=issue_date,
            severity=severity,
            priority=priority,
            tags=list(tags or []),
            claim_date=now,
            status="pending",
            status_updated_at=now,
            total_cost=Decimal("0.00"),
            customer_name=customer_name,
            customer_email=customer_email,
            customer_phone=customer_phone,
            pickup_address=dict(pickup_address),
            delivery_status="not_shipped",
            customer_notes=customer_notes,
        )
        db.session.add(claim)
        barcode_lifecycle.mark_used(barcode, commit=False)
        db.session.flush()

        entries = [timeline_service.system_update(
            claim,
            f"Warranty claim {claim_number} submitted",
            {"barcode_number": number, "claim_number": claim_number},
            now=now,
        )]
        if customer_notes:
            entries.append(timeline_service.note_added(
                claim, customer_notes, actor_id=customer_id, actor_type="customer", visible=True, now=now,
            ))
    except Exception:
        db.session.rollback()
        raise
    _persist(entries)
    return claim


# =============================================================================
# Transitions
# =============================================================================

def update_status(
    claim: WarrantyClaim,
    new_status: str,
    *,
    actor_id: int | None = None,
    actor_type: str | None = None,
    now=None,
    expected_version: int | None = None,
) -> WarrantyClaim:
    """
    Generic guarded transition. Moving to the current status raises
    InvalidTransition (no state has a self-loop).
    """
    _check_version(claim, expected_version)
    _require_transition(claim, new_status)
    return _transition(claim, new_status, actor_id=actor_id, actor_type=actor_type, now=now or utcnow())


def validate(claim, *, actor_id: int, notes: str | None = None, actor_type=None, now=None,
             expected_version=None) -> WarrantyClaim:
    """pending -> validated"""
    _check_version(claim, expected_version)
    if claim.status != "pending":
        raise InvalidTransition("WarrantyClaim", claim.status, "validated", "only pending claims can be validated")
    now = now or utcnow()

    def mutate():
        claim.validated_at = now
        claim.validated_by = actor_id
        if notes:
            claim.admin_notes = notes

    _transition(claim, "validated", actor_id=actor_id, actor_type=actor_type, now=now, mutate=mutate)
    notification_service.publish(
        "ClaimValidated",
        storefront_id=claim.storefront_id,
        now=now,
        claim_number=claim.claim_number,
        customer_id=claim.customer_id,
        customer_email=claim.customer_email,
    )
    return claim


def reject(claim, *, actor_id: int, reason: str, actor_type=None, now=None, expected_version=None) -> WarrantyClaim:
    """pending -> rejected"""
    _check_version(claim, expected_version)
    if claim.status != "pending":
        raise InvalidTransition("WarrantyClaim", claim.status, "rejected", "only pending claims can be rejected")
    reason = _require_text(reason, "reason")
    return _reject(claim, actor_id=actor_id, reason=reason, actor_type=actor_type, now=now or utcnow())


def _reject(claim, *, actor_id, reason, actor_type, now) -> WarrantyClaim:
    def mutate():
        claim.rejection_reason = reason
        claim.validated_by = actor_id

    return _transition(
        claim, "rejected",
        actor_id=actor_id, actor_type=actor_type, now=now, mutate=mutate, reason=reason,
    )


def assign_technician(
    claim,
    *,
    technician_id: int,
    actor_id: int,
    estimated_completion_date: date | None = None,
    technician_name: str | None = None,
    actor_type=None,
    now=None,
    expected_version=None,
) -> WarrantyClaim:
    """
    validated -> assigned, or reassignment while already assigned.

    Reassignment keeps the status and records only the assignment change.
    """
    _check_version(claim, expected_version)
    if claim.status not in ("validated", "assigned"):
        raise InvalidTransition(
            "WarrantyClaim", claim.status, "assigned", "only validated or assigned claims take a technician"
        )
    if not technician_id:
        raise ValidationError("technician_id is required", field="technician_id")
    now = now or utcnow()
    previous_technician = claim.assigned_technician_id

    def mutate():
        claim.assigned_technician_id = technician_id
        claim.estimated_completion_date = estimated_completion_date

    def assignment_entry():
        return timeline_service.assignment_changed(
            claim, technician_id,
            previous_technician_id=previous_technician,
            technician_name=technician_name,
            actor_id=actor_id, actor_type=actor_type, now=now,
        )

    if claim.status == "assigned":
        try:
            mutate()
            entry = assignment_entry()
        except Exception:
            db.session.rollback()
            raise
        _persist([entry])
        return claim

    return _transition(
        claim, "assigned",
        actor_id=actor_id, actor_type=actor_type, now=now,
        mutate=mutate, extra_entries=lambda: [assignment_entry()],
    )


def start_repair(claim, *, actor_id: int, target_completion_date=None, actor_type=None, now=None,
                 expected_version=None) -> WarrantyClaim:
    """assigned -> in_repair; opens (or resumes) the technician's repair ticket."""
    _check_version(claim, expected_version)
    if claim.status != "assigned":
        raise InvalidTransition("WarrantyClaim", claim.status, "in_repair", "only assigned claims can start repair")
    if not claim.assigned_technician_id:
        raise ValidationError("Claim has no assigned technician", claim_id=claim.id)
    now = now or utcnow()

    def mutate():
        if repair_service.active_ticket(claim, claim.assigned_technician_id) is None:
            repair_service.open_ticket(
                claim,
                claim.assigned_technician_id,
                target_completion_date=target_completion_date,
                now=now,
                commit=False,
            )

    return _transition(claim, "in_repair", actor_id=actor_id, actor_type=actor_type, now=now, mutate=mutate)


def complete_repair(claim, *, actor_id: int, notes: str | None = None, cost=None, actor_type=None, now=None,
                    expected_version=None) -> WarrantyClaim:
    """
    in_repair -> repaired. Requires a completed repair ticket; the repair
    cost defaults to that ticket's total_cost.
    """
    _check_version(claim, expected_version)
    if claim.status != "in_repair":
        raise InvalidTransition("WarrantyClaim", claim.status, "repaired", "only claims in repair can be completed")
    ticket = repair_service.latest_completed_ticket(claim)
    if ticket is None:
        raise ValidationError("A completed repair ticket is required", claim_id=claim.id)
    repair_cost = to_decimal(cost, "repair_cost") if cost is not None else Decimal(str(ticket.total_cost)).quantize(CENTS)

    def mutate():
        claim.repair_notes = notes
        claim.repair_cost = repair_cost
        claim.resolution_type = "repair"

    return _transition(claim, "repaired", actor_id=actor_id, actor_type=actor_type, now=now or utcnow(),
                       mutate=mutate)


def mark_replaced(claim, *, actor_id: int, replacement_product_id: int, cost, actor_type=None, now=None,
                  expected_version=None) -> WarrantyClaim:
    """in_repair -> replaced"""
    _check_version(claim, expected_version)
    if claim.status != "in_repair":
        raise InvalidTransition("WarrantyClaim", claim.status, "replaced", "only claims in repair can be replaced")
    if not replacement_product_id:
        raise ValidationError("replacement_product_id is required", field="replacement_product_id")
    replacement_cost = to_decimal(cost, "replacement_cost")

    def mutate():
        claim.replacement_product_id = replacement_product_id
        claim.replacement_cost = replacement_cost
        claim.resolution_type = "replace"

    return _transition(claim, "replaced", actor_id=actor_id, actor_type=actor_type, now=now or utcnow(),
                       mutate=mutate)


def ship(
    claim,
    *,
    actor_id: int,
    provider: str,
    tracking_number: str,
    estimated_delivery_date: date | None = None,
    cost=None,
    actor_type=None,
    now=None,
    expected_version=None,
) -> WarrantyClaim:
    """{repaired, replaced} -> shipped. A tracking number is mandatory."""
    _check_version(claim, expected_version)
    if claim.status not in ("repaired", "replaced"):
        raise InvalidTransition(
            "WarrantyClaim", claim.status, "shipped", "only repaired or replaced claims can be shipped"
        )
    provider = _require_text(provider, "shipping_provider")
    tracking_number = _require_text(tracking_number, "tracking_number")
    shipping_cost = to_decimal(cost, "shipping_cost", allow_none=True)
    now = now or utcnow()

    def mutate():
        claim.shipping_provider = provider
        claim.tracking_number = tracking_number
        claim.estimated_delivery_date = estimated_delivery_date
        if shipping_cost is not None:
            claim.shipping_cost = shipping_cost
        claim.delivery_status = "preparing"

    _transition(
        claim, "shipped",
        actor_id=actor_id, actor_type=actor_type, now=now, mutate=mutate,
        extra_entries=lambda: [timeline_service.shipment_created(
            claim, provider, tracking_number, estimated_delivery_date,
            actor_id=actor_id, actor_type=actor_type, now=now,
        )],
    )
    notification_service.publish(
        "ShipmentCreated",
        storefront_id=claim.storefront_id,
        now=now,
        claim_number=claim.claim_number,
        customer_email=claim.customer_email,
        shipping_provider=provider,
        tracking_number=tracking_number,
    )
    return claim


def mark_delivered(claim, *, actor_id: int, actor_type=None, now=None, expected_version=None) -> WarrantyClaim:
    """shipped -> delivered"""
    _check_version(claim, expected_version)
    if claim.status != "shipped":
        raise InvalidTransition("WarrantyClaim", claim.status, "delivered", "only shipped claims can be delivered")
    now = now or utcnow()

    def mutate():
        claim.actual_delivery_date = now
        claim.delivery_status = "delivered"

    return _transition(claim, "delivered", actor_id=actor_id, actor_type=actor_type, now=now, mutate=mutate)


def complete(claim, *, actor_id: int, feedback: str | None = None, rating: int | None = None, actor_type=None,
             now=None, expected_version=None) -> WarrantyClaim:
    """delivered -> completed"""
    _check_version(claim, expected_version)
    if claim.status != "delivered":
        raise InvalidTransition("WarrantyClaim", claim.status, "completed", "only delivered claims can be completed")
    if rating is not None and (isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5):
        raise ValidationError("rating must be between 1 and 5", field="rating", value=rating)
    now = now or utcnow()

    def mutate():
        if feedback is not None:
            claim.customer_feedback = feedback
        if rating is not None:
            claim.customer_satisfaction_rating = rating

    _transition(claim, "completed", actor_id=actor_id, actor_type=actor_type, now=now, mutate=mutate)
    notification_service.publish(
        "ClaimCompleted",
        storefront_id=claim.storefront_id,
        now=now,
        claim_number=claim.claim_number,
        customer_email=claim.customer_email,
        total_cost=str(claim.total_cost),
    )
    return claim


def cancel(claim, *, actor_id: int, reason: str, actor_type=None, now=None,
           expected_version=None) -> WarrantyClaim:
    """{pending, validated, assigned} -> cancelled. A reason is required."""
    _check_version(claim, expected_version)
    if claim.status not in CANCELLABLE_STATUSES:
        raise InvalidTransition("WarrantyClaim", claim.status, "cancelled")
    reason = _require_text(reason, "reason")

    def mutate():
        claim.internal_notes = reason

    return _transition(claim, "cancelled", actor_id=actor_id, actor_type=actor_type, now=now or utcnow(),
                       mutate=mutate, reason=reason)


def dispute(claim, *, actor_id: int, reason: str, actor_type=None, now=None, expected_version=None) -> WarrantyClaim:
    """{in_repair, delivered} -> disputed. Costs and resolution are kept as they are."""
    _check_version(claim, expected_version)
    _require_transition(claim, "disputed")
    reason = _require_text(reason, "reason")
    return _transition(claim, "disputed", actor_id=actor_id, actor_type=actor_type, now=now or utcnow(),
                       reason=reason)


def resolve_dispute(claim, *, actor_id: int, outcome: str, reason: str | None = None, actor_type=None, now=None,
                    expected_version=None) -> WarrantyClaim:
    """disputed -> validated | rejected"""
    _check_version(claim, expected_version)
    if claim.status != "disputed":
        raise InvalidTransition("WarrantyClaim", claim.status, outcome, "only disputed claims can be resolved")
    if outcome not in ("validated", "rejected"):
        raise ValidationError("outcome must be 'validated' or 'rejected'", field="outcome", value=outcome)
    now = now or utcnow()
    if outcome == "rejected":
        return _reject(claim, actor_id=actor_id, reason=_require_text(reason, "reason"),
                       actor_type=actor_type, now=now)
    return _transition(claim, "validated", actor_id=actor_id, actor_type=actor_type, now=now, reason=reason)


# =============================================================================
# Non-status mutations
# =============================================================================

def _persist_single(claim, mutate, entry_factory) -> WarrantyClaim:
    try:
        mutate()
        entry = entry_factory()
    except Exception:
        db.session.rollback()
        raise
    _persist([entry])
    return claim


def record_refund(claim, *, actor_id: int, amount, now=None, expected_version=None) -> WarrantyClaim:
    """
    Record a refund decision. refund_amount is not a cost component, so
    total_cost is untouched.
    """
    _check_version(claim, expected_version)
    if claim.status in ("pending", "cancelled", "rejected"):
        raise ValidationError(f"Cannot record a refund on a {claim.status} claim", status=claim.status)
    refund = to_decimal(amount, "refund_amount")
    now = now or utcnow()

    def mutate():
        claim.refund_amount = refund
        claim.resolution_type = "refund"

    return _persist_single(claim, mutate, lambda: timeline_service.system_update(
        claim,
        f"Refund of {refund} recorded",
        {"refund_amount": str(refund), "recorded_by": actor_id},
        now=now,
    ))


def update_delivery_status(claim, *, actor_id: int, delivery_status: str, actual_date=None, actor_type=None,
                           now=None, expected_version=None) -> WarrantyClaim:
    """Carrier progress while shipped. Delivery itself goes through mark_delivered()."""
    _check_version(claim, expected_version)
    if delivery_status not in DELIVERY_STATUSES:
        raise ValidationError(f"Invalid delivery status '{delivery_status}'", field="delivery_status")
    if delivery_status not in TRACKING_UPDATES:
        raise ValidationError(
            f"Delivery status '{delivery_status}' cannot be set directly", field="delivery_status"
        )
    if claim.status != "shipped":
        raise InvalidTransition(
            "WarrantyClaim", claim.status, claim.status, "delivery updates require a shipped claim"
        )
    now = now or utcnow()

    def mutate():
        claim.delivery_status = delivery_status

    return _persist_single(claim, mutate, lambda: timeline_service.delivery_update(
        claim, delivery_status, actual_date, actor_id=actor_id, actor_type=actor_type, now=now,
    ))


def add_note(claim, *, note: str, actor_id: int, actor_type=None, visible: bool = False, now=None) -> WarrantyClaim:
    note = _require_text(note, "note")

    def mutate():
        if timeline_service.resolve_actor_type(actor_id, actor_type) == "customer":
            return
        claim.admin_notes = note if not claim.admin_notes else f"{claim.admin_notes}\n{note}"

    return _persist_single(claim, mutate, lambda: timeline_service.note_added(
        claim, note, actor_id=actor_id, actor_type=actor_type, visible=visible, now=now or utcnow(),
    ))


def record_contact(claim, *, method: str, reason: str, actor_id: int, actor_type=None, now=None) -> WarrantyClaim:
    method = _require_text(method, "method")
    reason = _require_text(reason, "reason")
    return _persist_single(claim, lambda: None, lambda: timeline_service.customer_contact(
        claim, method, reason, actor_id=actor_id, actor_type=actor_type, now=now or utcnow(),
    ))


def record_attachment(claim, *, attachment_id: int, filename: str, actor_id: int, actor_type=None,
                      now=None) -> WarrantyClaim:
    if not attachment_id:
        raise ValidationError("attachment_id is required", field="attachment_id")
    filename = _require_text(filename, "filename")
    return _persist_single(claim, lambda: None, lambda: timeline_service.attachment_uploaded(
        claim, attachment_id, filename, actor_id=actor_id, actor_type=actor_type, now=now or utcnow(),
    ))


# =============================================================================
# Queries
# =============================================================================

def get_claim(claim_id: int, *, storefront_id: int | None = None) -> WarrantyClaim:
    claim = db.session.get(WarrantyClaim, claim_id)
    if claim is None or (storefront_id is not None and claim.storefront_id != storefront_id):
        raise NotFound("WarrantyClaim", claim_id)
    return claim


def get_claim_by_number(storefront_id: int, claim_number: str) -> WarrantyClaim:
    claim = (
        db.session.query(WarrantyClaim)
        .filter_by(storefront_id=storefront_id, claim_number=claim_number)
        .first()
    )
    if claim is None:
        raise NotFound("WarrantyClaim", claim_number)
    return claim


def list_claims(
    *,
    storefront_id: int,
    status: str | None = None,
    priority: str | None = None,
    customer_id: int | None = None,
    technician_id: int | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[WarrantyClaim]:
    q = db.session.query(WarrantyClaim).filter(WarrantyClaim.storefront_id == storefront_id)
    if status is not None:
        q = q.filter(WarrantyClaim.status == status)
    if priority is not None:
        q = q.filter(WarrantyClaim.priority == priority)
    if customer_id is not None:
        q = q.filter(WarrantyClaim.customer_id == customer_id)
    if technician_id is not None:
        q = q.filter(WarrantyClaim.assigned_technician_id == technician_id)
    q = q.order_by(WarrantyClaim.claim_date.desc(), WarrantyClaim.id.desc())
    return q.offset(offset).limit(limit).all()


def claims_for_customer(storefront_id: int, customer_id: int) -> list[WarrantyClaim]:
    return list_claims(storefront_id=storefront_id, customer_id=customer_id, limit=1000)


def claims_for_technician(storefront_id: int, technician_id: int) -> list[WarrantyClaim]:
    return list_claims(storefront_id=storefront_id, technician_id=technician_id, limit=1000)


def claims_for_barcode(barcode: WarrantyBarcode) -> list[WarrantyClaim]:
    return (
        db.session.query(WarrantyClaim)
        .filter(WarrantyClaim.barcode_id == barcode.id)
        .order_by(WarrantyClaim.claim_date.asc())
        .all()
    )


# =============================================================================
# Views (computed, never persisted)
# =============================================================================

def display_status(claim: WarrantyClaim) -> str:
    return DISPLAY_STATUS.get(claim.status, claim.status)


def next_actions(claim: WarrantyClaim) -> list[str]:
    return list(NEXT_ACTIONS.get(claim.status, []))


def processing_time_hours(claim: WarrantyClaim) -> int | None:
    if claim.completed_at is None:
        return None
    return int((claim.completed_at - claim.claim_date).total_seconds() // 3600)


def elapsed_time(claim: WarrantyClaim, now=None) -> str:
    hours = ((now or utcnow()) - claim.claim_date).total_seconds() / 3600
    if hours < 24:
        return f"{hours:.1f} hours"
    return f"{hours / 24:.1f} days"


def _money(value) -> str | None:
    return str(value) if value is not None else None


def claim_view(claim: WarrantyClaim, now=None) -> dict:
    data = claim.to_dict()
    data.update({
        "display_status": display_status(claim),
        "next_actions": next_actions(claim),
        "is_terminal": is_terminal(claim.status),
        "can_cancel": claim.status in CANCELLABLE_STATUSES,
        "can_update": not is_terminal(claim.status),
        "elapsed_time": elapsed_time(claim, now),
        "cost_breakdown": {
            "repair_cost": _money(claim.repair_cost),
            "shipping_cost": _money(claim.shipping_cost),
            "replacement_cost": _money(claim.replacement_cost),
            "total_cost": _money(claim.total_cost),
        },
        "quality_metrics": {
            "customer_satisfaction_rating": claim.customer_satisfaction_rating,
            "customer_feedback": claim.customer_feedback,
            "processing_time_hours": processing_time_hours(claim),
        },
    })
    return data


def customer_view(claim: WarrantyClaim, now=None) -> dict:
    """Claim view for the customer: no internal notes, visible timeline only."""
    data = claim_view(claim, now)
    data.pop("admin_notes", None)
    data["timeline"] = [
        timeline_service.entry_view(e, now)
        for e in timeline_service.list_entries(claim.id, customer_view=True)
    ]
    return data
