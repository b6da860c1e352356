from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from warranty.time_utils import to_iso_date, to_utc_z


def _money(value) -> str | None:
    return str(value) if value is not None else None


class WarrantyClaim(db.Model):
    """
    Customer warranty request against one activated barcode.

    LIFECYCLE:
        pending -> validated -> assigned -> in_repair -> repaired|replaced
                -> shipped -> delivered -> completed
    with side exits to rejected, cancelled and disputed. completed,
    cancelled and rejected are terminal.

    CONCURRENCY: version_id is the optimistic lock. Two writers on the same
    claim cannot both commit; the loser gets StaleDataError.

    SNAPSHOT: customer contact and pickup address are copied at submission
    and never updated afterwards.

    MONEY: cost components are nullable so "never set" differs from 0.00.
    total_cost is always repair + shipping + replacement (nulls as zero).
    """
    __tablename__ = "warranty_claims"
    __table_args__ = (
        db.UniqueConstraint("storefront_id", "claim_number", name="uq_warranty_claims_storefront_number"),
        db.CheckConstraint(
            "customer_satisfaction_rating IS NULL OR customer_satisfaction_rating BETWEEN 1 AND 5",
            name="ck_warranty_claims_rating_range",
        ),
        db.Index("ix_warranty_claims_storefront_status", "storefront_id", "status", "claim_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    claim_number = db.Column(db.String(32), nullable=False, index=True)

    storefront_id = db.Column(db.Integer, nullable=False, index=True)
    customer_id = db.Column(db.Integer, nullable=False, index=True)
    product_id = db.Column(db.Integer, nullable=False, index=True)
    barcode_id = db.Column(db.Integer, db.ForeignKey("warranty_barcodes.id"), nullable=False, index=True)

    # Issue details
    issue_description = db.Column(db.Text, nullable=False)
    issue_category = db.Column(db.String(64), nullable=False)
    issue_date = db.Column(db.Date, nullable=False)
    severity = db.Column(db.String(16), nullable=False, default="medium")  # low, medium, high, critical
    priority = db.Column(db.String(16), nullable=False, default="normal")  # low, normal, high, urgent
    tags = db.Column(db.JSON, nullable=False, default=list)

    # Status management
    claim_date = db.Column(db.DateTime(timezone=True), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    previous_status = db.Column(db.String(16), nullable=True)
    status_updated_at = db.Column(db.DateTime(timezone=True), nullable=False)
    status_updated_by = db.Column(db.Integer, nullable=True)
    validated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Processing
    validated_by = db.Column(db.Integer, nullable=True)
    assigned_technician_id = db.Column(db.Integer, nullable=True, index=True)
    estimated_completion_date = db.Column(db.Date, nullable=True)
    actual_completion_date = db.Column(db.DateTime(timezone=True), nullable=True)

    # Resolution
    resolution_type = db.Column(db.String(16), nullable=True)  # repair, replace, refund, rejected
    repair_notes = db.Column(db.Text, nullable=True)
    replacement_product_id = db.Column(db.Integer, nullable=True)
    refund_amount = db.Column(db.Numeric(12, 2), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    # Money
    repair_cost = db.Column(db.Numeric(12, 2), nullable=True)
    shipping_cost = db.Column(db.Numeric(12, 2), nullable=True)
    replacement_cost = db.Column(db.Numeric(12, 2), nullable=True)
    total_cost = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    # Customer snapshot
    customer_name = db.Column(db.String(255), nullable=False)
    customer_email = db.Column(db.String(255), nullable=False)
    customer_phone = db.Column(db.String(64), nullable=True)
    pickup_address = db.Column(db.JSON, nullable=False)

    # Delivery
    shipping_provider = db.Column(db.String(64), nullable=True)
    tracking_number = db.Column(db.String(128), nullable=True)
    estimated_delivery_date = db.Column(db.Date, nullable=True)
    actual_delivery_date = db.Column(db.DateTime(timezone=True), nullable=True)
    delivery_status = db.Column(db.String(24), nullable=False, default="not_shipped")

    # Notes
    customer_notes = db.Column(db.Text, nullable=True)
    admin_notes = db.Column(db.Text, nullable=True)
    internal_notes = db.Column(db.Text, nullable=True)

    # Quality
    customer_satisfaction_rating = db.Column(db.Integer, nullable=True)
    customer_feedback = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    barcode = db.relationship("WarrantyBarcode", backref=db.backref("claims", lazy=True))
    timeline = db.relationship(
        "ClaimTimelineEntry",
        back_populates="claim",
        order_by=lambda: (ClaimTimelineEntry.created_at, ClaimTimelineEntry.id),
        lazy=True,
    )
    repair_tickets = db.relationship(
        "RepairTicket",
        back_populates="claim",
        order_by="RepairTicket.id",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "claim_number": self.claim_number,
            "storefront_id": self.storefront_id,
            "customer_id": self.customer_id,
            "product_id": self.product_id,
            "barcode_id": self.barcode_id,
            "issue_description": self.issue_description,
            "issue_category": self.issue_category,
            "issue_date": to_iso_date(self.issue_date),
            "severity": self.severity,
            "priority": self.priority,
            "tags": list(self.tags or []),
            "claim_date": to_utc_z(self.claim_date),
            "status": self.status,
            "previous_status": self.previous_status,
            "status_updated_at": to_utc_z(self.status_updated_at),
            "status_updated_by": self.status_updated_by,
            "validated_at": to_utc_z(self.validated_at),
            "validated_by": self.validated_by,
            "completed_at": to_utc_z(self.completed_at),
            "assigned_technician_id": self.assigned_technician_id,
            "estimated_completion_date": to_iso_date(self.estimated_completion_date),
            "actual_completion_date": to_utc_z(self.actual_completion_date),
            "resolution_type": self.resolution_type,
            "repair_notes": self.repair_notes,
            "replacement_product_id": self.replacement_product_id,
            "refund_amount": _money(self.refund_amount),
            "rejection_reason": self.rejection_reason,
            "repair_cost": _money(self.repair_cost),
            "shipping_cost": _money(self.shipping_cost),
            "replacement_cost": _money(self.replacement_cost),
            "total_cost": _money(self.total_cost),
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "pickup_address": dict(self.pickup_address or {}),
            "shipping_provider": self.shipping_provider,
            "tracking_number": self.tracking_number,
            "estimated_delivery_date": to_iso_date(self.estimated_delivery_date),
            "actual_delivery_date": to_utc_z(self.actual_delivery_date),
            "delivery_status": self.delivery_status,
            "customer_notes": self.customer_notes,
            "admin_notes": self.admin_notes,
            "customer_satisfaction_rating": self.customer_satisfaction_rating,
            "customer_feedback": self.customer_feedback,
            "version_id": self.version_id,
        }

    def __repr__(self) -> str:
        return f"<WarrantyClaim {self.claim_number} {self.status}>"


class ClaimSequence(db.Model):
    """
    Atomic per-storefront claim number counter.

    Claim numbers are CLM-<yyyymmdd>-<seq>; seq increases monotonically
    within one storefront and never resets.
    """
    __tablename__ = "claim_sequences"
    __table_args__ = (
        db.UniqueConstraint("storefront_id", name="uq_claim_sequences_storefront"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    storefront_id = db.Column(db.Integer, nullable=False, index=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())


class RepairTicket(db.Model):
    """
    Technician-facing work item nested inside a claim.

    STATE MACHINE:
        assigned -> in_progress -> (waiting_parts -> in_progress)* -> completed|failed|cancelled

    Diagnosis is required from in_progress onward. parts_cost, labor_cost and
    total_cost are maintained by the repair service whenever parts or labor change.
    """
    __tablename__ = "repair_tickets"
    __table_args__ = (
        db.CheckConstraint("labor_hours >= 0", name="ck_repair_tickets_labor_hours"),
        db.Index("ix_repair_tickets_claim_status", "claim_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    claim_id = db.Column(db.Integer, db.ForeignKey("warranty_claims.id"), nullable=False, index=True)
    technician_id = db.Column(db.Integer, nullable=False, index=True)

    assigned_at = db.Column(db.DateTime(timezone=True), nullable=False)
    start_date = db.Column(db.DateTime(timezone=True), nullable=True)
    target_completion_date = db.Column(db.DateTime(timezone=True), nullable=True)
    actual_completion_date = db.Column(db.DateTime(timezone=True), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="assigned", index=True)

    diagnosis = db.Column(db.Text, nullable=True)
    repair_steps = db.Column(db.JSON, nullable=False, default=list)

    # [{part_number, part_name, quantity, unit_cost, total_cost, description, supplier}]
    parts_used = db.Column(db.JSON, nullable=False, default=list)
    labor_hours = db.Column(db.Numeric(8, 2), nullable=False, default=0)
    hourly_rate = db.Column(db.Numeric(12, 2), nullable=True)
    parts_cost = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    labor_cost = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_cost = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    quality_check_passed = db.Column(db.Boolean, nullable=True)
    quality_notes = db.Column(db.Text, nullable=True)
    # [{test_name, result, description, tested_at, tested_by}]
    test_results = db.Column(db.JSON, nullable=False, default=list)

    before_photos = db.Column(db.JSON, nullable=False, default=list)
    after_photos = db.Column(db.JSON, nullable=False, default=list)
    process_photos = db.Column(db.JSON, nullable=False, default=list)

    technician_notes = db.Column(db.Text, nullable=True)
    supervisor_notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    claim = db.relationship("WarrantyClaim", back_populates="repair_tickets")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "claim_id": self.claim_id,
            "technician_id": self.technician_id,
            "assigned_at": to_utc_z(self.assigned_at),
            "start_date": to_utc_z(self.start_date),
            "target_completion_date": to_utc_z(self.target_completion_date),
            "actual_completion_date": to_utc_z(self.actual_completion_date),
            "status": self.status,
            "diagnosis": self.diagnosis,
            "repair_steps": list(self.repair_steps or []),
            "parts_used": list(self.parts_used or []),
            "labor_hours": _money(self.labor_hours),
            "hourly_rate": _money(self.hourly_rate),
            "parts_cost": _money(self.parts_cost),
            "labor_cost": _money(self.labor_cost),
            "total_cost": _money(self.total_cost),
            "quality_check_passed": self.quality_check_passed,
            "quality_notes": self.quality_notes,
            "test_results": list(self.test_results or []),
            "before_photos": list(self.before_photos or []),
            "after_photos": list(self.after_photos or []),
            "process_photos": list(self.process_photos or []),
            "technician_notes": self.technician_notes,
            "supervisor_notes": self.supervisor_notes,
        }


class ClaimTimelineEntry(db.Model):
    """
    Immutable audit row in a claim's timeline.

    RULES:
    - status_change entries carry both from_status and to_status
    - non-system entries carry actor_id
    - rows are inserted once and never updated or deleted
    """
    __tablename__ = "claim_timeline"
    __table_args__ = (
        db.Index("ix_claim_timeline_claim_created", "claim_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    claim_id = db.Column(db.Integer, db.ForeignKey("warranty_claims.id"), nullable=False, index=True)

    event_type = db.Column(db.String(32), nullable=False, index=True)
    from_status = db.Column(db.String(16), nullable=True)
    to_status = db.Column(db.String(16), nullable=True)

    actor_id = db.Column(db.Integer, nullable=True)
    actor_type = db.Column(db.String(16), nullable=False, default="system")  # customer, admin, technician, system

    description = db.Column(db.Text, nullable=False)
    # "metadata" is reserved on declarative classes
    event_metadata = db.Column("metadata", db.JSON, nullable=False, default=dict)

    is_customer_visible = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    claim = db.relationship("WarrantyClaim", back_populates="timeline")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "claim_id": self.claim_id,
            "event_type": self.event_type,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "actor_id": self.actor_id,
            "actor_type": self.actor_type,
            "description": self.description,
            "metadata": dict(self.event_metadata or {}),
            "is_customer_visible": self.is_customer_visible,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(ClaimTimelineEntry, "before_update")
def _reject_timeline_update(mapper, connection, target):
    raise RuntimeError(f"claim_timeline entry {target.id} is append-only")


@event.listens_for(ClaimTimelineEntry, "before_delete")
def _reject_timeline_delete(mapper, connection, target):
    raise RuntimeError(f"claim_timeline entry {target.id} is append-only")
