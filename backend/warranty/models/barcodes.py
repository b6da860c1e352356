from __future__ import annotations

from ..extensions import db
from warranty.time_utils import to_iso_date, to_utc_z


class BarcodeGenerationBatch(db.Model):
    """
    One administrative run that produces many barcodes for a product.

    LIFECYCLE:
    - in_progress: opened and persisted before any barcode is generated
    - completed:   no failures
    - partial:     some barcodes generated, some failed
    - failed:      nothing generated

    The final status is derived only from (generated_quantity, failed_quantity).
    """
    __tablename__ = "barcode_generation_batches"
    __table_args__ = (
        db.UniqueConstraint("batch_number", name="uq_barcode_batches_batch_number"),
        db.CheckConstraint("requested_quantity > 0", name="ck_barcode_batches_requested_positive"),
        db.Index("ix_barcode_batches_storefront_status", "storefront_id", "generation_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    batch_number = db.Column(db.String(100), nullable=False)

    product_id = db.Column(db.Integer, nullable=False, index=True)
    storefront_id = db.Column(db.Integer, nullable=False, index=True)

    requested_quantity = db.Column(db.Integer, nullable=False)
    generated_quantity = db.Column(db.Integer, nullable=False, default=0)
    failed_quantity = db.Column(db.Integer, nullable=False, default=0)
    collision_count = db.Column(db.Integer, nullable=False, default=0)
    retry_count = db.Column(db.Integer, nullable=False, default=0)

    generation_started_at = db.Column(db.DateTime(timezone=True), nullable=False)
    generation_completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    generation_status = db.Column(db.String(16), nullable=False, default="in_progress", index=True)  # in_progress, completed, partial, failed
    average_generation_time_ms = db.Column(db.Integer, nullable=True)

    intended_recipient = db.Column(db.String(255), nullable=True)
    distribution_notes = db.Column(db.Text, nullable=True)

    requested_by = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    barcodes = db.relationship("WarrantyBarcode", back_populates="batch", lazy="dynamic")

    @property
    def success_rate(self) -> float:
        total = self.generated_quantity + self.failed_quantity
        if not total:
            return 0.0
        return self.generated_quantity / total * 100

    @property
    def collision_rate(self) -> float:
        attempts = self.generated_quantity + self.collision_count
        if not attempts:
            return 0.0
        return self.collision_count / attempts * 100

    @property
    def is_completed(self) -> bool:
        return self.generation_completed_at is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "batch_number": self.batch_number,
            "product_id": self.product_id,
            "storefront_id": self.storefront_id,
            "requested_quantity": self.requested_quantity,
            "generated_quantity": self.generated_quantity,
            "failed_quantity": self.failed_quantity,
            "collision_count": self.collision_count,
            "retry_count": self.retry_count,
            "generation_started_at": to_utc_z(self.generation_started_at),
            "generation_completed_at": to_utc_z(self.generation_completed_at),
            "generation_status": self.generation_status,
            "average_generation_time_ms": self.average_generation_time_ms,
            "intended_recipient": self.intended_recipient,
            "distribution_notes": self.distribution_notes,
            "requested_by": self.requested_by,
            "success_rate": round(self.success_rate, 4),
            "collision_rate": round(self.collision_rate, 4),
            "is_completed": self.is_completed,
        }


class WarrantyBarcode(db.Model):
    """
    A warranty barcode printed on product packaging.

    FORMAT: REX + two-digit year of generated_at + 12 chars from the
    32-symbol alphabet (no I, O, 1, 0). Globally unique.

    STATE MACHINE:
        generated -> distributed -> activated -> used -> expired
    expired is terminal. expiry_date = purchase_date + warranty_period_months
    (calendar months) and is only set once the barcode is activated.
    """
    __tablename__ = "warranty_barcodes"
    __table_args__ = (
        db.UniqueConstraint("barcode_number", name="uq_warranty_barcodes_number"),
        db.CheckConstraint("warranty_period_months > 0", name="ck_warranty_barcodes_period_positive"),
        db.Index("ix_warranty_barcodes_storefront_status", "storefront_id", "status"),
        db.Index("ix_warranty_barcodes_product", "storefront_id", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    barcode_number = db.Column(db.String(17), nullable=False)
    qr_code_data = db.Column(db.String(255), nullable=False)

    # Tenancy (immutable)
    storefront_id = db.Column(db.Integer, nullable=False, index=True)
    product_id = db.Column(db.Integer, nullable=False, index=True)

    # Generation metadata for security tracking
    generated_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    generation_method = db.Column(db.String(16), nullable=False, default="CSPRNG")
    entropy_bits = db.Column(db.Integer, nullable=False, default=60)
    generation_attempt = db.Column(db.Integer, nullable=False, default=1)
    collision_checked = db.Column(db.Boolean, nullable=False, default=False)

    # Distribution
    batch_id = db.Column(db.Integer, db.ForeignKey("barcode_generation_batches.id"), nullable=True, index=True)
    batch_number = db.Column(db.String(100), nullable=True)
    distributed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    distributed_to = db.Column(db.String(255), nullable=True)
    distribution_notes = db.Column(db.Text, nullable=True)

    # Activation
    activated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    customer_id = db.Column(db.Integer, nullable=True, index=True)
    purchase_date = db.Column(db.Date, nullable=True)
    purchase_location = db.Column(db.String(255), nullable=True)
    purchase_invoice = db.Column(db.String(255), nullable=True)

    # Lifecycle
    status = db.Column(db.String(16), nullable=False, default="generated", index=True)  # generated, distributed, activated, used, expired
    warranty_period_months = db.Column(db.Integer, nullable=False)
    expiry_date = db.Column(db.Date, nullable=True, index=True)

    # Audit
    created_by = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    batch = db.relationship("BarcodeGenerationBatch", back_populates="barcodes")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "barcode_number": self.barcode_number,
            "qr_code_data": self.qr_code_data,
            "storefront_id": self.storefront_id,
            "product_id": self.product_id,
            "generated_at": to_utc_z(self.generated_at),
            "generation_method": self.generation_method,
            "entropy_bits": self.entropy_bits,
            "generation_attempt": self.generation_attempt,
            "collision_checked": self.collision_checked,
            "batch_id": self.batch_id,
            "batch_number": self.batch_number,
            "distributed_at": to_utc_z(self.distributed_at),
            "distributed_to": self.distributed_to,
            "distribution_notes": self.distribution_notes,
            "activated_at": to_utc_z(self.activated_at),
            "customer_id": self.customer_id,
            "purchase_date": to_iso_date(self.purchase_date),
            "purchase_location": self.purchase_location,
            "purchase_invoice": self.purchase_invoice,
            "status": self.status,
            "warranty_period_months": self.warranty_period_months,
            "expiry_date": to_iso_date(self.expiry_date),
            "created_by": self.created_by,
        }

    def __repr__(self) -> str:
        return f"<WarrantyBarcode {self.barcode_number} {self.status}>"


class BarcodeCollision(db.Model):
    """
    Append-only log of barcode candidates that already existed.

    Never mutated. Read by security monitoring (collision rate).
    """
    __tablename__ = "barcode_collisions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    attempted_barcode = db.Column(db.String(17), nullable=False, index=True)
    collision_attempt = db.Column(db.Integer, nullable=False)
    batch_id = db.Column(db.Integer, db.ForeignKey("barcode_generation_batches.id"), nullable=True, index=True)
    detected_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "attempted_barcode": self.attempted_barcode,
            "collision_attempt": self.collision_attempt,
            "batch_id": self.batch_id,
            "detected_at": to_utc_z(self.detected_at),
        }
