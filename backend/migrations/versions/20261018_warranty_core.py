"""Add warranty barcodes, generation batches, claims, repair tickets and timeline

Revision ID: 20261018_warranty_core
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_warranty_core"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
    ]


def upgrade():
    op.create_table(
        "barcode_generation_batches",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("batch_number", sa.String(100), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("storefront_id", sa.Integer(), nullable=False),
        sa.Column("requested_quantity", sa.Integer(), nullable=False),
        sa.Column("generated_quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("failed_quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("collision_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("generation_started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("generation_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("generation_status", sa.String(16), nullable=False, server_default="in_progress"),
        sa.Column("average_generation_time_ms", sa.Integer(), nullable=True),
        sa.Column("intended_recipient", sa.String(255), nullable=True),
        sa.Column("distribution_notes", sa.Text(), nullable=True),
        sa.Column("requested_by", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("batch_number", name="uq_barcode_batches_batch_number"),
        sa.CheckConstraint("requested_quantity > 0", name="ck_barcode_batches_requested_positive"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("barcode_generation_batches", schema=None) as batch_op:
        batch_op.create_index("ix_barcode_generation_batches_product_id", ["product_id"], unique=False)
        batch_op.create_index("ix_barcode_generation_batches_storefront_id", ["storefront_id"], unique=False)
        batch_op.create_index("ix_barcode_generation_batches_generation_status", ["generation_status"], unique=False)
        batch_op.create_index("ix_barcode_batches_storefront_status", ["storefront_id", "generation_status"], unique=False)

    op.create_table(
        "warranty_barcodes",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("barcode_number", sa.String(17), nullable=False),
        sa.Column("qr_code_data", sa.String(255), nullable=False),
        sa.Column("storefront_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("generated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("generation_method", sa.String(16), nullable=False, server_default="CSPRNG"),
        sa.Column("entropy_bits", sa.Integer(), nullable=False, server_default=sa.text("60")),
        sa.Column("generation_attempt", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("collision_checked", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("batch_id", sa.Integer(), nullable=True),
        sa.Column("batch_number", sa.String(100), nullable=True),
        sa.Column("distributed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("distributed_to", sa.String(255), nullable=True),
        sa.Column("distribution_notes", sa.Text(), nullable=True),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("purchase_date", sa.Date(), nullable=True),
        sa.Column("purchase_location", sa.String(255), nullable=True),
        sa.Column("purchase_invoice", sa.String(255), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="generated"),
        sa.Column("warranty_period_months", sa.Integer(), nullable=False),
        sa.Column("expiry_date", sa.Date(), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["batch_id"], ["barcode_generation_batches.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("barcode_number", name="uq_warranty_barcodes_number"),
        sa.CheckConstraint("warranty_period_months > 0", name="ck_warranty_barcodes_period_positive"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("warranty_barcodes", schema=None) as batch_op:
        batch_op.create_index("ix_warranty_barcodes_storefront_id", ["storefront_id"], unique=False)
        batch_op.create_index("ix_warranty_barcodes_product_id", ["product_id"], unique=False)
        batch_op.create_index("ix_warranty_barcodes_generated_at", ["generated_at"], unique=False)
        batch_op.create_index("ix_warranty_barcodes_batch_id", ["batch_id"], unique=False)
        batch_op.create_index("ix_warranty_barcodes_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_warranty_barcodes_status", ["status"], unique=False)
        batch_op.create_index("ix_warranty_barcodes_expiry_date", ["expiry_date"], unique=False)
        batch_op.create_index("ix_warranty_barcodes_storefront_status", ["storefront_id", "status"], unique=False)
        batch_op.create_index("ix_warranty_barcodes_product", ["storefront_id", "product_id"], unique=False)

    op.create_table(
        "barcode_collisions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("attempted_barcode", sa.String(17), nullable=False),
        sa.Column("collision_attempt", sa.Integer(), nullable=False),
        sa.Column("batch_id", sa.Integer(), nullable=True),
        sa.Column("detected_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["batch_id"], ["barcode_generation_batches.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("barcode_collisions", schema=None) as batch_op:
        batch_op.create_index("ix_barcode_collisions_attempted_barcode", ["attempted_barcode"], unique=False)
        batch_op.create_index("ix_barcode_collisions_batch_id", ["batch_id"], unique=False)
        batch_op.create_index("ix_barcode_collisions_detected_at", ["detected_at"], unique=False)

    op.create_table(
        "warranty_claims",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("claim_number", sa.String(32), nullable=False),
        sa.Column("storefront_id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("barcode_id", sa.Integer(), nullable=False),
        sa.Column("issue_description", sa.Text(), nullable=False),
        sa.Column("issue_category", sa.String(64), nullable=False),
        sa.Column("issue_date", sa.Date(), nullable=False),
        sa.Column("severity", sa.String(16), nullable=False, server_default="medium"),
        sa.Column("priority", sa.String(16), nullable=False, server_default="normal"),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("claim_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("previous_status", sa.String(16), nullable=True),
        sa.Column("status_updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status_updated_by", sa.Integer(), nullable=True),
        sa.Column("validated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("validated_by", sa.Integer(), nullable=True),
        sa.Column("assigned_technician_id", sa.Integer(), nullable=True),
        sa.Column("estimated_completion_date", sa.Date(), nullable=True),
        sa.Column("actual_completion_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolution_type", sa.String(16), nullable=True),
        sa.Column("repair_notes", sa.Text(), nullable=True),
        sa.Column("replacement_product_id", sa.Integer(), nullable=True),
        sa.Column("refund_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("repair_cost", sa.Numeric(12, 2), nullable=True),
        sa.Column("shipping_cost", sa.Numeric(12, 2), nullable=True),
        sa.Column("replacement_cost", sa.Numeric(12, 2), nullable=True),
        sa.Column("total_cost", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("customer_name", sa.String(255), nullable=False),
        sa.Column("customer_email", sa.String(255), nullable=False),
        sa.Column("customer_phone", sa.String(64), nullable=True),
        sa.Column("pickup_address", sa.JSON(), nullable=False),
        sa.Column("shipping_provider", sa.String(64), nullable=True),
        sa.Column("tracking_number", sa.String(128), nullable=True),
        sa.Column("estimated_delivery_date", sa.Date(), nullable=True),
        sa.Column("actual_delivery_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivery_status", sa.String(24), nullable=False, server_default="not_shipped"),
        sa.Column("customer_notes", sa.Text(), nullable=True),
        sa.Column("admin_notes", sa.Text(), nullable=True),
        sa.Column("internal_notes", sa.Text(), nullable=True),
        sa.Column("customer_satisfaction_rating", sa.Integer(), nullable=True),
        sa.Column("customer_feedback", sa.Text(), nullable=True),
        *_timestamps(),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["barcode_id"], ["warranty_barcodes.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("storefront_id", "claim_number", name="uq_warranty_claims_storefront_number"),
        sa.CheckConstraint(
            "customer_satisfaction_rating IS NULL OR customer_satisfaction_rating BETWEEN 1 AND 5",
            name="ck_warranty_claims_rating_range",
        ),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("warranty_claims", schema=None) as batch_op:
        batch_op.create_index("ix_warranty_claims_claim_number", ["claim_number"], unique=False)
        batch_op.create_index("ix_warranty_claims_storefront_id", ["storefront_id"], unique=False)
        batch_op.create_index("ix_warranty_claims_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_warranty_claims_product_id", ["product_id"], unique=False)
        batch_op.create_index("ix_warranty_claims_barcode_id", ["barcode_id"], unique=False)
        batch_op.create_index("ix_warranty_claims_status", ["status"], unique=False)
        batch_op.create_index("ix_warranty_claims_assigned_technician_id", ["assigned_technician_id"], unique=False)
        batch_op.create_index(
            "ix_warranty_claims_storefront_status", ["storefront_id", "status", "claim_date"], unique=False
        )

    op.create_table(
        "claim_sequences",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("storefront_id", sa.Integer(), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("storefront_id", name="uq_claim_sequences_storefront"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("claim_sequences", schema=None) as batch_op:
        batch_op.create_index("ix_claim_sequences_storefront_id", ["storefront_id"], unique=False)

    op.create_table(
        "repair_tickets",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("claim_id", sa.Integer(), nullable=False),
        sa.Column("technician_id", sa.Integer(), nullable=False),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("target_completion_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_completion_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="assigned"),
        sa.Column("diagnosis", sa.Text(), nullable=True),
        sa.Column("repair_steps", sa.JSON(), nullable=False),
        sa.Column("parts_used", sa.JSON(), nullable=False),
        sa.Column("labor_hours", sa.Numeric(8, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("hourly_rate", sa.Numeric(12, 2), nullable=True),
        sa.Column("parts_cost", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("labor_cost", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("total_cost", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("quality_check_passed", sa.Boolean(), nullable=True),
        sa.Column("quality_notes", sa.Text(), nullable=True),
        sa.Column("test_results", sa.JSON(), nullable=False),
        sa.Column("before_photos", sa.JSON(), nullable=False),
        sa.Column("after_photos", sa.JSON(), nullable=False),
        sa.Column("process_photos", sa.JSON(), nullable=False),
        sa.Column("technician_notes", sa.Text(), nullable=True),
        sa.Column("supervisor_notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["claim_id"], ["warranty_claims.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("labor_hours >= 0", name="ck_repair_tickets_labor_hours"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("repair_tickets", schema=None) as batch_op:
        batch_op.create_index("ix_repair_tickets_claim_id", ["claim_id"], unique=False)
        batch_op.create_index("ix_repair_tickets_technician_id", ["technician_id"], unique=False)
        batch_op.create_index("ix_repair_tickets_status", ["status"], unique=False)
        batch_op.create_index("ix_repair_tickets_claim_status", ["claim_id", "status"], unique=False)

    op.create_table(
        "claim_timeline",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("claim_id", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(32), nullable=False),
        sa.Column("from_status", sa.String(16), nullable=True),
        sa.Column("to_status", sa.String(16), nullable=True),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.Column("actor_type", sa.String(16), nullable=False, server_default="system"),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("is_customer_visible", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["claim_id"], ["warranty_claims.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("claim_timeline", schema=None) as batch_op:
        batch_op.create_index("ix_claim_timeline_claim_id", ["claim_id"], unique=False)
        batch_op.create_index("ix_claim_timeline_event_type", ["event_type"], unique=False)
        batch_op.create_index("ix_claim_timeline_claim_created", ["claim_id", "created_at"], unique=False)


def downgrade():
    op.drop_table("claim_timeline")
    op.drop_table("repair_tickets")
    op.drop_table("claim_sequences")
    op.drop_table("warranty_claims")
    op.drop_table("barcode_collisions")
    op.drop_table("warranty_barcodes")
    op.drop_table("barcode_generation_batches")
