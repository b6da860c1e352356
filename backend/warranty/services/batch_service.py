# Overview: Service-layer operations for batch barcode generation; drives the run and persists the batch record.

"""
Batch Coordinator

PROTOCOL:
1. OPEN:     persist a BarcodeGenerationBatch (in_progress) before generating
2. GENERATE: draw `quantity` unique numbers; failures and collisions are
             accumulated, never fatal on their own
3. INSERT:   bulk-insert every successful barcode in one transaction
4. CLOSE:    stamp completion, average time, and derive the final status
             from (generated_quantity, failed_quantity) only
5. REPORT:   BatchResult with per-batch statistics and a security score

RACES: another batch may persist one of our candidates between the
uniqueness check and the bulk insert. The insert then fails as a whole;
the taken numbers are logged as collisions, redrawn, and the insert is
retried (bounded by max_retries rounds).

CANCELLATION: a threading.Event checked between candidates. When set, the
remaining candidates count as failed and the batch closes as partial or
failed with whatever was generated.
"""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field

from flask import current_app

from ..extensions import db
from ..models import BarcodeGenerationBatch, WarrantyBarcode
from . import barcode_generator, barcode_store
from .barcode_generator import GeneratorConfig, RandomSource
from warranty.errors import DuplicateKey, GenerationExhausted, StoreUnavailable, ValidationError
from warranty.time_utils import format_duration, utcnow


BATCH_NUMBER_FORMAT = "BATCH-%Y-%m-%d-%H%M%S"
DEFAULT_MAX_QUANTITY = 10000


@dataclass
class BatchStatistics:
    requested_quantity: int
    generated_quantity: int
    failed_quantity: int
    collision_count: int
    retry_count: int
    success_rate: float
    collision_rate: float
    total_possible_combinations: int
    average_generation_time_ms: int
    security_score: str
    recommended_action: str

    def to_dict(self) -> dict:
        return {
            "requested_quantity": self.requested_quantity,
            "generated_quantity": self.generated_quantity,
            "failed_quantity": self.failed_quantity,
            "collision_count": self.collision_count,
            "retry_count": self.retry_count,
            "success_rate": round(self.success_rate, 4),
            "collision_rate": round(self.collision_rate, 4),
            # 32**12 overflows JS numbers
            "total_possible_combinations": str(self.total_possible_combinations),
            "average_generation_time_ms": self.average_generation_time_ms,
            "security_score": self.security_score,
            "recommended_action": self.recommended_action,
        }


@dataclass
class BatchResult:
    batch: BarcodeGenerationBatch
    barcodes: list[WarrantyBarcode] = field(default_factory=list)
    statistics: BatchStatistics | None = None

    def to_dict(self, include_barcodes: bool = True) -> dict:
        data = {
            "batch": batch_view(self.batch),
            "statistics": self.statistics.to_dict() if self.statistics else None,
        }
        if include_barcodes:
            data["barcodes"] = [b.to_dict() for b in self.barcodes]
        return data


# =============================================================================
# Scoring
# =============================================================================

def derive_status(generated_quantity: int, failed_quantity: int) -> str:
    if failed_quantity == 0:
        return "completed"
    if generated_quantity > 0:
        return "partial"
    return "failed"


def security_assessment(collision_rate: float, config: GeneratorConfig) -> tuple[str, str]:
    """Map a collision rate (percent) to (security_score, recommended_action)."""
    if collision_rate == 0:
        return "EXCELLENT", "continue"
    if collision_rate <= config.collision_warn_pct:
        return "GOOD", "continue"
    if collision_rate <= config.collision_critical_pct:
        return "FAIR", "monitor"
    return "POOR", "review_algorithm"


def performance_score(batch: BarcodeGenerationBatch) -> str:
    if not batch.is_completed:
        return "IN_PROGRESS"

    score = 100.0
    if batch.requested_quantity:
        failure_rate = batch.failed_quantity / batch.requested_quantity * 100
        score -= failure_rate * 2
    if batch.collision_rate > 1.0:
        score -= (batch.collision_rate - 1.0) * 10
    if batch.average_generation_time_ms and batch.average_generation_time_ms > 10:
        score -= (batch.average_generation_time_ms - 10) / 10

    if score >= 95:
        return "EXCELLENT"
    if score >= 85:
        return "GOOD"
    if score >= 70:
        return "FAIR"
    return "POOR"


def processing_time(batch: BarcodeGenerationBatch, now=None) -> str:
    end = batch.generation_completed_at or now or utcnow()
    return format_duration((end - batch.generation_started_at).total_seconds())


def batch_view(batch: BarcodeGenerationBatch, now=None) -> dict:
    data = batch.to_dict()
    data["processing_time"] = processing_time(batch, now)
    data["performance_score"] = performance_score(batch)
    data["summary"] = (
        f"Batch {batch.batch_number}: {batch.generated_quantity}/{batch.requested_quantity} generated, "
        f"{batch.failed_quantity} failed, {batch.success_rate:.1f}% success rate"
    )
    return data


def build_statistics(batch: BarcodeGenerationBatch, config: GeneratorConfig) -> BatchStatistics:
    success_rate = (
        batch.generated_quantity / batch.requested_quantity * 100
        if batch.requested_quantity
        else 0.0
    )
    collision_rate = batch.collision_rate
    score, action = security_assessment(collision_rate, config)
    return BatchStatistics(
        requested_quantity=batch.requested_quantity,
        generated_quantity=batch.generated_quantity,
        failed_quantity=batch.failed_quantity,
        collision_count=batch.collision_count,
        retry_count=batch.retry_count,
        success_rate=success_rate,
        collision_rate=collision_rate,
        total_possible_combinations=config.total_combinations,
        average_generation_time_ms=batch.average_generation_time_ms or 0,
        security_score=score,
        recommended_action=action,
    )


# =============================================================================
# Generation
# =============================================================================

class _Tally:
    def __init__(self):
        self.failed = 0
        self.collisions = 0
        self.retries = 0

    def success(self, attempt: int) -> None:
        self.collisions += attempt - 1
        self.retries += attempt - 1

    def exhausted(self, attempts: int) -> None:
        self.failed += 1
        self.collisions += attempts
        self.retries += attempts - 1


def validate_batch_request(quantity: int, max_quantity: int) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError("quantity must be an integer", field="quantity", value=quantity)
    if quantity < 1 or quantity > max_quantity:
        raise ValidationError(
            f"quantity must be between 1 and {max_quantity}",
            field="quantity",
            value=quantity,
            max=max_quantity,
        )


def _draw(drafts, pending, tally, *, batch, now, rng, config) -> None:
    try:
        number, attempt = barcode_generator.draw_unique_number(
            now=now, rng=rng, config=config, batch_id=batch.id, pending=pending
        )
    except GenerationExhausted as exc:
        tally.exhausted(exc.attempts)
        return
    pending.add(number)
    drafts.append((number, attempt))
    tally.success(attempt)


def _insert_drafts(drafts, pending, tally, *, batch, now, rng, config, build) -> list[WarrantyBarcode]:
    rounds = 0
    while True:
        barcodes = [build(number, attempt) for number, attempt in drafts]
        try:
            return barcode_store.insert_many(barcodes)
        except DuplicateKey:
            taken = barcode_store.existing_numbers(number for number, _ in drafts)
            if not taken:
                raise

        rounds += 1
        current_app.logger.warning(
            "Batch %s lost %d candidates to concurrent inserts (round %d)",
            batch.batch_number,
            len(taken),
            rounds,
        )
        kept = []
        for number, attempt in drafts:
            if number not in taken:
                kept.append((number, attempt))
                continue
            barcode_generator.record_collision(number, attempt, batch.id, now)
            tally.collisions += 1
            pending.discard(number)
            if rounds > config.max_retries:
                tally.failed += 1
                continue
            tally.retries += 1
            _draw(kept, pending, tally, batch=batch, now=now, rng=rng, config=config)
        drafts[:] = kept


def generate_batch(
    *,
    product_id: int,
    storefront_id: int,
    quantity: int,
    warranty_period_months: int,
    requested_by: int,
    batch_number: str | None = None,
    intended_recipient: str | None = None,
    distribution_notes: str | None = None,
    rng: RandomSource | None = None,
    now=None,
    config: GeneratorConfig | None = None,
    cancel_event=None,
) -> BatchResult:
    """
    Generate `quantity` barcodes for one product as a tracked batch.

    Raises:
        ValidationError: quantity outside [1, BATCH_MAX_QUANTITY] or bad ids
        DuplicateKey: batch_number already used
        StoreUnavailable: store failure; the batch is marked failed first

    Any other failure after the batch record is opened also closes it as
    failed before the exception propagates.
    """
    barcode_generator.validate_generation_request(
        product_id, storefront_id, requested_by, warranty_period_months
    )
    max_quantity = int(current_app.config.get("BATCH_MAX_QUANTITY", DEFAULT_MAX_QUANTITY))
    validate_batch_request(quantity, max_quantity)

    cfg = config or barcode_generator.current_config()
    rng = rng or secrets.token_bytes
    started_at = now or utcnow()

    batch = barcode_store.create_batch(BarcodeGenerationBatch(
        batch_number=batch_number or started_at.strftime(BATCH_NUMBER_FORMAT),
        product_id=product_id,
        storefront_id=storefront_id,
        requested_quantity=quantity,
        generated_quantity=0,
        failed_quantity=0,
        collision_count=0,
        retry_count=0,
        generation_started_at=started_at,
        generation_status="in_progress",
        intended_recipient=intended_recipient,
        distribution_notes=distribution_notes,
        requested_by=requested_by,
    ))
    batch_id = batch.id
    batch_no = batch.batch_number

    def build(number: str, attempt: int) -> WarrantyBarcode:
        return barcode_generator.build_barcode(
            number,
            attempt=attempt,
            product_id=product_id,
            storefront_id=storefront_id,
            created_by=requested_by,
            warranty_period_months=warranty_period_months,
            now=started_at,
            config=cfg,
            batch_id=batch_id,
            batch_number=batch_no,
        )

    clock_start = time.perf_counter()
    drafts: list[tuple[str, int]] = []
    pending: set[str] = set()
    tally = _Tally()

    try:
        for index in range(quantity):
            if cancel_event is not None and cancel_event.is_set():
                skipped = quantity - index
                tally.failed += skipped
                current_app.logger.warning(
                    "Batch %s cancelled; %d candidates not generated", batch_no, skipped
                )
                break
            _draw(drafts, pending, tally, batch=batch, now=started_at, rng=rng, config=cfg)

        barcodes = _insert_drafts(
            drafts, pending, tally,
            batch=batch, now=started_at, rng=rng, config=cfg, build=build,
        )
    except StoreUnavailable as exc:
        mark_failed(batch, exc.message, now=now)
        raise
    except Exception as exc:
        db.session.rollback()
        current_app.logger.exception("Batch %s aborted during generation", batch_no)
        mark_failed(batch, f"Generation aborted: {exc.__class__.__name__}", now=now)
        raise

    elapsed_ms = int((time.perf_counter() - clock_start) * 1000)
    batch.generated_quantity = len(barcodes)
    batch.failed_quantity = tally.failed
    batch.collision_count = tally.collisions
    batch.retry_count = tally.retries
    batch.generation_completed_at = now or utcnow()
    batch.average_generation_time_ms = elapsed_ms // max(len(barcodes), 1)
    batch.generation_status = derive_status(batch.generated_quantity, batch.failed_quantity)
    barcode_store.update_batch(batch)

    statistics = build_statistics(batch, cfg)
    _log_summary(batch, statistics, cfg)
    return BatchResult(batch=batch, barcodes=barcodes, statistics=statistics)


def _log_summary(batch: BarcodeGenerationBatch, stats: BatchStatistics, config: GeneratorConfig) -> None:
    current_app.logger.info(
        "Batch %s %s: %d/%d generated, %d failed, %d collisions",
        batch.batch_number,
        batch.generation_status,
        stats.generated_quantity,
        stats.requested_quantity,
        stats.failed_quantity,
        stats.collision_count,
    )
    if stats.collision_rate > config.collision_critical_pct:
        current_app.logger.error(
            "Batch %s collision rate %.4f%% above critical threshold %.4f%%",
            batch.batch_number,
            stats.collision_rate,
            config.collision_critical_pct,
        )
    elif stats.collision_rate > config.collision_warn_pct:
        current_app.logger.warning(
            "Batch %s collision rate %.4f%% above warning threshold %.4f%%",
            batch.batch_number,
            stats.collision_rate,
            config.collision_warn_pct,
        )


def mark_failed(batch: BarcodeGenerationBatch, reason: str, *, now=None) -> BarcodeGenerationBatch:
    """Close a batch as failed after an unrecoverable store error."""
    batch.generation_status = "failed"
    batch.failed_quantity = batch.requested_quantity - batch.generated_quantity
    batch.generation_completed_at = now or utcnow()
    if reason:
        batch.distribution_notes = reason
    try:
        barcode_store.update_batch(batch)
    except StoreUnavailable:
        current_app.logger.exception("Failed to mark batch %s as failed", batch.batch_number)
    return batch


def get_batch(batch_id: int) -> BarcodeGenerationBatch:
    return barcode_store.get_batch(batch_id)


def list_batches(*, storefront_id: int, product_id: int | None = None, status: str | None = None,
                 limit: int = 100) -> list[BarcodeGenerationBatch]:
    q = db.session.query(BarcodeGenerationBatch).filter_by(storefront_id=storefront_id)
    if product_id is not None:
        q = q.filter_by(product_id=product_id)
    if status is not None:
        q = q.filter_by(generation_status=status)
    return q.order_by(BarcodeGenerationBatch.generation_started_at.desc()).limit(limit).all()
