# Overview: Pytest coverage for batch generation accounting, races, cancellation and scoring.

import threading
from datetime import datetime

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Query

from conftest import constant_rng, sequential_rng
from warranty.errors import DuplicateKey, StoreUnavailable, ValidationError
from warranty.models import BarcodeCollision, BarcodeGenerationBatch, WarrantyBarcode
from warranty.services import barcode_generator, barcode_store, batch_service, reporting_service


STARTED_AT = datetime(2025, 1, 10, 8, 30, 0)


def _run(quantity, rng, **overrides):
    params = dict(
        product_id=10,
        storefront_id=1,
        quantity=quantity,
        warranty_period_months=12,
        requested_by=7,
        rng=rng,
        now=STARTED_AT,
    )
    params.update(overrides)
    return batch_service.generate_batch(**params)


def _early_repeats_rng(repeats=3):
    """First `repeats` draws are identical, later draws are distinct."""
    state = {"n": 0}

    def rng(size):
        state["n"] += 1
        n = state["n"]
        if n <= repeats:
            return bytes(size)
        return bytes([0] * (size - 2) + [n // 32, n % 32])

    return rng


class TestGenerateBatch:

    def test_clean_batch(self, db_session):
        result = _run(25, sequential_rng())

        batch = result.batch
        assert batch.generation_status == "completed"
        assert batch.generated_quantity == 25
        assert batch.failed_quantity == 0
        assert batch.collision_count == 0
        assert batch.batch_number == "BATCH-2025-01-10-083000"
        assert batch.generation_completed_at is not None
        assert len(result.barcodes) == 25
        assert all(b.batch_id == batch.id for b in result.barcodes)
        assert all(b.batch_number == batch.batch_number for b in result.barcodes)
        assert db_session.query(WarrantyBarcode).count() == 25
        assert result.statistics.security_score == "EXCELLENT"
        assert result.statistics.recommended_action == "continue"
        assert result.statistics.success_rate == 100.0

    def test_collisions_within_batch_are_retried(self, db_session):
        result = _run(100, _early_repeats_rng(3))

        stats = result.statistics
        assert stats.generated_quantity == 100
        assert stats.failed_quantity == 0
        assert stats.collision_count == 2
        assert stats.retry_count == 2
        assert result.batch.generation_status == "completed"
        assert len({b.barcode_number for b in result.barcodes}) == 100

        collisions = db_session.query(BarcodeCollision).order_by(BarcodeCollision.id).all()
        assert [c.collision_attempt for c in collisions] == [1, 2]
        assert all(c.batch_id == result.batch.id for c in collisions)
        assert stats.collision_rate == pytest.approx(2 / 102 * 100)

    def test_degenerate_random_source_gives_partial_batch(self, db_session):
        result = _run(5, constant_rng(0))

        batch = result.batch
        assert batch.generated_quantity == 1
        assert batch.failed_quantity == 4
        assert batch.collision_count == 12
        assert batch.retry_count == 8
        assert batch.generation_status == "partial"
        assert db_session.query(BarcodeCollision).count() == 12
        assert result.statistics.security_score == "POOR"
        assert result.statistics.recommended_action == "review_algorithm"

    def test_collision_rate_counts_draws_once(self, db_session):
        result = _run(5, constant_rng(0))

        # 1 accepted draw plus 12 colliding draws
        assert result.batch.collision_rate == pytest.approx(12 / 13 * 100)
        assert result.statistics.collision_rate == pytest.approx(12 / 13 * 100)
        report = reporting_service.generation_stats(storefront_id=1)
        assert report["collision_rate"] == pytest.approx(result.statistics.collision_rate)

    def test_concurrent_insert_is_counted_as_collision(self, db_session, monkeypatch):
        barcode_generator.generate_barcode(99, 1, 7, 12, rng=constant_rng(0), now=STARTED_AT)
        monkeypatch.setattr(barcode_store, "is_unique", lambda number: True)

        draws = iter([bytes(12)])
        fallback = sequential_rng()

        def rng(size):
            return next(draws, None) or fallback(size)

        result = _run(3, rng)

        assert result.batch.generated_quantity == 3
        assert result.batch.collision_count == 1
        assert result.batch.retry_count == 1
        assert result.batch.generation_status == "completed"
        numbers = {b.barcode_number for b in result.barcodes}
        assert "REX25AAAAAAAAAAAA" not in numbers
        assert db_session.query(WarrantyBarcode).count() == 4

    def test_cancelled_batch_fails_remaining(self, db_session):
        cancel = threading.Event()
        cancel.set()

        result = _run(10, sequential_rng(), cancel_event=cancel)

        assert result.batch.generated_quantity == 0
        assert result.batch.failed_quantity == 10
        assert result.batch.generation_status == "failed"
        assert result.barcodes == []

    @pytest.mark.parametrize("error", [
        OperationalError("SELECT 1", {}, Exception("database is locked")),
        StoreUnavailable("Barcode store unavailable"),
        RuntimeError("boom"),
    ])
    def test_store_failure_closes_batch_as_failed(self, db_session, monkeypatch, error):
        def failing(number):
            raise error

        monkeypatch.setattr(barcode_store, "is_unique", failing)

        with pytest.raises(type(error)):
            _run(3, sequential_rng())

        batch = db_session.query(BarcodeGenerationBatch).one()
        assert batch.generation_status == "failed"
        assert batch.generated_quantity == 0
        assert batch.failed_quantity == 3
        assert batch.generation_completed_at == STARTED_AT
        assert db_session.query(WarrantyBarcode).count() == 0

    def test_store_reads_surface_store_unavailable(self, db_session, monkeypatch):
        def locked(self):
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))

        monkeypatch.setattr(Query, "first", locked)
        monkeypatch.setattr(Query, "all", locked)

        with pytest.raises(StoreUnavailable):
            barcode_store.is_unique("REX25AAAAAAAAAAAA")
        with pytest.raises(StoreUnavailable):
            barcode_store.lookup_by_number("REX25AAAAAAAAAAAA")
        with pytest.raises(StoreUnavailable) as exc:
            barcode_store.existing_numbers(["REX25AAAAAAAAAAAA"])
        assert exc.value.details["cause"] == "database is locked"

    def test_duplicate_batch_number(self, db_session):
        _run(1, sequential_rng(), batch_number="BATCH-X")
        with pytest.raises(DuplicateKey):
            _run(1, sequential_rng(100), batch_number="BATCH-X")

    @pytest.mark.parametrize("quantity", [0, -1, 10001, "10"])
    def test_rejects_quantity(self, db_session, quantity):
        with pytest.raises(ValidationError):
            _run(quantity, sequential_rng())
        assert db_session.query(BarcodeGenerationBatch).count() == 0

    def test_quantity_bounds_are_inclusive(self):
        batch_service.validate_batch_request(1, 10000)
        batch_service.validate_batch_request(10000, 10000)

    def test_list_and_get_batches(self, db_session):
        result = _run(2, sequential_rng())
        assert batch_service.get_batch(result.batch.id).batch_number == result.batch.batch_number
        assert [b.id for b in batch_service.list_batches(storefront_id=1)] == [result.batch.id]
        assert batch_service.list_batches(storefront_id=2) == []

    def test_result_to_dict(self, db_session):
        data = _run(2, sequential_rng()).to_dict()
        assert data["statistics"]["total_possible_combinations"] == str(32 ** 12)
        assert len(data["barcodes"]) == 2
        assert data["batch"]["performance_score"] == "EXCELLENT"
        assert data["batch"]["summary"].startswith("Batch BATCH-2025-01-10-083000: 2/2 generated")


class TestScoring:

    def _batch(self, **kwargs):
        values = dict(
            batch_number="B",
            requested_quantity=100,
            generated_quantity=100,
            failed_quantity=0,
            collision_count=0,
            generation_started_at=STARTED_AT,
            generation_completed_at=STARTED_AT,
            average_generation_time_ms=1,
        )
        values.update(kwargs)
        return BarcodeGenerationBatch(**values)

    @pytest.mark.parametrize("generated, failed, expected", [
        (10, 0, "completed"),
        (7, 3, "partial"),
        (0, 10, "failed"),
    ])
    def test_derive_status(self, generated, failed, expected):
        assert batch_service.derive_status(generated, failed) == expected

    @pytest.mark.parametrize("rate, expected", [
        (0, ("EXCELLENT", "continue")),
        (0.01, ("GOOD", "continue")),
        (0.05, ("FAIR", "monitor")),
        (0.5, ("POOR", "review_algorithm")),
    ])
    def test_security_assessment(self, rate, expected):
        config = barcode_generator.GeneratorConfig()
        assert batch_service.security_assessment(rate, config) == expected

    def test_performance_score_in_progress(self):
        assert batch_service.performance_score(self._batch(generation_completed_at=None)) == "IN_PROGRESS"

    @pytest.mark.parametrize("kwargs, expected", [
        ({}, "EXCELLENT"),
        ({"generated_quantity": 95, "failed_quantity": 5}, "GOOD"),
        ({"generated_quantity": 90, "failed_quantity": 10}, "FAIR"),
        ({"generated_quantity": 50, "failed_quantity": 50}, "POOR"),
    ])
    def test_performance_score(self, kwargs, expected):
        assert batch_service.performance_score(self._batch(**kwargs)) == expected

    def test_processing_time(self):
        batch = self._batch(generation_completed_at=datetime(2025, 1, 10, 9, 0, 0))
        assert batch_service.processing_time(batch) == "30 minutes"
