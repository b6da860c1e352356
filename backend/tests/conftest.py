"""
Pytest fixtures for the warranty backend tests.

Provides an in-memory app, per-test table clearing, deterministic random
sources and a recording notification sink.
"""

from datetime import date, datetime

import pytest

from warranty import create_app
from warranty.config import Config
from warranty.extensions import db
from warranty.services import barcode_generator, barcode_lifecycle, claim_service, notification_service


NOW = datetime(2025, 3, 1, 12, 0, 0)


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    WARRANTY_QR_HOST = "example.com"
    BARCODE_MAX_RETRIES = 3
    BARCODE_COLLISION_WARN_PCT = 0.01
    BARCODE_COLLISION_CRITICAL_PCT = 0.1
    BATCH_MAX_QUANTITY = 10000
    CLAIM_TRANSITION_RETRIES = 3


class RecordingSink:
    def __init__(self, fail=False):
        self.events = []
        self.fail = fail

    def publish(self, event):
        if self.fail:
            raise RuntimeError("sink offline")
        self.events.append(event)

    def types(self):
        return [e.event_type for e in self.events]


def sequential_rng(start=1):
    """Distinct 12-byte draws: call n encodes n in the last four symbols."""
    state = {"n": start - 1}

    def rng(size):
        state["n"] += 1
        n = state["n"]
        tail = [(n >> 15) & 31, (n >> 10) & 31, (n >> 5) & 31, n & 31]
        return bytes([0] * (size - 4) + tail)

    return rng


def constant_rng(value=0):
    return lambda size: bytes([value] * size)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def sink(app):
    """Record published notifications instead of logging them."""
    recorder = RecordingSink()
    notification_service.set_sink(app, recorder)
    yield recorder
    notification_service.set_sink(app, notification_service.LoggingSink())


@pytest.fixture(scope='function')
def rng():
    return sequential_rng()


@pytest.fixture(scope='function')
def barcode(db_session, rng):
    """A freshly generated barcode (12-month warranty)."""
    return barcode_generator.generate_barcode(
        product_id=10,
        storefront_id=1,
        created_by=7,
        warranty_period_months=12,
        rng=rng,
        now=datetime(2024, 11, 20, 9, 0, 0),
    )


@pytest.fixture(scope='function')
def activated_barcode(barcode):
    """Activated for customer 55; warranty runs until 2025-12-01."""
    return barcode_lifecycle.activate(
        barcode,
        55,
        date(2024, 12, 1),
        purchase_location="Main St",
        now=datetime(2024, 12, 1, 15, 0, 0),
    )


@pytest.fixture(scope='function')
def claim(activated_barcode):
    """A pending claim submitted at NOW."""
    return submit_claim_for(activated_barcode)


def submit_claim_for(barcode, **overrides):
    params = dict(
        barcode_number=barcode.barcode_number,
        customer_id=55,
        issue_description="Screen flickers after ten minutes of use",
        issue_category="display",
        issue_date=date(2025, 2, 25),
        customer_name="Ana Lima",
        customer_email="ana@example.com",
        pickup_address={"street": "1 Main St", "city": "Springfield", "postal_code": "12345"},
        storefront_id=1,
        now=NOW,
    )
    params.update(overrides)
    return claim_service.submit_claim(**params)
