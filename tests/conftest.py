"""Pytest configuration and fixtures for service layer tests."""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, scoped_session
from sqlalchemy.pool import StaticPool

from ops_ledger.models import MaterialLot
from ops_ledger.models.base import Base
from ops_ledger.services.actors import Actor, set_actor_resolver
from ops_ledger.services.lot_locks import batch_locks, lot_locks
from ops_ledger.services.notifications import RecordingNotificationSink, set_notification_sink
from ops_ledger.utils.config import reset_config
from ops_ledger.utils.datetime_utils import to_naive_utc, utc_now


@pytest.fixture(autouse=True)
def clean_config(monkeypatch):
    """Start every test from default configuration and no current actor."""
    for name in (
        "OPS_LEDGER_ENV",
        "OPS_LEDGER_DATABASE_URL",
        "OPS_LEDGER_DATA_DIR",
        "OPS_LEDGER_BATCH_WRITE_MODE",
        "OPS_LEDGER_LOCK_TIMEOUT",
        "OPS_LEDGER_LOW_STOCK_THRESHOLD",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_config()
    previous = set_actor_resolver(None)
    yield
    set_actor_resolver(previous)
    reset_config()
    lot_locks.clear()
    batch_locks.clear()


@pytest.fixture(scope="function")
def test_db():
    """Provide a clean test database for each test function.

    This fixture:
    1. Creates an in-memory SQLite database
    2. Creates all tables
    3. Provides the database to the test
    4. Drops all tables after the test completes
    """
    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    Base.metadata.create_all(engine)

    session_factory = sessionmaker(bind=engine, expire_on_commit=False)
    Session = scoped_session(session_factory)

    # Monkey-patch the global session factory for tests
    import ops_ledger.services.database as db_module

    original_get_session = db_module.get_session_factory
    db_module.get_session_factory = lambda: Session

    yield Session

    Session.remove()
    Base.metadata.drop_all(engine)
    engine.dispose()

    db_module.get_session_factory = original_get_session


@pytest.fixture(params=["atomic", "saga"])
def write_mode(request, monkeypatch):
    """Run the test under each batch write discipline."""
    monkeypatch.setenv("OPS_LEDGER_BATCH_WRITE_MODE", request.param)
    reset_config()
    return request.param


@pytest.fixture
def saga_mode(monkeypatch):
    """Switch batch writes to the saga discipline."""
    monkeypatch.setenv("OPS_LEDGER_BATCH_WRITE_MODE", "saga")
    reset_config()


@pytest.fixture
def notifications():
    """Collect notifications instead of logging them."""
    sink = RecordingNotificationSink()
    previous = set_notification_sink(sink)
    yield sink
    set_notification_sink(previous)


@pytest.fixture
def admin():
    return Actor(id="u-admin", role="admin", name="Admin User")


@pytest.fixture
def production_user():
    return Actor(id="u-prod", role="production", name="Production Lead")


@pytest.fixture
def viewer():
    return Actor(id="u-viewer", role="viewer", name="Read Only")


@pytest.fixture
def sales_manager():
    return Actor(id="u-sales", role="sales_manager", name="Sales Manager")


@pytest.fixture
def make_lot(test_db):
    """Factory inserting a lot directly, bypassing the service layer."""

    def _make(
        lot_number,
        quantity_received,
        cost_per_unit,
        intake_date,
        quantity_remaining=None,
        material_id="rm_001",
        expiry_date=None,
    ):
        session = test_db()
        lot = MaterialLot(
            material_id=material_id,
            supplier_id="sup_001",
            lot_number=lot_number,
            quantity_received=Decimal(str(quantity_received)),
            quantity_remaining=Decimal(
                str(quantity_received if quantity_remaining is None else quantity_remaining)
            ),
            cost_per_unit=Decimal(str(cost_per_unit)),
            intake_date=intake_date,
            expiry_date=expiry_date,
        )
        session.add(lot)
        session.commit()
        return lot

    return _make


@pytest.fixture
def fifo_lots(make_lot):
    """Two lots of rm_001: L1 (older, 50 received, 25 left @ 450) and L2 (newer, 30 @ 460)."""
    now = to_naive_utc(utc_now())
    l1 = make_lot("L1", 50, "450", now - timedelta(days=3), quantity_remaining=25)
    l2 = make_lot("L2", 30, "460", now - timedelta(days=1))
    return l1, l2
