"""
Concurrency tests for per-lot and per-batch serialization.

These use a file-backed SQLite database with an ordinary (non-scoped)
session factory so every thread gets its own session and connection.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker

import ops_ledger.services.database as db_module
from ops_ledger.models import BatchInput, BatchRollback, MaterialLot
from ops_ledger.services import inventory_service
from ops_ledger.services import production_batch_service as batches
from ops_ledger.services.exceptions import (
    InsufficientQuantity,
    InvalidTransition,
    TransactionFailed,
)
from ops_ledger.services.lot_locks import LockRegistry
from ops_ledger.utils.datetime_utils import to_naive_utc, utc_now


@pytest.fixture
def file_db(tmp_path, monkeypatch):
    """A file database shared by all threads of a test."""
    engine = db_module.create_database_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    db_module.init_database(engine)
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    monkeypatch.setattr(db_module, "get_session_factory", lambda: factory)
    yield factory
    engine.dispose()


@pytest.fixture
def big_lot(file_db):
    with db_module.session_scope() as session:
        lot = MaterialLot(
            material_id="rm_001",
            supplier_id="sup_001",
            lot_number="BIG",
            quantity_received=Decimal("100"),
            quantity_remaining=Decimal("100"),
            cost_per_unit=Decimal("2"),
            intake_date=utc_now(),
        )
        session.add(lot)
        session.flush()
        return lot.id


class TestConcurrentDecrements:
    """Concurrent mutations of one lot never lose an update."""

    def test_parallel_decrements_are_serialized(self, big_lot, admin):
        """Ten threads taking 10 each leave exactly zero."""

        def take():
            return inventory_service.decrement(big_lot, 10, actor=admin, notify=False)

        with ThreadPoolExecutor(max_workers=10) as pool:
            results = [f.result() for f in [pool.submit(take) for _ in range(10)]]

        assert len(results) == 10
        lot = inventory_service.get_lot(big_lot)
        assert lot.remaining == Decimal("0")
        integrity = inventory_service.verify_lot_integrity(big_lot)
        assert integrity["is_consistent"] is True
        assert integrity["transaction_count"] == 10

    def test_overdraw_fails_cleanly(self, big_lot, admin):
        """With 12 requests for 10 against 100 units, exactly two fail."""

        def take():
            try:
                inventory_service.decrement(big_lot, 10, actor=admin, notify=False)
                return "ok"
            except InsufficientQuantity:
                return "short"

        with ThreadPoolExecutor(max_workers=12) as pool:
            outcomes = list(pool.map(lambda _: take(), range(12)))

        assert outcomes.count("ok") == 10
        assert outcomes.count("short") == 2
        assert inventory_service.get_lot(big_lot).remaining == Decimal("0")


class TestLockRegistry:
    """Tests for LockRegistry."""

    def test_lock_is_reentrant(self):
        registry = LockRegistry()

        with registry.hold(1, timeout=1):
            with registry.hold(1, timeout=1):
                pass

    def test_timeout_raises_transaction_failed(self):
        """A lock held by another thread times out."""
        registry = LockRegistry()
        held = threading.Event()
        release = threading.Event()

        def holder():
            with registry.hold(7, timeout=1):
                held.set()
                release.wait(5)

        thread = threading.Thread(target=holder)
        thread.start()
        held.wait(5)
        try:
            with pytest.raises(TransactionFailed):
                with registry.hold(7, timeout=0.05):
                    pass
        finally:
            release.set()
            thread.join()

    def test_hold_many_releases_on_failure(self):
        """Locks taken before a timeout are released again."""
        registry = LockRegistry()
        held = threading.Event()
        release = threading.Event()

        def holder():
            with registry.hold(2, timeout=1):
                held.set()
                release.wait(5)

        thread = threading.Thread(target=holder)
        thread.start()
        held.wait(5)
        try:
            with pytest.raises(TransactionFailed):
                with registry.hold_many([2, 1], timeout=0.05):
                    pass
        finally:
            release.set()
            thread.join()

        acquired = []

        def other():
            with registry.hold(1, timeout=0.5):
                acquired.append(True)

        worker = threading.Thread(target=other)
        worker.start()
        worker.join()
        assert acquired == [True]


@pytest.fixture
def file_batch(file_db, admin):
    """Batch B-001 taking 25 of L1 (50 received, 25 left) and 15 of L2 (30 received)."""
    now = to_naive_utc(utc_now())
    with db_module.session_scope() as session:
        l1 = MaterialLot(
            material_id="rm_001",
            supplier_id="sup_001",
            lot_number="L1",
            quantity_received=Decimal("50"),
            quantity_remaining=Decimal("25"),
            cost_per_unit=Decimal("450"),
            intake_date=now,
        )
        l2 = MaterialLot(
            material_id="rm_001",
            supplier_id="sup_001",
            lot_number="L2",
            quantity_received=Decimal("30"),
            quantity_remaining=Decimal("30"),
            cost_per_unit=Decimal("460"),
            intake_date=now,
        )
        session.add_all([l1, l2])
        session.flush()
        l1_id, l2_id = l1.id, l2.id

    batch = batches.create_batch(
        {"batch_number": "B-001"}, [(l1_id, 25), (l2_id, 15)], actor=admin
    )
    return batch["id"], l1_id, l2_id


def _interleave_on_first_increment(monkeypatch, action):
    """Run action() once, inside the first lot restoration, before it applies."""
    real_increment = inventory_service.increment
    outcomes = []

    def increment(*args, **kwargs):
        if not outcomes:
            try:
                outcomes.append(action())
            except InvalidTransition as e:
                outcomes.append(e)
        return real_increment(*args, **kwargs)

    monkeypatch.setattr(inventory_service, "increment", increment)
    return outcomes


def _remaining(lot_id):
    return inventory_service.get_lot(lot_id).remaining


class TestConcurrentBatchStateChanges:
    """A rollback claims its batch before restoring anything."""

    def test_second_rollback_during_rollback_restores_nothing(self, file_batch, admin, monkeypatch):
        """Inventory is restored exactly once and one rollback record exists."""
        batch_id, l1, l2 = file_batch
        outcomes = _interleave_on_first_increment(
            monkeypatch, lambda: batches.rollback_batch(batch_id, "Again", actor=admin)
        )

        result = batches.rollback_batch(batch_id, "Contaminated", actor=admin)

        [nested] = outcomes
        assert isinstance(nested, InvalidTransition)
        assert len(result["restored"]) == 2
        assert _remaining(l1) == Decimal("25")
        assert _remaining(l2) == Decimal("30")
        with db_module.session_scope() as session:
            assert session.query(BatchRollback).count() == 1
        assert inventory_service.verify_lot_integrity(l2)["is_consistent"] is True

    def test_completion_during_rollback_is_rejected(self, file_batch, admin, monkeypatch):
        """A batch being rolled back cannot become completed."""
        batch_id, l1, _ = file_batch
        outcomes = _interleave_on_first_increment(
            monkeypatch, lambda: batches.complete_batch(batch_id, 100, actor=admin)
        )

        batches.rollback_batch(batch_id, "Contaminated", actor=admin)

        [nested] = outcomes
        assert isinstance(nested, InvalidTransition)
        batch = batches.get_batch(batch_id)
        assert batch["status"] == "cancelled"
        assert batch["completed_at"] is None
        assert batch["output_quantity"] is None
        assert _remaining(l1) == Decimal("25")

    def test_update_during_rollback_is_rejected(self, file_batch, admin, monkeypatch):
        batch_id, l1, _ = file_batch
        outcomes = _interleave_on_first_increment(
            monkeypatch,
            lambda: batches.update_batch(batch_id, {"inputs": [(l1, 5)]}, actor=admin),
        )

        batches.rollback_batch(batch_id, "Contaminated", actor=admin)

        [nested] = outcomes
        assert isinstance(nested, InvalidTransition)
        assert _remaining(l1) == Decimal("25")

    def test_input_restored_elsewhere_is_skipped(self, file_batch, admin, monkeypatch):
        """An input marked restored after rollback read it is not restored again."""
        batch_id, l1, l2 = file_batch

        def mark_l2_restored():
            with db_module.session_scope() as session:
                row = session.query(BatchInput).filter_by(batch_id=batch_id, lot_id=l2).one()
                row.restored_at = utc_now()

        _interleave_on_first_increment(monkeypatch, mark_l2_restored)

        result = batches.rollback_batch(batch_id, "Contaminated", actor=admin)

        assert [r["lot_id"] for r in result["restored"]] == [l1]
        assert result["failures"] == []
        assert _remaining(l1) == Decimal("25")
        assert _remaining(l2) == Decimal("15")

    def test_parallel_rollbacks_only_one_wins(self, file_batch, admin):
        batch_id, l1, l2 = file_batch

        def roll_back():
            try:
                batches.rollback_batch(batch_id, "Contaminated", actor=admin)
                return "ok"
            except InvalidTransition:
                return "rejected"

        with ThreadPoolExecutor(max_workers=4) as pool:
            outcomes = list(pool.map(lambda _: roll_back(), range(4)))

        assert outcomes.count("ok") == 1
        assert outcomes.count("rejected") == 3
        assert _remaining(l1) == Decimal("25")
        assert _remaining(l2) == Decimal("30")
