"""Unit tests for batch_reporting_service (audit trail and movement summary)."""

from datetime import timedelta
from decimal import Decimal

import pytest

from ops_ledger.services import batch_reporting_service as reporting
from ops_ledger.services import production_batch_service as batches
from ops_ledger.utils.datetime_utils import to_naive_utc, utc_now


@pytest.fixture
def two_material_batch(test_db, make_lot, production_user):
    """A batch using two lots of rm_001 and one lot of rm_002."""
    now = to_naive_utc(utc_now())
    flour_old = make_lot("F1", 10, "2", now - timedelta(days=5))
    flour_new = make_lot("F2", 10, "3", now - timedelta(days=1))
    sugar = make_lot("S1", 20, "1.5", now - timedelta(days=2), material_id="rm_002")
    batch = batches.create_batch(
        {"batch_number": "MIX-1"},
        [(flour_old.id, 10), (flour_new.id, 4), (sugar.id, 8)],
        actor=production_user,
    )
    return batch, flour_old, flour_new, sugar


class TestAuditTrail:
    """Tests for audit_trail()."""

    def test_created_and_decrement_events(self, test_db, two_material_batch, production_user):
        batch, flour_old, flour_new, sugar = two_material_batch

        events = reporting.audit_trail(batch["id"])

        kinds = [e["event"] for e in events]
        assert kinds.count("batch_created") == 1
        assert kinds.count("inventory_decremented") == 3
        decrements = [e for e in events if e["event"] == "inventory_decremented"]
        assert [(e["lot_id"], e["quantity"]) for e in decrements] == [
            (flour_old.id, Decimal("10")),
            (flour_new.id, Decimal("4")),
            (sugar.id, Decimal("8")),
        ]
        assert all(e["actor"] == production_user.id for e in events)

    def test_events_are_time_ordered(self, test_db, two_material_batch):
        batch, _, _, _ = two_material_batch

        timestamps = [e["timestamp"] for e in reporting.audit_trail(batch["id"])]

        assert timestamps == sorted(timestamps)

    def test_creation_precedes_its_movements(self, test_db, write_mode, two_material_batch):
        """The batch is created before any lot it consumes is decremented."""
        batch, _, _, _ = two_material_batch

        events = reporting.audit_trail(batch["id"])

        assert events[0]["event"] == "batch_created"
        assert events[0]["timestamp"] <= events[1]["timestamp"]

    def test_rollback_adds_restored_and_cancelled_events(self, test_db, two_material_batch, admin):
        batch, _, _, _ = two_material_batch

        batches.rollback_batch(batch["id"], "Wrong recipe", actor=admin)
        events = reporting.audit_trail(batch["id"])

        kinds = [e["event"] for e in events]
        assert kinds.count("inventory_restored") == 3
        assert kinds[-1] == "batch_cancelled"
        assert events[-1]["reason"] == "Wrong recipe"
        assert events[-1]["actor"] == admin.id

    def test_completion_event_names_completer(self, test_db, two_material_batch, admin):
        batch, _, _, _ = two_material_batch

        batches.complete_batch(batch["id"], 20, actor=admin)

        completed = reporting.audit_trail(batch["id"])[-1]
        assert completed["event"] == "batch_completed"
        assert completed["actor"] == admin.id

    def test_header_change_adds_updated_event(
        self, test_db, two_material_batch, admin, production_user
    ):
        batch, _, _, _ = two_material_batch

        batches.update_batch(batch["id"], {"notes": "Recounted"}, actor=admin)
        events = reporting.audit_trail(batch["id"])

        assert [e["event"] for e in events].count("batch_updated") == 1
        assert events[-1]["event"] == "batch_updated"
        assert events[-1]["actor"] == admin.id
        assert events[0]["actor"] == production_user.id

    def test_input_replacement_updated_event_follows_movements(
        self, test_db, two_material_batch, admin
    ):
        batch, flour_old, _, _ = two_material_batch

        batches.update_batch(batch["id"], {"inputs": [(flour_old.id, 5)]}, actor=admin)
        events = reporting.audit_trail(batch["id"])

        kinds = [e["event"] for e in events]
        assert kinds.count("inventory_restored") == 3
        assert kinds.count("inventory_decremented") == 4
        assert kinds[-1] == "batch_updated"

    def test_batch_without_changes_has_no_updated_event(self, test_db, two_material_batch):
        batch, _, _, _ = two_material_batch

        kinds = [e["event"] for e in reporting.audit_trail(batch["id"])]

        assert "batch_updated" not in kinds

    def test_unknown_batch_is_empty(self, test_db):
        """An unknown batch yields no events rather than an error."""
        assert reporting.audit_trail(4040) == []
        assert reporting.audit_trail("abc") == []


class TestMovementSummary:
    """Tests for movement_summary()."""

    def test_totals_and_breakdown(self, test_db, two_material_batch):
        batch, flour_old, flour_new, sugar = two_material_batch

        summary = reporting.movement_summary(batch["id"])

        assert summary["total_materials_used"] == Decimal("22")
        # 10 x 2 + 4 x 3 + 8 x 1.5
        assert summary["total_cost"] == Decimal("44")
        flour = summary["per_material_breakdown"]["rm_001"]
        assert flour["quantity"] == Decimal("14")
        assert flour["cost"] == Decimal("32")
        assert flour["lot_ids"] == [flour_old.id, flour_new.id]
        assert summary["per_material_breakdown"]["rm_002"]["quantity"] == Decimal("8")
        assert len(summary["raw_transactions"]) == 3

    def test_total_cost_matches_batch_header(self, test_db, two_material_batch):
        batch, _, _, _ = two_material_batch

        summary = reporting.movement_summary(batch["id"])

        assert summary["total_cost"] == Decimal(batch["total_input_cost"])

    def test_batch_without_inputs_is_zero(self, test_db, admin):
        batch = batches.create_batch({"batch_number": "NONE"}, [], actor=admin)

        summary = reporting.movement_summary(batch["id"])

        assert summary["total_materials_used"] == 0
        assert summary["total_cost"] == 0
        assert summary["per_material_breakdown"] == {}
        assert summary["raw_transactions"] == []

    def test_unknown_batch_is_zero(self, test_db):
        summary = reporting.movement_summary(999)

        assert summary["total_materials_used"] == 0
        assert summary["raw_transactions"] == []
