"""Tests for the lifecycle service facade: atomic units, scenarios and concurrency."""

import threading

import pytest

from resortops.core.errors import (
    DispatchFailedError,
    EntityExistsError,
    IllegalTransitionError,
    InsufficientStockError,
    InvalidEntityError,
    InvalidMovementError,
    NotFoundError,
    VersionConflictError,
)
from resortops.core.metrics import metrics
from resortops.models.derived import DerivedRecord
from resortops.models.finance import FinanceTransaction
from resortops.models.lifecycle import LifecycleTransition
from resortops.models.stock import LedgerEntry, StockItem
from resortops.services.lifecycle_service import LifecycleService
from resortops.services.side_effect_dispatcher import SideEffectDispatcher
from resortops.services.status_machine import StatusMachine
from resortops.services.stock_ledger_service import StockLedgerService


def run_together(session_factory, work):
    """Run *work* in two threads, each with its own session. Returns results or error class names."""
    outcomes = []

    def worker():
        session = session_factory()
        try:
            outcomes.append(work(LifecycleService(session)))
        except Exception as exc:
            outcomes.append(type(exc).__name__)
        finally:
            session.close()

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return outcomes


class TestScenarios:
    def test_booking_deposit_recorded_once(self, service, db_session):
        service.create_entity("booking", "BK-1", {"deposit": 5000, "guest": "Tanna"}, actor_id="7")
        assert service.get_state("booking", "BK-1") == ("pending", 1)

        result = service.request_transition("booking", "BK-1", "confirmed", 1, actor_id="7")

        assert (result.status, result.version) == ("confirmed", 2)
        assert len(result.derived_records) == 1
        assert result.derived_records[0].effect == "finance_income"
        assert result.derived_records[0].payload["amount"] == 5000
        assert db_session.query(FinanceTransaction).count() == 1

        replay = service.dispatcher.dispatch("BK-1", "booking", "pending", "confirmed", {"deposit": 5000}, 2)
        assert [r.id for r in replay] == [r.id for r in result.derived_records]
        assert db_session.query(FinanceTransaction).count() == 1

    def test_cleaning_task_drives_room_status(self, service):
        service.create_entity(
            "housekeeping_task", "HK-1", {"room_id": "R1", "task_type": "cleaning", "assigned_to": "7"}
        )
        assert service.get_state("room_status", "R1")[0] == "dirty"

        service.request_transition("housekeeping_task", "HK-1", "in_progress", 1)
        assert service.get_state("room_status", "R1")[0] == "in_progress"

        service.request_transition("housekeeping_task", "HK-1", "completed", 2)
        assert service.get_state("room_status", "R1")[0] == "clean"

    def test_out_beyond_level_rejected(self, service, towels, db_session):
        with pytest.raises(InsufficientStockError) as exc_info:
            service.adjust_stock(towels.id, "out", 15, "usage", actor_id="7")

        assert exc_info.value.extra["current_level"] == 10
        assert service.stock.current_level(towels.id) == 10

    def test_adjust_appends_single_delta(self, service, towels, db_session):
        assert service.adjust_stock(towels.id, "adjust", 7, "count", actor_id="7") == 7

        entries = db_session.query(LedgerEntry).filter(
            LedgerEntry.item_id == towels.id
        ).order_by(LedgerEntry.id).all()
        assert [e.delta for e in entries] == [10, -3]


class TestAtomicity:
    def test_dispatch_failure_rolls_back_transition(self, service, db_session, monkeypatch):
        service.create_entity("booking", "BK-2", {"deposit": 800})

        def broken(self, payload, idempotency_key, actor_id):
            raise RuntimeError("disk full")

        monkeypatch.setattr(SideEffectDispatcher, "_record_income", broken)
        with pytest.raises(DispatchFailedError):
            service.request_transition("booking", "BK-2", "confirmed", 1)

        assert service.get_state("booking", "BK-2") == ("pending", 1)
        assert db_session.query(FinanceTransaction).count() == 0
        assert db_session.query(LifecycleTransition).filter(LifecycleTransition.entity_id == "BK-2").count() == 1

    def test_failed_room_change_rolls_back_task(self, service, monkeypatch):
        service.create_entity("housekeeping_task", "HK-2", {"room_id": "R5", "task_type": "turndown"})

        def broken(self, payload, actor_id):
            raise RuntimeError("room board offline")

        monkeypatch.setattr(SideEffectDispatcher, "_change_room_status", broken)
        with pytest.raises(DispatchFailedError):
            service.request_transition("housekeeping_task", "HK-2", "in_progress", 1)

        assert service.get_state("housekeeping_task", "HK-2") == ("pending", 1)

    def test_illegal_transition_leaves_no_trace(self, service, db_session):
        service.create_entity("service_order", "SO-1")
        with pytest.raises(IllegalTransitionError):
            service.request_transition("service_order", "SO-1", "delivered", 1)

        assert service.get_state("service_order", "SO-1") == ("pending", 1)
        assert db_session.query(DerivedRecord).count() == 0

    def test_rejected_stock_movement_appends_nothing(self, service, towels, db_session):
        with pytest.raises(InsufficientStockError):
            service.adjust_stock(towels.id, "out", 11, "usage")
        assert db_session.query(LedgerEntry).filter(LedgerEntry.item_id == towels.id).count() == 1

    def test_malformed_deposit_is_invalid_entity(self, service, db_session):
        service.create_entity("booking", "BK-3", {"deposit": "a lot"})

        with pytest.raises(InvalidEntityError) as exc:
            service.request_transition("booking", "BK-3", "confirmed", 1)
        assert exc.value.http_status == 422
        assert exc.value.extra["field"] == "deposit"

        assert service.get_state("booking", "BK-3") == ("pending", 1)
        assert db_session.query(FinanceTransaction).count() == 0
        assert db_session.query(LifecycleTransition).filter(LifecycleTransition.entity_id == "BK-3").count() == 1

    def test_negative_pos_total_is_invalid_entity(self, service, db_session):
        service.create_entity("pos_order", "P-3", {"total": -40})

        with pytest.raises(InvalidEntityError):
            service.request_transition("pos_order", "P-3", "checked_out", 1)
        assert service.get_state("pos_order", "P-3") == ("open", 1)
        assert db_session.query(DerivedRecord).count() == 0


class TestEntities:
    def test_task_requires_room(self, service):
        with pytest.raises(InvalidEntityError):
            service.create_entity("housekeeping_task", "HK-3", {"task_type": "cleaning"})

    def test_duplicate_entity(self, service):
        service.create_entity("pos_order", "P-1", {"total": 500})
        with pytest.raises(EntityExistsError):
            service.create_entity("pos_order", "P-1", {"total": 500})

    def test_missing_entity(self, service):
        with pytest.raises(NotFoundError):
            service.get_state("booking", "ghost")
        with pytest.raises(NotFoundError):
            service.request_transition("booking", "ghost", "confirmed", 1)

    def test_update_attributes_is_version_guarded(self, service):
        service.create_entity("booking", "BK-3", {"deposit": 0})
        entity = service.update_attributes("booking", "BK-3", {"deposit": 1500}, 1)
        assert entity.version == 2

        with pytest.raises(VersionConflictError):
            service.update_attributes("booking", "BK-3", {"deposit": 9999}, 1)

        result = service.request_transition("booking", "BK-3", "confirmed", 2)
        assert result.derived_records[0].payload["amount"] == 1500

    def test_update_attributes_cannot_change_status(self, service):
        service.create_entity("booking", "BK-4")
        with pytest.raises(InvalidEntityError):
            service.update_attributes("booking", "BK-4", {"status": "confirmed"}, 1)
        assert service.get_state("booking", "BK-4") == ("pending", 1)

    def test_pos_checkout_with_context(self, service, db_session):
        service.create_entity("pos_order", "P-2", {"total": 2750})
        result = service.request_transition(
            "pos_order", "P-2", "checked_out", 1, context={"payment_method": "cash"}
        )

        txn = db_session.query(FinanceTransaction).one()
        assert (txn.category, txn.subcategory, txn.amount) == ("Restaurant", "POS Sale", 2750)
        assert result.derived_records[0].payload["payment_method"] == "cash"

    def test_history_and_allowed(self, service):
        service.create_entity("conference_booking", "CB-1", {"deposit": 20000}, actor_id="2")
        service.request_transition("conference_booking", "CB-1", "confirmed", 1, actor_id="2")

        transitions, records = service.get_history("conference_booking", "CB-1")
        assert [t.to_status for t in transitions] == ["pending", "confirmed"]
        assert [r.effect for r in records] == ["finance_income"]

        allowed = service.get_allowed_transitions("conference_booking", "CB-1")
        assert allowed == {"status": "confirmed", "version": 2, "allowed": ["cancelled", "completed"]}


class TestConcurrency:
    def test_stale_version_conflicts(self, service):
        service.create_entity("booking", "BK-5")
        service.request_transition("booking", "BK-5", "confirmed", 1)
        with pytest.raises(VersionConflictError):
            service.request_transition("booking", "BK-5", "cancelled", 1)

    def test_two_sessions_one_winner(self, file_session_factory):
        with file_session_factory() as setup:
            LifecycleService(setup).create_entity("booking", "BK-6", {"deposit": 5000})

        first, second = file_session_factory(), file_session_factory()
        try:
            alice, bob = LifecycleService(first), LifecycleService(second)
            assert alice.get_state("booking", "BK-6") == ("pending", 1)
            assert bob.get_state("booking", "BK-6") == ("pending", 1)

            alice.request_transition("booking", "BK-6", "confirmed", 1, actor_id="1")
            with pytest.raises(VersionConflictError):
                bob.request_transition("booking", "BK-6", "confirmed", 1, actor_id="2")

            assert bob.get_state("booking", "BK-6") == ("confirmed", 2)
            assert second.query(FinanceTransaction).count() == 1
        finally:
            first.close()
            second.close()

    def test_two_sessions_cannot_oversell(self, file_session_factory):
        with file_session_factory() as setup:
            item = LifecycleService(setup).create_stock_item(name="Rum", unit="bottles", opening_level=5)
            item_id = item.id

        first, second = file_session_factory(), file_session_factory()
        try:
            LifecycleService(first).adjust_stock(item_id, "out", 4, "sale")
            with pytest.raises(InsufficientStockError):
                LifecycleService(second).adjust_stock(item_id, "out", 4, "sale")
            assert LifecycleService(second).stock.current_level(item_id) == 1
        finally:
            first.close()
            second.close()

    def test_simultaneous_sales_cannot_oversell(self, file_session_factory, monkeypatch):
        with file_session_factory() as setup:
            item_id = LifecycleService(setup).create_stock_item(name="Gin", unit="bottles", opening_level=5).id

        read_together = threading.Barrier(2, timeout=5)
        seen = threading.local()
        original = StockLedgerService.current_level

        def current_level(self, item_id):
            level = original(self, item_id)
            if not getattr(seen, "waited", False):
                seen.waited = True
                read_together.wait()
            return level

        monkeypatch.setattr(StockLedgerService, "current_level", current_level)
        outcomes = run_together(file_session_factory, lambda svc: svc.adjust_stock(item_id, "out", 4, "sale"))

        assert sorted(outcomes, key=str) == sorted([1, "InsufficientStockError"], key=str)
        with file_session_factory() as check:
            assert original(StockLedgerService(check), item_id) == 1
            assert check.query(LedgerEntry).filter(LedgerEntry.item_id == item_id).count() == 2

    def test_simultaneous_confirmations_one_winner(self, file_session_factory, monkeypatch):
        with file_session_factory() as setup:
            LifecycleService(setup).create_entity("booking", "BK-9", {"deposit": 5000})

        read_together = threading.Barrier(2, timeout=5)
        seen = threading.local()
        original = StatusMachine.load

        def load(self, entity_type, entity_id):
            entity = original(self, entity_type, entity_id)
            if not getattr(seen, "waited", False):
                seen.waited = True
                read_together.wait()
            return entity

        monkeypatch.setattr(StatusMachine, "load", load)
        outcomes = run_together(
            file_session_factory,
            lambda svc: svc.request_transition("booking", "BK-9", "confirmed", 1).version,
        )

        assert sorted(outcomes, key=str) == sorted([2, "VersionConflictError"], key=str)
        with file_session_factory() as check:
            assert LifecycleService(check).get_state("booking", "BK-9") == ("confirmed", 2)
            assert check.query(FinanceTransaction).count() == 1

    def test_deactivation_during_movement(self, file_session_factory, monkeypatch):
        with file_session_factory() as setup:
            item_id = LifecycleService(setup).create_stock_item(name="Tonic", unit="cans", opening_level=8).id

        original = StockLedgerService.current_level
        calls = []

        def current_level(self, item_id):
            if not calls:
                calls.append(item_id)
                with file_session_factory() as manager:
                    LifecycleService(manager).deactivate_stock_item(item_id, actor_id="2")
            return original(self, item_id)

        monkeypatch.setattr(StockLedgerService, "current_level", current_level)
        with file_session_factory() as session:
            with pytest.raises(InvalidMovementError):
                LifecycleService(session).adjust_stock(item_id, "out", 1, "usage")

        with file_session_factory() as check:
            assert original(StockLedgerService(check), item_id) == 8
            item = check.get(StockItem, item_id)
            assert (item.is_active, item.cached_level) == (False, 8)

    def test_retry_rereads_version(self, service):
        service.create_entity("housekeeping_task", "HK-4", {"room_id": "R7"})
        service.update_attributes("housekeeping_task", "HK-4", {"assigned_to": "9"}, 1)

        result = service.transition_with_retry("housekeeping_task", "HK-4", "in_progress", 1)
        assert (result.status, result.version) == ("in_progress", 3)

    def test_retry_surfaces_illegal_after_reread(self, service):
        service.create_entity("booking", "BK-7")
        service.request_transition("booking", "BK-7", "cancelled", 1)

        with pytest.raises(IllegalTransitionError):
            service.transition_with_retry("booking", "BK-7", "confirmed", 1)


class TestMetrics:
    def test_counters_move(self, service, towels):
        conflicts = metrics.version_conflicts.get("booking", 0)
        insufficient = metrics.insufficient_stock
        movements = metrics.stock_movements.get("out", 0)

        service.create_entity("booking", "BK-8")
        with pytest.raises(VersionConflictError):
            service.request_transition("booking", "BK-8", "confirmed", 5)
        with pytest.raises(InsufficientStockError):
            service.adjust_stock(towels.id, "out", 100, "usage")
        service.adjust_stock(towels.id, "out", 1, "usage")

        assert metrics.version_conflicts["booking"] == conflicts + 1
        assert metrics.insufficient_stock == insufficient + 1
        assert metrics.stock_movements["out"] == movements + 1
        assert "lifecycle_version_conflicts_total" in metrics.get_prometheus_metrics()
