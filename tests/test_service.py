"""
Tests for the Allocation Service boundary.

Validates:
- All-or-nothing operations (rollback leaves no partial state)
- Journal entries for committed operations only
- The SQLAlchemy-backed store behaves like the in-memory one
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from allocation_engine.config import AllocationSettings
from allocation_engine.core.clock import TickClock
from allocation_engine.core.errors import InvalidQuantity, SystemFrozen, Unauthorized
from allocation_engine.core.schema import JournalEventType, RequestStatus, Role
from allocation_engine.ledger.store import (
    ACCOUNTS,
    JOURNAL,
    RESOURCES,
    InMemoryStateStore,
    SqlStateStore,
)
from allocation_engine.service import AllocationService

ADMIN = "admin"


def _settings() -> AllocationSettings:
    return AllocationSettings(administrator_id=ADMIN, emergency_contact=ADMIN)


class TestAtomicity:
    """A failing operation must leave every table untouched."""

    def setup_method(self):
        self.service = AllocationService(_settings(), store=InMemoryStateStore(), clock=TickClock())
        self.service.register_resource(ADMIN, 1, "compute", 1000, 10, 5, 100, 1)
        self.request_id = self.service.submit_allocation_request("alice", 1, 50, "batch job")

    def test_failed_settlement_rolls_back_supply(self, monkeypatch):
        def broken_credit(*args, **kwargs):
            raise InvalidQuantity("credit failed")

        monkeypatch.setattr(self.service.ledger, "credit", broken_credit)
        entries_before = self.service.journal.entry_count()

        with pytest.raises(InvalidQuantity):
            self.service.approve_request(ADMIN, self.request_id)

        assert self.service.get_resource(1).available_supply == 1000
        assert self.service.get_request(self.request_id).status == RequestStatus.PENDING
        assert self.service.journal.entry_count() == entries_before

    def test_rejected_submission_consumes_no_id(self):
        with pytest.raises(InvalidQuantity):
            self.service.submit_allocation_request("alice", 1, 4, "too small")
        assert self.service.system.state().request_counter == 1

    def test_journal_records_committed_operations(self):
        self.service.approve_request(ADMIN, self.request_id)
        with pytest.raises(Unauthorized):
            self.service.approve_request("alice", self.request_id)

        types = [e.event_type for e in self.service.journal.entries()]
        assert types == [
            JournalEventType.GENESIS,
            JournalEventType.RESOURCE_REGISTERED,
            JournalEventType.REQUEST_SUBMITTED,
            JournalEventType.REQUEST_APPROVED,
        ]
        assert self.service.verify_journal()[0] is True


class _UncopyableTable(dict):
    def __deepcopy__(self, memo):
        raise AssertionError("table was deep-copied")


class TestInMemoryStore:
    """Rollback undoes only the records an operation wrote."""

    def setup_method(self):
        self.store = InMemoryStateStore()
        self.store.put(RESOURCES, "1", {"name": "compute"})

    def test_rollback_restores_overwritten_and_new_records(self):
        with pytest.raises(InvalidQuantity):
            with self.store.transaction():
                self.store.put(RESOURCES, "1", {"name": "storage"})
                self.store.put(RESOURCES, "2", {"name": "network"})
                with self.store.transaction():
                    self.store.put(RESOURCES, "1", {"name": "memory"})
                raise InvalidQuantity("boom")

        assert self.store.get(RESOURCES, "1") == {"name": "compute"}
        assert self.store.get(RESOURCES, "2") is None
        assert self.store.count(RESOURCES) == 1

    def test_commit_keeps_writes(self):
        with self.store.transaction():
            self.store.put(RESOURCES, "2", {"name": "network"})
        assert self.store.count(RESOURCES) == 2

    def test_readonly_transaction_rejects_writes(self):
        with pytest.raises(RuntimeError):
            with self.store.transaction(readonly=True):
                self.store.put(RESOURCES, "2", {"name": "network"})
        assert self.store.get(RESOURCES, "2") is None


class TestServiceCostIndependentOfHistory:
    """Reads and writes touch only the records they need, never the whole journal."""

    def setup_method(self):
        self.store = InMemoryStateStore()
        self.service = AllocationService(_settings(), store=self.store, clock=TickClock())
        self.service.register_resource(ADMIN, 1, "compute", 100_000, 10, 5, 100, 1)
        for i in range(50):
            self.service.submit_allocation_request(f"user-{i % 5}", 1, 5, "batch job")
        self.store._tables[JOURNAL] = _UncopyableTable(self.store._tables[JOURNAL])
        self.store._tables[ACCOUNTS] = _UncopyableTable(self.store._tables[ACCOUNTS])

    def test_reads_do_not_copy_tables(self):
        assert self.service.get_balance("user-1", 1) == 0
        assert self.service.get_system_status().frozen is False
        assert len(self.service.get_allocation_history("user-1")) == 10

    def test_writes_and_rollbacks_do_not_copy_tables(self):
        self.service.approve_request(ADMIN, 1)
        with pytest.raises(Unauthorized):
            self.service.approve_request("user-1", 2)

        assert self.service.get_balance("user-0", 1) == 5
        assert self.service.journal.entry_count() == 53
        assert self.service.verify_journal()[0] is True


class TestReadQueries:
    def setup_method(self):
        self.service = AllocationService(_settings(), store=InMemoryStateStore(), clock=TickClock())

    def test_role_and_priority_of_unknown_account(self):
        assert self.service.get_role("alice") == Role.USER
        assert self.service.get_priority_level("alice") == 1

    def test_role_and_priority_follow_assignment(self):
        self.service.set_role(ADMIN, "alice", Role.PREMIUM)
        assert self.service.get_role("alice") == Role.PREMIUM
        assert self.service.get_priority_level("alice") == 4


class TestConcurrentSubmission:
    def test_ids_unique_and_gapless_under_threads(self):
        service = AllocationService(_settings(), store=InMemoryStateStore(), clock=TickClock())
        service.register_resource(ADMIN, 1, "compute", 1000, 10, 5, 100, 1)

        def submit(i: int) -> int:
            return service.submit_allocation_request(f"user-{i % 4}", 1, 5, "parallel job")

        with ThreadPoolExecutor(max_workers=8) as pool:
            ids = list(pool.map(submit, range(40)))

        assert sorted(ids) == list(range(1, 41))
        assert len(service.list_requests()) == 40


class TestMaintenanceScenario:
    """Maintenance blocks submissions and transfers for every caller."""

    def setup_method(self):
        self.service = AllocationService(_settings(), store=InMemoryStateStore(), clock=TickClock())
        self.service.register_resource(ADMIN, 1, "compute", 1000, 10, 5, 100, 1)
        request_id = self.service.submit_allocation_request("alice", 1, 50, "batch job")
        self.service.approve_request(ADMIN, request_id)

    @pytest.mark.parametrize("caller", ["alice", "bob", ADMIN])
    def test_everyone_blocked(self, caller):
        self.service.enter_maintenance(ADMIN)
        with pytest.raises(SystemFrozen):
            self.service.submit_allocation_request(caller, 1, 50, "batch job")
        with pytest.raises(SystemFrozen):
            self.service.transfer(caller, "carol", 1, 10)

    def test_supply_invariant_holds(self):
        self.service.transfer("alice", "bob", 1, 25)
        for resource in self.service.list_resources():
            assert 0 <= resource.available_supply <= resource.total_supply


class TestSqlStore:
    """The same flows on the SQLAlchemy-backed store (in-memory sqlite)."""

    def setup_method(self):
        self.store = SqlStateStore("sqlite://")
        self.store.initialize()
        self.clock = TickClock()
        self.service = AllocationService(_settings(), store=self.store, clock=self.clock)
        self.service.register_resource(ADMIN, 1, "compute", 1000, 10, 5, 100, 1)

    def test_submit_approve_transfer(self):
        request_id = self.service.submit_allocation_request("alice", 1, 50, "batch job")
        assert request_id == 1
        self.service.approve_request(ADMIN, request_id)
        self.service.transfer("alice", "bob", 1, 20)

        assert self.service.get_resource(1).available_supply == 950
        assert self.service.get_balance("alice", 1) == 30
        assert self.service.get_balance("bob", 1) == 20
        assert self.service.get_allocation_history("alice") == [1]
        assert self.service.verify_journal()[0] is True

    def test_rollback(self, monkeypatch):
        request_id = self.service.submit_allocation_request("alice", 1, 50, "batch job")

        def broken_credit(*args, **kwargs):
            raise InvalidQuantity("credit failed")

        monkeypatch.setattr(self.service.ledger, "credit", broken_credit)
        with pytest.raises(InvalidQuantity):
            self.service.approve_request(ADMIN, request_id)

        assert self.service.get_resource(1).available_supply == 1000
        assert self.service.get_request(request_id).is_pending

    def test_price_history_persists(self):
        self.clock.advance(5)
        self.service.update_price(ADMIN, 1, 15)
        history = self.service.get_price_history(1)
        assert [(p.price, p.set_at) for p in history] == [(10, 0)]
        assert self.service.get_resource(1).last_price_update == 5
