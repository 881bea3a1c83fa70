"""
Tests for the Allocation Ledger and the audit journal.

Validates:
- Balance-conserving transfers and their failure modes
- Journal hash chain integrity and tamper detection
"""

from __future__ import annotations

import pytest

from allocation_engine.config import AllocationSettings
from allocation_engine.core.clock import TickClock
from allocation_engine.core.errors import (
    InsufficientBalance,
    InvalidQuantity,
    InvalidRecipient,
    JournalIntegrityError,
    ResourceFrozen,
    ResourceNotFound,
    SystemFrozen,
    Unauthorized,
)
from allocation_engine.core.schema import JournalEventType
from allocation_engine.ledger.journal import GENESIS_HASH, AuditJournal
from allocation_engine.ledger.store import JOURNAL, InMemoryStateStore
from allocation_engine.service import AllocationService

ADMIN = "admin"


class TestTransfer:
    """Transfers move exactly ``amount`` between two authorized accounts."""

    def setup_method(self):
        settings = AllocationSettings(administrator_id=ADMIN, emergency_contact=ADMIN)
        self.service = AllocationService(settings, store=InMemoryStateStore(), clock=TickClock())
        self.service.register_resource(ADMIN, 1, "compute", 1000, 10, 5, 100, 1)
        self.service.register_resource(ADMIN, 2, "storage", 1000, 1, 5, 100, 1)
        request_id = self.service.submit_allocation_request("alice", 1, 50, "batch job")
        self.service.approve_request(ADMIN, request_id)

    def test_transfer_is_balance_conserving(self):
        total_before = self.service.ledger.total_balance(1)
        assert self.service.transfer("alice", "bob", 1, 20) is True
        assert self.service.get_balance("alice", 1) == 30
        assert self.service.get_balance("bob", 1) == 20
        assert self.service.ledger.total_balance(1) == total_before == 50

    def test_balances_are_per_resource(self):
        with pytest.raises(InsufficientBalance):
            self.service.transfer("alice", "bob", 2, 1)
        assert self.service.get_balances("alice") == {1: 50}

    def test_cannot_overdraw(self):
        with pytest.raises(InsufficientBalance):
            self.service.transfer("alice", "bob", 1, 51)
        assert self.service.get_balance("alice", 1) == 50
        assert self.service.get_balance("bob", 1) == 0

    def test_whole_balance_can_move(self):
        self.service.transfer("alice", "bob", 1, 50)
        assert self.service.get_balance("alice", 1) == 0
        assert self.service.get_balance("bob", 1) == 50

    @pytest.mark.parametrize("recipient", ["", "not valid", "alice"])
    def test_invalid_recipient(self, recipient):
        with pytest.raises(InvalidRecipient):
            self.service.transfer("alice", recipient, 1, 10)

    def test_restricted_sender_or_recipient(self):
        self.service.restrict(ADMIN, "bob")
        with pytest.raises(Unauthorized):
            self.service.transfer("alice", "bob", 1, 10)
        self.service.unrestrict(ADMIN, "bob")
        self.service.restrict(ADMIN, "alice")
        with pytest.raises(Unauthorized):
            self.service.transfer("alice", "bob", 1, 10)

    def test_resource_checks(self):
        with pytest.raises(ResourceNotFound):
            self.service.transfer("alice", "bob", 9, 10)
        self.service.freeze_resource(ADMIN, 1)
        with pytest.raises(ResourceFrozen):
            self.service.transfer("alice", "bob", 1, 10)

    def test_non_positive_amount(self):
        with pytest.raises(InvalidQuantity):
            self.service.transfer("alice", "bob", 1, 0)

    def test_frozen_system_blocks_transfers(self):
        self.service.enter_maintenance(ADMIN)
        with pytest.raises(SystemFrozen):
            self.service.transfer("alice", "bob", 1, 10)
        self.service.exit_maintenance(ADMIN)
        assert self.service.transfer("alice", "bob", 1, 10)


class TestAuditJournal:
    """Test the hash-chained journal."""

    def setup_method(self):
        self.store = InMemoryStateStore()
        self.journal = AuditJournal(self.store, TickClock())

    def test_append_requires_genesis(self):
        with pytest.raises(JournalIntegrityError):
            self.journal.append(JournalEventType.TRANSFER, "alice", {})

    def test_initialize_is_idempotent(self):
        self.journal.initialize()
        self.journal.initialize()
        assert self.journal.entry_count() == 1
        genesis = self.journal.get_by_sequence(0)
        assert genesis.previous_hash == GENESIS_HASH

    def test_chain_linkage(self):
        self.journal.initialize()
        first = self.journal.append(JournalEventType.TRANSFER, "alice", {"amount": 1})
        second = self.journal.append(JournalEventType.TRANSFER, "bob", {"amount": 2})
        assert first.previous_hash == self.journal.get_by_sequence(0).entry_hash
        assert second.previous_hash == first.entry_hash
        assert self.journal.verify_chain() == (True, 3, "Chain verified: 3 entries, integrity intact")
        assert [e.sequence_number for e in self.journal.latest_entries(2)] == [2, 1]

    def test_tamper_detection(self):
        self.journal.initialize()
        self.journal.append(JournalEventType.TRANSFER, "alice", {"amount": 1})
        raw = self.store.get(JOURNAL, "000000000001")
        raw["content"] = {"amount": 1000}
        self.store.put(JOURNAL, "000000000001", raw)

        is_valid, position, message = self.journal.verify_chain()
        assert not is_valid
        assert position == 1
        assert "Hash mismatch" in message

    def test_empty_journal_is_invalid(self):
        is_valid, count, _ = self.journal.verify_chain()
        assert not is_valid
        assert count == 0
