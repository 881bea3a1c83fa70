"""
Tests for the Allocation Schema — verifies the Pydantic models and helpers.

Validates:
- Role → priority total order
- Bounded history helper
- Principal validation
- Journal entry hashing
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from allocation_engine.core.schema import (
    Account,
    AllocationRequest,
    JournalEntry,
    JournalEventType,
    RequestStatus,
    ResourceType,
    Role,
    ROLE_PRIORITY,
    is_valid_principal,
    priority_for,
    push_front,
)


class TestRoles:
    """Verify the role enum and its priority mapping."""

    def test_priority_mapping(self):
        assert priority_for(Role.ADMIN) == 5
        assert priority_for(Role.PREMIUM) == 4
        assert priority_for(Role.BUSINESS) == 3
        assert priority_for(Role.VERIFIED) == 2
        assert priority_for(Role.USER) == 1

    def test_every_role_has_a_priority(self):
        assert set(ROLE_PRIORITY) == set(Role)
        assert all(1 <= level <= 5 for level in ROLE_PRIORITY.values())

    def test_priorities_are_a_total_order(self):
        levels = [priority_for(role) for role in Role]
        assert levels == sorted(levels, reverse=True)
        assert len(set(levels)) == len(levels)


class TestAccountModel:
    def test_defaults(self):
        account = Account(principal="alice")
        assert account.role == Role.USER
        assert account.restricted is False
        assert account.priority_level == 1
        assert account.balance_of(1) == 0
        assert account.allocation_history == []

    def test_json_round_trip_keeps_integer_balance_keys(self):
        account = Account(principal="alice", balances={3: 40})
        restored = Account.model_validate(account.model_dump(mode="json"))
        assert restored.balance_of(3) == 40


class TestPushFront:
    def test_most_recent_first(self):
        assert push_front([2, 1], 3, 10) == [3, 2, 1]

    def test_drops_oldest_past_capacity(self):
        items: list[int] = []
        for i in range(1, 13):
            items = push_front(items, i, 10)
        assert len(items) == 10
        assert items[0] == 12
        assert items[-1] == 3


class TestPrincipals:
    @pytest.mark.parametrize("principal", ["alice", "acct-42", "svc:billing", "bob@example.com"])
    def test_well_formed(self, principal):
        assert is_valid_principal(principal)

    @pytest.mark.parametrize("principal", ["", " alice", "has space", "-leading", None, 42])
    def test_malformed(self, principal):
        assert not is_valid_principal(principal)


class TestResourceModel:
    def test_required_priority_bounds(self):
        with pytest.raises(ValidationError):
            ResourceType(
                id=1, name="cpu", total_supply=10, available_supply=10,
                price_per_unit=1, required_priority_level=6,
                min_allocation=1, max_allocation=5,
            )

    def test_allocated_supply(self):
        resource = ResourceType(
            id=1, name="cpu", total_supply=10, available_supply=4,
            price_per_unit=1, required_priority_level=0,
            min_allocation=1, max_allocation=5,
        )
        assert resource.allocated_supply == 6


class TestAllocationRequestModel:
    def test_expiry_is_strictly_after_window(self):
        request = AllocationRequest(
            id=1, requester="alice", resource_type_id=1, amount=10,
            priority_at_submission=1, submitted_at=0, expires_at=144,
            justification="batch job",
        )
        assert request.is_pending
        assert request.status == RequestStatus.PENDING
        assert not request.is_expired(144)
        assert request.is_expired(145)


class TestJournalEntryHash:
    def _entry(self, **overrides) -> JournalEntry:
        kwargs = {
            "sequence_number": 1,
            "previous_hash": "0" * 64,
            "recorded_at": 7,
            "event_type": JournalEventType.TRANSFER,
            "actor": "alice",
            "content": {"amount": 10},
        }
        kwargs.update(overrides)
        return JournalEntry(**kwargs)

    def test_hash_is_deterministic_sha256(self):
        entry = self._entry()
        h = entry.compute_hash()
        assert h == entry.compute_hash()
        assert len(h) == 64
        assert all(c in "0123456789abcdef" for c in h)

    def test_tamper_detection(self):
        entry = self._entry()
        tampered = entry.model_copy(update={"content": {"amount": 999}})
        assert entry.compute_hash() != tampered.compute_hash()
