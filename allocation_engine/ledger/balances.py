"""
Allocation Ledger — per-account balances and allocation histories.

Balances are keyed by ``(account, resource type)``. They only change through
two paths:
1. ``credit`` — when an allocation request is approved
2. ``transfer`` — moving units between two authorized accounts

Transfers are balance-conserving: the sender loses exactly what the
recipient gains.
"""

from __future__ import annotations

import logging

from allocation_engine.config import AllocationSettings
from allocation_engine.core.errors import (
    InsufficientBalance,
    InvalidQuantity,
    InvalidRecipient,
    ResourceFrozen,
    Unauthorized,
)
from allocation_engine.core.schema import Account, is_valid_principal, push_front
from allocation_engine.governance.accounts import AccountDirectory
from allocation_engine.governance.system import SystemController
from allocation_engine.ledger.store import ACCOUNTS, StateStore
from allocation_engine.registry.resources import ResourceRegistry

logger = logging.getLogger(__name__)


class AllocationLedger:
    """Tracks resource balances and allocation histories per account."""

    def __init__(
        self,
        store: StateStore,
        system: SystemController,
        directory: AccountDirectory,
        registry: ResourceRegistry,
        settings: AllocationSettings,
    ) -> None:
        self.store = store
        self.system = system
        self.directory = directory
        self.registry = registry
        self.settings = settings

    # ── Reads ──────────────────────────────────────────────────

    def balance_of(self, principal: str, resource_id: int) -> int:
        return self.directory.get(principal).balance_of(resource_id)

    def balances_of(self, principal: str) -> dict[int, int]:
        return dict(self.directory.get(principal).balances)

    def allocation_history(self, principal: str) -> list[int]:
        return list(self.directory.get(principal).allocation_history)

    def total_balance(self, resource_id: int) -> int:
        """Sum of every account's balance of one resource."""
        return sum(
            Account.model_validate(raw).balance_of(resource_id)
            for raw in self.store.values(ACCOUNTS)
        )

    # ── Mutations ──────────────────────────────────────────────

    def credit(self, principal: str, resource_id: int, amount: int) -> Account:
        if amount <= 0:
            raise InvalidQuantity(f"Credit must be positive, got {amount}")
        account = self.directory.get(principal)
        account.balances[resource_id] = account.balance_of(resource_id) + amount
        self.directory.save(account)
        return account

    def record_allocation(self, principal: str, request_id: int) -> Account:
        account = self.directory.get(principal)
        account.allocation_history = push_front(
            account.allocation_history, request_id, self.settings.history_capacity
        )
        self.directory.save(account)
        return account

    def transfer(
        self,
        sender: str,
        recipient: str,
        resource_id: int,
        amount: int,
    ) -> tuple[Account, Account]:
        """
        Move ``amount`` units of a resource from ``sender`` to ``recipient``.

        Raises:
            SystemFrozen: the system is frozen or in maintenance.
            InvalidRecipient: recipient is malformed or is the sender.
            Unauthorized: either account is restricted.
            ResourceNotFound / ResourceFrozen: the resource is missing or frozen.
            InvalidQuantity: amount is not positive.
            InsufficientBalance: the sender holds less than ``amount``.
        """
        self.system.require_operational()

        if not is_valid_principal(recipient) or recipient == sender:
            raise InvalidRecipient(f"Invalid recipient: {recipient!r}")
        if not self.directory.is_authorized(sender):
            raise Unauthorized(f"Sender {sender!r} is not authorized")
        if not self.directory.is_authorized(recipient):
            raise Unauthorized(f"Recipient {recipient!r} is not authorized")

        resource = self.registry.get(resource_id)
        if resource.frozen:
            raise ResourceFrozen(f"Resource {resource_id} is frozen")

        if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
            raise InvalidQuantity(f"Amount must be a positive integer, got {amount!r}")

        source = self.directory.get(sender)
        if amount > source.balance_of(resource_id):
            raise InsufficientBalance(
                f"{sender!r} holds {source.balance_of(resource_id)} of resource "
                f"{resource_id}, {amount} requested"
            )

        source.balances[resource_id] = source.balance_of(resource_id) - amount
        self.directory.save(source)

        target = self.directory.get(recipient)
        target.balances[resource_id] = target.balance_of(resource_id) + amount
        self.directory.save(target)

        logger.info(
            "Transfer: %s -> %s resource=%d amount=%d",
            sender, recipient, resource_id, amount,
        )
        return source, target
