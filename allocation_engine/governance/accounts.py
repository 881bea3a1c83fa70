"""
Account Directory — roles, restrictions, and priority levels.

Every allocation request and transfer passes through this directory before
anything else about the account is considered. Accounts are classified as:

- AUTHORIZED: not restricted, and the role's priority meets the requirement
- RESTRICTED: the administrator has restricted the account; nothing proceeds
- INSUFFICIENT_PRIORITY: the role's priority is below what the resource requires

Priority is a fixed total order over roles (ADMIN=5 … USER=1). There is no
partial credit and no per-account override.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from allocation_engine.core.errors import InvalidParameter
from allocation_engine.core.schema import Account, Role, is_valid_principal, priority_for
from allocation_engine.governance.system import SystemController
from allocation_engine.ledger.store import ACCOUNTS, StateStore

logger = logging.getLogger(__name__)


class AccessDecision(str, Enum):
    """Result of an access check."""

    AUTHORIZED = "authorized"
    RESTRICTED = "restricted"
    INSUFFICIENT_PRIORITY = "insufficient_priority"


@dataclass
class AccessCheckResult:
    """Result of checking an account against a required priority level."""

    decision: AccessDecision
    principal: str
    role: Role
    priority_level: int
    required_priority_level: int
    reason: str

    @property
    def is_allowed(self) -> bool:
        return self.decision == AccessDecision.AUTHORIZED


class AccountDirectory:
    """
    Maps principals to roles and restriction flags.

    Unknown principals read as an unrestricted USER; the record is only
    written once something about the account changes.
    """

    def __init__(self, store: StateStore, system: SystemController) -> None:
        self.store = store
        self.system = system

    # ── Records ────────────────────────────────────────────────

    def get(self, principal: str) -> Account:
        raw = self.store.get(ACCOUNTS, principal)
        if raw is None:
            return Account(principal=principal)
        return Account.model_validate(raw)

    def save(self, account: Account) -> None:
        self.store.put(
            ACCOUNTS,
            account.principal,
            account.model_dump(mode="json", exclude={"priority_level"}),
        )

    # ── Queries ────────────────────────────────────────────────

    def role_of(self, principal: str) -> Role:
        return self.get(principal).role

    def priority_level(self, principal: str) -> int:
        return priority_for(self.role_of(principal))

    def is_authorized(self, principal: str) -> bool:
        account = self.get(principal)
        return not account.restricted and account.priority_level >= 1

    def check_access(self, principal: str, required_priority_level: int) -> AccessCheckResult:
        """
        Check whether an account may act on a resource gated at
        ``required_priority_level``. Restriction is checked first.
        """
        account = self.get(principal)
        level = account.priority_level

        if account.restricted:
            return AccessCheckResult(
                decision=AccessDecision.RESTRICTED,
                principal=principal,
                role=account.role,
                priority_level=level,
                required_priority_level=required_priority_level,
                reason=f"Account {principal!r} is restricted",
            )

        if level < required_priority_level:
            return AccessCheckResult(
                decision=AccessDecision.INSUFFICIENT_PRIORITY,
                principal=principal,
                role=account.role,
                priority_level=level,
                required_priority_level=required_priority_level,
                reason=(
                    f"Role {account.role.value} has priority {level}, "
                    f"resource requires {required_priority_level}"
                ),
            )

        return AccessCheckResult(
            decision=AccessDecision.AUTHORIZED,
            principal=principal,
            role=account.role,
            priority_level=level,
            required_priority_level=required_priority_level,
            reason=f"Role {account.role.value} meets priority {required_priority_level}",
        )

    # ── Administrative operations ──────────────────────────────

    def set_role(self, admin: str, principal: str, role: Role | str) -> Account:
        self.system.require_admin(admin)
        if not is_valid_principal(principal):
            raise InvalidParameter(f"Malformed account identity: {principal!r}")
        try:
            role = role if isinstance(role, Role) else Role(str(role).lower())
        except ValueError:
            raise InvalidParameter(f"Unknown role: {role!r}") from None

        account = self.get(principal)
        account.role = role
        self.save(account)
        logger.info("Role assigned: %s -> %s", principal, role.value)
        return account

    def restrict(self, admin: str, principal: str) -> Account:
        self.system.require_admin(admin)
        if not is_valid_principal(principal):
            raise InvalidParameter(f"Malformed account identity: {principal!r}")
        if principal == self.system.administrator:
            raise InvalidParameter("The administrator cannot be restricted")

        account = self.get(principal)
        account.restricted = True
        self.save(account)
        logger.warning("Account restricted: %s", principal)
        return account

    def unrestrict(self, admin: str, principal: str) -> Account:
        self.system.require_admin(admin)
        if not is_valid_principal(principal):
            raise InvalidParameter(f"Malformed account identity: {principal!r}")

        account = self.get(principal)
        account.restricted = False
        self.save(account)
        logger.info("Account unrestricted: %s", principal)
        return account
