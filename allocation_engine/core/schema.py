"""
Allocation Schema — Pydantic models for every allocation-engine entity.

These models are the canonical data structures for accounts, resource pools,
allocation requests, the system singleton, and the audit journal. Stores
persist them as JSON (``model_dump(mode="json")``) and rebuild them with
``model_validate``.
"""

from __future__ import annotations

import enum
import hashlib
import json
import re
from typing import Any

from pydantic import BaseModel, Field, computed_field


# ════════════════════════════════════════════════════════════════
# Limits
# ════════════════════════════════════════════════════════════════

HISTORY_CAPACITY = 10
DEPENDENCY_CAPACITY = 5
MAX_PRIORITY_LEVEL = 5
MAX_NAME_LENGTH = 64
MAX_JUSTIFICATION_LENGTH = 256

PRINCIPAL_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._:@\-]{0,127}$")


def is_valid_principal(principal: Any) -> bool:
    """Whether ``principal`` is a well-formed account identity."""
    return isinstance(principal, str) and bool(PRINCIPAL_PATTERN.match(principal))


def push_front(items: list[Any], item: Any, capacity: int) -> list[Any]:
    """Return ``items`` with ``item`` first, dropping the oldest entries past capacity."""
    return [item, *items][:capacity]


# ════════════════════════════════════════════════════════════════
# Enumerations
# ════════════════════════════════════════════════════════════════


class Role(str, enum.Enum):
    """Account roles, highest privilege first."""

    ADMIN = "admin"
    PREMIUM = "premium"
    BUSINESS = "business"
    VERIFIED = "verified"
    USER = "user"


ROLE_PRIORITY: dict[Role, int] = {
    Role.ADMIN: 5,
    Role.PREMIUM: 4,
    Role.BUSINESS: 3,
    Role.VERIFIED: 2,
    Role.USER: 1,
}


def priority_for(role: Role) -> int:
    """Fixed total-order mapping from role to priority level (1..5)."""
    return ROLE_PRIORITY[role]


class RequestStatus(str, enum.Enum):
    """Allocation request lifecycle. Everything except PENDING is terminal."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


class JournalEventType(str, enum.Enum):
    """Types of audit journal entries."""

    GENESIS = "genesis"

    # System
    SYSTEM_INITIALIZED = "system_initialized"
    PARAMETERS_UPDATED = "parameters_updated"
    MAINTENANCE_ENTERED = "maintenance_entered"
    MAINTENANCE_EXITED = "maintenance_exited"
    SYSTEM_FROZEN = "system_frozen"
    SYSTEM_UNFROZEN = "system_unfrozen"
    ADMINISTRATOR_ROTATED = "administrator_rotated"

    # Accounts
    ROLE_ASSIGNED = "role_assigned"
    ACCOUNT_RESTRICTED = "account_restricted"
    ACCOUNT_UNRESTRICTED = "account_unrestricted"

    # Resources
    RESOURCE_REGISTERED = "resource_registered"
    PRICE_UPDATED = "price_updated"
    LIMITS_UPDATED = "limits_updated"
    RESOURCE_FROZEN = "resource_frozen"
    RESOURCE_UNFROZEN = "resource_unfrozen"
    DEPENDENCY_ADDED = "dependency_added"
    DEPENDENCY_REMOVED = "dependency_removed"

    # Requests
    REQUEST_SUBMITTED = "request_submitted"
    REQUEST_APPROVED = "request_approved"
    REQUEST_REJECTED = "request_rejected"
    REQUEST_EXPIRED = "request_expired"

    # Ledger
    TRANSFER = "transfer"


# ════════════════════════════════════════════════════════════════
# Accounts
# ════════════════════════════════════════════════════════════════


class Account(BaseModel):
    """
    An account known to the engine.

    Accounts are created implicitly the first time they are written and are
    never deleted. Balances are kept per resource type.
    """

    principal: str
    role: Role = Role.USER
    restricted: bool = False
    balances: dict[int, int] = Field(
        default_factory=dict, description="Resource id -> non-negative balance"
    )
    allocation_history: list[int] = Field(
        default_factory=list, description="Request ids, most recent first"
    )

    @computed_field
    @property
    def priority_level(self) -> int:
        return priority_for(self.role)

    def balance_of(self, resource_id: int) -> int:
        return self.balances.get(resource_id, 0)


# ════════════════════════════════════════════════════════════════
# Resources
# ════════════════════════════════════════════════════════════════


class PricePoint(BaseModel):
    """A superseded price and the clock value at which it had been set."""

    price: int
    set_at: int


class ResourceType(BaseModel):
    """
    A registered resource pool.

    The identifier is immutable; everything else may change. Pools are never
    deleted, only frozen.
    """

    id: int
    name: str
    total_supply: int
    available_supply: int
    price_per_unit: int
    frozen: bool = False
    required_priority_level: int = Field(ge=0, le=MAX_PRIORITY_LEVEL)
    min_allocation: int
    max_allocation: int
    price_history: list[PricePoint] = Field(
        default_factory=list, description="Replaced prices, most recent first"
    )
    last_price_update: int = 0
    dependencies: list[int] = Field(default_factory=list)
    registered_at: int = 0

    @computed_field
    @property
    def allocated_supply(self) -> int:
        return self.total_supply - self.available_supply


# ════════════════════════════════════════════════════════════════
# Allocation Requests
# ════════════════════════════════════════════════════════════════


class AllocationRequest(BaseModel):
    """
    A claim on resource supply with a bounded lifetime.

    Records are never deleted; the status transition out of PENDING is the
    only mutation, so the request table doubles as an audit trail.
    """

    id: int
    requester: str
    resource_type_id: int
    amount: int
    status: RequestStatus = RequestStatus.PENDING
    priority_at_submission: int
    submitted_at: int
    expires_at: int
    justification: str
    decided_at: int | None = None
    decided_by: str | None = None
    decision_reason: str = ""

    @property
    def is_pending(self) -> bool:
        return self.status == RequestStatus.PENDING

    def is_expired(self, now: int) -> bool:
        """Whether the expiration window has passed (regardless of status)."""
        return now > self.expires_at


# ════════════════════════════════════════════════════════════════
# System
# ════════════════════════════════════════════════════════════════


class SystemState(BaseModel):
    """Singleton system record: global switches and parameters."""

    administrator: str
    initialized: bool = False
    initialized_at: int | None = None
    frozen: bool = False
    maintenance: bool = False
    global_allocation_ceiling: int
    emergency_contact: str
    request_counter: int = 0


class SystemStatus(BaseModel):
    """Read-only view returned by ``get_system_status``."""

    initialized: bool
    frozen: bool
    maintenance: bool
    ceiling: int
    emergency_contact: str
    administrator: str


# ════════════════════════════════════════════════════════════════
# Audit Journal
# ════════════════════════════════════════════════════════════════


class JournalEntry(BaseModel):
    """
    A single entry in the audit journal.

    Append-only and hash chained: each entry stores the SHA-256 hash of
    ``previous_hash || canonical_json(fields)``, so any retroactive edit is
    detectable by recomputing the chain.
    """

    sequence_number: int
    previous_hash: str
    entry_hash: str = ""
    recorded_at: int
    event_type: JournalEventType
    actor: str
    content: dict[str, Any] = Field(default_factory=dict)

    def compute_hash(self) -> str:
        hashable = {
            "sequence_number": self.sequence_number,
            "previous_hash": self.previous_hash,
            "recorded_at": self.recorded_at,
            "event_type": self.event_type.value,
            "actor": self.actor,
            "content": self.content,
        }
        canonical = json.dumps(hashable, sort_keys=True, default=str)
        return hashlib.sha256(
            (self.previous_hash + canonical).encode("utf-8")
        ).hexdigest()
