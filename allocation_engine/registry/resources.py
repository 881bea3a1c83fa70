"""
Resource Registry — registered pools, supply, prices, and freeze flags.

A pool is registered once under an immutable integer id and is never
deleted, only frozen. Supply accounting is one-way from the registry's point
of view: ``available_supply`` only decreases, through ``decrease_available``
when an allocation is approved, and never exceeds ``total_supply``.

Price changes are kept in a bounded history (most recent first) so that
pricing stays auditable after the fact.
"""

from __future__ import annotations

import logging

from allocation_engine.config import AllocationSettings
from allocation_engine.core.clock import Clock
from allocation_engine.core.errors import (
    AllocationExceeded,
    AlreadyExists,
    InsufficientBalance,
    InvalidParameter,
    InvalidQuantity,
    ResourceNotFound,
)
from allocation_engine.core.schema import (
    MAX_PRIORITY_LEVEL,
    PricePoint,
    ResourceType,
    push_front,
)
from allocation_engine.governance.system import SystemController
from allocation_engine.ledger.store import RESOURCES, StateStore

logger = logging.getLogger(__name__)


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class ResourceRegistry:
    """Stores resource pools and their supply/price/freeze metadata."""

    def __init__(
        self,
        store: StateStore,
        system: SystemController,
        clock: Clock,
        settings: AllocationSettings,
    ) -> None:
        self.store = store
        self.system = system
        self.clock = clock
        self.settings = settings

    # ── Reads ──────────────────────────────────────────────────

    def find(self, resource_id: int) -> ResourceType | None:
        raw = self.store.get(RESOURCES, str(resource_id))
        return ResourceType.model_validate(raw) if raw is not None else None

    def get(self, resource_id: int) -> ResourceType:
        resource = self.find(resource_id)
        if resource is None:
            raise ResourceNotFound(f"Resource {resource_id} not found")
        return resource

    def exists(self, resource_id: int) -> bool:
        return self.find(resource_id) is not None

    def get_price_history(self, resource_id: int) -> list[PricePoint]:
        return self.get(resource_id).price_history

    def list_resources(self) -> list[ResourceType]:
        resources = [ResourceType.model_validate(v) for v in self.store.values(RESOURCES)]
        return sorted(resources, key=lambda r: r.id)

    # ── Administrative operations ──────────────────────────────

    def register(
        self,
        admin: str,
        resource_id: int,
        name: str,
        total_supply: int,
        unit_price: int,
        min_allocation: int,
        max_allocation: int,
        required_priority: int,
    ) -> ResourceType:
        """
        Register a new resource pool.

        Raises:
            Unauthorized: caller is not the administrator.
            AlreadyExists: the id is already registered.
            InvalidQuantity: supply or price is not positive or above the quantity ceiling.
            InvalidParameter: bad name, priority, or allocation bounds.
        """
        self.system.require_admin(admin)
        if not _is_int(resource_id) or resource_id < 0:
            raise InvalidParameter(f"Resource id must be a non-negative integer, got {resource_id!r}")
        if self.exists(resource_id):
            raise AlreadyExists(f"Resource {resource_id} already registered")

        self._check_quantity("total supply", total_supply)
        self._check_quantity("unit price", unit_price)
        self._check_name(name)
        self._check_limits(total_supply, min_allocation, max_allocation, required_priority)

        now = self.clock.now()
        resource = ResourceType(
            id=resource_id,
            name=name,
            total_supply=total_supply,
            available_supply=total_supply,
            price_per_unit=unit_price,
            frozen=False,
            required_priority_level=required_priority,
            min_allocation=min_allocation,
            max_allocation=max_allocation,
            last_price_update=now,
            registered_at=now,
        )
        self._save(resource)
        logger.info(
            "Resource registered: id=%d name=%s supply=%d price=%d",
            resource_id, name, total_supply, unit_price,
        )
        return resource

    def update_price(self, admin: str, resource_id: int, new_price: int) -> ResourceType:
        """Apply a new unit price, pushing the old one onto the price history."""
        self.system.require_admin(admin)
        resource = self.get(resource_id)
        self._check_quantity("unit price", new_price)

        resource.price_history = push_front(
            resource.price_history,
            PricePoint(price=resource.price_per_unit, set_at=resource.last_price_update),
            self.settings.history_capacity,
        )
        resource.price_per_unit = new_price
        resource.last_price_update = self.clock.now()
        self._save(resource)
        logger.info("Price updated: id=%d price=%d", resource_id, new_price)
        return resource

    def update_limits(
        self,
        admin: str,
        resource_id: int,
        min_allocation: int,
        max_allocation: int,
        required_priority: int,
    ) -> ResourceType:
        self.system.require_admin(admin)
        resource = self.get(resource_id)
        self._check_limits(resource.total_supply, min_allocation, max_allocation, required_priority)

        resource.min_allocation = min_allocation
        resource.max_allocation = max_allocation
        resource.required_priority_level = required_priority
        self._save(resource)
        logger.info(
            "Limits updated: id=%d min=%d max=%d priority=%d",
            resource_id, min_allocation, max_allocation, required_priority,
        )
        return resource

    def freeze(self, admin: str, resource_id: int) -> ResourceType:
        return self._set_frozen(admin, resource_id, True)

    def unfreeze(self, admin: str, resource_id: int) -> ResourceType:
        return self._set_frozen(admin, resource_id, False)

    def add_dependency(self, admin: str, resource_id: int, dependency_id: int) -> ResourceType:
        self.system.require_admin(admin)
        resource = self.get(resource_id)
        if dependency_id == resource_id:
            raise InvalidParameter("A resource cannot depend on itself")
        if not self.exists(dependency_id):
            raise ResourceNotFound(f"Dependency {dependency_id} not found")
        if dependency_id in resource.dependencies:
            return resource
        if len(resource.dependencies) >= self.settings.dependency_capacity:
            raise AllocationExceeded(
                f"Resource {resource_id} already has "
                f"{self.settings.dependency_capacity} dependencies"
            )

        resource.dependencies.append(dependency_id)
        self._save(resource)
        logger.info("Dependency added: %d -> %d", resource_id, dependency_id)
        return resource

    def remove_dependency(self, admin: str, resource_id: int, dependency_id: int) -> ResourceType:
        self.system.require_admin(admin)
        resource = self.get(resource_id)
        if dependency_id not in resource.dependencies:
            raise InvalidParameter(f"Resource {resource_id} does not depend on {dependency_id}")

        resource.dependencies.remove(dependency_id)
        self._save(resource)
        logger.info("Dependency removed: %d -> %d", resource_id, dependency_id)
        return resource

    # ── Internal ───────────────────────────────────────────────

    def decrease_available(self, resource_id: int, amount: int) -> ResourceType:
        """Take ``amount`` out of the pool's available supply."""
        resource = self.get(resource_id)
        if amount <= 0:
            raise InvalidQuantity(f"Amount must be positive, got {amount}")
        if amount > resource.available_supply:
            raise InsufficientBalance(
                f"Resource {resource_id} has {resource.available_supply} available, "
                f"{amount} requested"
            )
        resource.available_supply -= amount
        self._save(resource)
        return resource

    def _set_frozen(self, admin: str, resource_id: int, frozen: bool) -> ResourceType:
        self.system.require_admin(admin)
        resource = self.get(resource_id)
        resource.frozen = frozen
        self._save(resource)
        logger.info("Resource %s: id=%d", "frozen" if frozen else "unfrozen", resource_id)
        return resource

    def _check_quantity(self, label: str, value: int) -> None:
        if not _is_int(value) or value <= 0:
            raise InvalidQuantity(f"{label} must be a positive integer, got {value!r}")
        if value > self.settings.quantity_ceiling:
            raise InvalidQuantity(
                f"{label} {value} exceeds quantity ceiling {self.settings.quantity_ceiling}"
            )

    def _check_name(self, name: str) -> None:
        if not isinstance(name, str) or not name.strip():
            raise InvalidParameter("Resource name must be non-empty")
        if len(name) > self.settings.max_name_length:
            raise InvalidParameter(
                f"Resource name longer than {self.settings.max_name_length} characters"
            )

    def _check_limits(
        self,
        total_supply: int,
        min_allocation: int,
        max_allocation: int,
        required_priority: int,
    ) -> None:
        if not _is_int(required_priority) or not 0 <= required_priority <= MAX_PRIORITY_LEVEL:
            raise InvalidParameter(
                f"Required priority must be 0..{MAX_PRIORITY_LEVEL}, got {required_priority!r}"
            )
        if not _is_int(min_allocation) or min_allocation < 1:
            raise InvalidParameter(f"Minimum allocation must be >= 1, got {min_allocation!r}")
        if not _is_int(max_allocation) or max_allocation <= min_allocation:
            raise InvalidParameter(
                f"Maximum allocation must exceed minimum {min_allocation}, got {max_allocation!r}"
            )
        if max_allocation > total_supply:
            raise InvalidParameter(
                f"Maximum allocation {max_allocation} exceeds total supply {total_supply}"
            )

    def _save(self, resource: ResourceType) -> None:
        self.store.put(
            RESOURCES,
            str(resource.id),
            resource.model_dump(mode="json", exclude={"allocated_supply"}),
        )
