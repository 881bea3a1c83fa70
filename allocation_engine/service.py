"""
Allocation Service — the public API surface of the allocation engine.

Every public method is one atomic operation:
1. take the process-wide lock (operations never interleave)
2. open a store transaction
3. run the component operation (guards first, then writes)
4. append the audit journal entry
5. commit — or, on any error, roll back and re-raise

Callers pass their (already authenticated) principal explicitly; transport
and authentication are out of scope.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Any, Iterator

import structlog

from allocation_engine.admission.engine import AllocationRequestEngine
from allocation_engine.config import AllocationSettings
from allocation_engine.core.clock import Clock, make_clock
from allocation_engine.core.errors import AllocationError
from allocation_engine.core.schema import (
    AllocationRequest,
    JournalEventType,
    PricePoint,
    RequestStatus,
    ResourceType,
    Role,
    SystemStatus,
)
from allocation_engine.governance.accounts import AccountDirectory
from allocation_engine.governance.system import SystemController
from allocation_engine.ledger.balances import AllocationLedger
from allocation_engine.ledger.journal import AuditJournal
from allocation_engine.ledger.store import StateStore, make_store
from allocation_engine.registry.resources import ResourceRegistry


class AllocationService:
    """
    Facade over the allocation components.

    Usage:
        service = AllocationService(settings)
        service.register_resource("admin", 1, "gpu-hours", 1000, 10, 5, 100, 1)
        request_id = service.submit_allocation_request("alice", 1, 50, "training run")
        service.approve_request("admin", request_id)
    """

    def __init__(
        self,
        settings: AllocationSettings | None = None,
        store: StateStore | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.settings = settings or AllocationSettings()
        self.store = store if store is not None else make_store(self.settings.database_url)
        self.clock = clock or make_clock(self.settings.clock)
        self.log = structlog.get_logger("allocation_engine")
        self._lock = threading.RLock()

        self.system = SystemController(self.store, self.clock, self.settings)
        self.directory = AccountDirectory(self.store, self.system)
        self.registry = ResourceRegistry(self.store, self.system, self.clock, self.settings)
        self.ledger = AllocationLedger(
            self.store, self.system, self.directory, self.registry, self.settings
        )
        self.requests = AllocationRequestEngine(
            self.store, self.system, self.directory, self.registry,
            self.ledger, self.clock, self.settings,
        )
        self.journal = AuditJournal(self.store, self.clock)
        self.journal.initialize()

    # ── Transaction boundary ───────────────────────────────────

    @contextmanager
    def _operation(self, name: str, caller: str, **fields: Any) -> Iterator[Any]:
        log = self.log.bind(operation=name, caller=caller, **fields)
        with self._lock:
            try:
                with self.store.transaction():
                    yield log
            except AllocationError as exc:
                log.warning(
                    "allocation.operation.rejected",
                    error=type(exc).__name__,
                    code=exc.code,
                    reason=exc.message,
                )
                raise

    @contextmanager
    def _read(self) -> Iterator[None]:
        with self._lock, self.store.transaction(readonly=True):
            yield

    def _record(self, event_type: JournalEventType, actor: str, **content: Any) -> None:
        self.journal.append(event_type, actor, content)

    # ── System administration ──────────────────────────────────

    def initialize(self, caller: str) -> SystemStatus:
        with self._operation("initialize", caller) as log:
            self.system.initialize(caller)
            self._record(JournalEventType.SYSTEM_INITIALIZED, caller)
            log.info("allocation.system.initialized")
            return self.system.status()

    def update_parameters(
        self, caller: str, new_ceiling: int, new_emergency_contact: str
    ) -> SystemStatus:
        with self._operation("update_parameters", caller) as log:
            self.system.update_parameters(caller, new_ceiling, new_emergency_contact)
            self._record(
                JournalEventType.PARAMETERS_UPDATED, caller,
                ceiling=new_ceiling, emergency_contact=new_emergency_contact,
            )
            log.info(
                "allocation.system.parameters_updated",
                ceiling=new_ceiling, emergency_contact=new_emergency_contact,
            )
            return self.system.status()

    def enter_maintenance(self, caller: str) -> SystemStatus:
        with self._operation("enter_maintenance", caller) as log:
            self.system.enter_maintenance(caller)
            self._record(JournalEventType.MAINTENANCE_ENTERED, caller)
            log.warning("allocation.system.maintenance_entered")
            return self.system.status()

    def exit_maintenance(self, caller: str) -> SystemStatus:
        with self._operation("exit_maintenance", caller) as log:
            self.system.exit_maintenance(caller)
            self._record(JournalEventType.MAINTENANCE_EXITED, caller)
            log.info("allocation.system.maintenance_exited")
            return self.system.status()

    def freeze_system(self, caller: str) -> SystemStatus:
        with self._operation("freeze_system", caller) as log:
            self.system.freeze(caller)
            self._record(JournalEventType.SYSTEM_FROZEN, caller)
            log.warning("allocation.system.frozen")
            return self.system.status()

    def unfreeze_system(self, caller: str) -> SystemStatus:
        with self._operation("unfreeze_system", caller) as log:
            self.system.unfreeze(caller)
            self._record(JournalEventType.SYSTEM_UNFROZEN, caller)
            log.info("allocation.system.unfrozen")
            return self.system.status()

    def rotate_administrator(self, caller: str, new_admin: str) -> SystemStatus:
        with self._operation("rotate_administrator", caller, new_admin=new_admin) as log:
            self.system.rotate_administrator(caller, new_admin)
            self._record(JournalEventType.ADMINISTRATOR_ROTATED, caller, new_admin=new_admin)
            log.warning("allocation.system.administrator_rotated")
            return self.system.status()

    # ── Account administration ─────────────────────────────────

    def set_role(self, caller: str, account: str, role: Role | str) -> Role:
        with self._operation("set_role", caller, account=account) as log:
            updated = self.directory.set_role(caller, account, role)
            self._record(
                JournalEventType.ROLE_ASSIGNED, caller,
                account=account, role=updated.role.value,
            )
            log.info("allocation.account.role_assigned", role=updated.role.value)
            return updated.role

    def restrict(self, caller: str, account: str) -> None:
        with self._operation("restrict", caller, account=account) as log:
            self.directory.restrict(caller, account)
            self._record(JournalEventType.ACCOUNT_RESTRICTED, caller, account=account)
            log.warning("allocation.account.restricted")

    def unrestrict(self, caller: str, account: str) -> None:
        with self._operation("unrestrict", caller, account=account) as log:
            self.directory.unrestrict(caller, account)
            self._record(JournalEventType.ACCOUNT_UNRESTRICTED, caller, account=account)
            log.info("allocation.account.unrestricted")

    # ── Resource administration ────────────────────────────────

    def register_resource(
        self,
        caller: str,
        resource_id: int,
        name: str,
        total_supply: int,
        unit_price: int,
        min_allocation: int,
        max_allocation: int,
        required_priority: int,
    ) -> ResourceType:
        with self._operation("register_resource", caller, resource_id=resource_id) as log:
            resource = self.registry.register(
                caller, resource_id, name, total_supply, unit_price,
                min_allocation, max_allocation, required_priority,
            )
            self._record(
                JournalEventType.RESOURCE_REGISTERED, caller,
                resource_id=resource_id, name=name, total_supply=total_supply,
                unit_price=unit_price, min_allocation=min_allocation,
                max_allocation=max_allocation, required_priority=required_priority,
            )
            log.info("allocation.resource.registered", name=name, total_supply=total_supply)
            return resource

    def update_price(self, caller: str, resource_id: int, new_price: int) -> ResourceType:
        with self._operation("update_price", caller, resource_id=resource_id) as log:
            resource = self.registry.update_price(caller, resource_id, new_price)
            old_price = resource.price_history[0].price
            self._record(
                JournalEventType.PRICE_UPDATED, caller,
                resource_id=resource_id, old_price=old_price, new_price=new_price,
            )
            log.info("allocation.resource.price_updated", old_price=old_price, new_price=new_price)
            return resource

    def update_limits(
        self,
        caller: str,
        resource_id: int,
        min_allocation: int,
        max_allocation: int,
        required_priority: int,
    ) -> ResourceType:
        with self._operation("update_limits", caller, resource_id=resource_id) as log:
            resource = self.registry.update_limits(
                caller, resource_id, min_allocation, max_allocation, required_priority
            )
            self._record(
                JournalEventType.LIMITS_UPDATED, caller,
                resource_id=resource_id, min_allocation=min_allocation,
                max_allocation=max_allocation, required_priority=required_priority,
            )
            log.info("allocation.resource.limits_updated")
            return resource

    def freeze_resource(self, caller: str, resource_id: int) -> ResourceType:
        with self._operation("freeze_resource", caller, resource_id=resource_id) as log:
            resource = self.registry.freeze(caller, resource_id)
            self._record(JournalEventType.RESOURCE_FROZEN, caller, resource_id=resource_id)
            log.warning("allocation.resource.frozen")
            return resource

    def unfreeze_resource(self, caller: str, resource_id: int) -> ResourceType:
        with self._operation("unfreeze_resource", caller, resource_id=resource_id) as log:
            resource = self.registry.unfreeze(caller, resource_id)
            self._record(JournalEventType.RESOURCE_UNFROZEN, caller, resource_id=resource_id)
            log.info("allocation.resource.unfrozen")
            return resource

    def add_dependency(self, caller: str, resource_id: int, dependency_id: int) -> ResourceType:
        with self._operation("add_dependency", caller, resource_id=resource_id) as log:
            resource = self.registry.add_dependency(caller, resource_id, dependency_id)
            self._record(
                JournalEventType.DEPENDENCY_ADDED, caller,
                resource_id=resource_id, dependency_id=dependency_id,
            )
            log.info("allocation.resource.dependency_added", dependency_id=dependency_id)
            return resource

    def remove_dependency(self, caller: str, resource_id: int, dependency_id: int) -> ResourceType:
        with self._operation("remove_dependency", caller, resource_id=resource_id) as log:
            resource = self.registry.remove_dependency(caller, resource_id, dependency_id)
            self._record(
                JournalEventType.DEPENDENCY_REMOVED, caller,
                resource_id=resource_id, dependency_id=dependency_id,
            )
            log.info("allocation.resource.dependency_removed", dependency_id=dependency_id)
            return resource

    # ── Allocation requests ────────────────────────────────────

    def submit_allocation_request(
        self,
        caller: str,
        resource_id: int,
        amount: int,
        justification: str,
    ) -> int:
        """Submit a request on behalf of ``caller``; returns the new request id."""
        with self._operation(
            "submit_allocation_request", caller, resource_id=resource_id, amount=amount
        ) as log:
            request = self.requests.submit(caller, resource_id, amount, justification)
            self._record(
                JournalEventType.REQUEST_SUBMITTED, caller,
                request_id=request.id, resource_id=resource_id, amount=amount,
                expires_at=request.expires_at,
            )
            log.info("allocation.request.submitted", request_id=request.id)
            return request.id

    def approve_request(self, caller: str, request_id: int) -> AllocationRequest:
        with self._operation("approve_request", caller, request_id=request_id) as log:
            request = self.requests.approve(caller, request_id)
            self._record(
                JournalEventType.REQUEST_APPROVED, caller,
                request_id=request_id, requester=request.requester,
                resource_id=request.resource_type_id, amount=request.amount,
            )
            log.info("allocation.request.approved", amount=request.amount)
            return request

    def reject_request(self, caller: str, request_id: int, reason: str = "") -> AllocationRequest:
        with self._operation("reject_request", caller, request_id=request_id) as log:
            request = self.requests.reject(caller, request_id, reason)
            self._record(
                JournalEventType.REQUEST_REJECTED, caller,
                request_id=request_id, reason=reason,
            )
            log.info("allocation.request.rejected", reason=reason)
            return request

    def expire_request(self, caller: str, request_id: int) -> AllocationRequest:
        with self._operation("expire_request", caller, request_id=request_id) as log:
            request = self.requests.expire(caller, request_id)
            self._record(JournalEventType.REQUEST_EXPIRED, caller, request_id=request_id)
            log.info("allocation.request.expired")
            return request

    # ── Transfers ──────────────────────────────────────────────

    def transfer(self, caller: str, recipient: str, resource_id: int, amount: int) -> bool:
        with self._operation(
            "transfer", caller, recipient=recipient, resource_id=resource_id, amount=amount
        ) as log:
            self.ledger.transfer(caller, recipient, resource_id, amount)
            self._record(
                JournalEventType.TRANSFER, caller,
                recipient=recipient, resource_id=resource_id, amount=amount,
            )
            log.info("allocation.ledger.transferred")
            return True

    # ── Read-only queries ──────────────────────────────────────

    def get_balance(self, account: str, resource_id: int) -> int:
        with self._read():
            return self.ledger.balance_of(account, resource_id)

    def get_balances(self, account: str) -> dict[int, int]:
        with self._read():
            return self.ledger.balances_of(account)

    def get_role(self, account: str) -> Role:
        with self._read():
            return self.directory.role_of(account)

    def get_priority_level(self, account: str) -> int:
        with self._read():
            return self.directory.priority_level(account)

    def get_resource(self, resource_id: int) -> ResourceType:
        with self._read():
            return self.registry.get(resource_id)

    def list_resources(self) -> list[ResourceType]:
        with self._read():
            return self.registry.list_resources()

    def get_request(self, request_id: int) -> AllocationRequest:
        with self._read():
            return self.requests.get(request_id)

    def list_requests(
        self,
        status: RequestStatus | None = None,
        requester: str | None = None,
    ) -> list[AllocationRequest]:
        with self._read():
            return self.requests.list_requests(status=status, requester=requester)

    def get_allocation_history(self, account: str) -> list[int]:
        with self._read():
            return self.ledger.allocation_history(account)

    def get_price_history(self, resource_id: int) -> list[PricePoint]:
        with self._read():
            return self.registry.get_price_history(resource_id)

    def get_system_status(self) -> SystemStatus:
        with self._read():
            return self.system.status()

    def verify_journal(self) -> tuple[bool, int, str]:
        with self._read():
            return self.journal.verify_chain()
