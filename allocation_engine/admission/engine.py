"""
Allocation Request Engine — the admission pipeline and request lifecycle.

Each request follows the lifecycle:

    PENDING → APPROVED | REJECTED | EXPIRED

Terminal states are final. Submission only validates and records; supply is
taken out of the pool and credited to the requester when the administrator
approves. Expiration is evaluated lazily: nothing happens when a window
passes until someone calls ``expire`` (or tries to ``approve``).
"""

from __future__ import annotations

import logging

from allocation_engine.config import AllocationSettings
from allocation_engine.core.clock import Clock
from allocation_engine.core.errors import (
    AllocationExceeded,
    InsufficientBalance,
    InsufficientPriority,
    InvalidParameter,
    InvalidQuantity,
    InvalidStateTransition,
    RequestNotFound,
    RequestTimeout,
    ResourceFrozen,
    Unauthorized,
)
from allocation_engine.core.schema import AllocationRequest, RequestStatus
from allocation_engine.governance.accounts import AccountDirectory
from allocation_engine.governance.system import SystemController
from allocation_engine.ledger.balances import AllocationLedger
from allocation_engine.ledger.store import REQUESTS, StateStore
from allocation_engine.registry.resources import ResourceRegistry

logger = logging.getLogger(__name__)


class AllocationRequestEngine:
    """
    Validates and records allocation requests.

    The admission checks run in a fixed order and the first failure wins,
    so a caller always learns about the most fundamental problem first.
    """

    def __init__(
        self,
        store: StateStore,
        system: SystemController,
        directory: AccountDirectory,
        registry: ResourceRegistry,
        ledger: AllocationLedger,
        clock: Clock,
        settings: AllocationSettings,
    ) -> None:
        self.store = store
        self.system = system
        self.directory = directory
        self.registry = registry
        self.ledger = ledger
        self.clock = clock
        self.settings = settings

    # ── Reads ──────────────────────────────────────────────────

    def get(self, request_id: int) -> AllocationRequest:
        raw = self.store.get(REQUESTS, str(request_id))
        if raw is None:
            raise RequestNotFound(f"Request {request_id} not found")
        return AllocationRequest.model_validate(raw)

    def list_requests(
        self,
        status: RequestStatus | None = None,
        requester: str | None = None,
    ) -> list[AllocationRequest]:
        requests = [AllocationRequest.model_validate(v) for v in self.store.values(REQUESTS)]
        if status is not None:
            requests = [r for r in requests if r.status == status]
        if requester is not None:
            requests = [r for r in requests if r.requester == requester]
        return sorted(requests, key=lambda r: r.id)

    # ── Submission ─────────────────────────────────────────────

    def submit(
        self,
        requester: str,
        resource_id: int,
        amount: int,
        justification: str,
    ) -> AllocationRequest:
        """
        Run the admission pipeline and record a PENDING request.

        Checks, in order:
            1. system not frozen / not in maintenance
            2. requester not restricted
            3. resource exists and is not frozen
            4. amount positive and within the global ceiling
            5. amount within available supply
            6. amount within the resource's min/max bounds
            7. requester priority meets the resource requirement
            8. justification present and bounded

        A rejected submission consumes no request id.
        """
        self.system.require_operational()

        if not self.directory.is_authorized(requester):
            raise Unauthorized(f"Account {requester!r} is not authorized")

        resource = self.registry.get(resource_id)
        if resource.frozen:
            raise ResourceFrozen(f"Resource {resource_id} is frozen")

        if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
            raise InvalidQuantity(f"Amount must be a positive integer, got {amount!r}")
        ceiling = self.system.state().global_allocation_ceiling
        if amount > ceiling:
            raise AllocationExceeded(f"Amount {amount} exceeds global ceiling {ceiling}")

        if amount > resource.available_supply:
            raise InsufficientBalance(
                f"Resource {resource_id} has {resource.available_supply} available, "
                f"{amount} requested"
            )

        if amount < resource.min_allocation:
            raise InvalidQuantity(
                f"Amount {amount} below minimum allocation {resource.min_allocation}"
            )
        if amount > resource.max_allocation:
            raise AllocationExceeded(
                f"Amount {amount} above maximum allocation {resource.max_allocation}"
            )

        access = self.directory.check_access(requester, resource.required_priority_level)
        if not access.is_allowed:
            raise InsufficientPriority(access.reason)

        if not isinstance(justification, str) or not justification.strip():
            raise InvalidParameter("Justification must be non-empty")
        if len(justification) > self.settings.max_justification_length:
            raise InvalidParameter(
                f"Justification longer than {self.settings.max_justification_length} characters"
            )

        request_id = self.system.next_request_id()
        now = self.clock.now()
        request = AllocationRequest(
            id=request_id,
            requester=requester,
            resource_type_id=resource_id,
            amount=amount,
            status=RequestStatus.PENDING,
            priority_at_submission=access.priority_level,
            submitted_at=now,
            expires_at=now + self.settings.request_expiration_window,
            justification=justification,
        )
        self._save(request)
        self.ledger.record_allocation(requester, request_id)

        logger.info(
            "Request submitted: id=%d requester=%s resource=%d amount=%d",
            request_id, requester, resource_id, amount,
        )
        return request

    # ── Lifecycle ──────────────────────────────────────────────

    def approve(self, admin: str, request_id: int) -> AllocationRequest:
        """
        Settle a pending request: take the amount out of the pool and credit
        it to the requester.

        Raises:
            RequestTimeout: the expiration window has passed. The request is
                left PENDING; call ``expire`` to close it.
        """
        self.system.require_admin(admin)
        self.system.require_operational()
        request = self._pending(request_id)

        now = self.clock.now()
        if request.is_expired(now):
            raise RequestTimeout(
                f"Request {request_id} expired at {request.expires_at} (now {now})"
            )

        resource = self.registry.get(request.resource_type_id)
        if resource.frozen:
            raise ResourceFrozen(f"Resource {resource.id} is frozen")

        self.registry.decrease_available(resource.id, request.amount)
        self.ledger.credit(request.requester, resource.id, request.amount)

        request.status = RequestStatus.APPROVED
        request.decided_at = now
        request.decided_by = admin
        self._save(request)
        logger.info(
            "Request approved: id=%d requester=%s amount=%d",
            request_id, request.requester, request.amount,
        )
        return request

    def reject(self, admin: str, request_id: int, reason: str = "") -> AllocationRequest:
        self.system.require_admin(admin)
        request = self._pending(request_id)

        request.status = RequestStatus.REJECTED
        request.decided_at = self.clock.now()
        request.decided_by = admin
        request.decision_reason = reason
        self._save(request)
        logger.info("Request rejected: id=%d reason=%s", request_id, reason or "-")
        return request

    def expire(self, caller: str, request_id: int) -> AllocationRequest:
        """Close a pending request whose window has passed. Anyone may call this."""
        self.system.require_operational()
        request = self._pending(request_id)

        now = self.clock.now()
        if not request.is_expired(now):
            raise InvalidParameter(
                f"Request {request_id} does not expire until after {request.expires_at}"
            )

        request.status = RequestStatus.EXPIRED
        request.decided_at = now
        request.decided_by = caller
        self._save(request)
        logger.info("Request expired: id=%d", request_id)
        return request

    # ── Internal ───────────────────────────────────────────────

    def _pending(self, request_id: int) -> AllocationRequest:
        request = self.get(request_id)
        if not request.is_pending:
            raise InvalidStateTransition(
                f"Request {request_id} is already {request.status.value}"
            )
        return request

    def _save(self, request: AllocationRequest) -> None:
        self.store.put(REQUESTS, str(request.id), request.model_dump(mode="json"))
