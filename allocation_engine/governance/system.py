"""
System Controller — global switches, initialization latch, and parameters.

The controller owns the system singleton:
- the administrator identity every administrative call is checked against
- the global ``frozen`` and ``maintenance`` switches (maintenance implies frozen)
- the global allocation ceiling and the emergency contact
- the request id counter

While frozen, no allocation request or transfer may be made by anyone.
Administrative calls remain available so the system can be brought back.
"""

from __future__ import annotations

import logging

from allocation_engine.config import AllocationSettings
from allocation_engine.core.clock import Clock
from allocation_engine.core.errors import (
    AlreadyInitialized,
    InvalidParameter,
    SystemFrozen,
    Unauthorized,
)
from allocation_engine.core.schema import SystemState, SystemStatus, is_valid_principal
from allocation_engine.ledger.store import REQUESTS, SYSTEM, SYSTEM_STATE_KEY, StateStore

logger = logging.getLogger(__name__)


class SystemController:
    """
    Singleton system state, passed explicitly to every component that needs it.

    The administrator is taken from configuration at first use and can only
    be changed through ``rotate_administrator``.
    """

    def __init__(
        self,
        store: StateStore,
        clock: Clock,
        settings: AllocationSettings,
    ) -> None:
        if not is_valid_principal(settings.administrator_id):
            raise ValueError(f"Invalid administrator id: {settings.administrator_id!r}")
        self.store = store
        self.clock = clock
        self.settings = settings

    # ── Reads ──────────────────────────────────────────────────

    def state(self) -> SystemState:
        raw = self.store.get(SYSTEM, SYSTEM_STATE_KEY)
        if raw is None:
            return SystemState(
                administrator=self.settings.administrator_id,
                global_allocation_ceiling=self.settings.global_allocation_ceiling,
                emergency_contact=self.settings.emergency_contact,
            )
        return SystemState.model_validate(raw)

    def status(self) -> SystemStatus:
        state = self.state()
        return SystemStatus(
            initialized=state.initialized,
            frozen=state.frozen,
            maintenance=state.maintenance,
            ceiling=state.global_allocation_ceiling,
            emergency_contact=state.emergency_contact,
            administrator=state.administrator,
        )

    @property
    def administrator(self) -> str:
        return self.state().administrator

    def is_admin(self, caller: str) -> bool:
        return caller == self.administrator

    # ── Guards ─────────────────────────────────────────────────

    def require_admin(self, caller: str) -> None:
        if not self.is_admin(caller):
            raise Unauthorized(f"{caller!r} is not the administrator")

    def require_operational(self) -> None:
        state = self.state()
        if state.maintenance:
            raise SystemFrozen("System is in maintenance")
        if state.frozen:
            raise SystemFrozen("System is frozen")

    # ── Administrative operations ──────────────────────────────

    def initialize(self, admin: str) -> SystemState:
        """
        One-time latch. Clears the global switches, applies the configured
        parameters and resynchronises the request counter with the request
        table so ids are never reused.
        """
        self.require_admin(admin)
        state = self.state()
        if state.initialized:
            raise AlreadyInitialized("System already initialized")

        state.initialized = True
        state.initialized_at = self.clock.now()
        state.frozen = False
        state.maintenance = False
        state.global_allocation_ceiling = self.settings.global_allocation_ceiling
        state.emergency_contact = self.settings.emergency_contact
        state.request_counter = self.store.count(REQUESTS)
        self._save(state)
        logger.info("System initialized by %s", admin)
        return state

    def update_parameters(
        self,
        admin: str,
        new_ceiling: int,
        new_emergency_contact: str,
    ) -> SystemState:
        self.require_admin(admin)
        if not isinstance(new_ceiling, int) or new_ceiling <= 0:
            raise InvalidParameter(f"Ceiling must be positive, got {new_ceiling}")
        if new_ceiling > self.settings.quantity_ceiling:
            raise InvalidParameter(
                f"Ceiling {new_ceiling} exceeds quantity ceiling {self.settings.quantity_ceiling}"
            )
        if not is_valid_principal(new_emergency_contact):
            raise InvalidParameter(f"Malformed emergency contact: {new_emergency_contact!r}")

        state = self.state()
        state.global_allocation_ceiling = new_ceiling
        state.emergency_contact = new_emergency_contact
        self._save(state)
        logger.info(
            "Parameters updated: ceiling=%d emergency_contact=%s",
            new_ceiling, new_emergency_contact,
        )
        return state

    def enter_maintenance(self, admin: str) -> SystemState:
        self.require_admin(admin)
        state = self.state()
        state.maintenance = True
        state.frozen = True
        self._save(state)
        logger.warning("System entered maintenance")
        return state

    def exit_maintenance(self, admin: str) -> SystemState:
        self.require_admin(admin)
        state = self.state()
        state.maintenance = False
        state.frozen = False
        self._save(state)
        logger.info("System exited maintenance")
        return state

    def freeze(self, admin: str) -> SystemState:
        self.require_admin(admin)
        state = self.state()
        state.frozen = True
        self._save(state)
        logger.warning("System frozen")
        return state

    def unfreeze(self, admin: str) -> SystemState:
        self.require_admin(admin)
        state = self.state()
        if state.maintenance:
            raise InvalidParameter("Exit maintenance to unfreeze the system")
        state.frozen = False
        self._save(state)
        logger.info("System unfrozen")
        return state

    def rotate_administrator(self, admin: str, new_admin: str) -> SystemState:
        self.require_admin(admin)
        if not is_valid_principal(new_admin):
            raise InvalidParameter(f"Malformed administrator identity: {new_admin!r}")
        state = self.state()
        state.administrator = new_admin
        self._save(state)
        logger.warning("Administrator rotated: %s -> %s", admin, new_admin)
        return state

    # ── Internal ───────────────────────────────────────────────

    def next_request_id(self) -> int:
        """Consume and return the next request id."""
        state = self.state()
        state.request_counter += 1
        self._save(state)
        return state.request_counter

    def _save(self, state: SystemState) -> None:
        self.store.put(SYSTEM, SYSTEM_STATE_KEY, state.model_dump(mode="json"))
