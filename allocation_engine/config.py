"""Allocation Engine — Application configuration via environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings

from allocation_engine.core.schema import (
    DEPENDENCY_CAPACITY,
    HISTORY_CAPACITY,
    MAX_JUSTIFICATION_LENGTH,
    MAX_NAME_LENGTH,
)


class AllocationSettings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "ALLOC_",
        "extra": "ignore",
    }

    # ── Authority ──────────────────────────────────────────────
    administrator_id: str = "admin"
    emergency_contact: str = "admin"

    # ── Allocation limits ──────────────────────────────────────
    global_allocation_ceiling: int = 1_000_000
    quantity_ceiling: int = 1_000_000_000_000
    request_expiration_window: int = 144
    history_capacity: int = HISTORY_CAPACITY
    dependency_capacity: int = DEPENDENCY_CAPACITY
    max_name_length: int = MAX_NAME_LENGTH
    max_justification_length: int = MAX_JUSTIFICATION_LENGTH

    # ── Storage ────────────────────────────────────────────────
    # Empty means the in-memory store.
    database_url: str = ""

    # ── Clock ──────────────────────────────────────────────────
    clock: str = "tick"

    # ── Logging ────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "json"


settings = AllocationSettings()
