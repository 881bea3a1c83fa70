"""
Allocation Engine — bootstrap.

Configures structured logging and wires the service from settings:
1. Configure structlog (JSON or console rendering)
2. Build the state store (in-memory or SQL)
3. Build the clock and the service, seeding the audit journal

This is the entrypoint for the ``allocation-engine`` command.
"""

from __future__ import annotations

import logging
import sys

import structlog

from allocation_engine.config import AllocationSettings, settings as default_settings
from allocation_engine.service import AllocationService


def configure_logging(settings: AllocationSettings | None = None) -> None:
    """Configure structured logging."""
    settings = settings or default_settings
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(level=level, stream=sys.stderr, format="%(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            (
                structlog.dev.ConsoleRenderer()
                if settings.log_format != "json"
                else structlog.processors.JSONRenderer()
            ),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def build_service(settings: AllocationSettings | None = None) -> AllocationService:
    """Build a fully wired service from settings."""
    return AllocationService(settings or default_settings)


def main() -> None:
    settings = default_settings
    configure_logging(settings)
    log = structlog.get_logger()

    log.info(
        "allocation.bootstrap.starting",
        administrator=settings.administrator_id,
        storage="sql" if settings.database_url else "memory",
        clock=settings.clock,
    )
    service = build_service(settings)

    is_valid, entries, message = service.verify_journal()
    status = service.get_system_status()
    log.info(
        "allocation.bootstrap.ready",
        initialized=status.initialized,
        frozen=status.frozen,
        maintenance=status.maintenance,
        ceiling=status.ceiling,
        journal_valid=is_valid,
        journal_entries=entries,
    )
    if not is_valid:
        log.error("allocation.bootstrap.journal_invalid", reason=message)
        sys.exit(1)


if __name__ == "__main__":
    main()
