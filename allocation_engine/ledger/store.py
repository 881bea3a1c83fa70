"""
State Store — the abstract key-value persistence boundary.

Components never talk to a database directly. They read and write JSON
records of logical tables through a ``StateStore``, and every public service
operation runs inside ``store.transaction()`` so that it either fully commits
or leaves no trace.

Two implementations are provided:
- ``InMemoryStateStore`` — dictionaries with undo-log transactions
- ``SqlStateStore``      — one SQLAlchemy session per outermost transaction
"""

from __future__ import annotations

import copy
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from allocation_engine.ledger.models import Base, StateRecordDB

logger = logging.getLogger(__name__)

ACCOUNTS = "accounts"
RESOURCES = "resources"
REQUESTS = "requests"
SYSTEM = "system"
JOURNAL = "journal"

TABLES = (ACCOUNTS, RESOURCES, REQUESTS, SYSTEM, JOURNAL)

# The single record of the SYSTEM table
SYSTEM_STATE_KEY = "state"


class StateStore(ABC):
    """Key-value store of JSON records grouped into logical tables."""

    @abstractmethod
    def get(self, table: str, key: str) -> dict[str, Any] | None:
        ...

    @abstractmethod
    def put(self, table: str, key: str, value: dict[str, Any]) -> None:
        ...

    @abstractmethod
    def values(self, table: str) -> list[dict[str, Any]]:
        """All records of a table, in no particular order."""

    @abstractmethod
    def count(self, table: str) -> int:
        ...

    @abstractmethod
    @contextmanager
    def transaction(self, readonly: bool = False) -> Iterator[None]:
        """
        All-or-nothing boundary; nested calls join the outer transaction.

        A ``readonly`` transaction only groups reads and never commits.
        """


class InMemoryStateStore(StateStore):
    """Process-local store. Rollback replays an undo log of overwritten records."""

    def __init__(self) -> None:
        self._tables: dict[str, dict[str, dict[str, Any]]] = {t: {} for t in TABLES}
        self._depth = 0
        self._undo: list[tuple[str, str, dict[str, Any] | None]] | None = None

    def get(self, table: str, key: str) -> dict[str, Any] | None:
        record = self._tables[table].get(key)
        return copy.deepcopy(record) if record is not None else None

    def put(self, table: str, key: str, value: dict[str, Any]) -> None:
        if self._depth and self._undo is None:
            raise RuntimeError(f"Write to {table}/{key} inside a read-only transaction")
        if self._undo is not None:
            # Stored records are never mutated in place, so keeping the reference is enough
            self._undo.append((table, key, self._tables[table].get(key)))
        self._tables[table][key] = copy.deepcopy(value)

    def values(self, table: str) -> list[dict[str, Any]]:
        return [copy.deepcopy(v) for v in self._tables[table].values()]

    def count(self, table: str) -> int:
        return len(self._tables[table])

    @contextmanager
    def transaction(self, readonly: bool = False) -> Iterator[None]:
        if self._depth:
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
            return

        self._depth = 1
        self._undo = None if readonly else []
        try:
            yield
        except BaseException:
            self._rollback()
            raise
        finally:
            self._depth = 0
            self._undo = None

    def _rollback(self) -> None:
        if not self._undo:
            return
        for table, key, previous in reversed(self._undo):
            if previous is None:
                self._tables[table].pop(key, None)
            else:
                self._tables[table][key] = previous
        logger.debug("Rolled back %d record writes", len(self._undo))


class SqlStateStore(StateStore):
    """
    SQLAlchemy-backed store.

    Usage:
        store = SqlStateStore("sqlite:///allocations.db")
        store.initialize()  # Create tables
    """

    def __init__(self, database_url: str) -> None:
        """
        Args:
            database_url: SQLAlchemy connection string (sync driver).
        """
        kwargs: dict[str, Any] = {"echo": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # A single shared connection, otherwise every checkout sees a new database
            kwargs.update(
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        self.engine = create_engine(database_url, **kwargs)
        self.SessionLocal = sessionmaker(bind=self.engine)
        self._session: Session | None = None

    def initialize(self) -> None:
        """Create the state table if it does not exist."""
        Base.metadata.create_all(self.engine)
        logger.info("State store schema ready: %s", self.engine.url.render_as_string())

    @contextmanager
    def _use_session(self) -> Iterator[Session]:
        if self._session is not None:
            yield self._session
            return
        with self.transaction():
            yield self._session

    def get(self, table: str, key: str) -> dict[str, Any] | None:
        with self._use_session() as session:
            record = session.get(StateRecordDB, (table, key))
            return copy.deepcopy(record.value) if record is not None else None

    def put(self, table: str, key: str, value: dict[str, Any]) -> None:
        with self._use_session() as session:
            record = session.get(StateRecordDB, (table, key))
            if record is None:
                session.add(
                    StateRecordDB(table_name=table, record_key=key, value=copy.deepcopy(value))
                )
                session.flush()
            else:
                record.value = copy.deepcopy(value)

    def values(self, table: str) -> list[dict[str, Any]]:
        with self._use_session() as session:
            rows = session.execute(
                select(StateRecordDB.value).where(StateRecordDB.table_name == table)
            ).scalars().all()
            return [copy.deepcopy(v) for v in rows]

    def count(self, table: str) -> int:
        with self._use_session() as session:
            result = session.execute(
                select(func.count())
                .select_from(StateRecordDB)
                .where(StateRecordDB.table_name == table)
            )
            return result.scalar() or 0

    @contextmanager
    def transaction(self, readonly: bool = False) -> Iterator[None]:
        if self._session is not None:
            yield
            return

        session = self.SessionLocal()
        self._session = session
        try:
            yield
            if readonly:
                session.rollback()
            else:
                session.commit()
        except BaseException:
            session.rollback()
            raise
        finally:
            self._session = None
            session.close()


def make_store(database_url: str) -> StateStore:
    """Build the configured store; an empty URL selects the in-memory store."""
    if not database_url:
        return InMemoryStateStore()
    store = SqlStateStore(database_url)
    store.initialize()
    return store
