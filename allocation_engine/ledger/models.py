"""
State Records — SQLAlchemy model backing the key-value state store.

The engine treats persistence as a key-value store of logical tables
(accounts, resources, requests, system, journal). Every record is one row
here, addressed by ``(table_name, record_key)``, with the pydantic model's
JSON dump as its value.
"""

from __future__ import annotations

from sqlalchemy import JSON, Column, DateTime, Index, String, func
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all state models."""
    pass


class StateRecordDB(Base):
    """One record of one logical table."""

    __tablename__ = "state_records"

    table_name = Column(
        String(32), primary_key=True,
        comment="Logical table: accounts, resources, requests, system, journal",
    )
    record_key = Column(
        String(160), primary_key=True,
        comment="Key within the logical table",
    )
    value = Column(
        JSON, nullable=False,
        comment="JSON dump of the pydantic record",
    )
    updated_at = Column(
        DateTime(timezone=True), nullable=False,
        default=func.now(), onupdate=func.now(),
    )

    __table_args__ = (
        Index("ix_state_table", "table_name"),
    )

    def __repr__(self) -> str:
        return f"<StateRecord {self.table_name}/{self.record_key}>"
