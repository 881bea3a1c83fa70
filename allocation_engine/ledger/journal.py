"""
Audit Journal — append-only, hash-chained record of committed mutations.

Every successful state-changing service operation appends one entry in the
same store transaction as the change itself, so the journal and the state
can never disagree. The journal provides:
- Append with automatic hash chain computation
- Verification of the full chain
- Lookups of the most recent entries
"""

from __future__ import annotations

import logging
from typing import Any

from allocation_engine.core.clock import Clock
from allocation_engine.core.errors import JournalIntegrityError
from allocation_engine.core.schema import JournalEntry, JournalEventType
from allocation_engine.ledger.store import JOURNAL, StateStore

logger = logging.getLogger(__name__)


GENESIS_HASH = "0" * 64  # The "previous hash" for the first entry in the chain


def _key(sequence_number: int) -> str:
    return f"{sequence_number:012d}"


class AuditJournal:
    """
    Audit journal over a ``StateStore``.

    Usage:
        journal = AuditJournal(store, clock)
        journal.initialize()  # Seed the genesis entry

        journal.append(
            JournalEventType.REQUEST_SUBMITTED,
            actor="alice",
            content={"request_id": 1, "resource_id": 1, "amount": 50},
        )
    """

    def __init__(self, store: StateStore, clock: Clock) -> None:
        self.store = store
        self.clock = clock

    def initialize(self) -> None:
        """Seed the genesis entry if the journal is empty."""
        with self.store.transaction():
            if self.store.get(JOURNAL, _key(0)) is not None:
                return
            genesis = JournalEntry(
                sequence_number=0,
                previous_hash=GENESIS_HASH,
                recorded_at=self.clock.now(),
                event_type=JournalEventType.GENESIS,
                actor="system",
                content={"message": "Genesis of the allocation audit journal"},
            )
            genesis.entry_hash = genesis.compute_hash()
            self.store.put(JOURNAL, _key(0), genesis.model_dump(mode="json"))
            logger.info("Journal genesis created: hash=%s", genesis.entry_hash[:16])

    def append(
        self,
        event_type: JournalEventType,
        actor: str,
        content: dict[str, Any],
    ) -> JournalEntry:
        """
        Append a new entry. This is the only write operation.

        Raises:
            JournalIntegrityError: If the journal has no genesis entry.
        """
        last = self.last_entry()
        if last is None:
            raise JournalIntegrityError(
                "Cannot append: no genesis entry found. Call initialize() first."
            )

        entry = JournalEntry(
            sequence_number=last.sequence_number + 1,
            previous_hash=last.entry_hash,
            recorded_at=self.clock.now(),
            event_type=event_type,
            actor=actor,
            content=content,
        )
        entry.entry_hash = entry.compute_hash()
        self.store.put(JOURNAL, _key(entry.sequence_number), entry.model_dump(mode="json"))

        logger.debug(
            "Journal entry appended: seq=%d type=%s hash=%s",
            entry.sequence_number, event_type.value, entry.entry_hash[:16],
        )
        return entry

    def get_by_sequence(self, sequence_number: int) -> JournalEntry | None:
        raw = self.store.get(JOURNAL, _key(sequence_number))
        return JournalEntry.model_validate(raw) if raw is not None else None

    def last_entry(self) -> JournalEntry | None:
        count = self.store.count(JOURNAL)
        if count == 0:
            return None
        return self.get_by_sequence(count - 1)

    def entry_count(self) -> int:
        return self.store.count(JOURNAL)

    def entries(self) -> list[JournalEntry]:
        """All entries, oldest first."""
        entries = [JournalEntry.model_validate(v) for v in self.store.values(JOURNAL)]
        return sorted(entries, key=lambda e: e.sequence_number)

    def latest_entries(self, limit: int = 50) -> list[JournalEntry]:
        """The most recent entries, newest first."""
        return list(reversed(self.entries()))[:limit]

    def verify_chain(self) -> tuple[bool, int, str]:
        """
        Verify the integrity of the entire hash chain.

        Walks every entry from genesis forward, recomputing each hash and
        checking its linkage to the previous entry.

        Returns:
            Tuple of (is_valid, entries_verified, message).
        """
        entries = self.entries()
        if not entries:
            return False, 0, "No entries found in journal"

        first = entries[0]
        if first.sequence_number != 0:
            return False, 0, f"First entry has sequence {first.sequence_number}, expected 0"
        if first.previous_hash != GENESIS_HASH:
            return False, 0, "Genesis entry has incorrect previous_hash"

        for i, entry in enumerate(entries):
            if entry.sequence_number != i:
                return False, i, f"Gap in journal at sequence {i}"

            expected_hash = entry.compute_hash()
            if entry.entry_hash != expected_hash:
                return (
                    False, i,
                    f"Hash mismatch at sequence {entry.sequence_number}: "
                    f"stored={entry.entry_hash[:16]}... "
                    f"computed={expected_hash[:16]}..."
                )

            if i > 0 and entry.previous_hash != entries[i - 1].entry_hash:
                return (
                    False, i,
                    f"Chain break at sequence {entry.sequence_number}: "
                    f"previous_hash does not match prior entry's hash"
                )

        return (
            True, len(entries),
            f"Chain verified: {len(entries)} entries, integrity intact"
        )
