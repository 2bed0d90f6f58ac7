"""
Audit Log Service — append-only, hash-chained record of every state change.

Committed transitions publish their events here in the order the changes
happened. The in-memory ``AuditLog`` assigns sequence numbers and chain
hashes; an optional ``AuditStore`` mirrors the same events into a SQL
database so that the trail can be audited independently of the process.

    hash = SHA-256(previous_hash || canonical_json(event))
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Protocol

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from timemint.core.schema import AuditEvent, AuditEventType
from timemint.ledger.models import AuditEventDB, Base

logger = logging.getLogger(__name__)


GENESIS_HASH = "0" * 64  # The "previous hash" of the first event


class LedgerIntegrityError(Exception):
    """Raised when the audit chain cannot be extended consistently."""
    pass


class AuditSink(Protocol):
    def append_many(self, events: Sequence[AuditEvent]) -> None: ...


def verify_events(events: list[AuditEvent]) -> tuple[bool, int, str]:
    """
    Walk ``events`` from the first, recomputing each hash and linkage.

    Returns:
        Tuple of (is_valid, entries_verified, message).
    """
    previous_hash = GENESIS_HASH
    for index, event in enumerate(events):
        if event.sequence_number != index:
            return False, index, (
                f"Sequence gap at position {index}: found {event.sequence_number}"
            )
        if event.previous_hash != previous_hash:
            return False, index, (
                f"Chain break at sequence {index}: previous_hash does not "
                f"match prior event's hash"
            )
        expected = event.compute_hash()
        if event.event_hash != expected:
            return False, index, (
                f"Hash mismatch at sequence {index}: "
                f"stored={event.event_hash[:16]}... computed={expected[:16]}..."
            )
        previous_hash = event.event_hash
    return True, len(events), f"Chain verified: {len(events)} events, integrity intact"


class AuditLog:
    """In-memory audit chain with an optional persistent mirror."""

    def __init__(self, sink: AuditSink | None = None) -> None:
        self._events: list[AuditEvent] = []
        self.sink = sink

    def __len__(self) -> int:
        return len(self._events)

    @property
    def head_hash(self) -> str:
        return self._events[-1].event_hash if self._events else GENESIS_HASH

    def append(self, event: AuditEvent) -> AuditEvent:
        return self.extend([event])[0]

    def extend(self, events: Sequence[AuditEvent]) -> list[AuditEvent]:
        """
        Seal ``events`` onto the chain as one batch.

        The sink receives the whole batch first; if it raises, nothing is
        recorded in memory either.
        """
        sealed: list[AuditEvent] = []
        previous_hash = self.head_hash
        for offset, event in enumerate(events):
            item = event.model_copy(
                update={
                    "sequence_number": len(self._events) + offset,
                    "previous_hash": previous_hash,
                }
            )
            item.event_hash = item.compute_hash()
            previous_hash = item.event_hash
            sealed.append(item)

        if sealed and self.sink is not None:
            self.sink.append_many(sealed)
        self._events.extend(sealed)
        return sealed

    def events(self, event_type: AuditEventType | None = None) -> list[AuditEvent]:
        if event_type is None:
            return list(self._events)
        return [event for event in self._events if event.event_type == event_type]

    def latest(self, limit: int = 50, event_type: AuditEventType | None = None) -> list[AuditEvent]:
        """Newest first. A non-positive ``limit`` yields nothing."""
        if limit <= 0:
            return []
        return self.events(event_type)[-limit:][::-1]

    def verify_chain(self) -> tuple[bool, int, str]:
        return verify_events(self._events)


class AuditStore:
    """
    SQL mirror of the audit chain.

    Usage:
        store = AuditStore("sqlite:///timemint_audit.db")
        store.initialize()
        log = AuditLog(sink=store)
    """

    def __init__(self, database_url: str) -> None:
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, or every session would see an empty database
            self.engine = create_engine(
                database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            self.engine = create_engine(database_url, echo=False)
        self.SessionLocal = sessionmaker(bind=self.engine)

    def initialize(self) -> None:
        """Create the audit table if it does not exist."""
        Base.metadata.create_all(self.engine)

    def append(self, event: AuditEvent) -> None:
        self.append_many([event])

    def append_many(self, events: Sequence[AuditEvent]) -> None:
        """
        Persist a sealed batch in a single commit.

        Raises:
            LedgerIntegrityError: if the batch does not extend the stored
                chain; nothing of the batch is written.
        """
        with self.SessionLocal() as session:
            last = session.execute(
                select(AuditEventDB)
                .order_by(AuditEventDB.sequence_number.desc())
                .limit(1)
            ).scalar_one_or_none()
            expected_seq = 0 if last is None else last.sequence_number + 1
            expected_prev = GENESIS_HASH if last is None else last.event_hash

            for event in events:
                if event.sequence_number != expected_seq or event.previous_hash != expected_prev:
                    raise LedgerIntegrityError(
                        f"Event {event.sequence_number} does not extend stored chain "
                        f"(expected sequence {expected_seq})"
                    )
                session.add(
                    AuditEventDB(
                        sequence_number=event.sequence_number,
                        event_type=event.event_type.value,
                        timestamp=event.timestamp,
                        caller=event.caller,
                        payload=event.payload,
                        previous_hash=event.previous_hash,
                        event_hash=event.event_hash,
                    )
                )
                expected_seq += 1
                expected_prev = event.event_hash
            session.commit()

        if events:
            logger.debug(
                "Audit events persisted: seq=%d..%d head=%s",
                events[0].sequence_number, events[-1].sequence_number,
                events[-1].event_hash[:16],
            )

    def load_events(self) -> list[AuditEvent]:
        with self.SessionLocal() as session:
            rows = session.execute(
                select(AuditEventDB).order_by(AuditEventDB.sequence_number.asc())
            ).scalars().all()
            return [self._to_event(row) for row in rows]

    def verify_chain(self) -> tuple[bool, int, str]:
        events = self.load_events()
        if not events:
            return True, 0, "No events recorded"
        return verify_events(events)

    def get_latest_events(self, limit: int = 50) -> list[AuditEvent]:
        with self.SessionLocal() as session:
            rows = session.execute(
                select(AuditEventDB)
                .order_by(AuditEventDB.sequence_number.desc())
                .limit(limit)
            ).scalars().all()
            return [self._to_event(row) for row in rows]

    def get_events_by_type(self, event_type: AuditEventType, limit: int = 100) -> list[AuditEvent]:
        with self.SessionLocal() as session:
            rows = session.execute(
                select(AuditEventDB)
                .where(AuditEventDB.event_type == event_type.value)
                .order_by(AuditEventDB.sequence_number.desc())
                .limit(limit)
            ).scalars().all()
            return [self._to_event(row) for row in rows]

    def get_event_count(self) -> int:
        with self.SessionLocal() as session:
            result = session.execute(select(func.count()).select_from(AuditEventDB))
            return result.scalar() or 0

    def count_by_type(self) -> dict[str, int]:
        with self.SessionLocal() as session:
            rows = session.execute(
                select(AuditEventDB.event_type, func.count())
                .group_by(AuditEventDB.event_type)
                .order_by(AuditEventDB.event_type)
            ).all()
            return {event_type: count for event_type, count in rows}

    @staticmethod
    def _to_event(row: AuditEventDB) -> AuditEvent:
        return AuditEvent(
            sequence_number=row.sequence_number,
            event_type=AuditEventType(row.event_type),
            timestamp=row.timestamp,
            caller=row.caller,
            payload=row.payload,
            previous_hash=row.previous_hash,
            event_hash=row.event_hash,
        )
