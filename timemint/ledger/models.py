"""
Audit Trail — SQLAlchemy models for the persisted audit events.

The table is APPEND-ONLY. Rows are never updated or deleted; each stores
the SHA-256 hash of its predecessor so that any retroactive alteration is
detectable by recomputing the chain.
"""

from __future__ import annotations

from sqlalchemy import JSON, Column, Index, Integer, String
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for the audit trail."""
    pass


class AuditEventDB(Base):
    """A single committed audit event."""

    __tablename__ = "audit_events"

    sequence_number = Column(
        Integer, primary_key=True, autoincrement=False,
        comment="Position in the chain, starting at 0",
    )
    event_type = Column(String(50), nullable=False, index=True)
    timestamp = Column(
        Integer, nullable=False,
        comment="Engine timestamp (Unix seconds) of the transition",
    )
    caller = Column(String(100), nullable=False, default="")
    payload = Column(JSON, nullable=False)

    previous_hash = Column(String(64), nullable=False)
    event_hash = Column(String(64), nullable=False, unique=True)

    __table_args__ = (
        Index("ix_audit_type_timestamp", "event_type", "timestamp"),
        Index("ix_audit_caller", "caller"),
    )

    def __repr__(self) -> str:
        return (
            f"<AuditEvent seq={self.sequence_number} "
            f"type={self.event_type} hash={self.event_hash[:12]}...>"
        )
