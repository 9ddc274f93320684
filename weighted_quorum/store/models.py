"""
Intent Store — SQLAlchemy models for durably persisted pending intents.

One row per pending intent. The row carries the intent's running approval
tally and its required role; the role is written once at creation and never
updated. Rows are deleted when the intent executes.
"""

from __future__ import annotations

from sqlalchemy import JSON, Column, DateTime, String, func
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all intent store models."""
    pass


class PendingIntentDB(Base):
    """A pending intent and its approval tally."""

    __tablename__ = "pending_intents"

    key = Column(
        String(255), primary_key=True,
        comment="Opaque intent key chosen by the creator",
    )
    required_role = Column(
        String(255), nullable=False, default="",
        comment="Role whose threshold may execute this intent ('' for none)",
    )

    # Running tally, as decimal strings: u64 sums overflow a signed BIGINT
    total_weight = Column(String(40), nullable=False, default="0")
    role_weight = Column(String(40), nullable=False, default="0")
    approved = Column(
        JSON, nullable=False, default=list,
        comment="Sorted list of approving member addresses",
    )

    # Time gate
    execution_time = Column(
        DateTime(timezone=True), nullable=True,
        comment="Earliest time the intent may execute",
    )
    created_at = Column(
        DateTime(timezone=True), nullable=False, default=func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"<PendingIntentDB key={self.key!r} role={self.required_role!r} "
            f"total={self.total_weight} approvals={len(self.approved or [])}>"
        )
