"""
Intent Store Service — durable storage of pending intents keyed by opaque strings.

The approval engine itself is storage-agnostic. It needs the host to:
- fetch and replace the running tally of an intent
- report the role an intent was created with
- drop an intent once it has executed

Two implementations share the IntentStore protocol:
- MemoryIntentStore — dict-backed, for tests and embedded hosts
- SqlIntentStore    — SQLAlchemy-backed, one row per pending intent

Usage:
    store = SqlIntentStore(settings.database_url)
    store.initialize()
    store.add_intent(PendingIntent(key="pay-rent", required_role="treasury"))
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Protocol

from pydantic import AwareDatetime, BaseModel, Field
from sqlalchemy import create_engine, delete, func, select
from sqlalchemy.orm import sessionmaker

from weighted_quorum.governance.approvals import empty_outcome
from weighted_quorum.registry.errors import IntentAlreadyExists, IntentNotFound
from weighted_quorum.registry.schema import Approvals
from weighted_quorum.store.models import Base, PendingIntentDB

logger = logging.getLogger(__name__)


def _utc(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back out
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _to_utc(value: datetime | None) -> datetime | None:
    return value.astimezone(timezone.utc) if value is not None else None


class PendingIntent(BaseModel):
    """An intent awaiting approval, as held by a store."""

    key: str = Field(min_length=1)
    required_role: str = Field(
        default="", description="Role whose threshold may execute this intent"
    )
    outcome: Approvals = Field(default_factory=empty_outcome)
    execution_time: AwareDatetime | None = Field(
        default=None, description="Earliest time the intent may execute"
    )
    created_at: AwareDatetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class IntentStore(Protocol):
    """Storage interface the host runs the engine against."""

    def add_intent(self, intent: PendingIntent) -> None: ...

    def has_intent(self, key: str) -> bool: ...

    def get_intent(self, key: str) -> PendingIntent: ...

    def get_intent_outcome(self, key: str) -> Approvals: ...

    def set_intent_outcome(self, key: str, outcome: Approvals) -> None: ...

    def get_intent_required_role(self, key: str) -> str: ...

    def remove_intent(self, key: str) -> PendingIntent: ...

    def list_intents(self) -> list[PendingIntent]: ...


# ════════════════════════════════════════════════════════════════
# In-Memory Store
# ════════════════════════════════════════════════════════════════


class MemoryIntentStore:
    """Dict-backed store. Not durable; intents vanish with the process."""

    def __init__(self) -> None:
        self._intents: dict[str, PendingIntent] = {}

    def add_intent(self, intent: PendingIntent) -> None:
        if intent.key in self._intents:
            raise IntentAlreadyExists(intent.key)
        self._intents[intent.key] = intent

    def has_intent(self, key: str) -> bool:
        return key in self._intents

    def get_intent(self, key: str) -> PendingIntent:
        try:
            return self._intents[key]
        except KeyError:
            raise IntentNotFound(key) from None

    def get_intent_outcome(self, key: str) -> Approvals:
        return self.get_intent(key).outcome

    def set_intent_outcome(self, key: str, outcome: Approvals) -> None:
        intent = self.get_intent(key)
        self._intents[key] = intent.model_copy(update={"outcome": outcome})

    def get_intent_required_role(self, key: str) -> str:
        return self.get_intent(key).required_role

    def remove_intent(self, key: str) -> PendingIntent:
        intent = self.get_intent(key)
        del self._intents[key]
        return intent

    def list_intents(self) -> list[PendingIntent]:
        return list(self._intents.values())


# ════════════════════════════════════════════════════════════════
# SQL Store
# ════════════════════════════════════════════════════════════════


class SqlIntentStore:
    """
    SQLAlchemy-backed store. Every call runs in its own session and commits
    before returning, so a written tally is durable once the call returns.
    """

    def __init__(self, database_url: str) -> None:
        """
        Args:
            database_url: SQLAlchemy connection string (sync driver).
        """
        self.engine = create_engine(database_url, echo=False)
        self.SessionLocal = sessionmaker(bind=self.engine)

    def initialize(self) -> None:
        """Create the intent table if it does not exist."""
        Base.metadata.create_all(self.engine)
        logger.info("Intent store initialized: %s", self.engine.url.render_as_string())

    def add_intent(self, intent: PendingIntent) -> None:
        with self.SessionLocal() as session:
            if session.get(PendingIntentDB, intent.key) is not None:
                raise IntentAlreadyExists(intent.key)
            session.add(
                PendingIntentDB(
                    key=intent.key,
                    required_role=intent.required_role,
                    total_weight=str(intent.outcome.total_weight),
                    role_weight=str(intent.outcome.role_weight),
                    approved=intent.outcome.approved_addresses(),
                    execution_time=_to_utc(intent.execution_time),
                    created_at=_to_utc(intent.created_at),
                )
            )
            session.commit()
        logger.info(
            "Intent stored: key=%s role=%s", intent.key, intent.required_role or "-",
        )

    def has_intent(self, key: str) -> bool:
        with self.SessionLocal() as session:
            return session.get(PendingIntentDB, key) is not None

    def get_intent(self, key: str) -> PendingIntent:
        with self.SessionLocal() as session:
            row = session.get(PendingIntentDB, key)
            if row is None:
                raise IntentNotFound(key)
            return self._to_model(row)

    def get_intent_outcome(self, key: str) -> Approvals:
        return self.get_intent(key).outcome

    def set_intent_outcome(self, key: str, outcome: Approvals) -> None:
        with self.SessionLocal() as session:
            row = session.get(PendingIntentDB, key)
            if row is None:
                raise IntentNotFound(key)
            row.total_weight = str(outcome.total_weight)
            row.role_weight = str(outcome.role_weight)
            row.approved = outcome.approved_addresses()
            session.commit()

    def get_intent_required_role(self, key: str) -> str:
        with self.SessionLocal() as session:
            role = session.execute(
                select(PendingIntentDB.required_role).where(PendingIntentDB.key == key)
            ).scalar_one_or_none()
            if role is None:
                raise IntentNotFound(key)
            return role

    def remove_intent(self, key: str) -> PendingIntent:
        with self.SessionLocal() as session:
            row = session.get(PendingIntentDB, key)
            if row is None:
                raise IntentNotFound(key)
            intent = self._to_model(row)
            session.execute(delete(PendingIntentDB).where(PendingIntentDB.key == key))
            session.commit()
        logger.info("Intent removed: key=%s", key)
        return intent

    def list_intents(self) -> list[PendingIntent]:
        with self.SessionLocal() as session:
            rows = session.execute(
                select(PendingIntentDB).order_by(PendingIntentDB.key.asc())
            ).scalars().all()
            return [self._to_model(row) for row in rows]

    def count(self) -> int:
        with self.SessionLocal() as session:
            return session.execute(
                select(func.count()).select_from(PendingIntentDB)
            ).scalar() or 0

    # ── Internal ────────────────────────────────────────────────

    @staticmethod
    def _to_model(row: PendingIntentDB) -> PendingIntent:
        return PendingIntent(
            key=row.key,
            required_role=row.required_role,
            outcome=Approvals(
                total_weight=int(row.total_weight),
                role_weight=int(row.role_weight),
                approved=frozenset(row.approved or []),
            ),
            execution_time=_utc(row.execution_time),
            created_at=_utc(row.created_at),
        )
