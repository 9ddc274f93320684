"""
Weighted Quorum Host — runs the resolution engine against a store of intents.

The engine in ``governance.approvals`` is a set of pure functions. This host
supplies what they leave to collaborators:

- storage of each intent's tally (any IntentStore)
- the caller identity, passed in explicitly as a Caller capability
- a clock for time-gated execution
- serialization: every mutation of one intent runs under that intent's lock,
  so concurrent approvals of the same intent never interleave

Config replacement is accepted at any time but pending tallies are not
reconciled against it; ``weighted_quorum.store.audit`` reports the drift.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

import structlog
from pydantic import BaseModel, Field

from weighted_quorum.config import settings
from weighted_quorum.governance.approvals import approve, disapprove, empty_outcome, validate
from weighted_quorum.registry.errors import IntentNotYetExecutable
from weighted_quorum.registry.schema import Approvals, Multisig
from weighted_quorum.store.service import IntentStore, PendingIntent

log = structlog.get_logger(__name__)


def configure_logging() -> None:
    """Configure structured logging."""
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
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(settings.log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Caller(BaseModel):
    """
    Capability naming who is acting. The host trusts the address as already
    authenticated; it never looks identity up from ambient state.
    """

    model_config = {"frozen": True}

    address: str = Field(min_length=1)


class Executable(BaseModel):
    """Handle returned once an intent has cleared its threshold and been consumed."""

    key: str
    required_role: str
    approved: list[str]
    total_weight: int
    role_weight: int
    executed_at: datetime
    executed_by: str


class _LockSlot:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class IntentHost:
    """
    Serializes approve / disapprove / execute calls per intent.

    Usage:
        host = IntentHost(config, MemoryIntentStore())
        host.create_intent("upgrade-v2", required_role="ops")
        host.approve_intent("upgrade-v2", Caller(address="0xb0b"))
        action = host.execute_intent("upgrade-v2", Caller(address="0xb0b"))
    """

    def __init__(
        self,
        config: Multisig,
        store: IntentStore,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._config = config
        self.store = store
        self.clock = clock or utc_now
        self._locks: dict[str, _LockSlot] = {}
        self._registry_lock = threading.Lock()
        self._registry_warned = False

    @property
    def config(self) -> Multisig:
        return self._config

    # ── Locking ─────────────────────────────────────────────────

    @contextmanager
    def _intent_lock(self, key: str) -> Iterator[None]:
        # A slot lives while anyone holds or waits on it, so every caller
        # for one key shares one lock even across execute and re-create.
        with self._registry_lock:
            slot = self._locks.get(key)
            if slot is None:
                slot = self._locks[key] = _LockSlot()
                if (
                    len(self._locks) >= settings.lock_registry_size_warning
                    and not self._registry_warned
                ):
                    self._registry_warned = True
                    log.warning(
                        "weighted_quorum.host.lock_registry_large",
                        size=len(self._locks),
                    )
            slot.users += 1
        try:
            with slot.lock:
                yield
        finally:
            with self._registry_lock:
                slot.users -= 1
                if slot.users == 0:
                    del self._locks[key]
                    if len(self._locks) < settings.lock_registry_size_warning:
                        self._registry_warned = False

    @property
    def active_lock_slots(self) -> int:
        """Keys with a call currently holding or waiting on their lock."""
        with self._registry_lock:
            return len(self._locks)

    # ── Lifecycle ───────────────────────────────────────────────

    def create_intent(
        self,
        key: str,
        required_role: str = "",
        execution_time: datetime | None = None,
    ) -> PendingIntent:
        """
        Register a new intent with an empty tally.

        Raises:
            RoleNotFound: If ``required_role`` is set but not declared.
            IntentAlreadyExists: If ``key`` is already pending.
        """
        if required_role:
            self._config.role_index(required_role)

        intent = PendingIntent(
            key=key,
            required_role=required_role,
            outcome=empty_outcome(),
            execution_time=execution_time,
            created_at=self.clock(),
        )
        with self._intent_lock(key):
            self.store.add_intent(intent)
        log.info(
            "weighted_quorum.host.intent_created",
            key=key,
            required_role=required_role,
            execution_time=execution_time.isoformat() if execution_time else None,
        )
        return intent

    def approve_intent(self, key: str, caller: Caller) -> Approvals:
        config = self._config
        with self._intent_lock(key):
            role = self.store.get_intent_required_role(key)
            outcome = approve(config, self.store.get_intent_outcome(key), caller.address, role)
            self.store.set_intent_outcome(key, outcome)
        log.info(
            "weighted_quorum.host.approved",
            key=key,
            member=caller.address,
            total_weight=outcome.total_weight,
            role_weight=outcome.role_weight,
        )
        return outcome

    def disapprove_intent(self, key: str, caller: Caller) -> Approvals:
        config = self._config
        with self._intent_lock(key):
            role = self.store.get_intent_required_role(key)
            outcome = disapprove(config, self.store.get_intent_outcome(key), caller.address, role)
            self.store.set_intent_outcome(key, outcome)
        log.info(
            "weighted_quorum.host.disapproved",
            key=key,
            member=caller.address,
            total_weight=outcome.total_weight,
            role_weight=outcome.role_weight,
        )
        return outcome

    def execute_intent(self, key: str, caller: Caller) -> Executable:
        """
        Consume an intent whose tally clears a threshold.

        Raises:
            CallerNotMember: If the caller is not a member.
            IntentNotYetExecutable: If the intent's execution time is in the future.
            ThresholdNotReached: If neither threshold is met; the intent stays pending.
        """
        config = self._config
        config.assert_is_member(caller.address)
        with self._intent_lock(key):
            intent = self.store.get_intent(key)
            now = self.clock()
            if intent.execution_time is not None and now < intent.execution_time:
                raise IntentNotYetExecutable(key, intent.execution_time, now)

            validate(intent.outcome, config, intent.required_role)
            self.store.remove_intent(key)

        log.info(
            "weighted_quorum.host.executed",
            key=key,
            member=caller.address,
            total_weight=intent.outcome.total_weight,
            role_weight=intent.outcome.role_weight,
        )
        return Executable(
            key=key,
            required_role=intent.required_role,
            approved=intent.outcome.approved_addresses(),
            total_weight=intent.outcome.total_weight,
            role_weight=intent.outcome.role_weight,
            executed_at=now,
            executed_by=caller.address,
        )

    # ── Read-only ───────────────────────────────────────────────

    def outcome(self, key: str) -> Approvals:
        return self.store.get_intent_outcome(key)

    def update_config(self, config: Multisig) -> None:
        """
        Swap in a new config. Tallies of pending intents keep the weights
        they were accumulated with.
        """
        pending = len(self.store.list_intents())
        self._config = config
        if pending:
            log.warning(
                "weighted_quorum.host.config_replaced_with_pending_intents",
                pending=pending,
                members=len(config.members),
                global_threshold=config.global_threshold,
            )
        else:
            log.info(
                "weighted_quorum.host.config_replaced",
                members=len(config.members),
                global_threshold=config.global_threshold,
            )
