"""
Tests for the Intent Host.

Validates:
- Intent lifecycle (create → approve → execute)
- Execution gating by threshold, membership and execution time
- Concurrent approvals of one intent are serialized
- Lock slots are shared by every waiter and freed when the last one leaves
- Config replacement leaves pending tallies alone
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timedelta, timezone

import pytest
import structlog
import structlog.testing

from weighted_quorum.config import settings
from weighted_quorum.host import Caller, Executable, IntentHost, configure_logging
from weighted_quorum.registry.builder import build_config
from weighted_quorum.registry.errors import (
    AlreadyApproved,
    CallerNotMember,
    IntentAlreadyExists,
    IntentNotFound,
    IntentNotYetExecutable,
    NotApproved,
    RoleNotFound,
    ThresholdNotReached,
)
from weighted_quorum.registry.schema import U64_MAX, Approvals
from weighted_quorum.store.service import MemoryIntentStore, SqlIntentStore

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _config():
    return build_config(
        addresses=["A", "B", "C", "D"],
        weights=[1, 2, 3, 4],
        member_roles=[[], ["ops"], ["ops"], []],
        global_threshold=10,
        role_names=["ops"],
        role_thresholds=[5],
    )


class TestIntentHost:

    def setup_method(self):
        self.clock = FixedClock(NOW)
        self.host = IntentHost(_config(), MemoryIntentStore(), clock=self.clock)

    def test_create_intent(self):
        intent = self.host.create_intent("upgrade", required_role="ops")
        assert intent.outcome.total_weight == 0
        assert intent.created_at == NOW
        assert self.host.store.has_intent("upgrade")

    def test_create_intent_unknown_role(self):
        with pytest.raises(RoleNotFound):
            self.host.create_intent("upgrade", required_role="treasury")
        assert not self.host.store.has_intent("upgrade")

    def test_create_duplicate(self):
        self.host.create_intent("upgrade")
        with pytest.raises(IntentAlreadyExists):
            self.host.create_intent("upgrade")

    def test_approve_and_execute_via_role(self):
        self.host.create_intent("upgrade", required_role="ops")
        self.host.approve_intent("upgrade", Caller(address="B"))
        outcome = self.host.approve_intent("upgrade", Caller(address="C"))
        assert outcome.role_weight == 5

        action = self.host.execute_intent("upgrade", Caller(address="A"))
        assert isinstance(action, Executable)
        assert action.approved == ["B", "C"]
        assert action.executed_at == NOW
        assert action.executed_by == "A"
        assert not self.host.store.has_intent("upgrade")

    def test_execute_below_threshold_keeps_intent(self):
        self.host.create_intent("upgrade")
        self.host.approve_intent("upgrade", Caller(address="D"))
        with pytest.raises(ThresholdNotReached):
            self.host.execute_intent("upgrade", Caller(address="D"))
        assert self.host.outcome("upgrade").total_weight == 4

    def test_execute_twice(self):
        self.host.create_intent("upgrade", required_role="ops")
        self.host.approve_intent("upgrade", Caller(address="B"))
        self.host.approve_intent("upgrade", Caller(address="C"))
        self.host.execute_intent("upgrade", Caller(address="B"))
        with pytest.raises(IntentNotFound):
            self.host.execute_intent("upgrade", Caller(address="B"))

    def test_execute_by_non_member(self):
        self.host.create_intent("upgrade", required_role="ops")
        with pytest.raises(CallerNotMember):
            self.host.execute_intent("upgrade", Caller(address="Z"))

    def test_time_gated_execution(self):
        later = NOW + timedelta(hours=1)
        self.host.create_intent("upgrade", required_role="ops", execution_time=later)
        self.host.approve_intent("upgrade", Caller(address="B"))
        self.host.approve_intent("upgrade", Caller(address="C"))

        with pytest.raises(IntentNotYetExecutable):
            self.host.execute_intent("upgrade", Caller(address="B"))
        assert self.host.store.has_intent("upgrade")

        self.clock.now = later
        action = self.host.execute_intent("upgrade", Caller(address="B"))
        assert action.executed_at == later

    def test_rejections_surface_unchanged(self):
        self.host.create_intent("upgrade")
        self.host.approve_intent("upgrade", Caller(address="A"))
        with pytest.raises(AlreadyApproved):
            self.host.approve_intent("upgrade", Caller(address="A"))
        with pytest.raises(NotApproved):
            self.host.disapprove_intent("upgrade", Caller(address="B"))
        with pytest.raises(CallerNotMember):
            self.host.approve_intent("upgrade", Caller(address="Z"))
        assert self.host.outcome("upgrade").approved == {"A"}

    def test_disapprove(self):
        self.host.create_intent("upgrade")
        self.host.approve_intent("upgrade", Caller(address="C"))
        outcome = self.host.disapprove_intent("upgrade", Caller(address="C"))
        assert outcome.total_weight == 0
        assert outcome.approved == frozenset()

    def test_unknown_intent(self):
        with pytest.raises(IntentNotFound):
            self.host.approve_intent("nope", Caller(address="A"))

    def test_update_config_keeps_stale_tally(self):
        self.host.create_intent("upgrade")
        self.host.approve_intent("upgrade", Caller(address="D"))
        reweighted = build_config(
            addresses=["A", "B", "C", "D"],
            weights=[1, 2, 3, 9],
            member_roles=[[], ["ops"], ["ops"], []],
            global_threshold=10,
            role_names=["ops"],
            role_thresholds=[5],
        )
        self.host.update_config(reweighted)
        assert self.host.config is reweighted
        assert self.host.outcome("upgrade").total_weight == 4


class TestConcurrentApprovals:

    def test_parallel_approvals_all_land(self):
        addresses = [f"m{i:02d}" for i in range(16)]
        config = build_config(
            addresses=addresses,
            weights=list(range(1, 17)),
            member_roles=[[] for _ in addresses],
            global_threshold=136,
            role_names=[],
            role_thresholds=[],
        )
        host = IntentHost(config, MemoryIntentStore())
        host.create_intent("upgrade")

        barrier = threading.Barrier(len(addresses))
        errors: list[Exception] = []

        def cast(address: str) -> None:
            barrier.wait()
            try:
                host.approve_intent("upgrade", Caller(address=address))
            except Exception as exc:  # pragma: no cover - surfaced below
                errors.append(exc)

        threads = [threading.Thread(target=cast, args=(a,)) for a in addresses]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        outcome = host.outcome("upgrade")
        assert outcome.total_weight == 136
        assert outcome.approved == set(addresses)
        host.execute_intent("upgrade", Caller(address="m00"))


class TestSqlBackedHost:

    def test_lifecycle_against_sqlite(self, tmp_path):
        store = SqlIntentStore(f"sqlite:///{tmp_path / 'intents.db'}")
        store.initialize()
        host = IntentHost(_config(), store, clock=FixedClock(NOW))

        host.create_intent("upgrade", required_role="ops")
        host.approve_intent("upgrade", Caller(address="B"))
        host.approve_intent("upgrade", Caller(address="C"))
        assert store.get_intent_outcome("upgrade").role_weight == 5

        action = host.execute_intent("upgrade", Caller(address="D"))
        assert action.role_weight == 5
        assert store.count() == 0


class TestConfigureLogging:

    def test_configures_structlog(self):
        configure_logging()
        try:
            assert structlog.is_configured()
        finally:
            structlog.reset_defaults()

    def test_lowercase_level_accepted(self, monkeypatch):
        monkeypatch.setattr(settings, "log_level", "info")
        configure_logging()
        try:
            assert structlog.get_config()["wrapper_class"] is (
                structlog.make_filtering_bound_logger(logging.INFO)
            )
        finally:
            structlog.reset_defaults()


class GatedStore(MemoryIntentStore):
    """Parks a named thread inside a store call until the test releases it."""

    def __init__(self) -> None:
        super().__init__()
        self._gates: dict[tuple[str, str], tuple[threading.Event, threading.Event]] = {}

    def gate(self, method: str, thread_name: str) -> tuple[threading.Event, threading.Event]:
        entered, release = threading.Event(), threading.Event()
        self._gates[(method, thread_name)] = (entered, release)
        return entered, release

    def _pause(self, method: str) -> None:
        gate = self._gates.pop((method, threading.current_thread().name), None)
        if gate is not None:
            entered, release = gate
            entered.set()
            release.wait(timeout=5)

    def get_intent_required_role(self, key: str) -> str:
        self._pause("get_intent_required_role")
        return super().get_intent_required_role(key)

    def remove_intent(self, key: str):
        self._pause("remove_intent")
        return super().remove_intent(key)


def _wait_for(condition, timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while not condition():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        time.sleep(0.005)


class TestIntentLockSlots:

    def setup_method(self):
        self.store = GatedStore()
        self.host = IntentHost(_config(), self.store, clock=FixedClock(NOW))

    def test_waiter_keeps_lock_across_execute_and_recreate(self):
        self.host.create_intent("k", required_role="ops")
        self.host.approve_intent("k", Caller(address="B"))
        self.host.approve_intent("k", Caller(address="C"))

        exec_entered, exec_release = self.store.gate("remove_intent", "exec")
        slow_entered, slow_release = self.store.gate("get_intent_required_role", "slow")
        results: dict[str, object] = {}

        def execute() -> None:
            results["exec"] = self.host.execute_intent("k", Caller(address="B"))

        def late_approve() -> None:
            try:
                self.host.approve_intent("k", Caller(address="D"))
            except IntentNotFound as exc:
                results["slow"] = exc

        def recreate() -> None:
            results["other"] = self.host.create_intent("k")

        executor = threading.Thread(target=execute, name="exec")
        executor.start()
        assert exec_entered.wait(timeout=5)

        approver = threading.Thread(target=late_approve, name="slow")
        approver.start()
        _wait_for(lambda: self.host._locks["k"].users == 2)

        exec_release.set()
        executor.join(timeout=5)
        assert slow_entered.wait(timeout=5)

        creator = threading.Thread(target=recreate, name="other")
        creator.start()
        creator.join(timeout=0.2)
        # The re-create queues behind the approval still holding the old lock
        assert creator.is_alive()
        assert "other" not in results

        slow_release.set()
        approver.join(timeout=5)
        creator.join(timeout=5)

        assert isinstance(results["exec"], Executable)
        assert isinstance(results["slow"], IntentNotFound)
        assert self.host.outcome("k") == Approvals()
        assert self.host.active_lock_slots == 0

    def test_unknown_keys_leave_no_slots(self):
        for i in range(1000):
            with pytest.raises(IntentNotFound):
                self.host.approve_intent(f"missing-{i}", Caller(address="A"))
        assert self.host.active_lock_slots == 0

    def test_failed_create_leaves_no_slot(self):
        self.host.create_intent("k")
        with pytest.raises(IntentAlreadyExists):
            self.host.create_intent("k")
        assert self.host.active_lock_slots == 0

    def test_pending_intents_hold_no_slots(self):
        for i in range(10):
            self.host.create_intent(f"k{i}")
            self.host.approve_intent(f"k{i}", Caller(address="A"))
        assert self.host.active_lock_slots == 0

    def test_registry_warning_rearms(self, monkeypatch):
        monkeypatch.setattr(settings, "lock_registry_size_warning", 1)
        with structlog.testing.capture_logs() as logs:
            self.host.create_intent("a")
            self.host.create_intent("b")
        warnings = [e for e in logs if e["event"] == "weighted_quorum.host.lock_registry_large"]
        assert len(warnings) == 2


class TestLargeWeights:

    def test_u64_weights_through_sqlite(self, tmp_path):
        config = build_config(
            addresses=["A", "B"],
            weights=[U64_MAX, U64_MAX],
            member_roles=[["ops"], ["ops"]],
            global_threshold=U64_MAX,
            role_names=["ops"],
            role_thresholds=[U64_MAX],
        )
        store = SqlIntentStore(f"sqlite:///{tmp_path / 'intents.db'}")
        store.initialize()
        host = IntentHost(config, store, clock=FixedClock(NOW))

        host.create_intent("mint", required_role="ops")
        host.approve_intent("mint", Caller(address="A"))
        outcome = host.approve_intent("mint", Caller(address="B"))
        assert outcome.total_weight == 2 * U64_MAX
        assert store.get_intent_outcome("mint").role_weight == 2 * U64_MAX

        action = host.execute_intent("mint", Caller(address="A"))
        assert action.total_weight == 2 * U64_MAX
        assert store.count() == 0
