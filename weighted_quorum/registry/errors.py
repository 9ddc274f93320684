"""
Quorum Errors — the failure taxonomy of the approval engine.

Every error is a local, synchronous logic error. None of them is transient,
so nothing in this package retries on them: the host surfaces the error to
the caller verbatim and the caller re-issues the request once the underlying
condition has changed (e.g. more approvals arrived, membership granted).

Hierarchy:
    QuorumError
    ├── ConfigInvalid
    │   ├── LengthMismatch (MembersLengthMismatch, RolesLengthMismatch)
    │   ├── GlobalThresholdZero
    │   ├── ThresholdUnreachable (GlobalThresholdUnreachable, RoleThresholdUnreachable)
    │   ├── UndeclaredRole
    │   ├── DuplicateMember
    │   ├── EmptyRoleName
    │   └── DuplicateRole
    ├── MemberNotFound
    ├── RoleNotFound
    ├── CallerNotMember
    ├── AlreadyApproved
    ├── NotApproved
    ├── ThresholdNotReached
    ├── IntentNotFound
    ├── IntentAlreadyExists
    └── IntentNotYetExecutable
"""

from __future__ import annotations

from datetime import datetime


class QuorumError(Exception):
    """Base class for all approval engine errors."""


# ════════════════════════════════════════════════════════════════
# Config construction
# ════════════════════════════════════════════════════════════════


class ConfigInvalid(QuorumError):
    """A proposed member/role configuration is internally inconsistent."""


class LengthMismatch(ConfigInvalid):
    """Parallel input lists do not line up."""


class MembersLengthMismatch(LengthMismatch):
    def __init__(self, addresses: int, weights: int, roles: int) -> None:
        self.addresses = addresses
        self.weights = weights
        self.roles = roles
        super().__init__(
            f"Member lists differ in length: {addresses} addresses, "
            f"{weights} weights, {roles} role sets"
        )


class RolesLengthMismatch(LengthMismatch):
    def __init__(self, names: int, thresholds: int) -> None:
        self.names = names
        self.thresholds = thresholds
        super().__init__(
            f"Role lists differ in length: {names} names, {thresholds} thresholds"
        )


class GlobalThresholdZero(ConfigInvalid):
    def __init__(self) -> None:
        super().__init__("Global threshold must be at least 1")


class ThresholdUnreachable(ConfigInvalid):
    """A threshold exceeds the weight that could ever be accumulated for it."""

    def __init__(self, message: str, threshold: int, available: int) -> None:
        self.threshold = threshold
        self.available = available
        super().__init__(message)


class GlobalThresholdUnreachable(ThresholdUnreachable):
    def __init__(self, threshold: int, available: int) -> None:
        super().__init__(
            f"Global threshold {threshold} exceeds total member weight {available}",
            threshold,
            available,
        )


class RoleThresholdUnreachable(ThresholdUnreachable):
    def __init__(self, role: str, threshold: int, available: int) -> None:
        self.role = role
        super().__init__(
            f"Role '{role}' threshold {threshold} exceeds the weight "
            f"of its holders ({available})",
            threshold,
            available,
        )


class UndeclaredRole(ConfigInvalid):
    def __init__(self, role: str) -> None:
        self.role = role
        super().__init__(f"Role '{role}' is held by a member but was never declared")


class DuplicateMember(ConfigInvalid):
    def __init__(self, address: str) -> None:
        self.address = address
        super().__init__(f"Member {address} is listed more than once")


class DuplicateRole(ConfigInvalid):
    def __init__(self, role: str) -> None:
        self.role = role
        super().__init__(f"Role '{role}' is declared more than once")


class EmptyRoleName(ConfigInvalid):
    def __init__(self) -> None:
        super().__init__("Role names must be non-empty; '' means 'no role'")


# ════════════════════════════════════════════════════════════════
# Registry lookups
# ════════════════════════════════════════════════════════════════


class MemberNotFound(QuorumError):
    def __init__(self, address: str) -> None:
        self.address = address
        super().__init__(f"No member with address {address}")


class RoleNotFound(QuorumError):
    def __init__(self, role: str) -> None:
        self.role = role
        super().__init__(f"No role named '{role}'")


class CallerNotMember(QuorumError):
    def __init__(self, address: str) -> None:
        self.address = address
        super().__init__(f"Caller {address} is not a member of this group")


# ════════════════════════════════════════════════════════════════
# Approval state transitions
# ════════════════════════════════════════════════════════════════


class AlreadyApproved(QuorumError):
    def __init__(self, address: str) -> None:
        self.address = address
        super().__init__(f"{address} has already approved this intent")


class NotApproved(QuorumError):
    def __init__(self, address: str) -> None:
        self.address = address
        super().__init__(f"{address} has not approved this intent")


class ThresholdNotReached(QuorumError):
    """
    Approval weight is still below every applicable threshold.

    This is the expected state of a young intent, not a defect: more
    approvals may arrive later.
    """

    def __init__(
        self,
        total_weight: int,
        global_threshold: int,
        role: str = "",
        role_weight: int = 0,
        role_threshold: int | None = None,
    ) -> None:
        self.total_weight = total_weight
        self.global_threshold = global_threshold
        self.role = role
        self.role_weight = role_weight
        self.role_threshold = role_threshold
        message = f"Approved weight {total_weight} < global threshold {global_threshold}"
        if role_threshold is not None:
            message += f"; role '{role}' weight {role_weight} < {role_threshold}"
        super().__init__(message)


# ════════════════════════════════════════════════════════════════
# Host intent lifecycle
# ════════════════════════════════════════════════════════════════


class IntentNotFound(QuorumError):
    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"No pending intent with key '{key}'")


class IntentAlreadyExists(QuorumError):
    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"An intent with key '{key}' is already pending")


class IntentNotYetExecutable(QuorumError):
    def __init__(self, key: str, execution_time: datetime, now: datetime) -> None:
        self.key = key
        self.execution_time = execution_time
        self.now = now
        super().__init__(
            f"Intent '{key}' may not execute before {execution_time.isoformat()} "
            f"(now {now.isoformat()})"
        )
