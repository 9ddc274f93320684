"""
Resolution Engine — approve / disapprove / validate over a running tally.

Each pending intent owns one Approvals tally and a required role fixed at
creation. Members move the tally with ``approve`` and ``disapprove``; when
execution is requested, ``validate`` decides whether the accumulated weight
crosses either threshold:

    total_weight >= global_threshold
    OR (required role exists AND role_weight >= role_threshold)

The tally is updated incrementally, never recomputed from the approved set.
All functions here are pure: they return a new Approvals and leave the input
untouched, so a rejected call has no observable effect.

States per intent:
    PENDING(tally) ──validate ok──▶ EXECUTED
There is no rejected terminal state; disapproval only lowers the tally.
"""

from __future__ import annotations

import logging

from weighted_quorum.registry.errors import (
    AlreadyApproved,
    NotApproved,
    ThresholdNotReached,
)
from weighted_quorum.registry.schema import Approvals, Multisig

logger = logging.getLogger(__name__)


def empty_outcome() -> Approvals:
    """Tally attached to a freshly created intent."""
    return Approvals(total_weight=0, role_weight=0, approved=frozenset())


def approve(
    config: Multisig,
    outcome: Approvals,
    caller: str,
    required_role: str,
) -> Approvals:
    """
    Record ``caller``'s approval.

    Raises:
        CallerNotMember: If ``caller`` is not in the config.
        AlreadyApproved: If ``caller`` already approved this intent.
    """
    config.assert_is_member(caller)
    if caller in outcome.approved:
        raise AlreadyApproved(caller)

    member = config.member(caller)
    role_weight = outcome.role_weight
    if member.has_role(required_role):
        role_weight += member.weight

    updated = Approvals(
        total_weight=outcome.total_weight + member.weight,
        role_weight=role_weight,
        approved=outcome.approved | {caller},
    )
    logger.debug(
        "Approved: member=%s weight=%d total=%d role_weight=%d",
        caller, member.weight, updated.total_weight, updated.role_weight,
    )
    return updated


def disapprove(
    config: Multisig,
    outcome: Approvals,
    caller: str,
    required_role: str,
) -> Approvals:
    """
    Withdraw ``caller``'s approval.

    Subtraction saturates at zero: if the caller was reweighted after
    approving, the tally floors instead of going negative.

    Raises:
        NotApproved: If ``caller`` has no standing approval.
        MemberNotFound: If ``caller`` approved but has since left the config.
    """
    if caller not in outcome.approved:
        raise NotApproved(caller)

    member = config.member(caller)
    role_weight = outcome.role_weight
    if member.has_role(required_role):
        role_weight = max(0, role_weight - member.weight)

    updated = Approvals(
        total_weight=max(0, outcome.total_weight - member.weight),
        role_weight=role_weight,
        approved=outcome.approved - {caller},
    )
    logger.debug(
        "Disapproved: member=%s weight=%d total=%d role_weight=%d",
        caller, member.weight, updated.total_weight, updated.role_weight,
    )
    return updated


def is_threshold_reached(
    outcome: Approvals,
    config: Multisig,
    required_role: str,
) -> bool:
    """Whether ``outcome`` clears the global threshold or the role threshold."""
    if outcome.total_weight >= config.global_threshold:
        return True
    return config.role_exists(required_role) and (
        outcome.role_weight >= config.role_threshold(required_role)
    )


def validate(
    outcome: Approvals,
    config: Multisig,
    required_role: str,
) -> None:
    """
    Gate execution of an intent.

    Called once, by the execution step, on an outcome that is about to be
    discarded along with its intent.

    Raises:
        ThresholdNotReached: If neither threshold is met.
    """
    if is_threshold_reached(outcome, config, required_role):
        return

    role_threshold = None
    if config.role_exists(required_role):
        role_threshold = config.role_threshold(required_role)
    raise ThresholdNotReached(
        total_weight=outcome.total_weight,
        global_threshold=config.global_threshold,
        role=required_role,
        role_weight=outcome.role_weight,
        role_threshold=role_threshold,
    )
