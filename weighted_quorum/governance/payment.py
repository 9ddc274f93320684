"""
Payment Approvals — the single-approver specialization of the weighted engine.

Every member carries weight 1 and the threshold is 1, so one approval from
any member is enough. The difference from the weighted engine is
exclusivity: at most one approval stands at a time, and only the member who
gave it may withdraw it.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field, field_validator

from weighted_quorum.registry.errors import (
    AlreadyApproved,
    CallerNotMember,
    NotApproved,
    ThresholdNotReached,
)

logger = logging.getLogger(__name__)


class PaymentConfig(BaseModel):
    """Flat list of members, any one of whom may approve a payment."""

    model_config = {"frozen": True}

    members: tuple[str, ...] = Field(min_length=1)

    @field_validator("members")
    @classmethod
    def _distinct(cls, members: tuple[str, ...]) -> tuple[str, ...]:
        if len(set(members)) != len(members):
            raise ValueError("payment members must be distinct")
        return members

    def is_member(self, address: str) -> bool:
        return address in self.members

    def assert_is_member(self, address: str) -> None:
        if not self.is_member(address):
            raise CallerNotMember(address)


class PendingPayment(BaseModel):
    """Approval slot of one payment intent."""

    model_config = {"frozen": True}

    approved_by: str | None = None


def empty_payment() -> PendingPayment:
    return PendingPayment()


def approve_payment(
    config: PaymentConfig,
    pending: PendingPayment,
    caller: str,
) -> PendingPayment:
    config.assert_is_member(caller)
    if pending.approved_by is not None:
        raise AlreadyApproved(pending.approved_by)
    logger.debug("Payment approved by %s", caller)
    return PendingPayment(approved_by=caller)


def disapprove_payment(
    config: PaymentConfig,
    pending: PendingPayment,
    caller: str,
) -> PendingPayment:
    """Only the standing approver can withdraw."""
    if pending.approved_by != caller:
        raise NotApproved(caller)
    logger.debug("Payment approval withdrawn by %s", caller)
    return PendingPayment(approved_by=None)


def validate_payment(pending: PendingPayment) -> None:
    if pending.approved_by is None:
        raise ThresholdNotReached(total_weight=0, global_threshold=1)
