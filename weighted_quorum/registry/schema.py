"""
Quorum Schema — Pydantic models for the member/role registry and approval tallies.

These models are the canonical data structures of the approval engine:

- Member    — an address holding a voting weight and a set of role names
- Role      — a named capability tag with its own approval threshold
- Multisig  — the group configuration: members, roles, global threshold
- Approvals — the running approval tally attached to one pending intent

A Multisig is only ever produced by ``registry.builder.build_config``, which
checks every structural invariant before construction. Once built it is
frozen; replacing it is the business of the host.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from weighted_quorum.registry.errors import (
    CallerNotMember,
    MemberNotFound,
    RoleNotFound,
)

U64_MAX = 2**64 - 1


# ════════════════════════════════════════════════════════════════
# Registry Models
# ════════════════════════════════════════════════════════════════


class Member(BaseModel):
    """A weighted participant in the approval group."""

    model_config = {"frozen": True}

    address: str = Field(description="Authenticated identity of the member")
    weight: int = Field(
        ge=0, le=U64_MAX, description="Voting weight (0 is legal but contributes nothing)"
    )
    roles: frozenset[str] = Field(
        default_factory=frozenset, description="Role names held by this member"
    )

    def has_role(self, role: str) -> bool:
        """Pure set-membership test."""
        return role in self.roles


class Role(BaseModel):
    """A named role and the summed holder weight required for role-gated execution."""

    model_config = {"frozen": True}

    name: str = Field(min_length=1)
    threshold: int = Field(ge=0, le=U64_MAX)


class Multisig(BaseModel):
    """
    Weighted multisig configuration shared by all intents of one group.

    Members and roles are ordered; lookups are linear scans since groups are
    small. Use ``build_config`` rather than instantiating directly, otherwise
    the threshold invariants are not checked.
    """

    model_config = {"frozen": True}

    members: tuple[Member, ...] = ()
    global_threshold: int = Field(ge=1, le=U64_MAX)
    roles: tuple[Role, ...] = ()

    # ── Members ─────────────────────────────────────────────────

    def member_index(self, address: str) -> int:
        for idx, member in enumerate(self.members):
            if member.address == address:
                return idx
        raise MemberNotFound(address)

    def member(self, address: str) -> Member:
        return self.members[self.member_index(address)]

    def is_member(self, address: str) -> bool:
        return any(m.address == address for m in self.members)

    def assert_is_member(self, address: str) -> None:
        if not self.is_member(address):
            raise CallerNotMember(address)

    def member_weight(self, address: str) -> int:
        return self.member(address).weight

    def member_has_role(self, address: str, role: str) -> bool:
        return self.member(address).has_role(role)

    def addresses(self) -> list[str]:
        return [m.address for m in self.members]

    @property
    def total_weight(self) -> int:
        """Sum of every member's weight, the ceiling for any tally."""
        return sum(m.weight for m in self.members)

    # ── Roles ───────────────────────────────────────────────────

    def role_index(self, name: str) -> int:
        for idx, role in enumerate(self.roles):
            if role.name == name:
                return idx
        raise RoleNotFound(name)

    def role_exists(self, name: str) -> bool:
        return any(r.name == name for r in self.roles)

    def role_threshold(self, name: str) -> int:
        return self.roles[self.role_index(name)].threshold

    def role_weight_capacity(self, name: str) -> int:
        """Summed weight of every member holding ``name``."""
        return sum(m.weight for m in self.members if m.has_role(name))

    def role_holders(self, name: str) -> list[str]:
        return [m.address for m in self.members if m.has_role(name)]


# ════════════════════════════════════════════════════════════════
# Approval Tally
# ════════════════════════════════════════════════════════════════


class Approvals(BaseModel):
    """
    Running approval tally for one intent.

    Invariants maintained by the resolution engine:
        total_weight == sum of approvers' weights
        role_weight  == same sum restricted to holders of the intent's role
        0 <= role_weight <= total_weight

    Instances are immutable; ``approve``/``disapprove`` return a new tally so
    a rejected call can never leave a half-applied update behind.
    """

    model_config = {"frozen": True}

    total_weight: int = Field(default=0, ge=0)
    role_weight: int = Field(default=0, ge=0)
    approved: frozenset[str] = Field(default_factory=frozenset)

    def has_approved(self, address: str) -> bool:
        return address in self.approved

    def approved_addresses(self) -> list[str]:
        """Approving addresses in stable (sorted) display order."""
        return sorted(self.approved)
