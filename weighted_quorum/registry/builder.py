"""
Config Validator — builds a Multisig only from an internally consistent proposal.

A governance action (outside this package) assembles parallel lists of
member addresses, weights and role sets, plus role names and thresholds.
``build_config`` checks them and either returns a frozen Multisig or raises
the specific ConfigInvalid subclass naming the first violation. Nothing is
constructed on failure.

Checks, in order:
1. member lists line up             → MembersLengthMismatch
2. role lists line up               → RolesLengthMismatch
3. addresses / role names unique    → DuplicateMember / DuplicateRole
   and role names non-empty         → EmptyRoleName
4. global threshold is not zero     → GlobalThresholdZero
5. total weight reaches global      → GlobalThresholdUnreachable
6. every held role is declared and
   its holders can reach it         → UndeclaredRole / RoleThresholdUnreachable
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Sequence
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from weighted_quorum.registry.errors import (
    ConfigInvalid,
    DuplicateMember,
    DuplicateRole,
    EmptyRoleName,
    GlobalThresholdUnreachable,
    GlobalThresholdZero,
    MembersLengthMismatch,
    RoleThresholdUnreachable,
    RolesLengthMismatch,
    UndeclaredRole,
)
from weighted_quorum.registry.schema import Member, Multisig, Role

logger = logging.getLogger(__name__)


def build_config(
    addresses: Sequence[str],
    weights: Sequence[int],
    member_roles: Sequence[Iterable[str]],
    global_threshold: int,
    role_names: Sequence[str],
    role_thresholds: Sequence[int],
) -> Multisig:
    """
    Validate a proposed registry and threshold configuration.

    Args:
        addresses: Member addresses, one per member.
        weights: Voting weight of each member, parallel to ``addresses``.
        member_roles: Role names held by each member, parallel to ``addresses``.
        global_threshold: Approved weight that executes any intent.
        role_names: Declared role names.
        role_thresholds: Threshold of each declared role, parallel to ``role_names``.

    Returns:
        The frozen Multisig.

    Raises:
        ConfigInvalid: One of its subclasses, naming the violated invariant.
    """
    if not (len(addresses) == len(weights) == len(member_roles)):
        raise MembersLengthMismatch(len(addresses), len(weights), len(member_roles))
    if len(role_names) != len(role_thresholds):
        raise RolesLengthMismatch(len(role_names), len(role_thresholds))

    seen: set[str] = set()
    for address in addresses:
        if address in seen:
            raise DuplicateMember(address)
        seen.add(address)

    declared: dict[str, int] = {}
    for name, threshold in zip(role_names, role_thresholds):
        if not name:
            raise EmptyRoleName()
        if name in declared:
            raise DuplicateRole(name)
        declared[name] = threshold

    if global_threshold == 0:
        raise GlobalThresholdZero()

    role_sets = [frozenset(roles) for roles in member_roles]
    if any("" in roles for roles in role_sets):
        raise EmptyRoleName()

    available = sum(weights)
    if available < global_threshold:
        raise GlobalThresholdUnreachable(global_threshold, available)

    # Single pass: role -> summed weight of its holders
    role_weights: dict[str, int] = {}
    for weight, roles in zip(weights, role_sets):
        for role in roles:
            role_weights[role] = role_weights.get(role, 0) + weight

    for role, held in role_weights.items():
        if role not in declared:
            raise UndeclaredRole(role)
        if held < declared[role]:
            raise RoleThresholdUnreachable(role, declared[role], held)

    try:
        config = Multisig(
            members=tuple(
                Member(address=a, weight=w, roles=r)
                for a, w, r in zip(addresses, weights, role_sets)
            ),
            global_threshold=global_threshold,
            roles=tuple(
                Role(name=n, threshold=t) for n, t in zip(role_names, role_thresholds)
            ),
        )
    except ValidationError as exc:
        raise ConfigInvalid(f"Malformed member or role entry: {exc}") from exc

    logger.info(
        "Config built: members=%d roles=%d global_threshold=%d total_weight=%d",
        len(config.members), len(config.roles), global_threshold, available,
    )
    return config


# ════════════════════════════════════════════════════════════════
# JSON Documents
# ════════════════════════════════════════════════════════════════


class MemberEntry(BaseModel):
    address: str
    weight: int
    roles: list[str] = Field(default_factory=list)


class RoleEntry(BaseModel):
    name: str
    threshold: int


class ConfigDocument(BaseModel):
    """On-disk description of a group, as written by governance tooling."""

    members: list[MemberEntry]
    global_threshold: int
    roles: list[RoleEntry] = Field(default_factory=list)

    def build(self) -> Multisig:
        return build_config(
            addresses=[m.address for m in self.members],
            weights=[m.weight for m in self.members],
            member_roles=[m.roles for m in self.members],
            global_threshold=self.global_threshold,
            role_names=[r.name for r in self.roles],
            role_thresholds=[r.threshold for r in self.roles],
        )


def load_config(path: str | Path) -> Multisig:
    """
    Read a JSON config document and run it through ``build_config``.

    Raises:
        ConfigInvalid: If the document is missing, malformed or violates an invariant.
    """
    try:
        raw = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigInvalid(f"Cannot read config document {path}: {exc}") from exc
    try:
        document = ConfigDocument.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError) as exc:
        raise ConfigInvalid(f"Unreadable config document {path}: {exc}") from exc
    return document.build()


def dump_config(config: Multisig) -> str:
    """Serialize a Multisig back into the JSON document ``load_config`` reads."""
    document = ConfigDocument(
        members=[
            MemberEntry(address=m.address, weight=m.weight, roles=sorted(m.roles))
            for m in config.members
        ],
        global_threshold=config.global_threshold,
        roles=[RoleEntry(name=r.name, threshold=r.threshold) for r in config.roles],
    )
    return document.model_dump_json(indent=2)
