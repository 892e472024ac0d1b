"""Utilities for inspecting and planning docker group membership."""
from __future__ import annotations

import grp
import pwd
from dataclasses import dataclass, field
from typing import Literal

from ..commands import CommandRunner


@dataclass(slots=True)
class GroupMembershipSpec:
    """Desired membership of *user* in *group*."""

    user: str
    group: str = "docker"


@dataclass(slots=True)
class GroupMembershipStatus:
    """Current state of the user and group on the guest."""

    user_exists: bool
    group_exists: bool
    is_member: bool
    primary_group: str | None = None


@dataclass(slots=True)
class GroupMembershipAction:
    """Single remediation step required to satisfy the desired state."""

    kind: Literal["ensure-group", "add-to-group"]
    description: str
    command: list[str]


@dataclass(slots=True)
class GroupMembershipPlan:
    """Aggregated actions required to satisfy the spec."""

    spec: GroupMembershipSpec
    status: GroupMembershipStatus
    actions: list[GroupMembershipAction] = field(default_factory=list)

    @property
    def satisfied(self) -> bool:
        """Return ``True`` when no action is required."""
        return not self.actions


def inspect_group_membership(spec: GroupMembershipSpec) -> GroupMembershipStatus:
    """Return the current status for *spec* from the passwd/group databases."""
    try:
        pw_entry = pwd.getpwnam(spec.user)
    except KeyError:
        pw_entry = None

    primary_group: str | None = None
    if pw_entry is not None:
        try:
            primary_group = grp.getgrgid(pw_entry.pw_gid).gr_name
        except KeyError:
            primary_group = None

    try:
        group_entry = grp.getgrnam(spec.group)
    except KeyError:
        group_entry = None

    is_member = False
    if group_entry is not None:
        is_member = spec.user in group_entry.gr_mem or primary_group == spec.group

    return GroupMembershipStatus(
        user_exists=pw_entry is not None,
        group_exists=group_entry is not None,
        is_member=is_member,
        primary_group=primary_group,
    )


def plan_group_membership(
    spec: GroupMembershipSpec,
    status: GroupMembershipStatus | None = None,
) -> GroupMembershipPlan:
    """Return a plan describing how to put ``spec.user`` into ``spec.group``."""
    if status is None:
        status = inspect_group_membership(spec)
    plan = GroupMembershipPlan(spec=spec, status=status)
    if status.is_member:
        return plan

    if not status.group_exists:
        plan.actions.append(
            GroupMembershipAction(
                kind="ensure-group",
                description=f"Create group '{spec.group}'.",
                command=["groupadd", spec.group],
            )
        )
    plan.actions.append(
        GroupMembershipAction(
            kind="add-to-group",
            description=f"Add '{spec.user}' to group '{spec.group}'.",
            command=["usermod", "-aG", spec.group, spec.user],
        )
    )
    return plan


def apply_group_membership_plan(plan: GroupMembershipPlan, runner: CommandRunner) -> None:
    """Execute the commands described by *plan*."""
    for action in plan.actions:
        runner.run(action.command, privileged=True, mutating=True)


__all__ = [
    "GroupMembershipAction",
    "GroupMembershipPlan",
    "GroupMembershipSpec",
    "GroupMembershipStatus",
    "apply_group_membership_plan",
    "inspect_group_membership",
    "plan_group_membership",
]
