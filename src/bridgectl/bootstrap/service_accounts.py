"""Utilities for inspecting and provisioning the service account."""
from __future__ import annotations

import grp
import pwd
import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import Literal

from ..command import DEFAULT_TIMEOUT, run_command
from ..errors import AccountError, CommandError, CommandTimeout, ErrorKind


@dataclass(slots=True)
class ServiceAccountSpec:
    """Desired attributes for the service's runtime account."""

    name: str
    supplementary_groups: tuple[str, ...] = ()
    system: bool = True
    shell: str = "/bin/false"
    home: Path | None = None


@dataclass(slots=True)
class ServiceAccountStatus:
    """Current state of the service account on the host."""

    user_exists: bool
    uid: int | None = None
    gid: int | None = None
    home: Path | None = None
    shell: str | None = None
    groups: tuple[str, ...] = ()
    missing_groups: tuple[str, ...] = ()


@dataclass(slots=True)
class ServiceAccountAction:
    """Single command required to satisfy the desired state."""

    kind: Literal["create-user", "add-groups", "delete-user"]
    description: str
    command: list[str] | None = None


@dataclass(slots=True)
class ServiceAccountPlan:
    """Aggregated actions and warnings required to satisfy the spec."""

    spec: ServiceAccountSpec
    status: ServiceAccountStatus
    actions: list[ServiceAccountAction] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        """Return ``True`` when the plan mutates the host."""
        return bool(self.actions)


def inspect_service_account(spec: ServiceAccountSpec) -> ServiceAccountStatus:
    """Return the current status for *spec* from system passwd/group databases."""
    missing_groups: list[str] = []
    for group in spec.supplementary_groups:
        try:
            grp.getgrnam(group)
        except KeyError:
            missing_groups.append(group)

    try:
        pw_entry = pwd.getpwnam(spec.name)
    except KeyError:
        return ServiceAccountStatus(user_exists=False, missing_groups=tuple(missing_groups))

    memberships: list[str] = []
    for group in spec.supplementary_groups:
        if group in missing_groups:
            continue
        entry = grp.getgrnam(group)
        if spec.name in entry.gr_mem or entry.gr_gid == pw_entry.pw_gid:
            memberships.append(group)

    return ServiceAccountStatus(
        user_exists=True,
        uid=pw_entry.pw_uid,
        gid=pw_entry.pw_gid,
        home=Path(pw_entry.pw_dir),
        shell=pw_entry.pw_shell,
        groups=tuple(memberships),
        missing_groups=tuple(missing_groups),
    )


def plan_service_account(spec: ServiceAccountSpec) -> ServiceAccountPlan:
    """Return a plan describing how to create the account for *spec*.

    An existing account is never modified. Drift in shell or group membership
    is reported as warnings only.
    """
    status = inspect_service_account(spec)
    plan = ServiceAccountPlan(spec=spec, status=status)

    for group in status.missing_groups:
        plan.warnings.append(f"Group '{group}' does not exist on this host.")

    if not status.user_exists:
        command = ["useradd"]
        if spec.system:
            command.append("--system")
        command.extend(["--shell", spec.shell])
        if spec.home:
            command.extend(["--home-dir", str(spec.home)])
        else:
            command.append("--no-create-home")
        command.append(spec.name)
        plan.actions.append(
            ServiceAccountAction(
                kind="create-user",
                description=f"Create service user '{spec.name}'.",
                command=command,
            )
        )
        if spec.supplementary_groups:
            groups = ",".join(spec.supplementary_groups)
            plan.actions.append(
                ServiceAccountAction(
                    kind="add-groups",
                    description=f"Add '{spec.name}' to {groups}.",
                    command=["usermod", "-aG", groups, spec.name],
                )
            )
        return plan

    if status.shell and status.shell != spec.shell:
        plan.warnings.append(
            f"User '{spec.name}' shell '{status.shell}' differs from desired '{spec.shell}'."
        )
    absent = [
        group
        for group in spec.supplementary_groups
        if group not in status.groups and group not in status.missing_groups
    ]
    if absent:
        plan.warnings.append(
            f"User '{spec.name}' is not a member of {', '.join(absent)}; "
            "membership is not repaired for existing accounts."
        )
    return plan


def plan_service_account_removal(spec: ServiceAccountSpec) -> ServiceAccountPlan:
    """Return a plan that deletes the account when it exists."""
    status = inspect_service_account(spec)
    plan = ServiceAccountPlan(spec=spec, status=status)
    if status.user_exists:
        plan.actions.append(
            ServiceAccountAction(
                kind="delete-user",
                description=f"Delete service user '{spec.name}'.",
                command=["userdel", spec.name],
            )
        )
    return plan


Runner = Callable[[list[str]], subprocess.CompletedProcess[str]]


def apply_service_account_plan(
    plan: ServiceAccountPlan,
    *,
    runner: Runner | None = None,
    timeout: float | None = DEFAULT_TIMEOUT,
    best_effort: bool = False,
) -> None:
    """Execute the commands described by *plan*.

    With *best_effort*, command failures become plan warnings instead of
    raising :class:`AccountError`. Timeouts always raise.
    """
    if runner is None:
        runner = partial(_default_runner, timeout=timeout)

    for action in plan.actions:
        if action.command is None:
            continue
        try:
            runner(action.command)
        except CommandTimeout:
            raise
        except (CommandError, subprocess.CalledProcessError) as exc:
            if best_effort:
                plan.warnings.append(f"{action.description} failed: {exc}")
                continue
            raise AccountError(f"{action.description} failed: {exc}") from exc


def ensure_service_account(
    name: str,
    supplementary_groups: Sequence[str],
    *,
    shell: str = "/bin/false",
    runner: Runner | None = None,
    timeout: float | None = DEFAULT_TIMEOUT,
) -> ServiceAccountPlan:
    """Create the service account unless it already exists."""
    spec = ServiceAccountSpec(
        name=name,
        supplementary_groups=tuple(supplementary_groups),
        shell=shell,
    )
    plan = plan_service_account(spec)
    apply_service_account_plan(plan, runner=runner, timeout=timeout)
    return plan


def remove_service_account(
    name: str,
    *,
    runner: Runner | None = None,
    timeout: float | None = DEFAULT_TIMEOUT,
) -> ServiceAccountPlan:
    """Delete the service account if present; failures become warnings."""
    plan = plan_service_account_removal(ServiceAccountSpec(name=name))
    apply_service_account_plan(
        plan,
        runner=runner,
        timeout=timeout,
        best_effort=True,
    )
    return plan


def _default_runner(
    command: list[str],
    timeout: float | None,
) -> subprocess.CompletedProcess[str]:
    return run_command(command, timeout=timeout, error_kind=ErrorKind.ACCOUNT_FAILED)


__all__ = [
    "ServiceAccountAction",
    "ServiceAccountPlan",
    "ServiceAccountSpec",
    "ServiceAccountStatus",
    "apply_service_account_plan",
    "ensure_service_account",
    "inspect_service_account",
    "plan_service_account",
    "plan_service_account_removal",
    "remove_service_account",
]
