"""Install and uninstall flows for the managed service.

The orchestrator owns no host resources itself. It sequences the artifact,
account, filesystem and systemd helpers, and every decision it takes is a
function of the state those helpers observe on the host right now. Nothing
about earlier runs is persisted, so re-running either flow after a partial
failure or manual tampering converges on the same end state.

The privilege check is the caller's job and must happen before an
:class:`Orchestrator` is asked to do anything.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Literal

from .artifact import ArtifactProvider
from .bootstrap.filesystem import (
    FileAction,
    apply_ownership,
    ensure_config_dir,
    remove_binary,
    remove_config_dir,
    stage_binary,
    stage_config,
)
from .bootstrap.service_accounts import (
    Runner,
    ServiceAccountSpec,
    apply_service_account_plan,
    plan_service_account,
    remove_service_account,
)
from .bootstrap.state import InstallationState, probe_installation
from .config import AppConfig
from .logging import OperationScope
from .providers.systemd import SystemdProvider

LOGGER = logging.getLogger(__name__)

StepStatus = Literal["success", "skipped", "planned", "warning"]


@dataclass(slots=True)
class UninstallOptions:
    """Destructive uninstall choices, decided before the flow starts."""

    purge_config: bool = False
    purge_account: bool = False


@dataclass(slots=True)
class StepRecord:
    """Outcome of one orchestration step."""

    name: str
    status: StepStatus
    detail: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        payload: dict[str, object] = {"name": self.name, "status": self.status}
        if self.detail:
            payload["detail"] = self.detail
        return payload


@dataclass(slots=True)
class FlowReport:
    """Steps taken by a flow and the state it left behind."""

    flow: Literal["install", "uninstall"]
    dry_run: bool = False
    steps: list[StepRecord] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    state: InstallationState | None = None

    @property
    def changed(self) -> int:
        """Number of steps that mutated the host."""
        return sum(1 for step in self.steps if step.status == "success")

    def step(self, name: str) -> StepRecord | None:
        """Return the step called *name*, if it ran."""
        for record in self.steps:
            if record.name == name:
                return record
        return None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "flow": self.flow,
            "dry_run": self.dry_run,
            "changed": self.changed,
            "steps": [step.to_dict() for step in self.steps],
            "warnings": list(self.warnings),
            "state": self.state.to_dict() if self.state is not None else None,
        }


StepCallback = Callable[[StepRecord], None]


class Orchestrator:
    """Drive the host from absent to registered and back."""

    def __init__(
        self,
        config: AppConfig,
        *,
        systemd: SystemdProvider,
        artifacts: ArtifactProvider,
        account_runner: Runner | None = None,
        scope: OperationScope | None = None,
        on_step: StepCallback | None = None,
    ) -> None:
        """Bind the providers used by both flows."""
        self.config = config
        self.systemd = systemd
        self.artifacts = artifacts
        self.account_runner = account_runner
        self.scope = scope
        self.on_step = on_step

    # ------------------------------------------------------------------
    def probe(self) -> InstallationState:
        """Return the installation state as currently found on the host."""
        return probe_installation(self.config, self.systemd)

    def install(self, *, start: bool = True, dry_run: bool = False) -> FlowReport:
        """Provision the account, files and unit, then enable the service."""
        config = self.config
        report = FlowReport(flow="install", dry_run=dry_run)
        service = config.service_name

        if dry_run:
            return self._plan_install(report, start=start)

        artifact_source = config.artifact_source
        prebuilt = artifact_source.is_file()
        binary_src = self.artifacts.ensure_artifact(artifact_source)
        if prebuilt:
            self._record(report, "artifact.build", "skipped", f"found {binary_src}")
        else:
            self._record(report, "artifact.build", "success", f"built {binary_src}")

        account_plan = plan_service_account(self._account_spec())
        report.warnings.extend(account_plan.warnings)
        apply_service_account_plan(
            account_plan,
            runner=self.account_runner,
            timeout=config.command_timeout,
        )
        if account_plan.changed:
            self._record(report, "account.create", "success", f"created {config.account.name}")
        else:
            self._record(report, "account.create", "skipped", f"{config.account.name} exists")

        self._record_file(report, "filesystem.config_dir", ensure_config_dir(config.config_dir))
        self._record_file(
            report,
            "filesystem.binary",
            stage_binary(binary_src, config.binary_path),
        )
        config_action = stage_config(config.default_config_source, config.config_path)
        if not config_action.changed:
            report.warnings.append(f"Config file {config.config_path} exists, skipping.")
        self._record_file(report, "filesystem.config", config_action)
        self._record_file(
            report,
            "filesystem.ownership",
            apply_ownership(config.config_dir, config.account.name),
        )

        if config.systemd.unit_source is not None:
            changed = self.systemd.register_unit(service, config.systemd.unit_source)
        else:
            changed = self.systemd.render_unit(service, self._unit_context())
        unit_path = self.systemd.unit_path(service)
        if changed:
            self._record(report, "systemd.unit", "success", f"installed {unit_path}")
        else:
            self._record(report, "systemd.unit", "skipped", f"{unit_path} unchanged")

        self.systemd.reload_daemon()
        self._record(report, "systemd.reload", "success")

        self.systemd.enable_and_start(service, start=start)
        self._record(
            report,
            "systemd.enable",
            "success",
            "enabled and started" if start else "enabled",
        )

        report.state = self.probe()
        return report

    def uninstall(
        self,
        options: UninstallOptions | None = None,
        *,
        dry_run: bool = False,
    ) -> FlowReport:
        """Stop, disable and remove the unit, then optionally purge data.

        Order is fixed: stop, disable, remove unit file, reload. The unit file
        is only deleted once the service is no longer active.
        """
        options = options or UninstallOptions()
        config = self.config
        report = FlowReport(flow="uninstall", dry_run=dry_run)
        service = config.service_name

        if dry_run:
            return self._plan_uninstall(report, options)

        if self.systemd.stop_if_active(service):
            self._record(report, "systemd.stop", "success")
        else:
            self._record(report, "systemd.stop", "skipped", "not active")

        if self.systemd.disable_if_enabled(service):
            self._record(report, "systemd.disable", "success")
        else:
            self._record(report, "systemd.disable", "skipped", "not enabled")

        if self.systemd.remove_unit_file(service):
            self._record(report, "systemd.remove", "success", str(self.systemd.unit_path(service)))
            self.systemd.reload_daemon()
            self._record(report, "systemd.reload", "success")
        else:
            self._record(report, "systemd.remove", "skipped", "unit file absent")

        self._record_file(report, "filesystem.binary", remove_binary(config.binary_path))

        if options.purge_config:
            self._record_file(report, "filesystem.config", remove_config_dir(config.config_dir))
        else:
            self._record(report, "filesystem.config", "skipped", "retained by choice")

        if options.purge_account:
            plan = remove_service_account(
                config.account.name,
                runner=self.account_runner,
                timeout=config.command_timeout,
            )
            if plan.warnings:
                report.warnings.extend(plan.warnings)
                self._record(report, "account.remove", "warning", "; ".join(plan.warnings))
            elif plan.changed:
                self._record(report, "account.remove", "success", config.account.name)
            else:
                self._record(report, "account.remove", "skipped", "user absent")
        else:
            self._record(report, "account.remove", "skipped", "retained by choice")

        report.state = self.probe()
        return report

    # ------------------------------------------------------------------
    def _plan_install(self, report: FlowReport, *, start: bool) -> FlowReport:
        config = self.config
        state = self.probe()

        def mark(name: str, needed: bool, detail: str) -> None:
            self._record(report, name, "planned" if needed else "skipped", detail)

        mark("artifact.build", not config.artifact_source.is_file(), str(config.artifact_source))
        mark("account.create", not state.user_exists, config.account.name)
        mark("filesystem.config_dir", not config.config_dir.is_dir(), str(config.config_dir))
        mark("filesystem.binary", True, str(config.binary_path))
        mark("filesystem.config", not state.config_present, str(config.config_path))
        mark("filesystem.ownership", True, f"{config.account.name}:{config.account.name}")
        mark("systemd.unit", True, str(self.systemd.unit_path(config.service_name)))
        mark("systemd.reload", True, "daemon-reload")
        mark("systemd.enable", True, "enable and start" if start else "enable")
        report.state = state
        return report

    def _plan_uninstall(self, report: FlowReport, options: UninstallOptions) -> FlowReport:
        config = self.config
        state = self.probe()

        def mark(name: str, needed: bool, detail: str) -> None:
            self._record(report, name, "planned" if needed else "skipped", detail)

        mark("systemd.stop", state.service_active, "stop")
        mark("systemd.disable", state.service_enabled, "disable")
        mark("systemd.remove", state.unit_present, str(self.systemd.unit_path(config.service_name)))
        mark("systemd.reload", state.unit_present, "daemon-reload")
        mark("filesystem.binary", state.binary_present, str(config.binary_path))
        mark(
            "filesystem.config",
            options.purge_config and config.config_dir.exists(),
            str(config.config_dir),
        )
        mark("account.remove", options.purge_account and state.user_exists, config.account.name)
        report.state = state
        return report

    def _account_spec(self) -> ServiceAccountSpec:
        account = self.config.account
        return ServiceAccountSpec(
            name=account.name,
            supplementary_groups=account.groups,
            shell=account.shell,
        )

    def _unit_context(self) -> dict[str, object]:
        config = self.config
        env_name = config.service_name.upper().replace("-", "_")
        return {
            "description": f"{config.service_name} service",
            "service_user": config.account.name,
            "service_group": config.account.name,
            "supplementary_groups": list(config.account.groups),
            "working_directory": str(config.config_dir),
            "exec_start": str(config.binary_path),
            "environment": [f"{env_name}_CONFIG={config.config_path}"],
        }

    def _record_file(self, report: FlowReport, name: str, action: FileAction) -> None:
        status: StepStatus = "success" if action.changed else "skipped"
        detail = f"{action.status} {action.path}"
        if action.detail:
            detail = f"{detail} ({action.detail})"
        self._record(report, name, status, detail)

    def _record(
        self,
        report: FlowReport,
        name: str,
        status: StepStatus,
        detail: str | None = None,
    ) -> None:
        record = StepRecord(name=name, status=status, detail=detail)
        report.steps.append(record)
        LOGGER.debug("%s %s: %s", report.flow, name, status)
        if self.scope is not None:
            self.scope.add_step(name, status=status, detail=detail)
        if self.on_step is not None:
            self.on_step(record)


__all__ = [
    "FlowReport",
    "Orchestrator",
    "StepRecord",
    "UninstallOptions",
]
