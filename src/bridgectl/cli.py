"""Typer-powered command line interface for ``bridgectl``.

``install`` and ``uninstall`` are privileged and gate on root before touching
anything; ``status``, ``logs`` and ``config show`` are read-only.
"""
from __future__ import annotations

import textwrap
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
import yaml
from rich.console import Console
from rich.table import Table

from . import __version__
from .artifact import ArtifactProvider
from .bootstrap.state import probe_installation
from .config import AppConfig, ConfigError, load_config
from .errors import PrivilegeError, ProvisionError
from .exit_codes import ExitCode
from .logging import OperationScope, StructuredLogger
from .orchestrator import FlowReport, Orchestrator, StepRecord, UninstallOptions
from .privilege import check_privilege
from .providers import SystemdProvider
from .templates import TemplateEngine

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to bridgectl's YAML config file.",
)

DRY_RUN_OPTION = typer.Option(
    False,
    "--dry-run",
    help="Report the actions that would be taken without applying changes.",
)

JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit structured JSON instead of human-readable output.",
)

NO_START_OPTION = typer.Option(
    False,
    "--no-start",
    help="Enable the unit without starting it.",
)

PURGE_CONFIG_OPTION = typer.Option(
    None,
    "--purge-config/--keep-config",
    help="Remove or keep the configuration directory (prompts when omitted).",
)

PURGE_USER_OPTION = typer.Option(
    None,
    "--purge-user/--keep-user",
    help="Remove or keep the service account (prompts when omitted).",
)

_STEP_STYLES = {
    "success": "green",
    "skipped": "yellow",
    "planned": "cyan",
    "warning": "yellow",
}

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Install and remove the RustBridge systemd service.

        Paths, account and unit settings come from /etc/bridgectl/config.yml
        and BRIDGECTL_* environment variables.
        """
    ).strip(),
)
config_app = typer.Typer(help="Inspect the resolved configuration.")
app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger
    templates: TemplateEngine
    systemd_provider: SystemdProvider
    artifacts: ArtifactProvider


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        console.print(f"[red]Configuration error: {exc}[/red]")
        raise typer.Exit(code=ExitCode.CONFIG) from exc

    logger = StructuredLogger(config.logs_dir)
    templates = TemplateEngine.with_overrides(config.templates_dir)
    systemd_provider = SystemdProvider(
        templates=templates,
        systemd_dir=config.systemd.unit_dir,
        systemctl_bin=config.systemd.systemctl_bin,
        journalctl_bin=config.systemd.journalctl_bin,
        timeout=config.command_timeout,
    )
    artifacts = ArtifactProvider(
        project_root=config.project_root,
        build_command=config.build.command,
        timeout=config.build.timeout,
    )
    runtime = RuntimeContext(
        config=config,
        logger=logger,
        templates=templates,
        systemd_provider=systemd_provider,
        artifacts=artifacts,
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the bridgectl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"bridgectl {__version__}")
        raise typer.Exit(code=ExitCode.OK)

    _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=ExitCode.OK)


def _command_error(
    op: OperationScope,
    exc: ProvisionError,
    *,
    flow: str,
    json_output: bool,
) -> NoReturn:
    """Record a structured error on *op* and terminate the command."""
    op.error(str(exc), rc=ExitCode.FAILURE, kind=exc.kind.value)
    _emit_error(exc, flow=flow, steps=op.steps, json_output=json_output)


def _emit_error(
    exc: ProvisionError,
    *,
    flow: str,
    steps: list[dict[str, object]],
    json_output: bool,
) -> NoReturn:
    if json_output:
        console.print_json(
            data={
                "status": "error",
                "flow": flow,
                "steps": list(steps),
                "error": exc.to_dict(),
            }
        )
    else:
        console.print(f"[red]Error ({exc.kind.value}): {exc}[/red]")
    raise typer.Exit(code=ExitCode.FAILURE)


def _require_root(flow: str, *, json_output: bool) -> None:
    """Refuse non-root callers before anything is written, the operation log included."""
    try:
        check_privilege(f"bridgectl {flow}")
    except PrivilegeError as exc:
        _emit_error(exc, flow=flow, steps=[], json_output=json_output)


def _print_step(record: StepRecord) -> None:
    style = _STEP_STYLES.get(record.status, "white")
    detail = f" - {record.detail}" if record.detail else ""
    console.print(f"[{style}]{record.status:>8}[/{style}] {record.name}{detail}", highlight=False)


def _build_orchestrator(
    runtime: RuntimeContext,
    op: OperationScope,
    *,
    json_output: bool,
) -> Orchestrator:
    return Orchestrator(
        runtime.config,
        systemd=runtime.systemd_provider,
        artifacts=runtime.artifacts,
        scope=op,
        on_step=None if json_output else _print_step,
    )


def _report_payload(report: FlowReport) -> dict[str, object]:
    payload: dict[str, object] = {"status": "ok"}
    payload.update(report.to_dict())
    return payload


def _print_install_hints(config: AppConfig) -> None:
    unit = config.service_name
    console.print("")
    console.print("Commands:")
    console.print(f"  Start:   sudo systemctl start {unit}")
    console.print(f"  Stop:    sudo systemctl stop {unit}")
    console.print(f"  Status:  sudo systemctl status {unit}")
    console.print(f"  Logs:    sudo journalctl -u {unit} -f")
    console.print("")
    console.print(f"Configuration: {config.config_path}")


def _resolve_choice(choice: bool | None, prompt: str, *, interactive: bool) -> bool:
    if choice is not None:
        return choice
    if not interactive:
        return False
    return typer.confirm(prompt, default=False)


@app.command()
def install(
    ctx: typer.Context,
    no_start: bool = NO_START_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Build if needed, then provision the account, files and systemd unit."""
    runtime = _get_runtime(ctx)
    config = runtime.config
    _require_root("install", json_output=json_output)
    with runtime.logger.operation(
        "install",
        args={"no_start": no_start, "dry_run": dry_run},
        target={"kind": "service", "name": config.service_name},
    ) as op:
        try:
            orchestrator = _build_orchestrator(runtime, op, json_output=json_output)
            if not json_output:
                console.print(f"[bold green]Installing {config.service_name}[/bold green]")
            report = orchestrator.install(start=not no_start, dry_run=dry_run)
        except ProvisionError as exc:
            _command_error(op, exc, flow="install", json_output=json_output)

        if json_output:
            console.print_json(data=_report_payload(report))
        else:
            for warning in report.warnings:
                console.print(f"[yellow]{warning}[/yellow]")
            if dry_run:
                console.print("[yellow]Dry run[/yellow]: no changes were made.")
            else:
                console.print("[green]Installation complete![/green]")
                _print_install_hints(config)
        if dry_run:
            op.success("Install dry-run complete.", changed=0, context=report.to_dict())
        else:
            op.success(
                "Service installed.",
                changed=report.changed,
                warnings=report.warnings,
                context=report.to_dict(),
            )


@app.command()
def uninstall(
    ctx: typer.Context,
    purge_config: bool | None = PURGE_CONFIG_OPTION,
    purge_user: bool | None = PURGE_USER_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Stop, disable and remove the service; optionally purge config and account."""
    runtime = _get_runtime(ctx)
    config = runtime.config
    _require_root("uninstall", json_output=json_output)
    with runtime.logger.operation(
        "uninstall",
        args={
            "purge_config": purge_config,
            "purge_user": purge_user,
            "dry_run": dry_run,
        },
        target={"kind": "service", "name": config.service_name},
    ) as op:
        options = UninstallOptions(
            purge_config=_resolve_choice(
                purge_config,
                f"Remove configuration directory {config.config_dir}?",
                interactive=not json_output,
            ),
            purge_account=_resolve_choice(
                purge_user,
                f"Remove user {config.account.name}?",
                interactive=not json_output,
            ),
        )
        try:
            orchestrator = _build_orchestrator(runtime, op, json_output=json_output)
            if not json_output:
                console.print(f"[bold red]Uninstalling {config.service_name}[/bold red]")
            report = orchestrator.uninstall(options, dry_run=dry_run)
        except ProvisionError as exc:
            _command_error(op, exc, flow="uninstall", json_output=json_output)

        if json_output:
            console.print_json(data=_report_payload(report))
        else:
            for warning in report.warnings:
                console.print(f"[yellow]{warning}[/yellow]")
            if dry_run:
                console.print("[yellow]Dry run[/yellow]: no changes were made.")
            else:
                console.print("[green]Uninstallation complete![/green]")
        if report.warnings and not dry_run:
            op.warning(
                "Service removed with warnings.",
                warnings=report.warnings,
                changed=report.changed,
                context=report.to_dict(),
            )
        else:
            op.success(
                "Uninstall dry-run complete." if dry_run else "Service removed.",
                changed=0 if dry_run else report.changed,
                context=report.to_dict(),
            )


@app.command()
def status(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """Report the installation state discovered on this host."""
    runtime = _get_runtime(ctx)
    config = runtime.config
    with runtime.logger.operation(
        "status",
        args={"json": json_output},
        target={"kind": "service", "name": config.service_name},
    ) as op:
        try:
            state = probe_installation(config, runtime.systemd_provider)
        except ProvisionError as exc:
            _command_error(op, exc, flow="status", json_output=json_output)

        paths: Mapping[str, Path] = {
            "binary": config.binary_path,
            "config": config.config_path,
            "unit": runtime.systemd_provider.unit_path(config.service_name),
        }
        if json_output:
            payload = {
                "service": config.service_name,
                "account": config.account.name,
                "paths": {key: str(value) for key, value in paths.items()},
            }
            payload.update(state.to_dict())
            console.print_json(data=payload)
        else:
            table = Table(title=f"{config.service_name} ({state.label})", show_header=False)
            table.add_row("Binary", _yes_no(state.binary_present), str(paths["binary"]))
            table.add_row("Config", _yes_no(state.config_present), str(paths["config"]))
            table.add_row("User", _yes_no(state.user_exists), config.account.name)
            table.add_row("Unit file", _yes_no(state.unit_present), str(paths["unit"]))
            table.add_row("Enabled", _yes_no(state.service_enabled), "")
            table.add_row("Active", _yes_no(state.service_active), "")
            console.print(table)
        op.success("Reported installation state.", changed=0, context=state.to_dict())


def _yes_no(flag: bool) -> str:
    return "[green]yes[/green]" if flag else "[red]no[/red]"


@app.command()
def logs(
    ctx: typer.Context,
    lines: int | None = typer.Option(
        None,
        "--lines",
        "-n",
        min=1,
        help="Number of journal lines to show.",
    ),
    since: str | None = typer.Option(
        None,
        "--since",
        help="Show entries newer than this journalctl timestamp.",
    ),
    follow: bool = typer.Option(
        False,
        "--follow",
        "-f",
        help="Stream new journal entries.",
    ),
) -> None:
    """Show the service journal."""
    runtime = _get_runtime(ctx)
    config = runtime.config
    with runtime.logger.operation(
        "logs",
        args={"lines": lines, "since": since, "follow": follow},
        target={"kind": "service", "name": config.service_name},
    ) as op:
        try:
            result = runtime.systemd_provider.logs(
                config.service_name,
                lines=lines,
                since=since,
                follow=follow,
            )
        except ProvisionError as exc:
            _command_error(op, exc, flow="logs", json_output=False)
        if not follow:
            output = (result.stdout or "").rstrip()
            if output:
                console.print(output, markup=False, highlight=False, soft_wrap=True)
        op.success("Displayed journal.", changed=0)


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """Print the resolved configuration."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()
    if json_output:
        console.print_json(data=data)
    else:
        rendered = yaml.safe_dump(data, sort_keys=False)
        console.print(rendered.rstrip(), markup=False, highlight=False, soft_wrap=True)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
