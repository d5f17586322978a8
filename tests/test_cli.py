"""Tests for the bridgectl command line interface."""
from __future__ import annotations

import json
import subprocess
from collections.abc import Sequence
from pathlib import Path

import pytest
import yaml
from typer.testing import CliRunner, Result

from bridgectl import __version__, privilege
from bridgectl.cli import app
from bridgectl.config import load_config
from bridgectl.providers.systemd import SystemdProvider

runner = CliRunner()


def _invoke(config_file: Path, *args: str, input: str | None = None) -> Result:
    return runner.invoke(app, ["--config-file", str(config_file), *args], input=input)


def _as_root(monkeypatch: pytest.MonkeyPatch, euid: int = 0) -> None:
    monkeypatch.setattr(privilege.os, "geteuid", lambda: euid)


def _last_operation(config_file: Path) -> dict[str, object]:
    config = load_config(config_file, env={})
    lines = config.logs_dir.joinpath("operations.jsonl").read_text(encoding="utf-8").splitlines()
    return json.loads(lines[-1])


def test_version_flag() -> None:
    """``--version`` prints the package version and exits cleanly."""
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert f"bridgectl {__version__}" in result.stdout


def test_install_requires_root(
    config_file: Path,
    fake_host,
    project: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Non-root callers are refused before any host mutation."""
    _as_root(monkeypatch, euid=1000)

    result = _invoke(config_file, "install")

    assert result.exit_code == 1
    assert "Please run as root" in result.stdout
    config = load_config(config_file, env={})
    assert not config.binary_path.exists()
    assert not config.config_dir.exists()
    assert fake_host.users == {}
    assert fake_host.systemctl_calls == []
    assert not config.logs_dir.exists()


def test_json_error_reports_kind(
    config_file: Path,
    fake_host,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """``--json`` failures carry the structured error kind."""
    _as_root(monkeypatch, euid=1000)

    result = _invoke(config_file, "uninstall", "--json")

    assert result.exit_code == 1
    payload = json.loads(result.stdout)
    assert payload["status"] == "error"
    assert payload["flow"] == "uninstall"
    assert payload["error"]["kind"] == "permission-denied"
    assert payload["steps"] == []
    assert not load_config(config_file, env={}).logs_dir.exists()


def test_install_then_uninstall_json(
    config_file: Path,
    fake_host,
    project: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A JSON install registers the service; JSON uninstall keeps data by default."""
    _as_root(monkeypatch)

    installed = _invoke(config_file, "install", "--json")
    assert installed.exit_code == 0, installed.stdout
    payload = json.loads(installed.stdout)
    assert payload["status"] == "ok"
    assert payload["flow"] == "install"
    assert payload["state"]["state"] == "registered"
    assert payload["state"]["service_active"] is True

    removed = _invoke(config_file, "uninstall", "--json")
    assert removed.exit_code == 0, removed.stdout
    payload = json.loads(removed.stdout)
    steps = {step["name"]: step for step in payload["steps"]}
    assert steps["filesystem.config"]["detail"] == "retained by choice"
    assert steps["account.remove"]["detail"] == "retained by choice"

    config = load_config(config_file, env={})
    assert config.config_path.exists()
    assert not config.binary_path.exists()
    assert "rustbridge" in fake_host.users


def test_install_prints_hints(
    config_file: Path,
    fake_host,
    project: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Human output ends with the follow-up commands."""
    _as_root(monkeypatch)

    result = _invoke(config_file, "install")

    assert result.exit_code == 0, result.stdout
    assert "Installation complete!" in result.stdout
    assert "journalctl -u rustbridge -f" in result.stdout
    record = _last_operation(config_file)
    assert record["result"]["status"] == "success"
    assert record["steps"][-1]["name"] == "systemd.enable"


def test_install_no_start(
    config_file: Path,
    fake_host,
    project: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """``--no-start`` enables without starting."""
    _as_root(monkeypatch)

    result = _invoke(config_file, "install", "--no-start", "--json")

    assert result.exit_code == 0, result.stdout
    assert fake_host.enabled
    assert not fake_host.active


def test_uninstall_prompts_for_purge_choices(
    config_file: Path,
    fake_host,
    project: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Without flags the operator is asked about config and account separately."""
    _as_root(monkeypatch)
    assert _invoke(config_file, "install", "--json").exit_code == 0

    result = _invoke(config_file, "uninstall", input="y\nn\n")

    assert result.exit_code == 0, result.stdout
    assert "Remove configuration directory" in result.stdout
    assert "Remove user rustbridge?" in result.stdout
    config = load_config(config_file, env={})
    assert not config.config_dir.exists()
    assert "rustbridge" in fake_host.users


def test_uninstall_flags_skip_prompts(
    config_file: Path,
    fake_host,
    project: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Explicit purge flags are honoured without prompting."""
    _as_root(monkeypatch)
    assert _invoke(config_file, "install", "--json").exit_code == 0

    result = _invoke(config_file, "uninstall", "--keep-config", "--purge-user")

    assert result.exit_code == 0, result.stdout
    assert "Remove configuration directory" not in result.stdout
    config = load_config(config_file, env={})
    assert config.config_path.exists()
    assert "rustbridge" not in fake_host.users


def test_uninstall_dry_run(
    config_file: Path,
    fake_host,
    project: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Dry runs report the plan and leave the service running."""
    _as_root(monkeypatch)
    assert _invoke(config_file, "install", "--json").exit_code == 0

    result = _invoke(
        config_file,
        "uninstall",
        "--dry-run",
        "--purge-config",
        "--purge-user",
        "--json",
    )

    assert result.exit_code == 0, result.stdout
    payload = json.loads(result.stdout)
    assert payload["dry_run"] is True
    assert payload["changed"] == 0
    assert fake_host.active
    assert "rustbridge" in fake_host.users


def test_status_json_reports_absent(config_file: Path, fake_host) -> None:
    """``status`` works unprivileged and reports the probed state."""
    result = _invoke(config_file, "status", "--json")

    assert result.exit_code == 0, result.stdout
    payload = json.loads(result.stdout)
    assert payload["service"] == "rustbridge"
    assert payload["state"] == "absent"
    assert payload["binary_present"] is False


def test_status_table(config_file: Path, fake_host) -> None:
    """Human status output is a table keyed by resource."""
    result = _invoke(config_file, "status")

    assert result.exit_code == 0, result.stdout
    assert "absent" in result.stdout
    assert "Unit file" in result.stdout


def test_logs_forwards_journal_options(
    config_file: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """``logs`` passes filters to journalctl and prints its output."""
    captured: dict[str, object] = {}

    def fake_journalctl(
        self: SystemdProvider,
        args: Sequence[str],
        *,
        check: bool = True,
        capture_output: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        captured["args"] = list(args)
        captured["capture_output"] = capture_output
        return subprocess.CompletedProcess(args, 0, "serial bridge ready\n", "")

    monkeypatch.setattr(SystemdProvider, "_journalctl", fake_journalctl)

    result = _invoke(config_file, "logs", "-n", "20", "--since", "1 hour ago")

    assert result.exit_code == 0, result.stdout
    assert "serial bridge ready" in result.stdout
    assert captured["args"] == [
        "--unit",
        "rustbridge.service",
        "--no-pager",
        "--lines",
        "20",
        "--since",
        "1 hour ago",
    ]
    assert captured["capture_output"] is True


def test_config_show_json(config_file: Path) -> None:
    """``config show --json`` returns the resolved configuration."""
    result = _invoke(config_file, "config", "show", "--json")

    assert result.exit_code == 0, result.stdout
    payload = json.loads(result.stdout)
    assert payload["service_name"] == "rustbridge"
    assert payload["account"]["groups"] == ["dialout"]
    assert payload["config_file"] == str(config_file)


def test_config_show_yaml(config_file: Path) -> None:
    """Without ``--json`` the configuration is rendered as YAML."""
    result = _invoke(config_file, "config", "show")

    assert result.exit_code == 0, result.stdout
    data = yaml.safe_load(result.stdout)
    assert data["binary_name"] == "rustbridge"


def test_invalid_config_exits_with_config_code(tmp_path: Path) -> None:
    """Unknown configuration keys abort with exit code 2."""
    config_file = tmp_path / "config.yml"
    config_file.write_text("bogus: true\n", encoding="utf-8")

    result = _invoke(config_file, "status")

    assert result.exit_code == 2
    assert "Unknown configuration keys: bogus" in result.stdout
