"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import grp
import os
import pwd
import subprocess
from collections.abc import Callable
from pathlib import Path
from types import SimpleNamespace

import pytest
import yaml

from bridgectl.bootstrap import filesystem, service_accounts
from bridgectl.config import AppConfig, load_config
from bridgectl.errors import CommandError
from bridgectl.providers.systemd import SystemdError, SystemdProvider


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip expensive tests during mutation runs."""
    if not os.environ.get("MUTANT_UNDER_TEST"):
        return
    skip_marker = pytest.mark.skip(reason="Skipped during mutation run to avoid timeouts.")
    for item in items:
        if "mutation_timeout" in item.keywords:
            item.add_marker(skip_marker)


def host_overrides(tmp_path: Path) -> dict[str, object]:
    """Return config overrides that keep every managed path under *tmp_path*."""
    return {
        "config_file": str(tmp_path / "etc" / "bridgectl" / "config.yml"),
        "install_dir": str(tmp_path / "usr" / "local" / "bin"),
        "config_dir": str(tmp_path / "etc" / "rustbridge"),
        "project_root": str(tmp_path / "project"),
        "logs_dir": str(tmp_path / "var" / "log" / "bridgectl"),
        "templates_dir": str(tmp_path / "etc" / "bridgectl" / "templates"),
        "systemd": {"unit_dir": str(tmp_path / "etc" / "systemd" / "system")},
    }


def seed_project(tmp_path: Path, *, artifact: bool = True) -> Path:
    """Create a project tree with a default config and (optionally) a built binary."""
    project = tmp_path / "project"
    project.mkdir(parents=True, exist_ok=True)
    (project / "config.yaml").write_text("serial: /dev/ttyUSB0\n", encoding="utf-8")
    if artifact:
        binary = project / "target" / "release" / "rustbridge"
        binary.parent.mkdir(parents=True, exist_ok=True)
        binary.write_bytes(b"\x7fELF-rustbridge-v1")
    return project


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., AppConfig]:
    """Return a factory building an :class:`AppConfig` rooted at ``tmp_path``."""

    def factory(**extra: object) -> AppConfig:
        overrides = host_overrides(tmp_path)
        overrides.update(extra)
        return load_config(env={}, overrides=overrides)

    return factory


class FakeHost:
    """In-memory passwd, group and systemd state for flow tests."""

    def __init__(self, unit_dir: Path) -> None:
        """Start with an empty host that only knows the ``dialout`` group."""
        self.unit_dir = unit_dir
        self.users: dict[str, SimpleNamespace] = {}
        self.groups: dict[str, SimpleNamespace] = {
            "dialout": SimpleNamespace(gr_name="dialout", gr_gid=20, gr_mem=[]),
        }
        self.active = False
        self.enabled = False
        self.systemctl_available = True
        self.account_commands: list[list[str]] = []
        self.systemctl_calls: list[tuple[str, str | None]] = []
        self.chowned: list[tuple[Path, int, int]] = []
        # (command, active, unit file present) captured at every systemctl call
        self.trace: list[tuple[str, bool, bool]] = []
        self._next_uid = 990

    # passwd / group -------------------------------------------------------
    def add_user(self, name: str, *, shell: str = "/bin/false") -> None:
        """Pre-create an account as if an operator had made it."""
        self._next_uid += 1
        self.users[name] = SimpleNamespace(
            pw_name=name,
            pw_uid=self._next_uid,
            pw_gid=self._next_uid,
            pw_dir="/nonexistent",
            pw_shell=shell,
        )

    def getpwnam(self, name: str) -> SimpleNamespace:
        """Stand-in for :func:`pwd.getpwnam`."""
        try:
            return self.users[name]
        except KeyError:
            raise KeyError(f"getpwnam(): name not found: {name!r}") from None

    def getgrnam(self, name: str) -> SimpleNamespace:
        """Stand-in for :func:`grp.getgrnam`."""
        try:
            return self.groups[name]
        except KeyError:
            raise KeyError(f"getgrnam(): name not found: {name!r}") from None

    def run_account(self, command: list[str]) -> subprocess.CompletedProcess[str]:
        """Apply useradd/usermod/userdel to the in-memory databases."""
        self.account_commands.append(list(command))
        program, name = command[0], command[-1]
        if program == "useradd":
            shell = command[command.index("--shell") + 1]
            self.add_user(name, shell=shell)
        elif program == "usermod":
            for group in command[2].split(","):
                if group not in self.groups:
                    raise CommandError(f"usermod: group '{group}' does not exist", returncode=6)
                self.groups[group].gr_mem.append(name)
        elif program == "userdel":
            if name not in self.users:
                raise CommandError(f"userdel: user '{name}' does not exist", returncode=6)
            del self.users[name]
        return subprocess.CompletedProcess(command, 0, "", "")

    # systemd --------------------------------------------------------------
    def unit_present(self) -> bool:
        """Return ``True`` when any unit file exists in the unit directory."""
        return self.unit_dir.is_dir() and any(self.unit_dir.iterdir())

    def systemctl(
        self,
        provider: SystemdProvider,
        command: str,
        unit_or_path: str | Path | None = None,
        *,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        """Emulate the subset of ``systemctl`` the provider drives."""
        unit = str(unit_or_path) if unit_or_path is not None else None
        self.systemctl_calls.append((command, unit))
        self.trace.append((command, self.active, self.unit_present()))
        args = ["systemctl", command] + ([unit] if unit else [])
        if not self.systemctl_available:
            raise SystemdError("systemctl not found: [Errno 2] No such file or directory")

        returncode = 0
        if command == "is-active":
            returncode = 0 if self.active else 3
        elif command == "is-enabled":
            returncode = 0 if self.enabled else 1
        elif command in {"enable", "restart"} and not self.unit_present():
            returncode = 5
        elif command == "enable":
            self.enabled = True
        elif command == "restart":
            self.active = True
        elif command == "stop":
            self.active = False
        elif command == "disable":
            self.enabled = False

        if check and returncode != 0:
            raise SystemdError(f"systemctl {command} {unit} failed (exit {returncode})")
        return subprocess.CompletedProcess(args, returncode, "", "")

    # filesystem -----------------------------------------------------------
    def chown(self, path: Path, uid: int, gid: int) -> None:
        """Record an ownership change instead of applying it."""
        self.chowned.append((Path(path), uid, gid))


@pytest.fixture
def fake_host(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> FakeHost:
    """Patch passwd, group, systemctl and chown onto an in-memory host."""
    host = FakeHost(tmp_path / "etc" / "systemd" / "system")
    monkeypatch.setattr(pwd, "getpwnam", host.getpwnam)
    monkeypatch.setattr(grp, "getgrnam", host.getgrnam)
    monkeypatch.setattr(filesystem, "_chown_entry", host.chown)
    monkeypatch.setattr(
        service_accounts,
        "_default_runner",
        lambda command, timeout: host.run_account(command),
    )

    def fake_systemctl(
        self: SystemdProvider,
        command: str,
        unit_or_path: str | Path | None = None,
        *,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        return host.systemctl(self, command, unit_or_path, check=check)

    monkeypatch.setattr(SystemdProvider, "_systemctl", fake_systemctl)
    return host


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """Return a project tree holding a default config and a pre-built binary."""
    return seed_project(tmp_path)


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """Write a bridgectl config file pointing every managed path at ``tmp_path``."""
    path = tmp_path / "etc" / "bridgectl" / "config.yml"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(host_overrides(tmp_path)), encoding="utf-8")
    return path
