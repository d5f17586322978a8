"""Systemd provider for registering and controlling the service unit."""
from __future__ import annotations

import os
import shutil
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from jinja2 import TemplateError

from ..command import DEFAULT_TIMEOUT, run_command
from ..errors import CommandError, CommandTimeout, ErrorKind, ProvisionError
from ..templates import TemplateEngine


class SystemdError(ProvisionError):
    """Raised when systemd operations fail."""

    kind = ErrorKind.REGISTRATION_FAILED


@dataclass(slots=True)
class SystemdProvider:
    """Install, control and remove the systemd unit for a service."""

    templates: TemplateEngine
    systemd_dir: Path = Path("/etc/systemd/system")
    systemctl_bin: str = "systemctl"
    journalctl_bin: str = "journalctl"
    timeout: float | None = DEFAULT_TIMEOUT

    def unit_name(self, service: str) -> str:
        """Return the systemd unit name for *service*."""
        safe = service.replace("/", "-")
        return f"{safe}.service"

    def unit_path(self, service: str) -> Path:
        """Return the full path for the service unit file."""
        return self.systemd_dir / self.unit_name(service)

    def register_unit(self, service: str, unit_src: Path) -> bool:
        """Copy *unit_src* into place, returning ``True`` when the file changed."""
        path = self.unit_path(service)
        try:
            content = unit_src.read_bytes()
        except OSError as exc:
            raise SystemdError(f"Unit source {unit_src} is unreadable: {exc}") from exc
        if path.exists() and path.read_bytes() == content:
            return False
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(unit_src, path)
            os.chmod(path, 0o644)
        except OSError as exc:
            raise SystemdError(f"Unable to install unit file {path}: {exc}") from exc
        return True

    def render_unit(self, service: str, context: Mapping[str, object]) -> bool:
        """Render the built-in unit template for *service* using *context*."""
        path = self.unit_path(service)
        try:
            return self.templates.render_to_path("systemd/service.j2", path, context, mode=0o644)
        except TemplateError as exc:
            raise SystemdError(f"Unable to render unit template for {path}: {exc}") from exc
        except OSError as exc:
            raise SystemdError(f"Unable to write unit file {path}: {exc}") from exc

    def reload_daemon(self) -> subprocess.CompletedProcess[str]:
        """Ask systemd to re-read unit files."""
        return self._systemctl("daemon-reload")

    def enable(self, service: str) -> subprocess.CompletedProcess[str]:
        """Enable the service unit."""
        return self._systemctl("enable", self.unit_name(service))

    def disable(self, service: str) -> subprocess.CompletedProcess[str]:
        """Disable the service unit."""
        return self._systemctl("disable", self.unit_name(service))

    def stop(self, service: str) -> subprocess.CompletedProcess[str]:
        """Stop the service unit."""
        return self._systemctl("stop", self.unit_name(service))

    def restart(self, service: str) -> subprocess.CompletedProcess[str]:
        """Restart the service unit."""
        return self._systemctl("restart", self.unit_name(service))

    def enable_and_start(self, service: str, *, start: bool = True) -> None:
        """Enable the unit and, unless *start* is false, restart it."""
        self.enable(service)
        if start:
            # restart picks up a refreshed binary when the unit was already running
            self.restart(service)

    def is_active(self, service: str) -> bool:
        """Return ``True`` when systemd reports the unit as active."""
        result = self._systemctl("is-active", self.unit_name(service), check=False)
        return result.returncode == 0

    def is_enabled(self, service: str) -> bool:
        """Return ``True`` when systemd reports the unit as enabled."""
        result = self._systemctl("is-enabled", self.unit_name(service), check=False)
        return result.returncode == 0

    def stop_if_active(self, service: str) -> bool:
        """Stop the unit when running; an inactive unit is a no-op."""
        if not self.is_active(service):
            return False
        self.stop(service)
        return True

    def disable_if_enabled(self, service: str) -> bool:
        """Disable the unit when enabled; a disabled unit is a no-op."""
        if not self.is_enabled(service):
            return False
        self.disable(service)
        return True

    def remove_unit_file(self, service: str) -> bool:
        """Delete the unit file, refusing while the service is still active."""
        path = self.unit_path(service)
        if not path.exists():
            return False
        if self.is_active(service):
            raise SystemdError(
                f"Refusing to remove {path} while {self.unit_name(service)} is active."
            )
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise SystemdError(f"Unable to remove unit file {path}: {exc}") from exc
        return True

    def status(self, service: str) -> subprocess.CompletedProcess[str]:
        """Return the status output for the unit."""
        return self._systemctl("status", self.unit_name(service), check=False)

    def logs(
        self,
        service: str,
        *,
        lines: int | None = None,
        since: str | None = None,
        follow: bool = False,
    ) -> subprocess.CompletedProcess[str]:
        """Return journalctl output for the unit."""
        args: list[str] = ["--unit", self.unit_name(service), "--no-pager"]
        if lines is not None:
            args.extend(["--lines", str(lines)])
        if since is not None:
            args.extend(["--since", since])
        if follow:
            args.append("--follow")
        return self._journalctl(args, capture_output=not follow)

    # ------------------------------------------------------------------
    def _systemctl(
        self,
        command: str,
        unit_or_path: str | Path | None = None,
        *,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        args: list[str] = [self.systemctl_bin, command]
        if unit_or_path is not None:
            args.append(str(unit_or_path))
        return self._run_command(
            args,
            check=check,
            capture_output=True,
            timeout=self.timeout,
        )

    def _journalctl(
        self,
        args: Sequence[str],
        *,
        check: bool = True,
        capture_output: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        command = [self.journalctl_bin, *args]
        return self._run_command(
            command,
            check=check,
            capture_output=capture_output,
            # following the journal is open-ended by request
            timeout=self.timeout if capture_output else None,
        )

    def _run_command(
        self,
        args: Sequence[str],
        *,
        check: bool,
        capture_output: bool,
        timeout: float | None,
    ) -> subprocess.CompletedProcess[str]:
        try:
            return run_command(
                args,
                check=check,
                timeout=timeout,
                capture_output=capture_output,
                error_kind=ErrorKind.REGISTRATION_FAILED,
            )
        except CommandTimeout:
            raise
        except CommandError as exc:
            raise SystemdError(str(exc)) from exc


__all__ = ["SystemdError", "SystemdProvider"]
