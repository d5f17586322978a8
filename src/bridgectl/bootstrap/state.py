"""Installation state discovered from the host on every invocation."""
from __future__ import annotations

import pwd
from dataclasses import asdict, dataclass

from ..config import AppConfig
from ..providers.systemd import SystemdProvider


@dataclass(frozen=True, slots=True)
class InstallationState:
    """Predicate set describing how much of the service is provisioned."""

    binary_present: bool
    config_present: bool
    user_exists: bool
    unit_present: bool
    service_active: bool
    service_enabled: bool

    @property
    def registered(self) -> bool:
        """Everything install provisions is present and the unit is enabled."""
        return (
            self.binary_present
            and self.config_present
            and self.user_exists
            and self.unit_present
            and self.service_enabled
        )

    @property
    def absent(self) -> bool:
        """No trace of the service remains on the host."""
        return not any(asdict(self).values())

    @property
    def label(self) -> str:
        """Short name for the state machine position."""
        if self.registered:
            return "registered"
        if self.absent:
            return "absent"
        return "partial"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        payload: dict[str, object] = dict(asdict(self))
        payload["state"] = self.label
        return payload


def user_exists(name: str) -> bool:
    """Return ``True`` when *name* resolves in the passwd database."""
    try:
        pwd.getpwnam(name)
    except KeyError:
        return False
    return True


def probe_installation(config: AppConfig, systemd: SystemdProvider) -> InstallationState:
    """Probe files, account and systemd for the configured service."""
    return InstallationState(
        binary_present=config.binary_path.is_file(),
        config_present=config.config_path.is_file(),
        user_exists=user_exists(config.account.name),
        unit_present=systemd.unit_path(config.service_name).exists(),
        service_active=systemd.is_active(config.service_name),
        service_enabled=systemd.is_enabled(config.service_name),
    )


__all__ = ["InstallationState", "probe_installation", "user_exists"]
