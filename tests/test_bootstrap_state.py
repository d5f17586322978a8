"""Unit tests for installation state probing."""
from __future__ import annotations

from collections.abc import Callable

from bridgectl.bootstrap.state import InstallationState, probe_installation
from bridgectl.config import AppConfig
from bridgectl.providers.systemd import SystemdProvider
from bridgectl.templates import TemplateEngine


def _state(**flags: bool) -> InstallationState:
    values = {
        "binary_present": False,
        "config_present": False,
        "user_exists": False,
        "unit_present": False,
        "service_active": False,
        "service_enabled": False,
    }
    values.update(flags)
    return InstallationState(**values)


def test_labels() -> None:
    """The label reflects the state machine position."""
    assert _state().label == "absent"
    assert _state(user_exists=True).label == "partial"
    registered = _state(
        binary_present=True,
        config_present=True,
        user_exists=True,
        unit_present=True,
        service_enabled=True,
    )
    assert registered.label == "registered"
    assert registered.to_dict()["state"] == "registered"
    assert registered.to_dict()["service_active"] is False


def test_probe_on_empty_host(make_config: Callable[..., AppConfig], fake_host) -> None:
    """Nothing installed probes as absent."""
    config = make_config()
    provider = SystemdProvider(
        templates=TemplateEngine.with_overrides(None),
        systemd_dir=config.systemd.unit_dir,
    )

    state = probe_installation(config, provider)

    assert state.absent


def test_probe_reads_every_resource(
    make_config: Callable[..., AppConfig],
    fake_host,
) -> None:
    """Each predicate is backed by the matching host resource."""
    config = make_config()
    provider = SystemdProvider(
        templates=TemplateEngine.with_overrides(None),
        systemd_dir=config.systemd.unit_dir,
    )
    config.binary_path.parent.mkdir(parents=True)
    config.binary_path.write_bytes(b"bin")
    provider.unit_path(config.service_name).parent.mkdir(parents=True)
    provider.unit_path(config.service_name).write_text("[Unit]\n", encoding="utf-8")
    fake_host.add_user("rustbridge")
    fake_host.active = True

    state = probe_installation(config, provider)

    assert state.binary_present
    assert not state.config_present
    assert state.user_exists
    assert state.unit_present
    assert state.service_active
    assert not state.service_enabled
    assert state.label == "partial"
