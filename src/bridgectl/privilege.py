"""Superuser gate that runs before any host mutation."""
from __future__ import annotations

import os

from .errors import PrivilegeError


def check_privilege(action: str = "bridgectl") -> None:
    """Raise :class:`PrivilegeError` unless the effective uid is root."""
    if os.geteuid() != 0:
        raise PrivilegeError(f"Please run as root (sudo {action}).")


__all__ = ["check_privilege"]
