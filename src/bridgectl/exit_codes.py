"""Enumerations for CLI exit codes."""
from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Well-known exit codes enforced across the CLI.

    Every fatal provisioning path shares ``FAILURE``; the cause travels in the
    structured error kind instead of the exit status.
    """

    OK = 0
    FAILURE = 1
    CONFIG = 2
