"""Error taxonomy shared by the provisioning modules."""
from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Machine-readable cause attached to every provisioning failure."""

    PERMISSION_DENIED = "permission-denied"
    BUILD_FAILED = "build-failed"
    ACCOUNT_FAILED = "account-failed"
    FILESYSTEM_FAILED = "filesystem-failed"
    REGISTRATION_FAILED = "registration-failed"
    COMMAND_FAILED = "command-failed"
    TIMEOUT = "timeout"


class ProvisionError(RuntimeError):
    """Base class for fatal install/uninstall failures."""

    kind: ErrorKind = ErrorKind.COMMAND_FAILED

    def __init__(self, message: str, *, kind: ErrorKind | None = None) -> None:
        """Store *message* and an optional *kind* override."""
        super().__init__(message)
        if kind is not None:
            self.kind = kind

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"kind": self.kind.value, "message": str(self)}


class PrivilegeError(ProvisionError, PermissionError):
    """Raised when the invoking user lacks superuser rights."""

    kind = ErrorKind.PERMISSION_DENIED


class BuildError(ProvisionError):
    """Raised when the build step fails or produces no artifact."""

    kind = ErrorKind.BUILD_FAILED


class CommandError(ProvisionError):
    """Raised when an external command exits non-zero or cannot be found."""

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind | None = None,
        returncode: int | None = None,
    ) -> None:
        """Record the failing command's *returncode* alongside the message."""
        super().__init__(message, kind=kind)
        self.returncode = returncode


class CommandTimeout(CommandError):
    """Raised when an external command exceeds its timeout."""

    kind = ErrorKind.TIMEOUT


class AccountError(ProvisionError):
    """Raised when service account management fails."""

    kind = ErrorKind.ACCOUNT_FAILED


class FilesystemError(ProvisionError):
    """Raised when staging files or directories fails."""

    kind = ErrorKind.FILESYSTEM_FAILED


__all__ = [
    "AccountError",
    "BuildError",
    "CommandError",
    "CommandTimeout",
    "ErrorKind",
    "FilesystemError",
    "PrivilegeError",
    "ProvisionError",
]
