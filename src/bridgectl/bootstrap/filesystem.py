"""Filesystem staging for the service binary and configuration."""
from __future__ import annotations

import grp
import os
import pwd
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from ..errors import FilesystemError

FileStatus = Literal["created", "updated", "skipped", "removed"]

# O_NOFOLLOW keeps a planted symlink from redirecting the write.
_CREATE_FLAGS = os.O_WRONLY | os.O_CREAT | os.O_EXCL | os.O_NOFOLLOW


@dataclass(slots=True)
class FileAction:
    """Outcome of a single filesystem step."""

    path: Path
    status: FileStatus
    detail: str | None = None

    @property
    def changed(self) -> bool:
        """Return ``True`` when the step touched the host."""
        return self.status != "skipped"


def _chown_entry(path: Path, uid: int, gid: int) -> None:
    os.chown(path, uid, gid, follow_symlinks=False)


def ensure_config_dir(path: Path, *, mode: int = 0o755) -> FileAction:
    """Create *path* if needed; an existing directory is left as-is."""
    if path.is_dir():
        return FileAction(path=path, status="skipped", detail="exists")
    if path.exists() or path.is_symlink():
        raise FilesystemError(f"{path} exists but is not a directory.")
    try:
        path.mkdir(parents=True, exist_ok=True)
        os.chmod(path, mode)
    except OSError as exc:
        raise FilesystemError(f"Unable to prepare {path}: {exc}") from exc
    return FileAction(path=path, status="created")


def stage_binary(src: Path, dst: Path, *, mode: int = 0o755) -> FileAction:
    """Copy *src* over *dst* and mark it executable.

    The binary is always refreshed. The copy lands in a temporary file beside
    *dst* and is renamed into place, so a running executable is never
    truncated.
    """
    if not src.is_file():
        raise FilesystemError(f"Binary source {src} does not exist.")
    existed = dst.exists()
    try:
        dst.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{dst.name}.", dir=str(dst.parent))
        os.close(fd)
        tmp_path = Path(tmp_name)
        try:
            shutil.copyfile(src, tmp_path)
            os.chmod(tmp_path, mode)
            os.replace(tmp_path, dst)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()
    except OSError as exc:
        raise FilesystemError(f"Unable to install {src} to {dst}: {exc}") from exc
    return FileAction(path=dst, status="updated" if existed else "created")


def stage_config(default_src: Path, dst: Path, *, mode: int = 0o644) -> FileAction:
    """Seed *dst* from *default_src* unless a configuration already exists.

    Any entry already at *dst*, including a symlink, counts as an existing
    configuration. The new file is created exclusively so nothing placed there
    between the check and the write is ever written through.
    """
    skipped = FileAction(path=dst, status="skipped", detail="Config file exists, skipping")
    if dst.exists() or dst.is_symlink():
        return skipped
    if not default_src.is_file():
        raise FilesystemError(f"Default configuration {default_src} does not exist.")
    try:
        content = default_src.read_bytes()
        dst.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(dst, _CREATE_FLAGS, mode)
        except FileExistsError:
            return skipped
        with os.fdopen(fd, "wb") as handle:
            handle.write(content)
            os.fchmod(handle.fileno(), mode)
    except OSError as exc:
        raise FilesystemError(f"Unable to seed {dst}: {exc}") from exc
    return FileAction(path=dst, status="created")


def apply_ownership(path: Path, user: str, group: str | None = None) -> FileAction:
    """Recursively hand *path* to ``user:group``.

    *group* defaults to the user's primary group. Symlinks inside the tree are
    re-owned themselves; their targets are never touched and symlinked
    directories are not descended into.
    """
    owner_group = group or user
    try:
        entry = pwd.getpwnam(user)
        gid = grp.getgrnam(group).gr_gid if group else entry.pw_gid
    except KeyError as exc:
        raise FilesystemError(
            f"Unable to set ownership of {path} to {user}:{owner_group}: {exc}"
        ) from exc

    targets = [path]
    if path.is_dir() and not path.is_symlink():
        for root, dirs, files in os.walk(path, followlinks=False):
            base = Path(root)
            targets.extend(base / name for name in dirs)
            targets.extend(base / name for name in files)
    try:
        for target in targets:
            _chown_entry(target, entry.pw_uid, gid)
    except OSError as exc:
        raise FilesystemError(
            f"Unable to set ownership of {path} to {user}:{owner_group}: {exc}"
        ) from exc
    return FileAction(path=path, status="updated", detail=f"{user}:{owner_group}")


def remove_binary(path: Path) -> FileAction:
    """Delete the installed binary when present."""
    if not path.exists():
        return FileAction(path=path, status="skipped", detail="absent")
    try:
        path.unlink()
    except OSError as exc:
        raise FilesystemError(f"Unable to remove {path}: {exc}") from exc
    return FileAction(path=path, status="removed")


def remove_config_dir(path: Path) -> FileAction:
    """Delete the configuration directory tree when present."""
    if not path.exists():
        return FileAction(path=path, status="skipped", detail="absent")
    try:
        shutil.rmtree(path)
    except OSError as exc:
        raise FilesystemError(f"Unable to remove {path}: {exc}") from exc
    return FileAction(path=path, status="removed")


__all__ = [
    "FileAction",
    "apply_ownership",
    "ensure_config_dir",
    "remove_binary",
    "remove_config_dir",
    "stage_binary",
    "stage_config",
]
