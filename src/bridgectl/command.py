"""Bounded execution of external commands."""
from __future__ import annotations

import logging
import shlex
import subprocess
from collections.abc import Sequence
from pathlib import Path

from .errors import CommandError, CommandTimeout, ErrorKind

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0


def format_command(args: Sequence[str]) -> str:
    """Return *args* as a shell-quoted string for diagnostics."""
    return " ".join(shlex.quote(str(arg)) for arg in args)


def run_command(
    args: Sequence[str],
    *,
    check: bool = True,
    timeout: float | None = DEFAULT_TIMEOUT,
    cwd: Path | None = None,
    capture_output: bool = True,
    error_kind: ErrorKind | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run *args* and return the completed process.

    A missing executable or, when *check* is set, a non-zero exit raises
    :class:`CommandError`. Exceeding *timeout* raises :class:`CommandTimeout`
    regardless of *check*.
    """
    command = [str(arg) for arg in args]
    joined = format_command(command)
    LOGGER.info("CMD %s", joined)
    try:
        result = subprocess.run(  # noqa: S603
            command,
            capture_output=capture_output,
            text=True,
            check=False,
            timeout=timeout,
            cwd=str(cwd) if cwd is not None else None,
        )
    except subprocess.TimeoutExpired as exc:
        raise CommandTimeout(f"{joined} timed out after {timeout:g}s") from exc
    except FileNotFoundError as exc:
        raise CommandError(f"{command[0]} not found: {exc}", kind=error_kind) from exc

    stdout = result.stdout or ""
    stderr = result.stderr or ""
    if stdout:
        LOGGER.debug("STDOUT %s", stdout.strip())
    if stderr:
        LOGGER.debug("STDERR %s", stderr.strip())

    if check and result.returncode != 0:
        message = stderr.strip() or stdout.strip() or "no output"
        raise CommandError(
            f"{joined} failed (exit {result.returncode}): {message}",
            kind=error_kind,
            returncode=result.returncode,
        )
    return result


__all__ = ["DEFAULT_TIMEOUT", "format_command", "run_command"]
