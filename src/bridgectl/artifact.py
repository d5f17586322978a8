"""Locate the service executable, building it when it is missing."""
from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from .command import format_command, run_command
from .errors import BuildError, CommandError, CommandTimeout, ErrorKind

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ArtifactProvider:
    """Resolve a pre-built artifact or produce it via the external build step."""

    project_root: Path
    build_command: Sequence[str] = field(default=("cargo", "build", "--release"))
    timeout: float | None = 1800.0

    def ensure_artifact(self, expected_path: Path) -> Path:
        """Return *expected_path*, running the build first if it is absent."""
        if expected_path.is_file():
            return expected_path

        LOGGER.info(
            "Artifact %s missing; running %s",
            expected_path,
            format_command(self.build_command),
        )
        try:
            self._run_build()
        except CommandTimeout:
            raise
        except CommandError as exc:
            raise BuildError(f"Build failed: {exc}") from exc

        if not expected_path.is_file():
            raise BuildError(
                f"Build completed but artifact is missing: {expected_path}"
            )
        return expected_path

    def _run_build(self) -> subprocess.CompletedProcess[str]:
        """Execute the build command in the project root (isolated for testing)."""
        return run_command(
            list(self.build_command),
            cwd=self.project_root,
            timeout=self.timeout,
            capture_output=True,
            error_kind=ErrorKind.BUILD_FAILED,
        )


__all__ = ["ArtifactProvider"]
