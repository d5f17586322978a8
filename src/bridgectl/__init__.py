"""Install and remove the RustBridge systemd service.

The CLI lives in :mod:`bridgectl.cli`; the flows it drives are in
:mod:`bridgectl.orchestrator`.
"""
from __future__ import annotations

__all__ = ["__version__"]

# Kept in step with ``pyproject.toml``.
__version__ = "0.1.0"
