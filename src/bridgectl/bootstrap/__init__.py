"""Host provisioning helpers used by the install and uninstall flows."""
from __future__ import annotations

from .filesystem import (
    FileAction,
    apply_ownership,
    ensure_config_dir,
    remove_binary,
    remove_config_dir,
    stage_binary,
    stage_config,
)
from .service_accounts import (
    ServiceAccountAction,
    ServiceAccountPlan,
    ServiceAccountSpec,
    ServiceAccountStatus,
    apply_service_account_plan,
    ensure_service_account,
    inspect_service_account,
    plan_service_account,
    plan_service_account_removal,
    remove_service_account,
)
from .state import InstallationState, probe_installation

__all__ = [
    # service account helpers
    "ServiceAccountAction",
    "ServiceAccountPlan",
    "ServiceAccountSpec",
    "ServiceAccountStatus",
    "inspect_service_account",
    "plan_service_account",
    "plan_service_account_removal",
    "apply_service_account_plan",
    "ensure_service_account",
    "remove_service_account",
    # filesystem helpers
    "FileAction",
    "ensure_config_dir",
    "stage_binary",
    "stage_config",
    "apply_ownership",
    "remove_binary",
    "remove_config_dir",
    # state probe
    "InstallationState",
    "probe_installation",
]
