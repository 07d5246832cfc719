"""Care plan permissions and the role defaults they start from.

Permissions are `<resource>.<action>` strings.  The identity service
embeds each user's effective set in the JWT; checks here never touch
the database.
"""

from __future__ import annotations

from typing import Iterable, Mapping

CARE_PLAN_READ = "care_plan.read"        # plans, drafts, completion
CARE_PLAN_WRITE = "care_plan.write"      # autosave, save, finalize for approval
CARE_PLAN_APPROVE = "care_plan.approve"  # finalize straight to approved / active
CLIENT_READ = "client.read"

ALL_PERMISSIONS: frozenset[str] = frozenset({
    CARE_PLAN_READ, CARE_PLAN_WRITE, CARE_PLAN_APPROVE, CLIENT_READ,
})

ROLE_DEFAULTS: dict[str, frozenset[str]] = {
    "administrator": ALL_PERMISSIONS,
    "branch_admin": ALL_PERMISSIONS,
    "carer": frozenset({CARE_PLAN_READ, CARE_PLAN_WRITE, CLIENT_READ}),
}

# Finalize targets beyond the approval queue need the approve permission
_STATUS_PERMISSION = {
    "pending_approval": CARE_PLAN_WRITE,
    "approved": CARE_PLAN_APPROVE,
    "active": CARE_PLAN_APPROVE,
}


def resolve_permissions(role: str, overrides: Mapping[str, bool] | None = None) -> list[str]:
    """Role defaults with per-user grants (True) and revocations (False) applied.

    Unknown permission names in `overrides` are ignored.  Sorted, so the
    JWT claim is stable.
    """
    granted = set(ROLE_DEFAULTS.get(role, ()))
    for perm, allow in (overrides or {}).items():
        if perm in ALL_PERMISSIONS:
            (granted.add if allow else granted.discard)(perm)
    return sorted(granted)


def has_permission(permissions: Iterable[str], required: str) -> bool:
    return required in set(permissions)


def permission_for_status(status: str) -> str:
    return _STATUS_PERMISSION.get(status, CARE_PLAN_APPROVE)
