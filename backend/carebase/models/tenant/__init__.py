"""Tenant-schema models (duplicated into every tenant_xxx schema).

These models use TenantBase, so their tables are created per-agency
and never in the public schema.
"""

# ── Client records ──────────────────────────────────────────
from carebase.models.tenant.client import Client
from carebase.models.tenant.client_medication import ClientMedication

# ── Care plans ──────────────────────────────────────────────
from carebase.models.tenant.care_plan import CarePlan
from carebase.models.tenant.care_plan_draft import CarePlanDraft
from carebase.models.tenant.staff_assignment import CarePlanStaffAssignment

# ── Audit ───────────────────────────────────────────────────
from carebase.models.tenant.activity_log import ActivityLog

__all__ = [
    "Client", "ClientMedication",
    "CarePlan", "CarePlanDraft", "CarePlanStaffAssignment",
    "ActivityLog",
]
