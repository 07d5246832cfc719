"""Aggregate model imports for Alembic auto-detection."""

# Public schema
from carebase.models.public.agency import Agency  # noqa: F401

# Tenant schema: client records
from carebase.models.tenant.client import Client  # noqa: F401
from carebase.models.tenant.client_medication import ClientMedication  # noqa: F401

# Tenant schema: care plans
from carebase.models.tenant.care_plan import CarePlan  # noqa: F401
from carebase.models.tenant.care_plan_draft import CarePlanDraft  # noqa: F401
from carebase.models.tenant.staff_assignment import CarePlanStaffAssignment  # noqa: F401

# Tenant schema: audit
from carebase.models.tenant.activity_log import ActivityLog  # noqa: F401
