"""SQLAlchemy implementations of the wizard's store protocols.

All four stores share one tenant-scoped AsyncSession (from
get_tenant_db) and only flush; the request's session dependency owns
the commit.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from carebase.middleware.exceptions import ResourceNotFoundError
from carebase.models.tenant.care_plan import CarePlan
from carebase.models.tenant.care_plan_draft import CarePlanDraft
from carebase.models.tenant.client import Client
from carebase.models.tenant.client_medication import ClientMedication
from carebase.models.tenant.staff_assignment import CarePlanStaffAssignment
from carebase.services.interfaces import CommitRequest, Draft, SubjectProfile
from carebase.services.staff_reconciliation import StaffAssignment
from carebase.services.step_catalog import category_for_age_group

logger = logging.getLogger(__name__)


def _parse_date(value: Any) -> date | None:
    if isinstance(value, date):
        return value
    if not value or not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        logger.warning("Ignoring unparseable care plan date %r", value)
        return None


def _to_draft(row: CarePlanDraft) -> Draft:
    return Draft(
        id=row.id,
        client_id=row.client_id,
        care_plan_id=row.care_plan_id,
        auto_save_data=dict(row.auto_save_data or {}),
        last_step_completed=row.last_step_completed,
        catalog_version=row.catalog_version,
        completion_percentage=row.completion_percentage,
        status=row.status,
        updated_at=row.updated_at,
    )


# ── Client profile ──────────────────────────────────────────


class SqlSubjectProfiles:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_subject_profile(self, client_id: str) -> SubjectProfile:
        result = await self.db.execute(select(Client).where(Client.id == client_id))
        client = result.scalar_one_or_none()
        if not client:
            raise ResourceNotFoundError("Client", client_id)
        return SubjectProfile(
            client_id=client.id,
            category=category_for_age_group(client.age_group),
            first_name=client.first_name,
            last_name=client.last_name,
            email=client.email,
            phone=client.phone,
            address=client.address,
        )


# ── Drafts ──────────────────────────────────────────────────


class SqlDraftBackend:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_draft(self, draft_id: str) -> Draft | None:
        row = await self.db.get(CarePlanDraft, draft_id)
        return _to_draft(row) if row else None

    async def find_draft(self, client_id: str, care_plan_id: str | None) -> Draft | None:
        stmt = select(CarePlanDraft).where(
            CarePlanDraft.client_id == client_id,
            CarePlanDraft.status == "draft",
        )
        if care_plan_id is None:
            stmt = stmt.where(CarePlanDraft.care_plan_id.is_(None))
        else:
            stmt = stmt.where(CarePlanDraft.care_plan_id == care_plan_id)
        stmt = stmt.order_by(CarePlanDraft.updated_at.desc()).limit(1)

        result = await self.db.execute(stmt)
        row = result.scalar_one_or_none()
        return _to_draft(row) if row else None

    async def put_draft(self, draft: Draft) -> Draft:
        row = await self.db.get(CarePlanDraft, draft.id) if draft.id else None
        if row is None:
            row = CarePlanDraft(client_id=draft.client_id)
            if draft.id:
                row.id = draft.id
            self.db.add(row)

        row.care_plan_id = draft.care_plan_id
        row.auto_save_data = dict(draft.auto_save_data)
        row.last_step_completed = draft.last_step_completed
        row.catalog_version = draft.catalog_version
        row.completion_percentage = draft.completion_percentage
        row.status = draft.status
        row.updated_at = datetime.utcnow()
        await self.db.flush()
        return _to_draft(row)


# ── Committed care plans ────────────────────────────────────


class SqlCarePlanStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def commit(self, request: CommitRequest) -> str:
        """Create a care plan, or write a new version of an existing one.

        Staff assignments are replaced wholesale from the request.
        """
        record = request.record
        if request.care_plan_id:
            plan = await self.db.get(CarePlan, request.care_plan_id)
            if plan is None:
                raise ResourceNotFoundError("Care plan", request.care_plan_id)
            plan.version = (plan.version or 1) + 1
        else:
            plan = CarePlan(client_id=request.client_id, version=1)
            self.db.add(plan)

        plan.title = (record.get("title") or "").strip() or "Untitled care plan"
        plan.status = request.status
        plan.provider_type = record.get("provider_type") or "staff"
        plan.provider_name = record.get("provider_name") or None
        plan.start_date = _parse_date(record.get("start_date"))
        plan.review_date = _parse_date(record.get("review_date"))
        plan.priority = record.get("priority") or "medium"
        plan.data = dict(record)
        plan.completion_percentage = request.completion_percentage
        plan.finalized_at = datetime.utcnow()
        plan.finalized_by = request.actor_id

        if request.care_plan_id:
            # Delete old rows before inserting so (care_plan_id, staff_id) stays unique
            plan.staff_assignments.clear()
            await self.db.flush()
        plan.staff_assignments.extend(
            CarePlanStaffAssignment(staff_id=a.staff_id, is_primary=a.is_primary)
            for a in request.assignments
        )
        await self.db.flush()

        logger.info(
            "Committed care plan %s v%d (%s, %d staff)",
            plan.id, plan.version, plan.status, len(request.assignments),
        )
        return plan.id

    async def get_assignments(self, care_plan_id: str) -> list[StaffAssignment]:
        result = await self.db.execute(
            select(CarePlanStaffAssignment)
            .where(CarePlanStaffAssignment.care_plan_id == care_plan_id)
            .order_by(CarePlanStaffAssignment.is_primary.desc(), CarePlanStaffAssignment.created_at)
        )
        return [
            StaffAssignment(staff_id=row.staff_id, is_primary=row.is_primary)
            for row in result.scalars().all()
        ]


# ── External counts ─────────────────────────────────────────


class SqlExternalCounter:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_external_count(self, care_plan_id: str, kind: str) -> int:
        if kind != "medication":
            logger.warning("No external counter for %r", kind)
            return 0
        result = await self.db.execute(
            select(func.count(ClientMedication.id)).where(
                ClientMedication.care_plan_id == care_plan_id,
                ClientMedication.is_deleted == False,  # noqa: E712
            )
        )
        return result.scalar_one()
