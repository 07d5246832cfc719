"""Care plan wizard router: steps, drafts, autosave, finalize, list.

Endpoints:
  GET  /api/care-plans/steps                     Active steps for a client
  GET  /api/care-plans/drafts                    Load (or start) a wizard session
  PUT  /api/care-plans/drafts/autosave           Debounced autosave (idempotent)
  POST /api/care-plans/drafts/save               Explicit save (navigation, close)
  POST /api/care-plans/finalize                  Readiness guard + commit
  GET  /api/care-plans                           Plans and open drafts for a client
  GET  /api/care-plans/{care_plan_id}/completion Completion of a committed plan

The client keeps the draft id returned by its first write and sends it
back on every later write; a write with neither draft id nor care plan
id always starts a new draft.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from carebase.auth.deps import require_permission
from carebase.auth.permissions import has_permission, permission_for_status
from carebase.config import settings
from carebase.database import get_tenant_db
from carebase.middleware.exceptions import InvalidTransitionError, ResourceNotFoundError
from carebase.models.tenant.care_plan import CarePlan
from carebase.models.tenant.care_plan_draft import CarePlanDraft
from carebase.schemas.care_plan import (
    CarePlanSummary,
    CompletionOut,
    DraftLoadOut,
    DraftOut,
    DraftWrite,
    DraftWriteOut,
    FinalizeOut,
    FinalizeRequest,
    ReadinessOut,
    StepOut,
    UnmetConditionOut,
)
from carebase.services.completion import (
    CompletionContext,
    CompletionResult,
    Readiness,
    check_readiness,
    score,
)
from carebase.services.drafts import DraftStore, default_finalize_status
from carebase.services.interfaces import Actor
from carebase.services.sql_stores import (
    SqlCarePlanStore,
    SqlDraftBackend,
    SqlExternalCounter,
    SqlSubjectProfiles,
)
from carebase.services.step_catalog import CARE_PLAN_STEPS, SectionKind, filter_steps
from carebase.services.wizard_controller import WizardController
from carebase.utils.activity import ActivityLogSink
from carebase.utils.cache import cached, invalidate_cache

logger = logging.getLogger(__name__)

router = APIRouter()

_EXTERNAL_KINDS = sorted({
    s.section for s in CARE_PLAN_STEPS if s.kind is SectionKind.EXTERNAL_COUNT and s.section
})


# ── Helpers ─────────────────────────────────────────────────

def _completion_out(result: CompletionResult) -> CompletionOut:
    return CompletionOut(
        completed_step_ids=sorted(result.completed_step_ids),
        active_step_ids=list(result.active_step_ids),
        completed_count=result.completed_count,
        percentage=result.percentage,
    )


def _readiness_out(readiness: Readiness) -> ReadinessOut:
    return ReadinessOut(
        ready=readiness.ready,
        completed_count=readiness.completed_count,
        provider_assigned=readiness.provider_assigned,
        unmet=[UnmetConditionOut(code=u.code, message=u.message) for u in readiness.unmet],
    )


async def _context_for(
    db: AsyncSession,
    care_plan_id: str | None,
    submitted: bool = False,
) -> CompletionContext:
    if not care_plan_id:
        return CompletionContext(submitted=submitted)
    counter = SqlExternalCounter(db)
    counts = {kind: await counter.get_external_count(care_plan_id, kind) for kind in _EXTERNAL_KINDS}
    return CompletionContext(external_counts=counts, submitted=submitted)


async def _open_store(db: AsyncSession, body: DraftWrite) -> DraftStore:
    store = DraftStore(
        body.client_id,
        SqlDraftBackend(db),
        SqlCarePlanStore(db),
        care_plan_id=body.care_plan_id,
        draft_id=body.draft_id,
        audit=ActivityLogSink(db),
    )
    if body.draft_id or body.care_plan_id:
        draft = await store.load_draft()
        if body.draft_id and (draft is None or draft.client_id != body.client_id):
            raise ResourceNotFoundError("Draft", body.draft_id)
    return store


# ── Steps ───────────────────────────────────────────────────

@router.get("/steps", response_model=list[StepOut])
async def list_steps(
    client_id: str = Query(...),
    db: AsyncSession = Depends(get_tenant_db),
    _actor: Actor = Depends(require_permission("care_plan.read")),
):
    profile = await SqlSubjectProfiles(db).get_subject_profile(client_id)
    return [
        StepOut(id=s.id, name=s.name, description=s.description, conditional=s.is_conditional)
        for s in filter_steps(CARE_PLAN_STEPS, profile.category)
    ]


# ── Drafts ──────────────────────────────────────────────────

@router.get("/drafts", response_model=DraftLoadOut)
async def load_draft(
    client_id: str = Query(...),
    care_plan_id: str | None = Query(None),
    draft_id: str | None = Query(None),
    force_new: bool = Query(False),
    db: AsyncSession = Depends(get_tenant_db),
    actor: Actor = Depends(require_permission("care_plan.read")),
):
    """Load a wizard session: merged record, migrated step, reconciled staff."""
    wizard = WizardController(
        client_id,
        profiles=SqlSubjectProfiles(db),
        drafts=SqlDraftBackend(db),
        records=SqlCarePlanStore(db),
        counter=SqlExternalCounter(db),
        actor=actor,
        care_plan_id=care_plan_id,
        draft_id=draft_id,
        force_new=force_new,
        concurrent_reads=False,
    )
    await wizard.load()
    draft = wizard.store.draft
    return DraftLoadOut(
        draft=DraftOut.model_validate(draft) if draft else None,
        record=wizard.record,
        current_step=wizard.current_step,
        steps=[
            StepOut(id=s.id, name=s.name, description=s.description, conditional=s.is_conditional)
            for s in wizard.steps
        ],
        category=wizard.category.value,
        completion=_completion_out(wizard.completion()),
    )


@router.put("/drafts/autosave", response_model=DraftWriteOut)
async def autosave_draft(
    body: DraftWrite,
    db: AsyncSession = Depends(get_tenant_db),
    _actor: Actor = Depends(require_permission("care_plan.write")),
):
    profile = await SqlSubjectProfiles(db).get_subject_profile(body.client_id)
    store = await _open_store(db, body)
    context = await _context_for(db, body.care_plan_id)
    draft = await store.autosave(body.record, body.current_step, profile.category, context)
    await invalidate_cache("care_plans:*")
    return DraftWriteOut(
        draft=DraftOut.model_validate(draft),
        completion=_completion_out(score(draft.auto_save_data, profile.category, context)),
    )


@router.post("/drafts/save", response_model=DraftWriteOut)
async def save_draft(
    body: DraftWrite,
    db: AsyncSession = Depends(get_tenant_db),
    _actor: Actor = Depends(require_permission("care_plan.write")),
):
    profile = await SqlSubjectProfiles(db).get_subject_profile(body.client_id)
    store = await _open_store(db, body)
    context = await _context_for(db, body.care_plan_id)
    draft = await store.save_draft(body.record, body.current_step, profile.category, context)
    await invalidate_cache("care_plans:*")
    return DraftWriteOut(
        draft=DraftOut.model_validate(draft),
        completion=_completion_out(score(draft.auto_save_data, profile.category, context)),
    )


# ── Finalize ────────────────────────────────────────────────

@router.post("/finalize", response_model=FinalizeOut)
async def finalize_care_plan(
    body: FinalizeRequest,
    db: AsyncSession = Depends(get_tenant_db),
    actor: Actor = Depends(require_permission("care_plan.write")),
):
    """Commit the care plan.

    Only allowed from the last step active for the client.  Not-ready
    plans come back with `committed: false` and the unmet conditions
    unless `confirm_override` is set.
    """
    target = body.status or default_finalize_status(actor.role)
    needed = permission_for_status(target)
    if not has_permission(actor.permissions, needed):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Missing permissions: {needed}",
        )

    profile = await SqlSubjectProfiles(db).get_subject_profile(body.client_id)
    last_step = filter_steps(CARE_PLAN_STEPS, profile.category)[-1]
    if body.current_step != last_step.id:
        raise InvalidTransitionError(
            f"Finalize is only available from the last step ({last_step.name})",
            details={"current_step": body.current_step, "last_step": last_step.id},
        )
    context = await _context_for(db, body.care_plan_id)
    readiness = check_readiness(body.record, score(body.record, profile.category, context))
    if not readiness.ready and not body.confirm_override:
        return FinalizeOut(committed=False, readiness=_readiness_out(readiness))

    store = await _open_store(db, body)
    care_plan_id = await store.finalize(
        body.record, target, body.current_step, profile.category, context, actor=actor,
    )
    await invalidate_cache("care_plans:*")
    return FinalizeOut(
        committed=True,
        care_plan_id=care_plan_id,
        status=target,
        readiness=_readiness_out(readiness),
    )


# ── List & completion ───────────────────────────────────────

@router.get("/", response_model=list[CarePlanSummary])
@cached(ttl=settings.care_plan_list_ttl, prefix="care_plans")
async def list_care_plans(
    client_id: str = Query(...),
    db: AsyncSession = Depends(get_tenant_db),
    _actor: Actor = Depends(require_permission("care_plan.read")),
):
    """Committed plans plus open drafts, scored like the wizard scores them."""
    profile = await SqlSubjectProfiles(db).get_subject_profile(client_id)

    plans = (await db.execute(
        select(CarePlan)
        .where(CarePlan.client_id == client_id)
        .order_by(CarePlan.updated_at.desc())
    )).scalars().all()
    drafts = (await db.execute(
        select(CarePlanDraft)
        .where(CarePlanDraft.client_id == client_id, CarePlanDraft.status == "draft")
        .order_by(CarePlanDraft.updated_at.desc())
    )).scalars().all()

    summaries: list[CarePlanSummary] = []
    for plan in plans:
        context = await _context_for(db, plan.id, submitted=True)
        summaries.append(CarePlanSummary(
            id=plan.id,
            kind="care_plan",
            title=plan.title,
            status=plan.status,
            version=plan.version,
            care_plan_id=plan.id,
            completion_percentage=score(plan.data, profile.category, context).percentage,
            updated_at=plan.updated_at,
        ))
    for draft in drafts:
        context = await _context_for(db, draft.care_plan_id)
        data = draft.auto_save_data or {}
        summaries.append(CarePlanSummary(
            id=draft.id,
            kind="draft",
            title=data.get("title") or "Untitled draft",
            status=draft.status,
            care_plan_id=draft.care_plan_id,
            completion_percentage=score(data, profile.category, context).percentage,
            updated_at=draft.updated_at,
        ))
    return summaries


@router.get("/{care_plan_id}/completion", response_model=CompletionOut)
async def get_completion(
    care_plan_id: str,
    db: AsyncSession = Depends(get_tenant_db),
    _actor: Actor = Depends(require_permission("care_plan.read")),
):
    plan = await db.get(CarePlan, care_plan_id)
    if not plan:
        raise ResourceNotFoundError("Care plan", care_plan_id)
    profile = await SqlSubjectProfiles(db).get_subject_profile(plan.client_id)
    context = await _context_for(db, plan.id, submitted=True)
    return _completion_out(score(plan.data, profile.category, context))
