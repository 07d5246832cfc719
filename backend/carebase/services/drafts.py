"""Draft persistence for the care plan wizard.

One DraftStore serves one editing session for one client (and, when
editing an existing plan, one care plan).

Operations:
    load_draft(force_new)   → Draft | None
    autosave(...)           → Draft   (skips the write if nothing changed)
    save_draft(...)         → Draft   (always writes)
    finalize(...)           → care plan id

Writes to one draft are serialized: within a session by the store's own
asyncio.Lock, and across sessions in this process (one DraftStore per
request) by a shared lock keyed by draft id.  An in-flight autosave can
never interleave with an explicit save of the same draft.

Every persistence failure is raised as LoadError / SaveError /
FinalizeError after logging.  The caller's in-memory record is never
touched here, so the user can retry.
"""

from __future__ import annotations

import asyncio
import copy
import dataclasses
import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Any, AsyncIterator, Mapping, Sequence

from carebase.middleware.exceptions import FinalizeError, LoadError, SaveError
from carebase.services.completion import CompletionContext, score
from carebase.services.interfaces import (
    Actor,
    AuditEvent,
    AuditSink,
    CommitRequest,
    Draft,
    DraftBackend,
    RecordStore,
    SubjectProfile,
)
from carebase.services.staff_reconciliation import assignments_from_ids
from carebase.services.step_catalog import (
    CARE_PLAN_STEPS,
    CATALOG_VERSION,
    Step,
    SubjectCategory,
)

logger = logging.getLogger(__name__)

DRAFT_OPEN = "draft"
DRAFT_FINALIZED = "finalized"

# Record statuses a finalize may commit
FINALIZE_STATUSES = {"pending_approval", "approved", "active"}


# ── Record state helpers ────────────────────────────────────


def default_record(today: date | None = None) -> dict[str, Any]:
    """Blank wizard record, matching what the form renders before any load."""
    return {
        "title": "",
        "provider_type": "staff",
        "staff_ids": [],
        "provider_name": "",
        "start_date": (today or date.today()).isoformat(),
        "review_date": None,
        "priority": "medium",
        "care_plan_type": "standard",
        "personal_info": {},
        "about_me": {},
        "medical_info": {},
        "general": {},
        "goals": [],
        "activities": [],
        "personal_care": {},
        "dietary": {},
        "risk_assessments": [],
        "equipment": {},
        "service_plans": [],
        "service_actions": [],
        "documents": [],
        "consent": {},
        "key_contacts": [],
        "additional_notes": "",
    }


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def merge_saved_state(current: Mapping[str, Any], incoming: Mapping[str, Any]) -> dict[str, Any]:
    """Load saved data over the form state without erasing held work.

    Missing (None) values are skipped, and so is an empty list arriving
    for a field that already holds items; the form may have briefly
    rendered its blank default while a reload was in flight.
    """
    merged = dict(current)
    for key, value in incoming.items():
        if value is None:
            continue
        if isinstance(value, list) and not value and not _is_empty(merged.get(key)):
            continue
        merged[key] = copy.deepcopy(value)
    return merged


def prepopulate_from_profile(record: Mapping[str, Any], profile: SubjectProfile) -> dict[str, Any]:
    """Fill client details into empty fields only (first write wins)."""
    result = dict(record)
    personal = dict(result.get("personal_info") or {})

    candidates = {
        "client_name": profile.full_name if profile.first_name and profile.last_name else None,
        "client_email": profile.email,
        "client_phone": profile.phone,
        "client_address": profile.address,
    }
    for key, value in candidates.items():
        if value and _is_empty(personal.get(key)):
            personal[key] = value
    result["personal_info"] = personal

    if _is_empty(result.get("title")) and profile.first_name and profile.last_name:
        result["title"] = f"Care Plan for {profile.full_name}"
    return result


ADMIN_ROLES = {"administrator"}


def default_finalize_status(role: str | None) -> str:
    """Administrators commit straight to active; everyone else goes to approval."""
    if role in ADMIN_ROLES:
        return "active"
    return "pending_approval"


# ── Per-draft write locks ───────────────────────────────────

_draft_locks: dict[str, asyncio.Lock] = {}
_draft_lock_users: dict[str, int] = {}


@asynccontextmanager
async def draft_write_lock(key: str) -> AsyncIterator[None]:
    """Hold the process-wide write lock for one draft.

    Entries are dropped once no task holds or waits for them.
    """
    lock = _draft_locks.setdefault(key, asyncio.Lock())
    _draft_lock_users[key] = _draft_lock_users.get(key, 0) + 1
    try:
        async with lock:
            yield
    finally:
        _draft_lock_users[key] -= 1
        if not _draft_lock_users[key]:
            del _draft_lock_users[key]
            del _draft_locks[key]


# ── Store ───────────────────────────────────────────────────


class DraftStore:
    def __init__(
        self,
        client_id: str,
        drafts: DraftBackend,
        records: RecordStore,
        *,
        care_plan_id: str | None = None,
        draft_id: str | None = None,
        audit: AuditSink | None = None,
        catalog: Sequence[Step] = CARE_PLAN_STEPS,
        catalog_version: int = CATALOG_VERSION,
    ):
        self.client_id = client_id
        self.care_plan_id = care_plan_id
        self.draft_id = draft_id
        self.draft: Draft | None = None
        self.catalog = catalog
        self.catalog_version = catalog_version
        self._drafts = drafts
        self._records = records
        self._audit = audit
        self._lock = asyncio.Lock()

    def _lock_key(self) -> str:
        if self.draft_id:
            return f"draft:{self.draft_id}"
        # Not written yet: every new-draft session for this client/plan shares one key
        return f"new:{self.client_id}:{self.care_plan_id or ''}"

    @asynccontextmanager
    async def _writing(self) -> AsyncIterator[None]:
        async with self._lock:
            async with draft_write_lock(self._lock_key()):
                yield

    # ── Loading ────────────────────────────────────────────────

    async def load_draft(self, force_new: bool = False) -> Draft | None:
        """Fetch the draft this session should continue, if any.

        Resolution order: the session's own draft id, then the open
        draft of the care plan being edited, then (unless force_new) the
        client's most recent unfinished new-plan draft.
        """
        try:
            if self.draft_id:
                draft = await self._drafts.get_draft(self.draft_id)
            elif self.care_plan_id:
                draft = await self._drafts.find_draft(self.client_id, self.care_plan_id)
            elif force_new:
                logger.info("Starting a fresh care plan draft for client %s", self.client_id)
                draft = None
            else:
                draft = await self._drafts.find_draft(self.client_id, None)
        except Exception as exc:
            logger.exception("Failed to load care plan draft for client %s", self.client_id)
            raise LoadError() from exc

        if draft is not None and draft.status != DRAFT_OPEN:
            draft = None
        self.draft = draft
        if draft is not None:
            self.draft_id = draft.id
        return draft

    # ── Saving ─────────────────────────────────────────────────

    async def autosave(
        self,
        record: Mapping[str, Any],
        current_step: int,
        category: SubjectCategory | str | None,
        context: CompletionContext | None = None,
    ) -> Draft:
        return await self._write(record, current_step, category, context, explicit=False)

    async def save_draft(
        self,
        record: Mapping[str, Any],
        current_step: int,
        category: SubjectCategory | str | None,
        context: CompletionContext | None = None,
    ) -> Draft:
        return await self._write(record, current_step, category, context, explicit=True)

    async def _write(
        self,
        record: Mapping[str, Any],
        current_step: int,
        category: SubjectCategory | str | None,
        context: CompletionContext | None,
        explicit: bool,
    ) -> Draft:
        payload = copy.deepcopy(dict(record))
        completion = score(payload, category, context, self.catalog)

        async with self._writing():
            held = self.draft
            if (
                not explicit
                and held is not None
                and held.auto_save_data == payload
                and held.last_step_completed == current_step
            ):
                return held

            draft = Draft(
                id=held.id if held else self.draft_id,
                client_id=self.client_id,
                care_plan_id=self.care_plan_id,
                auto_save_data=payload,
                last_step_completed=current_step,
                catalog_version=self.catalog_version,
                completion_percentage=completion.percentage,
                status=DRAFT_OPEN,
            )
            try:
                saved = await self._drafts.put_draft(draft)
            except Exception as exc:
                logger.exception(
                    "%s failed for client %s (draft %s)",
                    "Draft save" if explicit else "Autosave",
                    self.client_id, draft.id,
                )
                raise SaveError() from exc

            self.draft = saved
            self.draft_id = saved.id

        if explicit:
            logger.info("Draft %s saved at step %d (%d%%)", saved.id, current_step, saved.completion_percentage)
        else:
            logger.debug("Draft %s autosaved at step %d", saved.id, current_step)
        return saved

    # ── Finalize ───────────────────────────────────────────────

    async def finalize(
        self,
        record: Mapping[str, Any],
        status_target: str,
        current_step: int,
        category: SubjectCategory | str | None,
        context: CompletionContext | None = None,
        actor: Actor | None = None,
    ) -> str:
        """Save the draft, commit the normalized record, return its id.

        The draft is kept and marked finalized as the audit trail.
        """
        if status_target not in FINALIZE_STATUSES:
            raise ValueError(f"Cannot finalize into status {status_target!r}")

        try:
            draft = await self.save_draft(record, current_step, category, context)
        except SaveError as exc:
            raise FinalizeError() from exc

        payload = draft.auto_save_data
        staff_ids = payload.get("staff_ids") or []
        assignments = assignments_from_ids(staff_ids) if payload.get("provider_type") != "external" else []
        submitted = dataclasses.replace(context or CompletionContext(), submitted=True)
        percentage = score(payload, category, submitted, self.catalog).percentage

        async with self._writing():
            try:
                care_plan_id = await self._records.commit(CommitRequest(
                    client_id=self.client_id,
                    record=payload,
                    status=status_target,
                    care_plan_id=self.care_plan_id,
                    completion_percentage=percentage,
                    actor_id=actor.user_id if actor else None,
                    assignments=assignments,
                ))
            except Exception as exc:
                logger.exception("Failed to commit care plan for client %s", self.client_id)
                raise FinalizeError() from exc

            self.care_plan_id = care_plan_id
            finalized = Draft(
                id=draft.id,
                client_id=draft.client_id,
                care_plan_id=care_plan_id,
                auto_save_data=payload,
                last_step_completed=draft.last_step_completed,
                catalog_version=draft.catalog_version,
                completion_percentage=percentage,
                status=DRAFT_FINALIZED,
            )
            try:
                self.draft = await self._drafts.put_draft(finalized)
            except Exception:
                # The plan is committed; an unmarked draft only costs audit detail
                logger.exception("Committed care plan %s but could not mark draft %s", care_plan_id, draft.id)

        logger.info("Care plan %s finalized as %s for client %s", care_plan_id, status_target, self.client_id)
        self._emit(AuditEvent(
            action="finalized",
            client_id=self.client_id,
            care_plan_id=care_plan_id,
            actor_id=actor.user_id if actor else None,
            actor_role=actor.role if actor else None,
            summary=f"Care plan '{payload.get('title') or care_plan_id}' finalized as {status_target}",
            details={
                "status": status_target,
                "draft_id": draft.id,
                "completion_percentage": percentage,
                "staff_ids": [a.staff_id for a in assignments],
            },
        ))
        return care_plan_id

    def _emit(self, event: AuditEvent) -> None:
        if self._audit is None:
            return
        try:
            self._audit.record(event)
        except Exception:
            logger.exception("Audit sink rejected %s event for care plan %s", event.action, event.care_plan_id)
