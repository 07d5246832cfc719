"""Care plan wizard session: one open wizard for one client.

State machine:

    LOADING ──load()──► READY ──edit──► EDITING ⇄ NAVIGATING
                                           │
                            finalize() on the last active step
                                           ▼
                                      FINALIZING ──► CLOSED
    READY / EDITING ──close()──► CLOSED   (save attempted first, never blocks)

Loading gathers the client profile, the draft, and (for an existing
plan) the normalized staff assignments and medication count.  Nothing
autosaves until all of them have resolved.

Edits are coalesced by a ChangeDebouncer; each autosave cycle first
pushes the last-saved record onto the UndoStack.  Navigation always
saves explicitly first and only moves if that save succeeds.

Persistence failures never discard the in-memory record.  They are
surfaced as a dismissible WizardError on `self.error`.
"""

from __future__ import annotations

import asyncio
import copy
import enum
import logging
from dataclasses import dataclass
from typing import Any, Sequence

from carebase.config import settings
from carebase.middleware.exceptions import (
    FinalizeError,
    InvalidTransitionError,
    LoadError,
    ResourceNotFoundError,
    SaveError,
)
from carebase.services.completion import (
    CompletionContext,
    CompletionResult,
    Readiness,
    check_readiness,
    score,
)
from carebase.services.debounce import ChangeDebouncer
from carebase.services.drafts import (
    DraftStore,
    default_finalize_status,
    default_record,
    merge_saved_state,
    prepopulate_from_profile,
)
from carebase.services.interfaces import (
    Actor,
    AuditSink,
    DraftBackend,
    ExternalCounter,
    RecordStore,
    SubjectProfile,
    SubjectProfileSource,
)
from carebase.services.staff_reconciliation import reconcile
from carebase.services.step_catalog import (
    CARE_PLAN_STEPS,
    CATALOG_MIGRATIONS,
    CatalogMigration,
    SectionKind,
    Step,
    SubjectCategory,
    filter_steps,
    resolve_active_step,
    restore_step,
)
from carebase.services.undo import UndoStack

logger = logging.getLogger(__name__)


class WizardState(str, enum.Enum):
    LOADING = "loading"
    READY = "ready"
    EDITING = "editing"
    NAVIGATING = "navigating"
    FINALIZING = "finalizing"
    CLOSED = "closed"


_EDITABLE = (WizardState.READY, WizardState.EDITING)


@dataclass
class WizardError:
    """Banner shown to the user; cleared by dismiss_error()."""
    kind: str       # load | save | finalize
    message: str
    dismissible: bool = True


@dataclass(frozen=True)
class FinalizeOutcome:
    committed: bool
    readiness: Readiness
    care_plan_id: str | None = None
    status: str | None = None


class WizardController:
    def __init__(
        self,
        client_id: str,
        *,
        profiles: SubjectProfileSource,
        drafts: DraftBackend,
        records: RecordStore,
        counter: ExternalCounter | None = None,
        audit: AuditSink | None = None,
        actor: Actor | None = None,
        care_plan_id: str | None = None,
        draft_id: str | None = None,
        force_new: bool = False,
        catalog: Sequence[Step] = CARE_PLAN_STEPS,
        migrations: Sequence[CatalogMigration] = CATALOG_MIGRATIONS,
        debounce_seconds: float | None = None,
        undo_limit: int | None = None,
        concurrent_reads: bool = True,
    ):
        self.client_id = client_id
        # Stores sharing one AsyncSession must be read one at a time
        self.concurrent_reads = concurrent_reads
        self.actor = actor
        self.force_new = force_new and care_plan_id is None
        self.catalog = catalog
        self.migrations = migrations

        self._profiles = profiles
        self._records = records
        self._counter = counter
        self.store = DraftStore(
            client_id, drafts, records,
            care_plan_id=care_plan_id, draft_id=draft_id,
            audit=audit, catalog=catalog,
        )
        self.undo_stack = UndoStack(
            undo_limit if undo_limit is not None else settings.undo_history_limit
        )
        self.debouncer = ChangeDebouncer(
            debounce_seconds if debounce_seconds is not None else settings.autosave_debounce_seconds,
            self._autosave_cycle,
        )

        self.state = WizardState.LOADING
        self.error: WizardError | None = None
        self.profile: SubjectProfile | None = None
        self.category: SubjectCategory | None = None
        self.steps: list[Step] = filter_steps(catalog, None)
        self.current_step: int = self.steps[0].id
        self.record: dict[str, Any] = default_record()
        self.context = CompletionContext()

        self._last_saved: dict[str, Any] | None = None
        self._load_completed = False
        self._restoring_undo = False

    @property
    def care_plan_id(self) -> str | None:
        return self.store.care_plan_id

    # ── Loading ────────────────────────────────────────────────

    async def load(self) -> None:
        """Resolve every upstream read, then enter READY.

        On failure the controller stays in LOADING and load() may be retried.
        """
        if self.state is not WizardState.LOADING:
            raise InvalidTransitionError(f"Cannot load from state {self.state.value}")

        try:
            reads = (
                lambda: self._profiles.get_subject_profile(self.client_id),
                lambda: self.store.load_draft(force_new=self.force_new),
                self._fetch_assignments,
                self._fetch_context,
            )
            if self.concurrent_reads:
                profile, draft, assignments, context = await asyncio.gather(*(read() for read in reads))
            else:
                profile, draft, assignments, context = [await read() for read in reads]
        except ResourceNotFoundError:
            raise
        except Exception as exc:
            if not isinstance(exc, LoadError):
                logger.exception("Failed to load care plan wizard for client %s", self.client_id)
            self.error = WizardError(kind="load", message=LoadError().message)
            raise LoadError() from exc

        self.profile = profile
        self.category = profile.category
        self.steps = filter_steps(self.catalog, self.category)
        self.context = context

        record = default_record()
        if draft is not None:
            record = merge_saved_state(record, draft.auto_save_data)
        record = prepopulate_from_profile(record, profile)
        if assignments is not None:
            record["staff_ids"] = reconcile(record.get("staff_ids"), assignments)
        self.record = record

        if draft is not None and not self._load_completed:
            self.current_step = restore_step(
                draft.last_step_completed, draft.auto_save_data,
                draft.catalog_version, self.steps, self.migrations,
            )
        else:
            self.current_step = resolve_active_step(None, self.steps)

        self._last_saved = copy.deepcopy(record)
        self._load_completed = True
        self.error = None
        self.state = WizardState.READY
        logger.info(
            "Care plan wizard ready for client %s (draft %s, step %d of %d)",
            self.client_id, self.store.draft_id, self.current_step, len(self.steps),
        )

    async def reload_draft(self) -> None:
        """Refetch the persisted draft and merge it without moving the user."""
        self._require(*_EDITABLE)
        draft = await self.store.load_draft(force_new=self.force_new)
        if draft is None:
            return
        record = merge_saved_state(self.record, draft.auto_save_data)
        assignments = await self._fetch_assignments()
        if assignments is not None:
            record["staff_ids"] = reconcile(record.get("staff_ids"), assignments)
        self.record = record
        self._last_saved = copy.deepcopy(draft.auto_save_data)

    async def refresh_assignments(self) -> list[str]:
        """Re-run staff reconciliation after the normalized store changed."""
        self._require(*_EDITABLE)
        try:
            assignments = await self._fetch_assignments()
        except Exception as exc:
            logger.exception("Failed to refresh staff assignments for care plan %s", self.care_plan_id)
            self.error = WizardError(kind="load", message=LoadError().message)
            raise LoadError() from exc
        if assignments is not None:
            self.record["staff_ids"] = reconcile(self.record.get("staff_ids"), assignments)
        return list(self.record.get("staff_ids") or [])

    async def refresh_completion_context(self) -> CompletionContext:
        try:
            self.context = await self._fetch_context()
        except Exception as exc:
            logger.exception("Failed to refresh completion counts for care plan %s", self.care_plan_id)
            raise LoadError() from exc
        return self.context

    async def _fetch_assignments(self):
        if not self.care_plan_id:
            return None
        return await self._records.get_assignments(self.care_plan_id)

    async def _fetch_context(self) -> CompletionContext:
        if not self.care_plan_id or self._counter is None:
            return CompletionContext()
        kinds = {s.section for s in self.catalog if s.kind is SectionKind.EXTERNAL_COUNT and s.section}
        counts = {}
        for kind in sorted(kinds):
            counts[kind] = await self._counter.get_external_count(self.care_plan_id, kind)
        return CompletionContext(external_counts=counts)

    def set_subject_category(self, category: SubjectCategory | str | None) -> None:
        """Re-filter steps for a category that arrived after mount."""
        try:
            self.category = SubjectCategory(category) if category else None
        except ValueError:
            logger.warning("Unknown subject category %r; showing the base steps", category)
            self.category = None
        self.steps = filter_steps(self.catalog, self.category)
        self.current_step = resolve_active_step(self.current_step, self.steps)

    # ── Editing ────────────────────────────────────────────────

    def update_field(self, section: str, key: str, value: Any) -> None:
        """Set one key of a field-group section (a dict, e.g. `dietary`)."""
        self._require(*_EDITABLE)
        current = self.record.get(section)
        if current is not None and not isinstance(current, dict):
            raise TypeError(f"Section {section!r} is not a field group; use update_section()")
        block = dict(current or {})
        block[key] = value
        self.record[section] = block
        self._changed()

    def update_section(self, section: str, value: Any) -> None:
        self._require(*_EDITABLE)
        self.record[section] = copy.deepcopy(value)
        self._changed()

    def _changed(self) -> None:
        self.state = WizardState.EDITING
        if self._load_completed:
            self.debouncer.notify()

    async def autosave_now(self) -> None:
        """Run a pending debounced autosave immediately."""
        await self.debouncer.flush()

    async def _autosave_cycle(self) -> None:
        if not self._load_completed or self.state not in (*_EDITABLE, WizardState.NAVIGATING):
            return
        # Edits made while this write is in flight stay dirty for the next cycle
        snapshot = copy.deepcopy(self.record)
        if snapshot == self._last_saved:
            return

        pushed = False
        if self._restoring_undo:
            self._restoring_undo = False
        else:
            self.undo_stack.push(self._last_saved)
            pushed = True

        try:
            await self.store.autosave(snapshot, self.current_step, self.category, self.context)
        except SaveError as exc:
            if pushed:
                self.undo_stack.pop()
            self.error = WizardError(kind="save", message=exc.message)
            return
        self._last_saved = snapshot

    def undo(self) -> bool:
        """Restore the record as it was before the last autosave cycle."""
        self._require(*_EDITABLE)
        snapshot = self.undo_stack.pop()
        if snapshot is None:
            return False
        self.record = snapshot
        self._restoring_undo = True
        self._changed()
        return True

    def can_undo(self) -> bool:
        return self.undo_stack.can_undo()

    def dismiss_error(self) -> None:
        self.error = None

    # ── Saving & navigation ────────────────────────────────────

    async def save(self, step_id: int | None = None) -> bool:
        """Explicit save.  Returns False (and sets self.error) on failure."""
        self._require(*_EDITABLE, WizardState.NAVIGATING)
        self.debouncer.cancel()
        step = step_id if step_id is not None else self.current_step
        snapshot = copy.deepcopy(self.record)
        try:
            await self.store.save_draft(snapshot, step, self.category, self.context)
        except SaveError as exc:
            self.error = WizardError(kind="save", message=exc.message)
            return False
        self._last_saved = snapshot
        self._restoring_undo = False
        return True

    def _position(self) -> int:
        return [s.id for s in self.steps].index(self.current_step)

    def is_last_step(self) -> bool:
        return bool(self.steps) and self.current_step == self.steps[-1].id

    async def next(self) -> bool:
        if self.is_last_step():
            return False
        return await self._navigate(self.steps[self._position() + 1].id)

    async def previous(self) -> bool:
        position = self._position()
        if position == 0:
            return False
        return await self._navigate(self.steps[position - 1].id)

    async def jump_to(self, step_id: int) -> bool:
        if not any(s.id == step_id for s in self.steps):
            raise ValueError(f"Step {step_id} is not active for this client")
        return await self._navigate(step_id)

    async def _navigate(self, target: int) -> bool:
        self._require(*_EDITABLE)
        self.state = WizardState.NAVIGATING
        # The draft records the step being moved to, so a reload resumes there
        saved = await self.save(step_id=target)
        if saved:
            self.current_step = target
        self.state = WizardState.EDITING
        return saved

    # ── Progress ───────────────────────────────────────────────

    def completion(self) -> CompletionResult:
        return score(self.record, self.category, self.context, self.catalog)

    def readiness(self) -> Readiness:
        return check_readiness(self.record, self.completion())

    # ── Finalize & close ───────────────────────────────────────

    async def finalize(
        self,
        status_target: str | None = None,
        confirm_override: bool = False,
    ) -> FinalizeOutcome:
        """Commit the care plan from the last active step.

        When the plan is not ready and the user has not confirmed an
        override, nothing is written and the unmet conditions come back.
        """
        self._require(*_EDITABLE)
        if not self.is_last_step():
            raise InvalidTransitionError("Finalize is only available from the last step")

        readiness = self.readiness()
        if not readiness.ready and not confirm_override:
            return FinalizeOutcome(committed=False, readiness=readiness)
        if not readiness.ready:
            logger.info(
                "Finalizing care plan for client %s with override (%s)",
                self.client_id, ", ".join(u.code for u in readiness.unmet),
            )

        status = status_target or default_finalize_status(self.actor.role if self.actor else None)
        self.debouncer.cancel()
        self.state = WizardState.FINALIZING
        try:
            care_plan_id = await self.store.finalize(
                self.record, status, self.current_step,
                self.category, self.context, actor=self.actor,
            )
        except FinalizeError as exc:
            self.error = WizardError(kind="finalize", message=exc.message)
            self.state = WizardState.EDITING
            return FinalizeOutcome(committed=False, readiness=readiness)

        self.undo_stack.clear()
        self.state = WizardState.CLOSED
        return FinalizeOutcome(
            committed=True, readiness=readiness,
            care_plan_id=care_plan_id, status=status,
        )

    async def close(self) -> bool:
        """Close the wizard, saving first.  Returns whether the save succeeded."""
        if self.state is WizardState.CLOSED:
            return True
        saved = True
        if self._load_completed and self.state in _EDITABLE:
            saved = await self.save()
            if not saved:
                logger.warning("Closing care plan wizard for client %s with unsaved changes", self.client_id)
        self.debouncer.cancel()
        self.state = WizardState.CLOSED
        return saved

    def _require(self, *states: WizardState) -> None:
        if self.state not in states:
            raise InvalidTransitionError(f"Not allowed while wizard is {self.state.value}")
