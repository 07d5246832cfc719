"""DraftStore: loading, autosave, explicit save and finalize."""

import asyncio

import pytest

from carebase.middleware.exceptions import FinalizeError, LoadError, SaveError
from carebase.services import drafts as drafts_module
from carebase.services.drafts import (
    DraftStore,
    default_finalize_status,
    default_record,
    merge_saved_state,
    prepopulate_from_profile,
)
from carebase.services.interfaces import Draft, SubjectProfile
from carebase.services.step_catalog import CATALOG_VERSION, SubjectCategory


def _store(drafts, records, audit=None, **kwargs) -> DraftStore:
    return DraftStore("client-1", drafts, records, audit=audit, **kwargs)


@pytest.mark.unit
class TestRecordHelpers:
    def test_merge_skips_none_and_empty_list_over_content(self):
        current = {"goals": ["walk"], "title": "Plan", "activities": []}
        incoming = {"goals": [], "title": None, "activities": ["bingo"], "dietary": {"diet": "soft"}}
        merged = merge_saved_state(current, incoming)
        assert merged == {
            "goals": ["walk"],
            "title": "Plan",
            "activities": ["bingo"],
            "dietary": {"diet": "soft"},
        }

    def test_merge_accepts_empty_list_over_empty(self):
        assert merge_saved_state({"goals": []}, {"goals": []}) == {"goals": []}

    def test_merge_does_not_alias_incoming(self):
        incoming = {"goals": ["walk"]}
        merged = merge_saved_state({}, incoming)
        merged["goals"].append("swim")
        assert incoming == {"goals": ["walk"]}

    def test_prepopulate_first_write_wins(self):
        profile = SubjectProfile(
            client_id="client-1", category=SubjectCategory.ADULT,
            first_name="Ada", last_name="Lovelace", email="ada@example.com", phone=None,
        )
        record = default_record()
        record["personal_info"] = {"client_email": "kept@example.com"}
        result = prepopulate_from_profile(record, profile)
        assert result["title"] == "Care Plan for Ada Lovelace"
        assert result["personal_info"]["client_name"] == "Ada Lovelace"
        assert result["personal_info"]["client_email"] == "kept@example.com"
        assert "client_phone" not in result["personal_info"]

        # Idempotent
        assert prepopulate_from_profile(result, profile) == result

    def test_prepopulate_keeps_existing_title(self):
        profile = SubjectProfile(client_id="c", category=SubjectCategory.ADULT, first_name="A", last_name="B")
        result = prepopulate_from_profile({"title": "Night care"}, profile)
        assert result["title"] == "Night care"

    @pytest.mark.parametrize("role,expected", [
        ("administrator", "active"),
        ("branch_admin", "pending_approval"),
        ("carer", "pending_approval"),
        (None, "pending_approval"),
    ])
    def test_default_finalize_status(self, role, expected):
        assert default_finalize_status(role) == expected


@pytest.mark.unit
@pytest.mark.asyncio
class TestLoadDraft:
    async def test_scenario_a_force_new_ignores_abandoned_draft(self, drafts, records):
        drafts.seed(Draft(client_id="client-1", auto_save_data={"title": "Old"}))
        store = _store(drafts, records)
        assert await store.load_draft(force_new=True) is None

    async def test_resumes_latest_open_new_draft(self, drafts, records):
        drafts.seed(Draft(client_id="client-1", auto_save_data={"title": "Older"}))
        latest = drafts.seed(Draft(client_id="client-1", auto_save_data={"title": "Newer"}))
        store = _store(drafts, records)
        loaded = await store.load_draft()
        assert loaded.id == latest.id
        assert store.draft_id == latest.id

    async def test_existing_plan_uses_its_own_draft(self, drafts, records):
        drafts.seed(Draft(client_id="client-1", auto_save_data={"title": "New"}))
        own = drafts.seed(Draft(client_id="client-1", care_plan_id="plan-9", auto_save_data={"title": "Edit"}))
        store = _store(drafts, records, care_plan_id="plan-9")
        assert (await store.load_draft(force_new=True)).id == own.id

    async def test_finalized_draft_is_not_resumed(self, drafts, records):
        done = drafts.seed(Draft(client_id="client-1", auto_save_data={}, status="finalized"))
        store = _store(drafts, records, draft_id=done.id)
        assert await store.load_draft() is None

    async def test_backend_failure_is_load_error(self, drafts, records):
        drafts.fail_get = True
        with pytest.raises(LoadError):
            await _store(drafts, records).load_draft()


@pytest.mark.unit
@pytest.mark.asyncio
class TestAutosave:
    async def test_first_autosave_creates_then_updates(self, drafts, records):
        store = _store(drafts, records)
        first = await store.autosave({"title": "Plan"}, 1, "adult")
        second = await store.autosave({"title": "Plan v2"}, 2, "adult")
        assert first.id == second.id
        assert len(drafts.rows) == 1
        assert drafts.rows[first.id].auto_save_data == {"title": "Plan v2"}
        assert drafts.rows[first.id].last_step_completed == 2
        assert drafts.rows[first.id].catalog_version == CATALOG_VERSION

    async def test_identical_autosave_is_skipped(self, drafts, records):
        store = _store(drafts, records)
        record = {"title": "Plan", "goals": ["walk"]}
        first = await store.autosave(record, 1, "adult")
        second = await store.autosave(record, 1, "adult")
        assert drafts.puts == 1
        assert second.auto_save_data == first.auto_save_data

    async def test_explicit_save_always_writes(self, drafts, records):
        store = _store(drafts, records)
        await store.save_draft({"title": "Plan"}, 1, "adult")
        await store.save_draft({"title": "Plan"}, 1, "adult")
        assert drafts.puts == 2

    async def test_completion_is_stored(self, drafts, records):
        store = _store(drafts, records)
        saved = await store.autosave({"title": "Plan", "goals": ["walk"]}, 1, "adult")
        assert saved.completion_percentage == 11  # 2 of 19

    async def test_force_new_session_writes_a_fresh_row(self, drafts, records):
        old = drafts.seed(Draft(client_id="client-1", auto_save_data={"title": "Old"}))
        store = _store(drafts, records)
        await store.load_draft(force_new=True)
        saved = await store.autosave({"title": "Fresh"}, 1, "adult")
        assert saved.id != old.id
        assert drafts.rows[old.id].auto_save_data == {"title": "Old"}

    async def test_failure_raises_save_error_and_keeps_caller_state(self, drafts, records):
        store = _store(drafts, records)
        record = {"title": "Plan"}
        drafts.fail_put = True
        with pytest.raises(SaveError):
            await store.autosave(record, 1, "adult")
        assert record == {"title": "Plan"}
        assert store.draft is None

    async def test_concurrent_writes_are_serialized(self, drafts, records):
        store = _store(drafts, records)
        in_flight = 0
        peak = 0
        original = drafts.put_draft

        async def slow_put(draft):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            try:
                return await original(draft)
            finally:
                in_flight -= 1

        drafts.put_draft = slow_put
        await asyncio.gather(
            store.autosave({"title": "A"}, 1, "adult"),
            store.save_draft({"title": "B"}, 2, "adult"),
        )
        assert peak == 1
        assert len(drafts.rows) == 1

    async def test_writes_from_separate_sessions_are_serialized(self, drafts, records):
        existing = drafts.seed(Draft(client_id="client-1", auto_save_data={"title": "Plan"}))
        # One store per request, as the HTTP layer builds them
        first = _store(drafts, records, draft_id=existing.id)
        second = _store(drafts, records, draft_id=existing.id)
        in_flight = 0
        peak = 0
        original = drafts.put_draft

        async def slow_put(draft):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            try:
                return await original(draft)
            finally:
                in_flight -= 1

        drafts.put_draft = slow_put
        await asyncio.gather(
            first.autosave({"title": "A"}, 1, "adult"),
            second.save_draft({"title": "B"}, 2, "adult"),
        )
        assert peak == 1
        assert list(drafts.rows) == [existing.id]
        assert not drafts_module._draft_locks

    async def test_different_drafts_do_not_wait_on_each_other(self, drafts, records):
        one = drafts.seed(Draft(client_id="client-1", auto_save_data={}))
        other = drafts.seed(Draft(client_id="client-1", auto_save_data={}))
        release = asyncio.Event()
        original = drafts.put_draft

        async def held_put(draft):
            if draft.id == one.id:
                await release.wait()
            return await original(draft)

        drafts.put_draft = held_put
        held = asyncio.create_task(_store(drafts, records, draft_id=one.id).save_draft({"title": "A"}, 1, "adult"))
        saved = await asyncio.wait_for(
            _store(drafts, records, draft_id=other.id).save_draft({"title": "B"}, 1, "adult"),
            timeout=1,
        )
        assert saved.id == other.id
        release.set()
        await held


@pytest.mark.unit
@pytest.mark.asyncio
class TestFinalize:
    async def test_finalize_saves_commits_and_marks_draft(self, drafts, records, audit, admin):
        store = _store(drafts, records, audit)
        record = {"title": "Plan", "provider_type": "staff", "staff_ids": ["s1", "s2"]}
        care_plan_id = await store.finalize(record, "active", 22, "adult", actor=admin)

        assert care_plan_id == "plan-1"
        commit = records.commits[0]
        assert commit.status == "active"
        assert commit.actor_id == admin.user_id
        # Title plus the submitted Review: 2 of 19
        assert commit.completion_percentage == 11
        assert [(a.staff_id, a.is_primary) for a in commit.assignments] == [("s1", True), ("s2", False)]

        draft = drafts.rows[store.draft_id]
        assert draft.status == "finalized"
        assert draft.care_plan_id == care_plan_id
        assert draft.auto_save_data == record
        assert draft.completion_percentage == 11

        assert [e.action for e in audit.events] == ["finalized"]
        assert audit.events[0].actor_role == "administrator"

    async def test_external_provider_has_no_staff_assignments(self, drafts, records):
        store = _store(drafts, records)
        record = {"title": "Plan", "provider_type": "external", "provider_name": "Acme", "staff_ids": ["s1"]}
        await store.finalize(record, "pending_approval", 22, "adult")
        assert records.commits[0].assignments == []

    async def test_refinalize_existing_plan_reuses_id(self, drafts, records):
        store = _store(drafts, records, care_plan_id="plan-7")
        assert await store.finalize({"title": "Plan"}, "pending_approval", 22, "adult") == "plan-7"
        assert records.commits[0].care_plan_id == "plan-7"

    async def test_commit_failure_is_finalize_error(self, drafts, records, audit):
        store = _store(drafts, records, audit)
        records.fail_commit = True
        with pytest.raises(FinalizeError):
            await store.finalize({"title": "Plan"}, "pending_approval", 22, "adult")
        # The explicit save still happened
        assert drafts.rows[store.draft_id].status == "draft"
        assert audit.events == []

    async def test_save_failure_is_finalize_error(self, drafts, records):
        store = _store(drafts, records)
        drafts.fail_put = True
        with pytest.raises(FinalizeError):
            await store.finalize({"title": "Plan"}, "pending_approval", 22, "adult")
        assert records.commits == []

    async def test_audit_failure_does_not_fail_finalize(self, drafts, records, audit):
        audit.fail = True
        store = _store(drafts, records, audit)
        assert await store.finalize({"title": "Plan"}, "pending_approval", 22, "adult") == "plan-1"

    async def test_unknown_status_rejected(self, drafts, records):
        with pytest.raises(ValueError):
            await _store(drafts, records).finalize({"title": "Plan"}, "rejected", 22, "adult")
