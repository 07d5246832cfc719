"""Care plan completion scoring: shared by the wizard and the care plan list.

`score()` is the single source of truth for which steps count as complete
and for the completion percentage stored on drafts and committed plans.
It is a pure function of (record, subject category, context).  Review
only completes for a submitted plan, so a fully filled draft stays just
short of 100% until it is finalized.

Each SectionKind has exactly one rule in SECTION_RULES; the table is
checked for exhaustiveness at import time.

Percentages round half up, so 1 of 8 steps reads 13%, not 12%.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Sequence

from carebase.services.step_catalog import (
    CARE_PLAN_STEPS,
    SectionKind,
    Step,
    SubjectCategory,
    filter_steps,
)

# Finalize guard: minimum completed steps before a plan counts as ready
READY_MIN_SECTIONS = 3


@dataclass(frozen=True)
class CompletionContext:
    """What scoring needs beyond the record itself.

    external_counts holds counts kept outside the wizard record (e.g.
    medication rows).  submitted is set for committed plans; Review only
    counts as complete once the plan has been submitted.
    """
    external_counts: Mapping[str, int] = field(default_factory=dict)
    submitted: bool = False

    def count(self, kind: str) -> int:
        return int(self.external_counts.get(kind, 0) or 0)


@dataclass(frozen=True)
class CompletionResult:
    completed_step_ids: frozenset[int]
    active_step_ids: tuple[int, ...]
    percentage: int

    @property
    def completed_count(self) -> int:
        return len(self.completed_step_ids)


@dataclass(frozen=True)
class UnmetCondition:
    code: str
    message: str


@dataclass(frozen=True)
class Readiness:
    """Advisory finalize guard.  Not ready never blocks an explicit override."""
    completed_count: int
    provider_assigned: bool
    unmet: tuple[UnmetCondition, ...] = ()

    @property
    def ready(self) -> bool:
        return not self.unmet


# ── Value helpers ───────────────────────────────────────────


def is_non_empty_string(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def has_any_value(obj: Any) -> bool:
    """True if a dict holds at least one meaningful (non-default) value."""
    if not isinstance(obj, dict):
        return False
    for value in obj.values():
        if isinstance(value, str):
            if value.strip():
                return True
        elif isinstance(value, bool):
            if value:
                return True
        elif isinstance(value, list):
            if any(is_non_empty_string(i) if isinstance(i, str) else i for i in value):
                return True
        elif isinstance(value, dict):
            if has_any_value(value):
                return True
        elif value is not None:
            return True
    return False


def _non_empty_list(value: Any) -> bool:
    return isinstance(value, list) and len(value) > 0


def _section(record: Mapping[str, Any], key: str | None) -> Any:
    return record.get(key) if key else None


# ── Section rules ───────────────────────────────────────────

_MEDICAL_TEXT_FIELDS = ("allergies", "current_medications", "medical_history", "service_band")

_CONSENT_ANSWER_FIELDS = (
    "discuss_health_and_risks", "medication_support_consent",
    "care_plan_importance_understood", "share_info_with_professionals",
    "regular_reviews_understood", "may_need_capacity_assessment",
    "consent_to_care_and_support", "consent_to_personal_care",
    "consent_to_medication_administration", "consent_to_healthcare_professionals",
    "consent_to_emergency_services", "consent_to_data_sharing",
    "consent_to_care_plan_changes",
)
_CONSENT_TEXT_FIELDS = ("typed_full_name", "extra_information", "capacity_notes", "best_interest_notes")

_RISK_BLOCKS = (
    "risk_equipment_dietary", "risk_medication", "risk_dietary_food",
    "risk_warning_instructions", "risk_choking", "risk_pressure_damage",
)

_EQUIPMENT_BLOCKS = ("moving_handling", "environment_checks", "home_repairs")

_EDUCATION_FIELDS = ("education_placement", "daily_learning_goals", "independence_skills")


def _basic_info(record, step, context) -> bool:
    return is_non_empty_string(record.get("title"))


def _any_value(record, step, context) -> bool:
    return has_any_value(_section(record, step.section))


def _list(record, step, context) -> bool:
    return _non_empty_list(_section(record, step.section))


def _diagnosis(record, step, context) -> bool:
    medical = _section(record, step.section)
    if not isinstance(medical, dict):
        return False
    if _non_empty_list(medical.get("physical_health_conditions")):
        return True
    if _non_empty_list(medical.get("mental_health_conditions")):
        return True
    return any(is_non_empty_string(medical.get(f)) for f in _MEDICAL_TEXT_FIELDS)


def _news2(record, step, context) -> bool:
    medical = _section(record, step.section)
    return isinstance(medical, dict) and has_any_value(medical.get("news2_monitoring"))


def _external_count(record, step, context) -> bool:
    return context.count(step.section) > 0


def _admin_medication(record, step, context) -> bool:
    medical = _section(record, step.section)
    return isinstance(medical, dict) and has_any_value(medical.get("admin_medication"))


def _risk(record, step, context) -> bool:
    if _non_empty_list(record.get("risk_assessments")):
        return True
    for key in _RISK_BLOCKS:
        block = record.get(key)
        if isinstance(block, dict) and any(
            (v is True) or is_non_empty_string(v) or _non_empty_list(v)
            for v in block.values()
        ):
            return True
    return False


def _equipment(record, step, context) -> bool:
    equipment = _section(record, step.section)
    if _non_empty_list(equipment):
        return True
    if not isinstance(equipment, dict):
        return False
    if _non_empty_list(equipment.get("equipment_blocks")):
        return True
    return any(has_any_value(equipment.get(k)) for k in _EQUIPMENT_BLOCKS)


def _consent(record, step, context) -> bool:
    consent = _section(record, step.section)
    if not isinstance(consent, dict):
        return False
    if any(consent.get(f) in ("yes", "no") for f in _CONSENT_ANSWER_FIELDS):
        return True
    if consent.get("has_capacity") is True or consent.get("lacks_capacity") is True:
        return True
    return any(is_non_empty_string(consent.get(f)) for f in _CONSENT_TEXT_FIELDS)


def _key_contacts(record, step, context) -> bool:
    if _non_empty_list(_section(record, step.section)):
        return True
    personal = record.get("personal_info")
    return isinstance(personal, dict) and _non_empty_list(personal.get("emergency_contacts"))


def _education(record, step, context) -> bool:
    info = _section(record, step.section)
    return isinstance(info, dict) and any(is_non_empty_string(info.get(f)) for f in _EDUCATION_FIELDS)


def _review(record, step, context) -> bool:
    return context.submitted


SectionRule = Callable[[Mapping[str, Any], Step, CompletionContext], bool]

SECTION_RULES: dict[SectionKind, SectionRule] = {
    SectionKind.BASIC_INFO: _basic_info,
    SectionKind.ANY_VALUE: _any_value,
    SectionKind.LIST: _list,
    SectionKind.DIAGNOSIS: _diagnosis,
    SectionKind.NEWS2: _news2,
    SectionKind.EXTERNAL_COUNT: _external_count,
    SectionKind.ADMIN_MEDICATION: _admin_medication,
    SectionKind.RISK: _risk,
    SectionKind.EQUIPMENT: _equipment,
    SectionKind.CONSENT: _consent,
    SectionKind.KEY_CONTACTS: _key_contacts,
    SectionKind.EDUCATION: _education,
    SectionKind.REVIEW: _review,
}

_missing_rules = set(SectionKind) - set(SECTION_RULES)
if _missing_rules:
    raise RuntimeError(f"No completion rule for section kinds: {sorted(k.value for k in _missing_rules)}")


# ── Scoring ─────────────────────────────────────────────────


def _percentage(completed: int, active: int) -> int:
    if active <= 0:
        return 0
    # round half up in integer arithmetic
    return (200 * completed + active) // (2 * active)


def score(
    record: Mapping[str, Any] | None,
    category: SubjectCategory | str | None,
    context: CompletionContext | None = None,
    catalog: Sequence[Step] = CARE_PLAN_STEPS,
) -> CompletionResult:
    """Score a care plan record against the steps active for its client."""
    record = record or {}
    context = context or CompletionContext()
    active = filter_steps(catalog, category)

    completed = {step.id for step in active if SECTION_RULES[step.kind](record, step, context)}

    return CompletionResult(
        completed_step_ids=frozenset(completed),
        active_step_ids=tuple(s.id for s in active),
        percentage=_percentage(len(completed), len(active)),
    )


def provider_assigned(record: Mapping[str, Any]) -> bool:
    """Staff plans need at least one staff id; external plans a provider name."""
    if record.get("provider_type") == "external":
        return is_non_empty_string(record.get("provider_name"))
    staff_ids = record.get("staff_ids") or []
    return any(is_non_empty_string(s) for s in staff_ids)


def check_readiness(record: Mapping[str, Any], completion: CompletionResult) -> Readiness:
    unmet: list[UnmetCondition] = []
    if completion.completed_count < READY_MIN_SECTIONS:
        unmet.append(UnmetCondition(
            code="min_sections",
            message=(
                f"Complete at least {READY_MIN_SECTIONS} sections "
                f"({completion.completed_count} completed)"
            ),
        ))
    assigned = provider_assigned(record)
    if not assigned:
        unmet.append(UnmetCondition(
            code="provider",
            message="Assign a staff member or enter an external provider name",
        ))
    return Readiness(
        completed_count=completion.completed_count,
        provider_assigned=assigned,
        unmet=tuple(unmet),
    )
