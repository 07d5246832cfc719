"""Care plan wizard steps: catalog, per-category filtering, step migration.

The catalog is the single ordered definition of every authoring step.
Ordering is the navigation order.  Steps tagged CHILD_ONLY are dropped
for adult clients by `filter_steps`.

Catalog history:
    Steps are occasionally inserted mid-catalog.  Every insertion is
    recorded as a CatalogMigration so a draft saved under an older shape
    can have its `last_step_completed` moved to the step the user was
    actually on.  Drafts written since versioning carry `catalog_version`;
    older ones are recognised by the absence of the inserted section.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Sequence

logger = logging.getLogger(__name__)


class SubjectCategory(str, enum.Enum):
    ADULT = "adult"
    CHILD = "child"


class ConditionalTag(str, enum.Enum):
    CHILD_ONLY = "child-only"


# Category that unlocks every conditional step
UNLOCKING_CATEGORY = SubjectCategory.CHILD

# Client.age_group values treated as children
CHILD_AGE_GROUPS = {"child", "young_person"}


class SectionKind(str, enum.Enum):
    """How a step's record section is judged complete.

    Closed set: every kind needs a rule in services.completion.SECTION_RULES.
    """
    BASIC_INFO = "basic_info"
    ANY_VALUE = "any_value"
    LIST = "list"
    DIAGNOSIS = "diagnosis"
    NEWS2 = "news2"
    EXTERNAL_COUNT = "external_count"
    ADMIN_MEDICATION = "admin_medication"
    RISK = "risk"
    EQUIPMENT = "equipment"
    CONSENT = "consent"
    KEY_CONTACTS = "key_contacts"
    EDUCATION = "education"
    REVIEW = "review"


@dataclass(frozen=True)
class Step:
    id: int
    name: str
    section: str | None
    kind: SectionKind
    conditional_tag: ConditionalTag | None = None
    description: str = ""

    @property
    def is_conditional(self) -> bool:
        return self.conditional_tag is not None


@dataclass(frozen=True)
class CatalogMigration:
    """One historical insertion of steps into the catalog."""
    version: int          # catalog version that introduced the insertion
    marker_section: str   # record section that only exists from this version on
    inserted_at: int      # step id of the first inserted step
    inserted_count: int = 1


CARE_PLAN_STEPS: tuple[Step, ...] = (
    Step(1, "Basic Information", "title", SectionKind.BASIC_INFO,
         description="Care plan title, provider and dates"),
    Step(2, "About Me", "about_me", SectionKind.ANY_VALUE,
         description="Preferences, background and routines"),
    Step(3, "Diagnosis", "medical_info", SectionKind.DIAGNOSIS,
         description="Health conditions and medical history"),
    Step(4, "General", "general", SectionKind.ANY_VALUE,
         description="Reasons for care, falls, warnings and instructions"),
    Step(5, "NEWS2 Monitoring", "medical_info", SectionKind.NEWS2,
         description="Health monitoring baseline"),
    Step(6, "Medication Schedule", "medication", SectionKind.EXTERNAL_COUNT,
         description="Medications on record for this plan"),
    Step(7, "Medication Administration", "medical_info", SectionKind.ADMIN_MEDICATION,
         description="How medication is stored and administered"),
    Step(8, "Goals", "goals", SectionKind.LIST),
    Step(9, "Activities", "activities", SectionKind.LIST),
    Step(10, "Personal Care", "personal_care", SectionKind.ANY_VALUE),
    Step(11, "Dietary", "dietary", SectionKind.ANY_VALUE),
    Step(12, "Risk Assessments", "risk_assessments", SectionKind.RISK),
    Step(13, "Equipment", "equipment", SectionKind.EQUIPMENT),
    Step(14, "Service Plans", "service_plans", SectionKind.LIST),
    Step(15, "Service Actions", "service_actions", SectionKind.LIST),
    Step(16, "Documents", "documents", SectionKind.LIST),
    Step(17, "Consent", "consent", SectionKind.CONSENT),
    Step(18, "Key Contacts", "key_contacts", SectionKind.KEY_CONTACTS),
    Step(19, "Behaviour Support", "behavior_support", SectionKind.ANY_VALUE,
         ConditionalTag.CHILD_ONLY),
    Step(20, "Education & Development", "child_info", SectionKind.EDUCATION,
         ConditionalTag.CHILD_ONLY),
    Step(21, "Safeguarding & Risks", "safeguarding", SectionKind.ANY_VALUE,
         ConditionalTag.CHILD_ONLY),
    Step(22, "Review", None, SectionKind.REVIEW,
         description="Review and finalize the care plan"),
)

CATALOG_MIGRATIONS: tuple[CatalogMigration, ...] = (
    CatalogMigration(version=2, marker_section="general", inserted_at=4),
)

CATALOG_VERSION = max((m.version for m in CATALOG_MIGRATIONS), default=1)


# ── Filtering ───────────────────────────────────────────────


def category_for_age_group(age_group: str | None) -> SubjectCategory:
    if age_group and age_group.lower() in CHILD_AGE_GROUPS:
        return SubjectCategory.CHILD
    return SubjectCategory.ADULT


def filter_steps(
    catalog: Sequence[Step],
    category: SubjectCategory | str | None,
) -> list[Step]:
    """Return the active steps for a subject category, in catalog order.

    The unlocking category gets the whole catalog; any other category
    (including an unknown one) loses every conditional step.
    """
    if _unlocks_conditional(category):
        return list(catalog)
    return [s for s in catalog if not s.is_conditional]


def _unlocks_conditional(category: SubjectCategory | str | None) -> bool:
    if category is None:
        return False
    try:
        return SubjectCategory(category) == UNLOCKING_CATEGORY
    except ValueError:
        return False


def step_ids(steps: Sequence[Step]) -> list[int]:
    return [s.id for s in steps]


def resolve_active_step(step_id: int | None, steps: Sequence[Step]) -> int:
    """Return `step_id` if it is active, else the first active step."""
    if not steps:
        raise ValueError("No active steps")
    if step_id is not None and any(s.id == step_id for s in steps):
        return step_id
    return steps[0].id


# ── Step-number migration ───────────────────────────────────


def migrate_step_number(
    stored_step: int,
    payload: dict | None,
    catalog_version: int | None,
    migrations: Sequence[CatalogMigration] = CATALOG_MIGRATIONS,
) -> int:
    """Shift a persisted step number across later catalog insertions.

    With a known `catalog_version`, every migration newer than it applies.
    Without one (legacy draft), a migration applies only when the payload
    lacks its marker section.  In both cases the step moves only if the
    insertion happened at or before it.
    """
    payload = payload or {}
    step = stored_step
    for migration in sorted(migrations, key=lambda m: m.version):
        if catalog_version is not None:
            if migration.version <= catalog_version:
                continue
        elif migration.marker_section in payload:
            continue
        if step >= migration.inserted_at:
            step += migration.inserted_count
    if step != stored_step:
        logger.info(
            "Relocated draft step %d -> %d (catalog version %s)",
            stored_step, step, catalog_version,
        )
    return step


def restore_step(
    stored_step: int | None,
    payload: dict | None,
    catalog_version: int | None,
    steps: Sequence[Step],
    migrations: Sequence[CatalogMigration] = CATALOG_MIGRATIONS,
) -> int:
    """Migrate a stored step number, then make sure it is still active."""
    if not stored_step:
        return resolve_active_step(None, steps)
    migrated = migrate_step_number(stored_step, payload, catalog_version, migrations)
    return resolve_active_step(migrated, steps)
