"""Staff assignment reconciliation.

A care plan's staff list is written to two places: the draft payload
(`staff_ids`, updated by every autosave) and the normalized
care_plan_staff_assignments table (updated on finalize).  When a plan is
opened for editing the two may disagree.

Rule: the longer list wins; on a tie the draft wins, since it may carry
in-progress edits the normalized store has not seen yet.  Disagreement
is resolved here deterministically and never surfaced to the user.

Known limitation: a user who trims staff down to a smaller, correct set
before finalizing will see the larger normalized list come back on the
next load.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Sequence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StaffAssignment:
    staff_id: str
    is_primary: bool = False


def reconcile(
    draft_staff_ids: Sequence[str] | None,
    normalized_assignments: Iterable[StaffAssignment] | None,
) -> list[str]:
    """Return the authoritative staff id list for a care plan."""
    draft = list(draft_staff_ids or [])
    normalized = [a.staff_id for a in (normalized_assignments or [])]

    if len(normalized) > len(draft):
        logger.debug(
            "Staff reconciliation: normalized store wins (%d > %d)",
            len(normalized), len(draft),
        )
        return normalized
    return draft


def assignments_from_ids(staff_ids: Sequence[str]) -> list[StaffAssignment]:
    """Build normalized assignments from a staff id list; the first is primary."""
    seen: set[str] = set()
    result: list[StaffAssignment] = []
    for staff_id in staff_ids:
        if not staff_id or staff_id in seen:
            continue
        seen.add(staff_id)
        result.append(StaffAssignment(staff_id=staff_id, is_primary=not result))
    return result
