"""Activity log entries for care plan lifecycle events.

Usage:
    log_activity(
        db, action="finalized", actor_id=actor.user_id, actor_role=actor.role,
        care_plan_id=plan.id, client_id=plan.client_id,
        summary="Care plan 'Care Plan for Ada Lovelace' finalized as active",
    )

The row is added to the current session and committed with the
enclosing transaction; no flush is performed, so this never blocks
on the database.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from carebase.models.tenant.activity_log import ActivityLog
from carebase.services.interfaces import AuditEvent


def log_activity(
    db: AsyncSession,
    *,
    action: str,
    actor_id: str | None,
    actor_role: str | None = None,
    care_plan_id: str | None = None,
    client_id: str | None = None,
    summary: str | None = None,
    details: dict | None = None,
) -> ActivityLog:
    """Append an activity log entry to the current DB session."""
    entry = ActivityLog(
        actor_id=actor_id or "system",
        actor_role=actor_role,
        action=action,
        care_plan_id=care_plan_id,
        client_id=client_id,
        summary=summary,
        details=details,
    )
    db.add(entry)
    return entry


class ActivityLogSink:
    """Audit sink that records wizard events as ActivityLog rows."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def record(self, event: AuditEvent) -> None:
        log_activity(
            self.db,
            action=event.action,
            actor_id=event.actor_id,
            actor_role=event.actor_role,
            care_plan_id=event.care_plan_id,
            client_id=event.client_id,
            summary=event.summary,
            details=dict(event.details) or None,
        )
