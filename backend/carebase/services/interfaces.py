"""Narrow contracts between the care plan wizard core and its collaborators.

The core only ever talks to these Protocols.  `sql_stores` implements
them over the tenant database; tests use in-memory versions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, Sequence

from carebase.services.staff_reconciliation import StaffAssignment
from carebase.services.step_catalog import SubjectCategory


@dataclass(frozen=True)
class Actor:
    """Who is acting, decoded from the JWT and passed in explicitly."""
    user_id: str
    role: str
    permissions: tuple[str, ...] = ()
    tenant_schema: str | None = None


@dataclass(frozen=True)
class SubjectProfile:
    client_id: str
    category: SubjectCategory
    first_name: str = ""
    last_name: str = ""
    email: str | None = None
    phone: str | None = None
    address: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass
class Draft:
    client_id: str
    auto_save_data: dict[str, Any]
    last_step_completed: int = 1
    care_plan_id: str | None = None
    catalog_version: int | None = None
    completion_percentage: int = 0
    status: str = "draft"
    id: str | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class CommitRequest:
    client_id: str
    record: dict[str, Any]
    status: str
    care_plan_id: str | None = None
    completion_percentage: int = 0
    actor_id: str | None = None
    assignments: Sequence[StaffAssignment] = ()


@dataclass(frozen=True)
class AuditEvent:
    action: str
    client_id: str
    care_plan_id: str | None = None
    actor_id: str | None = None
    actor_role: str | None = None
    summary: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


class SubjectProfileSource(Protocol):
    async def get_subject_profile(self, client_id: str) -> SubjectProfile: ...


class DraftBackend(Protocol):
    async def get_draft(self, draft_id: str) -> Draft | None: ...

    async def find_draft(self, client_id: str, care_plan_id: str | None) -> Draft | None:
        """Most recent open draft for (client, care plan); care_plan_id=None means "new"."""
        ...

    async def put_draft(self, draft: Draft) -> Draft:
        """Insert (draft.id is None) or update; returns the stored draft."""
        ...


class RecordStore(Protocol):
    async def commit(self, request: CommitRequest) -> str: ...

    async def get_assignments(self, care_plan_id: str) -> list[StaffAssignment]: ...


class ExternalCounter(Protocol):
    async def get_external_count(self, care_plan_id: str, kind: str) -> int: ...


class AuditSink(Protocol):
    def record(self, event: AuditEvent) -> None:
        """Fire-and-forget; must return promptly."""
        ...
