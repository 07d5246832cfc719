"""Pydantic schemas for the care plan wizard API.

The wizard record itself travels as a free-form dict: its sections are
judged by the completion rules, not validated field by field here.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


# ── Steps & progress ────────────────────────────────────────

class StepOut(BaseModel):
    id: int
    name: str
    description: str = ""
    conditional: bool = False


class CompletionOut(BaseModel):
    completed_step_ids: list[int]
    active_step_ids: list[int]
    completed_count: int
    percentage: int


class UnmetConditionOut(BaseModel):
    code: str
    message: str


class ReadinessOut(BaseModel):
    ready: bool
    completed_count: int
    provider_assigned: bool
    unmet: list[UnmetConditionOut] = []


# ── Drafts ──────────────────────────────────────────────────

class DraftOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str | None
    client_id: str
    care_plan_id: str | None = None
    auto_save_data: dict
    last_step_completed: int
    catalog_version: int | None = None
    completion_percentage: int
    status: str
    updated_at: datetime | None = None


class DraftLoadOut(BaseModel):
    """Everything the wizard needs to render after load."""
    draft: DraftOut | None
    record: dict
    current_step: int
    steps: list[StepOut]
    category: str
    completion: CompletionOut


class DraftWrite(BaseModel):
    client_id: str
    care_plan_id: str | None = None
    draft_id: str | None = None
    record: dict
    current_step: int = Field(1, ge=1)


class DraftWriteOut(BaseModel):
    draft: DraftOut
    completion: CompletionOut


# ── Finalize ────────────────────────────────────────────────

class FinalizeRequest(DraftWrite):
    status: Literal["pending_approval", "approved", "active"] | None = None
    confirm_override: bool = False


class FinalizeOut(BaseModel):
    committed: bool
    care_plan_id: str | None = None
    status: str | None = None
    readiness: ReadinessOut


# ── List ────────────────────────────────────────────────────

class CarePlanSummary(BaseModel):
    id: str
    kind: Literal["care_plan", "draft"]
    title: str
    status: str
    version: int | None = None
    care_plan_id: str | None = None
    completion_percentage: int
    updated_at: datetime | None = None
