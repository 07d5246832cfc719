"""CarePlanDraft: the durable, auto-saved copy of a care plan being authored.

One open draft per (client, care plan) when editing an existing plan.
Drafts for brand-new plans have `care_plan_id = NULL`; several abandoned
ones may exist per client, and a forced-new session never reuses them.
Finalized drafts are kept (status="finalized") as the audit trail.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from carebase.database import TenantBase


class CarePlanDraft(TenantBase):
    __tablename__ = "care_plan_drafts"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    client_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("clients.id"), nullable=False, index=True
    )
    care_plan_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("care_plans.id"), index=True
    )

    auto_save_data: Mapped[dict] = mapped_column(JSON, default=dict)
    last_step_completed: Mapped[int] = mapped_column(Integer, default=1)
    # NULL on drafts written before the catalog was versioned
    catalog_version: Mapped[int | None] = mapped_column(Integer)
    completion_percentage: Mapped[int] = mapped_column(Integer, default=0)

    # draft | finalized
    status: Mapped[str] = mapped_column(String(20), default="draft", index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
