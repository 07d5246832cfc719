"""CarePlan: the committed, normalized care plan record.

Written only by finalize.  Re-finalizing an existing plan bumps `version`
in place; the draft that produced each version stays behind as the
audit trail (see CarePlanDraft).
"""

import uuid
from datetime import date, datetime

from sqlalchemy import Date, DateTime, ForeignKey, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from carebase.database import TenantBase


class CarePlan(TenantBase):
    __tablename__ = "care_plans"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    client_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("clients.id"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)

    # draft | pending_approval | approved | active | rejected
    status: Mapped[str] = mapped_column(String(30), default="pending_approval", index=True)
    version: Mapped[int] = mapped_column(Integer, default=1)

    # ── Provider ───────────────────────────────────────────────
    # staff | external
    provider_type: Mapped[str] = mapped_column(String(20), default="staff")
    provider_name: Mapped[str | None] = mapped_column(String(255))

    start_date: Mapped[date | None] = mapped_column(Date)
    review_date: Mapped[date | None] = mapped_column(Date)
    priority: Mapped[str] = mapped_column(String(20), default="medium")

    # Full wizard payload as committed
    data: Mapped[dict] = mapped_column(JSON, default=dict)
    completion_percentage: Mapped[int] = mapped_column(Integer, default=0)

    finalized_at: Mapped[datetime | None] = mapped_column(DateTime)
    finalized_by: Mapped[str | None] = mapped_column(String(36))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    staff_assignments = relationship(
        "CarePlanStaffAssignment",
        back_populates="care_plan",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
