"""CarePlanStaffAssignment: normalized staff ↔ care plan link.

Maintained independently of the draft's `staff_ids`; the two are
reconciled whenever a plan is opened for editing.
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from carebase.database import TenantBase


class CarePlanStaffAssignment(TenantBase):
    __tablename__ = "care_plan_staff_assignments"
    __table_args__ = (
        UniqueConstraint("care_plan_id", "staff_id", name="uq_care_plan_staff"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    care_plan_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("care_plans.id", ondelete="CASCADE"), nullable=False, index=True
    )
    staff_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    is_primary: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    care_plan = relationship("CarePlan", back_populates="staff_assignments")
