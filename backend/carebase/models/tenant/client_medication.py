"""ClientMedication: medication records kept outside the care plan payload.

The wizard's "Medication Schedule" step is scored from the count of these
rows, not from the in-memory form, so list and wizard views agree.
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from carebase.database import TenantBase


class ClientMedication(TenantBase):
    __tablename__ = "client_medications"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    care_plan_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("care_plans.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    dosage: Mapped[str | None] = mapped_column(String(100))
    frequency: Mapped[str | None] = mapped_column(String(100))
    instructions: Mapped[str | None] = mapped_column(Text)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
