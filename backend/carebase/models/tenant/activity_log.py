"""ActivityLog: append-only audit trail of care plan lifecycle events.

Finalize writes one row per commit; the approval screens add their own.
Rows are never updated, so the log can be replayed per care plan.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from carebase.database import TenantBase


class ActivityLog(TenantBase):
    __tablename__ = "activity_logs"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )

    # ── Actor ──────────────────────────────────────────────────
    actor_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    actor_role: Mapped[str | None] = mapped_column(String(50))

    # ── Event ──────────────────────────────────────────────────
    # finalized | approved | rejected | staff_assigned
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    care_plan_id: Mapped[str | None] = mapped_column(String(36), index=True)
    client_id: Mapped[str | None] = mapped_column(String(36), index=True)

    summary: Mapped[str | None] = mapped_column(Text)
    details: Mapped[dict | None] = mapped_column(JSON)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False, index=True
    )
