"""
Audit log model.

Records every announcement the ledger publishes: creations,
updates, deletions and cleanup passes. When reported revenue
changes because a duplicate was removed, this table shows which
event was dropped and why.
"""

from datetime import datetime, timezone

from sqlalchemy import String, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column

from sales_ledger.models.base import Base


def _utcnow() -> datetime:
    # Stored naive, in UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


class AuditLog(Base):
    """
    Immutable record of a ledger announcement.

    Audit rows are append-only. You never update or delete one.
    """

    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(primary_key=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    ledger_event_id: Mapped[str | None] = mapped_column(
        String(100), nullable=True, index=True
    )
    details: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, nullable=False
    )
