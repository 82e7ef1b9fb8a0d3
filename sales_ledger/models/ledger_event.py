"""
Ledger event storage model.

The engine treats persistence as an opaque key-value store: one
row per ledger event, keyed by the event id, holding the full
serialized event document. The identity columns are copies of
fields inside the document so that operators can query the table
by booking without parsing JSON.
"""

from datetime import datetime

from sqlalchemy import String, DateTime, Integer, JSON
from sqlalchemy.orm import Mapped, mapped_column

from sales_ledger.models.base import Base


class LedgerEventRecord(Base):
    """
    A persisted ledger event.

    The document column is the source of truth. Rows are
    replaced wholesale on save, never patched column by column.
    """

    __tablename__ = "ledger_events"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    identity_kind: Mapped[str | None] = mapped_column(
        String(50), nullable=True
    )
    identity_id: Mapped[str | None] = mapped_column(
        String(100), nullable=True, index=True
    )
    composite_type: Mapped[str] = mapped_column(String(20), nullable=False)
    document: Mapped[dict] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    def __repr__(self) -> str:
        return f"<LedgerEventRecord {self.id} ({self.composite_type})>"
