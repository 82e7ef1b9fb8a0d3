"""
Database models package.

All models must be imported here so that Alembic can discover
them through Base.metadata when generating migrations.
"""

from sales_ledger.models.base import Base
from sales_ledger.models.enums import (
    OriginationChannel,
    CompositeType,
    LineItemKind,
    EventStatus,
)
from sales_ledger.models.audit_log import AuditLog
from sales_ledger.models.ledger_event import LedgerEventRecord

__all__ = [
    "Base",
    "OriginationChannel",
    "CompositeType",
    "LineItemKind",
    "EventStatus",
    "AuditLog",
    "LedgerEventRecord",
]
