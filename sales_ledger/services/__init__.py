"""Business logic services."""

from sales_ledger.services.consolidator import Consolidator
from sales_ledger.services.deduplication import (
    DeduplicationOrchestrator,
    IdentityLocks,
)
from sales_ledger.services.event_bus import AuditTrail, InProcessEventBus
from sales_ledger.services.event_store import (
    EventStore,
    InMemoryEventBackend,
    SqlAlchemyEventBackend,
)
from sales_ledger.services.ledger_service import LedgerEventService
from sales_ledger.services.match_finder import MatchFinder
from sales_ledger.services.reconciliation_scorer import ReconciliationScorer

__all__ = [
    "AuditTrail",
    "Consolidator",
    "DeduplicationOrchestrator",
    "EventStore",
    "IdentityLocks",
    "InMemoryEventBackend",
    "InProcessEventBus",
    "LedgerEventService",
    "MatchFinder",
    "ReconciliationScorer",
    "SqlAlchemyEventBackend",
]
