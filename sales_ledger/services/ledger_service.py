"""
Ledger event service — the entry point for every ledger operation.

This service enforces the rules the rest of the system relies on:
1. Every event balances (service + product = amount)
2. A booking gets at most one event per composite type
3. id and created_at never change once assigned
4. Every change is announced to subscribers

Callers never touch the EventStore or the orchestrator directly.
The service is built explicitly and must be initialized once
before use; there is no module-level instance.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable

from sales_ledger.config import Settings, get_settings
from sales_ledger.exceptions import NotFoundError, UnbalancedEventError
from sales_ledger.schemas.booking import Booking
from sales_ledger.schemas.display import DisplayBreakdown, DuplicateReport
from sales_ledger.schemas.ledger_event import (
    CENT,
    LedgerEvent,
    LedgerEventCreate,
    LedgerEventFilter,
    LedgerEventUpdate,
    utc_now,
)
from sales_ledger.services.display import project as project_display
from sales_ledger.services.consolidator import Consolidator
from sales_ledger.services.deduplication import (
    DeduplicationOrchestrator,
    IdentityLocks,
)
from sales_ledger.services.event_bus import (
    EventPublisher,
    LedgerEventType,
    NullPublisher,
    announce,
)
from sales_ledger.services.event_store import EventBackend, EventStore
from sales_ledger.services.match_finder import MatchFinder
from sales_ledger.services.reconciliation_scorer import ReconciliationScorer

logger = logging.getLogger(__name__)


def check_balanced(event: LedgerEvent) -> None:
    """
    Raise UnbalancedEventError if the event's parts disagree.

    The split is only checked when at least one side of it is
    set; a missing side counts as zero. Line items, when present,
    must add up to the amount.
    """
    if event.service_amount is not None or event.product_amount is not None:
        split = (event.service_amount or Decimal("0")) + (
            event.product_amount or Decimal("0")
        )
        if abs(split - event.amount) >= CENT:
            raise UnbalancedEventError(
                event.id,
                f"service + product is {split}, amount is {event.amount}",
            )

    if event.line_items:
        items_total = sum(
            (item.total_price for item in event.line_items), Decimal("0")
        )
        if abs(items_total - event.amount) >= CENT:
            raise UnbalancedEventError(
                event.id,
                f"line items total {items_total}, amount is {event.amount}",
            )


class LedgerEventService:
    """
    All ledger event operations pass through this service.

    The service owns the store and the orchestrator built on top
    of it. Reads are served from memory; writes go through the
    orchestrator (inserts) or straight to the store (updates and
    removals), and are announced on the publisher.
    """

    def __init__(
        self,
        store: EventStore,
        publisher: EventPublisher | None = None,
        settings: Settings | None = None,
        consolidator: Consolidator | None = None,
        orchestrator: DeduplicationOrchestrator | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.publisher = publisher or NullPublisher()
        self.consolidator = consolidator or Consolidator(clock=clock)
        self.orchestrator = orchestrator or DeduplicationOrchestrator(
            store,
            match_finder=MatchFinder.from_settings(self.settings),
            scorer=ReconciliationScorer.from_settings(self.settings),
            publisher=self.publisher,
            locks=IdentityLocks(ttl_ms=self.settings.IDENTITY_LOCK_TTL_MS),
        )
        self.clock = clock
        self.initialized = False

    @classmethod
    def from_settings(
        cls,
        backend: EventBackend,
        publisher: EventPublisher | None = None,
        settings: Settings | None = None,
    ) -> "LedgerEventService":
        return cls(EventStore(backend), publisher=publisher, settings=settings)

    async def initialize(self) -> None:
        """
        Load the store and, if enabled, run the bootstrap cleanup.

        Calling it again is a no-op.
        """
        if self.initialized:
            return
        await self.store.load()
        if self.settings.BOOTSTRAP_CLEANUP:
            removed = await self.orchestrator.cleanup_all()
            logger.info("event=bootstrap_cleanup removed=%d", removed)
        self.initialized = True

    async def shutdown(self) -> None:
        """Let scheduled background cleanups finish."""
        await self.orchestrator.drain()

    # --- Writes ---

    async def create(
        self,
        booking: Booking,
        discount_percentage: Decimal | None = None,
    ) -> LedgerEvent:
        """
        Record the checkout of a booking.

        Returns the canonical event for the booking: the new one,
        or the event already recorded for it. Raises
        InvalidBookingError for a booking with nothing to charge.
        """
        self._require_initialized()
        event = self.consolidator.build_consolidated(
            booking, discount_percentage
        )
        check_balanced(event)
        return await self.orchestrator.try_insert(event)

    async def record(
        self, event: LedgerEventCreate | LedgerEvent
    ) -> LedgerEvent:
        """
        Record a sale produced by another channel.

        The event goes through the same duplicate guard as
        create(). Recording an id that already exists returns
        the stored event (idempotency).
        """
        self._require_initialized()
        if isinstance(event, LedgerEventCreate):
            event = event.to_event(self.clock())
        check_balanced(event)
        return await self.orchestrator.try_insert(event)

    async def update(
        self,
        event_id: str,
        fields: LedgerEventUpdate | dict[str, Any],
    ) -> LedgerEvent:
        """
        Apply a partial update to an event.

        Raises NotFoundError for an unknown id, ValidationError if
        the fields are malformed, and UnbalancedEventError if the
        result no longer balances. Nothing is written on failure.
        """
        self._require_initialized()
        current = self.store.get(event_id)
        if current is None:
            raise NotFoundError(event_id)

        if not isinstance(fields, LedgerEventUpdate):
            fields = LedgerEventUpdate.model_validate(fields)
        changes = fields.model_dump(exclude_unset=True)

        data = current.model_dump()
        data.update(changes)
        data["updated_at"] = max(self.clock(), current.updated_at)
        updated = LedgerEvent.model_validate(data)
        check_balanced(updated)

        await self.store.commit(upserts=[updated])
        logger.info(
            "event=ledger_event_updated id=%s fields=%s",
            event_id, sorted(changes),
        )
        announce(self.publisher, LedgerEventType.UPDATED, {
            "id": event_id,
            "event": updated.model_dump(mode="json"),
            "fields": sorted(changes),
        })
        return updated

    async def remove(self, event_id: str) -> bool:
        """Delete an event. Raises NotFoundError for an unknown id."""
        self._require_initialized()
        event = self.store.get(event_id)
        if event is None:
            raise NotFoundError(event_id)

        await self.store.commit(deletes=[event_id])
        logger.info("event=ledger_event_removed id=%s", event_id)
        announce(self.publisher, LedgerEventType.DELETED, {
            "id": event_id,
            "event": event.model_dump(mode="json"),
        })
        return True

    async def cleanup_all(self) -> int:
        self._require_initialized()
        return await self.orchestrator.cleanup_all()

    # --- Reads ---

    def get(self, event_id: str) -> LedgerEvent | None:
        self._require_initialized()
        return self.store.get(event_id)

    def filter(
        self, criteria: LedgerEventFilter | None = None
    ) -> list[LedgerEvent]:
        """Events matching criteria, newest first."""
        self._require_initialized()
        criteria = criteria or LedgerEventFilter()
        events = self.store.filter(criteria.matches)
        return sorted(
            events, key=lambda e: (e.occurred_at, e.id), reverse=True
        )

    def analyze_duplicates(self) -> DuplicateReport:
        self._require_initialized()
        return self.orchestrator.analyze_duplicates()

    @staticmethod
    def project(event: Any) -> DisplayBreakdown:
        return project_display(event)

    def _require_initialized(self) -> None:
        if not self.initialized:
            raise RuntimeError(
                "LedgerEventService.initialize() must be awaited first"
            )
