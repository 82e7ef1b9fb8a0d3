"""
Deduplication orchestrator — keeps one canonical event per sale.

Two modes share the same MatchFinder and ReconciliationScorer:

- The insert guard refuses to add an event when an event of the
  same composite type already exists for the booking, and returns
  the existing one instead.
- The cleanup pass heals a whole store: every duplicate group is
  reconciled, the kept event is enriched and the rest are deleted,
  all in one store commit. Running it again on a clean store
  removes nothing and writes nothing.

The engine runs on one asyncio loop. The per-identity lock only
matters across await points: two inserts for the same booking that
both wait on the store before checking for duplicates.
"""

import asyncio
import contextlib
import itertools
import logging
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Hashable

from sales_ledger.schemas.display import DuplicateGroupReport, DuplicateReport
from sales_ledger.schemas.ledger_event import LedgerEvent, to_cents
from sales_ledger.services.event_bus import (
    EventPublisher,
    LedgerEventType,
    NullPublisher,
    announce,
)
from sales_ledger.services.event_store import EventStore
from sales_ledger.services.match_finder import MatchFinder
from sales_ledger.services.reconciliation_scorer import (
    ReconciliationResult,
    ReconciliationScorer,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Hold:
    token: int
    acquired_at: float


class IdentityLocks:
    """
    Cooperative, self-expiring locks keyed by booking identity.

    A lock is a map entry identity -> acquired-at. It expires after
    ttl_ms even if never released, so a caller that dies mid-insert
    cannot block that booking forever. Releasing with a stale token
    (after the lock expired and was taken by someone else) is a
    no-op.
    """

    def __init__(
        self,
        ttl_ms: int = 5000,
        clock: Callable[[], float] = time.monotonic,
        poll_interval: float = 0.01,
    ):
        self.ttl = ttl_ms / 1000
        self.clock = clock
        self.poll_interval = poll_interval
        self._holds: dict[Hashable, _Hold] = {}
        self._tokens = itertools.count(1)

    def is_locked(self, key: Hashable) -> bool:
        hold = self._holds.get(key)
        if hold is None:
            return False
        if self.clock() - hold.acquired_at >= self.ttl:
            logger.warning("event=identity_lock_expired key=%s", key)
            del self._holds[key]
            return False
        return True

    def try_acquire(self, key: Hashable) -> int | None:
        """Take the lock if free. Returns a release token, or None."""
        if self.is_locked(key):
            return None
        token = next(self._tokens)
        self._holds[key] = _Hold(token=token, acquired_at=self.clock())
        return token

    async def acquire(self, key: Hashable) -> int:
        while True:
            token = self.try_acquire(key)
            if token is not None:
                return token
            await asyncio.sleep(self.poll_interval)

    def release(self, key: Hashable, token: int) -> None:
        hold = self._holds.get(key)
        if hold is not None and hold.token == token:
            del self._holds[key]

    @contextlib.asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        token = await self.acquire(key)
        try:
            yield
        finally:
            self.release(key, token)


class DeduplicationOrchestrator:

    def __init__(
        self,
        store: EventStore,
        match_finder: MatchFinder | None = None,
        scorer: ReconciliationScorer | None = None,
        publisher: EventPublisher | None = None,
        locks: IdentityLocks | None = None,
    ):
        self.store = store
        self.match_finder = match_finder or MatchFinder()
        self.scorer = scorer or ReconciliationScorer()
        self.publisher = publisher or NullPublisher()
        self.locks = locks or IdentityLocks()
        self._cleanup_lock = asyncio.Lock()
        self._cleanup_idle = asyncio.Event()
        self._cleanup_idle.set()
        self._background: set[asyncio.Task] = set()

    # --- Insert guard ---

    async def try_insert(self, candidate: LedgerEvent) -> LedgerEvent:
        """
        Insert candidate unless the booking already has an event of
        the same composite type.

        Returns the event that is now canonical: candidate itself,
        or the pre-existing event (unchanged) when one was found.
        """
        await self._cleanup_idle.wait()

        existing = self.store.get(candidate.id)
        if existing is not None:
            return existing

        if candidate.identity_ref is None:
            await self.store.commit(upserts=[candidate])
            self._announce_created(candidate)
            return candidate

        key = (candidate.identity_ref.kind, candidate.identity_ref.id)
        async with self.locks.hold(key):
            # A cleanup may have started while we waited for the lock.
            await self._cleanup_idle.wait()

            same_type = [
                event for event in self.match_finder.find_candidates(
                    self.store.all(), candidate
                )
                if event.composite_type == candidate.composite_type
            ]
            if same_type:
                canonical = same_type[0]
                if len(same_type) > 1:
                    canonical = self._canonical_of(same_type)
                    logger.warning(
                        "event=preexisting_duplicates identity=%s count=%d "
                        "keep=%s",
                        candidate.identity_ref.id, len(same_type),
                        canonical.id,
                    )
                    self.schedule_cleanup()
                logger.info(
                    "event=duplicate_blocked candidate=%s existing=%s "
                    "identity=%s type=%s",
                    candidate.id, canonical.id,
                    candidate.identity_ref.id, candidate.composite_type.value,
                )
                return canonical

            await self.store.commit(upserts=[candidate])

        self._announce_created(candidate)
        return candidate

    # --- Batch cleanup ---

    async def cleanup_all(self) -> int:
        """
        Reconcile every duplicate group in the store.

        Returns the number of events removed. All enrichments and
        deletions go to the store in a single commit; if nothing
        needs fixing, nothing is written.
        """
        async with self._cleanup_lock:
            self._cleanup_idle.clear()
            try:
                decisions = self._plan()
                if not decisions:
                    logger.info("event=cleanup_finished removed=0")
                    return 0

                upserts = [d.keep for d in decisions]
                removed = [e for d in decisions for e in d.remove]
                await self.store.commit(
                    upserts=upserts, deletes=[e.id for e in removed]
                )
            finally:
                self._cleanup_idle.set()

        for decision in decisions:
            logger.info(
                "event=duplicate_group_fixed rule=%s keep=%s removed=%s",
                decision.rule.value, decision.keep.id,
                [e.id for e in decision.remove],
            )
            self._publish(LedgerEventType.UPDATED, {
                "id": decision.keep.id,
                "event": decision.keep.model_dump(mode="json"),
                "reason": decision.rule.value,
            })
            for event in decision.remove:
                self._publish(LedgerEventType.DELETED, {
                    "id": event.id,
                    "event": event.model_dump(mode="json"),
                    "duplicate_of": decision.keep.id,
                })
        self._publish(LedgerEventType.DUPLICATES_CLEANED, {
            "groups": len(decisions),
            "removed": len(removed),
        })
        logger.info(
            "event=cleanup_finished groups=%d removed=%d",
            len(decisions), len(removed),
        )
        return len(removed)

    def analyze_duplicates(self) -> DuplicateReport:
        """What cleanup_all would do right now, without writing."""
        decisions = self._plan()
        groups = [
            DuplicateGroupReport(
                keep_id=d.keep.id,
                remove_ids=[e.id for e in d.remove],
                rule=d.rule.value,
                amounts=[
                    str(to_cents(e.amount)) for e in [d.keep, *d.remove]
                ],
                channels=[
                    e.origination_channel.value for e in [d.keep, *d.remove]
                ],
            )
            for d in decisions
        ]
        return DuplicateReport(
            total_events=len(self.store),
            group_count=len(groups),
            removable_count=sum(len(g.remove_ids) for g in groups),
            groups=groups,
        )

    def schedule_cleanup(self) -> asyncio.Task:
        """Run cleanup_all in the background on the running loop."""
        task = asyncio.get_running_loop().create_task(self.cleanup_all())
        self._background.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    async def drain(self) -> None:
        """Wait for scheduled background cleanups to finish."""
        while self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("event=background_cleanup_failed error=%s", error)

    def _plan(self) -> list[ReconciliationResult]:
        groups = self.match_finder.group_duplicates(self.store.all())
        return [self.scorer.reconcile(group) for group in groups]

    def _canonical_of(self, matches: list[LedgerEvent]) -> LedgerEvent:
        """
        The stored event the next cleanup pass will keep among matches.

        Cleanup reconciles whole groups, so the decision is taken on
        the group that contains the matches when there is one.
        """
        ids = {event.id for event in matches}
        group = next(
            (
                group for group in self.match_finder.group_duplicates(
                    self.store.all()
                )
                if ids & {event.id for event in group}
            ),
            matches,
        )
        return self.store.get(self.scorer.reconcile(group).keep.id)

    # --- Announcements ---

    def _announce_created(self, event: LedgerEvent) -> None:
        self._publish(LedgerEventType.CREATED, {
            "id": event.id,
            "event": event.model_dump(mode="json"),
        })

    def _publish(self, event_type: LedgerEventType, payload: dict[str, Any]):
        announce(self.publisher, event_type, payload)
