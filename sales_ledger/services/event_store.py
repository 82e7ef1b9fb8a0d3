"""
Event store — the authoritative collection of ledger events.

The store keeps every event in memory, in insertion order, and
mirrors it to a durable backend. The backend is treated as an
opaque key-value store with two operations: load everything,
save everything. Backend calls run in a worker thread and are
awaited, so they are the only points where other coroutines can
interleave with a write.

Writes are all-or-nothing: a commit stages the new state, saves
it, and swaps it in only after the save succeeded. If the backend
fails, the in-memory state stays at its last-known-good value and
the caller gets a StoreError.
"""

import asyncio
import copy
import logging
from typing import Callable, Iterable, Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from pydantic import ValidationError

from sales_ledger.exceptions import StoreError
from sales_ledger.models.ledger_event import LedgerEventRecord
from sales_ledger.schemas.ledger_event import LedgerEvent, utc_now

logger = logging.getLogger(__name__)


class EventBackend(Protocol):
    """Durable storage contract the store needs."""

    def load(self) -> list[dict]:
        ...

    def save(self, documents: list[dict]) -> None:
        ...


class InMemoryEventBackend:
    """
    Backend that keeps serialized documents in a list.

    Useful for embedding the engine without a database. save_count
    tells how many times the store actually wrote.
    """

    def __init__(self, documents: list[dict] | None = None):
        self.documents = copy.deepcopy(documents or [])
        self.save_count = 0

    def load(self) -> list[dict]:
        return copy.deepcopy(self.documents)

    def save(self, documents: list[dict]) -> None:
        self.documents = copy.deepcopy(documents)
        self.save_count += 1


class SqlAlchemyEventBackend:
    """
    Backend that stores one row per event in the ledger_events table.

    A save compares the new documents against the stored rows and
    only touches rows that changed, inside one database
    transaction. Row order is kept through the position column.
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        self.session_factory = session_factory

    def load(self) -> list[dict]:
        with self.session_factory() as db:
            rows = db.execute(
                select(LedgerEventRecord).order_by(
                    LedgerEventRecord.position, LedgerEventRecord.id
                )
            ).scalars().all()
            return [copy.deepcopy(row.document) for row in rows]

    def save(self, documents: list[dict]) -> None:
        with self.session_factory() as db:
            try:
                existing = {
                    row.id: row
                    for row in db.execute(select(LedgerEventRecord)).scalars()
                }
                keep_ids = {doc["id"] for doc in documents}

                for event_id, row in existing.items():
                    if event_id not in keep_ids:
                        db.delete(row)

                for position, doc in enumerate(documents):
                    row = existing.get(doc["id"])
                    if row is None:
                        db.add(self._new_row(doc, position))
                    elif row.document != doc or row.position != position:
                        self._fill_row(row, doc, position)

                db.commit()
            except SQLAlchemyError:
                db.rollback()
                raise

    def _new_row(self, doc: dict, position: int) -> LedgerEventRecord:
        row = LedgerEventRecord(id=doc["id"])
        self._fill_row(row, doc, position)
        return row

    @staticmethod
    def _fill_row(row: LedgerEventRecord, doc: dict, position: int) -> None:
        identity = doc.get("identity_ref") or {}
        row.position = position
        row.identity_kind = identity.get("kind")
        row.identity_id = identity.get("id")
        row.composite_type = doc["composite_type"]
        row.document = copy.deepcopy(doc)
        row.updated_at = utc_now().replace(tzinfo=None)


def serialize(event: LedgerEvent) -> dict:
    """Event to its at-rest form: ISO-8601 timestamps, cents."""
    return event.model_dump(mode="json")


def deserialize(document: dict) -> LedgerEvent:
    return LedgerEvent.model_validate(document)


class EventStore:
    """
    In-memory ledger events backed by a durable EventBackend.

    Reads are synchronous and see the last committed state.
    Writes go through commit().
    """

    def __init__(self, backend: EventBackend):
        self._backend = backend
        self._events: dict[str, LedgerEvent] = {}
        self._write_lock = asyncio.Lock()
        self.loaded = False

    async def load(self) -> list[LedgerEvent]:
        """Replace the in-memory state with what the backend holds."""
        try:
            documents = await asyncio.to_thread(self._backend.load)
            events = [deserialize(doc) for doc in documents]
        except (SQLAlchemyError, ValidationError, OSError) as e:
            logger.error("event=store_load_failed error=%s", e)
            raise StoreError("load", e) from e

        self._events = {event.id: event for event in events}
        self.loaded = True
        logger.info("event=store_loaded count=%d", len(self._events))
        return list(self._events.values())

    async def commit(
        self,
        upserts: Iterable[LedgerEvent] = (),
        deletes: Iterable[str] = (),
    ) -> None:
        """
        Apply inserts, replacements and deletions as one transaction.

        A replaced event keeps its position; new events are
        appended. Nothing becomes visible unless the save succeeds.
        """
        upserts, deletes = list(upserts), list(deletes)
        # Staging happens under the lock so that two overlapping commits
        # never build on the same stale snapshot.
        async with self._write_lock:
            staged = dict(self._events)
            for event in upserts:
                staged[event.id] = event
            for event_id in deletes:
                staged.pop(event_id, None)

            documents = [serialize(event) for event in staged.values()]
            try:
                await asyncio.to_thread(self._backend.save, documents)
            except (SQLAlchemyError, OSError) as e:
                logger.error("event=store_save_failed error=%s", e)
                raise StoreError("save", e) from e

            self._events = staged

    def get(self, event_id: str) -> LedgerEvent | None:
        return self._events.get(event_id)

    def all(self) -> list[LedgerEvent]:
        return list(self._events.values())

    def filter(
        self, predicate: Callable[[LedgerEvent], bool]
    ) -> list[LedgerEvent]:
        return [event for event in self._events.values() if predicate(event)]

    def __len__(self) -> int:
        return len(self._events)

    def __contains__(self, event_id: object) -> bool:
        return event_id in self._events
