"""
Publish/subscribe channel for ledger announcements.

The engine only depends on something with a publish(event_type,
payload) method. Delivery is fire-and-forget: a failing
subscriber is logged and never breaks the write that triggered
the announcement.
"""

import asyncio
import enum
import json
import logging
from collections import defaultdict
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Protocol

from sqlalchemy.orm import Session, sessionmaker

from sales_ledger.models.audit_log import AuditLog

logger = logging.getLogger(__name__)

Handler = Callable[[str, dict[str, Any]], None]


class LedgerEventType(str, enum.Enum):
    CREATED = "ledger_event.created"
    UPDATED = "ledger_event.updated"
    DELETED = "ledger_event.deleted"
    DUPLICATES_CLEANED = "ledger_event.duplicates_cleaned"


class EventPublisher(Protocol):
    def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        ...


class NullPublisher:
    """Publisher that drops every announcement."""

    def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        return None


class InProcessEventBus:
    """
    Synchronous in-process publish/subscribe.

    Handlers subscribed to "*" receive every event type.
    """

    WILDCARD = "*"

    def __init__(self):
        self._handlers: dict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, event_type: str, handler: Handler) -> None:
        self._handlers[str(event_type)].append(handler)

    def unsubscribe(self, event_type: str, handler: Handler) -> None:
        handlers = self._handlers.get(str(event_type), [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        name = str(getattr(event_type, "value", event_type))
        handlers = self._handlers.get(name, []) + self._handlers.get(
            self.WILDCARD, []
        )
        for handler in handlers:
            try:
                handler(name, payload)
            except Exception:
                logger.exception(
                    "event=publish_failed type=%s handler=%r", name, handler
                )


class AuditTrail:
    """
    Subscriber that writes every announcement to the audit_log table.

    Each announcement is committed in its own session so that a
    failed audit write never rolls back ledger state. Inside a
    running event loop writes go, in announcement order, to one
    writer thread; outside one they happen inline. close() waits
    for pending writes.
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        self.session_factory = session_factory
        self._writer = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="audit-trail"
        )

    def __call__(self, event_type: str, payload: dict[str, Any]) -> None:
        ledger_event_id = payload.get("id")
        if ledger_event_id is None and isinstance(payload.get("event"), dict):
            ledger_event_id = payload["event"].get("id")
        # Serialized now, while the payload is as announced.
        details = json.dumps(payload, default=str, sort_keys=True)

        try:
            asyncio.get_running_loop()
        except RuntimeError:
            self._write(event_type, ledger_event_id, details)
            return
        future = self._writer.submit(
            self._write, event_type, ledger_event_id, details
        )
        future.add_done_callback(self._report_failure)

    def close(self) -> None:
        self._writer.shutdown(wait=True)

    def _write(
        self, event_type: str, ledger_event_id: str | None, details: str
    ) -> None:
        with self.session_factory() as db:
            db.add(AuditLog(
                event_type=event_type,
                ledger_event_id=ledger_event_id,
                details=details,
            ))
            db.commit()

    @staticmethod
    def _report_failure(future: Future) -> None:
        error = future.exception()
        if error is not None:
            logger.error(
                "event=audit_write_failed error=%s", error, exc_info=error
            )


def announce(
    publisher: EventPublisher,
    event_type: LedgerEventType,
    payload: dict[str, Any],
) -> None:
    """Publish without letting a broken publisher fail the caller."""
    try:
        publisher.publish(event_type.value, payload)
    except Exception:
        logger.exception("event=publish_failed type=%s", event_type.value)
