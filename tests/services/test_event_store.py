"""
Tests for the EventStore and its backends.

Tests cover:
- Load and commit round trips through SQLite
- Diff saves (changed rows only, deletes, ordering)
- All-or-nothing commits when the backend fails
- Serialization format at rest
"""

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import select

from sales_ledger.exceptions import StoreError
from sales_ledger.models.ledger_event import LedgerEventRecord
from sales_ledger.services.event_store import (
    EventStore,
    InMemoryEventBackend,
    SqlAlchemyEventBackend,
    serialize,
)


class ExplodingBackend(InMemoryEventBackend):

    def save(self, documents):
        raise OSError("backend unavailable")


class TestSqlAlchemyBackend:

    def test_commit_then_reload(self, make_event, session_factory):
        backend = SqlAlchemyEventBackend(session_factory)

        async def scenario():
            store = EventStore(backend)
            await store.load()
            await store.commit(upserts=[
                make_event(id="TX-1", booking="apt-1"),
                make_event(id="TX-2", amount=Decimal("12.345")),
            ])
            fresh = EventStore(backend)
            return await fresh.load()

        events = asyncio.run(scenario())

        assert [e.id for e in events] == ["TX-1", "TX-2"]
        assert events[0].identity_ref.id == "apt-1"
        # Rounded to cents at rest
        assert events[1].amount == Decimal("12.35")

    def test_rows_carry_identity_columns(
        self, make_event, db_session, session_factory
    ):
        backend = SqlAlchemyEventBackend(session_factory)

        async def scenario():
            store = EventStore(backend)
            await store.load()
            await store.commit(upserts=[make_event(id="TX-1", booking="apt-9")])

        asyncio.run(scenario())

        row = db_session.get(LedgerEventRecord, "TX-1")
        assert row.identity_kind == "appointment"
        assert row.identity_id == "apt-9"
        assert row.composite_type == "service-only"

    def test_delete_and_replace_keep_order(
        self, make_event, db_session, session_factory
    ):
        backend = SqlAlchemyEventBackend(session_factory)

        async def scenario():
            store = EventStore(backend)
            await store.load()
            await store.commit(upserts=[
                make_event(id="TX-1"),
                make_event(id="TX-2"),
                make_event(id="TX-3"),
            ])
            replaced = store.get("TX-3").model_copy(
                update={"description": "Color"}
            )
            await store.commit(upserts=[replaced], deletes=["TX-1"])

        asyncio.run(scenario())

        rows = db_session.execute(
            select(LedgerEventRecord).order_by(LedgerEventRecord.position)
        ).scalars().all()
        assert [r.id for r in rows] == ["TX-2", "TX-3"]
        assert rows[1].document["description"] == "Color"


class TestCommit:

    def test_failed_save_keeps_previous_state(self, make_event):
        async def scenario():
            store = EventStore(ExplodingBackend(
                [serialize(make_event(id="TX-1"))]
            ))
            await store.load()
            with pytest.raises(StoreError) as excinfo:
                await store.commit(
                    upserts=[make_event(id="TX-2")], deletes=["TX-1"]
                )
            return store, excinfo.value

        store, error = asyncio.run(scenario())

        assert [e.id for e in store.all()] == ["TX-1"]
        assert error.operation == "save"
        assert isinstance(error.cause, OSError)

    def test_corrupt_document_fails_load(self):
        async def scenario():
            store = EventStore(InMemoryEventBackend([{"id": "TX-1"}]))
            with pytest.raises(StoreError):
                await store.load()
            return store

        store = asyncio.run(scenario())

        assert store.loaded is False
        assert len(store) == 0

    def test_filter_and_membership(self, make_event):
        async def scenario():
            store = EventStore(InMemoryEventBackend())
            await store.load()
            await store.commit(upserts=[
                make_event(id="TX-1", amount=Decimal("10")),
                make_event(id="TX-2", amount=Decimal("90")),
            ])
            return store

        store = asyncio.run(scenario())

        assert "TX-1" in store
        assert "TX-9" not in store
        assert [e.id for e in store.filter(lambda e: e.amount > 50)] == [
            "TX-2"
        ]


class TestSerialization:

    def test_money_is_serialized_as_cents(self, make_event):
        document = serialize(make_event(
            amount=Decimal("33.333"), discount_amount=Decimal("1.005"),
        ))

        assert document["amount"] == "33.33"
        assert document["discount_amount"] == "1.01"
        assert document["created_at"].startswith("2024-03-01T10:00:00")
