"""
Tests for the ReconciliationScorer.

Tests cover:
- Rule precedence (explicit discount, completeness, lowest amount,
  most recent)
- Discount reconstruction against the highest member
- The implicit-discount threshold
- Order independence
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from sales_ledger.models.enums import (
    CompositeType,
    LineItemKind,
    OriginationChannel,
)
from sales_ledger.schemas.ledger_event import LineItem
from sales_ledger.services.reconciliation_scorer import (
    ReconciliationRule,
    ReconciliationScorer,
    completeness_score,
    split_amounts,
)

BASE_TIME = datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)
NOW = datetime(2024, 3, 5, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def scorer():
    return ReconciliationScorer(clock=lambda: NOW)


class TestRules:

    def test_identical_amounts_keep_most_recent(self, scorer, make_event):
        older = make_event(id="TX-1", booking="apt-1")
        newer = make_event(
            id="TX-2", booking="apt-1",
            created_at=BASE_TIME + timedelta(days=1),
        )

        result = scorer.reconcile([older, newer])

        assert result.rule == ReconciliationRule.MOST_RECENT
        assert result.keep.id == "TX-2"
        assert [e.id for e in result.remove] == ["TX-1"]
        assert result.keep.updated_at == NOW

    def test_explicit_discount_wins_and_is_recomputed(
        self, scorer, make_event
    ):
        full = make_event(id="TX-1", booking="apt-1")
        discounted = make_event(
            id="TX-2", booking="apt-1", amount=Decimal("40.00"),
            discount_percentage=Decimal("20"),
            created_at=BASE_TIME + timedelta(minutes=5),
        )

        result = scorer.reconcile([full, discounted])

        assert result.rule == ReconciliationRule.EXPLICIT_DISCOUNT
        assert result.keep.id == "TX-2"
        assert result.keep.amount == Decimal("40.00")
        assert result.keep.discount_percentage == Decimal("20")
        assert result.keep.discount_amount == Decimal("10.00")
        assert result.keep.original_service_amount == Decimal("50.00")
        assert result.keep.service_amount == Decimal("40.00")
        assert result.keep.product_amount == Decimal("0")

    def test_explicit_discount_without_higher_member_keeps_its_claim(
        self, scorer, make_event
    ):
        first = make_event(
            id="TX-1", booking="apt-1", amount=Decimal("40.00"),
            discount_percentage=Decimal("20"),
            discount_amount=Decimal("10.00"),
        )
        second = make_event(
            id="TX-2", booking="apt-1", amount=Decimal("40.00"),
            created_at=BASE_TIME + timedelta(days=1),
        )

        result = scorer.reconcile([first, second])

        assert result.keep.id == "TX-1"
        assert result.keep.discount_percentage == Decimal("20")
        assert result.keep.original_service_amount == Decimal("50.00")
        assert "20% off" in result.keep.description

    def test_earliest_discount_claim_wins(self, scorer, make_event):
        group = [
            make_event(
                id="TX-1", booking="apt-1", amount=Decimal("45.00"),
                discount_percentage=Decimal("10"),
            ),
            make_event(
                id="TX-2", booking="apt-1", amount=Decimal("40.00"),
                discount_percentage=Decimal("20"),
                created_at=BASE_TIME + timedelta(minutes=1),
            ),
            make_event(
                id="TX-3", booking="apt-1",
                created_at=BASE_TIME + timedelta(minutes=2),
            ),
        ]

        result = scorer.reconcile(group)

        assert result.keep.id == "TX-1"
        assert result.keep.discount_percentage == Decimal("10")
        assert {e.id for e in result.remove} == {"TX-2", "TX-3"}

    def test_multi_channel_keeps_most_complete(self, scorer, make_event):
        bare = make_event(id="TX-1", booking="apt-1", staff_id=None)
        detailed = make_event(
            id="TX-2", booking="apt-1",
            origination_channel=OriginationChannel.CALENDAR,
            staff_id="staff-7",
            service_amount=Decimal("50.00"),
            product_amount=Decimal("0"),
            line_items=[LineItem(
                id="service-haircut", name="Haircut",
                unit_price=Decimal("50.00"), total_price=Decimal("50.00"),
                kind=LineItemKind.SERVICE,
            )],
            created_at=BASE_TIME + timedelta(seconds=1),
        )

        result = scorer.reconcile([bare, detailed])

        assert result.rule == ReconciliationRule.MOST_COMPLETE
        assert result.keep.id == "TX-2"

    def test_single_channel_differing_amounts_keeps_lowest(
        self, scorer, make_event
    ):
        full = make_event(id="TX-1", booking="apt-1", description="Haircut")
        lower = make_event(
            id="TX-2", booking="apt-1", amount=Decimal("40.00"),
            description="Haircut",
            created_at=BASE_TIME + timedelta(hours=1),
        )

        result = scorer.reconcile([full, lower])

        assert result.rule == ReconciliationRule.LOWEST_AMOUNT
        assert result.keep.id == "TX-2"
        assert result.keep.discount_percentage == Decimal("20")
        assert result.keep.discount_amount == Decimal("10.00")
        assert "% off" in result.keep.description

    def test_difference_below_threshold_is_not_a_discount(
        self, scorer, make_event
    ):
        full = make_event(id="TX-1", booking="apt-1")
        rounded = make_event(
            id="TX-2", booking="apt-1", amount=Decimal("49.80"),
            created_at=BASE_TIME + timedelta(hours=1),
        )

        result = scorer.reconcile([full, rounded])

        assert result.keep.id == "TX-2"
        assert result.keep.discount_percentage is None
        assert result.keep.description == "Haircut"

    def test_empty_group_is_rejected(self, scorer):
        with pytest.raises(ValueError, match="empty"):
            scorer.reconcile([])


class TestDeterminism:

    def test_member_order_does_not_change_outcome(self, scorer, make_event):
        group = [
            make_event(id="TX-1", booking="apt-1"),
            make_event(
                id="TX-2", booking="apt-1", amount=Decimal("40.00"),
                created_at=BASE_TIME + timedelta(minutes=1),
            ),
            make_event(
                id="TX-3", booking="apt-1",
                origination_channel=OriginationChannel.PORTAL,
                created_at=BASE_TIME + timedelta(minutes=2),
            ),
        ]

        forward = scorer.reconcile(group)
        backward = scorer.reconcile(list(reversed(group)))

        assert forward.keep == backward.keep
        assert forward.rule == backward.rule
        assert [e.id for e in forward.remove] == [
            e.id for e in backward.remove
        ]


class TestHelpers:

    def test_split_uses_line_items(self, make_event):
        event = make_event(
            composite_type=CompositeType.CONSOLIDATED,
            amount=Decimal("70.00"),
            line_items=[
                LineItem(
                    id="service-cut", name="Cut",
                    unit_price=Decimal("40"), total_price=Decimal("40"),
                    kind=LineItemKind.SERVICE,
                ),
                LineItem(
                    id="gel", name="Gel", quantity=2,
                    unit_price=Decimal("15"), total_price=Decimal("30"),
                    kind=LineItemKind.PRODUCT,
                ),
            ],
        )

        assert split_amounts(event) == (Decimal("40"), Decimal("30"))

    def test_split_falls_back_to_composite_type(self, make_event):
        event = make_event(
            composite_type=CompositeType.PRODUCT_ONLY, amount=Decimal("12")
        )

        assert split_amounts(event) == (Decimal("0"), Decimal("12"))

    def test_completeness_prefers_detail(self, make_event):
        bare = make_event(client_id=None)
        detailed = make_event(staff_id="staff-7", metadata={"location": "x"})

        assert completeness_score(detailed) > completeness_score(bare)
