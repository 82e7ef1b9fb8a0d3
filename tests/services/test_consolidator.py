"""
Tests for the Consolidator.

Tests cover:
- Composite type selection
- Service-only discounting (products at full price)
- Line items, description and metadata
- Booking validation
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from sales_ledger.exceptions import InvalidBookingError
from sales_ledger.models.enums import (
    CompositeType,
    LineItemKind,
    OriginationChannel,
)
from sales_ledger.schemas.booking import BookedProduct, BookedService
from sales_ledger.services.consolidator import Consolidator
from sales_ledger.services.display import project

NOW = datetime(2024, 3, 1, 15, 30, tzinfo=timezone.utc)


@pytest.fixture
def consolidator():
    return Consolidator(clock=lambda: NOW)


class TestBuildConsolidated:

    def test_service_only_booking(self, consolidator, make_booking):
        event = consolidator.build_consolidated(make_booking())

        assert event.composite_type == CompositeType.SERVICE_ONLY
        assert event.amount == Decimal("50.00")
        assert event.service_amount == Decimal("50.00")
        assert event.product_amount == Decimal("0")
        assert event.identity_ref.kind == "appointment"
        assert event.identity_ref.id == "apt-100"
        assert event.origination_channel == OriginationChannel.CALENDAR
        assert event.description == "Haircut"
        assert event.created_at == NOW

    def test_product_only_booking(self, consolidator, make_booking, shampoo):
        event = consolidator.build_consolidated(
            make_booking(service=None, products=[shampoo])
        )

        assert event.composite_type == CompositeType.PRODUCT_ONLY
        assert event.amount == Decimal("30.00")
        assert event.product_amount == Decimal("30.00")
        assert event.description == "1 product(s)"

    def test_discount_applies_to_services_only(
        self, consolidator, make_booking, shampoo
    ):
        booking = make_booking(
            additional_services=[
                BookedService(name="Blow Dry", price=Decimal("30.00"))
            ],
            products=[shampoo],
        )

        event = consolidator.build_consolidated(booking, Decimal("20"))

        assert event.composite_type == CompositeType.CONSOLIDATED
        assert event.original_service_amount == Decimal("80.00")
        assert event.service_amount == Decimal("64.00")
        assert event.product_amount == Decimal("30.00")
        assert event.amount == Decimal("94.00")
        assert event.discount_percentage == Decimal("20")
        assert event.discount_amount == Decimal("16.00")
        assert event.description == "2 service(s) + 1 product(s) (20% off)"

        products = [i for i in event.line_items if i.kind == LineItemKind.PRODUCT]
        assert len(products) == 1
        assert products[0].discount_applied is False
        assert products[0].total_price == Decimal("30.00")
        assert products[0].cost == Decimal("6.00")

        services = [i for i in event.line_items if i.kind == LineItemKind.SERVICE]
        assert all(i.discount_applied for i in services)
        assert services[0].original_price == Decimal("50.00")
        assert services[0].total_price == Decimal("40.00")

    def test_line_items_add_up_to_amount(
        self, consolidator, make_booking, shampoo
    ):
        event = consolidator.build_consolidated(
            make_booking(products=[shampoo]), Decimal("15")
        )

        total = sum(i.total_price for i in event.line_items)
        assert abs(total - event.amount) < Decimal("0.01")
        assert abs(
            event.service_amount + event.product_amount - event.amount
        ) < Decimal("0.01")

    def test_booking_discount_is_used_when_none_given(
        self, consolidator, make_booking
    ):
        event = consolidator.build_consolidated(
            make_booking(discount_percentage=Decimal("10"))
        )

        assert event.amount == Decimal("45.00")
        assert event.discount_percentage == Decimal("10")

    def test_description_percentage_matches_display_label(
        self, consolidator, make_booking
    ):
        """A 20.0 discount reads "20% off" in both places."""
        event = consolidator.build_consolidated(
            make_booking(), Decimal("20.0")
        )

        assert event.description == "Haircut (20% off)"
        assert project(event).discount_label == "20% off"

    def test_duplicate_item_names_get_unique_ids(
        self, consolidator, make_booking
    ):
        booking = make_booking(
            additional_services=[
                BookedService(name="Haircut", price=Decimal("50.00"))
            ]
        )

        event = consolidator.build_consolidated(booking)

        ids = [i.id for i in event.line_items]
        assert ids == ["service-haircut", "service-haircut-2"]

    def test_metadata_carries_booking_details(
        self, consolidator, make_booking
    ):
        event = consolidator.build_consolidated(
            make_booking(booking_reference="BK-77", payment_method="card")
        )

        assert event.metadata["booking_id"] == "apt-100"
        assert event.metadata["booking_reference"] == "BK-77"
        assert event.metadata["payment_method"] == "card"
        assert event.metadata["client_name"] == "Dana Smith"
        assert event.metadata["service_count"] == 1
        assert event.metadata["product_count"] == 0
        assert event.metadata["discount_applied"] is False
        assert event.external_booking_code == "BK-77"

    def test_booking_is_not_modified(self, consolidator, make_booking):
        booking = make_booking()
        before = booking.model_dump()

        consolidator.build_consolidated(booking, Decimal("25"))

        assert booking.model_dump() == before


class TestValidation:

    def test_empty_booking_rejected(self, consolidator, make_booking):
        with pytest.raises(InvalidBookingError, match="no services"):
            consolidator.build_consolidated(make_booking(service=None))

    def test_discount_above_100_rejected(self, consolidator, make_booking):
        with pytest.raises(InvalidBookingError, match="outside 0-100"):
            consolidator.build_consolidated(make_booking(), Decimal("120"))

    def test_zero_price_service_rejected(self, consolidator, make_booking):
        booking = make_booking(
            service=BookedService(name="Consult", price=Decimal("0"))
        )
        with pytest.raises(InvalidBookingError, match="non-positive price"):
            consolidator.build_consolidated(booking)

    def test_zero_quantity_product_rejected(
        self, consolidator, make_booking
    ):
        booking = make_booking(products=[
            BookedProduct(name="Gel", price=Decimal("10"), quantity=0)
        ])
        with pytest.raises(InvalidBookingError, match="non-positive quantity"):
            consolidator.build_consolidated(booking)

    def test_invalid_booking_is_also_a_value_error(
        self, consolidator, make_booking
    ):
        with pytest.raises(ValueError):
            consolidator.build_consolidated(make_booking(service=None))
