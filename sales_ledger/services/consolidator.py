"""
Consolidator — turns a paid booking into one composite ledger event.

Services and products from the same checkout end up on a single
event with a line item per service and per product. A checkout
discount applies to services only; products are always charged at
full price.
"""

import logging
import re
from datetime import datetime
from decimal import Decimal
from typing import Callable

from sales_ledger.exceptions import InvalidBookingError
from sales_ledger.models.enums import (
    CompositeType,
    EventStatus,
    LineItemKind,
    OriginationChannel,
)
from sales_ledger.schemas.booking import BookedProduct, BookedService, Booking
from sales_ledger.schemas.ledger_event import (
    BOOKING_IDENTITY_KIND,
    IdentityRef,
    LedgerEvent,
    LineItem,
    format_percentage,
    new_event_id,
    utc_now,
)

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")
ZERO = Decimal("0")


def _slug(name: str) -> str:
    return re.sub(r"\s+", "-", name.strip().lower())


class Consolidator:

    def __init__(
        self,
        channel: OriginationChannel = OriginationChannel.CALENDAR,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.channel = channel
        self.clock = clock

    def build_consolidated(
        self,
        booking: Booking,
        discount_percentage: Decimal | None = None,
    ) -> LedgerEvent:
        """
        Build the ledger event for a booking checkout.

        discount_percentage falls back to the booking's own
        discount when not given. The booking is never modified.

        Raises InvalidBookingError if the booking has no services
        and no products, or if any price or quantity is not
        positive. No event is produced in that case.
        """
        if discount_percentage is None:
            discount_percentage = booking.discount_percentage
        discount = Decimal(str(discount_percentage or 0))
        self._validate(booking, discount)

        items: list[LineItem] = []
        used_ids: set[str] = set()
        original_service_amount = ZERO
        service_amount = ZERO
        product_amount = ZERO

        services = ([booking.service] if booking.service else []) + list(
            booking.additional_services
        )
        for service in services:
            item = self._service_item(service, discount, used_ids)
            items.append(item)
            original_service_amount += item.unit_price
            service_amount += item.total_price

        for product in booking.products:
            item = self._product_item(product, used_ids)
            items.append(item)
            product_amount += item.total_price

        service_count = len(services)
        product_count = len(booking.products)
        amount = service_amount + product_amount

        if service_count and product_count:
            composite_type = CompositeType.CONSOLIDATED
        elif service_count:
            composite_type = CompositeType.SERVICE_ONLY
        else:
            composite_type = CompositeType.PRODUCT_ONLY

        now = self.clock()
        discounted = discount > 0
        event = LedgerEvent(
            id=new_event_id(),
            occurred_at=now,
            created_at=now,
            updated_at=now,
            identity_ref=IdentityRef(
                kind=BOOKING_IDENTITY_KIND, id=booking.id
            ),
            external_booking_code=booking.booking_reference,
            client_id=booking.client_id,
            staff_id=booking.staff_id,
            origination_channel=self.channel,
            composite_type=composite_type,
            amount=amount,
            service_amount=service_amount,
            product_amount=product_amount,
            original_service_amount=original_service_amount,
            discount_percentage=discount if discounted else None,
            discount_amount=(
                original_service_amount - service_amount if discounted else None
            ),
            line_items=items,
            description=self._describe(booking, service_count, product_count,
                                       discount),
            metadata=self._metadata(
                booking, service_count, product_count,
                original_service_amount + product_amount, amount, discounted,
            ),
            status=EventStatus.COMPLETED,
        )

        logger.info(
            "event=booking_consolidated booking=%s ledger_event=%s type=%s "
            "amount=%s discount=%s",
            booking.id, event.id, composite_type.value, amount, discount,
        )
        return event

    # --- Validation ---

    @staticmethod
    def _validate(booking: Booking, discount: Decimal) -> None:
        if not booking.service and not booking.additional_services \
                and not booking.products:
            raise InvalidBookingError(
                booking.id, "booking has no services and no products"
            )

        if discount < 0 or discount > HUNDRED:
            raise InvalidBookingError(
                booking.id,
                f"discount percentage {discount} is outside 0-100",
            )

        services = ([booking.service] if booking.service else []) + list(
            booking.additional_services
        )
        for service in services:
            if service.price <= 0:
                raise InvalidBookingError(
                    booking.id,
                    f"service '{service.name}' has non-positive price "
                    f"{service.price}",
                )

        for product in booking.products:
            if product.price <= 0:
                raise InvalidBookingError(
                    booking.id,
                    f"product '{product.name}' has non-positive price "
                    f"{product.price}",
                )
            if product.quantity <= 0:
                raise InvalidBookingError(
                    booking.id,
                    f"product '{product.name}' has non-positive quantity "
                    f"{product.quantity}",
                )

    # --- Line items ---

    @staticmethod
    def _unique_id(base: str, used_ids: set[str]) -> str:
        candidate, n = base, 2
        while candidate in used_ids:
            candidate = f"{base}-{n}"
            n += 1
        used_ids.add(candidate)
        return candidate

    def _service_item(
        self, service: BookedService, discount: Decimal, used_ids: set[str]
    ) -> LineItem:
        price = service.price
        if discount > 0:
            item_discount = price * discount / HUNDRED
            return LineItem(
                id=self._unique_id(f"service-{_slug(service.name)}", used_ids),
                name=service.name,
                quantity=1,
                unit_price=price,
                total_price=price - item_discount,
                kind=LineItemKind.SERVICE,
                discount_applied=True,
                discount_percentage=discount,
                discount_amount=item_discount,
                original_price=price,
            )
        return LineItem(
            id=self._unique_id(f"service-{_slug(service.name)}", used_ids),
            name=service.name,
            quantity=1,
            unit_price=price,
            total_price=price,
            kind=LineItemKind.SERVICE,
            discount_applied=False,
            discount_percentage=ZERO,
            discount_amount=ZERO,
            original_price=price,
        )

    def _product_item(
        self, product: BookedProduct, used_ids: set[str]
    ) -> LineItem:
        base_id = product.id or f"product-{_slug(product.name)}"
        return LineItem(
            id=self._unique_id(base_id, used_ids),
            name=product.name,
            quantity=product.quantity,
            unit_price=product.price,
            total_price=product.price * product.quantity,
            kind=LineItemKind.PRODUCT,
            discount_applied=False,
            original_price=product.price,
            cost=product.cost,
        )

    # --- Description and metadata ---

    @staticmethod
    def _describe(
        booking: Booking,
        service_count: int,
        product_count: int,
        discount: Decimal,
    ) -> str:
        if service_count and product_count:
            description = (
                f"{service_count} service(s) + {product_count} product(s)"
            )
        elif service_count == 1:
            single = booking.service or booking.additional_services[0]
            description = single.name
        elif service_count:
            description = f"{service_count} service(s)"
        else:
            description = f"{product_count} product(s)"

        if discount > 0:
            description += f" ({format_percentage(discount)}% off)"
        return description

    @staticmethod
    def _metadata(
        booking: Booking,
        service_count: int,
        product_count: int,
        original_total: Decimal,
        final_total: Decimal,
        discounted: bool,
    ) -> dict:
        metadata = {
            "booking_id": booking.id,
            "transaction_type": "consolidated",
            "service_count": service_count,
            "product_count": product_count,
            "original_total": str(original_total),
            "final_total": str(final_total),
            "discount_applied": discounted,
        }
        optional = {
            "booking_reference": booking.booking_reference,
            "location": booking.location,
            "client_name": booking.client_name,
            "staff_name": booking.staff_name,
            "payment_method": booking.payment_method,
        }
        metadata.update({k: v for k, v in optional.items() if v is not None})
        return metadata
