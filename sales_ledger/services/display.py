"""
Display projection — the read-side money breakdown of one event.

Events reach the display from many places: the store, the API,
legacy documents written before the split fields existed. The
projection therefore never raises. Anything it cannot read as a
number is treated as absent, and a missing event projects to all
zeros.
"""

import enum
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from pydantic import BaseModel

from sales_ledger.schemas.display import DisplayBreakdown
from sales_ledger.schemas.ledger_event import format_percentage, to_cents

ZERO = Decimal("0")
HUNDRED = Decimal("100")
MAX_DIGITS = 15


def _number(value: Any) -> Decimal | None:
    # bool is an int subclass; True is not a price.
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        number = value
    elif isinstance(value, (int, float)):
        number = Decimal(str(value))
    elif isinstance(value, str):
        try:
            number = Decimal(value.strip())
        except InvalidOperation:
            return None
    else:
        return None
    # Beyond this, quantizing to cents overflows the decimal context.
    if not number.is_finite() or number.adjusted() > MAX_DIGITS:
        return None
    return number


def _text(value: Any) -> str:
    if isinstance(value, enum.Enum):
        return str(value.value)
    return value if isinstance(value, str) else ""


def _as_mapping(value: Any) -> dict | None:
    if isinstance(value, BaseModel):
        return value.model_dump()
    if isinstance(value, dict):
        return value
    return None


def _item_total(items: list[dict], kind: str) -> Decimal | None:
    """Sum of total_price over items of one kind, None if none exist."""
    matching = [item for item in items if _text(item.get("kind")) == kind]
    if not matching:
        return None
    return sum(
        (_number(item.get("total_price")) or ZERO for item in matching), ZERO
    )


def _format(value: Decimal) -> str:
    return str(to_cents(value))


def project(event: Any) -> DisplayBreakdown:
    """
    Project an event (LedgerEvent, dict or None) for display.

    Service amount: the explicit field, else the service line
    items, else the whole amount for a service-only sale. Product
    amount works the same way. The discount label prefers the
    stored percentage, then the stored amount, then whatever the
    difference between original and final implies.
    """
    data = _as_mapping(event)
    if data is None:
        return DisplayBreakdown()

    raw_items = data.get("line_items")
    items = []
    if isinstance(raw_items, list):
        items = [m for m in map(_as_mapping, raw_items) if m is not None]

    composite_type = _text(data.get("composite_type"))
    amount = _number(data.get("amount"))

    service = _number(data.get("service_amount"))
    if service is None:
        service = _item_total(items, "service")
    if service is None:
        service = amount if composite_type == "service-only" else None
    service = service if service is not None else ZERO

    product = _number(data.get("product_amount"))
    if product is None:
        product = _item_total(items, "product")
    if product is None:
        product = amount if composite_type == "product-only" else None
    product = product if product is not None else ZERO

    original_service = _number(data.get("original_service_amount"))
    if original_service is not None:
        original = original_service + product
    else:
        original = amount if amount is not None else ZERO

    final = amount if amount is not None else ZERO

    label = ""
    percentage = _number(data.get("discount_percentage"))
    discount_amount = _number(data.get("discount_amount"))
    if percentage is not None and percentage > 0:
        label = f"{format_percentage(percentage)}% off"
    elif discount_amount is not None and discount_amount > 0:
        label = f"{_format(discount_amount)} off"
    elif original > final and original > 0:
        implied = ((original - final) / original * HUNDRED).quantize(
            Decimal("1"), rounding=ROUND_HALF_UP
        )
        label = f"{implied}% off"

    return DisplayBreakdown(
        service_amount=_format(service),
        product_amount=_format(product),
        original_amount=_format(original),
        final_amount=_format(final),
        discount_label=label,
    )
