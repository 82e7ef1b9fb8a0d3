"""
Pydantic schemas for ledger events.

A ledger event is one completed sale. These models are both the
in-memory domain objects the engine works with and the API
contract. Monetary values keep full Decimal precision in memory
and are rounded to cents only when serialized to JSON, which is
how they reach the store and HTTP clients.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any

from pydantic import (
    BaseModel,
    Field,
    ValidationInfo,
    field_serializer,
    field_validator,
)

from sales_ledger.models.enums import (
    CompositeType,
    EventStatus,
    LineItemKind,
    OriginationChannel,
)

CENT = Decimal("0.01")

# Metadata keys that carry the booking identity id when identity_ref
# is missing (events written by older channels).
IDENTITY_METADATA_KEYS = ("appointment_id", "booking_id")
# identity_ref kind carried by events built from a booking.
BOOKING_IDENTITY_KIND = "appointment"
# Metadata key that carries the external booking code.
BOOKING_CODE_METADATA_KEY = "booking_reference"

_MONEY_FIELDS = (
    "amount",
    "service_amount",
    "product_amount",
    "original_service_amount",
    "discount_amount",
)


def to_cents(value: Decimal) -> Decimal:
    """Round a monetary value to 2 decimal places."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def format_percentage(value: Decimal) -> str:
    """Render a percentage without trailing zeros: 20.0 -> "20"."""
    return format(value.normalize(), "f")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_event_id() -> str:
    return f"TX-{uuid.uuid4().hex[:16].upper()}"


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class IdentityRef(BaseModel):
    """Ties a ledger event to the booking it charges for."""
    kind: str = Field(min_length=1, max_length=50)
    id: str = Field(min_length=1, max_length=100)

    model_config = {"frozen": True}

    @property
    def key(self) -> tuple[str, str]:
        return (self.kind, self.id)


def metadata_identity_keys(metadata: dict[str, Any]) -> set[tuple[str, str]]:
    return {
        (BOOKING_IDENTITY_KIND, str(metadata[key]))
        for key in IDENTITY_METADATA_KEYS
        if metadata.get(key)
    }


class LineItem(BaseModel):
    """A single service or product on a ledger event."""
    id: str
    name: str
    quantity: int = Field(default=1, gt=0)
    unit_price: Decimal
    total_price: Decimal
    kind: LineItemKind
    discount_applied: bool = False
    discount_percentage: Decimal | None = None
    discount_amount: Decimal | None = None
    original_price: Decimal | None = None
    cost: Decimal | None = None

    model_config = {"frozen": True}

    @field_validator("discount_applied")
    @classmethod
    def products_are_never_discounted(
        cls, v: bool, info: ValidationInfo
    ) -> bool:
        if v and info.data.get("kind") == LineItemKind.PRODUCT:
            raise ValueError("product line items cannot carry a discount")
        return v

    @field_serializer(
        "unit_price", "total_price", "discount_amount", "original_price",
        "cost", when_used="json",
    )
    def serialize_money(self, v: Decimal | None) -> str | None:
        return None if v is None else str(to_cents(v))


class LedgerEvent(BaseModel):
    """
    One completed sale.

    Instances are immutable. Enrichment produces a new instance
    via model_copy(update=...), which keeps the original intact
    until the store commits the replacement.
    """
    id: str = Field(default_factory=new_event_id)
    occurred_at: datetime = Field(default_factory=utc_now)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    identity_ref: IdentityRef | None = None
    external_booking_code: str | None = None
    client_id: str | None = None
    staff_id: str | None = None
    origination_channel: OriginationChannel = OriginationChannel.SYSTEM
    composite_type: CompositeType
    amount: Decimal
    service_amount: Decimal | None = None
    product_amount: Decimal | None = None
    original_service_amount: Decimal | None = None
    discount_percentage: Decimal | None = None
    discount_amount: Decimal | None = None
    line_items: list[LineItem] = Field(default_factory=list)
    description: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    status: EventStatus = EventStatus.COMPLETED

    model_config = {"frozen": True}

    @field_validator("occurred_at", "created_at", "updated_at")
    @classmethod
    def timestamps_are_utc(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @field_serializer(*_MONEY_FIELDS, when_used="json")
    def serialize_money(self, v: Decimal | None) -> str | None:
        return None if v is None else str(to_cents(v))

    @property
    def identity_keys(self) -> set[tuple[str, str]]:
        """
        Every (kind, id) this event claims.

        Metadata ids are booking ids, so they are keyed under the
        booking kind and only ever meet refs of that kind.
        """
        keys = set()
        if self.identity_ref is not None:
            keys.add(self.identity_ref.key)
        keys |= metadata_identity_keys(self.metadata)
        return keys

    @property
    def booking_codes(self) -> set[str]:
        codes = set()
        if self.external_booking_code:
            codes.add(self.external_booking_code)
        value = self.metadata.get(BOOKING_CODE_METADATA_KEY)
        if value:
            codes.add(str(value))
        return codes

    @property
    def has_explicit_discount(self) -> bool:
        return (
            self.discount_percentage is not None
            and self.discount_percentage > 0
        )


class LedgerEventCreate(BaseModel):
    """
    A sale produced directly by an origination channel.

    The ledger assigns the id (unless one is supplied) and the
    creation timestamps.
    """
    id: str | None = Field(default=None, max_length=100)
    occurred_at: datetime | None = None
    identity_ref: IdentityRef | None = None
    external_booking_code: str | None = None
    client_id: str | None = None
    staff_id: str | None = None
    origination_channel: OriginationChannel
    composite_type: CompositeType
    amount: Decimal = Field(ge=0)
    service_amount: Decimal | None = None
    product_amount: Decimal | None = None
    original_service_amount: Decimal | None = None
    discount_percentage: Decimal | None = Field(default=None, ge=0, le=100)
    discount_amount: Decimal | None = None
    line_items: list[LineItem] = Field(default_factory=list)
    description: str = Field(default="", max_length=500)
    metadata: dict[str, Any] = Field(default_factory=dict)
    status: EventStatus = EventStatus.COMPLETED

    def to_event(self, now: datetime | None = None) -> LedgerEvent:
        now = now or utc_now()
        data = self.model_dump(exclude_none=True)
        data.setdefault("id", new_event_id())
        data.setdefault("occurred_at", now)
        data["created_at"] = now
        data["updated_at"] = now
        return LedgerEvent.model_validate(data)


class LedgerEventUpdate(BaseModel):
    """
    Partial update of a ledger event.

    Identity and creation fields are deliberately absent:
    id and created_at never change once assigned.
    """
    occurred_at: datetime | None = None
    client_id: str | None = None
    staff_id: str | None = None
    amount: Decimal | None = Field(default=None, ge=0)
    service_amount: Decimal | None = None
    product_amount: Decimal | None = None
    original_service_amount: Decimal | None = None
    discount_percentage: Decimal | None = Field(default=None, ge=0, le=100)
    discount_amount: Decimal | None = None
    line_items: list[LineItem] | None = None
    description: str | None = Field(default=None, max_length=500)
    metadata: dict[str, Any] | None = None
    status: EventStatus | None = None


class LedgerEventFilter(BaseModel):
    """Criteria for LedgerEventService.filter. Unset fields match all."""
    start: datetime | None = None
    end: datetime | None = None
    on_date: datetime | None = None
    composite_type: CompositeType | None = None
    origination_channel: OriginationChannel | None = None
    status: EventStatus | None = None
    client_id: str | None = None
    staff_id: str | None = None
    search: str | None = None
    min_amount: Decimal | None = None
    max_amount: Decimal | None = None

    @field_validator("start", "end", "on_date")
    @classmethod
    def timestamps_are_utc(cls, v: datetime | None) -> datetime | None:
        return None if v is None else _as_utc(v)

    def matches(self, event: LedgerEvent) -> bool:
        if self.start and event.occurred_at < self.start:
            return False
        if self.end and event.occurred_at > self.end:
            return False
        if self.on_date and event.occurred_at.date() != self.on_date.date():
            return False
        if self.composite_type and event.composite_type != self.composite_type:
            return False
        if (
            self.origination_channel
            and event.origination_channel != self.origination_channel
        ):
            return False
        if self.status and event.status != self.status:
            return False
        if self.client_id and event.client_id != self.client_id:
            return False
        if self.staff_id and event.staff_id != self.staff_id:
            return False
        if self.min_amount is not None and event.amount < self.min_amount:
            return False
        if self.max_amount is not None and event.amount > self.max_amount:
            return False
        if self.search:
            needle = self.search.lower()
            haystack = [
                event.id,
                event.description,
                str(event.metadata.get("client_name") or ""),
                str(event.metadata.get("staff_name") or ""),
            ]
            if not any(needle in text.lower() for text in haystack):
                return False
        return True


class BookingTarget(BaseModel):
    """
    What a booking looks like to the match finder.

    Built either from a raw booking identity or from an existing
    event. When built from an event, exclude_id keeps the event
    from matching itself.
    """
    identity_ref: IdentityRef | None = None
    identity_keys: set[tuple[str, str]] = Field(default_factory=set)
    external_booking_codes: set[str] = Field(default_factory=set)
    client_id: str | None = None
    occurred_at: datetime
    amount: Decimal
    exclude_id: str | None = None

    @field_validator("occurred_at")
    @classmethod
    def timestamps_are_utc(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @classmethod
    def from_event(cls, event: LedgerEvent) -> "BookingTarget":
        return cls(
            identity_ref=event.identity_ref,
            identity_keys=event.identity_keys,
            external_booking_codes=event.booking_codes,
            client_id=event.client_id,
            occurred_at=event.occurred_at,
            amount=event.amount,
            exclude_id=event.id,
        )

    @classmethod
    def for_booking(
        cls,
        occurred_at: datetime,
        amount: Decimal,
        identity_ref: IdentityRef | None = None,
        external_booking_code: str | None = None,
        client_id: str | None = None,
    ) -> "BookingTarget":
        return cls(
            identity_ref=identity_ref,
            identity_keys={identity_ref.key} if identity_ref else set(),
            external_booking_codes=(
                {external_booking_code} if external_booking_code else set()
            ),
            client_id=client_id,
            occurred_at=occurred_at,
            amount=amount,
        )
