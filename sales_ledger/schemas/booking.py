"""
Pydantic schemas for booking aggregates.

A booking is what the scheduling calendar or the POS hands over
when a client pays: the services performed, the products bought
and an optional discount. Validation here is shape-only; pricing
rules (positive prices, at least one line) are enforced by the
Consolidator so that they surface as InvalidBookingError.
"""

from decimal import Decimal

from pydantic import BaseModel, Field


class BookedService(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    price: Decimal


class BookedProduct(BaseModel):
    id: str | None = None
    name: str = Field(min_length=1, max_length=200)
    price: Decimal
    quantity: int = 1
    cost: Decimal | None = None


class Booking(BaseModel):
    """A paid booking, ready to be turned into a ledger event."""
    id: str = Field(min_length=1, max_length=100)
    client_id: str | None = None
    client_name: str | None = None
    staff_id: str | None = None
    staff_name: str | None = None
    location: str | None = None
    service: BookedService | None = None
    additional_services: list[BookedService] = Field(default_factory=list)
    products: list[BookedProduct] = Field(default_factory=list)
    discount_percentage: Decimal | None = None
    booking_reference: str | None = None
    payment_method: str | None = None

    model_config = {"frozen": True}


class BookingCheckout(BaseModel):
    """Request body for creating a ledger event from a booking."""
    booking: Booking
    discount_percentage: Decimal | None = None
